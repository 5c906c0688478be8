"""Group message model and its per-user seen set."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utc_timestamp


class GroupMessage(SQLModel, table=True):
    __tablename__ = "group_messages"
    __table_args__ = (
        sa.Index("ix_group_messages_group_created", "group_id", "created_at"),
        sa.Index("ix_group_messages_sender_created", "sender_id", "created_at"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    group_id: uuid.UUID = Field(foreign_key="groups.id", nullable=False)
    sender_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    message: str = Field(nullable=False)
    message_type: str = Field(default="text", nullable=False)  # text | image | file
    file_url: Optional[str] = None
    created_at: datetime = utc_timestamp()


class GroupMessageSeen(SQLModel, table=True):
    """One row per (message, user): the seen set of a group message."""

    __tablename__ = "group_message_seen"

    message_id: uuid.UUID = Field(foreign_key="group_messages.id", primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True, index=True)
