"""Direct (one-to-one) message model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utc_timestamp


class DirectMessage(SQLModel, table=True):
    __tablename__ = "direct_messages"
    __table_args__ = (
        sa.Index("ix_direct_messages_pair_created", "sender_id", "receiver_id", "created_at"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    sender_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    # Display names are a snapshot taken at send time, never re-synced
    sender_name: str = Field(nullable=False)
    receiver_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    receiver_name: str = Field(nullable=False)
    message: str = Field(nullable=False)
    message_type: str = Field(default="text", nullable=False)  # text | file
    file_url: Optional[str] = None
    seen: bool = Field(default=False, nullable=False)
    created_at: datetime = utc_timestamp()
