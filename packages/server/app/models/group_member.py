"""Group membership join record. Drives group message authorization."""

from datetime import datetime
import uuid

from sqlmodel import Field, SQLModel

from .base import utc_timestamp


class GroupMember(SQLModel, table=True):
    __tablename__ = "group_members"

    group_id: uuid.UUID = Field(foreign_key="groups.id", primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True, index=True)
    role: str = Field(nullable=False, default="member")  # admin | member | guest
    joined_at: datetime = utc_timestamp()
