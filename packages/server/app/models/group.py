"""Group (organization-scoped channel) model."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Group(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "groups"
    __table_args__ = (
        sa.UniqueConstraint("org_id", "name", name="uq_groups_org_name"),
    )

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    description: str = Field(default="", nullable=False)
    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    is_private: bool = Field(default=False, nullable=False)
    category: str = Field(default="General", nullable=False)
    group_icon: str = Field(default="", nullable=False)
    # Denormalized; kept in step by the membership service, reads use a live count
    members_count: int = Field(default=1, nullable=False)
