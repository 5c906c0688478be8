"""Organization model (tenant boundary)."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Organization(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(unique=True, nullable=False, index=True)
    # No FK: users.active_org_id already points the other way
    admin_id: uuid.UUID = Field(nullable=False, index=True)
    industry: str = Field(default="", nullable=False)
    logo: str = Field(default="", nullable=False)
    settings: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
