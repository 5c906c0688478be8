"""User-Organization membership (join table)."""

from datetime import datetime
import uuid

from sqlmodel import Field, SQLModel

from .base import utc_timestamp


class UserOrg(SQLModel, table=True):
    __tablename__ = "users_orgs"

    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    org_id: uuid.UUID = Field(foreign_key="organizations.id", primary_key=True, index=True)
    role: str = Field(nullable=False, default="employee")  # admin | manager | employee
    joined_at: datetime = utc_timestamp()
