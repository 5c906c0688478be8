"""User model."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    username: str = Field(unique=True, index=True, nullable=False)
    email: Optional[str] = Field(default=None, unique=True, index=True)
    password_hash: str = Field(nullable=False)  # bcrypt
    first_name: str = Field(default="", nullable=False)
    last_name: str = Field(default="", nullable=False)
    profile_picture: Optional[str] = None
    # Null until the user creates or joins an organization
    active_org_id: Optional[uuid.UUID] = Field(default=None, foreign_key="organizations.id")

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.username
