"""User and authentication schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, EmailStr, Field, UUID4, model_validator

from .common import OrgRole


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    """Create an account, optionally founding a new organization."""
    username: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: Optional[EmailStr] = None
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    organization_name: Optional[str] = Field(default=None, min_length=1, max_length=100)


class LoginRequest(BaseModel):
    """Log in with either a username or an email address."""
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: str

    @model_validator(mode="after")
    def check_identifier(self) -> "LoginRequest":
        if not self.username and not self.email:
            raise ValueError("username or email is required")
        return self


class UserUpdateRequest(BaseModel):
    """Update the caller's own profile."""
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    username: Optional[str] = Field(
        default=None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$"
    )
    profile_picture: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class MembershipItem(BaseModel):
    org_id: UUID4
    role: OrgRole


class UserResponse(BaseModel):
    """Single user profile."""
    id: UUID4
    username: str
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    display_name: str
    profile_picture: Optional[str] = None
    organizations: List[MembershipItem] = []
    active_org: Optional[UUID4] = None
    online: bool = False
    created_at: datetime


class UserListResponse(BaseModel):
    data: List[UserResponse]


class TokenResponse(BaseModel):
    """Bearer credential issued on login/registration."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
