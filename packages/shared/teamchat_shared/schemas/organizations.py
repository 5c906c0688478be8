"""
Organization-related Pydantic schemas shared between server and clients.

Covers: Org CRUD request/response, OrgSettings, membership management.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from .common import OrgRole


# ---------------------------------------------------------------------------
# Org Settings
# ---------------------------------------------------------------------------

class OrgSettings(BaseModel):
    """Org-level settings document. All fields optional with defaults."""

    allow_guest_users: bool = Field(
        default=False,
        description="Whether group admins may add members with the guest role",
    )
    default_role: OrgRole = Field(
        default=OrgRole.EMPLOYEE,
        description="Role given to members added without an explicit role",
    )

    @model_validator(mode="after")
    def check_default_role(self) -> "OrgSettings":
        if self.default_role == OrgRole.ADMIN:
            raise ValueError("default_role cannot be admin")
        return self


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Organization name (globally unique)")
    industry: str = Field(default="", max_length=100)
    logo: str = Field(default="", max_length=2048)
    settings: OrgSettings = Field(default_factory=OrgSettings)


class OrgMemberAddRequest(BaseModel):
    """Add an existing account to the org, identified by username or email."""
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[OrgRole] = None

    @model_validator(mode="after")
    def check_identifier(self) -> "OrgMemberAddRequest":
        if not self.username and not self.email:
            raise ValueError("username or email is required")
        return self


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    admin_id: uuid.UUID
    industry: str = ""
    logo: str = ""
    settings: OrgSettings
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrgListItem(BaseModel):
    id: uuid.UUID
    name: str
    role: OrgRole  # the requesting user's role in this org
    active: bool = False


class OrgListResponse(BaseModel):
    data: list[OrgListItem]


class OrgMemberItem(BaseModel):
    user_id: uuid.UUID
    username: str
    display_name: str
    email: Optional[str] = None
    role: OrgRole
    joined_at: datetime


class OrgMemberListResponse(BaseModel):
    data: list[OrgMemberItem]
