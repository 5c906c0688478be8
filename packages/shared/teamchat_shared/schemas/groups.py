from typing import Optional, List
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from .common import GroupRole


class GroupBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    is_private: bool = False
    category: str = Field(default="General", max_length=50)
    group_icon: str = Field(default="", max_length=2048)


class GroupCreate(GroupBase):
    pass


class GroupUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_private: Optional[bool] = None
    category: Optional[str] = Field(default=None, max_length=50)
    group_icon: Optional[str] = Field(default=None, max_length=2048)


class GroupRead(GroupBase):
    id: UUID
    org_id: UUID
    created_by: UUID
    members_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class GroupListResponse(BaseModel):
    data: List[GroupRead]


class GroupMemberAdd(BaseModel):
    user_id: UUID
    role: GroupRole = GroupRole.MEMBER


class GroupMemberRead(BaseModel):
    user_id: UUID
    display_name: str
    profile_picture: Optional[str] = None
    role: GroupRole
    joined_at: datetime


class GroupMemberListResponse(BaseModel):
    data: List[GroupMemberRead]
