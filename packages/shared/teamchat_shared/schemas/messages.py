"""
Direct and group message schemas.

These are the wire format of both the REST message endpoints and the
realtime gateway frames, so field names are camelCase on the wire
(``receiverId``, ``messageType``, ``fileUrl``). Snake-case names are also
accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import ConfigDict, Field, field_validator

from .common import CamelModel, DirectMessageType, GroupMessageType, Pagination


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class DirectMessageSend(CamelModel):
    receiver_id: UUID
    message: str = Field(min_length=1, max_length=10000)
    message_type: DirectMessageType = DirectMessageType.TEXT
    file_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("message")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value


class GroupMessageSend(CamelModel):
    group_id: UUID
    message: str = Field(min_length=1, max_length=10000)
    message_type: GroupMessageType = GroupMessageType.TEXT
    file_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("message")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value


class MarkDirectSeen(CamelModel):
    sender_id: UUID


class MarkGroupSeen(CamelModel):
    group_id: UUID


class GroupRoomRequest(CamelModel):
    group_id: UUID


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class DirectMessageRead(CamelModel):
    """A persisted direct message.

    ``sender_name`` / ``receiver_name`` are snapshots taken at send time and
    are not updated if either user later renames.
    """
    id: UUID
    sender_id: UUID
    sender_name: str
    receiver_id: UUID
    receiver_name: str
    message: str
    message_type: DirectMessageType
    file_url: Optional[str] = None
    seen: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GroupMessageRead(CamelModel):
    id: UUID
    group_id: UUID
    sender_id: UUID
    sender_name: Optional[str] = None
    profile_picture: Optional[str] = None
    message: str
    message_type: GroupMessageType
    file_url: Optional[str] = None
    seen_by: List[UUID] = []
    created_at: datetime


class DirectMessagePage(CamelModel):
    data: List[DirectMessageRead]
    pagination: Pagination


class GroupMessagePage(CamelModel):
    data: List[GroupMessageRead]
    pagination: Pagination


class SeenReceipt(CamelModel):
    """Aggregate notification sent to the original sender after mark-seen."""
    sender_id: UUID
    receiver_id: UUID
    updated: int = 0


class GroupSeenReceipt(CamelModel):
    group_id: UUID
    user_id: UUID
    updated: int = 0


class ChatListItem(CamelModel):
    """One inbox row per counterparty."""
    user_id: UUID
    username: str
    display_name: str
    email: Optional[str] = None
    profile_picture: Optional[str] = None
    last_message: DirectMessageRead
    unseen_count: int = 0


class ChatListResponse(CamelModel):
    data: List[ChatListItem]
