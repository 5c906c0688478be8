"""
Group message endpoints (members only).

POST   /api/v1/group-messages              — Send
POST   /api/v1/group-messages/mark-seen    — Add caller to the seen set of unseen messages
GET    /api/v1/group-messages/{group_id}   — History page, newest first
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, get_authenticated_user
from app.core.cache import ChatCache, get_cache
from app.core.chat import RealtimeGateway, get_gateway
from app.core.database import get_session
from app.services import messages as message_service
from teamchat_shared.schemas.messages import (
    GroupMessagePage,
    GroupMessageRead,
    GroupMessageSend,
    GroupSeenReceipt,
    MarkGroupSeen,
)

router = APIRouter()


@router.post("", response_model=GroupMessageRead, response_model_by_alias=True, status_code=201)
async def send_group_message(
    body: GroupMessageSend,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    cache: ChatCache = Depends(get_cache),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    msg = await message_service.send_group_message(session, cache, auth.user_id, body)
    await gateway.deliver_group_message(msg)
    return msg


@router.post("/mark-seen", response_model=GroupSeenReceipt, response_model_by_alias=True)
async def mark_seen(
    body: MarkGroupSeen,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    cache: ChatCache = Depends(get_cache),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    receipt, senders = await message_service.mark_group_seen(
        session, cache, auth.user_id, body.group_id
    )
    await gateway.notify_group_seen(receipt, senders)
    return receipt


@router.get("/{group_id}", response_model=GroupMessagePage, response_model_by_alias=True)
async def get_group_messages(
    group_id: uuid.UUID,
    page: Optional[int] = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    cache: ChatCache = Depends(get_cache),
):
    return await message_service.get_group_messages(
        session, cache, auth.user_id, group_id, page=page, limit=limit
    )
