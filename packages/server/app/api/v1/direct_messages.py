"""
Direct message endpoints.

REST sends and mark-seen go through the same message service as the socket
path and are pushed to live connections exactly like a socket send.

POST   /api/v1/direct-messages             — Send
GET    /api/v1/direct-messages/chat-list   — One row per counterparty
POST   /api/v1/direct-messages/mark-seen   — Mark a sender's messages seen
GET    /api/v1/direct-messages/{user_id}   — Conversation page, newest first
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
from app.services import chat_list as chat_list_service
from app.services import messages as message_service
from teamchat_shared.schemas.messages import (
    ChatListResponse,
    DirectMessagePage,
    DirectMessageRead,
    DirectMessageSend,
    MarkDirectSeen,
    SeenReceipt,
)

router = APIRouter()


@router.post("", response_model=DirectMessageRead, response_model_by_alias=True, status_code=201)
async def send_direct_message(
    body: DirectMessageSend,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    cache: ChatCache = Depends(get_cache),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    msg = await message_service.send_direct_message(session, cache, auth.user_id, body)
    await gateway.deliver_direct_message(msg)
    return msg


@router.get("/chat-list", response_model=ChatListResponse, response_model_by_alias=True)
async def get_chat_list(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    cache: ChatCache = Depends(get_cache),
):
    return await chat_list_service.get_chat_list(session, cache, auth.user_id)


@router.post("/mark-seen", response_model=SeenReceipt, response_model_by_alias=True)
async def mark_seen(
    body: MarkDirectSeen,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    cache: ChatCache = Depends(get_cache),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    receipt = await message_service.mark_direct_seen(session, cache, auth.user_id, body.sender_id)
    await gateway.notify_direct_seen(receipt)
    return receipt


@router.get("/{user_id}", response_model=DirectMessagePage, response_model_by_alias=True)
async def get_conversation(
    user_id: uuid.UUID,
    page: Optional[int] = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    cache: ChatCache = Depends(get_cache),
):
    """Messages between the caller and ``user_id``; ``limit`` is capped server-side."""
    return await message_service.get_direct_messages(
        session, cache, auth.user_id, user_id, page=page, limit=limit
    )
