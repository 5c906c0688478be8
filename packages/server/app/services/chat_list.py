"""
Chat list aggregation — one inbox row per counterparty.

For the requesting user, every direct message they sent or received is
grouped by the other party. Each group yields the most recent message and
the number of messages from that party the user has not seen yet. Rows are
ordered by the last message time, newest first.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import case, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.cache import ChatCache, chat_list_key
from app.core.config import get_settings
from app.core.errors import run_with_timeout
from app.models.direct_message import DirectMessage
from app.models.user import User

from teamchat_shared.schemas.messages import ChatListItem, ChatListResponse, DirectMessageRead

log = structlog.get_logger()
settings = get_settings()


def _chat_list_query(user_id: uuid.UUID):
    partner = case(
        (DirectMessage.sender_id == user_id, DirectMessage.receiver_id),
        else_=DirectMessage.sender_id,
    )
    unseen = case(
        (
            (DirectMessage.receiver_id == user_id) & DirectMessage.seen.is_(False),
            1,
        ),
        else_=0,
    )
    ranked = (
        select(
            DirectMessage.id.label("id"),
            partner.label("partner_id"),
            func.row_number()
            .over(
                partition_by=partner,
                order_by=(DirectMessage.created_at.desc(), DirectMessage.id.desc()),
            )
            .label("rn"),
            func.sum(unseen).over(partition_by=partner).label("unseen_count"),
        )
        .where(or_(DirectMessage.sender_id == user_id, DirectMessage.receiver_id == user_id))
        .subquery()
    )
    return (
        select(DirectMessage, User, ranked.c.unseen_count)
        .select_from(ranked)
        .join(DirectMessage, DirectMessage.id == ranked.c.id)
        .join(User, User.id == ranked.c.partner_id)
        .where(ranked.c.rn == 1)
        .order_by(DirectMessage.created_at.desc(), DirectMessage.id.desc())
    )


async def get_chat_list(
    session: AsyncSession,
    cache: ChatCache,
    user_id: uuid.UUID,
) -> ChatListResponse:
    key = chat_list_key(user_id)
    cached = await cache.get_json(key)
    if cached is not None:
        return ChatListResponse.model_validate(cached)

    result = await run_with_timeout(
        session.execute(_chat_list_query(user_id)), settings.store_timeout_seconds, "store"
    )
    items = [
        ChatListItem(
            user_id=partner.id,
            username=partner.username,
            display_name=partner.display_name,
            email=partner.email,
            profile_picture=partner.profile_picture,
            last_message=DirectMessageRead.model_validate(msg),
            unseen_count=int(unseen_count or 0),
        )
        for msg, partner, unseen_count in result.all()
    ]
    response = ChatListResponse(data=items)

    await cache.set_json(
        key, response.model_dump(mode="json", by_alias=True), settings.chat_list_cache_ttl_seconds
    )
    log.debug("chat_list.built", user_id=str(user_id), rows=len(items))
    return response
