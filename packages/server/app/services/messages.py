"""
Message service — direct and group messaging.

Write path for every operation:

1. validate preconditions (receiver exists, shared organization, group
   membership) before anything is persisted;
2. persist and commit;
3. clear the cache keys ``INVALIDATION_POLICY`` lists for the entity.

Delivery to live connections is the gateway's job and happens after this
service returns, so a message is always durable before anyone sees it.

Every database call is bounded by ``store_timeout_seconds``; a timeout or a
lost connection surfaces as ``UpstreamUnavailable``.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from sqlalchemy import and_, exists, insert, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.cache import ChatCache, direct_page_key, group_page_key
from app.core.config import get_settings
from app.core.errors import (
    CrossTenantDenied,
    InvalidInput,
    NotGroupMember,
    ReceiverNotFound,
    Unauthorized,
    run_with_timeout,
)
from app.models.direct_message import DirectMessage
from app.models.group_member import GroupMember
from app.models.group_message import GroupMessage, GroupMessageSeen
from app.models.user import User
from app.models.user_org import UserOrg

from teamchat_shared.schemas.common import Pagination
from teamchat_shared.schemas.messages import (
    DirectMessagePage,
    DirectMessageRead,
    DirectMessageSend,
    GroupMessagePage,
    GroupMessageRead,
    GroupMessageSend,
    GroupSeenReceipt,
    SeenReceipt,
)

log = structlog.get_logger()
settings = get_settings()

T = TypeVar("T")


async def _store(awaitable: Awaitable[T]) -> T:
    return await run_with_timeout(awaitable, settings.store_timeout_seconds, "store")


def clamp_page(page: int | None, limit: int | None) -> tuple[int, int]:
    """Normalize paging input: page >= 1, 1 <= limit <= message_page_max."""
    page = max(page or 1, 1)
    limit = limit or settings.message_page_default
    return page, max(1, min(limit, settings.message_page_max))


async def _get_user(session: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await _store(session.execute(select(User).where(User.id == user_id)))
    return result.scalar_one_or_none()


async def share_organization(session: AsyncSession, a: uuid.UUID, b: uuid.UUID) -> bool:
    """True when both users hold a membership in at least one common organization."""
    other = select(UserOrg.org_id).where(UserOrg.user_id == b)
    result = await _store(
        session.execute(
            select(UserOrg.org_id)
            .where(UserOrg.user_id == a, UserOrg.org_id.in_(other))
            .limit(1)
        )
    )
    return result.first() is not None


async def _require_group_member(
    session: AsyncSession, group_id: uuid.UUID, user_id: uuid.UUID
) -> None:
    result = await _store(
        session.execute(
            select(GroupMember.user_id).where(
                GroupMember.group_id == group_id,
                GroupMember.user_id == user_id,
            )
        )
    )
    if result.first() is None:
        raise NotGroupMember()


# ---------------------------------------------------------------------------
# Direct messages
# ---------------------------------------------------------------------------

async def send_direct_message(
    session: AsyncSession,
    cache: ChatCache,
    sender_id: uuid.UUID,
    req: DirectMessageSend,
) -> DirectMessageRead:
    """Persist a direct message from ``sender_id`` to ``req.receiver_id``."""
    if req.receiver_id == sender_id:
        raise InvalidInput("Cannot send a direct message to yourself")

    receiver = await _get_user(session, req.receiver_id)
    if receiver is None:
        raise ReceiverNotFound()
    sender = await _get_user(session, sender_id)
    if sender is None:
        raise Unauthorized("Sender account no longer exists")
    if not await share_organization(session, sender.id, receiver.id):
        raise CrossTenantDenied()

    msg = DirectMessage(
        sender_id=sender.id,
        sender_name=sender.display_name,
        receiver_id=receiver.id,
        receiver_name=receiver.display_name,
        message=req.message,
        message_type=req.message_type.value,
        file_url=req.file_url,
    )
    session.add(msg)
    await _store(session.commit())

    await cache.invalidate("direct_message", sender_id=sender.id, receiver_id=receiver.id)
    log.info(
        "message.direct_sent",
        message_id=str(msg.id),
        sender_id=str(sender.id),
        receiver_id=str(receiver.id),
    )
    return DirectMessageRead.model_validate(msg)


async def mark_direct_seen(
    session: AsyncSession,
    cache: ChatCache,
    receiver_id: uuid.UUID,
    sender_id: uuid.UUID,
) -> SeenReceipt:
    """Mark every unseen message from ``sender_id`` to ``receiver_id`` as seen.

    A single bulk update; repeating it changes nothing.
    """
    stmt = (
        update(DirectMessage)
        .where(
            DirectMessage.sender_id == sender_id,
            DirectMessage.receiver_id == receiver_id,
            DirectMessage.seen.is_(False),
        )
        .values(seen=True)
        .execution_options(synchronize_session=False)
    )
    result = await _store(session.execute(stmt))
    await _store(session.commit())
    updated = result.rowcount or 0

    await cache.invalidate("direct_message", sender_id=sender_id, receiver_id=receiver_id)
    log.info(
        "message.direct_seen",
        sender_id=str(sender_id),
        receiver_id=str(receiver_id),
        updated=updated,
    )
    return SeenReceipt(sender_id=sender_id, receiver_id=receiver_id, updated=updated)


async def get_direct_messages(
    session: AsyncSession,
    cache: ChatCache,
    user_id: uuid.UUID,
    other_id: uuid.UUID,
    page: int | None = None,
    limit: int | None = None,
) -> DirectMessagePage:
    """One page of the conversation between two users, newest first."""
    page, limit = clamp_page(page, limit)
    key = direct_page_key(user_id, other_id, page, limit)

    cached = await cache.get_json(key)
    if cached is not None:
        return DirectMessagePage.model_validate(cached)

    stmt = (
        select(DirectMessage)
        .where(
            or_(
                and_(DirectMessage.sender_id == user_id, DirectMessage.receiver_id == other_id),
                and_(DirectMessage.sender_id == other_id, DirectMessage.receiver_id == user_id),
            )
        )
        .order_by(DirectMessage.created_at.desc(), DirectMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit + 1)
    )
    rows = list((await _store(session.execute(stmt))).scalars().all())

    result = DirectMessagePage(
        data=[DirectMessageRead.model_validate(m) for m in rows[:limit]],
        pagination=Pagination(page=page, limit=limit, has_more=len(rows) > limit),
    )
    await cache.set_json(
        key, result.model_dump(mode="json", by_alias=True), settings.message_cache_ttl_seconds
    )
    return result


# ---------------------------------------------------------------------------
# Group messages
# ---------------------------------------------------------------------------

async def send_group_message(
    session: AsyncSession,
    cache: ChatCache,
    sender_id: uuid.UUID,
    req: GroupMessageSend,
) -> GroupMessageRead:
    """Persist a group message. The sender must be a member of the group."""
    await _require_group_member(session, req.group_id, sender_id)
    sender = await _get_user(session, sender_id)
    if sender is None:
        raise Unauthorized("Sender account no longer exists")

    msg = GroupMessage(
        group_id=req.group_id,
        sender_id=sender.id,
        message=req.message,
        message_type=req.message_type.value,
        file_url=req.file_url,
    )
    session.add(msg)
    await _store(session.commit())

    await cache.invalidate("group_message", group_id=req.group_id)
    log.info(
        "message.group_sent",
        message_id=str(msg.id),
        group_id=str(req.group_id),
        sender_id=str(sender.id),
    )
    return GroupMessageRead(
        id=msg.id,
        group_id=msg.group_id,
        sender_id=sender.id,
        sender_name=sender.display_name,
        profile_picture=sender.profile_picture,
        message=msg.message,
        message_type=msg.message_type,
        file_url=msg.file_url,
        seen_by=[],
        created_at=msg.created_at,
    )


async def mark_group_seen(
    session: AsyncSession,
    cache: ChatCache,
    user_id: uuid.UUID,
    group_id: uuid.UUID,
) -> tuple[GroupSeenReceipt, list[uuid.UUID]]:
    """Add ``user_id`` to the seen set of every group message not yet seen by them.

    Own messages are skipped. Returns the receipt and the distinct senders
    whose messages were newly seen.
    """
    await _require_group_member(session, group_id, user_id)

    already_seen = exists().where(
        GroupMessageSeen.message_id == GroupMessage.id,
        GroupMessageSeen.user_id == user_id,
    )
    unseen = select(GroupMessage.id, GroupMessage.sender_id).where(
        GroupMessage.group_id == group_id,
        GroupMessage.sender_id != user_id,
        ~already_seen,
    )

    for attempt in (1, 2):
        rows = (await _store(session.execute(unseen))).all()
        if not rows:
            break
        try:
            await _store(
                session.execute(
                    insert(GroupMessageSeen),
                    [{"message_id": message_id, "user_id": user_id} for message_id, _ in rows],
                )
            )
            await _store(session.commit())
            break
        except IntegrityError:
            # Another session marked some of the same messages; re-read and retry once
            await session.rollback()
            if attempt == 2:
                raise

    updated = len(rows)
    senders = sorted({sender for _, sender in rows}, key=str)

    if updated:
        await cache.invalidate("group_message", group_id=group_id)
    log.info("message.group_seen", group_id=str(group_id), user_id=str(user_id), updated=updated)
    return GroupSeenReceipt(group_id=group_id, user_id=user_id, updated=updated), senders


async def get_group_messages(
    session: AsyncSession,
    cache: ChatCache,
    user_id: uuid.UUID,
    group_id: uuid.UUID,
    page: int | None = None,
    limit: int | None = None,
) -> GroupMessagePage:
    """One page of a group's history, newest first, with sender details and seen sets."""
    await _require_group_member(session, group_id, user_id)

    page, limit = clamp_page(page, limit)
    key = group_page_key(group_id, page, limit)

    cached = await cache.get_json(key)
    if cached is not None:
        return GroupMessagePage.model_validate(cached)

    stmt = (
        select(GroupMessage, User)
        .join(User, User.id == GroupMessage.sender_id)
        .where(GroupMessage.group_id == group_id)
        .order_by(GroupMessage.created_at.desc(), GroupMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit + 1)
    )
    rows = (await _store(session.execute(stmt))).all()
    has_more = len(rows) > limit
    rows = rows[:limit]

    seen_by: dict[uuid.UUID, list[uuid.UUID]] = {msg.id: [] for msg, _ in rows}
    if seen_by:
        seen_rows = await _store(
            session.execute(
                select(GroupMessageSeen.message_id, GroupMessageSeen.user_id).where(
                    GroupMessageSeen.message_id.in_(list(seen_by))
                )
            )
        )
        for message_id, seen_user in seen_rows.all():
            seen_by[message_id].append(seen_user)

    result = GroupMessagePage(
        data=[
            GroupMessageRead(
                id=msg.id,
                group_id=msg.group_id,
                sender_id=msg.sender_id,
                sender_name=sender.display_name,
                profile_picture=sender.profile_picture,
                message=msg.message,
                message_type=msg.message_type,
                file_url=msg.file_url,
                seen_by=seen_by[msg.id],
                created_at=msg.created_at,
            )
            for msg, sender in rows
        ],
        pagination=Pagination(page=page, limit=limit, has_more=has_more),
    )
    await cache.set_json(
        key, result.model_dump(mode="json", by_alias=True), settings.message_cache_ttl_seconds
    )
    return result
