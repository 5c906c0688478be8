"""
Message service tests.

Tests cover:
- Direct send preconditions (receiver exists, shared organization) checked
  before any write
- Display-name snapshots
- Cache invalidation after writes
- Bulk, idempotent mark-seen (direct and group)
- Paged reads: newest first, server-side limit clamp, has_more, cache-aside
- Group membership enforcement
- Upstream timeouts
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from app.core.cache import chat_list_key, direct_page_key, group_page_key
from app.core.errors import (
    CrossTenantDenied,
    InvalidInput,
    NotGroupMember,
    ReceiverNotFound,
    UpstreamUnavailable,
    run_with_timeout,
)
from app.models.direct_message import DirectMessage
from app.models.group_message import GroupMessage, GroupMessageSeen
from app.services import messages as message_service
from teamchat_shared.schemas.messages import DirectMessageSend, GroupMessageSend


@pytest.fixture
async def people(seed):
    alice = await seed.user("alice", first_name="Alice", last_name="Smith")
    bob = await seed.user("bob", first_name="Bob")
    carol = await seed.user("carol")
    acme = await seed.org("Acme", alice)
    await seed.join(bob, acme)
    other = await seed.org("Other", carol)
    return {"alice": alice, "bob": bob, "carol": carol, "acme": acme, "other": other}


async def _count(session, model):
    return len((await session.execute(select(model))).scalars().all())


def _dm(receiver, text="hello", **extra):
    return DirectMessageSend(receiver_id=receiver.id, message=text, **extra)


# ---------------------------------------------------------------------------
# Direct send
# ---------------------------------------------------------------------------

class TestSendDirectMessage:

    @pytest.mark.asyncio
    async def test_persists_with_name_snapshots(self, session, cache, people):
        alice, bob = people["alice"], people["bob"]
        msg = await message_service.send_direct_message(session, cache, alice.id, _dm(bob))

        assert msg.sender_id == alice.id
        assert msg.receiver_id == bob.id
        assert msg.sender_name == "Alice Smith"
        assert msg.receiver_name == "Bob"
        assert msg.seen is False
        assert await _count(session, DirectMessage) == 1

    @pytest.mark.asyncio
    async def test_unknown_receiver_writes_nothing(self, session, cache, people):
        req = DirectMessageSend(receiver_id=uuid.uuid4(), message="hi")
        with pytest.raises(ReceiverNotFound):
            await message_service.send_direct_message(session, cache, people["alice"].id, req)
        assert await _count(session, DirectMessage) == 0

    @pytest.mark.asyncio
    async def test_cross_tenant_send_is_denied(self, session, cache, people):
        with pytest.raises(CrossTenantDenied):
            await message_service.send_direct_message(
                session, cache, people["alice"].id, _dm(people["carol"])
            )
        assert await _count(session, DirectMessage) == 0

    @pytest.mark.asyncio
    async def test_cannot_message_self(self, session, cache, people):
        alice = people["alice"]
        with pytest.raises(InvalidInput):
            await message_service.send_direct_message(session, cache, alice.id, _dm(alice))

    @pytest.mark.asyncio
    async def test_send_invalidates_conversation_and_both_chat_lists(
        self, session, cache, fake_redis, people
    ):
        alice, bob = people["alice"], people["bob"]
        stale = [
            direct_page_key(alice.id, bob.id, 1, 20),
            chat_list_key(alice.id),
            chat_list_key(bob.id),
        ]
        for key in stale:
            await cache.set_json(key, {"stale": True}, 300)

        await message_service.send_direct_message(session, cache, alice.id, _dm(bob))

        for key in stale:
            assert key not in fake_redis.store

    @pytest.mark.asyncio
    async def test_send_succeeds_when_cache_is_down(self, session, cache, fake_redis, people):
        fake_redis.down = True
        msg = await message_service.send_direct_message(
            session, cache, people["alice"].id, _dm(people["bob"])
        )
        assert msg.id is not None
        assert await _count(session, DirectMessage) == 1

    def test_blank_message_rejected_by_schema(self):
        with pytest.raises(ValueError):
            DirectMessageSend(receiver_id=uuid.uuid4(), message="   ")


# ---------------------------------------------------------------------------
# Direct mark-seen
# ---------------------------------------------------------------------------

class TestMarkDirectSeen:

    @pytest.mark.asyncio
    async def test_marks_only_that_senders_messages(self, session, cache, people):
        alice, bob = people["alice"], people["bob"]
        for text in ("one", "two", "three"):
            await message_service.send_direct_message(session, cache, alice.id, _dm(bob, text))
        await message_service.send_direct_message(session, cache, bob.id, _dm(alice, "reply"))

        receipt = await message_service.mark_direct_seen(session, cache, bob.id, alice.id)

        assert receipt.updated == 3
        assert receipt.sender_id == alice.id
        assert receipt.receiver_id == bob.id
        session.expire_all()
        rows = (await session.execute(select(DirectMessage))).scalars().all()
        by_sender = {(m.sender_id, m.seen) for m in rows}
        assert (alice.id, True) in by_sender
        assert (bob.id, False) in by_sender

    @pytest.mark.asyncio
    async def test_is_idempotent(self, session, cache, people):
        alice, bob = people["alice"], people["bob"]
        await message_service.send_direct_message(session, cache, alice.id, _dm(bob))

        first = await message_service.mark_direct_seen(session, cache, bob.id, alice.id)
        second = await message_service.mark_direct_seen(session, cache, bob.id, alice.id)

        assert first.updated == 1
        assert second.updated == 0


# ---------------------------------------------------------------------------
# Direct history
# ---------------------------------------------------------------------------

class TestGetDirectMessages:

    @pytest.fixture
    async def history(self, session, people):
        alice, bob = people["alice"], people["bob"]
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i in range(60):
            sender, receiver = (alice, bob) if i % 2 == 0 else (bob, alice)
            session.add(DirectMessage(
                sender_id=sender.id,
                sender_name=sender.display_name,
                receiver_id=receiver.id,
                receiver_name=receiver.display_name,
                message=f"m{i}",
                created_at=base + timedelta(minutes=i),
            ))
        await session.commit()

    @pytest.mark.asyncio
    async def test_newest_first_with_has_more(self, session, cache, people, history):
        page = await message_service.get_direct_messages(
            session, cache, people["alice"].id, people["bob"].id, page=1, limit=10
        )
        assert [m.message for m in page.data] == [f"m{i}" for i in range(59, 49, -1)]
        assert page.pagination.has_more is True

    @pytest.mark.asyncio
    async def test_last_page(self, session, cache, people, history):
        page = await message_service.get_direct_messages(
            session, cache, people["bob"].id, people["alice"].id, page=3, limit=25
        )
        assert len(page.data) == 10
        assert page.pagination.has_more is False

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, session, cache, people, history):
        page = await message_service.get_direct_messages(
            session, cache, people["alice"].id, people["bob"].id, page=1, limit=500
        )
        assert page.pagination.limit == 50
        assert len(page.data) == 50

    @pytest.mark.asyncio
    async def test_default_limit(self, session, cache, people, history):
        page = await message_service.get_direct_messages(
            session, cache, people["alice"].id, people["bob"].id
        )
        assert page.pagination.page == 1
        assert page.pagination.limit == 20

    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self, session, cache, fake_redis, people, history):
        alice, bob = people["alice"], people["bob"]
        first = await message_service.get_direct_messages(session, cache, alice.id, bob.id, 1, 5)
        assert direct_page_key(alice.id, bob.id, 1, 5) in fake_redis.store

        # Rows written behind the cache's back are not visible until invalidation
        session.add(DirectMessage(
            sender_id=bob.id, sender_name="Bob", receiver_id=alice.id, receiver_name="Alice",
            message="sneaky", created_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        ))
        await session.commit()
        cached = await message_service.get_direct_messages(session, cache, bob.id, alice.id, 1, 5)
        assert cached == first

        await message_service.send_direct_message(session, cache, alice.id, _dm(bob, "fresh"))
        fresh = await message_service.get_direct_messages(session, cache, alice.id, bob.id, 1, 5)
        assert fresh.data[0].message in {"sneaky", "fresh"}
        assert fresh != first

    @pytest.mark.asyncio
    async def test_reads_fall_through_when_cache_is_down(
        self, session, cache, fake_redis, people, history
    ):
        fake_redis.down = True
        page = await message_service.get_direct_messages(
            session, cache, people["alice"].id, people["bob"].id, 1, 10
        )
        assert len(page.data) == 10


# ---------------------------------------------------------------------------
# Group messages
# ---------------------------------------------------------------------------

class TestGroupMessages:

    @pytest.fixture
    async def group(self, seed, people):
        return await seed.group(people["acme"], people["alice"], "general", members=[people["bob"]])

    @pytest.mark.asyncio
    async def test_member_can_send(self, session, cache, people, group):
        alice = people["alice"]
        msg = await message_service.send_group_message(
            session, cache, alice.id, GroupMessageSend(group_id=group.id, message="hi all")
        )
        assert msg.group_id == group.id
        assert msg.sender_name == "Alice Smith"
        assert msg.seen_by == []
        assert await _count(session, GroupMessage) == 1

    @pytest.mark.asyncio
    async def test_non_member_cannot_send(self, session, cache, people, group):
        with pytest.raises(NotGroupMember):
            await message_service.send_group_message(
                session, cache, people["carol"].id,
                GroupMessageSend(group_id=group.id, message="let me in"),
            )
        assert await _count(session, GroupMessage) == 0

    @pytest.mark.asyncio
    async def test_send_invalidates_group_pages(self, session, cache, fake_redis, people, group):
        key = group_page_key(group.id, 1, 20)
        await cache.set_json(key, {"stale": True}, 300)
        await message_service.send_group_message(
            session, cache, people["bob"].id, GroupMessageSend(group_id=group.id, message="x")
        )
        assert key not in fake_redis.store

    @pytest.mark.asyncio
    async def test_mark_seen_skips_own_messages_and_is_idempotent(self, session, cache, people, group):
        alice, bob = people["alice"], people["bob"]
        for text in ("a1", "a2"):
            await message_service.send_group_message(
                session, cache, alice.id, GroupMessageSend(group_id=group.id, message=text)
            )
        await message_service.send_group_message(
            session, cache, bob.id, GroupMessageSend(group_id=group.id, message="b1")
        )

        receipt, senders = await message_service.mark_group_seen(session, cache, bob.id, group.id)
        assert receipt.updated == 2
        assert senders == [alice.id]

        again, senders = await message_service.mark_group_seen(session, cache, bob.id, group.id)
        assert again.updated == 0
        assert senders == []
        assert await _count(session, GroupMessageSeen) == 2

    @pytest.mark.asyncio
    async def test_mark_seen_requires_membership(self, session, cache, people, group):
        with pytest.raises(NotGroupMember):
            await message_service.mark_group_seen(session, cache, people["carol"].id, group.id)

    @pytest.mark.asyncio
    async def test_history_is_enriched_with_sender_and_seen_by(self, session, cache, people, group):
        alice, bob = people["alice"], people["bob"]
        await message_service.send_group_message(
            session, cache, alice.id, GroupMessageSend(group_id=group.id, message="hello")
        )
        await message_service.mark_group_seen(session, cache, bob.id, group.id)

        page = await message_service.get_group_messages(session, cache, bob.id, group.id)

        assert len(page.data) == 1
        item = page.data[0]
        assert item.sender_name == "Alice Smith"
        assert item.seen_by == [bob.id]

    @pytest.mark.asyncio
    async def test_history_requires_membership(self, session, cache, people, group):
        with pytest.raises(NotGroupMember):
            await message_service.get_group_messages(session, cache, people["carol"].id, group.id)


# ---------------------------------------------------------------------------
# Upstream bounds
# ---------------------------------------------------------------------------

class TestRunWithTimeout:

    @pytest.mark.asyncio
    async def test_timeout_becomes_upstream_unavailable(self):
        with pytest.raises(UpstreamUnavailable):
            await run_with_timeout(asyncio.sleep(1), timeout=0.01)

    @pytest.mark.asyncio
    async def test_connection_error_becomes_upstream_unavailable(self):
        async def refuse():
            raise ConnectionRefusedError("db down")

        with pytest.raises(UpstreamUnavailable):
            await run_with_timeout(refuse(), timeout=1)

    @pytest.mark.asyncio
    async def test_value_passes_through(self):
        async def answer():
            return 42

        assert await run_with_timeout(answer(), timeout=1) == 42
