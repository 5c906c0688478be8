"""
Cache-aside layer for message pages and chat lists.

Reads are best-effort: any Redis error or timeout is treated as a miss and
the caller falls through to the database. Writes and deletes log failures
and never raise, so a durable message write is never reported as failed
because the cache could not be updated.

All invalidation goes through ``INVALIDATION_POLICY`` so every mutation of
an entity type clears the same set of keys.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from uuid import UUID

import structlog
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.redis import get_redis

log = structlog.get_logger()

KEY_PREFIX = "chat"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def chat_list_key(user_id: UUID | str) -> str:
    return f"{KEY_PREFIX}:chatlist:{user_id}"


def _direct_pair(a: UUID | str, b: UUID | str) -> str:
    lo, hi = sorted((str(a), str(b)))
    return f"{lo}:{hi}"


def direct_page_key(a: UUID | str, b: UUID | str, page: int, limit: int) -> str:
    """Page key for a direct conversation; identical for both directions."""
    return f"{KEY_PREFIX}:dm:{_direct_pair(a, b)}:messages:{page}:{limit}"


def direct_page_pattern(a: UUID | str, b: UUID | str) -> str:
    return f"{KEY_PREFIX}:dm:{_direct_pair(a, b)}:messages:*"


def group_page_key(group_id: UUID | str, page: int, limit: int) -> str:
    return f"{KEY_PREFIX}:group:{group_id}:messages:{page}:{limit}"


def group_page_pattern(group_id: UUID | str) -> str:
    return f"{KEY_PREFIX}:group:{group_id}:messages:*"


# Entity type -> keys/patterns to clear after a successful write.
# A new message shifts every page of its conversation, so whole conversations
# are cleared rather than individual pages.
INVALIDATION_POLICY: dict[str, Callable[..., list[str]]] = {
    "direct_message": lambda sender_id, receiver_id: [
        direct_page_pattern(sender_id, receiver_id),
        chat_list_key(sender_id),
        chat_list_key(receiver_id),
    ],
    "group_message": lambda group_id: [
        group_page_pattern(group_id),
    ],
}


class ChatCache:
    """JSON cache over a ``redis.asyncio`` client. ``client=None`` disables caching."""

    def __init__(self, client: Any | None, timeout: float | None = None):
        self._client = client
        self._timeout = timeout if timeout is not None else get_settings().cache_timeout_seconds

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def get_json(self, key: str) -> Any | None:
        if self._client is None:
            return None
        try:
            raw = await asyncio.wait_for(self._client.get(key), timeout=self._timeout)
        except (asyncio.TimeoutError, RedisError, OSError) as exc:
            log.warning("cache.read_failed", key=key, error=repr(exc))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            log.warning("cache.corrupt_entry", key=key)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self._client is None:
            return
        try:
            await asyncio.wait_for(
                self._client.set(key, json.dumps(value), ex=ttl_seconds),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, RedisError, OSError) as exc:
            log.warning("cache.write_failed", key=key, error=repr(exc))

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (SCAN, never KEYS)."""
        client = self._client

        async def _scan_and_delete() -> int:
            keys = [key async for key in client.scan_iter(match=pattern, count=500)]
            if not keys:
                return 0
            return await client.delete(*keys)

        return await asyncio.wait_for(_scan_and_delete(), timeout=self._timeout)

    async def invalidate(self, entity: str, **ids: Any) -> None:
        """Clear all keys the policy lists for ``entity``. Failures are logged only."""
        if self._client is None:
            return
        targets = INVALIDATION_POLICY[entity](**ids)
        for target in targets:
            try:
                if "*" in target:
                    await self.delete_pattern(target)
                else:
                    await asyncio.wait_for(self._client.delete(target), timeout=self._timeout)
            except (asyncio.TimeoutError, RedisError, OSError) as exc:
                log.warning(
                    "cache.invalidation_failed",
                    entity=entity,
                    key=target,
                    error=repr(exc),
                )


async def get_cache() -> ChatCache:
    """FastAPI dependency returning the process cache (pass-through when disabled)."""
    settings = get_settings()
    if not settings.cache_enabled:
        return ChatCache(None)
    return ChatCache(await get_redis(), timeout=settings.cache_timeout_seconds)
