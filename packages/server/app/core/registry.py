"""
In-process connection registry: user id -> id of their current connection.

At most one connection per user is routable. Registering a new connection
for a user replaces the previous mapping (newest wins); the older
connection stays open but no longer receives routed messages. Unregistering
a connection that has already been superseded leaves the current mapping
alone.

Every operation holds one ``asyncio.Lock``, so concurrent connection tasks
never observe a half-applied update.

The registry is scoped to a single server process.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._by_user: dict[UUID, str] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: UUID, connection_id: str) -> str | None:
        """Map ``user_id`` to ``connection_id``. Returns the replaced connection id, if any."""
        async with self._lock:
            previous = self._by_user.get(user_id)
            self._by_user[user_id] = connection_id
        if previous and previous != connection_id:
            logger.info(
                "Connection replaced: user=%s connection=%s previous=%s",
                user_id, connection_id, previous,
            )
        return previous

    async def lookup(self, user_id: UUID) -> str | None:
        async with self._lock:
            return self._by_user.get(user_id)

    async def unregister(self, connection_id: str) -> UUID | None:
        """Drop the mapping that points at ``connection_id``.

        Returns the user id that went offline, or None when the connection
        was not (or no longer) the current one for its user.
        """
        async with self._lock:
            for user_id, current in self._by_user.items():
                if current == connection_id:
                    del self._by_user[user_id]
                    return user_id
        return None

    async def snapshot(self) -> set[UUID]:
        """User ids that currently have a routable connection."""
        async with self._lock:
            return set(self._by_user)

    async def clear(self) -> None:
        async with self._lock:
            self._by_user.clear()

    def __len__(self) -> int:
        return len(self._by_user)
