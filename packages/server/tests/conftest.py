"""
Shared fixtures: in-memory SQLite database, in-process Redis double,
a gateway wired to the test database, and an HTTP client.
"""

from __future__ import annotations

import fnmatch
import json
import os
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("CHAT_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CHAT_SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("CHAT_BCRYPT_ROUNDS", "4")
os.environ.setdefault("CHAT_LOG_FORMAT", "text")
os.environ.setdefault("CHAT_LOG_LEVEL", "warning")

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.core.redis as redis_module
from app.core.auth import create_jwt, hash_password, load_identity
from app.core.cache import ChatCache
from app.core.chat import RealtimeGateway
from app.core.database import get_session
from app.main import create_app
from app.models.group import Group
from app.models.group_member import GroupMember
from app.models.organization import Organization
from app.models.user import User
from app.models.user_org import UserOrg


# ---------------------------------------------------------------------------
# Redis double
# ---------------------------------------------------------------------------

class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the cache and revocation list."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("redis is down")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def setex(self, key, ttl, value):
        return await self.set(key, value, ex=ttl)

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def exists(self, *keys):
        self._check()
        return sum(1 for key in keys if key in self.store)

    async def scan_iter(self, match=None, count=None):
        self._check()
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        pass


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_module, "_redis_client", fake)
    return fake


@pytest.fixture
def cache(fake_redis):
    return ChatCache(fake_redis, timeout=1.0)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


def _transactional(session_factory):
    @asynccontextmanager
    async def factory():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    return factory


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

class Seeder:
    """Creates committed rows and credentials for tests."""

    def __init__(self, session_factory):
        self._factory = session_factory
        self._password_hash = hash_password("password123")

    async def _save(self, *rows):
        async with self._factory() as s:
            for row in rows:
                s.add(row)
            await s.commit()

    async def user(self, username, *, first_name="", last_name="", email=None, profile_picture=None):
        user = User(
            username=username,
            email=email,
            password_hash=self._password_hash,
            first_name=first_name,
            last_name=last_name,
            profile_picture=profile_picture,
        )
        await self._save(user)
        return user

    async def org(self, name, admin: User, *, settings=None):
        org = Organization(name=name, admin_id=admin.id, settings=settings or {})
        await self._save(org)
        await self.join(admin, org, role="admin")
        return org

    async def join(self, user: User, org: Organization, role="employee"):
        async with self._factory() as s:
            s.add(UserOrg(user_id=user.id, org_id=org.id, role=role))
            if user.active_org_id is None:
                user.active_org_id = org.id
                s.add(user)
            await s.commit()

    async def group(self, org: Organization, creator: User, name="general", *, is_private=False, members=()):
        group = Group(org_id=org.id, name=name, created_by=creator.id, is_private=is_private)
        await self._save(group)
        await self.add_to_group(group, creator, role="admin")
        for member in members:
            await self.add_to_group(group, member)
        return group

    async def add_to_group(self, group: Group, user: User, role="member"):
        async with self._factory() as s:
            s.add(GroupMember(group_id=group.id, user_id=user.id, role=role))
            await s.commit()

    async def identity(self, user: User, jti=None):
        async with self._factory() as s:
            return await load_identity(user.id, s, jti=jti)

    def token(self, user: User) -> str:
        token, _ = create_jwt(user.id, [], str(user.active_org_id) if user.active_org_id else None)
        return token

    def headers(self, user: User) -> dict:
        return {"Authorization": f"Bearer {self.token(user)}"}


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


# ---------------------------------------------------------------------------
# Gateway and application
# ---------------------------------------------------------------------------

@pytest.fixture
def gateway(session_factory, fake_redis):
    async def cache_factory():
        return ChatCache(fake_redis, timeout=1.0)

    return RealtimeGateway(
        session_factory=_transactional(session_factory),
        cache_factory=cache_factory,
    )


@pytest.fixture
def chat_app(gateway, session_factory, fake_redis):
    application = create_app(gateway=gateway)
    transactional = _transactional(session_factory)

    async def override_session():
        async with transactional() as s:
            yield s

    application.dependency_overrides[get_session] = override_session
    return application


@pytest.fixture
async def client(chat_app):
    async with AsyncClient(transport=ASGITransport(app=chat_app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# WebSocket doubles
# ---------------------------------------------------------------------------

def make_ws():
    """A mock WebSocket recording every frame sent to it."""
    ws = MagicMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    ws.close = AsyncMock()
    ws.headers = {}
    return ws


def frames(ws, frame_type=None):
    sent = [json.loads(call.args[0]) for call in ws.send_text.call_args_list]
    if frame_type is None:
        return sent
    return [f for f in sent if f["type"] == frame_type]


@pytest.fixture
def ws_factory():
    return make_ws


@pytest.fixture
def sent_frames():
    return frames
