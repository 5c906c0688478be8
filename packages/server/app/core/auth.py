"""
Authentication and Authorization for the team chat server.

Supports:
- Username/email + password accounts (bcrypt)
- JWT bearer credentials with a Redis revocation list
- A single authenticated-identity shape shared by HTTP and WebSocket paths
- Organization role dependencies
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import (
    Forbidden,
    InvalidInput,
    Unauthorized,
    UpstreamUnavailable,
    run_with_timeout,
)
from app.core.redis import get_redis
from app.models.user import User
from app.models.user_org import UserOrg

log = structlog.get_logger()
settings = get_settings()

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    org_ids: list[str],
    active_org: str | None,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "org_ids": org_ids,
        "active_org": active_org,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def extract_bearer(value: str | None) -> str | None:
    """Return the credential from an ``Authorization: Bearer <token>`` value."""
    if not value:
        return None
    scheme, _, credential = value.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_jwt(jti: str, ttl_seconds: int | None = None) -> None:
    """Add a JWT ID to the revocation list in Redis."""
    redis = await get_redis()
    ttl = ttl_seconds or settings.jwt_expire_minutes * 60
    await redis.setex(f"jwt:revoked:{jti}", ttl, "1")


async def is_jwt_revoked(jti: str) -> bool:
    """Check if a JWT ID has been revoked. Fails closed when Redis is unreachable."""
    if not settings.cache_enabled:
        return False
    try:
        redis = await get_redis()
        found = await run_with_timeout(
            redis.exists(f"jwt:revoked:{jti}"), settings.cache_timeout_seconds, "cache"
        )
        return found > 0
    except (RedisError, OSError) as exc:
        log.error("auth.revocation_check_failed", error=repr(exc))
        raise UpstreamUnavailable("credential store unavailable")


# ---------------------------------------------------------------------------
# Authenticated identity
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """The one identity shape every handler receives: id, email, organizations, active org."""

    def __init__(self, user: User, memberships: list[UserOrg], jti: str | None = None):
        self.user = user
        self.user_id = user.id
        self.email = user.email
        self.organizations: list[tuple[uuid.UUID, str]] = [
            (m.org_id, m.role) for m in memberships
        ]
        self.jti = jti
        org_ids = self.org_ids
        if user.active_org_id in org_ids:
            self.active_org = user.active_org_id
        else:
            # Stale or missing active org: fall back to any current membership
            self.active_org = org_ids[0] if org_ids else None

    @property
    def org_ids(self) -> list[uuid.UUID]:
        return [org_id for org_id, _ in self.organizations]

    def role_in(self, org_id: uuid.UUID) -> str | None:
        for member_org, role in self.organizations:
            if member_org == org_id:
                return role
        return None


async def load_identity(
    user_id: uuid.UUID, session: AsyncSession, jti: str | None = None
) -> AuthenticatedUser:
    result = await run_with_timeout(
        session.execute(select(User).where(User.id == user_id)), settings.store_timeout_seconds
    )
    user = result.scalar_one_or_none()
    if not user:
        raise Unauthorized("User not found")

    result = await run_with_timeout(
        session.execute(select(UserOrg).where(UserOrg.user_id == user_id)),
        settings.store_timeout_seconds,
    )
    memberships = list(result.scalars().all())
    return AuthenticatedUser(user, memberships, jti=jti)


async def authenticate_token(token: str, session: AsyncSession) -> AuthenticatedUser:
    """Validate a bearer credential and load the identity it names."""
    try:
        payload = decode_jwt(token)
        user_id = uuid.UUID(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise Unauthorized("Invalid or expired credential")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise Unauthorized("Credential has been revoked")

    return await load_identity(user_id, session, jti=jti)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

async def get_authenticated_user(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
    session: AsyncSession = Depends(get_session),
) -> AuthenticatedUser:
    """Main authentication dependency (Authorization: Bearer <jwt>)."""
    token = extract_bearer(authorization)
    if not token:
        raise Unauthorized()
    auth = await authenticate_token(token, session)
    request.state.auth = auth
    return auth


async def require_active_org(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """The caller must be operating under an organization."""
    if auth.active_org is None:
        raise InvalidInput("No active organization selected")
    return auth


async def require_org_admin(
    auth: AuthenticatedUser = Depends(require_active_org),
) -> AuthenticatedUser:
    """Requires the admin role in the caller's active organization."""
    if auth.role_in(auth.active_org) != "admin":
        raise Forbidden("Organization admin access required")
    return auth
