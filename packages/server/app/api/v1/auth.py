"""
Authentication endpoints.

- Username/email + password registration & login
- Bearer credential issuance
- Logout (credential revocation; open sockets using it are closed)
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, get_authenticated_user, revoke_jwt
from app.core.chat import RealtimeGateway, get_gateway
from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import UpstreamUnavailable
from app.services import users as user_service
from teamchat_shared.schemas.users import LoginRequest, RegisterRequest, TokenResponse

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    body: RegisterRequest,
    session: AsyncSession = Depends(get_session),
):
    """Create an account. With ``organization_name`` the user also founds that org."""
    user = await user_service.register_user(body, session)
    await session.commit()
    return await user_service.issue_token(user, session)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with username or email plus password."""
    user = await user_service.authenticate_credentials(body, session)
    log.info("auth.login_success", user_id=str(user.id))
    return await user_service.issue_token(user, session)


@router.post("/logout")
async def logout(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    """Revoke the presented credential and close sockets opened with it."""
    if auth.jti:
        if settings.cache_enabled:
            try:
                await revoke_jwt(auth.jti)
            except (RedisError, OSError) as exc:
                log.error("auth.revoke_failed", error=repr(exc))
                raise UpstreamUnavailable("credential store unavailable")
        await gateway.close_for_revoked_jwt(auth.jti)
    log.info("auth.logout", user_id=str(auth.user_id))
    return {"message": "Logged out"}
