"""
User service — registration, login, profile reads and updates.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import (
    AuthenticatedUser,
    create_jwt,
    hash_password,
    verify_password,
)
from app.core.config import get_settings
from app.core.errors import Conflict, Unauthorized
from app.models.user import User
from app.models.user_org import UserOrg
from app.services import organizations as org_service
from teamchat_shared.schemas.organizations import OrgCreateRequest
from teamchat_shared.schemas.users import (
    LoginRequest,
    RegisterRequest,
    UserUpdateRequest,
)

log = structlog.get_logger()
settings = get_settings()


def user_info(
    user: User,
    memberships: list[UserOrg] | list[tuple[uuid.UUID, str]],
    *,
    active_org: Optional[uuid.UUID] = None,
    online: bool = False,
) -> dict:
    """Build the public profile dict shared by every user-facing response."""
    orgs = [
        {"org_id": m.org_id, "role": m.role} if isinstance(m, UserOrg)
        else {"org_id": m[0], "role": m[1]}
        for m in memberships
    ]
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "display_name": user.display_name,
        "profile_picture": user.profile_picture,
        "organizations": orgs,
        "active_org": active_org if active_org is not None else user.active_org_id,
        "online": online,
        "created_at": user.created_at,
    }


async def _ensure_unique(
    session: AsyncSession,
    username: Optional[str],
    email: Optional[str],
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    if username:
        stmt = select(User).where(User.username == username)
        if exclude_id:
            stmt = stmt.where(User.id != exclude_id)
        if (await session.execute(stmt)).scalar_one_or_none():
            raise Conflict("Username already taken")
    if email:
        stmt = select(User).where(User.email == email)
        if exclude_id:
            stmt = stmt.where(User.id != exclude_id)
        if (await session.execute(stmt)).scalar_one_or_none():
            raise Conflict("Email already registered")


async def register_user(req: RegisterRequest, session: AsyncSession) -> User:
    """Create an account; optionally found an organization and make it active."""
    await _ensure_unique(session, req.username, req.email)

    user = User(
        username=req.username,
        email=req.email,
        password_hash=hash_password(req.password),
        first_name=req.first_name,
        last_name=req.last_name,
    )
    session.add(user)
    await session.flush()

    if req.organization_name:
        await org_service.create_org(OrgCreateRequest(name=req.organization_name), user, session)

    log.info("user.registered", user_id=str(user.id), username=user.username)
    return user


async def authenticate_credentials(req: LoginRequest, session: AsyncSession) -> User:
    if req.username:
        stmt = select(User).where(User.username == req.username)
    else:
        stmt = select(User).where(User.email == req.email)
    user = (await session.execute(stmt)).scalar_one_or_none()
    if not user or not verify_password(req.password, user.password_hash):
        log.info("auth.login_failed", username=req.username, email=req.email)
        raise Unauthorized("Invalid credentials")
    return user


async def issue_token(user: User, session: AsyncSession) -> dict:
    """Issue a bearer credential carrying the user's current org context."""
    result = await session.execute(select(UserOrg).where(UserOrg.user_id == user.id))
    memberships = list(result.scalars().all())
    auth = AuthenticatedUser(user, memberships)
    token, _ = create_jwt(
        user.id,
        [str(org_id) for org_id in auth.org_ids],
        str(auth.active_org) if auth.active_org else None,
    )
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": settings.jwt_expire_minutes * 60,
        "user": user_info(user, memberships, active_org=auth.active_org),
    }


async def update_profile(
    auth: AuthenticatedUser, req: UserUpdateRequest, session: AsyncSession
) -> User:
    user = auth.user
    if req.username is not None and req.username != user.username:
        await _ensure_unique(session, req.username, None, exclude_id=user.id)
        user.username = req.username
    if req.first_name is not None:
        user.first_name = req.first_name
    if req.last_name is not None:
        user.last_name = req.last_name
    if req.profile_picture is not None:
        user.profile_picture = req.profile_picture
    session.add(user)
    await session.flush()

    log.info("user.updated", user_id=str(user.id))
    return user


async def list_org_users(org_id: uuid.UUID, session: AsyncSession) -> list[User]:
    """Every account holding a membership in the org."""
    result = await session.execute(
        select(User)
        .join(UserOrg, UserOrg.user_id == User.id)
        .where(UserOrg.org_id == org_id)
        .order_by(User.username)
    )
    return list(result.scalars().all())
