"""
User API endpoints.

GET    /api/v1/users/me   — Caller's profile
PATCH  /api/v1/users/me   — Update caller's profile
GET    /api/v1/users      — Members of the active organization, with online status
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, get_authenticated_user, require_active_org
from app.core.chat import RealtimeGateway, get_gateway
from app.core.database import get_session
from app.services import users as user_service
from teamchat_shared.schemas.users import UserListResponse, UserResponse, UserUpdateRequest

router = APIRouter()


@router.get("/me", response_model=UserResponse)
async def get_me(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    online = await gateway.registry.lookup(auth.user_id) is not None
    return user_service.user_info(
        auth.user, auth.organizations, active_org=auth.active_org, online=online
    )


@router.patch("/me", response_model=UserResponse)
async def update_me(
    body: UserUpdateRequest,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    user = await user_service.update_profile(auth, body, session)
    await session.commit()
    return user_service.user_info(user, auth.organizations, active_org=auth.active_org)


@router.get("", response_model=UserListResponse)
async def list_users(
    auth: AuthenticatedUser = Depends(require_active_org),
    session: AsyncSession = Depends(get_session),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    """List all members of the caller's active organization."""
    users = await user_service.list_org_users(auth.active_org, session)
    online = await gateway.registry.snapshot()
    return UserListResponse(
        data=[
            UserResponse(**user_service.user_info(u, [], online=u.id in online))
            for u in users
        ]
    )
