"""
Group API endpoints (scoped to the caller's active organization).

POST   /api/v1/groups                           — Create a group (creator becomes group admin)
GET    /api/v1/groups                           — Groups the caller belongs to plus public groups
GET    /api/v1/groups/{group_id}                — Group details with live member count
PATCH  /api/v1/groups/{group_id}                — Update (group admin)
DELETE /api/v1/groups/{group_id}                — Delete (group admin)
GET    /api/v1/groups/{group_id}/members        — List members
POST   /api/v1/groups/{group_id}/members        — Add a member (group admin)
DELETE /api/v1/groups/{group_id}/members/{uid}  — Remove a member (group admin or self)
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, get_authenticated_user, require_active_org
from app.core.chat import RealtimeGateway, get_gateway
from app.core.database import get_session
from app.services import groups as group_service
from teamchat_shared.schemas.groups import (
    GroupCreate,
    GroupListResponse,
    GroupMemberAdd,
    GroupMemberListResponse,
    GroupMemberRead,
    GroupRead,
    GroupUpdate,
)

router = APIRouter()


@router.post("", response_model=GroupRead, status_code=201)
async def create_group(
    body: GroupCreate,
    auth: AuthenticatedUser = Depends(require_active_org),
    session: AsyncSession = Depends(get_session),
):
    group = await group_service.create_group(body, auth, session)
    await session.commit()
    return GroupRead.model_validate(group)


@router.get("", response_model=GroupListResponse)
async def list_groups(
    auth: AuthenticatedUser = Depends(require_active_org),
    session: AsyncSession = Depends(get_session),
):
    groups = await group_service.list_groups(auth, session)
    return GroupListResponse(data=[GroupRead.model_validate(g) for g in groups])


@router.get("/{group_id}", response_model=GroupRead)
async def get_group(
    group_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    group = await group_service.get_group(group_id, auth, session)
    read = GroupRead.model_validate(group)
    read.members_count = await group_service.count_members(group.id, session)
    return read


@router.patch("/{group_id}", response_model=GroupRead)
async def update_group(
    group_id: uuid.UUID,
    body: GroupUpdate,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    group = await group_service.get_group(group_id, auth, session)
    group = await group_service.update_group(group, body, auth, session)
    await session.commit()
    return GroupRead.model_validate(group)


@router.delete("/{group_id}", status_code=204)
async def delete_group(
    group_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    group = await group_service.get_group(group_id, auth, session)
    members = await group_service.list_members(group, session)
    await group_service.delete_group(group, auth, session)
    await session.commit()
    for member in members:
        await gateway.evict_user_from_room(group_id, member["user_id"])
    return Response(status_code=204)


@router.get("/{group_id}/members", response_model=GroupMemberListResponse)
async def list_members(
    group_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    group = await group_service.get_group(group_id, auth, session)
    items = await group_service.list_members(group, session)
    return GroupMemberListResponse(data=items)


@router.post("/{group_id}/members", response_model=GroupMemberRead, status_code=201)
async def add_member(
    group_id: uuid.UUID,
    body: GroupMemberAdd,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    group = await group_service.get_group(group_id, auth, session)
    user, membership = await group_service.add_member(group, body, auth, session)
    await session.commit()
    return GroupMemberRead(
        user_id=user.id,
        display_name=user.display_name,
        profile_picture=user.profile_picture,
        role=membership.role,
        joined_at=membership.joined_at,
    )


@router.delete("/{group_id}/members/{user_id}", status_code=204)
async def remove_member(
    group_id: uuid.UUID,
    user_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    """Remove a member; their sockets stop receiving the group's messages."""
    group = await group_service.get_group(group_id, auth, session)
    await group_service.remove_member(group, user_id, auth, session)
    await session.commit()
    await gateway.evict_user_from_room(group_id, user_id)
    return Response(status_code=204)
