"""
Organization API endpoints.

GET    /api/v1/orgs                     — List orgs for the authenticated user
POST   /api/v1/orgs                     — Create a new org (caller becomes admin)
POST   /api/v1/orgs/{org_id}/switch     — Make an org the caller's active org
GET    /api/v1/orgs/{org_id}/members    — List org members
POST   /api/v1/orgs/{org_id}/members    — Add an existing user (org admin only)
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, get_authenticated_user
from app.core.database import get_session
from app.core.errors import Forbidden
from app.services import organizations as org_service
from teamchat_shared.schemas.organizations import (
    OrgCreateRequest,
    OrgListResponse,
    OrgMemberAddRequest,
    OrgMemberItem,
    OrgMemberListResponse,
    OrgResponse,
)

router = APIRouter()


@router.get("", response_model=OrgListResponse)
async def list_orgs(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    items = await org_service.list_user_orgs(auth, session)
    return OrgListResponse(data=items)


@router.post("", response_model=OrgResponse, status_code=201)
async def create_org(
    body: OrgCreateRequest,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    """Create an organization. The creator becomes its admin and it becomes their active org."""
    org = await org_service.create_org(body, auth.user, session)
    await session.commit()
    return OrgResponse.model_validate(org)


@router.post("/{org_id}/switch", response_model=OrgResponse)
async def switch_org(
    org_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    org = await org_service.switch_active_org(auth, org_id, session)
    await session.commit()
    return OrgResponse.model_validate(org)


@router.get("/{org_id}/members", response_model=OrgMemberListResponse)
async def list_members(
    org_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    if org_id not in auth.org_ids:
        raise Forbidden("You are not a member of this organization")
    items = await org_service.list_members(org_id, session)
    return OrgMemberListResponse(data=items)


@router.post("/{org_id}/members", response_model=OrgMemberItem, status_code=201)
async def add_member(
    org_id: uuid.UUID,
    body: OrgMemberAddRequest,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    session: AsyncSession = Depends(get_session),
):
    """Add an existing user to the org (org admin only)."""
    if auth.role_in(org_id) != "admin":
        raise Forbidden("Organization admin access required")
    org = await org_service.get_org(org_id, session)
    user, membership = await org_service.add_member(org, body, session)
    await session.commit()
    return OrgMemberItem(
        user_id=user.id,
        username=user.username,
        display_name=user.display_name,
        email=user.email,
        role=membership.role,
        joined_at=membership.joined_at,
    )
