"""
Organization service — org creation, active-org switching, membership.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import or_, select

from app.core.auth import AuthenticatedUser
from app.core.errors import Conflict, Forbidden, NotFound
from app.models.organization import Organization
from app.models.user import User
from app.models.user_org import UserOrg

from teamchat_shared.schemas.organizations import (
    OrgCreateRequest,
    OrgMemberAddRequest,
    OrgSettings,
)

log = structlog.get_logger()


async def get_org(org_id: uuid.UUID, session: AsyncSession) -> Organization:
    result = await session.execute(select(Organization).where(Organization.id == org_id))
    org = result.scalar_one_or_none()
    if not org:
        raise NotFound("Organization not found")
    return org


async def create_org(
    req: OrgCreateRequest,
    creator: User,
    session: AsyncSession,
) -> Organization:
    """Create an org, make the creator its admin, and switch them into it."""
    existing = await session.execute(
        select(Organization).where(Organization.name == req.name)
    )
    if existing.scalar_one_or_none():
        raise Conflict("Organization name already taken")

    org = Organization(
        name=req.name,
        admin_id=creator.id,
        industry=req.industry,
        logo=req.logo,
        settings=req.settings.model_dump(mode="json"),
    )
    session.add(org)
    await session.flush()

    session.add(UserOrg(user_id=creator.id, org_id=org.id, role="admin"))
    creator.active_org_id = org.id
    session.add(creator)
    await session.flush()

    log.info("org.created", org_id=str(org.id), name=org.name, creator=str(creator.id))
    return org


async def list_user_orgs(auth: AuthenticatedUser, session: AsyncSession) -> list[dict]:
    """List all orgs the caller belongs to, with their role."""
    result = await session.execute(
        select(Organization, UserOrg.role)
        .join(UserOrg, UserOrg.org_id == Organization.id)
        .where(UserOrg.user_id == auth.user_id)
        .order_by(Organization.name)
    )
    return [
        {
            "id": org.id,
            "name": org.name,
            "role": role,
            "active": org.id == auth.active_org,
        }
        for org, role in result.all()
    ]


async def switch_active_org(
    auth: AuthenticatedUser, org_id: uuid.UUID, session: AsyncSession
) -> Organization:
    if org_id not in auth.org_ids:
        raise Forbidden("You are not a member of this organization")

    org = await get_org(org_id, session)
    user = auth.user
    user.active_org_id = org.id
    session.add(user)
    await session.flush()
    auth.active_org = org.id

    log.info("org.switched", user_id=str(user.id), org_id=str(org.id))
    return org


async def list_members(org_id: uuid.UUID, session: AsyncSession) -> list[dict]:
    result = await session.execute(
        select(User, UserOrg)
        .join(UserOrg, UserOrg.user_id == User.id)
        .where(UserOrg.org_id == org_id)
        .order_by(User.username)
    )
    return [
        {
            "user_id": user.id,
            "username": user.username,
            "display_name": user.display_name,
            "email": user.email,
            "role": uo.role,
            "joined_at": uo.joined_at,
        }
        for user, uo in result.all()
    ]


async def add_member(
    org: Organization,
    req: OrgMemberAddRequest,
    session: AsyncSession,
) -> tuple[User, UserOrg]:
    """Add an existing account to the org (admin action)."""
    conditions = []
    if req.username:
        conditions.append(User.username == req.username)
    if req.email:
        conditions.append(User.email == req.email)
    result = await session.execute(select(User).where(or_(*conditions)))
    user = result.scalars().first()
    if not user:
        raise NotFound("User not found")

    existing = await session.execute(
        select(UserOrg).where(UserOrg.user_id == user.id, UserOrg.org_id == org.id)
    )
    if existing.scalar_one_or_none():
        raise Conflict("User is already a member of this organization")

    settings = OrgSettings.model_validate(org.settings or {})
    role = (req.role or settings.default_role).value
    membership = UserOrg(user_id=user.id, org_id=org.id, role=role)
    session.add(membership)

    if user.active_org_id is None:
        user.active_org_id = org.id
        session.add(user)
    await session.flush()

    log.info("org.member_added", org_id=str(org.id), user_id=str(user.id), role=role)
    return user, membership
