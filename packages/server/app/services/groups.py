"""
Group service — org-scoped group CRUD and membership.

Group membership is the authorization source for group messaging, so every
membership change keeps ``Group.members_count`` in step with the join table.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import or_, select

from app.core.auth import AuthenticatedUser
from app.core.errors import Conflict, Forbidden, GroupNotFound, NotFound, NotGroupMember
from app.models.group import Group
from app.models.group_member import GroupMember
from app.models.group_message import GroupMessage, GroupMessageSeen
from app.models.organization import Organization
from app.models.user import User
from app.models.user_org import UserOrg

from teamchat_shared.schemas.common import GroupRole
from teamchat_shared.schemas.groups import GroupCreate, GroupMemberAdd, GroupUpdate
from teamchat_shared.schemas.organizations import OrgSettings

log = structlog.get_logger()


async def get_membership(
    group_id: uuid.UUID, user_id: uuid.UUID, session: AsyncSession
) -> GroupMember | None:
    result = await session.execute(
        select(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def is_group_member(group_id: uuid.UUID, user_id: uuid.UUID, session: AsyncSession) -> bool:
    return await get_membership(group_id, user_id, session) is not None


async def count_members(group_id: uuid.UUID, session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count()).select_from(GroupMember).where(GroupMember.group_id == group_id)
    )
    return result.scalar_one()


async def get_group(group_id: uuid.UUID, auth: AuthenticatedUser, session: AsyncSession) -> Group:
    """Load a group visible to the caller.

    Groups outside the caller's organizations, and private groups the caller
    is not a member of, are reported as not found.
    """
    result = await session.execute(select(Group).where(Group.id == group_id))
    group = result.scalar_one_or_none()
    if not group or group.org_id not in auth.org_ids:
        raise GroupNotFound()
    if group.is_private and not await is_group_member(group.id, auth.user_id, session):
        raise GroupNotFound()
    return group


async def _ensure_name_free(
    org_id: uuid.UUID, name: str, session: AsyncSession, exclude_id: uuid.UUID | None = None
) -> None:
    stmt = select(Group).where(Group.org_id == org_id, Group.name == name)
    if exclude_id:
        stmt = stmt.where(Group.id != exclude_id)
    if (await session.execute(stmt)).scalar_one_or_none():
        raise Conflict("A group with this name already exists in the organization")


async def _require_group_admin(group: Group, auth: AuthenticatedUser, session: AsyncSession) -> None:
    if auth.role_in(group.org_id) == "admin":
        return
    membership = await get_membership(group.id, auth.user_id, session)
    if not membership or membership.role != GroupRole.ADMIN.value:
        raise Forbidden("Group admin access required")


async def create_group(req: GroupCreate, auth: AuthenticatedUser, session: AsyncSession) -> Group:
    org_id = auth.active_org
    await _ensure_name_free(org_id, req.name, session)

    group = Group(
        org_id=org_id,
        created_by=auth.user_id,
        members_count=1,
        **req.model_dump(),
    )
    session.add(group)
    await session.flush()

    session.add(GroupMember(group_id=group.id, user_id=auth.user_id, role=GroupRole.ADMIN.value))
    await session.flush()

    log.info("group.created", group_id=str(group.id), org_id=str(org_id), name=group.name)
    return group


async def list_groups(auth: AuthenticatedUser, session: AsyncSession) -> list[Group]:
    """Groups in the active org that the caller belongs to, plus all public ones."""
    member_of = select(GroupMember.group_id).where(GroupMember.user_id == auth.user_id)
    result = await session.execute(
        select(Group)
        .where(
            Group.org_id == auth.active_org,
            or_(Group.is_private.is_(False), Group.id.in_(member_of)),
        )
        .order_by(Group.name)
    )
    return list(result.scalars().all())


async def update_group(
    group: Group, req: GroupUpdate, auth: AuthenticatedUser, session: AsyncSession
) -> Group:
    await _require_group_admin(group, auth, session)

    updates = req.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in updates and updates["name"] != group.name:
        await _ensure_name_free(group.org_id, updates["name"], session, exclude_id=group.id)
    for field, value in updates.items():
        setattr(group, field, value)
    session.add(group)
    await session.flush()

    log.info("group.updated", group_id=str(group.id), fields=sorted(updates))
    return group


async def delete_group(group: Group, auth: AuthenticatedUser, session: AsyncSession) -> None:
    """Delete a group with its membership rows, messages and seen sets."""
    await _require_group_admin(group, auth, session)

    message_ids = select(GroupMessage.id).where(GroupMessage.group_id == group.id)
    await session.execute(delete(GroupMessageSeen).where(GroupMessageSeen.message_id.in_(message_ids)))
    await session.execute(delete(GroupMessage).where(GroupMessage.group_id == group.id))
    await session.execute(delete(GroupMember).where(GroupMember.group_id == group.id))
    await session.delete(group)
    await session.flush()
    log.info("group.deleted", group_id=str(group.id))


async def add_member(
    group: Group, req: GroupMemberAdd, auth: AuthenticatedUser, session: AsyncSession
) -> tuple[User, GroupMember]:
    await _require_group_admin(group, auth, session)

    result = await session.execute(
        select(User, UserOrg)
        .join(UserOrg, UserOrg.user_id == User.id)
        .where(User.id == req.user_id, UserOrg.org_id == group.org_id)
    )
    row = result.first()
    if not row:
        raise NotFound("User is not a member of this group's organization")
    user, _ = row

    if req.role == GroupRole.GUEST:
        org = (await session.execute(
            select(Organization).where(Organization.id == group.org_id)
        )).scalar_one()
        if not OrgSettings.model_validate(org.settings or {}).allow_guest_users:
            raise Forbidden("Guest users are not allowed in this organization")

    if await get_membership(group.id, user.id, session):
        raise Conflict("User is already a member of this group")

    membership = GroupMember(group_id=group.id, user_id=user.id, role=req.role.value)
    session.add(membership)
    await session.flush()
    group.members_count = await count_members(group.id, session)
    session.add(group)
    await session.flush()

    log.info("group.member_added", group_id=str(group.id), user_id=str(user.id), role=req.role.value)
    return user, membership


async def remove_member(
    group: Group, user_id: uuid.UUID, auth: AuthenticatedUser, session: AsyncSession
) -> None:
    """Remove a member. Members may always remove themselves."""
    if user_id != auth.user_id:
        await _require_group_admin(group, auth, session)

    membership = await get_membership(group.id, user_id, session)
    if not membership:
        raise NotGroupMember("User is not a member of this group")

    await session.delete(membership)
    await session.flush()
    group.members_count = await count_members(group.id, session)
    session.add(group)
    await session.flush()

    log.info("group.member_removed", group_id=str(group.id), user_id=str(user_id))


async def list_members(group: Group, session: AsyncSession) -> list[dict]:
    result = await session.execute(
        select(User, GroupMember)
        .join(GroupMember, GroupMember.user_id == User.id)
        .where(GroupMember.group_id == group.id)
        .order_by(GroupMember.joined_at)
    )
    return [
        {
            "user_id": user.id,
            "display_name": user.display_name,
            "profile_picture": user.profile_picture,
            "role": gm.role,
            "joined_at": gm.joined_at,
        }
        for user, gm in result.all()
    ]
