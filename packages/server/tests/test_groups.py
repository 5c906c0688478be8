"""
Group API tests.

Tests cover:
- Create (creator becomes group admin), per-org name uniqueness
- Visibility: public groups and the caller's private groups only
- Membership management: org boundary, guest policy, admin checks
- Member count kept in step with membership changes
- Removing a member evicts their sockets from the room
- Delete
"""

from __future__ import annotations

import json
import uuid

import pytest

from app.models.group import Group
from conftest import frames, make_ws


@pytest.fixture
async def acme(seed):
    alice = await seed.user("alice", first_name="Alice")
    bob = await seed.user("bob", first_name="Bob")
    carol = await seed.user("carol")
    org = await seed.org("Acme", alice)
    await seed.join(bob, org)
    await seed.join(carol, org)
    return {"org": org, "alice": alice, "bob": bob, "carol": carol}


async def _create(client, seed, user, name, **extra):
    return await client.post("/api/v1/groups", json={"name": name, **extra}, headers=seed.headers(user))


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------

class TestCreateGroup:

    @pytest.mark.asyncio
    async def test_creator_becomes_admin(self, client, seed, acme):
        resp = await _create(client, seed, acme["bob"], "design", description="Pixels")

        assert resp.status_code == 201
        group = resp.json()
        assert group["org_id"] == str(acme["org"].id)
        assert group["created_by"] == str(acme["bob"].id)
        assert group["members_count"] == 1
        assert group["category"] == "General"

        members = await client.get(f"/api/v1/groups/{group['id']}/members", headers=seed.headers(acme["bob"]))
        assert [(m["user_id"], m["role"]) for m in members.json()["data"]] == [(str(acme["bob"].id), "admin")]

    @pytest.mark.asyncio
    async def test_duplicate_name_in_org(self, client, seed, acme):
        await _create(client, seed, acme["alice"], "general")
        resp = await _create(client, seed, acme["bob"], "general")

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_same_name_in_another_org(self, client, seed, acme):
        dave = await seed.user("dave")
        await seed.org("Other", dave)

        await _create(client, seed, acme["alice"], "general")
        resp = await _create(client, seed, dave, "general")

        assert resp.status_code == 201

    @pytest.mark.asyncio
    async def test_blank_name(self, client, seed, acme):
        resp = await _create(client, seed, acme["alice"], "")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_INPUT"


class TestVisibility:

    @pytest.mark.asyncio
    async def test_list_public_and_own_private(self, client, seed, acme):
        alice, bob, org = acme["alice"], acme["bob"], acme["org"]
        await seed.group(org, alice, "announcements")
        await seed.group(org, alice, "leads", is_private=True)
        await seed.group(org, alice, "bob-and-alice", is_private=True, members=[bob])

        resp = await client.get("/api/v1/groups", headers=seed.headers(bob))

        assert resp.status_code == 200
        assert [g["name"] for g in resp.json()["data"]] == ["announcements", "bob-and-alice"]

    @pytest.mark.asyncio
    async def test_private_group_hidden_from_non_members(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "leads", is_private=True)

        resp = await client.get(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["bob"]))

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "GROUP_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_group_in_other_org_is_not_found(self, client, seed, acme):
        dave = await seed.user("dave")
        other = await seed.org("Other", dave)
        group = await seed.group(other, dave, "secret")

        resp = await client.get(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["alice"]))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_detail_has_live_member_count(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general", members=[acme["bob"], acme["carol"]])

        resp = await client.get(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["bob"]))
        assert resp.json()["members_count"] == 3


# ---------------------------------------------------------------------------
# Update / delete
# ---------------------------------------------------------------------------

class TestUpdateDelete:

    @pytest.mark.asyncio
    async def test_admin_can_update(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["bob"], "general")

        resp = await client.patch(
            f"/api/v1/groups/{group.id}",
            json={"description": "Everyone", "is_private": True},
            headers=seed.headers(acme["bob"]),
        )

        assert resp.status_code == 200
        assert resp.json()["description"] == "Everyone"
        assert resp.json()["is_private"] is True

    @pytest.mark.asyncio
    async def test_member_cannot_update(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["bob"], "general", members=[acme["carol"]])

        resp = await client.patch(
            f"/api/v1/groups/{group.id}", json={"name": "mine"}, headers=seed.headers(acme["carol"]),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_org_admin_can_update_any_group(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["bob"], "general")

        resp = await client.patch(
            f"/api/v1/groups/{group.id}", json={"name": "renamed"}, headers=seed.headers(acme["alice"]),
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "renamed"

    @pytest.mark.asyncio
    async def test_delete(self, client, seed, session_factory, acme):
        group = await seed.group(acme["org"], acme["alice"], "general", members=[acme["bob"]])
        await client.post(
            "/api/v1/group-messages",
            json={"groupId": str(group.id), "message": "bye"},
            headers=seed.headers(acme["bob"]),
        )

        resp = await client.delete(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["alice"]))
        assert resp.status_code == 204

        async with session_factory() as s:
            assert await s.get(Group, group.id) is None
        resp = await client.get(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["alice"]))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_member_cannot_delete(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["bob"], "general", members=[acme["carol"]])
        resp = await client.delete(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["carol"]))
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

class TestMembership:

    @pytest.mark.asyncio
    async def test_add_member(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general")

        resp = await client.post(
            f"/api/v1/groups/{group.id}/members",
            json={"user_id": str(acme["bob"].id)},
            headers=seed.headers(acme["alice"]),
        )

        assert resp.status_code == 201
        assert resp.json()["role"] == "member"
        assert resp.json()["display_name"] == "Bob"
        detail = await client.get(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["alice"]))
        assert detail.json()["members_count"] == 2

    @pytest.mark.asyncio
    async def test_add_twice_conflicts(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general", members=[acme["bob"]])

        resp = await client.post(
            f"/api/v1/groups/{group.id}/members",
            json={"user_id": str(acme["bob"].id)},
            headers=seed.headers(acme["alice"]),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_user_from_another_org_cannot_be_added(self, client, seed, acme):
        dave = await seed.user("dave")
        await seed.org("Other", dave)
        group = await seed.group(acme["org"], acme["alice"], "general")

        resp = await client.post(
            f"/api/v1/groups/{group.id}/members",
            json={"user_id": str(dave.id)},
            headers=seed.headers(acme["alice"]),
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_guest_role_needs_org_setting(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general")

        resp = await client.post(
            f"/api/v1/groups/{group.id}/members",
            json={"user_id": str(acme["bob"].id), "role": "guest"},
            headers=seed.headers(acme["alice"]),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_guest_role_allowed_by_org_setting(self, client, seed):
        owner = await seed.user("owner")
        guest = await seed.user("guest")
        org = await seed.org("Open", owner, settings={"allow_guest_users": True})
        await seed.join(guest, org)
        group = await seed.group(org, owner, "lobby")

        resp = await client.post(
            f"/api/v1/groups/{group.id}/members",
            json={"user_id": str(guest.id), "role": "guest"},
            headers=seed.headers(owner),
        )
        assert resp.status_code == 201
        assert resp.json()["role"] == "guest"

    @pytest.mark.asyncio
    async def test_plain_member_cannot_add(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general", members=[acme["bob"]])

        resp = await client.post(
            f"/api/v1/groups/{group.id}/members",
            json={"user_id": str(acme["carol"].id)},
            headers=seed.headers(acme["bob"]),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_member_can_leave(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general", members=[acme["bob"]])

        resp = await client.delete(
            f"/api/v1/groups/{group.id}/members/{acme['bob'].id}", headers=seed.headers(acme["bob"]),
        )
        assert resp.status_code == 204

        detail = await client.get(f"/api/v1/groups/{group.id}", headers=seed.headers(acme["alice"]))
        assert detail.json()["members_count"] == 1

    @pytest.mark.asyncio
    async def test_member_cannot_remove_others(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general", members=[acme["bob"], acme["carol"]])

        resp = await client.delete(
            f"/api/v1/groups/{group.id}/members/{acme['carol'].id}", headers=seed.headers(acme["bob"]),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_remove_non_member(self, client, seed, acme):
        group = await seed.group(acme["org"], acme["alice"], "general")

        resp = await client.delete(
            f"/api/v1/groups/{group.id}/members/{uuid.uuid4()}", headers=seed.headers(acme["alice"]),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "NOT_GROUP_MEMBER"

    @pytest.mark.asyncio
    async def test_removed_member_is_evicted_from_room(self, client, gateway, seed, acme):
        alice, bob = acme["alice"], acme["bob"]
        group = await seed.group(acme["org"], alice, "general", members=[bob])
        ws = make_ws()
        conn = await gateway.connect(ws, await seed.identity(bob))
        await gateway.handle_frame(conn, json.dumps({"type": "joinGroup", "groupId": str(group.id)}))

        resp = await client.delete(
            f"/api/v1/groups/{group.id}/members/{bob.id}", headers=seed.headers(alice),
        )

        assert resp.status_code == 204
        assert frames(ws, "removedFromGroup") == [{"type": "removedFromGroup", "groupId": str(group.id)}]
        assert await gateway.room_members(group.id) == set()

        await gateway.handle_frame(conn, json.dumps({"type": "joinGroup", "groupId": str(group.id)}))
        assert frames(ws, "joinGroupError")[0]["code"] == "NOT_GROUP_MEMBER"
