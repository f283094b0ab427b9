import pytest
from sqlalchemy import select

from app.features.users.models import User


@pytest.fixture
async def org(factory):
    return await factory.organization("Premium")


@pytest.fixture
async def admin(factory, org):
    return await factory.user(org, role="admin")


LEAD_PERMISSIONS = {"leaves": {"view": True, "viewTeamLeaves": True, "updateStatus": True}}


async def test_create_role(client, auth, admin, org):
    response = await client.post(
        "/permissions/roles",
        json={"name": "  Team Lead ", "permissions": LEAD_PERMISSIONS, "mobile_app_access": False},
        headers=auth(admin),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Team Lead"
    assert body["organization_id"] == org.id
    assert body["permissions"] == LEAD_PERMISSIONS
    assert body["mobile_app_access"] is False
    assert body["created_by_id"] == admin.id


async def test_duplicate_role_name_conflicts(client, auth, admin):
    payload = {"name": "Team Lead", "permissions": LEAD_PERMISSIONS}
    assert (await client.post("/permissions/roles", json=payload, headers=auth(admin))).status_code == 201
    response = await client.post("/permissions/roles", json=payload, headers=auth(admin))
    assert response.status_code == 409


async def test_role_with_unknown_feature_rejected(client, auth, admin):
    response = await client.post(
        "/permissions/roles",
        json={"name": "Pilot", "permissions": {"leaves": {"fly": True}}},
        headers=auth(admin),
    )
    assert response.status_code == 400
    assert "permissions" in response.json()


async def test_member_cannot_manage_roles(client, auth, factory, org):
    member = await factory.user(org)
    response = await client.get("/permissions/roles", headers=auth(member))
    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "FEATURE_ACCESS_DENIED"
    assert body["reason"] == "ROLE"
    assert body["user_role"] == "member"


async def test_plan_without_settings_module(client, auth, factory):
    org = await factory.organization("Basic")
    admin = await factory.user(org, role="admin")
    response = await client.get("/permissions/roles", headers=auth(admin))
    assert response.status_code == 403
    body = response.json()
    assert body["reason"] == "PLAN"
    assert body["code"] == "MODULE_NOT_IN_PLAN"
    assert body["current_plan"] == "Basic"


async def test_system_user_must_name_organization(client, auth, factory, org):
    operator = await factory.user(role="superadmin")
    assert (await client.get("/permissions/roles", headers=auth(operator))).status_code == 400
    response = await client.get(f"/permissions/roles?organization_id={org.id}", headers=auth(operator))
    assert response.status_code == 200


async def test_default_role_is_immutable(client, auth, factory, admin, org):
    role = await factory.role(org, {"leaves": {"view": True}}, is_default=True)
    response = await client.put(f"/permissions/roles/{role.id}", json={"name": "Renamed"}, headers=auth(admin))
    assert response.status_code == 400
    assert (await client.delete(f"/permissions/roles/{role.id}", headers=auth(admin))).status_code == 400


async def test_update_role(client, auth, factory, admin, org):
    role = await factory.role(org, {"leaves": {"view": True}})
    response = await client.put(
        f"/permissions/roles/{role.id}",
        json={"permissions": LEAD_PERMISSIONS, "is_active": False},
        headers=auth(admin),
    )
    assert response.status_code == 200
    assert response.json()["permissions"] == LEAD_PERMISSIONS
    assert response.json()["is_active"] is False

    listed = await client.get("/permissions/roles", headers=auth(admin))
    assert role.id not in [r["id"] for r in listed.json()]
    listed = await client.get("/permissions/roles?include_inactive=true", headers=auth(admin))
    assert role.id in [r["id"] for r in listed.json()]


async def test_role_in_use_cannot_be_deleted(client, auth, factory, admin, org):
    role = await factory.role(org, LEAD_PERMISSIONS)
    await factory.user(org, custom_role=role)
    response = await client.delete(f"/permissions/roles/{role.id}", headers=auth(admin))
    assert response.status_code == 409

    unused = await factory.role(org, LEAD_PERMISSIONS)
    assert (await client.delete(f"/permissions/roles/{unused.id}", headers=auth(admin))).status_code == 204


async def test_roles_of_other_organizations_are_hidden(client, auth, factory, admin):
    foreign_role = await factory.role(await factory.organization(), LEAD_PERMISSIONS)
    response = await client.get(f"/permissions/roles/{foreign_role.id}", headers=auth(admin))
    assert response.status_code == 404


async def test_assign_and_clear_custom_role(client, auth, factory, admin, org, session_factory):
    role = await factory.role(org, LEAD_PERMISSIONS)
    member = await factory.user(org)

    response = await client.post(
        "/permissions/assignments/user-role",
        json={"user_id": member.id, "role_id": role.id},
        headers=auth(admin),
    )
    assert response.status_code == 200
    assert response.json()["custom_role_id"] == role.id

    check = await client.post(
        "/permissions/check", json={"module": "leaves", "feature": "updateStatus"}, headers=auth(member)
    )
    assert check.json()["allowed"] is True
    # The custom role replaces the member defaults
    check = await client.post(
        "/permissions/check", json={"module": "leaves", "feature": "create"}, headers=auth(member)
    )
    assert check.json()["allowed"] is False
    assert check.json()["reason"] == "ROLE"

    response = await client.delete(f"/permissions/assignments/user-role/{member.id}", headers=auth(admin))
    assert response.status_code == 200
    async with session_factory() as session:
        reloaded = (await session.execute(select(User).where(User.id == member.id))).scalar_one()
        assert reloaded.custom_role_id is None


async def test_inactive_role_cannot_be_assigned(client, auth, factory, admin, org):
    role = await factory.role(org, LEAD_PERMISSIONS, is_active=False)
    member = await factory.user(org)
    response = await client.post(
        "/permissions/assignments/user-role",
        json={"user_id": member.id, "role_id": role.id},
        headers=auth(admin),
    )
    assert response.status_code == 400


async def test_check_invalid_feature(client, auth, admin):
    response = await client.post(
        "/permissions/check", json={"module": "leaves", "feature": "fly"}, headers=auth(admin)
    )
    assert response.status_code == 200
    assert response.json()["code"] == "INVALID_FEATURE_CONFIG"


async def test_my_features(client, auth, factory):
    org = await factory.organization("Basic")
    member = await factory.user(org)
    response = await client.get("/permissions/me", headers=auth(member))
    assert response.status_code == 200
    body = response.json()
    assert body["has_custom_role"] is False
    assert set(body["features"]["leaves"]) == {"view", "viewOwn", "viewDetails", "create"}


async def test_registry_endpoints(client, auth, admin):
    features = (await client.get("/permissions/features", headers=auth(admin))).json()
    assert {"key": "updateStatus", "description": "Approve or reject leave requests"} in features["leaves"]

    modules = {m["module"]: m for m in (await client.get("/permissions/modules", headers=auth(admin))).json()}
    assert modules["leaves"]["approve_feature"] == "updateStatus"
    assert modules["employees"]["view_team_feature"] == "viewTeamEmployees"
    assert modules["analytics"]["view_all_feature"] is None


async def test_audit_log_records_role_changes(client, auth, factory, admin, org):
    await client.post("/permissions/roles", json={"name": "Auditor", "permissions": {}}, headers=auth(admin))
    other_admin = await factory.user(await factory.organization(), role="admin")

    response = await client.get("/permissions/audit-logs", headers=auth(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["action"] == "create"
    assert body["items"][0]["resource_type"] == "role"

    # Admins only see their own organization
    response = await client.get(f"/permissions/audit-logs?organization_id={org.id}", headers=auth(other_admin))
    assert response.json()["total"] == 0
