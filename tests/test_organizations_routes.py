from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.features.organizations.models import add_months
from app.features.subscriptions.models import PlanTier, SubscriptionPlan
from app.features.users.models import User, user_supervisors


@pytest.fixture
async def operator(factory):
    return await factory.user(role="superadmin")


def test_add_months_clamps_day():
    start = datetime(2024, 8, 31, tzinfo=timezone.utc)
    assert add_months(start, 6) == datetime(2025, 2, 28, tzinfo=timezone.utc)
    assert add_months(start, 12) == datetime(2025, 8, 31, tzinfo=timezone.utc)


async def test_create_organization_with_owner(client, auth, factory, operator, plans):
    owner = await factory.user(name="Owner")
    response = await client.post(
        "/organizations/",
        json={
            "name": "Acme Traders",
            "pan_vat_number": "123456789",
            "subscription_plan_id": plans["Standard"].id,
            "subscription_type": "12months",
            "subscription_start_date": "2026-01-15T00:00:00Z",
            "owner_id": owner.id,
        },
        headers=auth(operator),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["subscription_plan_id"] == plans["Standard"].id
    assert body["subscription_end_date"].startswith("2027-01-15")
    assert body["member_count"] == 1

    me = await client.get("/users/me", headers=auth(owner))
    assert me.json()["role"] == "admin"
    assert me.json()["organization_id"] == body["id"]


async def test_duplicate_pan_rejected(client, auth, factory, operator, plans):
    existing = await factory.organization()
    response = await client.post(
        "/organizations/",
        json={"name": "Copy", "pan_vat_number": existing.pan_vat_number, "subscription_plan_id": plans["Basic"].id},
        headers=auth(operator),
    )
    assert response.status_code == 400


async def test_only_system_users_create_organizations(client, auth, factory, plans):
    admin = await factory.user(await factory.organization(), role="admin")
    response = await client.post(
        "/organizations/",
        json={"name": "Mine", "pan_vat_number": "999", "subscription_plan_id": plans["Basic"].id},
        headers=auth(admin),
    )
    assert response.status_code == 403


async def test_current_subscription(client, auth, factory):
    org = await factory.organization("Basic")
    member = await factory.user(org)
    response = await client.get("/organizations/current/subscription", headers=auth(member))
    assert response.status_code == 200
    body = response.json()
    assert body["plan_name"] == "Basic"
    assert body["is_active"] is True
    assert body["employee_count"] == 1
    assert "analytics" not in body["enabled_modules"]


async def test_member_cannot_read_other_organization(client, auth, factory):
    member = await factory.user(await factory.organization())
    other = await factory.organization()
    assert (await client.get(f"/organizations/{other.id}", headers=auth(member))).status_code == 403


async def test_plan_change_takes_effect_immediately(client, auth, factory, operator, plans):
    org = await factory.organization("Basic")
    admin = await factory.user(org, role="admin")
    check = {"module": "analytics", "feature": "view"}

    response = await client.post("/permissions/check", json=check, headers=auth(admin))
    assert response.json()["code"] == "MODULE_NOT_IN_PLAN"

    response = await client.put(
        f"/organizations/{org.id}/subscription",
        json={"subscription_plan_id": plans["Premium"].id},
        headers=auth(operator),
    )
    assert response.status_code == 200

    response = await client.post("/permissions/check", json=check, headers=auth(admin))
    assert response.json()["allowed"] is True


async def test_renewal_recomputes_end_date(client, auth, factory, operator):
    org = await factory.organization(expired=True)
    admin = await factory.user(org, role="admin")
    check = {"module": "leaves", "feature": "view"}
    assert (await client.post("/permissions/check", json=check, headers=auth(admin))).json()["code"] \
        == "SUBSCRIPTION_EXPIRED"

    response = await client.put(
        f"/organizations/{org.id}/subscription",
        json={"subscription_type": "6months"},
        headers=auth(operator),
    )
    assert response.status_code == 200
    assert (await client.post("/permissions/check", json=check, headers=auth(admin))).json()["allowed"] is True


async def test_employee_limit(client, auth, db, factory):
    tiny = SubscriptionPlan(
        name="Tiny",
        tier=PlanTier.CUSTOM,
        enabled_modules=["settings"],
        module_features={"settings": {"view": True, "manageUsers": True}},
        max_employees=2,
    )
    db.add(tiny)
    await db.commit()
    factory.plans["Tiny"] = tiny

    org = await factory.organization("Tiny")
    admin = await factory.user(org, role="admin")
    await factory.user(org)
    newcomer = await factory.user()

    response = await client.post(
        f"/organizations/{org.id}/members", json={"user_id": newcomer.id}, headers=auth(admin)
    )
    assert response.status_code == 400
    assert "Employee limit" in response.json()["detail"]


async def test_add_member_needs_manage_users(client, auth, factory):
    org = await factory.organization("Premium")
    member = await factory.user(org)
    newcomer = await factory.user()
    response = await client.post(
        f"/organizations/{org.id}/members", json={"user_id": newcomer.id}, headers=auth(member)
    )
    assert response.status_code == 403
    assert response.json()["code"] == "FEATURE_ACCESS_DENIED"


async def test_remove_member_clears_hierarchy(client, auth, factory, session_factory):
    org = await factory.organization("Premium")
    admin = await factory.user(org, role="admin")
    role = await factory.role(org, {"leaves": {"view": True}})
    leaving = await factory.user(org, custom_role=role, reports_to=(admin,))
    await factory.user(org, reports_to=(leaving,))

    response = await client.delete(f"/organizations/{org.id}/members/{leaving.id}", headers=auth(admin))
    assert response.status_code == 204

    async with session_factory() as session:
        user = (await session.execute(select(User).where(User.id == leaving.id))).scalar_one()
        assert user.organization_id is None
        assert user.custom_role_id is None
        edges = (await session.execute(
            select(user_supervisors).where(
                (user_supervisors.c.user_id == leaving.id) | (user_supervisors.c.supervisor_id == leaving.id)
            )
        )).all()
        assert edges == []
