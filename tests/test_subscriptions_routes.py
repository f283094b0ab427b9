import pytest
from sqlalchemy import select

from app.features.subscriptions.models import PlanTier, SubscriptionPlan
from scripts.seed_subscription_plans import seed_subscription_plans


@pytest.fixture
async def operator(factory):
    return await factory.user(role="superadmin")


CUSTOM_PLAN = {
    "name": "Field Team",
    "max_employees": 10,
    "price_amount": "4999",
    "enabled_modules": ["leaves", "attendance"],
    "module_features": {"leaves": {"view": True, "create": True}, "attendance": {"view": True}},
}


async def test_seed_is_idempotent(db, plans):
    assert set(plans) == {"Basic", "Standard", "Premium"}

    premium = plans["Premium"]
    premium.module_features = {}
    await db.commit()

    again = await seed_subscription_plans(db)
    assert again["Premium"].id == premium.id
    assert again["Premium"].module_features["leaves"]["updateStatus"] is True
    count = len((await db.execute(select(SubscriptionPlan))).scalars().all())
    assert count == 3


async def test_members_see_system_plans_cheapest_first(client, auth, factory):
    member = await factory.user(await factory.organization())
    response = await client.get("/subscriptions/", headers=auth(member))
    assert response.status_code == 200
    assert [plan["name"] for plan in response.json()] == ["Basic", "Standard", "Premium"]


async def test_create_custom_plan(client, auth, operator):
    response = await client.post("/subscriptions/", json=CUSTOM_PLAN, headers=auth(operator))
    assert response.status_code == 201
    body = response.json()
    assert body["tier"] == PlanTier.CUSTOM.value
    assert body["is_system_plan"] is False
    assert body["enabled_modules"] == ["attendance", "leaves"]


async def test_custom_plan_features_must_be_enabled(client, auth, operator):
    payload = {**CUSTOM_PLAN, "enabled_modules": ["leaves"]}
    response = await client.post("/subscriptions/", json=payload, headers=auth(operator))
    assert response.status_code == 400


async def test_custom_plan_rejects_unknown_feature(client, auth, operator):
    payload = {**CUSTOM_PLAN, "module_features": {"leaves": {"fly": True}}}
    response = await client.post("/subscriptions/", json=payload, headers=auth(operator))
    assert response.status_code == 400
    assert "module_features" in response.json()


async def test_only_system_users_manage_plans(client, auth, factory):
    admin = await factory.user(await factory.organization(), role="admin")
    assert (await client.post("/subscriptions/", json=CUSTOM_PLAN, headers=auth(admin))).status_code == 403


async def test_plan_update_applies_to_organizations(client, auth, factory, operator, plans):
    org = await factory.organization("Premium")
    admin = await factory.user(org, role="admin")
    check = {"module": "leaves", "feature": "updateStatus"}
    assert (await client.post("/permissions/check", json=check, headers=auth(admin))).json()["allowed"] is True

    features = {module: dict(keys) for module, keys in plans["Premium"].module_features.items()}
    features["leaves"]["updateStatus"] = False
    response = await client.patch(
        f"/subscriptions/{plans['Premium'].id}", json={"module_features": features}, headers=auth(operator)
    )
    assert response.status_code == 200

    response = await client.post("/permissions/check", json=check, headers=auth(admin))
    assert response.json()["code"] == "FEATURE_NOT_IN_PLAN"


async def test_system_plans_cannot_be_deleted(client, auth, operator, plans):
    response = await client.delete(f"/subscriptions/{plans['Basic'].id}", headers=auth(operator))
    assert response.status_code == 400


async def test_plan_in_use_cannot_be_deleted(client, auth, factory, operator):
    created = await client.post("/subscriptions/", json=CUSTOM_PLAN, headers=auth(operator))
    plan_id = created.json()["id"]

    response = await client.put(
        f"/organizations/{(await factory.organization()).id}/subscription",
        json={"subscription_plan_id": plan_id},
        headers=auth(operator),
    )
    assert response.status_code == 200
    assert (await client.delete(f"/subscriptions/{plan_id}", headers=auth(operator))).status_code == 409
