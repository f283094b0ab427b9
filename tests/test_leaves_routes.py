from datetime import date, timedelta

import pytest

from app.features.leaves.models import LeaveStatus


LEAD_PERMISSIONS = {
    "leaves": {"view": True, "viewDetails": True, "viewTeamLeaves": True, "updateStatus": True, "create": True},
}


@pytest.fixture
async def org(factory):
    return await factory.organization("Premium")


@pytest.fixture
async def team(factory, org):
    """lead supervises report; report supervises junior; peer sits outside the team."""
    lead_role = await factory.role(org, LEAD_PERMISSIONS, name="Team Lead")
    lead = await factory.user(org, custom_role=lead_role)
    report = await factory.user(org, reports_to=(lead,))
    junior = await factory.user(org, reports_to=(report,))
    peer = await factory.user(org)
    return {"lead": lead, "report": report, "junior": junior, "peer": peer}


def leave_payload(days_from_now=10, length=2, category="casual_leave"):
    start = date.today() + timedelta(days=days_from_now)
    return {
        "category": category,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=length - 1)).isoformat(),
        "reason": "Family function",
    }


async def test_apply_for_leave(client, auth, team, org):
    response = await client.post("/leaves/", json=leave_payload(length=3), headers=auth(team["report"]))
    assert response.status_code == 201
    body = response.json()
    assert body["employee_id"] == team["report"].id
    assert body["organization_id"] == org.id
    assert body["status"] == "pending"
    assert body["days"] == 3


async def test_overlapping_leave_rejected(client, auth, team):
    headers = auth(team["report"])
    assert (await client.post("/leaves/", json=leave_payload(10, 3), headers=headers)).status_code == 201
    response = await client.post("/leaves/", json=leave_payload(12, 2), headers=headers)
    assert response.status_code == 400
    assert (await client.post("/leaves/", json=leave_payload(20, 1), headers=headers)).status_code == 201


async def test_end_before_start_rejected(client, auth, team):
    payload = leave_payload()
    payload["end_date"], payload["start_date"] = payload["start_date"], payload["end_date"]
    response = await client.post("/leaves/", json=payload, headers=auth(team["report"]))
    assert response.status_code == 400


async def test_list_is_scoped_by_visibility(client, auth, factory, org, team):
    leaves = {name: await factory.leave(user) for name, user in team.items()}
    admin = await factory.user(org, role="admin")

    async def visible_ids(user):
        response = await client.get("/leaves/", headers=auth(user))
        assert response.status_code == 200
        return {item["id"] for item in response.json()}

    assert await visible_ids(team["lead"]) == {leaves[n].id for n in ("lead", "report", "junior")}
    assert await visible_ids(team["report"]) == {leaves["report"].id}
    assert await visible_ids(admin) == {leave.id for leave in leaves.values()}


async def test_list_filters_by_status(client, auth, factory, team):
    await factory.leave(team["report"], days_from_now=5)
    approved = await factory.leave(team["report"], days_from_now=30, status=LeaveStatus.APPROVED)
    response = await client.get("/leaves/?status_filter=approved", headers=auth(team["lead"]))
    assert [item["id"] for item in response.json()] == [approved.id]


async def test_detail_outside_visibility_is_not_found(client, auth, factory, team):
    peer_leave = await factory.leave(team["peer"])
    response = await client.get(f"/leaves/{peer_leave.id}", headers=auth(team["lead"]))
    assert response.status_code == 404

    junior_leave = await factory.leave(team["junior"])
    response = await client.get(f"/leaves/{junior_leave.id}", headers=auth(team["lead"]))
    assert response.status_code == 200


async def test_other_organization_is_not_found(client, auth, factory):
    other_org = await factory.organization()
    outsider = await factory.user(other_org, role="admin")
    employee = await factory.user(await factory.organization())
    leave = await factory.leave(employee)
    assert (await client.get(f"/leaves/{leave.id}", headers=auth(outsider))).status_code == 404


async def test_supervisor_approves_direct_report(client, auth, factory, team):
    leave = await factory.leave(team["report"])
    response = await client.patch(
        f"/leaves/{leave.id}/status", json={"status": "approved"}, headers=auth(team["lead"])
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "approved"
    assert body["approved_by_id"] == team["lead"].id
    assert body["approved_at"] is not None


async def test_second_decision_conflicts(client, auth, factory, team):
    leave = await factory.leave(team["report"])
    url = f"/leaves/{leave.id}/status"
    headers = auth(team["lead"])
    assert (await client.patch(url, json={"status": "approved"}, headers=headers)).status_code == 200

    response = await client.patch(url, json={"status": "rejected", "rejection_reason": "Busy"}, headers=headers)
    assert response.status_code == 409


async def test_rejection_keeps_reason(client, auth, factory, org, team):
    admin = await factory.user(org, role="admin")
    leave = await factory.leave(team["peer"])
    response = await client.patch(
        f"/leaves/{leave.id}/status",
        json={"status": "rejected", "rejection_reason": "Quarter end"},
        headers=auth(admin),
    )
    assert response.status_code == 200
    assert response.json()["rejection_reason"] == "Quarter end"


async def test_pending_is_not_a_decision(client, auth, factory, team):
    leave = await factory.leave(team["report"])
    response = await client.patch(
        f"/leaves/{leave.id}/status", json={"status": "pending"}, headers=auth(team["lead"])
    )
    assert response.status_code == 400


async def test_supervisor_cannot_approve_indirect_report(client, auth, factory, team):
    leave = await factory.leave(team["junior"])
    response = await client.patch(
        f"/leaves/{leave.id}/status", json={"status": "approved"}, headers=auth(team["lead"])
    )
    assert response.status_code == 403


async def test_delegated_admin_cannot_approve_own_leave(client, auth, factory, org):
    lead_role = await factory.role(org, LEAD_PERMISSIONS, name="Delegated")
    delegated = await factory.user(org, role="admin", custom_role=lead_role)
    leave = await factory.leave(delegated)
    response = await client.patch(
        f"/leaves/{leave.id}/status", json={"status": "approved"}, headers=auth(delegated)
    )
    assert response.status_code == 403


async def test_admin_may_approve_own_leave(client, auth, factory, org):
    admin = await factory.user(org, role="admin")
    leave = await factory.leave(admin)
    response = await client.patch(
        f"/leaves/{leave.id}/status", json={"status": "approved"}, headers=auth(admin)
    )
    assert response.status_code == 200


async def test_plan_without_approval_feature(client, auth, factory):
    org = await factory.organization("Standard")
    admin = await factory.user(org, role="admin")
    employee = await factory.user(org, reports_to=(admin,))
    leave = await factory.leave(employee)
    response = await client.patch(
        f"/leaves/{leave.id}/status", json={"status": "approved"}, headers=auth(admin)
    )
    assert response.status_code == 403
    assert response.json()["code"] == "FEATURE_NOT_IN_PLAN"
    assert response.json()["reason"] == "PLAN"


async def test_expired_subscription_blocks_leaves(client, auth, factory):
    org = await factory.organization("Premium", expired=True)
    member = await factory.user(org)
    response = await client.post("/leaves/", json=leave_payload(), headers=auth(member))
    assert response.status_code == 403
    assert response.json()["code"] == "SUBSCRIPTION_EXPIRED"


async def test_channel_restriction(client, auth, factory, org):
    web_only = await factory.role(org, LEAD_PERMISSIONS, name="Office", mobile_app_access=False)
    user = await factory.user(org, custom_role=web_only)

    response = await client.get("/leaves/", headers={**auth(user), "X-Client-Channel": "mobile"})
    assert response.status_code == 403
    assert response.json()["code"] == "CHANNEL_ACCESS_DENIED"

    response = await client.get("/leaves/", headers={**auth(user), "X-Client-Channel": "web"})
    assert response.status_code == 200


async def test_listing_needs_a_read_scope(client, auth, factory, org):
    module_only = await factory.role(org, {"leaves": {"view": True}}, name="Module only")
    user = await factory.user(org, custom_role=module_only)
    response = await client.get("/leaves/", headers=auth(user))
    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "NO_ACCESS"
    assert len(body["required_permissions"]) == 3


async def test_listing_needs_module_access(client, auth, factory, org):
    own_only = await factory.role(org, {"leaves": {"viewOwn": True}}, name="Own only")
    user = await factory.user(org, custom_role=own_only)
    response = await client.get("/leaves/", headers=auth(user))
    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "FEATURE_ACCESS_DENIED"
    assert body["reason"] == "ROLE"
    assert body["required_feature"] == {"module": "leaves", "feature": "view"}


async def test_status_change_stops_at_first_missing_feature(client, auth, factory, org):
    approver_only = await factory.role(org, {"leaves": {"updateStatus": True}}, name="Approver only")
    lead = await factory.user(org, custom_role=approver_only)
    report = await factory.user(org, reports_to=(lead,))
    leave = await factory.leave(report)
    response = await client.patch(
        f"/leaves/{leave.id}/status", json={"status": "approved"}, headers=auth(lead)
    )
    assert response.status_code == 403
    body = response.json()
    assert body["reason"] == "ROLE"
    assert body["required_feature"] == {"module": "leaves", "feature": "view"}
