import pytest
from sqlalchemy import select

from app.features.permissions.access import AccessChecker
from app.features.permissions.decisions import AccessEngineError, DenialCode
from app.features.permissions.hierarchy import (
    VisibilityFilter,
    VisibilityScope,
    collect_subordinate_ids,
    load_reporting_edges,
    resolve_visibility_filter,
)
from app.features.users.models import User


# ----------------------------------------------------------------------------
# Subordinate closure
# ----------------------------------------------------------------------------

def test_collect_subordinates_transitively():
    edges = [("r1", "m"), ("r2", "m"), ("r3", "r1"), ("r4", "r3"), ("x", "other")]
    assert collect_subordinate_ids(edges, "m") == {"r1", "r2", "r3", "r4"}
    assert collect_subordinate_ids(edges, "r3") == {"r4"}
    assert collect_subordinate_ids(edges, "r4") == set()


def test_collect_subordinates_multi_parent():
    edges = [("r", "a"), ("r", "b"), ("s", "r")]
    assert collect_subordinate_ids(edges, "a") == {"r", "s"}
    assert collect_subordinate_ids(edges, "b") == {"r", "s"}


def test_collect_subordinates_terminates_on_cycles():
    edges = [("a", "b"), ("b", "c"), ("c", "a"), ("d", "c")]
    assert collect_subordinate_ids(edges, "a") == {"b", "c", "d"}
    assert collect_subordinate_ids([("a", "a")], "a") == set()


# ----------------------------------------------------------------------------
# Visibility filter value
# ----------------------------------------------------------------------------

def test_visibility_filter_allows():
    assert VisibilityFilter.unrestricted().allows("anyone")
    assert VisibilityFilter.self_only("u1").allows("u1")
    assert not VisibilityFilter.self_only("u1").allows("u2")

    team = VisibilityFilter.self_and_subordinates("m", ["r1", "r2"])
    assert team.user_ids == frozenset({"m", "r1", "r2"})
    assert team.to_dict() == {"scope": "self_and_subordinates", "user_ids": ["m", "r1", "r2"]}


async def test_visibility_filter_apply(db, factory):
    org = await factory.organization()
    alice = await factory.user(org, name="Alice")
    await factory.user(org, name="Bob")

    stmt = VisibilityFilter.self_only(alice.id).apply(select(User.name), User.id)
    assert (await db.execute(stmt)).scalars().all() == ["Alice"]

    stmt = VisibilityFilter.unrestricted().apply(select(User.name), User.id)
    assert sorted((await db.execute(stmt)).scalars().all()) == ["Alice", "Bob"]


# ----------------------------------------------------------------------------
# Resolver
# ----------------------------------------------------------------------------

@pytest.fixture
async def team(factory):
    """
    m manages r1 and r2; r3 reports to r1; r4 reports to r3. outsider has no link.
    """
    org = await factory.organization("Premium")
    lead_role = await factory.role(org, {"attendance": {"view": True, "viewTeamAttendance": True}})
    m = await factory.user(org, custom_role=lead_role, name="M")
    r1 = await factory.user(org, reports_to=(m,), name="R1")
    r2 = await factory.user(org, reports_to=(m,), name="R2")
    r3 = await factory.user(org, reports_to=(r1,), name="R3")
    r4 = await factory.user(org, reports_to=(r3,), name="R4")
    outsider = await factory.user(org, name="Outsider")
    return {"org": org, "m": m, "r1": r1, "r2": r2, "r3": r3, "r4": r4, "outsider": outsider}


async def test_team_feature_sees_transitive_subordinates(db, team):
    visibility = await resolve_visibility_filter(AccessChecker(db, team["m"]), "attendance")

    assert visibility.scope is VisibilityScope.SELF_AND_SUBORDINATES
    expected = {team[name].id for name in ("m", "r1", "r2", "r3", "r4")}
    assert visibility.user_ids == expected
    assert not visibility.allows(team["outsider"].id)


async def test_member_sees_only_self(db, team):
    visibility = await resolve_visibility_filter(AccessChecker(db, team["r1"]), "attendance")
    assert visibility == VisibilityFilter.self_only(team["r1"].id)


async def test_master_feature_is_unrestricted(db, factory, team):
    admin = await factory.user(team["org"], role="admin")
    visibility = await resolve_visibility_filter(AccessChecker(db, admin), "attendance")
    assert visibility.is_unrestricted


async def test_system_user_is_unrestricted(db, factory):
    operator = await factory.user(role="developer")
    visibility = await resolve_visibility_filter(AccessChecker(db, operator), "leaves")
    assert visibility.is_unrestricted


async def test_plan_gate_applies_to_visibility(db, factory):
    # Standard has no viewAllLeaves; an admin falls back to the team feature
    org = await factory.organization("Standard")
    admin = await factory.user(org, role="admin")
    report = await factory.user(org, reports_to=(admin,))
    visibility = await resolve_visibility_filter(AccessChecker(db, admin), "leaves")
    assert visibility.scope is VisibilityScope.SELF_AND_SUBORDINATES
    assert visibility.user_ids == {admin.id, report.id}


async def test_expired_subscription_sees_only_self(db, factory):
    org = await factory.organization("Premium", expired=True)
    admin = await factory.user(org, role="admin")
    await factory.user(org, reports_to=(admin,))
    visibility = await resolve_visibility_filter(AccessChecker(db, admin), "leaves")
    assert visibility == VisibilityFilter.self_only(admin.id)


async def test_cycle_in_reporting_graph(db, factory):
    org = await factory.organization("Premium")
    lead_role = await factory.role(org, {"leaves": {"view": True, "viewTeamLeaves": True}})
    a = await factory.user(org, custom_role=lead_role)
    b = await factory.user(org, reports_to=(a,))
    c = await factory.user(org, reports_to=(b,))
    await factory.supervise(a, c)

    visibility = await resolve_visibility_filter(AccessChecker(db, a), "leaves")
    assert visibility.scope is VisibilityScope.SELF_AND_SUBORDINATES
    assert visibility.user_ids == {a.id, b.id, c.id}

    visibility = await resolve_visibility_filter(AccessChecker(db, b), "leaves")
    assert visibility == VisibilityFilter.self_only(b.id)


async def test_reporting_edges_are_scoped_to_organization(db, factory):
    org = await factory.organization()
    other = await factory.organization()
    boss = await factory.user(org)
    report = await factory.user(org, reports_to=(boss,))
    await factory.user(other, reports_to=(boss,))

    assert await load_reporting_edges(db, org.id) == [(report.id, boss.id)]


async def test_unknown_visibility_feature_raises(db, team):
    with pytest.raises(AccessEngineError) as excinfo:
        await resolve_visibility_filter(AccessChecker(db, team["m"]), "attendance", team_feature_key="viewSquad")
    assert excinfo.value.decision.code is DenialCode.INVALID_FEATURE_CONFIG


async def test_unauthenticated_resolution_raises(db):
    with pytest.raises(AccessEngineError) as excinfo:
        await resolve_visibility_filter(AccessChecker(db, None), "leaves")
    assert excinfo.value.decision.code is DenialCode.AUTHENTICATION_REQUIRED
