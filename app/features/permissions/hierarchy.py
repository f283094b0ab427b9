"""
Hierarchy-aware visibility and approval.

- resolve_visibility_filter: which owners' records a user may see in a module
- can_approve: whether a user may approve/reject another user's request

The reporting graph (``user_supervisors``) is multi-parent and not guaranteed to
be acyclic, so subordinate closure is an iterative BFS with a visited set.
"""
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Iterable, Optional
import enum

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.access import AccessChecker
from app.features.permissions.decisions import AccessDecision, AccessEngineError, DenialCode
from app.features.permissions.defaults import is_org_admin, is_system_role
from app.features.permissions.registry import is_valid_feature, scope_of
from app.features.users.models import User, user_supervisors
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Visibility filter
# ============================================================================

class VisibilityScope(str, enum.Enum):
    UNRESTRICTED = "unrestricted"
    SELF_AND_SUBORDINATES = "self_and_subordinates"
    SELF_ONLY = "self_only"


@dataclass(frozen=True)
class VisibilityFilter:
    """
    Ownership constraint for record listings.

    ``user_ids`` is empty for UNRESTRICTED, the caller alone for SELF_ONLY and the
    caller plus every transitive subordinate for SELF_AND_SUBORDINATES.
    """
    scope: VisibilityScope
    user_ids: frozenset[str] = frozenset()

    @classmethod
    def unrestricted(cls) -> "VisibilityFilter":
        return cls(VisibilityScope.UNRESTRICTED)

    @classmethod
    def self_only(cls, user_id: str) -> "VisibilityFilter":
        return cls(VisibilityScope.SELF_ONLY, frozenset({user_id}))

    @classmethod
    def self_and_subordinates(cls, user_id: str, subordinate_ids: Iterable[str]) -> "VisibilityFilter":
        return cls(VisibilityScope.SELF_AND_SUBORDINATES, frozenset({user_id, *subordinate_ids}))

    @property
    def is_unrestricted(self) -> bool:
        return self.scope is VisibilityScope.UNRESTRICTED

    def allows(self, owner_id: Optional[str]) -> bool:
        return self.is_unrestricted or owner_id in self.user_ids

    def apply(self, stmt: Select, owner_column: Any) -> Select:
        """Add the ownership predicate to a select statement."""
        if self.is_unrestricted:
            return stmt
        return stmt.where(owner_column.in_(sorted(self.user_ids)))

    def to_dict(self) -> dict[str, Any]:
        return {"scope": self.scope.value, "user_ids": sorted(self.user_ids)}


# ============================================================================
# Reporting graph
# ============================================================================

def collect_subordinate_ids(edges: Iterable[tuple[str, str]], root_id: str) -> set[str]:
    """
    Transitive subordinates of ``root_id``.

    Args:
        edges: ``(user_id, supervisor_id)`` pairs, i.e. user_id reports to supervisor_id
        root_id: User whose subordinates are wanted

    Returns:
        Every user that reports to root_id directly or indirectly, excluding root_id
        itself even when a cycle leads back to it
    """
    reports_of: dict[str, set[str]] = defaultdict(set)
    for user_id, supervisor_id in edges:
        reports_of[supervisor_id].add(user_id)

    visited = {root_id}
    queue = deque([root_id])
    while queue:
        current = queue.popleft()
        for report_id in reports_of.get(current, ()):
            if report_id not in visited:
                visited.add(report_id)
                queue.append(report_id)

    visited.discard(root_id)
    return visited


async def load_reporting_edges(db: AsyncSession, organization_id: str) -> list[tuple[str, str]]:
    """All reporting edges whose reporting user belongs to the organization, in one read."""
    try:
        result = await db.execute(
            select(user_supervisors.c.user_id, user_supervisors.c.supervisor_id)
            .join(User, User.id == user_supervisors.c.user_id)
            .where(User.organization_id == organization_id)
        )
    except SQLAlchemyError:
        log.exception(f"Failed to load reporting edges for organization {organization_id}")
        raise AccessEngineError(AccessDecision.deny(
            DenialCode.PLAN_CHECK_ERROR,
            "Error reading the reporting hierarchy. Please try again.",
        ))
    return [(row.user_id, row.supervisor_id) for row in result]


async def reports_directly_to(db: AsyncSession, user_id: str, supervisor_id: str) -> bool:
    """True when a ``user_id -> supervisor_id`` reporting edge exists."""
    try:
        result = await db.execute(
            select(user_supervisors.c.user_id).where(
                user_supervisors.c.user_id == user_id,
                user_supervisors.c.supervisor_id == supervisor_id,
            ).limit(1)
        )
    except SQLAlchemyError:
        log.exception(f"Failed to read reporting edge {user_id} -> {supervisor_id}")
        raise AccessEngineError(AccessDecision.deny(
            DenialCode.PLAN_CHECK_ERROR,
            "Error reading the reporting hierarchy. Please try again.",
        ))
    return result.first() is not None


# ============================================================================
# Hierarchy Resolver
# ============================================================================

async def _holds(checker: AccessChecker, module: str, feature_key: str) -> bool:
    """Dual-gate check that raises instead of degrading on engine failures."""
    decision = await checker.check_access(module, feature_key)
    if decision.is_engine_failure:
        raise AccessEngineError(decision)
    return decision.allowed


async def resolve_visibility_filter(
    checker: AccessChecker,
    module: str,
    master_feature_key: Optional[str] = None,
    team_feature_key: Optional[str] = None
) -> VisibilityFilter:
    """
    Resolve the records a user may see in a module.

    Precedence (first match wins):
        1. system role -> unrestricted
        2. master "view all" feature under plan AND role -> unrestricted
        3. "view team" feature under plan AND role -> self and transitive subordinates
        4. self only

    Feature keys default to the module's scope conventions.

    Raises:
        AccessEngineError: unknown feature keys or a data-layer failure
    """
    user = checker.user
    if user is None:
        raise AccessEngineError(AccessDecision.deny(
            DenialCode.AUTHENTICATION_REQUIRED, "Authentication required."
        ))

    if is_system_role(user.role):
        return VisibilityFilter.unrestricted()

    scope = scope_of(module)
    master_feature_key = master_feature_key or scope.view_all
    team_feature_key = team_feature_key or scope.view_team

    for key in (master_feature_key, team_feature_key):
        if key is not None and not is_valid_feature(module, key):
            log.error(f"Invalid visibility feature: {module}.{key}")
            raise AccessEngineError(AccessDecision.deny(
                DenialCode.INVALID_FEATURE_CONFIG,
                "Invalid feature configuration. Please contact support.",
                module=module,
                feature=key,
            ))

    if master_feature_key and await _holds(checker, module, master_feature_key):
        return VisibilityFilter.unrestricted()

    if team_feature_key and await _holds(checker, module, team_feature_key):
        edges = await load_reporting_edges(checker.db, user.organization_id)
        subordinates = collect_subordinate_ids(edges, user.id)
        log.debug(f"User {user.id} sees {len(subordinates)} subordinates in {module}")
        return VisibilityFilter.self_and_subordinates(user.id, subordinates)

    return VisibilityFilter.self_only(user.id)


# ============================================================================
# Approval Authorizer
# ============================================================================

def acts_as_admin(user: Any) -> bool:
    """
    True when the user acts under the organization admin base role.

    An admin who has been given a custom role acts under that delegated role.
    """
    return is_org_admin(user.role) and getattr(user, "custom_role", None) is None


async def can_approve(
    checker: AccessChecker,
    approver: Any,
    request_owner: Any,
    module: str
) -> bool:
    """
    Check if ``approver`` may approve or reject a request owned by ``request_owner``.

    Rules:
        1. inactive approver -> False
        2. system role, or organization admin of the owner's organization -> True
        3. owner directly reports to approver AND approver holds the module's
           approval feature under plan AND role -> True
        4. otherwise False

    Approval authority is direct-supervisor only; it is not inherited
    transitively the way visibility is. Self-approval is checked separately with
    ``is_self_approval``.

    Raises:
        AccessEngineError: the module has no approval feature or a data-layer failure
    """
    if not getattr(approver, "is_active", True):
        return False

    if is_system_role(approver.role):
        return True

    same_organization = (
        approver.organization_id is not None
        and approver.organization_id == request_owner.organization_id
    )
    if acts_as_admin(approver) and same_organization:
        return True

    approve_key = scope_of(module).approve
    if approve_key is None:
        log.error(f"Module {module} defines no approval feature")
        raise AccessEngineError(AccessDecision.deny(
            DenialCode.INVALID_FEATURE_CONFIG,
            "Invalid feature configuration. Please contact support.",
            module=module,
        ))

    if not same_organization:
        return False
    if not await reports_directly_to(checker.db, request_owner.id, approver.id):
        return False

    if checker.user is not approver:
        checker = AccessChecker(checker.db, approver, cache=checker.cache, now=checker.now)
    return await _holds(checker, module, approve_key)


def is_self_approval(approver: Any, request_owner: Any, acting_as_admin: Optional[bool] = None) -> bool:
    """
    True when the approver would be approving their own request without authority to do so.

    System identities and users acting under the admin role may self-approve.
    """
    if approver.id != request_owner.id:
        return False
    if is_system_role(approver.role):
        return False
    if acting_as_admin is None:
        acting_as_admin = acts_as_admin(approver)
    return not acting_as_admin
