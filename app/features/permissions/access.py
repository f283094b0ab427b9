"""
Composite access checker: the single entry point business routes use.

Access = system role bypass, OR (plan feature enabled AND role feature granted).
"""
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.decisions import AccessDecision, DenialCode, DenialSide
from app.features.permissions.defaults import is_system_role
from app.features.permissions.evaluators import (
    Channel,
    OrganizationPlanCache,
    check_channel,
    check_plan,
    check_role,
    invalid_feature,
)
from app.features.permissions.registry import (
    BASE_VIEW_FEATURE,
    FEATURE_REGISTRY,
    is_valid_feature,
)
from app.utils import get_logger


log = get_logger(__name__)


FeaturePair = tuple[str, str]


def _authentication_required() -> AccessDecision:
    return AccessDecision.deny(
        DenialCode.AUTHENTICATION_REQUIRED,
        "Authentication required.",
    )


class AccessChecker:
    """
    Evaluates capability requirements for one authenticated user.

    Holds a request-scoped organization+plan cache, so create one per request.

    Usage:
        checker = AccessChecker(db, user)
        decision = await checker.check_access("leaves", "updateStatus")
        if not decision:
            ...
    """

    def __init__(
        self,
        db: AsyncSession,
        user: Optional[Any],
        cache: Optional[OrganizationPlanCache] = None,
        now: Optional[datetime] = None
    ):
        self.db = db
        self.user = user
        self.cache = cache or OrganizationPlanCache()
        self.now = now

    @property
    def is_system(self) -> bool:
        return self.user is not None and is_system_role(self.user.role)

    async def _check_pair(self, module: str, feature_key: str) -> AccessDecision:
        """Plan AND role for one pair; assumes an authenticated non-system user."""
        if not is_valid_feature(module, feature_key):
            return invalid_feature(module, feature_key)

        plan_decision = await check_plan(
            self.db, self.user.organization_id, module, feature_key, cache=self.cache, now=self.now
        )
        if not plan_decision:
            return plan_decision.with_reason(DenialSide.PLAN)

        role_decision = check_role(self.user, module, feature_key)
        if not role_decision:
            return role_decision.with_reason(DenialSide.ROLE)

        return AccessDecision.allow()

    async def check_access(self, module: str, feature_key: str) -> AccessDecision:
        """
        Check one (module, feature) pair under both gates.

        Denials report which side failed (``PLAN`` or ``ROLE``) and its code.
        """
        if self.user is None:
            return _authentication_required()
        if self.is_system:
            return AccessDecision.allow()

        decision = await self._check_pair(module, feature_key)
        if not decision:
            log.debug(
                f"User {self.user.id} denied {module}.{feature_key}: "
                f"{decision.reason.value if decision.reason else '-'} {decision.code.value}"
            )
        return decision

    async def has_access(self, module: str, feature_key: str) -> bool:
        return (await self.check_access(module, feature_key)).allowed

    async def check_any_access(self, features: Iterable[FeaturePair]) -> AccessDecision:
        """
        Allowed if at least one pair passes both gates.

        Invalid pairs are skipped; when none of the pairs is registered the
        check fails as INVALID_FEATURE_CONFIG instead of NO_ACCESS.
        """
        if self.user is None:
            return _authentication_required()
        if self.is_system:
            return AccessDecision.allow()

        features = list(features)
        valid_pairs = 0
        for module, feature_key in features:
            if not is_valid_feature(module, feature_key):
                log.error(f"Invalid feature in any-access check: {module}.{feature_key}")
                continue
            valid_pairs += 1
            decision = await self._check_pair(module, feature_key)
            if decision:
                return decision
            if decision.code is DenialCode.PLAN_CHECK_ERROR:
                # The permission system itself is unhealthy; do not report it as NO_ACCESS
                return decision.with_reason(DenialSide.PLAN)

        if not valid_pairs:
            return AccessDecision.deny(
                DenialCode.INVALID_FEATURE_CONFIG,
                "Invalid feature configuration. Please contact support.",
                required_permissions=[{"module": module, "feature": key} for module, key in features],
            )

        return AccessDecision.deny(
            DenialCode.NO_ACCESS,
            "Access denied. You do not have any of the required permissions.",
            required_permissions=[{"module": module, "feature": key} for module, key in features],
        )

    async def check_all_access(self, features: Iterable[FeaturePair]) -> AccessDecision:
        """Allowed only if every pair passes both gates; stops at the first failure."""
        if self.user is None:
            return _authentication_required()
        if self.is_system:
            return AccessDecision.allow()

        for module, feature_key in features:
            decision = await self._check_pair(module, feature_key)
            if not decision:
                return decision
        return AccessDecision.allow()

    async def check_module_access(self, module: str) -> AccessDecision:
        """Coarse check of the module's conventional base-view feature."""
        return await self.check_access(module, BASE_VIEW_FEATURE)

    def check_channel(self, channel: Channel) -> AccessDecision:
        if self.user is None:
            return _authentication_required()
        return check_channel(self.user, channel)

    async def effective_features(self) -> dict[str, list[str]]:
        """
        Every feature the user currently holds under both gates.

        Used by clients to hide UI the user cannot use; routes still check access.
        """
        if self.user is None:
            return {}
        granted: dict[str, list[str]] = {}
        for module, features in FEATURE_REGISTRY.items():
            keys = [key for key in features if await self.has_access(module, key)]
            if keys:
                granted[module] = keys
        return granted
