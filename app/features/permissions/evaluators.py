"""
Plan and role evaluators.

- Plan evaluator: is the capability included in the organization's subscription?
- Role evaluator: does the acting user's role grant the capability?

Both return an AccessDecision and never raise for a denial.
"""
from datetime import datetime
from typing import Any, Optional
import enum

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import Organization
from app.features.permissions.decisions import AccessDecision, DenialCode
from app.features.permissions.defaults import is_system_role, has_default_feature
from app.features.permissions.registry import is_valid_feature
from app.utils import get_logger


log = get_logger(__name__)


class Channel(str, enum.Enum):
    """Client channel a request arrives through."""
    WEB = "web"
    MOBILE = "mobile"


def invalid_feature(module: str, feature_key: str) -> AccessDecision:
    log.error(f"Invalid feature check: {module}.{feature_key}")
    return AccessDecision.deny(
        DenialCode.INVALID_FEATURE_CONFIG,
        "Invalid feature configuration. Please contact support.",
        module=module,
        feature=feature_key,
    )


# ============================================================================
# Organization + plan lookup
# ============================================================================

class OrganizationPlanCache:
    """
    Request-scoped memo of organization lookups (plan loaded with it).

    One instance lives as long as one AccessChecker, so several capability checks
    in the same handler read the organization only once.
    """

    def __init__(self):
        self._organizations: dict[str, Optional[Organization]] = {}

    async def get(self, db: AsyncSession, organization_id: str) -> Optional[Organization]:
        if organization_id not in self._organizations:
            # populate_existing: plan/subscription changes made elsewhere in this session must be seen
            result = await db.execute(
                select(Organization)
                .where(Organization.id == organization_id)
                .execution_options(populate_existing=True)
            )
            self._organizations[organization_id] = result.scalar_one_or_none()
        return self._organizations[organization_id]

    def clear(self) -> None:
        self._organizations.clear()


# ============================================================================
# Plan Evaluator
# ============================================================================

async def check_plan(
    db: AsyncSession,
    organization_id: Optional[str],
    module: str,
    feature_key: str,
    cache: Optional[OrganizationPlanCache] = None,
    now: Optional[datetime] = None
) -> AccessDecision:
    """
    Check if a feature is enabled in an organization's subscription plan.

    Order: organization exists, subscription not expired, plan attached, module
    enabled, feature flag exactly true. An expired subscription denies every
    capability regardless of plan contents.

    Returns:
        AccessDecision; data-layer failures yield PLAN_CHECK_ERROR
    """
    if not is_valid_feature(module, feature_key):
        return invalid_feature(module, feature_key)

    if not organization_id:
        return AccessDecision.deny(
            DenialCode.ORGANIZATION_NOT_FOUND,
            "Organization not found. Please contact support.",
        )

    cache = cache or OrganizationPlanCache()
    try:
        organization = await cache.get(db, organization_id)
    except SQLAlchemyError:
        log.exception(f"Plan check error for organization {organization_id}")
        return AccessDecision.deny(
            DenialCode.PLAN_CHECK_ERROR,
            "Error checking plan features. Please try again.",
        )

    if organization is None:
        return AccessDecision.deny(
            DenialCode.ORGANIZATION_NOT_FOUND,
            "Organization not found. Please contact support.",
        )

    if organization.is_subscription_expired(now):
        return AccessDecision.deny(
            DenialCode.SUBSCRIPTION_EXPIRED,
            "Your subscription has expired. Please renew to continue.",
            subscription_end_date=organization.subscription_end_date.isoformat(),
        )

    plan = organization.subscription_plan
    if plan is None:
        return AccessDecision.deny(
            DenialCode.NO_SUBSCRIPTION_PLAN,
            "No subscription plan found. Please contact support.",
        )

    if not plan.has_module(module):
        return AccessDecision.deny(
            DenialCode.MODULE_NOT_IN_PLAN,
            f"The {module} module is not available in your current plan ({plan.name}).",
            current_plan=plan.name,
            required_module=module,
        )

    if not plan.has_feature(module, feature_key):
        return AccessDecision.deny(
            DenialCode.FEATURE_NOT_IN_PLAN,
            f'The feature "{feature_key}" is not enabled in your current plan ({plan.name}).',
            current_plan=plan.name,
            required_feature={"module": module, "feature": feature_key},
        )

    return AccessDecision.allow()


# ============================================================================
# Role Evaluator
# ============================================================================

def check_role(user: Any, module: str, feature_key: str) -> AccessDecision:
    """
    Check if the user's role grants a feature.

    A custom role, once assigned, fully replaces the built-in defaults of the
    user's base role: a feature it omits is denied even if the base role would
    grant it.
    """
    if is_system_role(user.role):
        return AccessDecision.allow()

    if not is_valid_feature(module, feature_key):
        return invalid_feature(module, feature_key)

    custom_role = getattr(user, "custom_role", None)
    if custom_role is not None:
        if custom_role.is_active and custom_role.has_feature(module, feature_key):
            return AccessDecision.allow()
        message = (
            f'Your custom role does not have permission for "{feature_key}" in {module}.'
            if custom_role.is_active
            else "Your custom role is inactive. Please contact your administrator."
        )
        return AccessDecision.deny(
            DenialCode.FEATURE_ACCESS_DENIED,
            message,
            user_role=user.role,
            has_custom_role=True,
            required_feature={"module": module, "feature": feature_key},
        )

    if has_default_feature(user.role, module, feature_key):
        return AccessDecision.allow()

    return AccessDecision.deny(
        DenialCode.FEATURE_ACCESS_DENIED,
        f'Your role ({user.role}) does not have permission for "{feature_key}" in {module}.',
        user_role=user.role,
        has_custom_role=False,
        required_feature={"module": module, "feature": feature_key},
    )


def check_channel(user: Any, channel: Channel) -> AccessDecision:
    """
    Check whether the user may use a client channel (web portal or mobile app).

    Only custom roles restrict channels; built-in roles may use both.
    """
    custom_role = getattr(user, "custom_role", None)
    if is_system_role(user.role) or custom_role is None:
        return AccessDecision.allow()

    allowed = custom_role.web_portal_access if channel is Channel.WEB else custom_role.mobile_app_access
    if allowed:
        return AccessDecision.allow()

    label = "web portal" if channel is Channel.WEB else "mobile app"
    return AccessDecision.deny(
        DenialCode.CHANNEL_ACCESS_DENIED,
        f"Your role does not allow access through the {label}.",
        channel=channel.value,
        user_role=user.role,
        has_custom_role=True,
    )
