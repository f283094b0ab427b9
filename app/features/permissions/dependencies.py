"""
FastAPI dependencies for feature-based route protection.

Implements:
- A request-scoped AccessChecker for the authenticated user
- Route guards for single / any / all / module-level capability requirements
- Client channel guard (web portal vs mobile app)
- Visibility filter resolution for list endpoints
- Audit logging helper
"""
from typing import Annotated, Any, Dict, Optional
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions.access import AccessChecker, FeaturePair
from app.features.permissions.decisions import AccessDeniedError
from app.features.permissions.evaluators import Channel
from app.features.permissions.hierarchy import VisibilityFilter, resolve_visibility_filter
from app.features.permissions.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Access checker
# ============================================================================

async def get_access_checker(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)]
) -> AccessChecker:
    """
    One AccessChecker per request; FastAPI caches it, so every guard on the
    route shares its organization+plan cache.
    """
    return AccessChecker(db, current_user)


# ============================================================================
# Route guards
# ============================================================================

def require_access(module: str, feature_key: str):
    """
    FastAPI dependency to require a feature under both the plan and the role.

    Usage:
        @router.patch("/{leave_id}/status")
        async def update_status(
            user: User = Depends(require_access("leaves", "updateStatus"))
        ):
            ...

    Args:
        module: Registry module name
        feature_key: Feature key within the module

    Returns:
        Dependency function that returns the current user if access is allowed

    Raises:
        AccessDeniedError: 403 with the denial reason (PLAN or ROLE) and code
    """
    async def access_dependency(
        checker: Annotated[AccessChecker, Depends(get_access_checker)]
    ) -> User:
        decision = await checker.check_access(module, feature_key)
        if not decision:
            raise AccessDeniedError(decision)
        return checker.user

    return access_dependency


def require_any_access(features: list[FeaturePair]):
    """
    FastAPI dependency to require ANY of the given features.

    Usage:
        @router.get("/reports")
        async def get_reports(
            user: User = Depends(require_any_access([("analytics", "view"), ("dashboard", "viewOrgStats")]))
        ):
            ...
    """
    async def access_dependency(
        checker: Annotated[AccessChecker, Depends(get_access_checker)]
    ) -> User:
        decision = await checker.check_any_access(features)
        if not decision:
            raise AccessDeniedError(decision)
        return checker.user

    return access_dependency


def require_all_access(features: list[FeaturePair]):
    """FastAPI dependency to require ALL of the given features."""
    async def access_dependency(
        checker: Annotated[AccessChecker, Depends(get_access_checker)]
    ) -> User:
        decision = await checker.check_all_access(features)
        if not decision:
            raise AccessDeniedError(decision)
        return checker.user

    return access_dependency


def require_module_access(module: str):
    """FastAPI dependency to require the module's base view feature."""
    async def access_dependency(
        checker: Annotated[AccessChecker, Depends(get_access_checker)]
    ) -> User:
        decision = await checker.check_module_access(module)
        if not decision:
            raise AccessDeniedError(decision)
        return checker.user

    return access_dependency


async def require_channel(
    checker: Annotated[AccessChecker, Depends(get_access_checker)],
    x_client_channel: Annotated[Optional[Channel], Header()] = None
) -> User:
    """
    Enforce the custom role's web portal / mobile app flags.

    Clients declare their channel with the ``X-Client-Channel`` header; requests
    without it are not channel-restricted.
    """
    if x_client_channel is not None:
        decision = checker.check_channel(x_client_channel)
        if not decision:
            raise AccessDeniedError(decision)
    return checker.user


# ============================================================================
# Visibility
# ============================================================================

def get_visibility_filter(
    module: str,
    master_feature_key: Optional[str] = None,
    team_feature_key: Optional[str] = None
):
    """
    FastAPI dependency resolving which owners' records the user may list.

    Usage:
        @router.get("/")
        async def list_leaves(
            visibility: VisibilityFilter = Depends(get_visibility_filter("leaves"))
        ):
            stmt = visibility.apply(select(LeaveRequest), LeaveRequest.employee_id)
    """
    async def visibility_dependency(
        checker: Annotated[AccessChecker, Depends(get_access_checker)]
    ) -> VisibilityFilter:
        return await resolve_visibility_filter(checker, module, master_feature_key, team_feature_key)

    return visibility_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Record an administrative action (role created, role assigned, plan changed, ...).

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "update", "delete", "assign")
        resource_type: Type of resource (e.g., "role", "user", "organization")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )
    db.add(audit_log)
    await db.commit()

    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )
    return audit_log
