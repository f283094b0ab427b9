"""
Permission management API routes.

Provides endpoints for custom role administration, role assignment, the feature
registry and self-service access introspection.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User
from app.features.permissions.access import AccessChecker
from app.features.permissions.defaults import create_empty_permissions, is_system_role
from app.features.permissions.models import Role, AuditLog
from app.features.permissions.registry import FEATURE_REGISTRY, feature_description, scope_of
from app.features.permissions.schemas import (
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    AssignRoleToUser,
    UserRoleResponse,
    FeatureResponse,
    ModuleResponse,
    AccessCheckRequest,
    AccessCheckResponse,
    EffectiveFeaturesResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from app.features.permissions.dependencies import (
    get_access_checker,
    require_access,
    create_audit_log,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

require_manage_roles = require_access("settings", "manageRoles")


def resolve_organization_id(user: User, organization_id: Optional[str]) -> str:
    """
    Organization an administrative request acts on.

    Organization users always act on their own organization; system users must
    name one explicitly.
    """
    if is_system_role(user.role):
        if not organization_id:
            raise HTTPException(status_code=400, detail="organization_id is required for system users")
        return organization_id
    if not user.organization_id:
        raise HTTPException(status_code=400, detail="User does not belong to an organization")
    return user.organization_id


async def get_role_or_404(db: AsyncSession, role_id: str, organization_id: str) -> Role:
    result = await db.execute(
        select(Role).where(Role.id == role_id, Role.organization_id == organization_id)
    )
    role = result.scalar_one_or_none()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


async def get_org_user_or_404(db: AsyncSession, user_id: str, organization_id: str) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id, User.organization_id == organization_id)
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found in organization")
    return user


def client_info(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ============================================================================
# Custom Role Routes
# ============================================================================

@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    organization_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage_roles)
):
    """Create a custom role for the organization."""
    org_id = resolve_organization_id(current_user, organization_id)
    role_data = role.model_dump()
    if not role_data["permissions"]:
        # New roles start with every feature explicitly disabled
        role_data["permissions"] = create_empty_permissions()
    db_role = Role(
        organization_id=org_id,
        created_by_id=current_user.id,
        **role_data
    )
    db.add(db_role)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A role named '{role.name}' already exists in this organization"
        )
    await db.refresh(db_role)

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="create",
        resource_type="role",
        resource_id=db_role.id,
        organization_id=org_id,
        details={"name": db_role.name},
        **client_info(request)
    )
    return db_role


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    organization_id: Optional[str] = None,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage_roles)
):
    """List the organization's custom roles."""
    org_id = resolve_organization_id(current_user, organization_id)
    stmt = select(Role).where(Role.organization_id == org_id)
    if not include_inactive:
        stmt = stmt.where(Role.is_active.is_(True))
    result = await db.execute(stmt.order_by(Role.name))
    return result.scalars().all()


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    organization_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage_roles)
):
    """Get a custom role by ID."""
    org_id = resolve_organization_id(current_user, organization_id)
    return await get_role_or_404(db, role_id, org_id)


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    request: Request,
    organization_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage_roles)
):
    """Update a custom role. Default roles cannot be edited."""
    org_id = resolve_organization_id(current_user, organization_id)
    db_role = await get_role_or_404(db, role_id, org_id)

    if db_role.is_default:
        raise HTTPException(status_code=400, detail="Default roles cannot be edited")

    update_data = role_update.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(db_role, key, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A role named '{role_update.name}' already exists in this organization"
        )
    await db.refresh(db_role)

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="update",
        resource_type="role",
        resource_id=role_id,
        organization_id=org_id,
        details=update_data,
        **client_info(request)
    )
    return db_role


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    organization_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage_roles)
):
    """Delete a custom role. Default roles and roles still assigned to users cannot be deleted."""
    org_id = resolve_organization_id(current_user, organization_id)
    db_role = await get_role_or_404(db, role_id, org_id)

    if db_role.is_default:
        raise HTTPException(status_code=400, detail="Default roles cannot be deleted")

    assigned = await db.scalar(
        select(func.count()).select_from(User).where(User.custom_role_id == role_id)
    )
    if assigned:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Role is assigned to {assigned} user(s); reassign them before deleting"
        )

    role_name = db_role.name
    await db.delete(db_role)
    await db.commit()

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="delete",
        resource_type="role",
        resource_id=role_id,
        organization_id=org_id,
        details={"name": role_name},
        **client_info(request)
    )


# ============================================================================
# Assignment Routes
# ============================================================================

@router.post("/assignments/user-role", response_model=UserRoleResponse)
async def assign_role_to_user(
    assignment: AssignRoleToUser,
    request: Request,
    organization_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage_roles)
):
    """Assign a custom role to a user. The role replaces the user's built-in defaults."""
    org_id = resolve_organization_id(current_user, organization_id)
    db_role = await get_role_or_404(db, assignment.role_id, org_id)
    if not db_role.is_active:
        raise HTTPException(status_code=400, detail="Cannot assign an inactive role")

    user = await get_org_user_or_404(db, assignment.user_id, org_id)
    user.custom_role = db_role
    await db.commit()

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="assign",
        resource_type="user_role",
        resource_id=user.id,
        organization_id=org_id,
        details={"role_id": db_role.id, "role_name": db_role.name},
        **client_info(request)
    )
    return UserRoleResponse(user_id=user.id, role=user.role, custom_role_id=user.custom_role_id)


@router.delete("/assignments/user-role/{user_id}", response_model=UserRoleResponse)
async def clear_user_role(
    user_id: str,
    request: Request,
    organization_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage_roles)
):
    """Remove a user's custom role; the built-in defaults of their base role apply again."""
    org_id = resolve_organization_id(current_user, organization_id)
    user = await get_org_user_or_404(db, user_id, org_id)
    previous_role_id = user.custom_role_id
    user.custom_role = None
    await db.commit()

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="unassign",
        resource_type="user_role",
        resource_id=user.id,
        organization_id=org_id,
        details={"role_id": previous_role_id},
        **client_info(request)
    )
    return UserRoleResponse(user_id=user.id, role=user.role, custom_role_id=None)


# ============================================================================
# Registry Routes
# ============================================================================

@router.get("/features", response_model=dict[str, List[FeatureResponse]])
async def list_features(
    current_user: User = Depends(get_current_user)
):
    """The full feature vocabulary, for building role editors."""
    return {
        module: [FeatureResponse(key=key, description=feature_description(module, key)) for key in features]
        for module, features in FEATURE_REGISTRY.items()
    }


@router.get("/modules", response_model=List[ModuleResponse])
async def list_modules(
    current_user: User = Depends(get_current_user)
):
    """Registry modules with their visibility and approval feature conventions."""
    modules = []
    for module, features in FEATURE_REGISTRY.items():
        scope = scope_of(module)
        modules.append(ModuleResponse(
            module=module,
            features=[FeatureResponse(key=key, description=feature_description(module, key)) for key in features],
            view_all_feature=scope.view_all,
            view_team_feature=scope.view_team,
            approve_feature=scope.approve,
        ))
    return modules


# ============================================================================
# Access Check Routes
# ============================================================================

@router.post("/check", response_model=AccessCheckResponse)
async def check_access(
    check_request: AccessCheckRequest,
    checker: AccessChecker = Depends(get_access_checker)
):
    """Check whether the current user holds a feature under both the plan and the role."""
    decision = await checker.check_access(check_request.module, check_request.feature)
    return AccessCheckResponse(
        allowed=decision.allowed,
        code=decision.code.value if decision.code else None,
        reason=decision.reason.value if decision.reason else None,
        message=decision.message,
        context=dict(decision.context),
    )


@router.get("/me", response_model=EffectiveFeaturesResponse)
async def get_my_features(
    checker: AccessChecker = Depends(get_access_checker)
):
    """Every feature the current user holds, for client-side UI gating."""
    user = checker.user
    return EffectiveFeaturesResponse(
        user_id=user.id,
        role=user.role,
        has_custom_role=user.custom_role is not None,
        organization_id=user.organization_id,
        features=await checker.effective_features(),
    )


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """List audit logs. Organization admins only see their own organization."""
    stmt = select(AuditLog)

    if not is_system_role(current_user.role):
        organization_id = current_user.organization_id
    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    total = await db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
