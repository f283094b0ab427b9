"""
Organization feature routes.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User, user_supervisors
from app.features.users.dependencies import get_current_system_user
from app.features.organizations.models import Organization, as_utc
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationResponse,
    SubscriptionChange,
    SubscriptionStatus,
    AddUserToOrganization,
)
from app.features.organizations.dependencies import (
    get_organization_by_id,
    get_user_organization,
    get_current_organization,
)
from app.features.permissions.access import AccessChecker
from app.features.permissions.decisions import AccessDeniedError
from app.features.permissions.defaults import ORG_ADMIN_ROLE, is_system_role
from app.features.permissions.dependencies import get_access_checker, require_access, create_audit_log
from app.features.subscriptions.models import SubscriptionPlan
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


async def count_members(db: AsyncSession, organization_id: str) -> int:
    return await db.scalar(
        select(func.count()).select_from(User).where(User.organization_id == organization_id)
    ) or 0


async def get_plan_or_400(db: AsyncSession, plan_id: str) -> SubscriptionPlan:
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None or not plan.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subscription plan not found or inactive")
    return plan


async def to_response(db: AsyncSession, organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = await count_members(db, organization.id)
    return response


# Organization CRUD endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    request: Request,
    admin: Annotated[User, Depends(get_current_system_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization with its subscription (system users only)."""
    result = await db.execute(
        select(Organization).where(Organization.pan_vat_number == org_data.pan_vat_number)
    )
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Organization with this PAN/VAT number already exists"
        )

    plan = await get_plan_or_400(db, org_data.subscription_plan_id)

    owner = None
    if org_data.owner_id:
        owner = await db.get(User, org_data.owner_id)
        if owner is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner user not found")
        if owner.organization_id is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Owner already belongs to an organization"
            )

    new_org = Organization(**org_data.model_dump())
    new_org.subscription_plan = plan
    new_org.compute_subscription_end()
    db.add(new_org)
    await db.flush()

    if owner is not None:
        owner.organization_id = new_org.id
        owner.role = ORG_ADMIN_ROLE

    await db.commit()
    await db.refresh(new_org)

    await create_audit_log(
        db,
        user_id=admin.id,
        action="create",
        resource_type="organization",
        resource_id=new_org.id,
        organization_id=new_org.id,
        details={"plan": plan.name, "subscription_type": new_org.subscription_type.value},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )
    return await to_response(db, new_org)


@router.get("/", response_model=list[OrganizationResponse])
async def list_organizations(
    admin: Annotated[User, Depends(get_current_system_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50,
    include_inactive: bool = False
):
    """List organizations (system users only)."""
    query = select(Organization)
    if not include_inactive:
        query = query.where(Organization.is_active == True)  # noqa: E712
    result = await db.execute(query.order_by(Organization.name).offset(skip).limit(limit))
    return [await to_response(db, org) for org in result.scalars().all()]


@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization_endpoint(
    organization: Annotated[Organization, Depends(get_current_organization)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the caller's organization."""
    return await to_response(db, organization)


@router.get("/current/subscription", response_model=SubscriptionStatus)
async def get_current_subscription(
    organization: Annotated[Organization, Depends(get_current_organization)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Subscription status of the caller's organization, including its plan's modules and features."""
    plan = organization.subscription_plan
    days_remaining = None
    if organization.subscription_end_date is not None:
        remaining = as_utc(organization.subscription_end_date) - datetime.now(timezone.utc)
        days_remaining = max(remaining.days, 0)

    return SubscriptionStatus(
        organization_id=organization.id,
        plan_id=plan.id if plan else None,
        plan_name=plan.name if plan else None,
        tier=plan.tier if plan else None,
        subscription_type=organization.subscription_type,
        subscription_start_date=organization.subscription_start_date,
        subscription_end_date=organization.subscription_end_date,
        is_active=organization.is_subscription_active,
        days_remaining=days_remaining,
        max_employees=plan.max_employees if plan else None,
        employee_count=await count_members(db, organization.id),
        enabled_modules=list(plan.enabled_modules) if plan else [],
        module_features=dict(plan.module_features) if plan else {},
    )


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_user_organization)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get organization by ID (members and system users)."""
    return await to_response(db, organization)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    update_data: OrganizationUpdate,
    organization: Annotated[Organization, Depends(get_user_organization)],
    user: Annotated[User, Depends(require_access("settings", "manage"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization information."""
    update_dict = update_data.model_dump(exclude_unset=True)
    for field, value in update_dict.items():
        setattr(organization, field, value)

    await db.commit()
    await db.refresh(organization)
    log.info(f"User {user.id} updated organization {organization.id}: {sorted(update_dict)}")
    return await to_response(db, organization)


@router.put("/{organization_id}/subscription", response_model=OrganizationResponse)
async def change_subscription(
    change: SubscriptionChange,
    request: Request,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    admin: Annotated[User, Depends(get_current_system_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Change an organization's plan and/or renew its subscription (system users only).

    Changing the type or start date recomputes the end date.
    """
    details = {}
    if change.subscription_plan_id is not None:
        plan = await get_plan_or_400(db, change.subscription_plan_id)
        organization.subscription_plan = plan
        details["plan"] = plan.name

    if change.subscription_type is not None or change.subscription_start_date is not None:
        if change.subscription_type is not None:
            organization.subscription_type = change.subscription_type
        organization.subscription_start_date = change.subscription_start_date or datetime.now(timezone.utc)
        organization.compute_subscription_end()
        details["subscription_end_date"] = organization.subscription_end_date.isoformat()

    await db.commit()
    await db.refresh(organization)

    await create_audit_log(
        db,
        user_id=admin.id,
        action="change_subscription",
        resource_type="organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details=details,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )
    return await to_response(db, organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    admin: Annotated[User, Depends(get_current_system_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate an organization (system users only)."""
    organization.is_active = False
    await db.commit()
    log.info(f"User {admin.id} deactivated organization {organization.id}")


# Membership endpoints
@router.post("/{organization_id}/members", response_model=dict, status_code=status.HTTP_201_CREATED)
async def add_user_to_organization(
    member_data: AddUserToOrganization,
    organization: Annotated[Organization, Depends(get_user_organization)],
    checker: Annotated[AccessChecker, Depends(get_access_checker)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Add an existing organization-less user (system users, or holders of settings.manageUsers).

    The plan's employee limit applies.
    """
    decision = await checker.check_access("settings", "manageUsers")
    if not decision:
        raise AccessDeniedError(decision)

    user = await db.get(User, member_data.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.organization_id is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already belongs to an organization")
    if is_system_role(user.role):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="System users cannot join an organization")

    plan = organization.subscription_plan
    if plan is not None and not plan.can_add_employee(await count_members(db, organization.id)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Employee limit of the {plan.name} plan reached ({plan.max_employees})"
        )

    user.organization_id = organization.id
    user.role = member_data.role
    await db.commit()

    return {
        "message": "User added to organization successfully",
        "user_id": user.id,
        "organization_id": organization.id,
        "role": user.role
    }


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user_from_organization(
    user_id: str,
    organization: Annotated[Organization, Depends(get_user_organization)],
    checker: Annotated[AccessChecker, Depends(get_access_checker)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a user from the organization; their custom role and supervisors are cleared."""
    decision = await checker.check_access("settings", "manageUsers")
    if not decision:
        raise AccessDeniedError(decision)

    if user_id == checker.user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot remove yourself")

    result = await db.execute(
        select(User).where(User.id == user_id, User.organization_id == organization.id)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User is not a member of this organization")

    user.organization_id = None
    user.custom_role = None
    user.reports_to = []
    await db.execute(delete(user_supervisors).where(user_supervisors.c.supervisor_id == user.id))
    await db.commit()
