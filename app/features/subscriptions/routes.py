"""
Subscription plan routes.

Organization users can browse the plans offered to them; only system users
manage plans.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.dependencies import get_current_user, get_current_system_user
from app.features.organizations.models import Organization
from app.features.permissions.defaults import is_system_role
from app.features.subscriptions.models import SubscriptionPlan, PlanTier
from app.features.subscriptions.schemas import PlanCreate, PlanUpdate, PlanResponse, PlanSummary
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["subscriptions"])


def visible_plans_query(user: User):
    """System users see every plan; organization users see system plans and their own custom plans."""
    query = select(SubscriptionPlan)
    if not is_system_role(user.role):
        query = query.where(
            SubscriptionPlan.is_active == True,  # noqa: E712
            or_(
                SubscriptionPlan.is_system_plan == True,  # noqa: E712
                SubscriptionPlan.organization_id == user.organization_id,
            )
        )
    return query


async def get_plan_or_404(db: AsyncSession, plan_id: str, user: User) -> SubscriptionPlan:
    result = await db.execute(visible_plans_query(user).where(SubscriptionPlan.id == plan_id))
    plan = result.scalar_one_or_none()
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription plan not found")
    return plan


@router.get("/", response_model=list[PlanSummary])
async def list_plans(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List subscription plans available to the caller, cheapest first."""
    result = await db.execute(visible_plans_query(user).order_by(SubscriptionPlan.price_amount))
    return result.scalars().all()


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get a plan with its enabled modules and features."""
    return await get_plan_or_404(db, plan_id, user)


@router.post("/", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_custom_plan(
    plan_data: PlanCreate,
    admin: Annotated[User, Depends(get_current_system_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a custom plan (system users only)."""
    plan = SubscriptionPlan(
        tier=PlanTier.CUSTOM,
        is_system_plan=False,
        **plan_data.model_dump()
    )
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    log.info(f"User {admin.id} created custom plan {plan.id} ({plan.name})")
    return plan


@router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    update_data: PlanUpdate,
    admin: Annotated[User, Depends(get_current_system_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update a plan (system users only). Changes apply to every organization on the plan."""
    plan = await get_plan_or_404(db, plan_id, admin)

    update_dict = update_data.model_dump(exclude_unset=True)
    enabled = set(update_dict.get("enabled_modules", plan.enabled_modules) or [])
    features = update_dict.get("module_features", plan.module_features) or {}
    outside = sorted(set(features) - enabled)
    if outside:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Features given for modules that are not enabled: {', '.join(outside)}"
        )

    for field, value in update_dict.items():
        setattr(plan, field, value)

    await db.commit()
    await db.refresh(plan)
    log.info(f"User {admin.id} updated plan {plan.id}: {sorted(update_dict)}")
    return plan


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_plan(
    plan_id: str,
    admin: Annotated[User, Depends(get_current_system_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete a custom plan that no organization uses (system users only)."""
    plan = await get_plan_or_404(db, plan_id, admin)

    if plan.is_system_plan:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="System plans cannot be deleted")

    in_use = await db.scalar(
        select(func.count()).select_from(Organization).where(Organization.subscription_plan_id == plan_id)
    )
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Plan is used by {in_use} organization(s)"
        )

    await db.delete(plan)
    await db.commit()
    log.info(f"User {admin.id} deleted plan {plan_id}")
