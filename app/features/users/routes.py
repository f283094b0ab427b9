"""
User feature routes.

Employee listings are scoped by the caller's visibility filter: all employees,
the caller and their subordinates, or only the caller.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.schemas import (
    UserResponse,
    UserPublic,
    UserUpdate,
    SupervisorAssignment,
    BaseRoleChange,
)
from app.features.users.dependencies import get_current_user
from app.features.permissions.defaults import is_system_role
from app.features.permissions.dependencies import require_access, get_visibility_filter
from app.features.permissions.hierarchy import VisibilityFilter
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])

employee_visibility = get_visibility_filter("employees")


def organization_scope(user: User, organization_id: str | None = None) -> str | None:
    """System users may target any organization; everybody else their own."""
    if is_system_role(user.role):
        return organization_id
    return user.organization_id


async def get_employee_or_404(db: AsyncSession, user_id: str, actor: User) -> User:
    stmt = select(User).where(User.id == user_id)
    if not is_system_role(actor.role):
        stmt = stmt.where(User.organization_id == actor.organization_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    if update_data.name is not None:
        user.name = update_data.name

    await db.commit()
    await db.refresh(user)
    return user


@router.get("/", response_model=list[UserPublic])
async def list_employees(
    user: Annotated[User, Depends(require_access("employees", "view"))],
    visibility: Annotated[VisibilityFilter, Depends(employee_visibility)],
    db: Annotated[AsyncSession, Depends(get_db)],
    organization_id: str | None = None,
    include_inactive: bool = False,
    skip: int = 0,
    limit: int = 50
):
    """
    List employees the caller may see.

    viewAllEmployees lists the whole organization, viewTeamEmployees the caller and
    everyone reporting to them (transitively), otherwise only the caller.
    """
    stmt = select(User)
    org_id = organization_scope(user, organization_id)
    if org_id is not None:
        stmt = stmt.where(User.organization_id == org_id)
    if not include_inactive:
        stmt = stmt.where(User.is_active == True)  # noqa: E712
    stmt = visibility.apply(stmt, User.id)

    result = await db.execute(stmt.order_by(User.name).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserPublic)
async def get_employee(
    user_id: str,
    user: Annotated[User, Depends(require_access("employees", "view"))],
    visibility: Annotated[VisibilityFilter, Depends(employee_visibility)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get an employee the caller may see; anyone else reads as not found."""
    if not visibility.allows(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return await get_employee_or_404(db, user_id, user)


@router.put("/{user_id}/supervisors", response_model=UserPublic)
async def assign_supervisors(
    user_id: str,
    assignment: SupervisorAssignment,
    actor: Annotated[User, Depends(require_access("employees", "assignSupervisor"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Set the users an employee reports to.

    Supervisors must belong to the employee's organization and cannot include the
    employee. Reporting cycles are tolerated by every hierarchy computation.
    """
    employee = await get_employee_or_404(db, user_id, actor)

    supervisor_ids = set(assignment.supervisor_ids)
    if employee.id in supervisor_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A user cannot report to themselves")

    supervisors = []
    if supervisor_ids:
        result = await db.execute(
            select(User).where(
                User.id.in_(supervisor_ids),
                User.organization_id == employee.organization_id
            )
        )
        supervisors = list(result.scalars().all())
        missing = supervisor_ids - {s.id for s in supervisors}
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Supervisors not found in organization: {', '.join(sorted(missing))}"
            )

    employee.reports_to = supervisors
    await db.commit()
    log.info(f"User {actor.id} set supervisors of {employee.id} to {sorted(supervisor_ids)}")
    return employee


@router.put("/{user_id}/role", response_model=UserPublic)
async def change_base_role(
    user_id: str,
    change: BaseRoleChange,
    actor: Annotated[User, Depends(require_access("settings", "manageUsers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Switch an employee between the built-in admin and member roles."""
    employee = await get_employee_or_404(db, user_id, actor)

    if employee.id == actor.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own role")
    if is_system_role(employee.role):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="System users have no organization role")

    employee.role = change.role
    await db.commit()
    return employee


@router.delete("/{user_id}")
async def deactivate_employee(
    user_id: str,
    actor: Annotated[User, Depends(require_access("employees", "delete"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate an employee account."""
    employee = await get_employee_or_404(db, user_id, actor)

    if employee.id == actor.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )

    employee.is_active = False
    await db.commit()

    return {"message": "User deactivated successfully"}
