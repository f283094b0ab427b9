"""
Leave request routes.

Listing and detail reads are scoped by the caller's visibility filter
(viewAllLeaves / viewTeamLeaves / own). Status changes require
leaves.updateStatus, approval authority over the owner, and are committed with a
single conditional update so that two concurrent decisions cannot both succeed.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.leaves.models import LeaveRequest, LeaveStatus
from app.features.leaves.schemas import LeaveCreate, LeaveStatusUpdate, LeaveResponse
from app.features.permissions.access import AccessChecker
from app.features.permissions.defaults import is_system_role
from app.features.permissions.dependencies import (
    get_access_checker,
    require_access,
    require_all_access,
    require_any_access,
    require_module_access,
    require_channel,
    get_visibility_filter,
)
from app.features.permissions.hierarchy import VisibilityFilter, can_approve, is_self_approval
from app.utils import get_logger


log = get_logger(__name__)
# Custom roles may restrict the web portal or the mobile app
router = APIRouter(tags=["leaves"], dependencies=[Depends(require_channel)])

MODULE = "leaves"
leave_visibility = get_visibility_filter(MODULE)

ACTIVE_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)
# Listing needs at least one of the read scopes on top of the module itself
LIST_SCOPES = [(MODULE, "viewOwn"), (MODULE, "viewTeamLeaves"), (MODULE, "viewAllLeaves")]


async def get_leave_or_404(db: AsyncSession, leave_id: str, user: User) -> LeaveRequest:
    stmt = select(LeaveRequest).where(LeaveRequest.id == leave_id)
    if not is_system_role(user.role):
        stmt = stmt.where(LeaveRequest.organization_id == user.organization_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    leave = result.scalar_one_or_none()
    if leave is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Leave request not found")
    return leave


@router.post("/", response_model=LeaveResponse, status_code=status.HTTP_201_CREATED)
async def create_leave(
    leave_data: LeaveCreate,
    user: Annotated[User, Depends(require_access(MODULE, "create"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Apply for leave. Overlapping pending or approved requests are rejected."""
    if user.organization_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User does not belong to an organization")

    result = await db.execute(
        select(LeaveRequest.id).where(
            LeaveRequest.employee_id == user.id,
            LeaveRequest.status.in_(ACTIVE_STATUSES),
            LeaveRequest.start_date <= leave_data.end_date,
            LeaveRequest.end_date >= leave_data.start_date,
        ).limit(1)
    )
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You already have a leave request overlapping these dates"
        )

    leave = LeaveRequest(
        organization_id=user.organization_id,
        employee_id=user.id,
        **leave_data.model_dump()
    )
    db.add(leave)
    await db.commit()
    await db.refresh(leave)
    log.info(f"User {user.id} applied for leave {leave.id} ({leave.start_date} to {leave.end_date})")
    return leave


@router.get("/", response_model=list[LeaveResponse], dependencies=[Depends(require_any_access(LIST_SCOPES))])
async def list_leaves(
    user: Annotated[User, Depends(require_module_access(MODULE))],
    visibility: Annotated[VisibilityFilter, Depends(leave_visibility)],
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: LeaveStatus | None = None,
    skip: int = 0,
    limit: int = 50
):
    """List the leave requests the caller may see, newest first."""
    stmt = select(LeaveRequest)
    if not is_system_role(user.role):
        stmt = stmt.where(LeaveRequest.organization_id == user.organization_id)
    if status_filter is not None:
        stmt = stmt.where(LeaveRequest.status == status_filter)
    stmt = visibility.apply(stmt, LeaveRequest.employee_id)

    result = await db.execute(
        stmt.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.get("/{leave_id}", response_model=LeaveResponse)
async def get_leave(
    leave_id: str,
    user: Annotated[User, Depends(require_access(MODULE, "viewDetails"))],
    visibility: Annotated[VisibilityFilter, Depends(leave_visibility)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get a leave request; requests outside the caller's visibility read as not found."""
    leave = await get_leave_or_404(db, leave_id, user)
    if not visibility.allows(leave.employee_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Leave request not found")
    return leave


@router.patch("/{leave_id}/status", response_model=LeaveResponse)
async def update_leave_status(
    leave_id: str,
    status_update: LeaveStatusUpdate,
    approver: Annotated[User, Depends(require_all_access([(MODULE, "view"), (MODULE, "updateStatus")]))],
    checker: Annotated[AccessChecker, Depends(get_access_checker)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Approve or reject a pending leave request.

    Raises:
        HTTPException: 403 without approval authority or on self-approval,
            409 if the request was already processed
    """
    leave = await get_leave_or_404(db, leave_id, approver)
    owner = leave.employee

    if not await can_approve(checker, approver, owner, MODULE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not authorized to approve or reject this leave request"
        )
    if is_self_approval(approver, owner):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot approve or reject your own leave request"
        )

    values = {
        "status": status_update.status,
        "approved_by_id": approver.id,
        "approved_at": datetime.now(timezone.utc),
        "rejection_reason": (
            status_update.rejection_reason if status_update.status is LeaveStatus.REJECTED else None
        ),
    }
    result = await db.execute(
        update(LeaveRequest)
        .where(LeaveRequest.id == leave.id, LeaveRequest.status == LeaveStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Leave request was already processed by another request"
        )

    await db.commit()
    await db.refresh(leave)
    log.info(f"User {approver.id} set leave {leave.id} to {status_update.status.value}")
    return leave
