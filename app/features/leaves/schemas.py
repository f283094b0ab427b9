"""
Pydantic schemas for leave requests.
"""
from datetime import date, datetime
from pydantic import BaseModel, Field, model_validator

from app.features.leaves.models import LeaveCategory, LeaveStatus


class LeaveCreate(BaseModel):
    """Schema for applying for leave."""
    category: LeaveCategory
    start_date: date
    end_date: date
    reason: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def end_not_before_start(self) -> "LeaveCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class LeaveStatusUpdate(BaseModel):
    """Schema for approving or rejecting a pending leave request."""
    status: LeaveStatus
    rejection_reason: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def decision_only(self) -> "LeaveStatusUpdate":
        if self.status is LeaveStatus.PENDING:
            raise ValueError("status must be approved or rejected")
        return self


class LeaveResponse(BaseModel):
    """Schema for leave request responses."""
    id: str
    organization_id: str
    employee_id: str
    category: LeaveCategory
    start_date: date
    end_date: date
    days: int
    reason: str | None
    status: LeaveStatus
    approved_by_id: str | None
    approved_at: datetime | None
    rejection_reason: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
