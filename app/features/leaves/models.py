"""
Leave request model.
"""
from datetime import date, datetime
from sqlalchemy import String, ForeignKey, Date, DateTime, Text, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LeaveCategory(str, enum.Enum):
    SICK_LEAVE = "sick_leave"
    CASUAL_LEAVE = "casual_leave"
    EARNED_LEAVE = "earned_leave"
    UNPAID_LEAVE = "unpaid_leave"
    OTHER = "other"


class LeaveRequest(Base, TimestampMixin):
    """
    Leave request raised by an employee and approved by an admin or direct supervisor.
    """
    __tablename__ = "leave_requests"
    __table_args__ = (
        Index("ix_leave_requests_org_employee", "organization_id", "employee_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    employee_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    category: Mapped[LeaveCategory] = mapped_column(SQLEnum(LeaveCategory), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[LeaveStatus] = mapped_column(
        SQLEnum(LeaveStatus),
        default=LeaveStatus.PENDING,
        nullable=False,
        index=True
    )
    approved_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    employee: Mapped["User"] = relationship("User", foreign_keys=[employee_id], lazy="selectin")  # type: ignore

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def __repr__(self) -> str:
        return f"<LeaveRequest(id={self.id}, employee_id={self.employee_id}, status={self.status})>"
