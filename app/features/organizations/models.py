"""
Organization model.

Every organization references exactly one subscription plan and carries the
subscription window that the plan evaluator reads on every access check.
"""
import calendar
from datetime import datetime, timezone
from sqlalchemy import String, ForeignKey, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class SubscriptionType(str, enum.Enum):
    """Subscription length purchased by an organization."""
    SIX_MONTHS = "6months"
    TWELVE_MONTHS = "12months"

    @property
    def months(self) -> int:
        return 12 if self is SubscriptionType.TWELVE_MONTHS else 6


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Organization(Base, TimestampMixin):
    """
    Organization (tenant) model.
    """
    __tablename__ = "organizations"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    pan_vat_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Plain reference to avoid an organizations <-> users foreign key cycle
    owner_id: Mapped[str | None] = mapped_column(String(26), nullable=True)

    # Subscription
    subscription_plan_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("subscription_plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    subscription_type: Mapped[SubscriptionType] = mapped_column(
        SQLEnum(SubscriptionType),
        default=SubscriptionType.SIX_MONTHS,
        nullable=False
    )
    subscription_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    subscription_plan: Mapped["SubscriptionPlan | None"] = relationship(  # type: ignore
        "SubscriptionPlan",
        lazy="selectin"
    )

    def compute_subscription_end(self) -> datetime:
        """Set the subscription end date from its start date and type."""
        start = as_utc(self.subscription_start_date or datetime.now(timezone.utc))
        self.subscription_start_date = start
        self.subscription_end_date = add_months(start, SubscriptionType(self.subscription_type).months)
        return self.subscription_end_date

    def is_subscription_expired(self, now: datetime | None = None) -> bool:
        """An organization without an end date never expires."""
        if self.subscription_end_date is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now > as_utc(self.subscription_end_date)

    @property
    def is_subscription_active(self) -> bool:
        return not self.is_subscription_expired()

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r}, plan={self.subscription_plan_id})>"
