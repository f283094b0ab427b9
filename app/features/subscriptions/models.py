"""
Subscription plan model.

Predefined plans (Basic, Standard, Premium) are shared by many organizations;
custom plans belong to a single organization.
"""
from typing import Dict, List
from sqlalchemy import String, Boolean, Integer, Numeric, JSON, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from decimal import Decimal
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class PlanTier(str, enum.Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"
    CUSTOM = "custom"


class BillingCycle(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionPlan(Base, TimestampMixin):
    """
    Subscription plan defining which modules and features an organization may use.

    ``module_features`` is a nested ``module -> feature -> bool`` map. A feature
    flagged true whose module is missing from ``enabled_modules`` is still treated
    as disabled.
    """
    __tablename__ = "subscription_plans"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    tier: Mapped[PlanTier] = mapped_column(SQLEnum(PlanTier), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    enabled_modules: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    module_features: Mapped[Dict[str, Dict[str, bool]]] = mapped_column(JSON, nullable=False, default=dict)

    max_employees: Mapped[int] = mapped_column(Integer, nullable=False)

    # Pricing (for reference, actual billing handled separately)
    price_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        SQLEnum(BillingCycle), nullable=False, default=BillingCycle.YEARLY
    )

    # For custom plans: which organization this plan belongs to (null for predefined plans)
    organization_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # System-defined plans cannot be deleted
    is_system_plan: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def has_module(self, module: str) -> bool:
        return module in (self.enabled_modules or [])

    def has_feature(self, module: str, feature_key: str) -> bool:
        """Module must be enabled and the feature flag exactly true."""
        if not self.has_module(module):
            return False
        module_features = (self.module_features or {}).get(module) or {}
        return module_features.get(feature_key) is True

    def can_add_employee(self, current_count: int) -> bool:
        return current_count < self.max_employees

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(id={self.id}, name={self.name!r}, tier={self.tier})>"
