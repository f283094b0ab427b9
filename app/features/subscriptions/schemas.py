"""
Pydantic schemas for subscription plans.
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator, model_validator

from app.features.permissions.registry import SYSTEM_ONLY_MODULES, all_modules, validate_permission_map
from app.features.subscriptions.models import PlanTier, BillingCycle


def _check_modules(modules: list[str]) -> list[str]:
    unknown = [m for m in modules if m not in all_modules() or m in SYSTEM_ONLY_MODULES]
    if unknown:
        raise ValueError(f"Unknown or system-only modules: {', '.join(unknown)}")
    return sorted(set(modules))


def _check_features(features: dict[str, dict[str, bool]]) -> dict[str, dict[str, bool]]:
    problems = validate_permission_map(features)
    if problems:
        raise ValueError("; ".join(problems))
    return features


class PlanBase(BaseModel):
    """Base subscription plan schema."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    max_employees: int = Field(..., ge=1)
    price_amount: Decimal = Field(Decimal("0"), ge=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    billing_cycle: BillingCycle = BillingCycle.YEARLY


class PlanCreate(PlanBase):
    """
    Schema for creating a custom plan.

    ``module_features`` may only reference modules listed in ``enabled_modules``.
    """
    enabled_modules: list[str] = Field(default_factory=list)
    module_features: dict[str, dict[str, bool]] = Field(default_factory=dict)
    organization_id: str | None = Field(None, description="Organization the custom plan is built for")

    @field_validator("enabled_modules")
    @classmethod
    def modules_registered(cls, v: list[str]) -> list[str]:
        return _check_modules(v)

    @field_validator("module_features")
    @classmethod
    def features_registered(cls, v: dict[str, dict[str, bool]]) -> dict[str, dict[str, bool]]:
        return _check_features(v)

    @model_validator(mode="after")
    def features_within_modules(self) -> "PlanCreate":
        outside = sorted(set(self.module_features) - set(self.enabled_modules))
        if outside:
            raise ValueError(f"Features given for modules that are not enabled: {', '.join(outside)}")
        return self


class PlanUpdate(BaseModel):
    """Schema for updating a plan; omitted fields are left unchanged."""
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    max_employees: int | None = Field(None, ge=1)
    price_amount: Decimal | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    billing_cycle: BillingCycle | None = None
    enabled_modules: list[str] | None = None
    module_features: dict[str, dict[str, bool]] | None = None
    is_active: bool | None = None

    @field_validator("enabled_modules")
    @classmethod
    def modules_registered(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else _check_modules(v)

    @field_validator("module_features")
    @classmethod
    def features_registered(cls, v: dict[str, dict[str, bool]] | None) -> dict[str, dict[str, bool]] | None:
        return None if v is None else _check_features(v)


class PlanResponse(PlanBase):
    """Schema for subscription plan responses."""
    id: str
    tier: PlanTier
    enabled_modules: list[str]
    module_features: dict[str, dict[str, bool]]
    organization_id: str | None
    is_system_plan: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PlanSummary(BaseModel):
    """Limited plan fields for listings."""
    id: str
    name: str
    tier: PlanTier
    max_employees: int
    price_amount: Decimal
    currency: str
    billing_cycle: BillingCycle

    model_config = {"from_attributes": True}
