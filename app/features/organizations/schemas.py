"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field

from app.core import config
from app.features.organizations.models import SubscriptionType
from app.features.users.schemas import ROLE_PATTERN
from app.features.subscriptions.models import PlanTier


DEFAULT_SUBSCRIPTION_TYPE = (
    SubscriptionType.TWELVE_MONTHS if config.DEFAULT_SUBSCRIPTION_MONTHS >= 12 else SubscriptionType.SIX_MONTHS
)


# Organization Schemas
class OrganizationBase(BaseModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    pan_vat_number: str = Field(..., min_length=1, max_length=20, description="PAN/VAT registration number")
    phone: str | None = Field(None, max_length=20)
    address: str | None = Field(None, max_length=500)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization (system users only)."""
    subscription_plan_id: str = Field(..., description="Plan the organization subscribes to")
    subscription_type: SubscriptionType = DEFAULT_SUBSCRIPTION_TYPE
    subscription_start_date: datetime | None = Field(None, description="Defaults to now")
    owner_id: str | None = Field(None, description="Existing user to make the organization admin")


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    phone: str | None = Field(None, max_length=20)
    address: str | None = Field(None, max_length=500)


class SubscriptionChange(BaseModel):
    """Schema for changing an organization's plan or renewing its subscription."""
    subscription_plan_id: str | None = None
    subscription_type: SubscriptionType | None = None
    subscription_start_date: datetime | None = Field(
        None, description="Restart the subscription window from this date"
    )


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""
    id: str
    owner_id: str | None
    subscription_plan_id: str | None
    subscription_type: SubscriptionType
    subscription_start_date: datetime | None
    subscription_end_date: datetime | None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of users in this organization")

    model_config = {"from_attributes": True}


class SubscriptionStatus(BaseModel):
    """The organization's subscription as seen by its members."""
    organization_id: str
    plan_id: str | None
    plan_name: str | None
    tier: PlanTier | None
    subscription_type: SubscriptionType
    subscription_start_date: datetime | None
    subscription_end_date: datetime | None
    is_active: bool
    days_remaining: int | None
    max_employees: int | None
    employee_count: int
    enabled_modules: list[str] = Field(default_factory=list)
    module_features: dict[str, dict[str, bool]] = Field(default_factory=dict)


# Membership Schemas
class AddUserToOrganization(BaseModel):
    """Schema for adding an existing user to an organization."""
    user_id: str = Field(..., description="ID of the user to add")
    role: str = Field(default="member", pattern=ROLE_PATTERN, description="Base role in the organization")
