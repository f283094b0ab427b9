"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.permissions.defaults import ORGANIZATION_ROLES


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserUpdate(BaseModel):
    """Schema for updating the caller's own profile."""
    name: str | None = Field(None, min_length=1, max_length=255)


class CustomRoleSummary(BaseModel):
    id: str
    name: str
    is_active: bool

    model_config = {"from_attributes": True}


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    role: str
    organization_id: str | None = None
    custom_role: CustomRoleSummary | None = None
    reports_to_ids: list[str] = Field(default_factory=list, description="Direct supervisors")
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Employee listing fields."""
    id: str
    name: str
    email: EmailStr
    role: str
    reports_to_ids: list[str] = Field(default_factory=list)
    is_active: bool

    model_config = {"from_attributes": True}


class SupervisorAssignment(BaseModel):
    """Replace a user's direct supervisors. An empty list clears them."""
    supervisor_ids: list[str] = Field(default_factory=list, max_length=20)


ROLE_PATTERN = f"^({'|'.join(ORGANIZATION_ROLES)})$"


class BaseRoleChange(BaseModel):
    role: str = Field(..., pattern=ROLE_PATTERN, description="Built-in organization role")
