"""
Pydantic schemas for permission management.

Request and response models for custom roles, access checks, the feature
registry and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.registry import validate_permission_map


PermissionMap = Dict[str, Dict[str, bool]]


def _validated_permissions(v: Optional[PermissionMap]) -> Optional[PermissionMap]:
    if v is None:
        return v
    problems = validate_permission_map(v)
    if problems:
        raise ValueError("; ".join(problems))
    return v


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=50, description="Role name, unique within the organization")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a custom role."""
    permissions: PermissionMap = Field(
        default_factory=dict,
        description='Sparse feature map, e.g. {"leaves": {"create": true}}; missing keys are false'
    )
    web_portal_access: bool = True
    mobile_app_access: bool = True

    @field_validator("name")
    @classmethod
    def name_stripped(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Role name cannot be blank")
        return v

    @field_validator("permissions")
    @classmethod
    def permissions_registered(cls, v: PermissionMap) -> PermissionMap:
        return _validated_permissions(v)


class RoleUpdate(BaseModel):
    """Schema for updating a custom role; omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[PermissionMap] = None
    web_portal_access: Optional[bool] = None
    mobile_app_access: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("permissions")
    @classmethod
    def permissions_registered(cls, v: Optional[PermissionMap]) -> Optional[PermissionMap]:
        return _validated_permissions(v)


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    organization_id: str
    permissions: PermissionMap
    web_portal_access: bool
    mobile_app_access: bool
    is_active: bool
    is_default: bool
    created_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AssignRoleToUser(BaseModel):
    """Schema for assigning a custom role to a user of the same organization."""
    user_id: str = Field(..., description="User ID")
    role_id: str = Field(..., description="Role ID")


class UserRoleResponse(BaseModel):
    user_id: str
    role: str
    custom_role_id: Optional[str]


# ============================================================================
# Registry Schemas
# ============================================================================

class FeatureResponse(BaseModel):
    key: str
    description: str


class ModuleResponse(BaseModel):
    """A registry module with its features and visibility/approval conventions."""
    module: str
    features: List[FeatureResponse]
    view_all_feature: Optional[str] = None
    view_team_feature: Optional[str] = None
    approve_feature: Optional[str] = None


# ============================================================================
# Access Check Schemas
# ============================================================================

class AccessCheckRequest(BaseModel):
    """Schema for checking whether the caller holds a feature."""
    module: str = Field(..., description="Registry module")
    feature: str = Field(..., description="Feature key within the module")


class AccessCheckResponse(BaseModel):
    """Outcome of an access check; denial fields are null when allowed."""
    allowed: bool
    code: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class EffectiveFeaturesResponse(BaseModel):
    """Features the caller holds under both the plan and the role."""
    user_id: str
    role: str
    has_custom_role: bool
    organization_id: Optional[str]
    features: Dict[str, List[str]]


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
