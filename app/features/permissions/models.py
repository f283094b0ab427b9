"""
Custom role and audit log models.

Custom roles are organization-owned bundles of feature grants stored as a sparse
``module -> feature -> bool`` JSON map, so new features never need a schema
migration. A missing key always reads as false.
"""
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, Text, Boolean, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Role(Base, TimestampMixin):
    """
    Custom role defined by an organization administrator.

    Once assigned to a user, a custom role fully replaces the built-in defaults of
    the user's base role.
    """
    __tablename__ = "roles"
    __table_args__ = (
        # Role names are unique within an organization
        UniqueConstraint("organization_id", "name", name="uq_roles_organization_name"),
        Index("ix_roles_organization_active", "organization_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Sparse granular map: {"leaves": {"create": true, "updateStatus": false}, ...}
    permissions: Mapped[Dict[str, Dict[str, bool]]] = mapped_column(JSON, nullable=False, default=dict)

    # Channel access
    web_portal_access: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    mobile_app_access: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Default roles are seeded per organization and cannot be edited or deleted
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Plain reference to avoid a users <-> roles foreign key cycle
    created_by_id: Mapped[str | None] = mapped_column(String(26), nullable=True)

    def has_feature(self, module: str, feature_key: str) -> bool:
        """True only when the feature is explicitly set to true."""
        module_features = (self.permissions or {}).get(module) or {}
        return module_features.get(feature_key) is True

    def __repr__(self) -> str:
        return f"<Role({self.name!r} in {self.organization_id}, active={self.is_active})>"


class AuditLog(Base, TimestampMixin):
    """
    Record of a change to custom roles, role assignments, organizations or their subscriptions.

    organization_id is the tenant the change belongs to; audit listings are scoped by it.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User who made the change
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # e.g. action="assign", resource_type="user_role"
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Tenant and request origin
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, {self.resource_type}={self.resource_id})>"
