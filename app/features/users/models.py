"""
User model with ULID primary keys and the reporting hierarchy.
"""
from datetime import datetime
from sqlalchemy import String, Boolean, ForeignKey, Table, Column, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


# Reporting edges: user_id reports to supervisor_id.
# A user may report to several supervisors and the data is not guaranteed acyclic.
user_supervisors = Table(
    "user_supervisors",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("supervisor_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=datetime.now),
)


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.

    ``role`` is the built-in base role name (e.g. superadmin, admin, member).
    ``custom_role`` optionally points at an organization-defined Role that replaces
    the base role's default permissions.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Appwrite user ID (for linking with Appwrite authentication)
    appwrite_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Base role
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member", index=True)

    # Owning organization (null for system identities)
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    custom_role_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    custom_role: Mapped["Role | None"] = relationship(  # type: ignore
        "Role",
        foreign_keys=[custom_role_id],
        lazy="selectin"
    )

    # Direct supervisors
    reports_to: Mapped[list["User"]] = relationship(
        "User",
        secondary=user_supervisors,
        primaryjoin=lambda: User.id == user_supervisors.c.user_id,
        secondaryjoin=lambda: User.id == user_supervisors.c.supervisor_id,
        lazy="selectin",
        join_depth=1,
    )

    @property
    def reports_to_ids(self) -> set[str]:
        return {supervisor.id for supervisor in self.reports_to}

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
