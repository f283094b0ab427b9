"""
Shared fixtures: an in-memory database seeded with the predefined plans, model
factories and an HTTP client whose requests authenticate through the
``X-User-Id`` header instead of an Appwrite JWT.
"""
import os
from datetime import date, datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import httpx
import pytest
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.engine import get_db, init_db
from app.features.leaves.models import LeaveCategory, LeaveRequest, LeaveStatus
from app.features.organizations.models import Organization, SubscriptionType
from app.features.permissions.defaults import MEMBER_ROLE
from app.features.permissions.models import Role
from app.features.subscriptions.models import SubscriptionPlan
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app
from scripts.seed_subscription_plans import seed_subscription_plans


@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def plans(db) -> dict[str, SubscriptionPlan]:
    return await seed_subscription_plans(db)


class Factory:
    """Creates committed rows in the test session."""

    def __init__(self, db: AsyncSession, plans: dict[str, SubscriptionPlan]):
        self.db = db
        self.plans = plans
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def organization(self, plan: str | None = "Premium", expired: bool = False, **kwargs) -> Organization:
        n = self._next()
        start = datetime.now(timezone.utc) - timedelta(days=400 if expired else 10)
        organization = Organization(
            name=kwargs.pop("name", f"Org {n}"),
            pan_vat_number=kwargs.pop("pan_vat_number", f"PAN{n:06d}"),
            subscription_type=kwargs.pop("subscription_type", SubscriptionType.TWELVE_MONTHS),
            subscription_start_date=start,
            subscription_plan=self.plans[plan] if plan else None,
            **kwargs
        )
        organization.compute_subscription_end()
        self.db.add(organization)
        await self.db.commit()
        return organization

    async def user(
        self,
        organization: Organization | None = None,
        role: str = MEMBER_ROLE,
        custom_role: Role | None = None,
        reports_to: tuple[User, ...] = (),
        **kwargs
    ) -> User:
        n = self._next()
        user = User(
            appwrite_id=f"appwrite-{n}",
            email=f"user{n}@example.com",
            name=kwargs.pop("name", f"User {n}"),
            role=role,
            organization_id=organization.id if organization else None,
            custom_role=custom_role,
            reports_to=list(reports_to),
            **kwargs
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def role(self, organization: Organization, permissions: dict | None = None, **kwargs) -> Role:
        n = self._next()
        role = Role(
            organization_id=organization.id,
            name=kwargs.pop("name", f"Role {n}"),
            permissions=permissions or {},
            **kwargs
        )
        self.db.add(role)
        await self.db.commit()
        return role

    async def leave(self, employee: User, days_from_now: int = 7, length: int = 1, **kwargs) -> LeaveRequest:
        start = date.today() + timedelta(days=days_from_now)
        leave = LeaveRequest(
            organization_id=employee.organization_id,
            employee_id=employee.id,
            category=kwargs.pop("category", LeaveCategory.CASUAL_LEAVE),
            start_date=start,
            end_date=start + timedelta(days=length - 1),
            status=kwargs.pop("status", LeaveStatus.PENDING),
            **kwargs
        )
        self.db.add(leave)
        await self.db.commit()
        return leave

    async def supervise(self, user: User, *supervisors: User) -> User:
        """Replace a user's direct supervisors (cycles allowed)."""
        user.reports_to = list(supervisors)
        await self.db.commit()
        return user


@pytest.fixture
def factory(db, plans) -> Factory:
    return Factory(db, plans)


@pytest.fixture
def auth():
    """Request headers that authenticate as a user."""
    def headers(user: User) -> dict[str, str]:
        return {"X-User-Id": user.id}
    return headers


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_current_user(
        request: Request,
        db: AsyncSession = Depends(get_db)
    ) -> User:
        user_id = request.headers.get("X-User-Id")
        if not user_id:
            raise HTTPException(status_code=401, detail="Not authenticated")
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        if not user.is_active:
            raise HTTPException(status_code=403, detail="User account is deactivated")
        return user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
