"""
Authentication dependencies: who is calling and which base role they hold.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.defaults import MEMBER_ROLE, is_org_admin, is_system_role
from app.features.users.models import User
from app.features.users.auth import get_appwrite_user_id, get_appwrite_profile
from app.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Resolve the caller from the Appwrite JWT bearer token.

    First sight of an Appwrite account creates an organization-less member.
    Deactivated accounts are rejected with 403.
    """
    appwrite_user_id = get_appwrite_user_id(credentials.credentials)

    result = await db.execute(
        select(User).where(User.appwrite_id == appwrite_user_id)
    )
    user = result.scalar_one_or_none()

    if user is None:
        profile = await get_appwrite_profile(appwrite_user_id)
        user = User(
            appwrite_id=appwrite_user_id,
            email=profile["email"],
            name=profile["name"],
            role=MEMBER_ROLE,
            custom_role=None,
            reports_to=[],
        )
        db.add(user)
        log.info(f"Created local user for Appwrite user {appwrite_user_id}")

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(user)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def get_current_system_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """Require a system (platform operator) role."""
    if not is_system_role(user.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System privileges required",
        )
    return user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """Require a system role or the organization admin base role."""
    if not (is_system_role(user.role) or is_org_admin(user.role)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user


def get_authorization_header(request: Request) -> str:
    """Rate limit key: the raw bearer token, or one shared bucket for anonymous calls."""
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
