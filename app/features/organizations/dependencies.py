"""
Dependencies resolving the organization a request operates on.

System users may address any organization; everyone else is confined to their own.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.dependencies import get_current_user
from app.features.organizations.models import Organization
from app.features.permissions.defaults import is_system_role


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """Load the organization named in the path, 404 when it does not exist."""
    tenant = await db.get(Organization, organization_id, populate_existing=True)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return tenant


async def get_user_organization(
    organization_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """Path organization, 403 unless the caller is a member or a system user."""
    tenant = await get_organization_by_id(organization_id, db)
    if user.organization_id != tenant.id and not is_system_role(user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not a member of this organization")
    return tenant


async def get_current_organization(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """The caller's own organization; 400 for organization-less users."""
    if user.organization_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User does not belong to an organization")
    return await get_organization_by_id(user.organization_id, db)
