"""
Upstream authentication: Appwrite JWT verification and profile lookup.

The access engine only ever sees the resolved local User; everything Appwrite
specific stays in this module.
"""
from typing import Optional

import jwt
from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.services.users import Users
from fastapi import HTTPException, status
from starlette.concurrency import run_in_threadpool

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


class AppwriteClient:
    """Lazily created server-side Appwrite client shared by the process."""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Client:
        if cls._instance is None:
            client = Client()
            client.set_endpoint(config.APPWRITE_ENDPOINT)
            client.set_project(config.APPWRITE_PROJECT_ID)
            client.set_key(config.APPWRITE_API_KEY)
            cls._instance = client
        return cls._instance


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_appwrite_user_id(token: str) -> str:
    """
    Decode an Appwrite JWT and return the Appwrite user id it was issued for.

    Appwrite signs the token; only expiry is verified locally and the user is
    confirmed against Appwrite on first sight.

    Raises:
        HTTPException: 401 if the token is expired, malformed or has no user id
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": True})
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")

    user_id = payload.get("userId")
    if not user_id:
        raise _unauthorized("Invalid token payload")
    return user_id


async def get_appwrite_profile(user_id: str) -> dict:
    """
    Fetch name and email of an Appwrite user.

    Raises:
        HTTPException: 401 if Appwrite does not know the user
    """
    try:
        users = Users(AppwriteClient.get_client())
        profile = await run_in_threadpool(users.get, user_id)
    except AppwriteException as e:
        log.warning(f"Appwrite lookup failed for {user_id}: {e}")
        raise _unauthorized(f"Failed to verify user: {e}")

    return {
        "email": profile.get("email", ""),
        "name": profile.get("name") or "Unknown",
    }
