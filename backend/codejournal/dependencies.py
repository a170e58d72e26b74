"""
Code Journal Backend — Caller Identity Dependencies
====================================================

What:  FastAPI dependencies that turn a bearer token into the caller's
       GlobalUser.
How:   `HTTPBearer(auto_error=False)` extracts the token; security.verify_token
       checks signature and expiry; the `sub` claim is resolved through the
       relational store. Soft-deleted users are rejected like unknown ones.
"""

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import get_db_session
from codejournal.exceptions import AuthenticationError, BadUserError
from codejournal.models import GlobalUser
from codejournal.security import verify_token
from codejournal.services.relational import relational_store

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[GlobalUser]:
    if credentials is None:
        return None
    payload = verify_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired access token")
    try:
        return await relational_store.get_global_user(db, payload["sub"])
    except BadUserError:
        logger.warning("Access token for unknown or deleted user %s", payload["sub"])
        raise AuthenticationError("Invalid or expired access token") from None


async def get_current_user(
    user: Optional[GlobalUser] = Depends(get_optional_user),
) -> GlobalUser:
    if user is None:
        raise AuthenticationError()
    return user
