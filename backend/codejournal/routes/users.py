"""
Code Journal Backend — User Routes
===================================

What:  User search, profiles, capability changes (editors) and account
       removal (owner). `/query` is declared before `/{user_id}` so it is not
       taken for a user ID.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import get_db_session
from codejournal.dependencies import get_current_user
from codejournal.models import GlobalUser
from codejournal.schemas.common import ErrorResponse, MessageResponse
from codejournal.schemas.user import (
    PermissionsRequest,
    PermissionsResponse,
    UserProfileResponse,
    UserQueryResponse,
)
from codejournal.services.user_service import user_service

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get(
    "/query",
    response_model=UserQueryResponse,
    responses={400: {"description": "Unknown userType or orderBy", "model": ErrorResponse}},
    summary="Search users",
)
async def query_users(
    user_type: Optional[str] = Query(
        default=None, alias="userType", description="publisher, reviewer or editor"
    ),
    organization: Optional[str] = Query(default=None, description="Substring of the organization"),
    name: Optional[str] = Query(default=None, description="Substring of the first or last name"),
    order_by: Optional[str] = Query(default=None, alias="orderBy", description="firstName or lastName"),
    db: AsyncSession = Depends(get_db_session),
) -> UserQueryResponse:
    return await user_service.query_users(
        db,
        user_type=user_type,
        organization=organization,
        name=name,
        order_by=order_by,
    )


@router.get(
    "/{user_id}",
    response_model=UserProfileResponse,
    responses={404: {"description": "Unknown user", "model": ErrorResponse}},
    summary="Get a user's profile",
)
async def get_profile(
    user_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> UserProfileResponse:
    return await user_service.get_profile(db, user_id)


@router.post(
    "/{user_id}/permissions",
    response_model=PermissionsResponse,
    responses={403: {"description": "Caller is not an editor", "model": ErrorResponse}},
    summary="Replace a user's capabilities",
)
async def set_permissions(
    user_id: str,
    body: PermissionsRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> PermissionsResponse:
    return await user_service.set_capabilities(db, caller, user_id, body.capabilities)


@router.delete(
    "/{user_id}",
    response_model=MessageResponse,
    responses={403: {"description": "Not the account owner", "model": ErrorResponse}},
    summary="Delete your own account",
)
async def delete_account(
    user_id: str,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await user_service.delete_account(db, caller, user_id)
    return MessageResponse(message="Account deleted")
