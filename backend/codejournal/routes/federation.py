"""
Code Journal Backend — Federation Routes
=========================================

What:  Read-only endpoints for peer journals. ForeignJournalTokenMiddleware
       has already checked the security token when these handlers run.
"""

from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import get_db_session
from codejournal.schemas.user import FederatedUserResponse
from codejournal.services.submission_service import submission_service
from codejournal.services.user_service import user_service

router = APIRouter(prefix="/federation", tags=["Federation"])


@router.get(
    "/submissions",
    response_model=Dict[int, str],
    summary="IDs and names of approved submissions",
)
async def approved_submissions(
    db: AsyncSession = Depends(get_db_session),
) -> Dict[int, str]:
    return await submission_service.approved_submission_names(db)


@router.get(
    "/users/{user_id}",
    response_model=FederatedUserResponse,
    summary="Public profile of a user",
)
async def federated_user(
    user_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> FederatedUserResponse:
    return await user_service.federated_profile(db, user_id)
