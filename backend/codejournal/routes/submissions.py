"""
Code Journal Backend — Submission Route Handlers
=================================================

What:  Create (JSON or zip), list, read and delete submissions; add files;
       assign reviewers; append reviews; editor approval.
How:   Bodies arrive base64 encoded and are decoded here; everything else is
       delegated to the submission repository.

Caching:
    Reads are `Cache-Control: no-store`: reviews, approval and comments
    change while a submission is open.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import get_db_session
from codejournal.dependencies import get_current_user
from codejournal.models import GlobalUser
from codejournal.schemas.common import ErrorResponse, MessageResponse
from codejournal.schemas.submission import (
    ApprovalRequest,
    ApprovalResponse,
    AssignReviewersRequest,
    AssignReviewersResponse,
    CreateSubmissionRequest,
    FileCreatedResponse,
    FileOut,
    FileUpload,
    ReviewOut,
    ReviewRequest,
    SubmissionCreatedResponse,
    SubmissionListResponse,
    SubmissionResponse,
    ZipSubmissionRequest,
)
from codejournal.services.submission_service import submission_service
from codejournal.services.validation import decode_base64

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/submissions", tags=["Submissions"])


@router.post(
    "",
    response_model=SubmissionCreatedResponse,
    responses={
        400: {"description": "Validation failed", "model": ErrorResponse},
        403: {"description": "Caller cannot publish", "model": ErrorResponse},
        404: {"description": "Unknown author or reviewer", "model": ErrorResponse},
        409: {"description": "Duplicate file path", "model": ErrorResponse},
    },
    summary="Create a submission with its files",
)
async def create_submission(
    body: CreateSubmissionRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionCreatedResponse:
    files = [(upload.path, decode_base64(upload.base64_value, field="files")) for upload in body.files]
    submission_id = await submission_service.create_submission(
        db,
        caller,
        name=body.name,
        license=body.license,
        abstract=body.abstract,
        tags=body.tags,
        author_ids=body.authors,
        reviewer_ids=body.reviewers,
        files=files,
    )
    return SubmissionCreatedResponse(id=submission_id)


@router.post(
    "/zip",
    response_model=SubmissionCreatedResponse,
    responses={400: {"description": "Malformed zip", "model": ErrorResponse}},
    summary="Create a submission from a zip archive",
)
async def create_submission_from_zip(
    body: ZipSubmissionRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionCreatedResponse:
    submission_id = await submission_service.create_from_zip(
        db,
        caller,
        name=body.name,
        license=body.license,
        abstract=body.abstract,
        tags=body.tags,
        author_ids=body.authors,
        reviewer_ids=body.reviewers,
        archive=decode_base64(body.base64_value),
    )
    return SubmissionCreatedResponse(id=submission_id)


@router.get(
    "",
    response_model=SubmissionListResponse,
    summary="List submissions, newest first",
)
async def list_submissions(
    response: Response,
    tag: Optional[str] = Query(default=None, description="Only submissions with this category"),
    author: Optional[str] = Query(default=None, description="Only submissions by this user ID"),
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionListResponse:
    result = await submission_service.list_submissions(db, tag=tag, author_id=author)
    response.headers["X-Total-Count"] = str(result.total_count)
    return result


@router.get(
    "/{submission_id}",
    response_model=SubmissionResponse,
    responses={404: {"description": "Unknown submission", "model": ErrorResponse}},
    summary="Read a submission across both stores",
)
async def get_submission(
    submission_id: int,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionResponse:
    result = await submission_service.read_submission(db, submission_id)
    response.headers["Cache-Control"] = "no-store"
    return result


@router.delete(
    "/{submission_id}",
    response_model=MessageResponse,
    responses={403: {"description": "Not an author or editor", "model": ErrorResponse}},
    summary="Delete a submission",
)
async def delete_submission(
    submission_id: int,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    deleted = await submission_service.delete_submission(db, caller, submission_id)
    return MessageResponse(message="Submission deleted" if deleted else "Submission already deleted")


@router.post(
    "/{submission_id}/files",
    response_model=FileCreatedResponse,
    responses={
        403: {"description": "Not an author", "model": ErrorResponse},
        409: {"description": "Duplicate path or terminal submission", "model": ErrorResponse},
    },
    summary="Add a file to a submission",
)
async def add_file(
    submission_id: int,
    body: FileUpload,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> FileCreatedResponse:
    file = await submission_service.add_file(
        db, caller, submission_id, body.path, decode_base64(body.base64_value)
    )
    return FileCreatedResponse(id=file.id, path=file.path)


@router.get(
    "/{submission_id}/files/{file_id}",
    response_model=FileOut,
    responses={404: {"description": "Unknown submission or file", "model": ErrorResponse}},
    summary="Read one file with its comment forest",
)
async def get_file(
    submission_id: int,
    file_id: int,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> FileOut:
    result = await submission_service.read_file(db, submission_id, file_id)
    response.headers["Cache-Control"] = "no-store"
    return result


@router.post(
    "/{submission_id}/reviewers",
    response_model=AssignReviewersResponse,
    responses={403: {"description": "Not an editor or author", "model": ErrorResponse}},
    summary="Assign reviewers",
)
async def assign_reviewers(
    submission_id: int,
    body: AssignReviewersRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> AssignReviewersResponse:
    reviewers, added = await submission_service.assign_reviewers(
        db, caller, submission_id, body.reviewers
    )
    return AssignReviewersResponse(id=submission_id, reviewers=reviewers, added=added)


@router.post(
    "/{submission_id}/reviews",
    response_model=ReviewOut,
    responses={
        401: {"description": "Not an assigned reviewer", "model": ErrorResponse},
        409: {"description": "Already reviewed or terminal", "model": ErrorResponse},
    },
    summary="Append the caller's review",
)
async def append_review(
    submission_id: int,
    body: ReviewRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ReviewOut:
    review = await submission_service.append_review(
        db, caller, submission_id, body.approved, body.base64_value
    )
    return ReviewOut(
        reviewer=review["reviewer"],
        approved=review["approved"],
        base64_value=review["base64Value"],
        time=review["time"],
    )


@router.post(
    "/{submission_id}/approval",
    response_model=ApprovalResponse,
    responses={
        403: {"description": "Caller is not an editor", "model": ErrorResponse},
        409: {"description": "Missing reviews or already decided", "model": ErrorResponse},
    },
    summary="Approve or reject a submission",
)
async def set_approval(
    submission_id: int,
    body: ApprovalRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApprovalResponse:
    status, changed = await submission_service.set_approval(db, caller, submission_id, body.status)
    return ApprovalResponse(id=submission_id, approval=status.value, changed=changed)
