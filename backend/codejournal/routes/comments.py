"""
Code Journal Backend — Comment Route Handlers
==============================================

What:  Add, edit and tombstone comments on a file, and read its forest.
Who:   Any authenticated user may comment; only the author edits or deletes.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import get_db_session
from codejournal.dependencies import get_current_user
from codejournal.models import GlobalUser
from codejournal.schemas.comment import (
    CommentCreatedResponse,
    CommentNode,
    EditCommentRequest,
    NewCommentRequest,
)
from codejournal.schemas.common import ErrorResponse, MessageResponse
from codejournal.services.comment_service import comment_service

router = APIRouter(prefix="/api/files", tags=["Comments"])


@router.get(
    "/{file_id}/comments",
    response_model=List[CommentNode],
    responses={404: {"description": "Unknown file", "model": ErrorResponse}},
    summary="Comment forest of a file",
)
async def list_comments(
    file_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> List[CommentNode]:
    await comment_service.rs.load_file(db, file_id)
    return await comment_service.file_comments(db, file_id)


@router.post(
    "/{file_id}/comments",
    response_model=CommentCreatedResponse,
    responses={
        400: {"description": "Bad line range or parent", "model": ErrorResponse},
        409: {"description": "Submission is approved or rejected", "model": ErrorResponse},
    },
    summary="Add a comment or reply",
)
async def add_comment(
    file_id: int,
    body: NewCommentRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CommentCreatedResponse:
    comment = await comment_service.add_comment(
        db,
        caller,
        file_id,
        start_line=body.start_line,
        end_line=body.end_line,
        base64_value=body.base64_value,
        parent_id=body.parent_id,
    )
    return CommentCreatedResponse(id=comment.id)


@router.put(
    "/{file_id}/comments/{comment_id}",
    response_model=MessageResponse,
    responses={403: {"description": "Not the comment author", "model": ErrorResponse}},
    summary="Edit a comment body",
)
async def edit_comment(
    file_id: int,
    comment_id: int,
    body: EditCommentRequest,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await comment_service.edit_comment(db, caller, file_id, comment_id, body.base64_value)
    return MessageResponse(message="Comment updated")


@router.delete(
    "/{file_id}/comments/{comment_id}",
    response_model=MessageResponse,
    responses={403: {"description": "Not the comment author", "model": ErrorResponse}},
    summary="Delete a comment",
)
async def delete_comment(
    file_id: int,
    comment_id: int,
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    deleted = await comment_service.delete_comment(db, caller, file_id, comment_id)
    return MessageResponse(message="Comment deleted" if deleted else "Comment already deleted")
