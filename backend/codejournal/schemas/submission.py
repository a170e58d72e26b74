"""
Code Journal Backend — Submission Schemas
==========================================

What:  Request/response models for submissions, files, reviews, approval
       and reconciliation reports.
Who:   Used by routes/submissions.py, routes/maintenance.py and
       routes/federation.py.

Degraded Entries:
    A file whose body cannot be read is returned with `degraded: true`,
    `base64Value: null` and an `error` string instead of failing the whole
    read. A submission whose on-disk subtree is missing is itself
    `degraded: true` with an empty abstract and no reviews.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from codejournal.schemas.comment import CommentNode
from codejournal.schemas.common import CamelModel


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class FileUpload(CamelModel):
    path: str = Field(min_length=1, max_length=1024)
    base64_value: str = Field(default="", description="File body, base64 encoded")


class CreateSubmissionRequest(CamelModel):
    name: str = Field(min_length=1, max_length=128)
    license: Optional[str] = Field(default=None, max_length=64)
    abstract: str = Field(default="")
    tags: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list, description="Global user IDs, in order")
    reviewers: List[str] = Field(default_factory=list)
    files: List[FileUpload] = Field(default_factory=list)


class ZipSubmissionRequest(CamelModel):
    name: str = Field(min_length=1, max_length=128)
    license: Optional[str] = Field(default=None, max_length=64)
    abstract: str = Field(default="")
    tags: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    reviewers: List[str] = Field(default_factory=list)
    base64_value: str = Field(description="Zip archive, base64 encoded")


class AssignReviewersRequest(CamelModel):
    reviewers: List[str] = Field(min_length=1)


class ReviewRequest(CamelModel):
    approved: bool
    base64_value: str = Field(default="")


class ApprovalRequest(CamelModel):
    status: bool = Field(description="true approves, false rejects")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class SubmissionCreatedResponse(CamelModel):
    id: int


class FileCreatedResponse(CamelModel):
    id: int
    path: str


class UserRef(CamelModel):
    user_id: str
    full_name: str


class ReviewOut(CamelModel):
    reviewer: str
    approved: bool
    base64_value: str
    time: Optional[str] = None


class FileOut(CamelModel):
    id: int
    path: str
    base64_value: Optional[str] = None
    degraded: bool = False
    error: Optional[str] = None
    comments: List[CommentNode] = Field(default_factory=list)


class SubmissionResponse(CamelModel):
    """Unified read of one submission across both stores."""
    id: int
    name: str
    license: Optional[str] = None
    approval: str
    state: str
    abstract: str = ""
    created_at: datetime
    updated_at: datetime
    authors: List[UserRef]
    reviewers: List[UserRef]
    categories: List[str]
    reviews: List[ReviewOut]
    files: List[FileOut]
    degraded: bool = False


class SubmissionListItem(CamelModel):
    id: int
    name: str
    approval: str
    categories: List[str]
    authors: List[str]
    created_at: datetime


class SubmissionListResponse(CamelModel):
    submissions: List[SubmissionListItem]
    total_count: int


class ApprovalResponse(CamelModel):
    id: int
    approval: str
    changed: bool


class AssignReviewersResponse(CamelModel):
    id: int
    reviewers: List[str]
    added: List[str]


class ReconcileReport(CamelModel):
    """Findings of one reconciliation pass."""
    missing_on_disk: List[int] = Field(default_factory=list)
    quarantined: List[int] = Field(default_factory=list)
    orphan_sidecars_removed: List[str] = Field(default_factory=list)
    sidecars_rebuilt: List[str] = Field(default_factory=list)
    missing_bodies: List[str] = Field(default_factory=list)
    removed_deleted: List[int] = Field(default_factory=list)
    repairs_applied: List[str] = Field(default_factory=list)
