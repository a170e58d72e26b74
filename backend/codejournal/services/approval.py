"""
Code Journal Backend — Review & Approval State Machine
=======================================================

What:  Pure functions computing a submission's review state and deciding
       which review / approval transitions are legal.
Why:   No state column is persisted; the state is derived from the
       tri-state approval flag and the reviews held in the metadata JSON.

States:
    DRAFT ─ assign reviewers ─► REVIEW_PENDING
    REVIEW_PENDING ─ append review* ─► REVIEW_PENDING
    REVIEW_PENDING ─ last review ─► REVIEW_COMPLETE
    REVIEW_COMPLETE ─ approve  ─► APPROVED (terminal)
    REVIEW_COMPLETE ─ reject   ─► REJECTED (terminal)
"""

import enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from codejournal.exceptions import (
    DuplicateReviewError,
    MissingReviewsError,
    NotReviewerError,
    SubmissionApprovedError,
    SubmissionRejectedError,
    ValidationError,
)
from codejournal.models import ApprovalStatus


class ReviewState(str, enum.Enum):
    DRAFT = "draft"
    REVIEW_PENDING = "review_pending"
    REVIEW_COMPLETE = "review_complete"
    APPROVED = "approved"
    REJECTED = "rejected"


def reviewed_by(reviews: Iterable[Dict[str, Any]]) -> List[str]:
    return [review.get("reviewer") for review in reviews]


def missing_reviewers(reviewer_ids: Sequence[str], reviews: Sequence[Dict[str, Any]]) -> List[str]:
    done = set(reviewed_by(reviews))
    return [reviewer for reviewer in reviewer_ids if reviewer not in done]


def compute_state(
    approval: ApprovalStatus,
    reviewer_ids: Sequence[str],
    reviews: Sequence[Dict[str, Any]],
) -> ReviewState:
    if approval is ApprovalStatus.APPROVED:
        return ReviewState.APPROVED
    if approval is ApprovalStatus.REJECTED:
        return ReviewState.REJECTED
    if not reviewer_ids:
        return ReviewState.DRAFT
    if missing_reviewers(reviewer_ids, reviews):
        return ReviewState.REVIEW_PENDING
    return ReviewState.REVIEW_COMPLETE


def ensure_not_terminal(submission_id: int, approval: ApprovalStatus) -> None:
    """Raise the terminal-state error matching `approval`, if any."""
    if approval is ApprovalStatus.APPROVED:
        raise SubmissionApprovedError(submission_id)
    if approval is ApprovalStatus.REJECTED:
        raise SubmissionRejectedError(submission_id)


def check_review_allowed(
    submission_id: int,
    caller_id: str,
    approval: ApprovalStatus,
    reviewer_ids: Sequence[str],
    reviews: Sequence[Dict[str, Any]],
) -> None:
    """Checked in order: assigned reviewer, not yet reviewed, not terminal."""
    if caller_id not in reviewer_ids:
        raise NotReviewerError(caller_id, submission_id)
    if caller_id in reviewed_by(reviews):
        raise DuplicateReviewError(caller_id, submission_id)
    ensure_not_terminal(submission_id, approval)


def decide_approval(
    submission_id: int,
    current: ApprovalStatus,
    requested: ApprovalStatus,
    reviewer_ids: Sequence[str],
    reviews: Sequence[Dict[str, Any]],
) -> Optional[ApprovalStatus]:
    """
    Decide an editor's approve / reject request.

    Returns the new status, or None when the request repeats the current
    terminal value (nothing to change). Asking for the other terminal value
    raises the error of the current one; a DRAFT or incompletely reviewed
    submission raises MissingReviewsError.
    """
    if not requested.is_terminal:
        raise ValidationError(message="Approval must be approved or rejected", field="status")
    if current.is_terminal:
        if current is requested:
            return None
        ensure_not_terminal(submission_id, current)
    if not reviewer_ids:
        raise MissingReviewsError(submission_id, missing=1)
    missing = missing_reviewers(reviewer_ids, reviews)
    if missing or len(reviews) != len(reviewer_ids):
        raise MissingReviewsError(submission_id, missing=max(1, len(missing)))
    return requested
