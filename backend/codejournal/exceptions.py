"""
Code Journal Backend — Custom Exception Hierarchy
==================================================

What:  Application-specific exceptions for every failure the core can report.
Why:   Services raise typed errors; one global handler maps them onto HTTP
       status codes and stable machine-readable codes.
How:   Each exception class carries a message, an optional context dict, a
       stable `error_code` and an HTTP `status_code`.
Who:   Raised by services and middleware; caught by handlers in main.py.

Exception Hierarchy:
    JournalError (base)
    ├── ValidationError                 → 400 validation_error
    │   └── BadParentError              → 400 bad_parent
    ├── AuthenticationError             → 401 unauthorized
    ├── NotReviewerError                → 401 not_reviewer
    ├── WrongPermissionsError           → 403 wrong_permissions
    ├── NotFoundError                   → 404 not_found
    │   ├── BadUserError                → 404 bad_user
    │   ├── NoSubmissionError           → 404 no_submission
    │   ├── FileNotFoundInSubmissionError → 404 no_file
    │   └── CommentNotFoundError        → 404 no_comment
    ├── ConflictError                   → 409
    │   ├── DuplicateEmailError         → 409 duplicate_email
    │   ├── DuplicateFileError          → 409 duplicate_file
    │   ├── DuplicateReviewError        → 409 duplicate_review
    │   ├── MissingReviewsError         → 409 missing_reviews
    │   └── SubmissionFinalisedError    → 409
    │       ├── SubmissionApprovedError → 409 submission_approved
    │       └── SubmissionRejectedError → 409 submission_rejected
    └── StoreError                      → 500 server_error
        ├── DatabaseError
        └── FileStorageError

Security Note:
    StoreError context (paths, SQL error text) is logged server-side only and
    never returned to API consumers.
"""

from typing import Any, Dict, Optional


class JournalError(Exception):
    """
    Base exception for all Code Journal application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (returned as `details` for client errors,
                  logged only for store errors)
    """

    error_code = "journal_error"
    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


# ── 400 ───────────────────────────────────────────────────────────────────

class ValidationError(JournalError):
    """
    Raised when client input fails a business validation rule.

    When:    Bad password, path with `..`, start line after end line,
             empty author list, malformed base64, bad category tag.
    """

    error_code = "validation_error"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class BadParentError(ValidationError):
    """A reply names a parent comment that is missing, tombstoned or on another file."""

    error_code = "bad_parent"

    def __init__(self, parent_id: int, file_id: int):
        super().__init__(
            message=f"Comment {parent_id} cannot be replied to on file {file_id}",
            field="parentId",
            context={"parent_id": parent_id, "file_id": file_id},
        )


# ── 401 / 403 ─────────────────────────────────────────────────────────────

class AuthenticationError(JournalError):
    """Missing, expired or invalid credentials."""

    error_code = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message)


class NotReviewerError(JournalError):
    """The caller is not an assigned reviewer of the submission."""

    error_code = "not_reviewer"
    status_code = 401

    def __init__(self, user_id: str, submission_id: int):
        super().__init__(
            message=f"User {user_id} is not assigned as reviewer to submission {submission_id}",
            context={"user_id": user_id, "submission_id": submission_id},
        )


class WrongPermissionsError(JournalError):
    """The caller lacks the capability (or ownership) the operation needs."""

    error_code = "wrong_permissions"
    status_code = 403

    def __init__(self, user_id: str, required: Optional[str] = None):
        message = f"User {user_id} does not have the required permissions"
        if required:
            message += f" ({required})"
        super().__init__(message=message, context={"user_id": user_id, "required": required})


# ── 404 ───────────────────────────────────────────────────────────────────

class NotFoundError(JournalError):
    """
    Raised when a requested resource does not exist (or is soft-deleted).

    SQLAlchemy returns None for missing rows; services convert that into a
    typed subclass so the handler can return 404.
    """

    error_code = "not_found"
    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id is not None:
            message = f"{resource} '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id is not None:
            ctx["resource_id"] = str(resource_id)
        super().__init__(message=message, context=ctx)


class BadUserError(NotFoundError):
    error_code = "bad_user"

    def __init__(self, user_id: str):
        super().__init__(resource="user", resource_id=user_id)


class NoSubmissionError(NotFoundError):
    error_code = "no_submission"

    def __init__(self, submission_id: int):
        super().__init__(resource="submission", resource_id=submission_id)


class FileNotFoundInSubmissionError(NotFoundError):
    error_code = "no_file"

    def __init__(self, file_id: Any):
        super().__init__(resource="file", resource_id=file_id)


class CommentNotFoundError(NotFoundError):
    error_code = "no_comment"

    def __init__(self, comment_id: int):
        super().__init__(resource="comment", resource_id=comment_id)


# ── 409 ───────────────────────────────────────────────────────────────────

class ConflictError(JournalError):
    """The request is well-formed but conflicts with the current state."""

    error_code = "conflict"
    status_code = 409


class DuplicateEmailError(ConflictError):
    error_code = "duplicate_email"

    def __init__(self, email: str):
        super().__init__(
            message=f"Email {email} is already taken",
            context={"field": "email"},
        )


class DuplicateFileError(ConflictError):
    """A path (or a path sharing its sidecar) already exists in the submission."""

    error_code = "duplicate_file"

    def __init__(self, path: str, submission_id: Optional[int] = None):
        super().__init__(
            message=f"Path {path} already exists in the submission",
            context={"path": path, "submission_id": submission_id},
        )
        self.path = path


class DuplicateReviewError(ConflictError):
    error_code = "duplicate_review"

    def __init__(self, user_id: str, submission_id: int):
        super().__init__(
            message=f"Reviewer {user_id} already reviewed submission {submission_id}",
            context={"user_id": user_id, "submission_id": submission_id},
        )


class MissingReviewsError(ConflictError):
    error_code = "missing_reviews"

    def __init__(self, submission_id: int, missing: int):
        super().__init__(
            message=f"Cannot change status of submission {submission_id}: {missing} review(s) missing",
            context={"submission_id": submission_id, "missing": missing},
        )


class SubmissionFinalisedError(ConflictError):
    """Base for mutations refused because the submission is terminal."""

    status_label = "finalised"

    def __init__(self, submission_id: int):
        super().__init__(
            message=f"Cannot perform this action on {self.status_label} submission {submission_id}",
            context={"submission_id": submission_id},
        )


class SubmissionApprovedError(SubmissionFinalisedError):
    error_code = "submission_approved"
    status_label = "approved"


class SubmissionRejectedError(SubmissionFinalisedError):
    error_code = "submission_rejected"
    status_label = "rejected"


# ── 500 ───────────────────────────────────────────────────────────────────

class StoreError(JournalError):
    """
    A relational or filesystem primitive failed.

    HTTP:    500 Internal Server Error, generic message to the client.
    """

    error_code = "server_error"
    status_code = 500


class DatabaseError(StoreError):
    """A database query, insert, or commit failed unexpectedly."""

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(StoreError):
    """Could not read, write, rename or delete something under the storage root."""

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
