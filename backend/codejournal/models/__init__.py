"""ORM models. Importing this package registers every table on Base.metadata."""

from codejournal.models.user import Capability, GlobalUser, Server, User
from codejournal.models.submission import (
    ApprovalStatus,
    Category,
    Comment,
    File,
    Submission,
    authors_submission,
    categories_submission,
    reviewers_submission,
)

__all__ = [
    "ApprovalStatus",
    "Capability",
    "Category",
    "Comment",
    "File",
    "GlobalUser",
    "Server",
    "Submission",
    "User",
    "authors_submission",
    "categories_submission",
    "reviewers_submission",
]
