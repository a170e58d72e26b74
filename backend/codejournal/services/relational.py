"""
Code Journal Backend — Relational Store
========================================

What:  Typed reads and writes over users, submissions, files, comments and
       categories, including the author / reviewer / category join rows.
Why:   The repository services compose these primitives inside one
       transaction; none of the methods here commit.
How:   Every method takes the caller's AsyncSession. Writes `flush()` so IDs
       are assigned while the transaction stays open. Soft-deleted rows
       (deleted_at IS NOT NULL) are invisible unless a method opts in.

Retry Strategy:
    Read primitives are wrapped with tenacity: a dropped or invalidated
    connection is retried with exponential backoff and jitter. Writes are
    never retried; they fail the surrounding unit of work instead.
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import Column, Integer, func, insert, or_, select, type_coerce, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from codejournal.config import settings
from codejournal.database import utcnow
from codejournal.exceptions import (
    BadParentError,
    BadUserError,
    CommentNotFoundError,
    DuplicateFileError,
    FileNotFoundInSubmissionError,
    NoSubmissionError,
    ValidationError,
)
from codejournal.models import (
    ApprovalStatus,
    Capability,
    Category,
    Comment,
    File,
    GlobalUser,
    Submission,
    User,
    authors_submission,
    categories_submission,
    reviewers_submission,
)
from codejournal.services.validation import normalize_tags, parent_dirs, sidecar_path_for

logger = logging.getLogger(__name__)


def is_transient_db_error(exc: BaseException) -> bool:
    """A connection-level failure that a fresh attempt may not hit."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OperationalError, InterfaceError))


def matches_any_word(columns, text: str):
    """Case-insensitive substring match on the whole text or, for several words, any one."""
    words = text.split()
    terms = [text.strip(), *words] if len(words) > 1 else [text.strip()]
    return or_(
        *(
            column.icontains(term, autoescape=True)
            for column in columns
            for term in terms
        )
    )


transient_read_wait = wait_exponential(
    multiplier=settings.retry_min_wait,
    max=settings.retry_max_wait,
) + wait_random(0, settings.retry_min_wait)

transient_read_retry = retry(
    retry=retry_if_exception(is_transient_db_error),
    stop=stop_after_attempt(settings.retry_max_attempts),
    wait=transient_read_wait,
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class RelationalStore:
    """
    Stateless wrapper over the ORM; one instance is shared by all services.
    """

    # ── Users ─────────────────────────────────────────────────────────────

    @transient_read_retry
    async def get_global_user(
        self,
        db: AsyncSession,
        user_id: str,
        include_deleted: bool = False,
    ) -> GlobalUser:
        query = select(GlobalUser).where(GlobalUser.id == user_id)
        if not include_deleted:
            query = query.where(GlobalUser.deleted_at.is_(None))
        result = await db.execute(query)
        global_user = result.unique().scalar_one_or_none()
        if global_user is None:
            raise BadUserError(user_id)
        return global_user

    async def get_global_users(self, db: AsyncSession, user_ids: Sequence[str]) -> List[GlobalUser]:
        """Resolve IDs in order, dropping repeats; any unknown ID is a BadUserError."""
        users: List[GlobalUser] = []
        seen = set()
        for user_id in user_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            users.append(await self.get_global_user(db, user_id))
        return users

    async def find_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(
            select(User).where(User.email == email, User.deleted_at.is_(None))
        )
        return result.unique().scalar_one_or_none()

    async def insert_user(
        self,
        db: AsyncSession,
        user: User,
        global_user_id: str,
        capabilities: Capability,
    ) -> GlobalUser:
        db.add(user)
        await db.flush()
        global_user = GlobalUser(id=global_user_id, capabilities=capabilities, user=user)
        db.add(global_user)
        await db.flush()
        return global_user

    @transient_read_retry
    async def query_users(
        self,
        db: AsyncSession,
        capability: Optional[Capability] = None,
        organization: Optional[str] = None,
        name: Optional[str] = None,
        order_by: Optional[str] = None,
    ) -> List[GlobalUser]:
        """
        Live users filtered by capability and by case-insensitive substring
        matches on organization or first / last name.

        A multi-word pattern matches on the whole text or on any one word.
        `order_by` is "first_name", "last_name" or None (registration order).
        """
        query = (
            select(GlobalUser)
            .join(User, GlobalUser.user_id == User.id)
            .where(GlobalUser.deleted_at.is_(None), User.deleted_at.is_(None))
        )
        if capability:
            query = query.where(
                type_coerce(GlobalUser.capabilities, Integer).op("&")(capability.value) != 0
            )
        if organization:
            query = query.where(matches_any_word([User.organization], organization))
        if name:
            query = query.where(matches_any_word([User.first_name, User.last_name], name))
        if order_by == "first_name":
            query = query.order_by(User.first_name, User.last_name, User.id)
        elif order_by == "last_name":
            query = query.order_by(User.last_name, User.first_name, User.id)
        else:
            query = query.order_by(User.id)
        return list((await db.execute(query)).unique().scalars().all())

    # ── Uniqueness ────────────────────────────────────────────────────────

    async def is_unique(self, db: AsyncSession, column: Column, value, **scope) -> bool:
        """
        True when no undeleted row of `column`'s table has `column == value`.

        `scope` adds equality filters, e.g. `submission_id=7` for per-submission
        path uniqueness.
        """
        table = column.table
        query = select(func.count()).select_from(table).where(column == value)
        for key, scoped_value in scope.items():
            query = query.where(table.c[key] == scoped_value)
        if "deleted_at" in table.c:
            query = query.where(table.c.deleted_at.is_(None))
        count = (await db.execute(query)).scalar_one()
        return count == 0

    # ── Submissions ───────────────────────────────────────────────────────

    async def insert_submission(
        self,
        db: AsyncSession,
        name: str,
        license: Optional[str],
        authors: Sequence[GlobalUser],
        reviewers: Sequence[GlobalUser],
        tags: Sequence[str],
    ) -> Submission:
        """
        Create the submission row with its author, reviewer and category rows.

        Raises ValidationError for an empty author list, an author without the
        publisher capability, a reviewer without the reviewer capability or a
        malformed tag.
        """
        if not authors:
            raise ValidationError(message="A submission needs at least one author", field="authors")
        for author in authors:
            if not author.has(Capability.PUBLISHER):
                raise ValidationError(
                    message=f"User {author.id} is not a publisher",
                    field="authors",
                    context={"user_id": author.id},
                )
        for reviewer in reviewers:
            if not reviewer.has(Capability.REVIEWER):
                raise ValidationError(
                    message=f"User {reviewer.id} is not a reviewer",
                    field="reviewers",
                    context={"user_id": reviewer.id},
                )
        normalized_tags = normalize_tags(tags)

        submission = Submission(name=name, license=license, approval=ApprovalStatus.UNSET)
        db.add(submission)
        await db.flush()

        for position, author in enumerate(authors):
            await db.execute(
                insert(authors_submission).values(
                    submission_id=submission.id,
                    global_user_id=author.id,
                    position=position,
                )
            )
        await self.add_reviewers(db, submission.id, reviewers)
        for tag in normalized_tags:
            await self._ensure_category(db, tag)
            await db.execute(
                insert(categories_submission).values(
                    submission_id=submission.id,
                    category_tag=tag,
                )
            )
        await db.flush()
        logger.info("Submission row %d created (%d authors)", submission.id, len(authors))
        return submission

    async def _ensure_category(self, db: AsyncSession, tag: str) -> Category:
        category = await db.get(Category, tag)
        if category is None:
            category = Category(tag=tag)
            db.add(category)
            await db.flush()
        return category

    async def add_reviewers(
        self,
        db: AsyncSession,
        submission_id: int,
        reviewers: Sequence[GlobalUser],
    ) -> List[GlobalUser]:
        """Insert reviewer join rows, skipping users already assigned."""
        rows = await db.execute(
            select(reviewers_submission.c.global_user_id, reviewers_submission.c.position)
            .where(reviewers_submission.c.submission_id == submission_id)
        )
        existing = {row.global_user_id: row.position for row in rows}
        position = max(existing.values(), default=-1) + 1
        added = []
        for reviewer in reviewers:
            if reviewer.id in existing:
                continue
            await db.execute(
                insert(reviewers_submission).values(
                    submission_id=submission_id,
                    global_user_id=reviewer.id,
                    position=position,
                )
            )
            existing[reviewer.id] = position
            position += 1
            added.append(reviewer)
        return added

    @transient_read_retry
    async def load_submission(
        self,
        db: AsyncSession,
        submission_id: int,
        include_deleted: bool = False,
    ) -> Submission:
        """Submission with files, authors, reviewers and categories loaded."""
        query = (
            select(Submission)
            .where(Submission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(Submission.deleted_at.is_(None))
        submission = (await db.execute(query)).scalar_one_or_none()
        if submission is None:
            raise NoSubmissionError(submission_id)
        return submission

    @transient_read_retry
    async def list_submissions(
        self,
        db: AsyncSession,
        tag: Optional[str] = None,
        author_id: Optional[str] = None,
        approval: Optional[ApprovalStatus] = None,
    ) -> List[Submission]:
        """Undeleted submissions, newest first."""
        query = select(Submission).where(Submission.deleted_at.is_(None))
        if tag:
            query = query.where(
                Submission.id.in_(
                    select(categories_submission.c.submission_id)
                    .where(categories_submission.c.category_tag == tag.strip().lower())
                )
            )
        if author_id:
            query = query.where(
                Submission.id.in_(
                    select(authors_submission.c.submission_id)
                    .where(authors_submission.c.global_user_id == author_id)
                )
            )
        if approval is not None:
            query = query.where(Submission.approval == approval)
        query = query.order_by(Submission.created_at.desc(), Submission.id.desc())
        return list((await db.execute(query)).scalars().all())

    async def list_all_submission_rows(self, db: AsyncSession, include_deleted: bool = True):
        query = select(Submission).order_by(Submission.id)
        if not include_deleted:
            query = query.where(Submission.deleted_at.is_(None))
        return list((await db.execute(query)).scalars().all())

    async def find_submission_row(self, db: AsyncSession, submission_id: int) -> Optional[Submission]:
        """Fresh read of a submission row, deleted or not; None when absent."""
        result = await db.execute(
            select(Submission)
            .where(Submission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def authored_submission_ids(self, db: AsyncSession, user_id: str) -> List[int]:
        result = await db.execute(
            select(Submission.id)
            .join(authors_submission, authors_submission.c.submission_id == Submission.id)
            .where(
                authors_submission.c.global_user_id == user_id,
                Submission.deleted_at.is_(None),
            )
            .order_by(Submission.id)
        )
        return list(result.scalars().all())

    async def set_approval(self, db: AsyncSession, submission: Submission, status: ApprovalStatus) -> None:
        submission.approval = status
        await db.flush()

    async def delete_submission(self, db: AsyncSession, submission_id: int) -> bool:
        """
        Soft-delete a submission with its files and comments.

        Returns False (and changes nothing) when it is already deleted.
        Categories and users are untouched.
        """
        submission = await self.load_submission(db, submission_id, include_deleted=True)
        if submission.deleted_at is not None:
            return False
        now = utcnow()
        file_ids = select(File.id).where(File.submission_id == submission_id)
        await db.execute(
            update(Comment)
            .where(Comment.file_id.in_(file_ids), Comment.deleted_at.is_(None))
            .values(deleted_at=now)
        )
        await db.execute(
            update(File)
            .where(File.submission_id == submission_id, File.deleted_at.is_(None))
            .values(deleted_at=now)
        )
        submission.deleted_at = now
        await db.flush()
        return True

    # ── Files ─────────────────────────────────────────────────────────────

    async def _path_clashes(self, db: AsyncSession, column, value: str, submission_id: int) -> bool:
        """
        True when an undeleted file of the submission has `column == value`,
        sits below `value` as a directory, or occupies one of its parent
        directories as a file.
        """
        candidates = [value, *parent_dirs(value)]
        query = (
            select(func.count())
            .select_from(File)
            .where(
                File.submission_id == submission_id,
                File.deleted_at.is_(None),
                or_(
                    column.in_(candidates),
                    func.substr(column, 1, len(value) + 1) == f"{value}/",
                ),
            )
        )
        return (await db.execute(query)).scalar_one() > 0

    async def insert_file(self, db: AsyncSession, submission_id: int, path: str) -> File:
        """
        Insert a file row; `path` must already be normalized.

        Raises DuplicateFileError when an undeleted file of the submission has
        the same path, would share its sidecar, or would need one of the two
        to be a directory (`a/b` against `a/b/c.c`).
        """
        sidecar = sidecar_path_for(path)
        if await self._path_clashes(db, File.path, path, submission_id):
            raise DuplicateFileError(path, submission_id)
        if await self._path_clashes(db, File.sidecar_path, sidecar, submission_id):
            raise DuplicateFileError(path, submission_id)
        file = File(submission_id=submission_id, path=path, sidecar_path=sidecar)
        db.add(file)
        await db.flush()
        return file

    @transient_read_retry
    async def load_file(self, db: AsyncSession, file_id: int) -> File:
        result = await db.execute(
            select(File).where(File.id == file_id, File.deleted_at.is_(None))
        )
        file = result.scalar_one_or_none()
        if file is None:
            raise FileNotFoundInSubmissionError(file_id)
        return file

    async def list_file_rows(self, db: AsyncSession, submission_id: int) -> List[File]:
        result = await db.execute(
            select(File)
            .where(File.submission_id == submission_id, File.deleted_at.is_(None))
            .order_by(File.id)
        )
        return list(result.scalars().all())

    # ── Comments ──────────────────────────────────────────────────────────

    async def insert_comment(
        self,
        db: AsyncSession,
        author_id: str,
        file_id: int,
        body: str,
        start_line: int,
        end_line: int,
        parent_id: Optional[int] = None,
    ) -> Comment:
        """Raises BadParentError when the parent is missing, tombstoned or on another file."""
        if parent_id is not None:
            parent = await db.get(Comment, parent_id)
            if parent is None or parent.deleted_at is not None or parent.file_id != file_id:
                raise BadParentError(parent_id, file_id)
        comment = Comment(
            file_id=file_id,
            author_id=author_id,
            parent_id=parent_id,
            base64_value=body,
            start_line=start_line,
            end_line=end_line,
        )
        db.add(comment)
        await db.flush()
        return comment

    async def get_comment(self, db: AsyncSession, file_id: int, comment_id: int) -> Comment:
        comment = await db.get(Comment, comment_id)
        if comment is None or comment.file_id != file_id:
            raise CommentNotFoundError(comment_id)
        return comment

    @transient_read_retry
    async def load_comments(self, db: AsyncSession, file_id: int) -> List[Comment]:
        """Every comment of a file, tombstones included, in ID order."""
        result = await db.execute(
            select(Comment).where(Comment.file_id == file_id).order_by(Comment.id)
        )
        return list(result.scalars().all())


# ── Singleton Instance ────────────────────────────────────────────────────
relational_store = RelationalStore()
