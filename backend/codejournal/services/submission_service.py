"""
Code Journal Backend — Submission Repository (Core Orchestrator)
=================================================================

What:  Creates, extends, reviews, approves, reads and deletes submissions by
       composing the relational store (RS) and the filesystem store (FS).
Why:   A submission lives in both stores. Every write here keeps the two in
       step: for each File row there is a body and a sidecar on disk, and the
       metadata JSON holds the abstract and the reviews.
How:   Each write runs inside a UnitOfWork: RS rows are flushed, the matching
       FS writes are made and registered as compensations, then the RS
       transaction commits. A failure anywhere before the commit completes
       rolls the RS back and undoes the FS writes.

Orchestration Flow (create):
    ┌───────────┐   ┌────────────────┐   ┌──────────────────┐   ┌──────────┐
    │ validate  │──▶│ insert rows    │──▶│ write subtree,   │──▶│  commit  │
    │ in memory │   │ (flush for id) │   │ bodies, sidecars,│   │    RS    │
    └───────────┘   └────────────────┘   │ metadata JSON    │   └──────────┘
                                         └──────────────────┘
    On failure: RS rollback + remove `<root>/<id>`; if that removal fails
    too, an inconsistency marker is left for reconciliation.

Concurrency:
    Adding files, assigning reviewers, appending reviews and approval all
    hold the per-submission lock, so the uniqueness checks and the metadata
    read-modify-write are not interleaved within this process. Create holds
    the new ID's lock from its first disk write until the commit is done or
    undone; reconciliation takes the same lock before quarantining.
"""

import copy
import io
import logging
import zipfile
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.config import settings
from codejournal.database import utcnow
from codejournal.exceptions import (
    DatabaseError,
    DuplicateFileError,
    FileNotFoundInSubmissionError,
    FileStorageError,
    JournalError,
    ValidationError,
    WrongPermissionsError,
)
from codejournal.models import ApprovalStatus, Capability, File, GlobalUser, Submission
from codejournal.schemas.submission import (
    FileOut,
    ReviewOut,
    SubmissionListItem,
    SubmissionListResponse,
    SubmissionResponse,
    UserRef,
)
from codejournal.services.approval import (
    check_review_allowed,
    compute_state,
    decide_approval,
    ensure_not_terminal,
)
from codejournal.services.comment_service import build_forest
from codejournal.services.filesystem import FileSystemStore, empty_meta, filesystem_store
from codejournal.services.locks import submission_locks
from codejournal.services.relational import RelationalStore, relational_store
from codejournal.services.unit_of_work import UnitOfWork
from codejournal.services.validation import (
    decode_base64,
    encode_base64,
    normalize_path,
    parent_dirs,
    sidecar_path_for,
    validate_submission_name,
)

logger = logging.getLogger(__name__)

DELETED_USER_NAME = "[deleted]"
ZIP_NOISE_PREFIX = "__MACOSX/"


# ── Helpers ───────────────────────────────────────────────────────────────

def prepare_files(files: Sequence[Tuple[str, bytes]]) -> List[Tuple[str, bytes]]:
    """
    Normalize paths, enforce the size limit and reject duplicates in memory.

    Two paths that would share a sidecar (`a.c` and `a.h`) count as
    duplicates, and so does a file whose path is a directory of another
    (`a/b` and `a/b/c.c`), for bodies and sidecars alike.
    """
    prepared: List[Tuple[str, bytes]] = []
    taken = {"paths": set(), "sidecars": set()}
    dirs = {"paths": set(), "sidecars": set()}
    for raw_path, content in files:
        path = normalize_path(raw_path)
        check_size(path, content)
        for kind, value in (("paths", path), ("sidecars", sidecar_path_for(path))):
            if (
                value in taken[kind]
                or value in dirs[kind]
                or any(parent in taken[kind] for parent in parent_dirs(value))
            ):
                raise DuplicateFileError(path)
        for kind, value in (("paths", path), ("sidecars", sidecar_path_for(path))):
            taken[kind].add(value)
            dirs[kind].update(parent_dirs(value))
        prepared.append((path, content))
    return prepared


def check_size(path: str, content: bytes) -> None:
    if len(content) > settings.max_file_size:
        max_mb = settings.max_file_size / (1024 * 1024)
        raise ValidationError(
            message=f"File {path} exceeds the maximum size of {max_mb:.0f}MB",
            field="files",
            context={"path": path, "size": len(content)},
        )


def extract_zip_entries(archive: bytes) -> List[Tuple[str, bytes]]:
    """
    Turn a zip archive into (path, bytes) pairs.

    Directory entries and `__MACOSX/` noise are skipped. When every entry sits
    under one common top-level folder, that folder is stripped.
    """
    if len(archive) > settings.max_file_size:
        raise ValidationError(message="Zip archive is too large", field="base64Value")
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            entries = []
            for info in zf.infolist():
                name = info.filename.replace("\\", "/")
                if info.is_dir() or name.startswith(ZIP_NOISE_PREFIX) or name.endswith("/"):
                    continue
                if info.file_size > settings.max_file_size:
                    raise ValidationError(
                        message=f"Zip entry {name} is too large",
                        field="base64Value",
                    )
                entries.append((name, zf.read(info)))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as e:
        raise ValidationError(
            message="Malformed zip archive",
            field="base64Value",
            context={"error": str(e)},
        ) from None

    normalized = [(normalize_path(name), content) for name, content in entries]
    tops = {path.split("/", 1)[0] for path, _ in normalized}
    if len(tops) == 1 and all("/" in path for path, _ in normalized):
        normalized = [(path.split("/", 1)[1], content) for path, content in normalized]
    return normalized


def project_user(user: GlobalUser) -> UserRef:
    """Soft-deleted users keep their place in author lists as "[deleted]"."""
    if user.deleted_at is not None or user.user is None or user.user.deleted_at is not None:
        return UserRef(user_id=user.id, full_name=DELETED_USER_NAME)
    return UserRef(user_id=user.id, full_name=user.user.full_name)


def is_editor(user: GlobalUser) -> bool:
    return user.has(Capability.EDITOR)


def is_author(user: GlobalUser, submission: Submission) -> bool:
    return any(author.id == user.id for author in submission.authors)


class SubmissionService:
    """
    The submission repository.

    Error Handling Strategy:
        Application errors (JournalError subclasses) propagate unchanged.
        Anything else raised while both stores are being written is logged
        and wrapped in DatabaseError after the unit of work has rolled back.
    """

    def __init__(
        self,
        fs: Optional[FileSystemStore] = None,
        rs: Optional[RelationalStore] = None,
    ):
        self.fs = fs or filesystem_store
        self.rs = rs or relational_store

    # ══════════════════════════════════════════════════════════════════════
    # Writes
    # ══════════════════════════════════════════════════════════════════════

    async def create_submission(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        name: str,
        license: Optional[str],
        abstract: str,
        tags: Sequence[str],
        author_ids: Sequence[str],
        reviewer_ids: Sequence[str],
        files: Sequence[Tuple[str, bytes]],
    ) -> int:
        """
        Create a submission with its files in both stores.

        Steps:
            1. Validate name, paths and sizes in memory
            2. Resolve authors / reviewers, insert the submission rows
            3. Create the directory pair, then per file insert row + write body
            4. Write the metadata JSON (abstract, empty reviews)
            5. Commit

        Raises:
            WrongPermissionsError: caller is neither publisher nor editor
            ValidationError: empty authors, capability mismatch, bad name,
                path or tag
            BadUserError: an author or reviewer ID does not resolve
            DuplicateFileError: two files share a path or a sidecar
        """
        if not (caller.has(Capability.PUBLISHER) or is_editor(caller)):
            raise WrongPermissionsError(caller.id, required="publisher")
        name = validate_submission_name(name)
        if not author_ids:
            raise ValidationError(message="A submission needs at least one author", field="authors")
        prepared = prepare_files(files)

        submission_id: Optional[int] = None
        try:
            async with UnitOfWork(db, self.fs, "create_submission") as uow:
                authors = await self.rs.get_global_users(db, author_ids)
                reviewers = await self.rs.get_global_users(db, reviewer_ids)
                submission = await self.rs.insert_submission(
                    db, name, license, authors, reviewers, tags
                )
                submission_id = submission.id
                new_id = submission_id
                # Reconciliation sees the subtree before the row commits
                async with submission_locks.hold(new_id):
                    try:
                        uow.on_rollback(
                            f"remove subtree of submission {new_id}",
                            lambda: self.fs.remove_submission(new_id),
                            repair={"action": "remove_submission", "submission_id": new_id},
                        )
                        await self.fs.materialize_submission(new_id, name)
                        for path, content in prepared:
                            await self.rs.insert_file(db, new_id, path)
                            await self.fs.write_file(new_id, name, path, content)
                        await self.fs.write_submission_meta(new_id, name, empty_meta(abstract))
                        await uow.commit()
                    except Exception:
                        if not uow.committed:
                            await uow.rollback()
                        raise
        except JournalError:
            raise
        except Exception as e:
            logger.error("Unexpected error creating submission: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not create the submission. Please try again.",
                context={"submission_id": submission_id, "original_error": type(e).__name__},
            )

        logger.info(
            "Submission %d '%s' created by %s with %d file(s)",
            submission_id,
            name,
            caller.id,
            len(prepared),
        )
        return submission_id

    async def create_from_zip(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        name: str,
        license: Optional[str],
        abstract: str,
        tags: Sequence[str],
        author_ids: Sequence[str],
        reviewer_ids: Sequence[str],
        archive: bytes,
    ) -> int:
        files = extract_zip_entries(archive)
        return await self.create_submission(
            db, caller, name, license, abstract, tags, author_ids, reviewer_ids, files
        )

    async def add_file(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        submission_id: int,
        path: str,
        content: bytes,
    ) -> File:
        """
        Add one file to an existing, non-terminal submission (authors only).

        Raises DuplicateFileError without touching either store when the path
        (or its sidecar) is taken.
        """
        path = normalize_path(path)
        check_size(path, content)
        try:
            async with submission_locks.hold(submission_id):
                submission = await self.rs.load_submission(db, submission_id)
                if not is_author(caller, submission):
                    raise WrongPermissionsError(caller.id, required="submission author")
                ensure_not_terminal(submission.id, submission.approval)
                name = submission.name

                async with UnitOfWork(db, self.fs, "add_file") as uow:
                    file = await self.rs.insert_file(db, submission_id, path)
                    uow.on_rollback(
                        f"remove {path} from submission {submission_id}",
                        lambda: self.fs.remove_file(submission_id, name, path),
                        repair={
                            "action": "remove_file",
                            "submission_id": submission_id,
                            "name": name,
                            "path": path,
                        },
                    )
                    await self.fs.write_file(submission_id, name, path, content)
                    submission.updated_at = utcnow()
                    await uow.commit()
        except JournalError:
            raise
        except Exception as e:
            logger.error("Unexpected error adding file to %d: %s", submission_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not add the file. Please try again.",
                context={"submission_id": submission_id, "original_error": type(e).__name__},
            )
        logger.info("File %d '%s' added to submission %d", file.id, path, submission_id)
        return file

    async def assign_reviewers(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        submission_id: int,
        reviewer_ids: Sequence[str],
    ) -> Tuple[List[str], List[str]]:
        """
        Add reviewers to a non-terminal submission (editor or author).

        Returns (all reviewer IDs, newly added IDs). Already assigned
        reviewers are ignored.
        """
        if not reviewer_ids:
            raise ValidationError(message="At least one reviewer is required", field="reviewers")
        async with submission_locks.hold(submission_id):
            submission = await self.rs.load_submission(db, submission_id)
            if not (is_editor(caller) or is_author(caller, submission)):
                raise WrongPermissionsError(caller.id, required="editor or submission author")
            ensure_not_terminal(submission.id, submission.approval)

            reviewers = await self.rs.get_global_users(db, reviewer_ids)
            for reviewer in reviewers:
                if not reviewer.has(Capability.REVIEWER):
                    raise ValidationError(
                        message=f"User {reviewer.id} is not a reviewer",
                        field="reviewers",
                        context={"user_id": reviewer.id},
                    )
            async with UnitOfWork(db, self.fs, "assign_reviewers") as uow:
                added = await self.rs.add_reviewers(db, submission_id, reviewers)
                added_ids = [reviewer.id for reviewer in added]
                submission.updated_at = utcnow()
                await uow.commit()
            submission = await self.rs.load_submission(db, submission_id)
            all_ids = [reviewer.id for reviewer in submission.reviewers]
        logger.info("Submission %d: reviewers added %s", submission_id, added_ids)
        return all_ids, added_ids

    async def append_review(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        submission_id: int,
        approved: bool,
        base64_value: str,
    ) -> Dict[str, Any]:
        """
        Append the caller's review to the submission metadata.

        Raises:
            NotReviewerError, DuplicateReviewError,
            SubmissionApprovedError / SubmissionRejectedError
        """
        decode_base64(base64_value)
        async with submission_locks.hold(submission_id):
            submission = await self.rs.load_submission(db, submission_id)
            name = submission.name
            reviewer_ids = [reviewer.id for reviewer in submission.reviewers]
            meta = await self.fs.read_submission_meta(submission_id, name)
            check_review_allowed(
                submission_id, caller.id, submission.approval, reviewer_ids, meta["reviews"]
            )

            previous = copy.deepcopy(meta)
            review = {
                "reviewer": caller.id,
                "approved": bool(approved),
                "base64Value": base64_value,
                "time": utcnow().isoformat(),
            }
            meta["reviews"].append(review)
            async with UnitOfWork(db, self.fs, "append_review") as uow:
                await self.fs.write_submission_meta(submission_id, name, meta)
                uow.on_rollback(
                    f"restore metadata of submission {submission_id}",
                    lambda: self.fs.write_submission_meta(submission_id, name, previous),
                    repair={
                        "action": "drop_review",
                        "submission_id": submission_id,
                        "reviewer": review["reviewer"],
                        "time": review["time"],
                    },
                )
                submission.updated_at = utcnow()
                await uow.commit()
        logger.info(
            "Review by %s appended to submission %d (approved=%s)",
            caller.id,
            submission_id,
            approved,
        )
        return review

    async def set_approval(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        submission_id: int,
        approve: bool,
    ) -> Tuple[ApprovalStatus, bool]:
        """
        Editor decision. Returns (status, changed).

        Repeating the current terminal value returns (status, False).
        """
        if not is_editor(caller):
            raise WrongPermissionsError(caller.id, required="editor")
        requested = ApprovalStatus.APPROVED if approve else ApprovalStatus.REJECTED
        async with submission_locks.hold(submission_id):
            submission = await self.rs.load_submission(db, submission_id)
            reviewer_ids = [reviewer.id for reviewer in submission.reviewers]
            try:
                reviews = (await self.fs.read_submission_meta(submission_id, submission.name))["reviews"]
            except FileStorageError:
                logger.warning("Submission %d: metadata unreadable, treating reviews as missing", submission_id)
                reviews = []
            decision = decide_approval(
                submission_id, submission.approval, requested, reviewer_ids, reviews
            )
            if decision is None:
                return submission.approval, False
            async with UnitOfWork(db, self.fs, "set_approval") as uow:
                await self.rs.set_approval(db, submission, decision)
                await uow.commit()
        logger.info("Submission %d %s by %s", submission_id, decision.value, caller.id)
        return decision, True

    async def delete_submission(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        submission_id: int,
    ) -> bool:
        """
        Soft-delete a submission in RS and remove its subtree (author or editor).

        Returns False when it was already deleted. The subtree is first moved
        to the trash so a failed commit can put it back.
        """
        async with submission_locks.hold(submission_id):
            submission = await self.rs.load_submission(db, submission_id, include_deleted=True)
            if not (is_editor(caller) or is_author(caller, submission)):
                raise WrongPermissionsError(caller.id, required="editor or submission author")
            if submission.deleted_at is not None:
                return False

            async with UnitOfWork(db, self.fs, "delete_submission") as uow:
                await self.rs.delete_submission(db, submission_id)
                stash = await self.fs.stash_submission(submission_id)
                if stash is not None:
                    uow.on_rollback(
                        f"restore subtree of submission {submission_id}",
                        lambda: self.fs.restore_submission(submission_id, stash),
                        repair={"action": "restore_subtree", "submission_id": submission_id, "stash": str(stash)},
                    )
                await uow.commit()
        if stash is not None:
            self.fs.discard_stash(stash)
        logger.info("Submission %d deleted by %s", submission_id, caller.id)
        return True

    # ══════════════════════════════════════════════════════════════════════
    # Reads
    # ══════════════════════════════════════════════════════════════════════

    async def _file_view(self, db: AsyncSession, submission: Submission, file: File) -> FileOut:
        comments = build_forest(await self.rs.load_comments(db, file.id))
        try:
            content = await self.fs.read_file(submission.id, submission.name, file.path)
        except FileStorageError as e:
            logger.warning(
                "Submission %d: file %d '%s' is degraded: %s",
                submission.id,
                file.id,
                file.path,
                e.message,
            )
            return FileOut(
                id=file.id,
                path=file.path,
                base64_value=None,
                degraded=True,
                error=e.message,
                comments=comments,
            )
        return FileOut(
            id=file.id,
            path=file.path,
            base64_value=encode_base64(content),
            comments=comments,
        )

    async def read_submission(self, db: AsyncSession, submission_id: int) -> SubmissionResponse:
        """
        Unified view: RS row and associations, metadata JSON, every file's
        body and comment forest.

        Unreadable bodies become degraded entries; a missing subtree makes
        the whole submission degraded with an empty abstract and no reviews.
        """
        submission = await self.rs.load_submission(db, submission_id)
        degraded = False
        try:
            meta = await self.fs.read_submission_meta(submission.id, submission.name)
        except FileStorageError as e:
            logger.warning("Submission %d: metadata unreadable: %s", submission_id, e.message)
            meta = empty_meta()
            degraded = True
        if not self.fs.submission_exists(submission.id, submission.name):
            degraded = True

        files = [await self._file_view(db, submission, file) for file in submission.files]
        reviewer_ids = [reviewer.id for reviewer in submission.reviewers]
        state = compute_state(submission.approval, reviewer_ids, meta["reviews"])

        return SubmissionResponse(
            id=submission.id,
            name=submission.name,
            license=submission.license,
            approval=submission.approval.value,
            state=state.value,
            abstract=meta.get("abstract", ""),
            created_at=submission.created_at,
            updated_at=submission.updated_at,
            authors=[project_user(author) for author in submission.authors],
            reviewers=[project_user(reviewer) for reviewer in submission.reviewers],
            categories=[category.tag for category in submission.categories],
            reviews=[
                ReviewOut(
                    reviewer=review.get("reviewer", ""),
                    approved=bool(review.get("approved")),
                    base64_value=review.get("base64Value", ""),
                    time=review.get("time"),
                )
                for review in meta["reviews"]
            ],
            files=files,
            degraded=degraded or any(file.degraded for file in files),
        )

    async def read_file(self, db: AsyncSession, submission_id: int, file_id: int) -> FileOut:
        submission = await self.rs.load_submission(db, submission_id)
        file = await self.rs.load_file(db, file_id)
        if file.submission_id != submission.id:
            raise FileNotFoundInSubmissionError(file_id)
        return await self._file_view(db, submission, file)

    async def list_submissions(
        self,
        db: AsyncSession,
        tag: Optional[str] = None,
        author_id: Optional[str] = None,
    ) -> SubmissionListResponse:
        submissions = await self.rs.list_submissions(db, tag=tag, author_id=author_id)
        items = [
            SubmissionListItem(
                id=submission.id,
                name=submission.name,
                approval=submission.approval.value,
                categories=[category.tag for category in submission.categories],
                authors=[author.id for author in submission.authors],
                created_at=submission.created_at,
            )
            for submission in submissions
        ]
        return SubmissionListResponse(submissions=items, total_count=len(items))

    async def approved_submission_names(self, db: AsyncSession) -> Dict[int, str]:
        """`{id: name}` of every approved submission, for peer journals."""
        submissions = await self.rs.list_submissions(db, approval=ApprovalStatus.APPROVED)
        return {submission.id: submission.name for submission in submissions}


# ── Singleton Instance ────────────────────────────────────────────────────
submission_service = SubmissionService()
