"""
Code Journal Backend — Comment Service
=======================================

What:  Adds, edits and tombstones line-anchored comments on a file, and
       assembles a file's comments into a forest of threads.
Why:   Comments live in two places: rows in the relational `comments` table
       (authoritative for ID, parent link and tombstone) and entries in the
       file's JSON sidecar (a mirror kept in step for on-disk consumers).
How:   Every mutation holds the per-file lock across the relational write
       and the sidecar read-modify-write, inside one unit of work.

Comment Lifecycle:
    add    → row inserted, entry appended to the sidecar
    edit   → body replaced in both (ID, author, parent, lines immutable)
    delete → row tombstoned, sidecar body replaced by the "[deleted]" sentinel;
             replies stay attached to the tombstone
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import utcnow
from codejournal.exceptions import (
    CommentNotFoundError,
    DatabaseError,
    FileStorageError,
    JournalError,
    WrongPermissionsError,
)
from codejournal.models import Comment, File, GlobalUser, Submission
from codejournal.schemas.comment import CommentNode
from codejournal.services.approval import ensure_not_terminal
from codejournal.services.filesystem import FileSystemStore, empty_sidecar, filesystem_store
from codejournal.services.locks import file_locks
from codejournal.services.relational import RelationalStore, relational_store
from codejournal.services.unit_of_work import UnitOfWork
from codejournal.services.validation import (
    DELETED_BODY,
    count_lines,
    decode_base64,
    validate_line_range,
)

logger = logging.getLogger(__name__)


# ── Pure helpers ──────────────────────────────────────────────────────────

def sidecar_entry(comment: Comment) -> Dict[str, Any]:
    """The sidecar JSON shape of one comment."""
    deleted = comment.deleted_at is not None
    return {
        "id": comment.id,
        "author": comment.author_id,
        "parentId": comment.parent_id,
        "startLine": comment.start_line,
        "endLine": comment.end_line,
        "base64Value": DELETED_BODY if deleted else comment.base64_value,
        "time": comment.created_at.isoformat() if comment.created_at else None,
        "deleted": deleted,
    }


def sidecar_payload(comments: Sequence[Comment]) -> Dict[str, Any]:
    payload = empty_sidecar()
    payload["comments"] = [sidecar_entry(comment) for comment in comments]
    return payload


def build_forest(comments: Sequence[Comment]) -> List[CommentNode]:
    """
    Assemble a flat comment list into threads.

    Roots are comments without a parent (or whose parent is not in the list);
    siblings keep ID order.
    """
    nodes: Dict[int, CommentNode] = {}
    for comment in sorted(comments, key=lambda c: c.id):
        deleted = comment.deleted_at is not None
        nodes[comment.id] = CommentNode(
            id=comment.id,
            author=comment.author_id,
            parent_id=comment.parent_id,
            start_line=comment.start_line,
            end_line=comment.end_line,
            base64_value=DELETED_BODY if deleted else comment.base64_value,
            deleted=deleted,
            time=comment.created_at,
        )
    roots: List[CommentNode] = []
    for node in nodes.values():
        parent = nodes.get(node.parent_id) if node.parent_id is not None else None
        if parent is None or parent.id == node.id:
            roots.append(node)
        else:
            parent.replies.append(node)
    return roots


class CommentService:
    """
    Comment subsystem over both stores.

    Who may comment:
        Any authenticated user may comment or reply. Only a comment's author
        may edit or delete it. Comments on approved or rejected submissions
        are refused, including edits and deletions.
    """

    def __init__(
        self,
        fs: Optional[FileSystemStore] = None,
        rs: Optional[RelationalStore] = None,
    ):
        self.fs = fs or filesystem_store
        self.rs = rs or relational_store

    async def _load_target(self, db: AsyncSession, file_id: int):
        file = await self.rs.load_file(db, file_id)
        submission = await self.rs.load_submission(db, file.submission_id)
        return file, submission

    async def _line_count(self, submission: Submission, file: File) -> Optional[int]:
        try:
            content = await self.fs.read_file(submission.id, submission.name, file.path)
        except FileStorageError as e:
            logger.warning(
                "Line range of a comment on file %d not checked: body unreadable (%s)",
                file.id,
                e.context.get("os_error", e.message),
            )
            return None
        return count_lines(content)

    async def add_comment(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        file_id: int,
        start_line: int,
        end_line: int,
        base64_value: str,
        parent_id: Optional[int] = None,
    ) -> Comment:
        """
        Insert a comment row and mirror it into the sidecar.

        Raises:
            FileNotFoundInSubmissionError, SubmissionApprovedError /
            SubmissionRejectedError, ValidationError (line range, base64),
            BadParentError.
        """
        decode_base64(base64_value)
        try:
            async with file_locks.hold(file_id):
                file, submission = await self._load_target(db, file_id)
                ensure_not_terminal(submission.id, submission.approval)

                line_count = await self._line_count(submission, file)
                if line_count is None:
                    line_count = max(1, end_line)
                validate_line_range(start_line, end_line, line_count)
                sub_id, sub_name, rel_path = submission.id, submission.name, file.path

                async with UnitOfWork(db, self.fs, "add_comment") as uow:
                    comment = await self.rs.insert_comment(
                        db,
                        author_id=caller.id,
                        file_id=file.id,
                        body=base64_value,
                        start_line=start_line,
                        end_line=end_line,
                        parent_id=parent_id,
                    )
                    new_id = comment.id
                    await self.fs.append_comment_to_file(sub_id, sub_name, rel_path, sidecar_entry(comment))
                    uow.on_rollback(
                        f"remove comment {new_id} from sidecar",
                        lambda: self.fs.remove_comment_from_file(sub_id, sub_name, rel_path, new_id),
                        repair={"action": "rebuild_sidecar", "submission_id": sub_id, "file_id": file_id},
                    )
                    await uow.commit()
        except JournalError:
            raise
        except Exception as e:
            logger.error("Unexpected error adding comment to file %d: %s", file_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not save the comment. Please try again.",
                context={"file_id": file_id, "original_error": type(e).__name__},
            )
        logger.info("Comment %d added to file %d by %s", comment.id, file_id, caller.id)
        return comment

    async def _mutate_own_comment(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        file_id: int,
        comment_id: int,
        label: str,
        mutate: Callable[[Comment], None],
    ) -> Comment:
        """Apply `mutate` to the caller's comment in both stores under the file lock."""
        async with file_locks.hold(file_id):
            file, submission = await self._load_target(db, file_id)
            comment = await self.rs.get_comment(db, file.id, comment_id)
            if comment.author_id != caller.id:
                raise WrongPermissionsError(caller.id, required="comment author")
            ensure_not_terminal(submission.id, submission.approval)
            if comment.deleted_at is not None:
                return comment

            sub_id, sub_name, rel_path = submission.id, submission.name, file.path
            previous = sidecar_entry(comment)
            async with UnitOfWork(db, self.fs, label) as uow:
                mutate(comment)
                await db.flush()
                await self.fs.update_comment_in_file(sub_id, sub_name, rel_path, sidecar_entry(comment))
                uow.on_rollback(
                    f"restore comment {comment_id} in sidecar",
                    lambda: self.fs.update_comment_in_file(sub_id, sub_name, rel_path, previous),
                    repair={"action": "rebuild_sidecar", "submission_id": sub_id, "file_id": file_id},
                )
                await uow.commit()
        return comment

    async def edit_comment(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        file_id: int,
        comment_id: int,
        base64_value: str,
    ) -> Comment:
        """Replace the body only; tombstoned comments cannot be edited."""
        decode_base64(base64_value)
        edited = []

        def replace_body(comment: Comment) -> None:
            comment.base64_value = base64_value
            edited.append(comment.id)

        comment = await self._mutate_own_comment(
            db, caller, file_id, comment_id, "edit_comment", replace_body
        )
        if not edited:
            raise CommentNotFoundError(comment_id)
        logger.info("Comment %d edited by %s", comment_id, caller.id)
        return comment

    async def delete_comment(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        file_id: int,
        comment_id: int,
    ) -> bool:
        """Tombstone a comment. Returns False when it was already deleted."""
        deleted = []

        def tombstone(comment: Comment) -> None:
            comment.deleted_at = utcnow()
            deleted.append(comment.id)

        await self._mutate_own_comment(db, caller, file_id, comment_id, "delete_comment", tombstone)
        if deleted:
            logger.info("Comment %d tombstoned by %s", comment_id, caller.id)
        return bool(deleted)

    async def file_comments(self, db: AsyncSession, file_id: int) -> List[CommentNode]:
        return build_forest(await self.rs.load_comments(db, file_id))

    async def rebuild_sidecar(self, db: AsyncSession, submission: Submission, file: File) -> None:
        """Rewrite a file's sidecar from the relational rows."""
        async with file_locks.hold(file.id):
            comments = await self.rs.load_comments(db, file.id)
            await self.fs.write_sidecar(
                submission.id, submission.name, file.path, sidecar_payload(comments)
            )


# ── Singleton Instance ────────────────────────────────────────────────────
comment_service = CommentService()
