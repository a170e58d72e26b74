"""
Code Journal Backend — Reconciliation
======================================

What:  Compares the relational store with the filesystem store and repairs
       the differences that are safe to repair.
Why:   Both stores are written for every submission, and a crash, a failed
       compensation or manual tampering can leave them out of step.
How:   One pass, safe to repeat:

    1. Repair markers    → replay the undo each marker describes, then drop it
    2. RS submissions    → deleted: remove leftover subtree
                           live, subtree missing: flag (reads are degraded)
                           live, subtree present: rebuild missing sidecars,
                           list missing bodies, remove orphan sidecars
    3. Disk-only IDs     → under the submission lock, re-read the row;
                           still absent: move to `.quarantine/`
    4. `.trash/`         → purge

The RS rows are never deleted here. Findings are logged at WARNING.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.exceptions import JournalError, NotFoundError
from codejournal.models import File, Submission
from codejournal.schemas.submission import ReconcileReport
from codejournal.services.comment_service import CommentService, comment_service
from codejournal.services.filesystem import FileSystemStore, filesystem_store
from codejournal.services.locks import submission_locks
from codejournal.services.relational import RelationalStore, relational_store

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(
        self,
        fs: Optional[FileSystemStore] = None,
        rs: Optional[RelationalStore] = None,
        comments: Optional[CommentService] = None,
    ):
        self.fs = fs or filesystem_store
        self.rs = rs or relational_store
        self.comments = comments or comment_service

    async def run(self, db: AsyncSession) -> ReconcileReport:
        report = ReconcileReport()
        await self._apply_repairs(db, report)

        submissions = await self.rs.list_all_submission_rows(db, include_deleted=True)
        known_ids = set()
        for submission in submissions:
            known_ids.add(submission.id)
            async with submission_locks.hold(submission.id):
                if submission.deleted_at is not None:
                    await self._remove_deleted(submission, report)
                else:
                    await self._check_submission(db, submission, report)

        for submission_id in self.fs.list_submission_ids():
            if submission_id not in known_ids:
                await self._check_disk_only(db, submission_id, report)

        self.fs.purge_trash()
        logger.info(
            "Reconciliation finished: %d missing on disk, %d quarantined, "
            "%d sidecars rebuilt, %d orphan sidecars removed, %d repairs applied",
            len(report.missing_on_disk),
            len(report.quarantined),
            len(report.sidecars_rebuilt),
            len(report.orphan_sidecars_removed),
            len(report.repairs_applied),
        )
        return report

    # ── Per-submission checks ─────────────────────────────────────────────

    async def _remove_deleted(self, submission: Submission, report: ReconcileReport) -> None:
        if self.fs.submission_root(submission.id).exists():
            await self.fs.remove_submission(submission.id)
            report.removed_deleted.append(submission.id)
            logger.warning("Removed leftover subtree of deleted submission %d", submission.id)

    async def _check_submission(
        self,
        db: AsyncSession,
        submission: Submission,
        report: ReconcileReport,
    ) -> None:
        if not self.fs.submission_exists(submission.id, submission.name):
            report.missing_on_disk.append(submission.id)
            logger.warning(
                "Submission %d '%s' has no subtree on disk",
                submission.id,
                submission.name,
            )
            return

        files = await self.rs.list_file_rows(db, submission.id)
        expected_sidecars = {file.sidecar_path for file in files}
        for file in files:
            label = f"{submission.id}/{file.path}"
            if not self.fs.file_exists(submission.id, submission.name, file.path):
                report.missing_bodies.append(label)
                logger.warning("File %d body missing on disk: %s", file.id, label)
            if not self.fs.sidecar_exists(submission.id, submission.name, file.path):
                await self.comments.rebuild_sidecar(db, submission, file)
                report.sidecars_rebuilt.append(label)
                logger.warning("Rebuilt missing sidecar for %s", label)

        for sidecar in self.fs.list_sidecars(submission.id, submission.name):
            if sidecar not in expected_sidecars:
                await self.fs.remove_sidecar(submission.id, submission.name, sidecar)
                report.orphan_sidecars_removed.append(f"{submission.id}/{sidecar}")
                logger.warning("Removed orphan sidecar %d/%s", submission.id, sidecar)

    async def _check_disk_only(
        self,
        db: AsyncSession,
        submission_id: int,
        report: ReconcileReport,
    ) -> None:
        """
        A subtree with no row seen at the start of the pass. A create in
        flight holds the submission lock until its row commits or its subtree
        is removed, so the row is read again once the lock is ours.
        """
        async with submission_locks.hold(submission_id):
            submission = await self.rs.find_submission_row(db, submission_id)
            if submission is not None:
                if submission.deleted_at is not None:
                    await self._remove_deleted(submission, report)
                else:
                    logger.info(
                        "Submission %d committed during reconciliation; checked next pass",
                        submission_id,
                    )
                return
            if not self.fs.submission_root(submission_id).exists():
                return
            await self.fs.quarantine(submission_id)
            report.quarantined.append(submission_id)

    # ── Repair markers ────────────────────────────────────────────────────

    async def _apply_repairs(self, db: AsyncSession, report: ReconcileReport) -> None:
        for marker in self.fs.list_repair_markers():
            key = marker["marker"]
            try:
                await self._apply_repair(db, marker)
            except (JournalError, OSError) as e:
                logger.error("Repair marker %s could not be applied: %s", key, str(e))
                continue
            self.fs.remove_repair_marker(key)
            report.repairs_applied.append(key)

    async def _live_submission(self, db: AsyncSession, submission_id: int) -> Optional[Submission]:
        try:
            return await self.rs.load_submission(db, submission_id)
        except NotFoundError:
            return None

    async def _drop_review(self, submission: Submission, reviewer: str, time: Optional[str]) -> None:
        """Remove the one review whose commit failed; later reviews stay."""
        async with submission_locks.hold(submission.id):
            meta = await self.fs.read_submission_meta(submission.id, submission.name)
            kept = [
                review
                for review in meta["reviews"]
                if not (
                    review.get("reviewer") == reviewer
                    and (time is None or review.get("time") == time)
                )
            ]
            if len(kept) != len(meta["reviews"]):
                meta["reviews"] = kept
                await self.fs.write_submission_meta(submission.id, submission.name, meta)

    async def _apply_repair(self, db: AsyncSession, marker: Dict[str, Any]) -> None:
        """
        Replay one marker. The stores' current state decides: an undo is only
        applied when the relational side confirms the write never committed.
        """
        action = marker.get("action")
        submission_id = marker.get("submission_id")
        if submission_id is None:
            logger.warning("Repair marker %s has no submission; dropping", marker["marker"])
            return
        submission = await self._live_submission(db, submission_id)

        if action == "remove_submission":
            if submission is None:
                await self.fs.remove_submission(submission_id)
        elif action == "remove_file":
            path = marker.get("path")
            if submission is not None and path:
                result = await db.execute(
                    select(File.id).where(
                        File.submission_id == submission_id,
                        File.path == path,
                        File.deleted_at.is_(None),
                    )
                )
                if result.scalar_one_or_none() is None:
                    await self.fs.remove_file(submission_id, submission.name, path)
        elif action == "rebuild_sidecar":
            if submission is not None and marker.get("file_id") is not None:
                file = await self.rs.load_file(db, marker["file_id"])
                await self.comments.rebuild_sidecar(db, submission, file)
        elif action == "drop_review":
            if submission is not None and marker.get("reviewer"):
                await self._drop_review(submission, marker["reviewer"], marker.get("time"))
        elif action == "restore_subtree":
            # The stash is dropped with the rest of .trash when the delete committed
            if submission is not None and marker.get("stash"):
                stash = Path(marker["stash"])
                if stash.exists():
                    await self.fs.restore_submission(submission_id, stash)
        else:
            logger.warning("Unknown repair action %r in marker %s", action, marker["marker"])
        logger.warning("Applied repair marker %s (%s)", marker["marker"], action)


# ── Singleton Instance ────────────────────────────────────────────────────
reconciler = Reconciler()
