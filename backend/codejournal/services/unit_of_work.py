"""
Code Journal Backend — Unit of Work
====================================

What:  Couples one relational transaction with the filesystem writes made
       while it is open.
Why:   The two stores cannot be made jointly atomic. Instead every
       filesystem mutation registers a compensation that undoes it if the
       transaction rolls back or its commit fails.
How:   `async with UnitOfWork(db) as uow:` ... `uow.on_rollback(...)` ...
       `await uow.commit()`. Leaving the block with an exception rolls the
       session back and runs the compensations in reverse order.

Failure Modes:
    Compensation itself fails  → an inconsistency marker is written under
                                 `<root>/.repairs/` and logged at ERROR;
                                 reconciliation finishes the repair later.
    Commit fails               → compensations run, the original error is
                                 wrapped in DatabaseError.
"""

import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import utcnow
from codejournal.exceptions import DatabaseError, JournalError
from codejournal.services.filesystem import FileSystemStore

logger = logging.getLogger(__name__)

Compensation = Callable[[], Awaitable[None]]


class UnitOfWork:
    """
    One relational transaction plus its filesystem compensations.

    Args:
        db:     The request's session; the unit of work owns its commit.
        fs:     Filesystem store used to record repair markers.
        label:  Operation name for logs and markers.
    """

    def __init__(self, db: AsyncSession, fs: FileSystemStore, label: str = "operation"):
        self.db = db
        self.fs = fs
        self.label = label
        self._compensations: List[Tuple[str, Compensation, Dict[str, Any]]] = []
        self.committed = False

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and not self.committed:
            await self.rollback()
        return False

    def on_rollback(
        self,
        description: str,
        compensation: Compensation,
        repair: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Register an undo step for a filesystem change already made.

        `repair` describes the same undo for reconciliation, in case the
        compensation cannot run.
        """
        self._compensations.append((description, compensation, repair or {}))

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except Exception as e:
            logger.error("[%s] Commit failed: %s", self.label, str(e))
            await self.rollback()
            if isinstance(e, JournalError):
                raise
            raise DatabaseError(
                message="Could not save changes. Please try again.",
                context={"operation": self.label, "original_error": type(e).__name__},
            ) from e
        self.committed = True
        self._compensations.clear()

    async def rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.error("[%s] Rollback failed: %s", self.label, str(e))
        await self._compensate()

    async def _compensate(self) -> None:
        while self._compensations:
            description, compensation, repair = self._compensations.pop()
            try:
                await compensation()
                logger.info("[%s] Compensated: %s", self.label, description)
            except Exception as e:
                self._record_inconsistency(description, repair, e)

    def _record_inconsistency(self, description: str, repair: Dict[str, Any], error: Exception) -> None:
        key = f"{utcnow().strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:8]}"
        payload = {
            "operation": self.label,
            "description": description,
            "error": str(error),
            "time": utcnow().isoformat(),
            **repair,
        }
        logger.error(
            "[%s] Inconsistency: compensation '%s' failed (%s); marker %s",
            self.label,
            description,
            str(error),
            key,
        )
        try:
            self.fs.write_repair_marker(key, payload)
        except OSError as marker_error:
            logger.error("[%s] Could not write repair marker: %s | %s", self.label, marker_error, payload)
