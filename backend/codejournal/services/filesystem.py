"""
Code Journal Backend — Filesystem Store
========================================

What:  Stores file bodies, per-file JSON sidecars and the submission metadata
       JSON under the storage root.
Why:   File bytes are the source of truth on disk; the relational store only
       records identity and existence.
How:   Async file I/O via aiofiles. Every JSON write goes to a temporary
       sibling first and is moved into place with os.replace, so a reader
       never sees a half-written sidecar.
Who:   Called by the submission repository, the comment service and
       reconciliation.

Directory Structure:
    <root>/
    ├── <submission-id>/
    │   ├── <submission-name>/src/main.c          raw body
    │   └── .data/
    │       ├── <submission-name>/src/main.json   sidecar {"comments": [...]}
    │       └── <submission-name>.json            {"abstract", "reviews"}
    ├── .quarantine/<submission-id>-<timestamp>/  disk-only subtrees
    ├── .trash/                                   subtrees of deleted submissions
    └── .repairs/<key>.json                       inconsistency markers

Permissions:
    Directories 0755, files 0644.
"""

import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from codejournal.config import settings
from codejournal.exceptions import FileStorageError
from codejournal.services.validation import DATA_DIR_NAME, sidecar_path_for

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
FILE_MODE = 0o644
QUARANTINE_DIR_NAME = ".quarantine"
REPAIRS_DIR_NAME = ".repairs"
TRASH_DIR_NAME = ".trash"


def empty_sidecar() -> Dict[str, Any]:
    return {"comments": []}


def empty_meta(abstract: str = "") -> Dict[str, Any]:
    return {"abstract": abstract, "reviews": []}


class FileSystemStore:
    """
    The on-disk half of a submission.

    Paths are built from (submission ID, submission name, normalized
    submission-relative path) only, so both the body and the sidecar location
    are deterministic.
    """

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the configured root (used in tests).
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileSystemStore initialized with storage_root=%s", self.storage_root)

    # ── Path helpers ──────────────────────────────────────────────────────

    def _inside_root(self, path: Path) -> Path:
        resolved = path.resolve()
        if resolved != self.storage_root and self.storage_root not in resolved.parents:
            raise FileStorageError(
                message="Path escapes the storage root",
                context={"path": str(path)},
            )
        return resolved

    def submission_root(self, submission_id: int) -> Path:
        return self._inside_root(self.storage_root / str(submission_id))

    def body_dir(self, submission_id: int, name: str) -> Path:
        return self._inside_root(self.storage_root / str(submission_id) / name)

    def data_dir(self, submission_id: int, name: str) -> Path:
        return self._inside_root(self.storage_root / str(submission_id) / DATA_DIR_NAME / name)

    def body_path(self, submission_id: int, name: str, rel_path: str) -> Path:
        return self._inside_root(self.body_dir(submission_id, name) / rel_path)

    def sidecar_path(self, submission_id: int, name: str, rel_path: str) -> Path:
        return self._inside_root(self.data_dir(submission_id, name) / sidecar_path_for(rel_path))

    def meta_path(self, submission_id: int, name: str) -> Path:
        return self._inside_root(
            self.storage_root / str(submission_id) / DATA_DIR_NAME / f"{name}.json"
        )

    # ── Low-level I/O ─────────────────────────────────────────────────────

    def _make_dirs(self, path: Path) -> None:
        path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

    async def _write_bytes_atomic(self, path: Path, content: bytes) -> None:
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            self._make_dirs(path.parent)
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(content)
            os.chmod(tmp, FILE_MODE)
            os.replace(tmp, path)
        except OSError as e:
            logger.error("Failed to write %s: %s", path, str(e))
            if tmp.exists():
                tmp.unlink()
            raise FileStorageError(
                message="Failed to write to file storage",
                context={"path": str(path), "os_error": str(e)},
            )

    async def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        await self._write_bytes_atomic(path, json.dumps(payload, indent=2).encode("utf-8"))

    async def _read_json(self, path: Path) -> Dict[str, Any]:
        try:
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
            return json.loads(raw.decode("utf-8"))
        except (OSError, ValueError) as e:
            raise FileStorageError(
                message="Failed to read from file storage",
                context={"path": str(path), "error": str(e)},
            )

    # ── Submission subtree ────────────────────────────────────────────────

    async def materialize_submission(self, submission_id: int, name: str) -> None:
        """Create `<id>/<name>/` and `<id>/.data/<name>/`."""
        try:
            self._make_dirs(self.body_dir(submission_id, name))
            self._make_dirs(self.data_dir(submission_id, name))
        except OSError as e:
            raise FileStorageError(
                message="Failed to create submission directories",
                context={"submission_id": submission_id, "os_error": str(e)},
            )

    def submission_exists(self, submission_id: int, name: str) -> bool:
        return self.body_dir(submission_id, name).is_dir()

    async def remove_submission(self, submission_id: int) -> None:
        """Recursively delete the whole `<root>/<id>` subtree (missing is fine)."""
        path = self.submission_root(submission_id)
        try:
            if path.exists():
                shutil.rmtree(path)
                logger.info("Removed submission subtree %s", path.name)
        except OSError as e:
            raise FileStorageError(
                message="Failed to remove submission directory",
                context={"submission_id": submission_id, "os_error": str(e)},
            )

    async def stash_submission(self, submission_id: int) -> Optional[Path]:
        """
        Move `<root>/<id>` into `<root>/.trash/` so a delete can be undone.

        Returns the stash path, or None when there was nothing on disk.
        """
        source = self.submission_root(submission_id)
        if not source.exists():
            return None
        target = self.storage_root / TRASH_DIR_NAME / f"{submission_id}-{uuid.uuid4().hex[:8]}"
        try:
            self._make_dirs(target.parent)
            os.replace(source, target)
        except OSError as e:
            raise FileStorageError(
                message="Failed to remove submission directory",
                context={"submission_id": submission_id, "os_error": str(e)},
            )
        return target

    async def restore_submission(self, submission_id: int, stash: Path) -> None:
        try:
            os.replace(stash, self.submission_root(submission_id))
        except OSError as e:
            raise FileStorageError(
                message="Failed to restore submission directory",
                context={"submission_id": submission_id, "os_error": str(e)},
            )

    def discard_stash(self, stash: Path) -> None:
        """Drop one stashed subtree after the delete that moved it has committed."""
        try:
            shutil.rmtree(stash)
        except OSError as e:
            logger.warning("Could not purge %s: %s", stash, str(e))

    def purge_trash(self) -> int:
        """Delete everything under `.trash/`; returns the number of entries removed."""
        trash = self.storage_root / TRASH_DIR_NAME
        if not trash.is_dir():
            return 0
        removed = 0
        for child in trash.iterdir():
            try:
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    os.remove(child)
                removed += 1
            except OSError as e:
                logger.warning("Could not purge %s: %s", child, str(e))
        return removed

    def list_submission_ids(self) -> List[int]:
        """Numeric directory names directly under the root; dot-dirs skipped."""
        ids = []
        for child in self.storage_root.iterdir():
            if child.is_dir() and child.name.isdigit():
                ids.append(int(child.name))
        return sorted(ids)

    async def quarantine(self, submission_id: int) -> Path:
        """Move a disk-only subtree aside instead of deleting it."""
        source = self.submission_root(submission_id)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = self.storage_root / QUARANTINE_DIR_NAME / f"{submission_id}-{stamp}"
        try:
            self._make_dirs(target.parent)
            os.replace(source, target)
        except OSError as e:
            raise FileStorageError(
                message="Failed to quarantine submission directory",
                context={"submission_id": submission_id, "os_error": str(e)},
            )
        logger.warning("Quarantined disk-only submission %s to %s", submission_id, target)
        return target

    # ── File bodies ───────────────────────────────────────────────────────

    async def write_file(self, submission_id: int, name: str, rel_path: str, content: bytes) -> None:
        """Write a body and, when none exists yet, an empty sidecar."""
        body = self.body_path(submission_id, name, rel_path)
        await self._write_bytes_atomic(body, content)
        sidecar = self.sidecar_path(submission_id, name, rel_path)
        if not sidecar.exists():
            await self._write_json(sidecar, empty_sidecar())
        logger.info("File stored: %s/%s (%d bytes)", submission_id, rel_path, len(content))

    async def read_file(self, submission_id: int, name: str, rel_path: str) -> bytes:
        path = self.body_path(submission_id, name, rel_path)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise FileStorageError(
                message="Failed to read file body",
                context={"path": str(path), "os_error": str(e)},
            )

    def file_exists(self, submission_id: int, name: str, rel_path: str) -> bool:
        return self.body_path(submission_id, name, rel_path).is_file()

    async def remove_file(self, submission_id: int, name: str, rel_path: str) -> None:
        """Remove a body and its sidecar (compensation for a failed add)."""
        for path in (
            self.body_path(submission_id, name, rel_path),
            self.sidecar_path(submission_id, name, rel_path),
        ):
            try:
                if path.exists():
                    os.remove(path)
            except OSError as e:
                raise FileStorageError(
                    message="Failed to remove file",
                    context={"path": str(path), "os_error": str(e)},
                )

    # ── Sidecars ──────────────────────────────────────────────────────────

    async def read_sidecar(self, submission_id: int, name: str, rel_path: str) -> Dict[str, Any]:
        return await self._read_json(self.sidecar_path(submission_id, name, rel_path))

    async def write_sidecar(
        self, submission_id: int, name: str, rel_path: str, payload: Dict[str, Any]
    ) -> None:
        await self._write_json(self.sidecar_path(submission_id, name, rel_path), payload)

    def sidecar_exists(self, submission_id: int, name: str, rel_path: str) -> bool:
        return self.sidecar_path(submission_id, name, rel_path).is_file()

    async def append_comment_to_file(
        self, submission_id: int, name: str, rel_path: str, comment: Dict[str, Any]
    ) -> None:
        """
        Read-modify-write of one sidecar.

        Callers hold the per-file lock; this method does not lock.
        """
        sidecar = self.sidecar_path(submission_id, name, rel_path)
        payload = await self._read_json(sidecar) if sidecar.exists() else empty_sidecar()
        payload.setdefault("comments", []).append(comment)
        await self._write_json(sidecar, payload)

    async def update_comment_in_file(
        self, submission_id: int, name: str, rel_path: str, comment: Dict[str, Any]
    ) -> None:
        """Replace the sidecar entry with the same id (append when absent)."""
        sidecar = self.sidecar_path(submission_id, name, rel_path)
        payload = await self._read_json(sidecar) if sidecar.exists() else empty_sidecar()
        comments = payload.setdefault("comments", [])
        for index, existing in enumerate(comments):
            if existing.get("id") == comment["id"]:
                comments[index] = comment
                break
        else:
            comments.append(comment)
        await self._write_json(sidecar, payload)

    async def remove_comment_from_file(
        self, submission_id: int, name: str, rel_path: str, comment_id: int
    ) -> None:
        sidecar = self.sidecar_path(submission_id, name, rel_path)
        if not sidecar.exists():
            return
        payload = await self._read_json(sidecar)
        payload["comments"] = [
            entry for entry in payload.get("comments", []) if entry.get("id") != comment_id
        ]
        await self._write_json(sidecar, payload)

    def list_sidecars(self, submission_id: int, name: str) -> List[str]:
        """Sidecar paths relative to `.data/<name>/`, forward-slash form."""
        root = self.data_dir(submission_id, name)
        if not root.is_dir():
            return []
        return sorted(
            path.relative_to(root).as_posix()
            for path in root.rglob("*.json")
            if path.is_file() and not path.name.startswith(".")
        )

    async def remove_sidecar(self, submission_id: int, name: str, sidecar_rel: str) -> None:
        path = self._inside_root(self.data_dir(submission_id, name) / sidecar_rel)
        try:
            if path.exists():
                os.remove(path)
        except OSError as e:
            raise FileStorageError(
                message="Failed to remove sidecar",
                context={"path": str(path), "os_error": str(e)},
            )

    # ── Submission metadata ───────────────────────────────────────────────

    async def write_submission_meta(
        self, submission_id: int, name: str, meta: Dict[str, Any]
    ) -> None:
        await self._write_json(self.meta_path(submission_id, name), meta)

    async def read_submission_meta(self, submission_id: int, name: str) -> Dict[str, Any]:
        meta = await self._read_json(self.meta_path(submission_id, name))
        meta.setdefault("abstract", "")
        meta.setdefault("reviews", [])
        return meta

    # ── Repair markers ────────────────────────────────────────────────────

    def _repairs_dir(self) -> Path:
        return self.storage_root / REPAIRS_DIR_NAME

    def write_repair_marker(self, key: str, payload: Dict[str, Any]) -> Path:
        """
        Record an inconsistency that a compensation could not undo.

        Synchronous: called from compensation paths while an error unwinds.
        """
        directory = self._repairs_dir()
        self._make_dirs(directory)
        path = directory / f"{key}.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, default=str)
        os.chmod(path, FILE_MODE)
        return path

    def list_repair_markers(self) -> List[Dict[str, Any]]:
        directory = self._repairs_dir()
        if not directory.is_dir():
            return []
        markers = []
        for path in sorted(directory.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    payload = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Unreadable repair marker %s: %s", path.name, str(e))
                continue
            payload["marker"] = path.stem
            markers.append(payload)
        return markers

    def remove_repair_marker(self, key: str) -> None:
        path = self._repairs_dir() / f"{key}.json"
        if path.exists():
            os.remove(path)


# ── Singleton Instance ────────────────────────────────────────────────────
filesystem_store = FileSystemStore()
