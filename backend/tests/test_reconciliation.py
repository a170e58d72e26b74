"""
Code Journal Backend — Reconciliation Tests
============================================

What we test:
    ✅ A missing subtree is flagged, the row is kept and reads are degraded
    ✅ Missing sidecars are rebuilt from relational rows
    ✅ Orphan sidecars are removed
    ✅ Disk-only submissions are quarantined, not deleted
    ✅ A create still in flight is waited for, not quarantined
    ✅ Leftover subtrees of deleted submissions are removed
    ✅ Repair markers are replayed and dropped
    ✅ A second pass over a clean tree finds nothing
"""

import asyncio

import pytest

from codejournal import database
from codejournal.services.comment_service import comment_service
from codejournal.services.reconciliation import reconciler
from codejournal.services.relational import relational_store
from codejournal.services.submission_service import submission_service

from conftest import b64, fetch_user


async def create_demo(db, users, files=(("main.c", b"int main(){}\n"),)):
    caller = await fetch_user(db, users.publisher)
    return await submission_service.create_submission(
        db,
        caller,
        name="demo",
        license=None,
        abstract="abstract",
        tags=[],
        author_ids=[users.publisher],
        reviewer_ids=[users.reviewer],
        files=list(files),
    )


class TestReconcile:
    @pytest.mark.asyncio
    async def test_missing_subtree_is_flagged(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        await fs_store.remove_submission(submission_id)

        report = await reconciler.run(db)
        await db.commit()

        assert report.missing_on_disk == [submission_id]
        submission = await relational_store.load_submission(db, submission_id)
        assert submission.deleted_at is None
        view = await submission_service.read_submission(db, submission_id)
        assert view.degraded is True
        assert all(f.degraded for f in view.files)

    @pytest.mark.asyncio
    async def test_missing_sidecar_rebuilt(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        file_id = (await relational_store.list_file_rows(db, submission_id))[0].id
        reviewer = await fetch_user(db, users.reviewer)
        comment = await comment_service.add_comment(db, reviewer, file_id, 1, 1, b64("hm"))
        fs_store.sidecar_path(submission_id, "demo", "main.c").unlink()

        report = await reconciler.run(db)

        assert report.sidecars_rebuilt == [f"{submission_id}/main.c"]
        sidecar = await fs_store.read_sidecar(submission_id, "demo", "main.c")
        assert [entry["id"] for entry in sidecar["comments"]] == [comment.id]

    @pytest.mark.asyncio
    async def test_orphan_sidecar_removed(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        await fs_store.write_sidecar(submission_id, "demo", "ghost.c", {"comments": []})

        report = await reconciler.run(db)

        assert report.orphan_sidecars_removed == [f"{submission_id}/ghost.json"]
        assert not fs_store.sidecar_exists(submission_id, "demo", "ghost.c")
        assert fs_store.sidecar_exists(submission_id, "demo", "main.c")

    @pytest.mark.asyncio
    async def test_missing_body_reported(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        fs_store.body_path(submission_id, "demo", "main.c").unlink()

        report = await reconciler.run(db)

        assert report.missing_bodies == [f"{submission_id}/main.c"]
        assert await relational_store.list_file_rows(db, submission_id)

    @pytest.mark.asyncio
    async def test_disk_only_submission_quarantined(self, db, fs_store, users):
        await fs_store.materialize_submission(999, "stray")

        report = await reconciler.run(db)

        assert report.quarantined == [999]
        assert not fs_store.submission_root(999).exists()
        quarantined = list((fs_store.storage_root / ".quarantine").iterdir())
        assert len(quarantined) == 1
        assert quarantined[0].name.startswith("999-")

    @pytest.mark.asyncio
    async def test_create_in_flight_is_not_quarantined(self, db, fs_store, users, monkeypatch):
        """A pass that lists the subtree of an uncommitted create waits for it."""
        original_write = fs_store.write_file
        original_list = fs_store.list_submission_ids
        listed = asyncio.Event()
        passes = []

        async def reconcile_in_own_session():
            async with database.async_session_factory() as session:
                return await reconciler.run(session)

        def list_and_signal():
            ids = original_list()
            listed.set()
            return ids

        async def write_then_reconcile(*args, **kwargs):
            await original_write(*args, **kwargs)
            if not passes:
                passes.append(asyncio.create_task(reconcile_in_own_session()))
                await listed.wait()

        monkeypatch.setattr(fs_store, "list_submission_ids", list_and_signal)
        monkeypatch.setattr(fs_store, "write_file", write_then_reconcile)

        submission_id = await create_demo(
            db, users, files=(("main.c", b"int main(){}\n"), ("util.c", b"void f(){}\n"))
        )
        report = await passes[0]

        assert report.quarantined == []
        view = await submission_service.read_submission(db, submission_id)
        assert not view.degraded
        assert [f.path for f in view.files] == ["main.c", "util.c"]

    @pytest.mark.asyncio
    async def test_leftover_subtree_of_deleted_submission(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        await relational_store.delete_submission(db, submission_id)
        await db.commit()

        report = await reconciler.run(db)

        assert report.removed_deleted == [submission_id]
        assert not fs_store.submission_root(submission_id).exists()

    @pytest.mark.asyncio
    async def test_second_pass_is_clean(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        await fs_store.write_sidecar(submission_id, "demo", "ghost.c", {"comments": []})
        await fs_store.materialize_submission(4242, "stray")

        await reconciler.run(db)
        report = await reconciler.run(db)

        assert report.missing_on_disk == []
        assert report.quarantined == []
        assert report.orphan_sidecars_removed == []
        assert report.sidecars_rebuilt == []
        assert report.repairs_applied == []


class TestRepairMarkers:
    @pytest.mark.asyncio
    async def test_remove_submission_marker(self, db, fs_store, users):
        await fs_store.materialize_submission(77, "half-created")
        fs_store.write_repair_marker(
            "m1", {"operation": "create_submission", "action": "remove_submission", "submission_id": 77}
        )

        report = await reconciler.run(db)

        assert report.repairs_applied == ["m1"]
        assert report.quarantined == []
        assert not fs_store.submission_root(77).exists()
        assert fs_store.list_repair_markers() == []

    @pytest.mark.asyncio
    async def test_drop_review_marker_keeps_later_reviews(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        failed = {"reviewer": users.reviewer, "approved": True, "base64Value": "", "time": "t1"}
        later = {"reviewer": users.editor, "approved": False, "base64Value": "", "time": "t2"}
        await fs_store.write_submission_meta(
            submission_id, "demo", {"abstract": "abstract", "reviews": [failed, later]}
        )
        fs_store.write_repair_marker(
            "m2",
            {
                "action": "drop_review",
                "submission_id": submission_id,
                "reviewer": users.reviewer,
                "time": "t1",
            },
        )

        report = await reconciler.run(db)

        assert report.repairs_applied == ["m2"]
        meta = await fs_store.read_submission_meta(submission_id, "demo")
        assert meta == {"abstract": "abstract", "reviews": [later]}

    @pytest.mark.asyncio
    async def test_remove_file_marker_keeps_committed_file(self, db, fs_store, users):
        submission_id = await create_demo(db, users)
        fs_store.write_repair_marker(
            "m3",
            {"action": "remove_file", "submission_id": submission_id, "name": "demo", "path": "main.c"},
        )

        await reconciler.run(db)

        assert fs_store.file_exists(submission_id, "demo", "main.c")
        assert fs_store.list_repair_markers() == []
