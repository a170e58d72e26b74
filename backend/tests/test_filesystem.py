"""
Code Journal Backend — Filesystem Store Tests
==============================================

What we test:
    ✅ Deterministic body / sidecar / metadata locations
    ✅ Body round trip and the empty sidecar written next to it
    ✅ Sidecar comment append / update / remove
    ✅ Stash, restore, quarantine and repair markers
    ✅ Paths cannot escape the storage root
"""

import pytest

from codejournal.exceptions import FileStorageError
from codejournal.services.filesystem import FileSystemStore, empty_meta


@pytest.fixture
def store(tmp_path):
    return FileSystemStore(str(tmp_path / "root"))


class TestLayout:
    def test_paths_are_derived_from_id_name_and_path(self, store):
        root = store.storage_root
        assert store.body_path(7, "demo", "src/main.c") == root / "7" / "demo" / "src" / "main.c"
        assert store.sidecar_path(7, "demo", "src/main.c") == root / "7" / ".data" / "demo" / "src" / "main.json"
        assert store.meta_path(7, "demo") == root / "7" / ".data" / "demo.json"

    def test_escaping_the_root_is_refused(self, store):
        with pytest.raises(FileStorageError, match="escapes"):
            store.body_path(1, "demo", "../../../outside.c")

    @pytest.mark.asyncio
    async def test_materialize_creates_both_directories(self, store):
        await store.materialize_submission(3, "demo")
        assert store.body_dir(3, "demo").is_dir()
        assert store.data_dir(3, "demo").is_dir()
        assert store.submission_exists(3, "demo")
        assert store.list_submission_ids() == [3]


class TestBodiesAndSidecars:
    @pytest.mark.asyncio
    async def test_body_round_trip(self, store):
        await store.write_file(1, "demo", "main.c", b"int main(){}")
        assert await store.read_file(1, "demo", "main.c") == b"int main(){}"
        assert await store.read_sidecar(1, "demo", "main.c") == {"comments": []}

    @pytest.mark.asyncio
    async def test_missing_body_raises_storage_error(self, store):
        with pytest.raises(FileStorageError):
            await store.read_file(1, "demo", "absent.c")

    @pytest.mark.asyncio
    async def test_append_then_read_returns_comment_last(self, store):
        await store.write_file(1, "demo", "main.c", b"x")
        await store.append_comment_to_file(1, "demo", "main.c", {"id": 1, "base64Value": "YQ=="})
        await store.append_comment_to_file(1, "demo", "main.c", {"id": 2, "base64Value": "Yg=="})
        sidecar = await store.read_sidecar(1, "demo", "main.c")
        assert [c["id"] for c in sidecar["comments"]] == [1, 2]
        assert sidecar["comments"][-1] == {"id": 2, "base64Value": "Yg=="}

    @pytest.mark.asyncio
    async def test_update_and_remove_comment(self, store):
        await store.write_file(1, "demo", "main.c", b"x")
        await store.append_comment_to_file(1, "demo", "main.c", {"id": 1, "base64Value": "YQ=="})
        await store.update_comment_in_file(1, "demo", "main.c", {"id": 1, "base64Value": "Yw=="})
        assert (await store.read_sidecar(1, "demo", "main.c"))["comments"] == [
            {"id": 1, "base64Value": "Yw=="}
        ]
        await store.remove_comment_from_file(1, "demo", "main.c", 1)
        assert (await store.read_sidecar(1, "demo", "main.c"))["comments"] == []

    @pytest.mark.asyncio
    async def test_rewriting_a_body_keeps_its_sidecar(self, store):
        await store.write_file(1, "demo", "main.c", b"x")
        await store.append_comment_to_file(1, "demo", "main.c", {"id": 1})
        await store.write_file(1, "demo", "main.c", b"y")
        assert len((await store.read_sidecar(1, "demo", "main.c"))["comments"]) == 1

    @pytest.mark.asyncio
    async def test_list_and_remove_sidecars(self, store):
        await store.write_file(1, "demo", "src/a.c", b"a")
        await store.write_file(1, "demo", "b.py", b"b")
        assert store.list_sidecars(1, "demo") == ["b.json", "src/a.json"]
        await store.remove_sidecar(1, "demo", "src/a.json")
        assert store.list_sidecars(1, "demo") == ["b.json"]

    @pytest.mark.asyncio
    async def test_remove_file_removes_body_and_sidecar(self, store):
        await store.write_file(1, "demo", "main.c", b"x")
        await store.remove_file(1, "demo", "main.c")
        assert not store.file_exists(1, "demo", "main.c")
        assert not store.sidecar_exists(1, "demo", "main.c")

    @pytest.mark.asyncio
    async def test_no_temporary_files_left_behind(self, store):
        await store.write_submission_meta(1, "demo", empty_meta("abstract"))
        leftovers = [p for p in store.storage_root.rglob("*.tmp")]
        assert leftovers == []


class TestMetadata:
    @pytest.mark.asyncio
    async def test_meta_round_trip(self, store):
        meta = empty_meta("An abstract")
        meta["reviews"].append({"reviewer": "11x", "approved": True, "base64Value": "", "time": "t"})
        await store.write_submission_meta(4, "demo", meta)
        assert await store.read_submission_meta(4, "demo") == meta

    @pytest.mark.asyncio
    async def test_missing_meta_raises(self, store):
        with pytest.raises(FileStorageError):
            await store.read_submission_meta(4, "demo")


class TestSubtreeMoves:
    @pytest.mark.asyncio
    async def test_stash_and_restore(self, store):
        await store.write_file(5, "demo", "main.c", b"x")
        stash = await store.stash_submission(5)
        assert stash is not None and stash.exists()
        assert not store.submission_root(5).exists()
        await store.restore_submission(5, stash)
        assert await store.read_file(5, "demo", "main.c") == b"x"

    @pytest.mark.asyncio
    async def test_stash_of_missing_subtree_is_none(self, store):
        assert await store.stash_submission(99) is None

    @pytest.mark.asyncio
    async def test_discard_and_purge(self, store):
        await store.write_file(5, "demo", "main.c", b"x")
        await store.write_file(6, "demo", "main.c", b"x")
        first = await store.stash_submission(5)
        await store.stash_submission(6)
        store.discard_stash(first)
        assert not first.exists()
        assert store.purge_trash() == 1

    @pytest.mark.asyncio
    async def test_quarantine_moves_subtree_aside(self, store):
        await store.write_file(8, "stray", "x.c", b"x")
        target = await store.quarantine(8)
        assert target.exists()
        assert store.list_submission_ids() == []

    @pytest.mark.asyncio
    async def test_remove_submission_tolerates_missing(self, store):
        await store.remove_submission(123)


class TestRepairMarkers:
    def test_write_list_remove(self, store):
        store.write_repair_marker("k1", {"action": "remove_submission", "submission_id": 1})
        markers = store.list_repair_markers()
        assert markers == [{"action": "remove_submission", "submission_id": 1, "marker": "k1"}]
        store.remove_repair_marker("k1")
        assert store.list_repair_markers() == []
