"""
Code Journal Backend — Unit of Work Tests
==========================================

What we test:
    ✅ Compensations run in reverse order when the block raises
    ✅ Nothing is compensated after a successful commit
    ✅ A failing commit runs compensations and surfaces as DatabaseError
    ✅ A failing compensation leaves a repair marker behind
How:   The session is an AsyncMock (mock_db_session); only commit and
       rollback are exercised.
"""

import pytest

from codejournal.exceptions import DatabaseError, ValidationError
from codejournal.services.filesystem import FileSystemStore
from codejournal.services.unit_of_work import UnitOfWork


@pytest.fixture
def store(tmp_path):
    return FileSystemStore(str(tmp_path / "fs"))


def recorder(log, name):
    async def compensation():
        log.append(name)
    return compensation


class TestUnitOfWork:
    @pytest.mark.asyncio
    async def test_compensations_run_in_reverse_on_error(self, mock_db_session, store):
        log = []
        with pytest.raises(ValidationError):
            async with UnitOfWork(mock_db_session, store, "test") as uow:
                uow.on_rollback("first", recorder(log, "first"))
                uow.on_rollback("second", recorder(log, "second"))
                raise ValidationError(message="boom")
        assert log == ["second", "first"]
        mock_db_session.rollback.assert_awaited_once()
        mock_db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_clears_compensations(self, mock_db_session, store):
        log = []
        async with UnitOfWork(mock_db_session, store, "test") as uow:
            uow.on_rollback("first", recorder(log, "first"))
            await uow.commit()
        assert log == []
        assert uow.committed is True
        mock_db_session.commit.assert_awaited_once()
        mock_db_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_commit_compensates_and_wraps(self, mock_db_session, store):
        mock_db_session.commit.side_effect = RuntimeError("connection lost")
        log = []
        with pytest.raises(DatabaseError) as exc_info:
            async with UnitOfWork(mock_db_session, store, "create") as uow:
                uow.on_rollback("undo", recorder(log, "undo"))
                await uow.commit()
        assert log == ["undo"]
        assert exc_info.value.context["operation"] == "create"
        assert exc_info.value.context["original_error"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_failed_compensation_writes_marker(self, mock_db_session, store):
        async def broken():
            raise OSError("disk gone")

        with pytest.raises(ValidationError):
            async with UnitOfWork(mock_db_session, store, "add_file") as uow:
                uow.on_rollback(
                    "remove body",
                    broken,
                    repair={"action": "remove_file", "submission_id": 3, "name": "demo", "path": "a.c"},
                )
                raise ValidationError(message="boom")

        markers = store.list_repair_markers()
        assert len(markers) == 1
        assert markers[0]["action"] == "remove_file"
        assert markers[0]["operation"] == "add_file"
        assert markers[0]["error"] == "disk gone"

    @pytest.mark.asyncio
    async def test_later_compensations_still_run_after_one_fails(self, mock_db_session, store):
        log = []

        async def broken():
            raise OSError("nope")

        with pytest.raises(ValidationError):
            async with UnitOfWork(mock_db_session, store, "test") as uow:
                uow.on_rollback("first", recorder(log, "first"))
                uow.on_rollback("broken", broken)
                raise ValidationError(message="boom")
        assert log == ["first"]
        assert len(store.list_repair_markers()) == 1

    @pytest.mark.asyncio
    async def test_rollback_failure_does_not_skip_compensations(self, mock_db_session, store):
        mock_db_session.rollback.side_effect = RuntimeError("already closed")
        log = []
        with pytest.raises(ValidationError):
            async with UnitOfWork(mock_db_session, store, "test") as uow:
                uow.on_rollback("first", recorder(log, "first"))
                raise ValidationError(message="boom")
        assert log == ["first"]
