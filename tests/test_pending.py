"""Tests for the pending-change buffer."""

from datetime import datetime, timedelta, timezone

import pytest

from tasksync.exceptions import StorageFailureError
from tasksync.pending import PendingChangeBuffer
from tasksync.records import TaskRecord
from tasksync.storage import PENDING_CHANGES_KEY, MemoryStore

T0 = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


def _record(record_id: str, minutes: int = 0, title: str = "x") -> TaskRecord:
    return TaskRecord(
        id=record_id, updated_at=T0 + timedelta(minutes=minutes), data={"title": title}
    )


class TestPendingChangeBuffer:
    """Tests for PendingChangeBuffer."""

    @pytest.mark.asyncio
    async def test_stage_overwrites_by_id(self):
        buffer = PendingChangeBuffer(MemoryStore())
        await buffer.stage(_record("a", title="first"))
        await buffer.stage(_record("a", 1, title="second"))
        assert len(buffer) == 1
        assert buffer.get("a").data["title"] == "second"

    @pytest.mark.asyncio
    async def test_unstage(self):
        buffer = PendingChangeBuffer(MemoryStore())
        await buffer.stage(_record("a"))
        await buffer.unstage("a")
        await buffer.unstage("missing")
        assert "a" not in buffer
        assert len(buffer) == 0

    @pytest.mark.asyncio
    async def test_persisted_and_replayed(self):
        store = MemoryStore()
        buffer = PendingChangeBuffer(store)
        await buffer.stage(_record("a"))
        await buffer.stage(_record("b"))

        replayed = PendingChangeBuffer(store)
        await replayed.load()
        assert sorted(r.id for r in replayed.records()) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_load_malformed(self):
        store = MemoryStore({PENDING_CHANGES_KEY: [{"id": "a"}]})
        with pytest.raises(StorageFailureError):
            await PendingChangeBuffer(store).load()

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self):
        buffer = PendingChangeBuffer(MemoryStore())
        await buffer.stage(_record("a"))
        snapshot = buffer.snapshot()
        await buffer.stage(_record("b"))
        assert list(snapshot) == ["a"]

    @pytest.mark.asyncio
    async def test_unstage_synced_keeps_newer_edits(self):
        buffer = PendingChangeBuffer(MemoryStore())
        await buffer.stage(_record("a"))
        await buffer.stage(_record("b"))
        snapshot = buffer.snapshot()

        newer = _record("b", 5, title="edited during sync")
        await buffer.stage(newer)
        removed = await buffer.unstage_synced(snapshot)

        assert removed == 1
        assert "a" not in buffer
        assert buffer.get("b") is newer

    @pytest.mark.asyncio
    async def test_restore_and_clear(self):
        buffer = PendingChangeBuffer(MemoryStore())
        await buffer.stage(_record("a"))
        snapshot = buffer.snapshot()
        await buffer.clear()
        assert len(buffer) == 0
        await buffer.restore(snapshot)
        assert "a" in buffer

    @pytest.mark.asyncio
    async def test_failed_write_leaves_buffer_unchanged(self):
        class BrokenStore(MemoryStore):
            async def set(self, key, value):
                raise StorageFailureError("read-only")

        buffer = PendingChangeBuffer(BrokenStore())
        with pytest.raises(StorageFailureError):
            await buffer.stage(_record("a"))
        assert len(buffer) == 0
