"""Tests for the version store: creation, retention, diff and rollback."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from tasksync.exceptions import StorageFailureError, VersionNotFoundError
from tasksync.records import TaskRecord
from tasksync.storage import VERSION_CONFIG_KEY, VERSION_HISTORY_KEY, MemoryStore
from tasksync.versions import (
    ChangeType,
    VersionChange,
    VersionConfig,
    VersionStore,
    diff_records,
)

T0 = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


def _record(record_id: str, title: str = "x", minutes: int = 0) -> TaskRecord:
    return TaskRecord(
        id=record_id, updated_at=T0 + timedelta(minutes=minutes), data={"title": title}
    )


class Clock:
    """Mutable clock for VersionStore."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def _store(kv=None, clock=None) -> VersionStore:
    versions = VersionStore(kv or MemoryStore(), now=clock or Clock())
    await versions.initialize()
    return versions


class TestVersionConfig:
    """Tests for VersionConfig."""

    def test_defaults(self):
        config = VersionConfig()
        assert config.enabled is True
        assert config.max_versions == 50
        assert config.retention_days == 30
        assert config.auto_cleanup is True

    def test_round_trip(self):
        config = VersionConfig(max_versions=3, retention_days=7, auto_cleanup=False)
        assert config.to_dict() == {
            "enabled": True,
            "maxVersions": 3,
            "retentionDays": 7,
            "autoCleanup": False,
        }
        assert VersionConfig.from_dict(config.to_dict()) == config

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            VersionConfig(max_versions=-1)
        with pytest.raises(ValueError):
            VersionConfig(retention_days=-1)

    def test_updated_rejects_unknown(self):
        with pytest.raises(TypeError):
            VersionConfig().updated(keep_forever=True)


class TestDiffRecords:
    """Tests for diff_records."""

    def test_create_update_delete(self):
        before = [_record("a", "A"), _record("b", "B"), _record("c", "C")]
        after = [_record("a", "A"), _record("b", "B2"), _record("d", "D")]

        changes = diff_records(before, after)

        assert [(c.type, c.todo_id) for c in changes] == [
            (ChangeType.UPDATE, "b"),
            (ChangeType.DELETE, "c"),
            (ChangeType.CREATE, "d"),
        ]
        assert changes[0].before.data["title"] == "B"
        assert changes[0].after.data["title"] == "B2"
        assert changes[1].after is None
        assert changes[2].before is None

    def test_identical_sets(self):
        assert diff_records([_record("a")], [_record("a")]) == []

    def test_change_serialization(self):
        change = VersionChange(ChangeType.CREATE, "a", after=_record("a"))
        assert VersionChange.from_dict(change.to_dict()) == change


class TestCreateVersion:
    """Tests for VersionStore.create_version."""

    @pytest.mark.asyncio
    async def test_create_and_persist(self):
        kv = MemoryStore()
        versions = await _store(kv)
        version = await versions.create_version(
            "Added milk", [VersionChange(ChangeType.CREATE, "a", after=_record("a"))],
            [_record("a")],
        )

        assert version.description == "Added milk"
        assert version.timestamp == T0
        assert versions.get_version(version.id) == version

        reloaded = await _store(kv)
        assert reloaded.get_versions() == [version]

    @pytest.mark.asyncio
    async def test_newest_first_with_monotonic_timestamps(self):
        versions = await _store()
        created = [await versions.create_version(f"v{i}", [], []) for i in range(1, 4)]

        listed = versions.get_versions()
        assert [v.description for v in listed] == ["v3", "v2", "v1"]
        assert listed[0].timestamp > listed[1].timestamp > listed[2].timestamp
        assert len({v.id for v in created}) == 3

    @pytest.mark.asyncio
    async def test_disabled_returns_none(self):
        versions = await _store()
        await versions.update_config(enabled=False)
        assert await versions.create_version("ignored", [], []) is None
        assert versions.get_versions() == []

    @pytest.mark.asyncio
    async def test_snapshot_is_deep_copied(self):
        versions = await _store()
        records = [_record("a", "original")]
        version = await versions.create_version("v1", [], records)

        records[0].data["title"] = "mutated"
        records.append(_record("b"))

        assert [r.data["title"] for r in version.snapshot] == ["original"]

    @pytest.mark.asyncio
    async def test_save_failure_propagates(self):
        class ReadOnlyStore(MemoryStore):
            async def set(self, key, value):
                raise StorageFailureError("read-only")

        versions = await _store(ReadOnlyStore())
        with pytest.raises(StorageFailureError):
            await versions.create_version("v1", [], [])
        assert versions.get_versions() == []

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_logged_not_raised(self, caplog):
        class FailsThirdHistoryWrite(MemoryStore):
            history_writes = 0

            async def set(self, key, value):
                if key == VERSION_HISTORY_KEY:
                    self.history_writes += 1
                    if self.history_writes >= 3:
                        raise StorageFailureError("disk full")
                await super().set(key, value)

        versions = await _store(FailsThirdHistoryWrite())
        await versions.update_config(max_versions=1)
        await versions.create_version("v1", [], [])

        with caplog.at_level(logging.WARNING, logger="tasksync.versions"):
            version = await versions.create_version("v2", [], [])

        assert version is not None
        assert versions.get_versions()[0] == version
        assert "cleanup" in caplog.text


class TestRetention:
    """Tests for count- and age-based pruning."""

    @pytest.mark.asyncio
    async def test_max_versions_keeps_newest(self):
        versions = await _store()
        await versions.update_config(max_versions=3, retention_days=3650)
        for i in range(1, 6):
            await versions.create_version(f"v{i}", [], [])

        assert [v.description for v in versions.get_versions()] == ["v5", "v4", "v3"]

    @pytest.mark.asyncio
    async def test_age_cleanup(self):
        clock = Clock()
        versions = await _store(clock=clock)
        await versions.create_version("old", [], [])
        clock.now = T0 + timedelta(days=20)
        await versions.create_version("recent", [], [])

        clock.now = T0 + timedelta(days=31)
        removed = await versions.cleanup()

        assert removed == 1
        assert [v.description for v in versions.get_versions()] == ["recent"]

    @pytest.mark.asyncio
    async def test_initialize_prunes(self):
        kv = MemoryStore()
        clock = Clock()
        versions = await _store(kv, clock)
        await versions.create_version("old", [], [])

        clock.now = T0 + timedelta(days=60)
        reloaded = await _store(kv, clock)

        assert reloaded.get_versions() == []

    @pytest.mark.asyncio
    async def test_no_auto_cleanup(self):
        versions = await _store()
        await versions.update_config(max_versions=1, auto_cleanup=False)
        await versions.create_version("v1", [], [])
        await versions.create_version("v2", [], [])
        assert len(versions.get_versions()) == 2

        assert await versions.cleanup() == 1
        assert [v.description for v in versions.get_versions()] == ["v2"]

    @pytest.mark.asyncio
    async def test_config_persisted(self):
        kv = MemoryStore()
        versions = await _store(kv)
        await versions.update_config(max_versions=7)
        assert (await kv.get(VERSION_CONFIG_KEY))["maxVersions"] == 7
        assert (await _store(kv)).get_config().max_versions == 7

    @pytest.mark.asyncio
    async def test_delete_version(self):
        versions = await _store()
        v1 = await versions.create_version("v1", [], [])
        v2 = await versions.create_version("v2", [], [])
        await versions.delete_version(v1.id)
        await versions.delete_version("unknown")
        assert versions.get_versions() == [v2]


class TestCompareAndRollback:
    """Tests for compare_versions and rollback_to_version."""

    @pytest.mark.asyncio
    async def test_compare_single_field_change(self):
        versions = await _store()
        a = await versions.create_version("A", [], [_record("x", "old"), _record("y")])
        b = await versions.create_version("B", [], [_record("x", "new"), _record("y")])

        changes = versions.compare_versions(a.id, b.id)

        assert len(changes) == 1
        assert changes[0].type == ChangeType.UPDATE
        assert changes[0].before.data["title"] == "old"
        assert changes[0].after.data["title"] == "new"

    @pytest.mark.asyncio
    async def test_compare_unknown_version(self):
        versions = await _store()
        a = await versions.create_version("A", [], [])
        with pytest.raises(VersionNotFoundError, match="missing"):
            versions.compare_versions(a.id, "missing")

    @pytest.mark.asyncio
    async def test_rollback_fidelity(self):
        versions = await _store()
        live = [_record("x", "captured")]
        version = await versions.create_version("v1", [], live)
        live[0].data["title"] = "edited later"

        restored = versions.rollback_to_version(version.id)
        assert [r.to_dict() for r in restored] == [_record("x", "captured").to_dict()]

        restored[0].data["title"] = "tampered"
        again = versions.rollback_to_version(version.id)
        assert again[0].data["title"] == "captured"

    @pytest.mark.asyncio
    async def test_editing_diff_leaves_snapshot_intact(self):
        versions = await _store()
        a = await versions.create_version("A", [], [_record("x", "old")])
        b = await versions.create_version("B", [], [_record("x", "new")])

        changes = versions.compare_versions(a.id, b.id)
        changes[0].after.data["title"] = "tampered"
        changes[0].before.data["title"] = "tampered"

        assert versions.rollback_to_version(b.id)[0].data["title"] == "new"
        assert versions.rollback_to_version(a.id)[0].data["title"] == "old"

    @pytest.mark.asyncio
    async def test_accessors_return_copies(self):
        versions = await _store()
        created = await versions.create_version("A", [], [_record("x", "kept")])

        created.snapshot[0].data["title"] = "changed"
        versions.get_version(created.id).snapshot[0].data["title"] = "changed"
        versions.get_versions()[0].snapshot.clear()

        assert versions.rollback_to_version(created.id)[0].data["title"] == "kept"

    @pytest.mark.asyncio
    async def test_rollback_does_not_create_version(self):
        versions = await _store()
        version = await versions.create_version("v1", [], [_record("x")])
        versions.rollback_to_version(version.id)
        assert len(versions.get_versions()) == 1

    @pytest.mark.asyncio
    async def test_rollback_unknown(self):
        versions = await _store()
        with pytest.raises(VersionNotFoundError):
            versions.rollback_to_version("nope")

    @pytest.mark.asyncio
    async def test_malformed_history(self):
        kv = MemoryStore({VERSION_HISTORY_KEY: [{"id": "v1", "timestamp": "never"}]})
        with pytest.raises(StorageFailureError):
            await _store(kv)
