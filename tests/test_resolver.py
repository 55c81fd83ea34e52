"""Tests for conflict resolution policies."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from tasksync.devices import DeviceRecord
from tasksync.records import TaskRecord
from tasksync.sync.resolver import ConflictResolver, SyncConflict
from tasksync.sync.state import ConflictPolicy

T0 = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


def _conflict(
    local_minutes: int = 0,
    remote_minutes: int = 0,
    local_device: Optional[str] = "local",
    remote_device: Optional[str] = "peer",
) -> SyncConflict:
    return SyncConflict(
        item_id="a",
        local_version=TaskRecord(
            id="a",
            updated_at=T0 + timedelta(minutes=local_minutes),
            data={"title": "local"},
            device_id=local_device,
        ),
        remote_version=TaskRecord(
            id="a",
            updated_at=T0 + timedelta(minutes=remote_minutes),
            data={"title": "remote"},
            device_id=remote_device,
        ),
        peer_device=DeviceRecord(id=remote_device or "peer", name="Peer", platform="ios"),
    )


class TestLastModified:
    """Tests for the lastModified policy."""

    @pytest.mark.asyncio
    async def test_newer_remote_wins(self):
        resolver = ConflictResolver("local")
        conflict = _conflict(local_minutes=1, remote_minutes=2)
        assert await resolver.resolve_one(conflict) is conflict.remote_version

    @pytest.mark.asyncio
    async def test_newer_local_wins(self):
        resolver = ConflictResolver("local")
        conflict = _conflict(local_minutes=3, remote_minutes=2)
        assert await resolver.resolve_one(conflict) is conflict.local_version

    @pytest.mark.asyncio
    async def test_tie_goes_to_local(self):
        resolver = ConflictResolver("local")
        conflict = _conflict()
        assert await resolver.resolve_one(conflict) is conflict.local_version

    @pytest.mark.asyncio
    async def test_deterministic(self):
        resolver = ConflictResolver("local")
        conflict = _conflict(local_minutes=1, remote_minutes=2)
        results = [await resolver.resolve_one(conflict) for _ in range(5)]
        assert all(r is conflict.remote_version for r in results)


class TestDevicePriority:
    """Tests for the devicePriority policy."""

    def _resolver(self, order):
        return ConflictResolver(
            "local", ConflictPolicy.DEVICE_PRIORITY, device_priority_order=order
        )

    @pytest.mark.asyncio
    async def test_higher_ranked_device_wins_even_if_older(self):
        resolver = self._resolver(["local", "peer"])
        conflict = _conflict(local_minutes=0, remote_minutes=10)
        assert await resolver.resolve_one(conflict) is conflict.local_version

    @pytest.mark.asyncio
    async def test_remote_ranked_higher(self):
        resolver = self._resolver(["peer", "local"])
        conflict = _conflict(local_minutes=10, remote_minutes=0)
        assert await resolver.resolve_one(conflict) is conflict.remote_version

    @pytest.mark.asyncio
    async def test_unlisted_device_ranks_lowest(self):
        resolver = self._resolver(["peer"])
        conflict = _conflict(local_minutes=10, remote_minutes=0)
        assert await resolver.resolve_one(conflict) is conflict.remote_version

    @pytest.mark.asyncio
    async def test_neither_listed_falls_back_to_last_modified(self):
        resolver = self._resolver(["someone-else"])
        conflict = _conflict(local_minutes=0, remote_minutes=5)
        assert await resolver.resolve_one(conflict) is conflict.remote_version

    @pytest.mark.asyncio
    async def test_same_device_falls_back_to_last_modified(self):
        resolver = self._resolver(["peer"])
        conflict = _conflict(
            local_minutes=5, remote_minutes=0, local_device="peer", remote_device="peer"
        )
        assert await resolver.resolve_one(conflict) is conflict.local_version

    @pytest.mark.asyncio
    async def test_unstamped_records_use_device_ids(self):
        resolver = self._resolver(["peer", "local"])
        conflict = _conflict(
            local_minutes=10, remote_minutes=0, local_device=None, remote_device=None
        )
        assert await resolver.resolve_one(conflict) is conflict.remote_version


class TestManual:
    """Tests for the manual policy."""

    @pytest.mark.asyncio
    async def test_first_callback_decides(self):
        resolver = ConflictResolver("local", ConflictPolicy.MANUAL)
        seen = []

        async def pick_remote(conflict):
            seen.append(conflict.item_id)
            return conflict.remote_version

        async def pick_local(conflict):
            seen.append("second")
            return conflict.local_version

        resolver.add_conflict_callback(pick_remote)
        resolver.add_conflict_callback(pick_local)
        conflict = _conflict(local_minutes=5)

        assert await resolver.resolve_one(conflict) is conflict.remote_version
        assert seen == ["a"]

    @pytest.mark.asyncio
    async def test_callback_may_return_merged_record(self):
        resolver = ConflictResolver("local", ConflictPolicy.MANUAL)
        merged = TaskRecord(id="a", updated_at=T0, data={"title": "merged"})

        async def merge(conflict):
            return merged

        resolver.add_conflict_callback(merge)
        assert await resolver.resolve_one(_conflict()) is merged

    @pytest.mark.asyncio
    async def test_no_callback_keeps_local(self):
        resolver = ConflictResolver("local", ConflictPolicy.MANUAL)
        conflict = _conflict(remote_minutes=5)
        assert await resolver.resolve_one(conflict) is conflict.local_version

    @pytest.mark.asyncio
    async def test_removed_callback_not_called(self):
        resolver = ConflictResolver("local", ConflictPolicy.MANUAL)

        async def pick_remote(conflict):
            return conflict.remote_version

        resolver.add_conflict_callback(pick_remote)
        resolver.remove_conflict_callback(pick_remote)
        resolver.remove_conflict_callback(pick_remote)
        assert resolver.callbacks == []

        conflict = _conflict(remote_minutes=5)
        assert await resolver.resolve_one(conflict) is conflict.local_version


class TestResolveAll:
    """Tests for ConflictResolver.resolve."""

    @pytest.mark.asyncio
    async def test_winners_in_input_order(self):
        resolver = ConflictResolver("local")
        first = _conflict(local_minutes=5)
        second = _conflict(remote_minutes=5)

        winners = await resolver.resolve([first, second])

        assert winners[0] is first.local_version
        assert winners[1] is second.remote_version

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await ConflictResolver("local").resolve([]) == []
