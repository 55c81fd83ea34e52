"""Sync coordinator: runs sync cycles between the local task list and a provider."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, cast

from ..config import ProviderConfig
from ..devices import DeviceRecord, DeviceRegistry
from ..exceptions import (
    ProviderUnavailableError,
    StorageFailureError,
    SyncDisabledError,
    SyncInProgressError,
)
from ..pending import PendingChangeBuffer
from ..records import TaskRecord
from ..scheduler import AsyncioScheduler, Scheduler, Ticket
from ..storage import KeyValueStore, KeyValueTaskStore
from ..utils import utcnow
from .comparator import MergeAction, MergeDecision, RecordComparator
from .providers import SyncProvider, create_provider
from .resolver import ConflictCallback, ConflictResolver, SyncConflict
from .state import SyncHistory, SyncState, SyncStateManager

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    """Coordinator lifecycle states."""

    DISABLED = "disabled"
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncResult:
    """Outcome of a committed sync cycle."""

    records: list[TaskRecord]
    """Record set installed as the new local state"""

    stats: dict[str, int]
    """Counts per action (uploads, downloads, deletes, skips, conflicts)"""

    synced_at: datetime
    """Time the cycle committed"""

    conflicts: list[SyncConflict] = field(default_factory=list)
    """Conflicts resolved during the cycle"""


class SyncCoordinator:
    """Core sync coordinator that orchestrates record synchronization.

    One cycle downloads the remote record set, reconciles it with the local
    records and pending changes, uploads the merged set (full replace) and
    commits it locally. A cycle either commits completely or leaves local
    state and the pending-change buffer exactly as they were.
    """

    def __init__(
        self,
        store: KeyValueStore,
        task_store: Optional[KeyValueTaskStore] = None,
        registry: Optional[DeviceRegistry] = None,
        pending: Optional[PendingChangeBuffer] = None,
        scheduler: Optional[Scheduler] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        """Initialize sync coordinator.

        Args:
            store: Key-value store for sync state and provider bookkeeping
            task_store: Live task list (defaults to one backed by ``store``)
            registry: Device registry (defaults to one backed by ``store``)
            pending: Pending-change buffer (defaults to one backed by ``store``)
            scheduler: Timer scheduler for auto-sync (defaults to asyncio)
            now: Clock used for sync timestamps
        """
        self.store = store
        self.task_store = task_store if task_store is not None else KeyValueTaskStore(store)
        self.registry = registry if registry is not None else DeviceRegistry(store)
        self.pending = pending if pending is not None else PendingChangeBuffer(store)
        self.scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.state_manager = SyncStateManager(store)
        self.resolver = ConflictResolver(local_device_id="")
        self.provider: Optional[SyncProvider] = None
        self._now = now
        self._state = SyncState()
        self._history = SyncHistory()
        self._status = SyncStatus.DISABLED
        self._ticket: Optional[Ticket] = None
        self._in_flight: set[str] = set()

    # =========================
    # Lifecycle
    # =========================

    async def initialize(self) -> DeviceRecord:
        """Load persisted state, register this device and replay pending changes.

        Returns:
            This device's record
        """
        self._state = await self.state_manager.load_state()
        device = await self.registry.register()
        await self.pending.load()
        self._history = await self.state_manager.load_history()
        self.resolver.local_device_id = device.id
        self._configure_resolver()
        logger.debug(
            f"Sync coordinator initialized for device {device.id} "
            f"({len(self.pending)} pending change(s))"
        )
        return device

    async def dispose(self) -> None:
        """Cancel the timer and release the provider."""
        self._cancel_timer()
        if self.provider is not None:
            await self.provider.close()

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def state(self) -> SyncState:
        return self._state.updated()

    async def enable(self, provider_config: ProviderConfig) -> None:
        """Select and initialize a provider, then start syncing.

        Raises:
            ProviderConfigError: If the provider name is unknown
            ProviderUnavailableError: If the provider cannot be initialized
        """
        provider = create_provider(provider_config, self.store)
        try:
            await provider.initialize()
        except Exception:
            await provider.close()
            raise

        state = self._state.updated(enabled=True, provider=provider.name)
        await self.state_manager.save_state(state)

        if self.provider is not None and self.provider is not provider:
            await self.provider.close()
        self.provider = provider
        self._state = state
        if not self._in_flight:
            self._status = SyncStatus.IDLE
        self._rearm_timer()
        logger.info(f"Sync enabled with provider '{provider.name}'")

    async def disable(self) -> None:
        """Stop syncing. A cycle already running is allowed to finish."""
        self._cancel_timer()
        state = self._state.updated(enabled=False)
        await self.state_manager.save_state(state)
        self._state = state
        self._status = SyncStatus.DISABLED
        logger.info("Sync disabled")

    async def update_sync_state(self, **changes: Any) -> SyncState:
        """Apply and persist settings changes, re-arming the timer as needed."""
        state = self._state.updated(**changes)
        await self.state_manager.save_state(state)
        self._state = state
        self._configure_resolver()
        if not state.enabled:
            self._status = SyncStatus.DISABLED
        self._rearm_timer()
        return self.state

    def _configure_resolver(self) -> None:
        self.resolver.policy = self._state.conflict_policy
        self.resolver.device_priority_order = list(
            self._state.device_priority_order or []
        )

    # =========================
    # Auto-sync timer
    # =========================

    def _cancel_timer(self) -> None:
        if self._ticket is not None:
            self._ticket.cancel()
            self._ticket = None

    def _rearm_timer(self) -> None:
        self._cancel_timer()
        if self._state.enabled and self._state.auto_sync and self.provider is not None:
            interval = self._state.sync_interval_minutes * 60
            self._ticket = self.scheduler.schedule_repeating(interval, self._auto_sync_tick)
            logger.debug(f"Auto-sync armed every {self._state.sync_interval_minutes} min")

    async def _auto_sync_tick(self) -> None:
        if not self._state.enabled:
            return
        try:
            await self.sync_once()
        except SyncInProgressError:
            logger.debug("Auto-sync skipped, a cycle is already running")
        except (ProviderUnavailableError, StorageFailureError) as e:
            logger.warning(f"Auto-sync failed: {e}")

    # =========================
    # Pending changes and callbacks
    # =========================

    async def stage_change(self, record: TaskRecord) -> TaskRecord:
        """Buffer a local change, stamped with this device's id."""
        stamped = record.with_device(self.registry.device_id)
        await self.pending.stage(stamped)
        return stamped

    async def unstage_change(self, record_id: str) -> None:
        await self.pending.unstage(record_id)

    def add_conflict_callback(self, callback: ConflictCallback) -> None:
        self.resolver.add_conflict_callback(callback)

    def remove_conflict_callback(self, callback: ConflictCallback) -> None:
        self.resolver.remove_conflict_callback(callback)

    async def last_sync_time(self) -> Optional[datetime]:
        if self.provider is None:
            return None
        return await self.provider.get_last_sync_time()

    # =========================
    # Sync cycle
    # =========================

    async def sync_once(self) -> SyncResult:
        """Run one sync cycle.

        Returns:
            SyncResult describing the committed cycle

        Raises:
            SyncDisabledError: If sync is disabled or no provider is enabled
            SyncInProgressError: If a cycle is already running for the provider
            ProviderUnavailableError: If the provider fails (nothing committed)
            StorageFailureError: If local persistence fails (nothing committed)
        """
        provider = self.provider
        if not self._state.enabled or provider is None:
            raise SyncDisabledError("Sync is not enabled")

        # Checked and set before the first await, so re-entrant calls on the
        # same event loop cannot both pass
        if provider.name in self._in_flight:
            raise SyncInProgressError(f"A sync cycle is already running for '{provider.name}'")
        self._in_flight.add(provider.name)
        self._status = SyncStatus.SYNCING

        try:
            return await self._run_cycle(provider)
        finally:
            self._in_flight.discard(provider.name)
            self._status = SyncStatus.IDLE if self._state.enabled else SyncStatus.DISABLED

    async def _run_cycle(self, provider: SyncProvider) -> SyncResult:
        # Step 1: Snapshot local state
        pending = self.pending.snapshot()
        local_records = await self.task_store.load()
        logger.debug(
            f"Sync cycle started: {len(local_records)} local record(s), "
            f"{len(pending)} pending change(s)"
        )

        # Step 2: Download the remote set
        remote_records = await provider.download_records()

        # Step 3: Compare and determine actions
        comparator = RecordComparator(self._history.synced_ids)
        decisions = comparator.compare_records(local_records, pending, remote_records)

        # Step 4: Resolve all conflicts before merging anything
        conflict_decisions = [d for d in decisions if d.action == MergeAction.CONFLICT]
        conflicts = [self._make_conflict(d) for d in conflict_decisions]
        winners = await self.resolver.resolve(conflicts)
        winner_map = {c.item_id: w for c, w in zip(conflicts, winners)}

        merged = self._merge(decisions, winner_map)
        stats = self._categorize_decisions(decisions, winner_map)

        # Step 5: Replace the remote set
        await provider.upload_records(merged)

        # Step 6: Commit locally
        synced_at = self._now()
        committed = await self._commit(
            provider, local_records, pending, merged, synced_at
        )

        logger.info(
            f"Sync complete: {stats['uploads']} up, {stats['downloads']} down, "
            f"{stats['deletes_local']} deleted locally, "
            f"{stats['deletes_remote']} deleted remotely, "
            f"{stats['conflicts']} conflict(s)"
        )
        return SyncResult(
            records=committed, stats=stats, synced_at=synced_at, conflicts=conflicts
        )

    def _make_conflict(self, decision: MergeDecision) -> SyncConflict:
        remote = cast(TaskRecord, decision.remote_record)
        peer = self.registry.get_device(remote.device_id) if remote.device_id else None
        if peer is None:
            peer = DeviceRecord(
                id=remote.device_id or "unknown",
                name=remote.device_id or "unknown",
                platform="unknown",
            )
        return SyncConflict(
            item_id=decision.record_id,
            local_version=cast(TaskRecord, decision.local_record),
            remote_version=remote,
            peer_device=peer,
        )

    def _merge(
        self, decisions: list[MergeDecision], winners: dict[str, TaskRecord]
    ) -> list[TaskRecord]:
        merged: list[TaskRecord] = []
        for decision in decisions:
            if decision.action == MergeAction.CONFLICT:
                record = winners.get(decision.record_id)
            else:
                record = decision.result
            if record is not None:
                merged.append(record)
        return merged

    def _categorize_decisions(
        self, decisions: list[MergeDecision], winners: dict[str, TaskRecord]
    ) -> dict[str, int]:
        """Categorize decisions into statistics."""
        stats = {
            "uploads": 0,
            "downloads": 0,
            "deletes_local": 0,
            "deletes_remote": 0,
            "skips": 0,
            "conflicts": 0,
        }

        for decision in decisions:
            if decision.action == MergeAction.KEEP_LOCAL:
                stats["uploads"] += 1
            elif decision.action == MergeAction.TAKE_REMOTE:
                stats["downloads"] += 1
            elif decision.action == MergeAction.DELETE_LOCAL:
                stats["deletes_local"] += 1
            elif decision.action == MergeAction.DELETE_REMOTE:
                stats["deletes_remote"] += 1
            elif decision.action == MergeAction.SKIP:
                stats["skips"] += 1
            elif decision.action == MergeAction.CONFLICT:
                stats["conflicts"] += 1
                # A merged winner is new to both sides and goes out with the upload
                if winners.get(decision.record_id) is decision.remote_record:
                    stats["downloads"] += 1
                else:
                    stats["uploads"] += 1

        return stats

    async def _commit(
        self,
        provider: SyncProvider,
        previous_records: list[TaskRecord],
        pending: dict[str, TaskRecord],
        merged: list[TaskRecord],
        synced_at: datetime,
    ) -> list[TaskRecord]:
        """Install the merged set locally, or restore everything on failure."""
        # Changes staged while the cycle was running stay on top of the merge
        late = {
            record_id: record
            for record_id, record in self.pending.snapshot().items()
            if pending.get(record_id) is not record
        }
        # Records deleted locally while the cycle was running stay deleted;
        # they remain in synced_ids so the next cycle removes them remotely
        live_records = await self.task_store.load()
        live_ids = {r.id for r in live_records}
        removed = {r.id for r in previous_records if r.id not in live_ids} - set(late)
        committed = [late.pop(r.id, r) for r in merged if r.id not in removed]
        committed.extend(late.values())

        previous_history = self._history
        history = SyncHistory(synced_ids={r.id for r in merged})
        pending_before = self.pending.snapshot()

        try:
            await self.task_store.replace(committed)
            await self.pending.unstage_synced(pending)
            await self.state_manager.save_history(history)
            await provider.set_last_sync_time(synced_at)
            online = [d.id for d in self.registry.online_devices()]
            await self.registry.mark_synced(online, synced_at)
        except Exception:
            logger.warning("Sync commit failed, restoring previous local state")
            try:
                await self.task_store.replace(live_records)
                await self.pending.restore(pending_before)
                await self.state_manager.save_history(previous_history)
            except Exception:
                logger.exception("Failed to restore local state after commit failure")
            raise

        self._history = history
        return committed
