"""CLI interface for tasksync."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import click
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import config
from .devices import DeviceRecord, DeviceRegistry
from .exceptions import TaskSyncError, VersionNotFoundError
from .output import OutputFormatter
from .pending import PendingChangeBuffer
from .storage import LAST_SYNC_TIME_KEY, JsonFileStore, KeyValueTaskStore
from .sync import ConflictPolicy, SyncCoordinator, available_providers
from .sync.state import SyncStateManager
from .utils import format_iso_timestamp, utcnow
from .versions import VersionStore, diff_records

logger = logging.getLogger(__name__)


def _store(ctx: Any) -> JsonFileStore:
    return JsonFileStore(ctx.obj["data_dir"] / "store.json")


def _format_time(value: Any) -> str:
    return format_iso_timestamp(value) if value else "never"


def _change_title(change: Any) -> str:
    record = change.after or change.before
    return str(record.data.get("title", "")) if record else ""


def _run(ctx: Any, coro: Any) -> Any:
    """Run a coroutine, turning tasksync errors into a failed exit."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        return asyncio.run(coro)
    except TaskSyncError as e:
        out.error(str(e))
        ctx.exit(1)


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="TASKSYNC_DATA_DIR",
    help="Directory holding the tasksync store",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose/debug logging output")
@click.version_option(package_name="tasksync")
@click.pass_context
def main(
    ctx: Any, data_dir: Optional[Path], quiet: bool, json: bool, verbose: bool
) -> None:
    """tasksync - synchronize and version a to-do list across devices."""
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir or config.data_dir
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("tasksync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


# =========================
# Devices
# =========================


@main.command()
@click.pass_context
def device(ctx: Any) -> None:
    """Show this device's identity."""
    out: OutputFormatter = ctx.obj["out"]

    async def _show() -> DeviceRecord:
        return await DeviceRegistry(_store(ctx)).register()

    record = _run(ctx, _show())
    if out.json_output:
        out.output_json(record.to_dict())
    else:
        out.print(f"Device id: {record.id}")
        out.print(f"Name:      {record.name}")
        out.print(f"Platform:  {record.platform}")


@main.command()
@click.pass_context
def devices(ctx: Any) -> None:
    """List paired devices."""
    out: OutputFormatter = ctx.obj["out"]

    async def _list() -> list[DeviceRecord]:
        registry = DeviceRegistry(_store(ctx))
        await registry.register()
        return registry.paired_devices

    paired = _run(ctx, _list())
    out.output_table(
        [
            {**d.to_dict(), "lastSyncTime": _format_time(d.last_sync_time)}
            for d in paired
        ],
        ["id", "name", "platform", "lastSyncTime"],
        {"id": "ID", "name": "Name", "platform": "Platform", "lastSyncTime": "Last sync"},
    )


@main.command()
@click.argument("device_id")
@click.option("--name", "-n", help="Display name of the device")
@click.option("--platform", "-p", default="unknown", help="Platform of the device")
@click.pass_context
def pair(ctx: Any, device_id: str, name: Optional[str], platform: str) -> None:
    """Pair with the device DEVICE_ID."""
    out: OutputFormatter = ctx.obj["out"]

    async def _pair() -> None:
        registry = DeviceRegistry(_store(ctx))
        await registry.register()
        await registry.add_paired_device(
            DeviceRecord(id=device_id, name=name or device_id, platform=platform)
        )

    _run(ctx, _pair())
    out.success(f"Paired device {device_id}")


@main.command()
@click.argument("device_id")
@click.pass_context
def unpair(ctx: Any, device_id: str) -> None:
    """Remove the pairing with DEVICE_ID (no-op if not paired)."""
    out: OutputFormatter = ctx.obj["out"]

    async def _unpair() -> None:
        registry = DeviceRegistry(_store(ctx))
        await registry.register()
        await registry.remove_paired_device(device_id)

    _run(ctx, _unpair())
    out.success(f"Unpaired device {device_id}")


# =========================
# Sync
# =========================


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show sync settings and pending changes."""
    out: OutputFormatter = ctx.obj["out"]

    async def _status() -> dict:
        store = _store(ctx)
        state = await SyncStateManager(store).load_state()
        pending = PendingChangeBuffer(store)
        await pending.load()
        last_sync = await store.get(LAST_SYNC_TIME_KEY)
        return {**state.to_dict(), "pendingChanges": len(pending), "lastSyncTime": last_sync}

    info = _run(ctx, _status())
    if out.json_output:
        out.output_json(info)
        return

    out.print(f"Enabled:          {'yes' if info['enabled'] else 'no'}")
    out.print(f"Provider:         {info['provider'] or '-'}")
    out.print(f"Auto sync:        {'yes' if info['autoSync'] else 'no'}")
    out.print(f"Interval:         {info['syncInterval']} min")
    out.print(f"Conflict policy:  {info['conflictResolution']}")
    if info["devicePriority"]:
        out.print(f"Device priority:  {', '.join(info['devicePriority'])}")
    out.print(f"Pending changes:  {info['pendingChanges']}")
    out.print(f"Last sync:        {info['lastSyncTime'] or 'never'}")


@main.command()
@click.option(
    "--policy",
    type=click.Choice([p.value for p in ConflictPolicy]),
    help="Conflict resolution policy",
)
@click.option("--interval", type=click.IntRange(min=1), help="Auto-sync interval in minutes")
@click.option("--auto-sync/--no-auto-sync", default=None, help="Toggle automatic sync")
@click.option(
    "--priority",
    multiple=True,
    help="Device id for the priority order, highest first (repeatable)",
)
@click.pass_context
def configure(
    ctx: Any,
    policy: Optional[str],
    interval: Optional[int],
    auto_sync: Optional[bool],
    priority: tuple[str, ...],
) -> None:
    """Change sync settings."""
    out: OutputFormatter = ctx.obj["out"]
    changes: dict[str, Any] = {}
    if policy:
        changes["conflict_policy"] = ConflictPolicy(policy)
    if interval:
        changes["sync_interval_minutes"] = interval
    if auto_sync is not None:
        changes["auto_sync"] = auto_sync
    if priority:
        changes["device_priority_order"] = list(priority)

    if not changes:
        out.warning("Nothing to change")
        return

    async def _configure() -> None:
        manager = SyncStateManager(_store(ctx))
        state = await manager.load_state()
        await manager.save_state(state.updated(**changes))

    _run(ctx, _configure())
    out.success("Sync settings updated")


@main.command()
@click.option(
    "--provider",
    type=click.Choice(available_providers()),
    envvar="TASKSYNC_PROVIDER",
    help="Sync provider",
)
@click.option("--url", help="Provider URL")
@click.option("--username", help="WebDAV user name")
@click.option("--password", help="WebDAV password")
@click.option("--api-key", help="Document store API key")
@click.pass_context
def sync(
    ctx: Any,
    provider: Optional[str],
    url: Optional[str],
    username: Optional[str],
    password: Optional[str],
    api_key: Optional[str],
) -> None:
    """Run one sync cycle against the configured provider."""
    out: OutputFormatter = ctx.obj["out"]

    async def _sync() -> Any:
        provider_config = config.provider_config(
            provider, url=url, username=username, password=password, api_key=api_key
        )
        coordinator = SyncCoordinator(_store(ctx))
        await coordinator.initialize()
        try:
            await coordinator.enable(provider_config)
            return await coordinator.sync_once()
        finally:
            await coordinator.dispose()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        disable=out.quiet or out.json_output,
    ) as progress:
        progress.add_task("Syncing...", total=None)
        result = _run(ctx, _sync())

    if out.json_output:
        out.output_json(
            {
                "syncedAt": format_iso_timestamp(result.synced_at),
                "records": len(result.records),
                **result.stats,
            }
        )
        return

    stats = result.stats
    out.success(f"Synced {len(result.records)} record(s)")
    out.info(f"  Uploaded:         {stats['uploads']}")
    out.info(f"  Downloaded:       {stats['downloads']}")
    out.info(f"  Deleted locally:  {stats['deletes_local']}")
    out.info(f"  Deleted remotely: {stats['deletes_remote']}")
    out.info(f"  Conflicts:        {stats['conflicts']}")


# =========================
# Versions
# =========================


@main.group()
def versions() -> None:
    """Inspect and manage the version history."""


async def _version_store(ctx: Any) -> VersionStore:
    store = VersionStore(_store(ctx))
    await store.initialize()
    return store


@versions.command("list")
@click.pass_context
def versions_list(ctx: Any) -> None:
    """List versions, newest first."""
    out: OutputFormatter = ctx.obj["out"]
    store = _run(ctx, _version_store(ctx))
    out.output_table(
        [
            {
                "id": v.id,
                "timestamp": format_iso_timestamp(v.timestamp),
                "description": v.description,
                "records": len(v.snapshot),
                "changes": len(v.changes),
            }
            for v in store.get_versions()
        ],
        ["id", "timestamp", "description", "records", "changes"],
        {
            "id": "ID",
            "timestamp": "Created",
            "description": "Description",
            "records": "Records",
            "changes": "Changes",
        },
    )


@versions.command("show")
@click.argument("version_id")
@click.pass_context
def versions_show(ctx: Any, version_id: str) -> None:
    """Show one version with its changes."""
    out: OutputFormatter = ctx.obj["out"]

    async def _show() -> Any:
        store = await _version_store(ctx)
        version = store.get_version(version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        return version

    version = _run(ctx, _show())
    if out.json_output:
        out.output_json(version.to_dict())
        return

    out.print(f"Version:     {version.id}")
    out.print(f"Created:     {format_iso_timestamp(version.timestamp)}")
    out.print(f"Description: {version.description}")
    out.print(f"Records:     {len(version.snapshot)}")
    out.print()
    out.output_table(
        [
            {"type": c.type.value, "todoId": c.todo_id, "title": _change_title(c)}
            for c in version.changes
        ],
        ["type", "todoId", "title"],
        {"type": "Change", "todoId": "Record", "title": "Title"},
    )


@versions.command("create")
@click.argument("description")
@click.pass_context
def versions_create(ctx: Any, description: str) -> None:
    """Checkpoint the current task list."""
    out: OutputFormatter = ctx.obj["out"]

    async def _create() -> Any:
        store = await _version_store(ctx)
        records = await KeyValueTaskStore(_store(ctx)).load()
        latest = store.get_versions()[:1]
        previous = latest[0].snapshot if latest else []
        return await store.create_version(
            description, diff_records(previous, records), records
        )

    version = _run(ctx, _create())
    if version is None:
        out.warning("Version history is disabled")
    else:
        out.success(f"Created version {version.id} ({len(version.changes)} change(s))")


@versions.command("diff")
@click.argument("version_a")
@click.argument("version_b")
@click.pass_context
def versions_diff(ctx: Any, version_a: str, version_b: str) -> None:
    """Show changes from VERSION_A to VERSION_B."""
    out: OutputFormatter = ctx.obj["out"]

    async def _diff() -> Any:
        store = await _version_store(ctx)
        return store.compare_versions(version_a, version_b)

    changes = _run(ctx, _diff())
    out.output_table(
        [
            {
                "type": c.type.value,
                "todoId": c.todo_id,
                "title": _change_title(c),
            }
            for c in changes
        ],
        ["type", "todoId", "title"],
        {"type": "Change", "todoId": "Record", "title": "Title"},
    )


@versions.command("rollback")
@click.argument("version_id")
@click.pass_context
def versions_rollback(ctx: Any, version_id: str) -> None:
    """Install the snapshot of VERSION_ID as the current task list.

    Restored records are staged as local changes so the next sync
    propagates the rollback to other devices.
    """
    out: OutputFormatter = ctx.obj["out"]

    async def _rollback() -> int:
        kv = _store(ctx)
        store = await _version_store(ctx)
        snapshot = store.rollback_to_version(version_id)

        registry = DeviceRegistry(kv)
        await registry.register()
        task_store = KeyValueTaskStore(kv)
        pending = PendingChangeBuffer(kv)
        await pending.load()

        current = await task_store.load()
        now = utcnow()
        restored = []
        for change in diff_records(current, snapshot):
            if change.after is not None:
                record = change.after.with_device(registry.device_id)
                record.updated_at = now
                restored.append(record)
                await pending.stage(record)
            else:
                await pending.unstage(change.todo_id)

        staged = {r.id: r for r in restored}
        await task_store.replace([staged.get(r.id, r) for r in snapshot])
        return len(snapshot)

    count = _run(ctx, _rollback())
    out.success(f"Rolled back to {version_id} ({count} record(s))")


@versions.command("delete")
@click.argument("version_id")
@click.pass_context
def versions_delete(ctx: Any, version_id: str) -> None:
    """Delete a single version."""
    out: OutputFormatter = ctx.obj["out"]

    async def _delete() -> None:
        store = await _version_store(ctx)
        await store.delete_version(version_id)

    _run(ctx, _delete())
    out.success(f"Deleted version {version_id}")


@versions.command("cleanup")
@click.option("--max-versions", type=click.IntRange(min=0), help="Keep at most this many")
@click.option("--retention-days", type=click.IntRange(min=0), help="Drop older versions")
@click.pass_context
def versions_cleanup(
    ctx: Any, max_versions: Optional[int], retention_days: Optional[int]
) -> None:
    """Apply retention rules, optionally updating them first."""
    out: OutputFormatter = ctx.obj["out"]

    async def _cleanup() -> int:
        store = await _version_store(ctx)
        before = len(store.get_versions())
        changes: dict[str, Any] = {}
        if max_versions is not None:
            changes["max_versions"] = max_versions
        if retention_days is not None:
            changes["retention_days"] = retention_days
        if changes:
            await store.update_config(**changes)
        await store.cleanup()
        return before - len(store.get_versions())

    removed = _run(ctx, _cleanup())
    out.success(f"Removed {removed} version(s)")


if __name__ == "__main__":
    main()
