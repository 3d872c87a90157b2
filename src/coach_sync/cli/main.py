"""coach-sync CLI main entry point."""

from __future__ import annotations

from typing import Annotated, Any

import typer

from coach_sync.cli._helpers import get_config, open_store, output_result, run_async
from coach_sync.cli.commands.config_cmd import config_app
from coach_sync.cli.tui import render_conflicts, render_operations, render_status
from coach_sync.core.operations import OperationStatus

# Main app
app = typer.Typer(
    name="coach-sync",
    help="coach-sync - offline replica and sync queue for the coaching client",
    no_args_is_help=True,
)

# Queue subcommand
queue_app = typer.Typer(help="Inspect the pending operation queue")
app.add_typer(queue_app, name="queue")

# Conflicts subcommand
conflicts_app = typer.Typer(help="Inspect and upload the conflict log")
app.add_typer(conflicts_app, name="conflicts")

app.add_typer(config_app, name="config")


# =============================================================================
# Status
# =============================================================================


@app.command()
def status(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show replica contents, queue depth and conflict backlog.

    Examples:
        coach-sync status
        coach-sync status --json
    """

    async def _status() -> dict[str, Any]:
        config = get_config()
        store = await open_store(config)
        conflicts = await store.list_conflicts(limit=10000, only_not_uploaded=True)
        return {
            "replica": str(config.replica_db_path),
            "remote": config.remote.url or None,
            "entities": await store.entity_counts(),
            "queue": await store.operation_stats(),
            "conflicts_not_uploaded": len(conflicts),
        }

    result = run_async(_status())

    if json_output:
        output_result(result, True)
    else:
        typer.echo(f"Replica: {result['replica']}")
        render_status(result)


# =============================================================================
# Sync
# =============================================================================


@app.command()
def sync(
    owner: Annotated[str, typer.Option("--owner", "-o", help="Signed-in user id to reconcile")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Replay queued operations, then refresh the owner's data from the remote.

    Examples:
        coach-sync sync --owner 3f1c...
        coach-sync sync -o 3f1c... --json
    """
    from coach_sync.factory import create_sync_stack
    from coach_sync.sync.reachability import Reachability, ReachabilityProbe

    async def _sync() -> dict[str, Any]:
        config = get_config()
        if not config.remote.is_configured:
            return {"error": "Remote not configured. Run: coach-sync config set-remote <url>"}

        reachability = Reachability()
        headers = {"apikey": config.remote.api_key} if config.remote.api_key else None
        probe = ReachabilityProbe(reachability, config.probe_url, headers=headers)
        stack = await create_sync_stack(
            config, owner_provider=lambda: owner, reachability=reachability
        )
        try:
            if not await probe.check_once():
                pending = await stack.repository.pending_operation_count()
                return {
                    "error": f"Remote unreachable; {pending} operation(s) still queued",
                    "remaining": pending,
                }
            event = await stack.coordinator.perform_sync()
            if event is None:
                return {"error": "Sync did not run"}
            return {
                "message": "Sync complete",
                "applied": event.applied,
                "conflicts": event.conflicts,
                "dead_lettered": event.dead_lettered,
                "remaining": event.remaining,
                "completed_at": event.completed_at.isoformat(),
            }
        finally:
            await probe.stop()
            await stack.aclose()

    result = run_async(_sync())

    if json_output:
        output_result(result, True)
    else:
        output_result(result)
        if "applied" in result:
            typer.echo(
                f"  applied: {result['applied']}, conflicts: {result['conflicts']}, "
                f"dead-lettered: {result['dead_lettered']}, remaining: {result['remaining']}"
            )
    if "error" in result:
        raise typer.Exit(1)


# =============================================================================
# Queue Commands
# =============================================================================


@queue_app.command("list")
def queue_list(
    dead: Annotated[
        bool, typer.Option("--dead", "-d", help="Show dead-lettered operations")
    ] = False,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 50,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List queued operations in replay order.

    Examples:
        coach-sync queue list
        coach-sync queue list --dead
    """
    status_filter = OperationStatus.DEAD_LETTER if dead else OperationStatus.PENDING

    async def _list() -> list[Any]:
        config = get_config()
        store = await open_store(config)
        return await store.list_operations(status_filter, limit=limit)

    operations = run_async(_list())

    if json_output:
        output_result({"operations": [op.to_dict() for op in operations]}, True)
    else:
        title = "Dead-lettered Operations" if dead else "Pending Operations"
        render_operations(operations, title)


# =============================================================================
# Conflict Commands
# =============================================================================


@conflicts_app.command("list")
def conflicts_list(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 50,
    not_uploaded: Annotated[
        bool, typer.Option("--not-uploaded", help="Only entries not yet uploaded")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List recorded conflict decisions, newest first.

    Examples:
        coach-sync conflicts list
        coach-sync conflicts list --not-uploaded --json
    """

    async def _list() -> list[Any]:
        config = get_config()
        store = await open_store(config)
        return await store.list_conflicts(limit=limit, only_not_uploaded=not_uploaded)

    entries = run_async(_list())

    if json_output:
        rows = [
            {**entry.to_remote_row(), "id": entry.id, "uploaded": entry.uploaded}
            for entry in entries
        ]
        output_result({"conflicts": rows}, True)
    else:
        render_conflicts(entries)


# =============================================================================
# Maintenance
# =============================================================================


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete every cached entity, queued operation and conflict entry.

    Queued operations that were never replayed are lost.

    Examples:
        coach-sync clear
        coach-sync clear --yes
    """
    if not yes and not typer.confirm("Delete all local data, including unsynced changes?"):
        raise typer.Abort()

    async def _clear() -> None:
        config = get_config()
        store = await open_store(config)
        await store.clear()

    run_async(_clear())
    typer.secho("Local data cleared.", fg=typer.colors.GREEN)


@app.command()
def version() -> None:
    """Show version information."""
    from coach_sync import __version__

    typer.echo(f"coach-sync v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
