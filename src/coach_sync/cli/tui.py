"""Rich rendering of replica, queue and conflict state."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from coach_sync.core.conflicts import ConflictLogEntry
from coach_sync.core.operations import PendingOperation
from coach_sync.utils.timeutils import format_timestamp

console = Console()


# =============================================================================
# Color Schemes
# =============================================================================

SYNC_STATUS_COLORS = {
    "synced": "green",
    "pending": "yellow",
    "conflict": "red",
}

RESOLUTION_COLORS = {
    "server_wins": "cyan",
    "local_wins": "magenta",
    "no_conflict": "bright_black",
}


# =============================================================================
# Status
# =============================================================================


def render_status(status: dict[str, Any]) -> None:
    """Replica counts per kind and status, plus queue and conflict totals."""
    entities = Table(title="Replica", title_style="bold cyan", border_style="bright_black")
    entities.add_column("Kind", style="bold")
    for sync_status, color in SYNC_STATUS_COLORS.items():
        entities.add_column(sync_status.capitalize(), style=color, justify="right")

    counts: dict[str, dict[str, int]] = status.get("entities", {})
    if counts:
        for kind in sorted(counts):
            by_status = counts[kind]
            entities.add_row(kind, *(str(by_status.get(s, 0)) for s in SYNC_STATUS_COLORS))
    else:
        entities.add_row("[dim]empty[/dim]", "", "", "")
    console.print(entities)

    queue = status.get("queue", {})
    lines = [
        f"Pending operations: [bold]{queue.get('pending', 0)}[/bold]",
        f"Dead-lettered:      [bold]{queue.get('dead_letter', 0)}[/bold]",
        f"Oldest pending:     {queue.get('oldest_pending') or '-'}",
        f"Conflicts to upload: [bold]{status.get('conflicts_not_uploaded', 0)}[/bold]",
        f"Remote:             {status.get('remote') or '[yellow]not configured[/yellow]'}",
    ]
    console.print(Panel("\n".join(lines), title="Sync", border_style="bright_black"))


# =============================================================================
# Queue
# =============================================================================


def render_operations(operations: list[PendingOperation], title: str) -> None:
    if not operations:
        console.print("[green]Queue is empty.[/green]")
        return

    table = Table(title=title, title_style="bold cyan", border_style="bright_black")
    table.add_column("#", style="bright_black", justify="right")
    table.add_column("Kind", style="bold")
    table.add_column("Entity", overflow="fold")
    table.add_column("Enqueued")
    table.add_column("Retries", justify="right")
    table.add_column("Last error", style="red", overflow="fold")

    for op in operations:
        table.add_row(
            str(op.sequence),
            op.kind.value,
            f"{op.entity_kind.value}:{op.entity_id}",
            format_timestamp(op.enqueued_at) or "-",
            str(op.retry_count),
            op.last_error or "",
        )
    console.print(table)


# =============================================================================
# Conflicts
# =============================================================================


def render_conflicts(entries: list[ConflictLogEntry]) -> None:
    if not entries:
        console.print("[green]No conflicts recorded.[/green]")
        return

    table = Table(title="Conflict Log", title_style="bold cyan", border_style="bright_black")
    table.add_column("Resolved", width=20)
    table.add_column("Entity", overflow="fold")
    table.add_column("Type")
    table.add_column("Resolution")
    table.add_column("Uploaded", justify="center")

    for entry in entries:
        color = RESOLUTION_COLORS.get(entry.resolution.value, "white")
        table.add_row(
            format_timestamp(entry.resolved_at) or "-",
            f"{entry.entity_type}:{entry.entity_id}",
            entry.conflict_type.value,
            f"[{color}]{entry.resolution.value}[/{color}]",
            "yes" if entry.uploaded else "no",
        )
    console.print(table)
