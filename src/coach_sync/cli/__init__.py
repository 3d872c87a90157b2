"""coach-sync CLI.

Inspect and maintain the on-device replica.

Usage:
    coach-sync status               Replica, queue and conflict summary
    coach-sync sync --owner <id>    Replay the queue and refresh from the remote
    coach-sync queue list           Show queued operations
    coach-sync conflicts list       Show recorded conflict decisions
    coach-sync clear                Wipe all local data
"""

from coach_sync.cli.main import app, main

__all__ = ["app", "main"]
