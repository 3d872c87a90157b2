"""coach-sync - offline-capable data sync core for a coaching chat client.

Keeps a local replica of the signed-in user's context profile, conversations
and messages, queues mutations made while offline, and reconciles them with
the remote store when connectivity returns.
"""

from coach_sync.core.entities import CachedEntity, EntityKind, SyncStatus
from coach_sync.errors import CacheError, NotFoundError, SyncError
from coach_sync.factory import SyncStack, create_sync_stack
from coach_sync.sync.repository import SyncRepository, WriteResult

__version__ = "0.1.0"

__all__ = [
    "CacheError",
    "CachedEntity",
    "EntityKind",
    "NotFoundError",
    "SyncError",
    "SyncRepository",
    "SyncStack",
    "SyncStatus",
    "WriteResult",
    "__version__",
    "create_sync_stack",
]
