"""Hand-off snapshot storage shared with the remote fallback runner."""

from .handoff_bucket import HandoffBucket
from .snapshot_store import SnapshotStore, SyncResult

__all__ = [
    "HandoffBucket",
    "SnapshotStore",
    "SyncResult",
]
