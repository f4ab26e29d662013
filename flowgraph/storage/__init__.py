"""Flow snapshot persistence."""

from flowgraph.storage.snapshot_store import (
    FileSnapshotStore,
    InMemorySnapshotStore,
    SnapshotStore,
    StoredFlow,
    validate_key,
)

__all__ = [
    "SnapshotStore",
    "FileSnapshotStore",
    "InMemorySnapshotStore",
    "StoredFlow",
    "validate_key",
]
