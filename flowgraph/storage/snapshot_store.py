"""
Snapshot Store - persistence for flow snapshots.

Flows are stored as one JSON document each:
  {base_path}/flows/{flow_id}.json

Only persistable node data is written; runtime-only fields are stripped on
save. Documents carry a schema version so older readers can refuse newer
files instead of misreading them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from flowgraph.errors import StorageError
from flowgraph.graph.snapshot import FlowSnapshot, create_snapshot
from flowgraph.utils.io import atomic_write

logger = logging.getLogger(__name__)

FLOW_SCHEMA_VERSION = 1


def _now() -> datetime:
    return datetime.now(UTC)


class StoredFlow(BaseModel):
    """A persisted flow document."""

    id: str
    name: str = ""
    description: str = ""
    schema_version: int = FLOW_SCHEMA_VERSION
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    snapshot: FlowSnapshot = Field(default_factory=FlowSnapshot)


def validate_key(key: str) -> None:
    """
    Validate a flow id before it becomes part of a path.

    Raises:
        ValueError: If the key is empty or could escape the storage directory
    """
    if not key or key.strip() == "":
        raise ValueError("Key cannot be empty")

    if "/" in key or "\\" in key:
        raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")

    if ".." in key or key.startswith("."):
        raise ValueError(f"Invalid key format: path traversal detected in '{key}'")

    if len(key) > 1 and key[1] == ":":
        raise ValueError(f"Invalid key format: absolute paths not allowed in '{key}'")

    if "\x00" in key:
        raise ValueError("Invalid key format: null bytes not allowed")

    dangerous_chars = {"<", ">", "|", "&", "$", "`", "'", '"'}
    if any(char in key for char in dangerous_chars):
        raise ValueError(f"Invalid key format: contains dangerous characters in '{key}'")


class SnapshotStore(ABC):
    """
    Abstract snapshot persistence.

    ``load`` returns None when a flow does not exist; ``save`` raises
    ``StorageError`` when it cannot persist.
    """

    @abstractmethod
    async def load_flow(self, flow_id: str) -> StoredFlow | None:
        pass

    @abstractmethod
    async def save_flow(self, flow: StoredFlow) -> StoredFlow:
        pass

    @abstractmethod
    async def delete(self, flow_id: str) -> bool:
        pass

    @abstractmethod
    async def list_flows(self) -> list[StoredFlow]:
        pass

    async def load(self, flow_id: str) -> FlowSnapshot | None:
        """Load just the snapshot of a flow."""
        flow = await self.load_flow(flow_id)
        return flow.snapshot if flow else None

    async def save(
        self, flow_id: str, snapshot: FlowSnapshot, name: str | None = None
    ) -> StoredFlow:
        """
        Save a snapshot under ``flow_id``, keeping creation time and name of
        an existing document.
        """
        existing = await self.load_flow(flow_id)
        persistable = create_snapshot(snapshot.nodes, snapshot.edges)
        if existing is None:
            flow = StoredFlow(id=flow_id, name=name or flow_id, snapshot=persistable)
        else:
            flow = existing.model_copy(
                update={
                    "name": name or existing.name,
                    "snapshot": persistable,
                    "updated_at": _now(),
                }
            )
        return await self.save_flow(flow)

    async def exists(self, flow_id: str) -> bool:
        return await self.load_flow(flow_id) is not None


def _check_loaded(flow: StoredFlow) -> StoredFlow:
    if flow.schema_version > FLOW_SCHEMA_VERSION:
        raise StorageError(
            f"Flow '{flow.id}' has schema version {flow.schema_version}; "
            f"this version reads up to {FLOW_SCHEMA_VERSION}"
        )
    for problem in flow.snapshot.structural_errors():
        logger.warning(f"Flow '{flow.id}': {problem}")
    return flow


class FileSnapshotStore(SnapshotStore):
    """
    JSON-file snapshot store.

    Example:
        store = FileSnapshotStore(Path("~/.flowgraph").expanduser())
        await store.save("demo", snapshot, name="Demo flow")
        snapshot = await store.load("demo")
    """

    def __init__(self, base_path: str | Path):
        """
        Args:
            base_path: Directory that will hold the ``flows/`` folder
        """
        self.base_path = Path(base_path)
        self.flows_dir = self.base_path / "flows"

    def get_flow_path(self, flow_id: str) -> Path:
        validate_key(flow_id)
        return self.flows_dir / f"{flow_id}.json"

    async def load_flow(self, flow_id: str) -> StoredFlow | None:
        path = self.get_flow_path(flow_id)

        def _read() -> StoredFlow | None:
            if not path.exists():
                return None
            try:
                return StoredFlow.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                raise StorageError(f"Failed to read flow '{flow_id}': {e}") from e

        flow = await asyncio.to_thread(_read)
        return _check_loaded(flow) if flow else None

    async def save_flow(self, flow: StoredFlow) -> StoredFlow:
        path = self.get_flow_path(flow.id)

        def _write() -> None:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with atomic_write(path) as f:
                    f.write(flow.model_dump_json(indent=2))
            except OSError as e:
                raise StorageError(f"Failed to write flow '{flow.id}': {e}") from e

        await asyncio.to_thread(_write)
        logger.debug(f"Saved flow {flow.id} to {path}")
        return flow

    async def delete(self, flow_id: str) -> bool:
        path = self.get_flow_path(flow_id)

        def _delete() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        deleted = await asyncio.to_thread(_delete)
        if deleted:
            logger.info(f"Deleted flow {flow_id}")
        return deleted

    async def list_flows(self) -> list[StoredFlow]:
        """All readable flows, most recently updated first."""

        def _scan() -> list[StoredFlow]:
            flows = []
            if not self.flows_dir.exists():
                return flows
            for path in self.flows_dir.glob("*.json"):
                try:
                    flows.append(StoredFlow.model_validate_json(path.read_text(encoding="utf-8")))
                except (OSError, ValidationError) as e:
                    logger.warning(f"Failed to load {path}: {e}")
            flows.sort(key=lambda f: f.updated_at, reverse=True)
            return flows

        return await asyncio.to_thread(_scan)


class InMemorySnapshotStore(SnapshotStore):
    """Dict-backed store for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._flows: dict[str, str] = {}

    async def load_flow(self, flow_id: str) -> StoredFlow | None:
        document = self._flows.get(flow_id)
        if document is None:
            return None
        return _check_loaded(StoredFlow.model_validate_json(document))

    async def save_flow(self, flow: StoredFlow) -> StoredFlow:
        validate_key(flow.id)
        # Stored serialized so callers cannot mutate what was saved
        self._flows[flow.id] = flow.model_dump_json()
        return flow

    async def delete(self, flow_id: str) -> bool:
        return self._flows.pop(flow_id, None) is not None

    async def list_flows(self) -> list[StoredFlow]:
        flows = [StoredFlow.model_validate_json(doc) for doc in self._flows.values()]
        flows.sort(key=lambda f: f.updated_at, reverse=True)
        return flows
