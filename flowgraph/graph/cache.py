"""
Result cache for incremental re-runs.

A node's cached result is reused when its fingerprint is unchanged. The
fingerprint covers the node fields that affect its output, the shape of its
incoming edges and the values it received. Nodes whose output depends on
something outside the snapshot (live recordings, conversations, toggles) are
never cached.

The cache is LRU-bounded both by entry count and by an approximate byte size.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.node import NodeSpec, NodeType

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 50 * 1024 * 1024
DEFAULT_MAX_ENTRIES = 500

NEVER_CACHEABLE = frozenset(
    {
        NodeType.AUDIO_INPUT,
        NodeType.REALTIME_CONVERSATION,
        NodeType.COMMENT,
        NodeType.SWITCH,
    }
)

# Node data fields that influence each type's output
CACHE_RELEVANT_FIELDS: dict[NodeType, tuple[str, ...]] = {
    NodeType.TEXT_INPUT: ("input_value",),
    NodeType.IMAGE_INPUT: ("uploaded_image",),
    NodeType.TEXT_GENERATION: ("user_prompt", "system_prompt", "provider", "model", "image_input"),
    NodeType.IMAGE_GENERATION: ("prompt", "provider", "model", "aspect_ratio", "image_input"),
    NodeType.AI_LOGIC: ("transform", "generated_code", "generated_for", "provider", "model"),
    NodeType.REACT_COMPONENT: (
        "user_prompt",
        "system_prompt",
        "provider",
        "model",
        "style_preset",
    ),
    NodeType.AUDIO_TRANSCRIPTION: ("provider", "model", "language"),
    NodeType.STRING_COMBINE: ("separator",),
    NodeType.THREEJS_SCENE: ("user_prompt", "system_prompt", "provider", "model"),
    NodeType.THREEJS_OPTIONS: ("camera_text", "light_text", "mouse_text"),
    NodeType.PREVIEW_OUTPUT: (),
}


def _hash(payload: Any) -> str:
    text = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def node_fingerprint(
    node: NodeSpec,
    incoming: list[EdgeSpec],
    inputs: dict[str, Any],
) -> str:
    """Fingerprint of everything that determines a node's output."""
    fields = CACHE_RELEVANT_FIELDS.get(node.type, ())
    config = {name: getattr(node.data, name, None) for name in fields}
    edges = sorted((e.source, e.source_handle or "", e.target_handle or "") for e in incoming)
    return _hash(
        {
            "type": str(node.type),
            "config": config,
            "edges": edges,
            "inputs": {port: _hash(value) for port, value in inputs.items()},
        }
    )


@dataclass
class CacheEntry:
    fingerprint: str
    output: Any
    port_outputs: dict[str, Any] = field(default_factory=dict)
    side_effects: dict[str, Any] = field(default_factory=dict)
    pulse: bool = False
    size_bytes: int = 0
    created_at: float = field(default_factory=time.time)


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    entries: int = 0
    size_bytes: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


def _estimate_size(entry: CacheEntry) -> int:
    payload = (entry.output, entry.port_outputs, entry.side_effects)
    return len(json.dumps(payload, default=str).encode("utf-8"))


class ResultCache:
    """LRU cache of node results keyed by node id and checked against a fingerprint."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ):
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._size = 0
        self._stats = CacheStats()

    @staticmethod
    def is_cacheable(node_type: str) -> bool:
        return node_type not in NEVER_CACHEABLE

    def get(self, node_id: str, fingerprint: str) -> CacheEntry | None:
        """Return the entry for ``node_id`` if it was stored under ``fingerprint``."""
        entry = self._entries.get(node_id)
        if entry is None or entry.fingerprint != fingerprint:
            self._stats.misses += 1
            return None
        self._entries.move_to_end(node_id)
        self._stats.hits += 1
        return entry

    def put(self, node_id: str, entry: CacheEntry) -> None:
        entry.size_bytes = _estimate_size(entry)
        if entry.size_bytes > self.max_bytes:
            logger.debug(f"Not caching {node_id}: {entry.size_bytes} bytes exceeds cache size")
            return
        self.invalidate(node_id)
        self._entries[node_id] = entry
        self._size += entry.size_bytes
        while len(self._entries) > self.max_entries or self._size > self.max_bytes:
            evicted_id, evicted = self._entries.popitem(last=False)
            self._size -= evicted.size_bytes
            self._stats.evictions += 1
            logger.debug(f"Evicted cached result for {evicted_id}")

    def invalidate(self, node_id: str) -> bool:
        entry = self._entries.pop(node_id, None)
        if entry is None:
            return False
        self._size -= entry.size_bytes
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._size = 0

    @property
    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            evictions=self._stats.evictions,
            entries=len(self._entries),
            size_bytes=self._size,
        )
