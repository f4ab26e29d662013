"""
Input resolution policy.

Decides which value each input port of a node sees:

1. Incoming edges are grouped by target port, keeping edge insertion order.
2. For each port, the first non-empty upstream value wins.
3. A port that no edge supplies falls back to the value stored on the node
   itself (e.g. the inline prompt typed into a text-generation node).

Upstream values from nodes that did not succeed arrive as ``None`` and are
therefore treated as absent.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.node import NodeSpec, NodeType
from flowgraph.graph.ports import target_port_id

# Per type: input port -> node data field consulted when no edge supplies the port
INLINE_INPUT_FIELDS: dict[NodeType, dict[str, str]] = {
    NodeType.TEXT_GENERATION: {
        "prompt": "user_prompt",
        "system": "system_prompt",
        "image": "image_input",
    },
    NodeType.IMAGE_GENERATION: {"image": "image_input"},
    NodeType.REACT_COMPONENT: {"prompt": "user_prompt", "system": "system_prompt"},
    NodeType.REALTIME_CONVERSATION: {"instructions": "instructions"},
    NodeType.AUDIO_TRANSCRIPTION: {"language": "language"},
    NodeType.AI_LOGIC: {"transform": "transform"},
    NodeType.THREEJS_SCENE: {"prompt": "user_prompt", "system": "system_prompt"},
    NodeType.THREEJS_OPTIONS: {
        "camera": "camera_text",
        "light": "light_text",
        "mouse": "mouse_text",
    },
}


def is_empty(value: Any) -> bool:
    """None and the empty string count as "no value"."""
    return value is None or (isinstance(value, str) and value == "")


def first_non_empty(values: Iterable[Any]) -> Any | None:
    """Return the first value that is not empty, or None."""
    for value in values:
        if not is_empty(value):
            return value
    return None


def resolve_inputs(
    node: NodeSpec,
    incoming: Sequence[tuple[EdgeSpec, Any]],
) -> dict[str, Any]:
    """
    Resolve the input mapping for ``node``.

    Args:
        node: The node about to execute
        incoming: ``(edge, upstream value)`` pairs for every execution edge
            targeting the node, in edge insertion order. The value is None
            when the upstream node produced nothing usable.

    Returns:
        Mapping of input port id to resolved value. Ports with neither an
        upstream value nor an inline fallback are omitted.
    """
    candidates: dict[str, list[Any]] = {}
    for edge, value in incoming:
        candidates.setdefault(target_port_id(edge, node.type), []).append(value)

    resolved: dict[str, Any] = {}
    for port, values in candidates.items():
        value = first_non_empty(values)
        if value is not None:
            resolved[port] = value

    for port, field_name in INLINE_INPUT_FIELDS.get(node.type, {}).items():
        if port in resolved:
            continue
        inline = getattr(node.data, field_name, None)
        if not is_empty(inline):
            resolved[port] = inline

    return resolved
