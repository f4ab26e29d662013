"""
Flow graph model: nodes, edges, ports, snapshots and change batches.

The scheduler and the change validator live in ``flowgraph.graph.scheduler``
and ``flowgraph.graph.validator``; they depend on the executor layer and are
not imported here.
"""

from flowgraph.graph.cache import ResultCache, node_fingerprint
from flowgraph.graph.changes import (
    AddEdge,
    AddNode,
    FlowAction,
    FlowChanges,
    RemoveEdge,
    RemoveNode,
)
from flowgraph.graph.edge import EdgeSpec, PortDataType
from flowgraph.graph.inputs import resolve_inputs
from flowgraph.graph.node import NodeData, NodeSpec, NodeType, Position
from flowgraph.graph.ports import PortDefinition, PortSchema, get_port_schema, is_compatible
from flowgraph.graph.safe_eval import SafeEvalError, safe_eval
from flowgraph.graph.snapshot import (
    AppliedChangesInfo,
    FlowSnapshot,
    apply_changes,
    create_snapshot,
    undo,
)

__all__ = [
    # Model
    "NodeType",
    "NodeData",
    "NodeSpec",
    "Position",
    "EdgeSpec",
    "PortDataType",
    "PortDefinition",
    "PortSchema",
    "get_port_schema",
    "is_compatible",
    # Snapshots and changes
    "FlowSnapshot",
    "create_snapshot",
    "FlowAction",
    "AddNode",
    "RemoveNode",
    "AddEdge",
    "RemoveEdge",
    "FlowChanges",
    "AppliedChangesInfo",
    "apply_changes",
    "undo",
    # Execution helpers
    "resolve_inputs",
    "ResultCache",
    "node_fingerprint",
    "safe_eval",
    "SafeEvalError",
]
