"""
Flow snapshots and change application.

A ``FlowSnapshot`` is the durable, serializable state of a flow: nodes and
edges only, no execution state. Snapshots are treated as immutable values;
``apply_changes`` and ``undo`` always build new ones.

``apply_changes`` records every step it performs in an
``AppliedChangesInfo`` journal (including edges implicitly removed along
with a node, and the list positions items occupied), so ``undo`` can replay
the journal backwards and reproduce the previous snapshot exactly.
"""

import hashlib
import logging
from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from flowgraph.errors import ChangeApplicationError, UndoError
from flowgraph.graph.changes import AddEdge, AddNode, FlowChanges, RemoveEdge, RemoveNode
from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.node import NodeSpec

logger = logging.getLogger(__name__)


class FlowSnapshot(BaseModel):
    """
    Complete serializable state of a flow.

    List order is display order only; ``canonical()`` and ``fingerprint()``
    ignore it.
    """

    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    def get_node(self, node_id: str) -> NodeSpec | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> EdgeSpec | None:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        return [e for e in self.edges if e.target == node_id]

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        return [e for e in self.edges if e.source == node_id]

    def canonical(self) -> "FlowSnapshot":
        """Same content with nodes and edges sorted by id."""
        return FlowSnapshot(
            nodes=sorted(self.nodes, key=lambda n: n.id),
            edges=sorted(self.edges, key=lambda e: e.id),
        )

    def fingerprint(self) -> str:
        """Order-independent content hash."""
        payload = self.canonical().model_dump_json()
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def is_equivalent(self, other: "FlowSnapshot") -> bool:
        """Equal content, ignoring node/edge order."""
        return self.canonical() == other.canonical()

    def with_data_updates(self, updates: dict[str, dict[str, Any]]) -> "FlowSnapshot":
        """Return a snapshot with per-node data fields replaced (e.g. run side effects)."""
        nodes = [
            node.with_data(**updates[node.id]) if updates.get(node.id) else node
            for node in self.nodes
        ]
        return FlowSnapshot(nodes=nodes, edges=list(self.edges))

    def structural_errors(self) -> list[str]:
        """
        Check structural consistency.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []
        seen_nodes: set[str] = set()
        for node in self.nodes:
            if node.id in seen_nodes:
                errors.append(f"Duplicate node id '{node.id}'")
            seen_nodes.add(node.id)

        seen_edges: set[str] = set()
        for edge in self.edges:
            if edge.id in seen_edges:
                errors.append(f"Duplicate edge id '{edge.id}'")
            seen_edges.add(edge.id)
            if edge.source not in seen_nodes:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in seen_nodes:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")

        return errors


def create_snapshot(
    nodes: Iterable[NodeSpec],
    edges: Iterable[EdgeSpec],
    include_runtime: bool = False,
) -> FlowSnapshot:
    """
    Project editor nodes/edges into a snapshot.

    Runtime-only data (uploaded blobs, recordings, execution status) is
    stripped unless ``include_runtime`` is set, which is what the scheduler
    wants when running straight from editor state.
    """
    node_list = [node if include_runtime else node.persistable() for node in nodes]
    return FlowSnapshot(nodes=node_list, edges=list(edges))


class StepOp(StrEnum):
    ADD = "add"
    REMOVE = "remove"


class AppliedStep(BaseModel):
    """One primitive list operation performed while applying a batch."""

    op: StepOp
    node: NodeSpec | None = None
    edge: EdgeSpec | None = None
    index: int = Field(description="List position the item was added at or removed from")


class AppliedChangesInfo(BaseModel):
    """Journal of an applied batch, sufficient to undo it exactly."""

    steps: list[AppliedStep] = Field(default_factory=list)

    @property
    def node_ids(self) -> list[str]:
        return [s.node.id for s in self.steps if s.op == StepOp.ADD and s.node is not None]

    @property
    def edge_ids(self) -> list[str]:
        return [s.edge.id for s in self.steps if s.op == StepOp.ADD and s.edge is not None]

    @property
    def removed_nodes(self) -> list[NodeSpec]:
        return [s.node for s in self.steps if s.op == StepOp.REMOVE and s.node is not None]

    @property
    def removed_edges(self) -> list[EdgeSpec]:
        return [s.edge for s in self.steps if s.op == StepOp.REMOVE and s.edge is not None]


def _index_of(items: list, item_id: str) -> int:
    for i, item in enumerate(items):
        if item.id == item_id:
            return i
    return -1


def apply_changes(
    snapshot: FlowSnapshot,
    changes: FlowChanges,
) -> tuple[FlowSnapshot, AppliedChangesInfo]:
    """
    Apply a change batch, strictly in list order.

    Removing a node also removes its incident edges; those removals are
    journaled so undo restores them.

    Returns:
        (new snapshot, journal of the applied steps)

    Raises:
        ChangeApplicationError: If an action references a missing node/edge or
            introduces a duplicate id. ``snapshot`` is never modified.
    """
    nodes = list(snapshot.nodes)
    edges = list(snapshot.edges)
    steps: list[AppliedStep] = []

    for i, action in enumerate(changes.actions):
        if isinstance(action, AddNode):
            if _index_of(nodes, action.node.id) >= 0:
                raise ChangeApplicationError(i, f"node '{action.node.id}' already exists")
            steps.append(AppliedStep(op=StepOp.ADD, node=action.node, index=len(nodes)))
            nodes.append(action.node)

        elif isinstance(action, AddEdge):
            edge = action.edge
            if _index_of(edges, edge.id) >= 0:
                raise ChangeApplicationError(i, f"edge '{edge.id}' already exists")
            for endpoint in (edge.source, edge.target):
                if _index_of(nodes, endpoint) < 0:
                    raise ChangeApplicationError(
                        i, f"edge '{edge.id}' references missing node '{endpoint}'"
                    )
            steps.append(AppliedStep(op=StepOp.ADD, edge=edge, index=len(edges)))
            edges.append(edge)

        elif isinstance(action, RemoveEdge):
            index = _index_of(edges, action.edge_id)
            if index < 0:
                raise ChangeApplicationError(i, f"edge '{action.edge_id}' does not exist")
            steps.append(AppliedStep(op=StepOp.REMOVE, edge=edges.pop(index), index=index))

        elif isinstance(action, RemoveNode):
            index = _index_of(nodes, action.node_id)
            if index < 0:
                raise ChangeApplicationError(i, f"node '{action.node_id}' does not exist")
            j = 0
            while j < len(edges):
                edge = edges[j]
                if edge.source == action.node_id or edge.target == action.node_id:
                    steps.append(AppliedStep(op=StepOp.REMOVE, edge=edges.pop(j), index=j))
                else:
                    j += 1
            steps.append(AppliedStep(op=StepOp.REMOVE, node=nodes.pop(index), index=index))

    info = AppliedChangesInfo(steps=steps)
    logger.info(
        f"Applied {len(changes.actions)} actions: +{len(info.node_ids)} nodes, "
        f"+{len(info.edge_ids)} edges, -{len(info.removed_nodes)} nodes, "
        f"-{len(info.removed_edges)} edges"
    )
    return FlowSnapshot(nodes=nodes, edges=edges), info


def undo(snapshot: FlowSnapshot, applied: AppliedChangesInfo) -> FlowSnapshot:
    """
    Reverse a previously applied batch.

    Replays the journal backwards: added items are removed, removed items are
    re-inserted verbatim at their original positions.

    Raises:
        UndoError: If ``snapshot`` no longer matches the state the batch produced
    """
    nodes = list(snapshot.nodes)
    edges = list(snapshot.edges)

    for step in reversed(applied.steps):
        items: list = nodes if step.node is not None else edges
        item = step.node if step.node is not None else step.edge
        if item is None:
            raise UndoError("Applied step carries neither a node nor an edge")
        kind = "node" if step.node is not None else "edge"

        if step.op == StepOp.ADD:
            index = _index_of(items, item.id)
            if index < 0:
                raise UndoError(f"Added {kind} '{item.id}' is no longer present")
            items.pop(index)
        else:
            if _index_of(items, item.id) >= 0:
                raise UndoError(f"Removed {kind} '{item.id}' already exists again")
            if step.index > len(items):
                raise UndoError(f"Cannot restore {kind} '{item.id}' at position {step.index}")
            items.insert(step.index, item)

    return FlowSnapshot(nodes=nodes, edges=edges)
