"""
Graph mutations proposed against a snapshot.

A ``FlowChanges`` batch is an ordered list of actions. Order matters: an
``addEdge`` may reference a node introduced by an earlier ``addNode`` in the
same batch. The JSON shape matches what proposing agents emit::

    {"actions": [
        {"type": "addNode", "node": {...}},
        {"type": "addEdge", "edge": {...}},
        {"type": "removeEdge", "edge_id": "e3"},
        {"type": "removeNode", "node_id": "n2"}
     ],
     "explanation": "..."}

The editor spellings (``nodeId``, ``edgeId``, ``sourceHandle``,
``data.dataType``) are accepted as well.
"""

from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, Field

from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.node import NodeSpec


class AddNode(BaseModel):
    type: Literal["addNode"] = "addNode"
    node: NodeSpec


class RemoveNode(BaseModel):
    type: Literal["removeNode"] = "removeNode"
    node_id: str = Field(validation_alias=AliasChoices("node_id", "nodeId"))


class AddEdge(BaseModel):
    type: Literal["addEdge"] = "addEdge"
    edge: EdgeSpec


class RemoveEdge(BaseModel):
    type: Literal["removeEdge"] = "removeEdge"
    edge_id: str = Field(validation_alias=AliasChoices("edge_id", "edgeId"))


FlowAction = Annotated[AddNode | RemoveNode | AddEdge | RemoveEdge, Field(discriminator="type")]


class FlowChanges(BaseModel):
    """An ordered batch of graph mutations."""

    actions: list[FlowAction] = Field(default_factory=list)
    explanation: str = ""

    @classmethod
    def of(cls, *actions: AddNode | RemoveNode | AddEdge | RemoveEdge) -> "FlowChanges":
        return cls(actions=list(actions))

    def describe(self, index: int) -> str:
        """One-line human description of an action, used in diagnostics."""
        action = self.actions[index]
        if isinstance(action, AddNode):
            return f"addNode {action.node.id} ({action.node.type})"
        if isinstance(action, RemoveNode):
            return f"removeNode {action.node_id}"
        if isinstance(action, AddEdge):
            edge = action.edge
            return (
                f"addEdge {edge.id}: {edge.source}.{edge.source_handle or 'default'}"
                f" -> {edge.target}.{edge.target_handle or 'default'}"
            )
        return f"removeEdge {action.edge_id}"
