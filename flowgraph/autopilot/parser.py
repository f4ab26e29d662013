"""
Extract change batches and plans from agent text.

Agents answer in prose with a fenced JSON block. The block is either a
``FlowChanges`` document (``{"actions": [...], "explanation": ...}``) or a
plan wrapped as ``{"type": "plan", "plan": {...}}``. The first block that
parses as either wins; if there is no usable block the whole text is tried
as JSON.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from flowgraph.graph.changes import AddEdge, AddNode, FlowChanges, RemoveEdge, RemoveNode
from flowgraph.graph.node import NodeType
from flowgraph.graph.snapshot import FlowSnapshot

logger = logging.getLogger(__name__)

JSON_BLOCK = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")


class PlanStep(BaseModel):
    description: str
    node_type: NodeType | None = Field(
        default=None, validation_alias=AliasChoices("node_type", "nodeType")
    )


class EstimatedChanges(BaseModel):
    nodes_to_add: int = Field(validation_alias=AliasChoices("nodes_to_add", "nodesToAdd"))
    edges_to_add: int = Field(validation_alias=AliasChoices("edges_to_add", "edgesToAdd"))
    edges_to_remove: int = Field(
        validation_alias=AliasChoices("edges_to_remove", "edgesToRemove")
    )


class FlowPlan(BaseModel):
    """What an agent intends to do, for approval before it emits changes."""

    summary: str
    steps: list[PlanStep]
    estimated_changes: EstimatedChanges = Field(
        validation_alias=AliasChoices("estimated_changes", "estimatedChanges")
    )


class ParseKind(StrEnum):
    CHANGES = "changes"
    PLAN = "plan"
    NONE = "none"


@dataclass
class ParsedResponse:
    kind: ParseKind
    changes: FlowChanges | None = None
    plan: FlowPlan | None = None
    text: str = ""


def _interpret(payload: Any) -> tuple[ParseKind, FlowChanges | FlowPlan] | None:
    if not isinstance(payload, dict):
        return None
    try:
        if payload.get("type") == "plan":
            return ParseKind.PLAN, FlowPlan.model_validate(payload.get("plan"))
        if isinstance(payload.get("actions"), list):
            return ParseKind.CHANGES, FlowChanges.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"Ignoring malformed JSON block: {e.error_count()} errors")
    return None


def parse_agent_response(text: str) -> ParsedResponse:
    """
    Parse an agent reply.

    Returns:
        ParsedResponse with kind ``changes``, ``plan`` or ``none``
    """
    candidates = [m.group(1).strip() for m in JSON_BLOCK.finditer(text)]
    candidates.append(text.strip())

    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        interpreted = _interpret(payload)
        if interpreted is None:
            continue
        kind, value = interpreted
        if kind == ParseKind.PLAN:
            return ParsedResponse(kind=kind, plan=value, text=text)
        return ParsedResponse(kind=kind, changes=value, text=text)

    return ParsedResponse(kind=ParseKind.NONE, text=text)


def describe_actions(changes: FlowChanges, snapshot: FlowSnapshot) -> list[str]:
    """
    Human-readable lines for a change preview, using node labels where known.
    """
    labels = {n.id: n.data.label or n.id for n in snapshot.nodes}
    for action in changes.actions:
        if isinstance(action, AddNode):
            labels.setdefault(action.node.id, action.node.data.label or action.node.id)

    lines = []
    for action in changes.actions:
        if isinstance(action, AddNode):
            lines.append(f"Add {action.node.type} node \"{labels[action.node.id]}\"")
        elif isinstance(action, RemoveNode):
            lines.append(f"Remove node \"{labels.get(action.node_id, action.node_id)}\"")
        elif isinstance(action, AddEdge):
            edge = action.edge
            lines.append(
                f"Connect \"{labels.get(edge.source, edge.source)}\" → "
                f"\"{labels.get(edge.target, edge.target)}\""
            )
        elif isinstance(action, RemoveEdge):
            edge = snapshot.get_edge(action.edge_id)
            if edge is None:
                lines.append(f"Remove edge {action.edge_id}")
            else:
                lines.append(
                    f"Disconnect \"{labels.get(edge.source, edge.source)}\" → "
                    f"\"{labels.get(edge.target, edge.target)}\""
                )
    return lines
