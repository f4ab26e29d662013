"""Change validation for agent-proposed graph mutations.

Checks a ``FlowChanges`` batch against a snapshot without applying it:
references, duplicate ids, port data types, dangling edges left by node
removal, duplicate connections and cycles. Validation is programmatic and
deterministic; a failed result carries retry guidance for the proposer and
never raises.
"""

import logging
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, Field

from flowgraph.errors import CycleError
from flowgraph.executors.registry import ExecutorRegistry
from flowgraph.graph.changes import AddEdge, AddNode, FlowChanges, RemoveEdge, RemoveNode
from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.node import NodeSpec, NodeType
from flowgraph.graph.ports import get_port_schema, is_compatible, source_port_id, target_port_id
from flowgraph.graph.scheduler import topological_order
from flowgraph.graph.snapshot import FlowSnapshot

logger = logging.getLogger(__name__)

# Provider → model ids agents may use, by node family
KNOWN_TEXT_MODELS: dict[str, list[str]] = {
    "openai": ["gpt-5.2", "gpt-5-mini", "gpt-5-nano"],
    "google": ["gemini-3-pro-preview", "gemini-3-flash-preview"],
    "anthropic": ["claude-opus-4-5", "claude-sonnet-4-5", "claude-haiku-4-5"],
}
KNOWN_IMAGE_MODELS: dict[str, list[str]] = {
    "openai": ["gpt-image-1", "dall-e-3", "dall-e-2"],
    "google": [
        "gemini-2.5-flash-image",
        "gemini-3-pro-image-preview",
        "imagen-4.0-generate-001",
        "imagen-4.0-ultra-generate-001",
        "imagen-4.0-fast-generate-001",
    ],
}
TEXT_MODEL_TYPES = frozenset(
    {
        NodeType.TEXT_GENERATION,
        NodeType.REACT_COMPONENT,
        NodeType.THREEJS_SCENE,
        NodeType.AI_LOGIC,
    }
)


class DiagnosticKind(StrEnum):
    DANGLING_REFERENCE = "dangling_reference"
    DUPLICATE_NODE_ID = "duplicate_node_id"
    DUPLICATE_EDGE_ID = "duplicate_edge_id"
    TYPE_MISMATCH = "type_mismatch"
    MISSING_NODE = "missing_node"
    MISSING_EDGE = "missing_edge"
    DANGLING_EDGE = "dangling_edge"
    DUPLICATE_EDGE = "duplicate_edge"
    UNKNOWN_PORT = "unknown_port"
    UNREGISTERED_TYPE = "unregistered_type"
    MISSING_FIELD = "missing_field"
    UNKNOWN_MODEL = "unknown_model"
    ORPHAN_NODE = "orphan_node"
    CYCLE = "cycle"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class Verdict(StrEnum):
    PASSED = "passed"
    FAILED = "failed"


class Diagnostic(BaseModel):
    """One structured validation finding."""

    kind: DiagnosticKind
    target_id: str = Field(description="Offending node or edge id")
    message: str
    severity: Severity = Severity.ERROR
    related_ids: list[str] = Field(default_factory=list)
    action_index: int | None = Field(
        default=None, description="Position of the offending action in the batch"
    )


class EvaluationResult(BaseModel):
    """Outcome of validating a change batch."""

    verdict: Verdict
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    retry_context: str | None = None

    @property
    def passed(self) -> bool:
        return self.verdict == Verdict.PASSED

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    def kinds(self) -> set[DiagnosticKind]:
        return {d.kind for d in self.diagnostics}


class ChangeProposal(BaseModel):
    """What a proposing agent submits for evaluation."""

    user_request: str = Field(
        default="", validation_alias=AliasChoices("user_request", "userRequest")
    )
    flow_snapshot: FlowSnapshot = Field(
        validation_alias=AliasChoices("flow_snapshot", "flowSnapshot")
    )
    changes: FlowChanges


class ChangeValidator:
    """
    Validates change batches by simulating them in order.

    Example:
        validator = ChangeValidator(registry=default_registry)
        result = validator.validate(snapshot, changes)
        if not result.passed:
            retry_prompt = result.retry_context
    """

    def __init__(self, registry: ExecutorRegistry | None = None, strict_ports: bool = False):
        """
        Args:
            registry: When given, added nodes must have a registered type
            strict_ports: Report unknown ports as errors instead of warnings
        """
        self.registry = registry
        self.strict_ports = strict_ports

    def evaluate(self, proposal: ChangeProposal) -> EvaluationResult:
        return self.validate(proposal.flow_snapshot, proposal.changes)

    def validate(self, snapshot: FlowSnapshot, changes: FlowChanges) -> EvaluationResult:
        """
        Validate ``changes`` against ``snapshot``.

        Returns:
            EvaluationResult; failed results include ``retry_context``
        """
        check = _BatchCheck(snapshot, self.registry, self.strict_ports)
        for index, action in enumerate(changes.actions):
            if isinstance(action, AddNode):
                check.add_node(index, action.node)
            elif isinstance(action, RemoveNode):
                check.remove_node(index, action.node_id)
            elif isinstance(action, AddEdge):
                check.add_edge(index, action.edge)
            elif isinstance(action, RemoveEdge):
                check.remove_edge(index, action.edge_id)
        check.finish()

        has_errors = any(d.severity == Severity.ERROR for d in check.diagnostics)
        result = EvaluationResult(
            verdict=Verdict.FAILED if has_errors else Verdict.PASSED,
            diagnostics=check.diagnostics,
        )
        if has_errors:
            result.retry_context = build_retry_context(changes, result)
            logger.info(
                f"✗ Change batch rejected: {len(result.errors)} errors, "
                f"{len(result.warnings)} warnings"
            )
        else:
            logger.info(
                f"✓ Change batch of {len(changes.actions)} actions passed"
                f" ({len(result.warnings)} warnings)"
            )
        return result


class _BatchCheck:
    """Working state while a batch is simulated."""

    def __init__(
        self,
        snapshot: FlowSnapshot,
        registry: ExecutorRegistry | None,
        strict_ports: bool,
    ):
        self.base = snapshot
        self.registry = registry
        self.strict_ports = strict_ports
        self.nodes: dict[str, NodeSpec] = {n.id: n for n in snapshot.nodes}
        self.edges: dict[str, EdgeSpec] = {e.id: e for e in snapshot.edges}
        self.added_nodes: dict[str, int] = {}
        self.diagnostics: list[Diagnostic] = []

    def report(
        self,
        kind: DiagnosticKind,
        target_id: str,
        message: str,
        index: int | None = None,
        severity: Severity = Severity.ERROR,
        related_ids: list[str] | None = None,
    ) -> None:
        self.diagnostics.append(
            Diagnostic(
                kind=kind,
                target_id=target_id,
                message=message,
                severity=severity,
                related_ids=related_ids or [],
                action_index=index,
            )
        )

    # === ACTIONS ===

    def add_node(self, index: int, node: NodeSpec) -> None:
        if node.id in self.nodes:
            self.report(
                DiagnosticKind.DUPLICATE_NODE_ID,
                node.id,
                f"Node '{node.id}' already exists; choose a new id",
                index,
            )
            return
        self.nodes[node.id] = node
        self.added_nodes[node.id] = index

        if self.registry is not None and not self.registry.has(node.type):
            self.report(
                DiagnosticKind.UNREGISTERED_TYPE,
                node.id,
                f"Node '{node.id}' has type '{node.type}' which no executor handles",
                index,
            )
        self._check_fields(index, node)
        self._check_model(index, node)

    def remove_node(self, index: int, node_id: str) -> None:
        if node_id not in self.nodes:
            self.report(
                DiagnosticKind.MISSING_NODE,
                node_id,
                f"Cannot remove node '{node_id}': it does not exist",
                index,
            )
            return
        incident = [e.id for e in self.edges.values() if node_id in (e.source, e.target)]
        if incident:
            self.report(
                DiagnosticKind.DANGLING_EDGE,
                node_id,
                f"Removing node '{node_id}' leaves edges {', '.join(incident)} dangling; "
                "remove them with removeEdge actions before the removeNode",
                index,
                related_ids=incident,
            )
        del self.nodes[node_id]
        self.added_nodes.pop(node_id, None)

    def add_edge(self, index: int, edge: EdgeSpec) -> None:
        if edge.id in self.edges:
            self.report(
                DiagnosticKind.DUPLICATE_EDGE_ID,
                edge.id,
                f"Edge '{edge.id}' already exists; choose a new id",
                index,
            )
            return

        missing = [n for n in dict.fromkeys((edge.source, edge.target)) if n not in self.nodes]
        if missing:
            names = ", ".join(f"'{n}'" for n in missing)
            self.report(
                DiagnosticKind.DANGLING_REFERENCE,
                edge.id,
                f"Edge '{edge.id}' references {names} which does not exist; "
                "add the node with an earlier addNode action",
                index,
                related_ids=missing,
            )
            return

        if edge.is_execution_edge:
            self._check_ports(index, edge)
            self._check_duplicate_connection(index, edge)
        self.edges[edge.id] = edge

    def remove_edge(self, index: int, edge_id: str) -> None:
        if edge_id not in self.edges:
            self.report(
                DiagnosticKind.MISSING_EDGE,
                edge_id,
                f"Cannot remove edge '{edge_id}': it does not exist",
                index,
            )
            return
        del self.edges[edge_id]

    def finish(self) -> None:
        self._check_cycles()
        self._check_orphans()

    # === CHECKS ===

    def _check_fields(self, index: int, node: NodeSpec) -> None:
        if not node.data.label:
            self.report(
                DiagnosticKind.MISSING_FIELD,
                node.id,
                f"Node '{node.id}' has no label",
                index,
                severity=Severity.WARNING,
            )
        if node.type == NodeType.COMMENT and not getattr(node.data, "title", ""):
            self.report(
                DiagnosticKind.MISSING_FIELD,
                node.id,
                f"Comment '{node.id}' has no title",
                index,
                severity=Severity.WARNING,
            )

    def _check_model(self, index: int, node: NodeSpec) -> None:
        provider = getattr(node.data, "provider", None)
        model = getattr(node.data, "model", None)
        if not provider or not model:
            return
        if node.type in TEXT_MODEL_TYPES:
            known = KNOWN_TEXT_MODELS
        elif node.type == NodeType.IMAGE_GENERATION:
            known = KNOWN_IMAGE_MODELS
        else:
            return
        if model not in known.get(provider, []):
            self.report(
                DiagnosticKind.UNKNOWN_MODEL,
                node.id,
                f"Model '{model}' is not a known {provider} model for {node.type}",
                index,
                severity=Severity.WARNING,
            )

    def _check_ports(self, index: int, edge: EdgeSpec) -> None:
        source_type = self.nodes[edge.source].type
        target_type = self.nodes[edge.target].type
        source_port_name = source_port_id(edge, source_type)
        target_port_name = target_port_id(edge, target_type)
        source_port = get_port_schema(source_type).get_output(source_port_name)
        target_port = get_port_schema(target_type).get_input(target_port_name)
        port_severity = Severity.ERROR if self.strict_ports else Severity.WARNING

        if source_port is None:
            self.report(
                DiagnosticKind.UNKNOWN_PORT,
                edge.id,
                f"Edge '{edge.id}': {source_type} node '{edge.source}' has no output "
                f"port '{source_port_name}'",
                index,
                severity=port_severity,
            )
        if target_port is None:
            self.report(
                DiagnosticKind.UNKNOWN_PORT,
                edge.id,
                f"Edge '{edge.id}': {target_type} node '{edge.target}' has no input "
                f"port '{target_port_name}'",
                index,
                severity=port_severity,
            )

        declared = edge.data_type
        if source_port is not None and declared is not None:
            if not is_compatible(source_port.data_type, declared):
                self.report(
                    DiagnosticKind.TYPE_MISMATCH,
                    edge.id,
                    f"Edge '{edge.id}' is declared {declared} but "
                    f"'{edge.source}.{source_port_name}' produces {source_port.data_type}",
                    index,
                )
                return

        carried = declared or (source_port.data_type if source_port else None)
        if target_port is not None and carried is not None:
            if not is_compatible(carried, target_port.data_type):
                self.report(
                    DiagnosticKind.TYPE_MISMATCH,
                    edge.id,
                    f"Edge '{edge.id}' carries {carried} into "
                    f"'{edge.target}.{target_port_name}' which expects {target_port.data_type}",
                    index,
                )

    def _check_duplicate_connection(self, index: int, edge: EdgeSpec) -> None:
        key = self._connection_key(edge)
        for existing in self.edges.values():
            if not existing.is_execution_edge:
                continue
            if existing.source not in self.nodes or existing.target not in self.nodes:
                continue
            if self._connection_key(existing) == key:
                self.report(
                    DiagnosticKind.DUPLICATE_EDGE,
                    edge.id,
                    f"Edge '{edge.id}' duplicates edge '{existing.id}' "
                    f"({edge.source}.{key[1]} -> {edge.target}.{key[3]})",
                    index,
                    related_ids=[existing.id],
                )
                return

    def _connection_key(self, edge: EdgeSpec) -> tuple[str, str, str, str]:
        return (
            edge.source,
            source_port_id(edge, self.nodes[edge.source].type),
            edge.target,
            target_port_id(edge, self.nodes[edge.target].type),
        )

    def _check_cycles(self) -> None:
        base_cyclic = set(_cycle_nodes([n.id for n in self.base.nodes], list(self.base.edges)))
        live_edges = [
            e for e in self.edges.values() if e.source in self.nodes and e.target in self.nodes
        ]
        cyclic = [n for n in _cycle_nodes(list(self.nodes), live_edges) if n not in base_cyclic]
        if cyclic:
            self.report(
                DiagnosticKind.CYCLE,
                cyclic[0],
                f"Changes create a cycle among nodes {', '.join(cyclic)}",
                related_ids=cyclic,
            )

    def _check_orphans(self) -> None:
        connected = {
            endpoint
            for e in self.edges.values()
            if e.is_execution_edge
            for endpoint in (e.source, e.target)
        }
        for node_id, index in self.added_nodes.items():
            node = self.nodes[node_id]
            if node.type != NodeType.COMMENT and node_id not in connected:
                self.report(
                    DiagnosticKind.ORPHAN_NODE,
                    node_id,
                    f"Node '{node_id}' is not connected to the flow",
                    index,
                    severity=Severity.WARNING,
                )


def _cycle_nodes(node_ids: list[str], edges: list[EdgeSpec]) -> list[str]:
    """Nodes on a cycle of execution edges (empty if acyclic or ill-formed)."""
    known = set(node_ids)
    incoming: dict[str, list[EdgeSpec]] = {nid: [] for nid in node_ids}
    outgoing: dict[str, list[EdgeSpec]] = {nid: [] for nid in node_ids}
    for edge in edges:
        if edge.is_execution_edge and edge.source in known and edge.target in known:
            incoming[edge.target].append(edge)
            outgoing[edge.source].append(edge)
    try:
        topological_order(list(dict.fromkeys(node_ids)), incoming, outgoing)
    except CycleError as e:
        return e.node_ids
    return []


def build_retry_context(changes: FlowChanges, result: EvaluationResult) -> str:
    """
    Format a failed evaluation as guidance for the proposer's next attempt.

    Lists the issues, echoes the rejected batch and restates the rules it
    broke. Pure formatting; no validation happens here.
    """
    issues = result.errors + result.warnings
    lines = [
        "## IMPORTANT: Fix Previous Validation Errors",
        "",
        "Your previous response failed validation. Here are the issues:",
        "",
    ]
    for i, diagnostic in enumerate(issues, 1):
        where = ""
        if diagnostic.action_index is not None:
            index = diagnostic.action_index
            where = f" (action {index}: {changes.describe(index)})"
        prefix = "warning: " if diagnostic.severity == Severity.WARNING else ""
        lines.append(f"{i}. [{diagnostic.kind}] {prefix}{diagnostic.message}{where}")

    lines += [
        "",
        "Your previous (invalid) response was:",
        "```json",
        changes.model_dump_json(indent=2),
        "```",
        "",
        "Please generate CORRECTED FlowChanges that address these issues.",
        "",
        "Valid model ids (use exactly these):",
    ]
    for provider, models in KNOWN_TEXT_MODELS.items():
        lines.append(f"- text ({provider}): {', '.join(models)}")
    for provider, models in KNOWN_IMAGE_MODELS.items():
        lines.append(f"- image ({provider}): {', '.join(models)}")

    lines += [
        "",
        "Double-check:",
        "- All node ids in edges must exist (in the current flow or added earlier in the batch)",
        "- Node and edge ids must be new",
        "- Data types must match the ports (string/image/audio/response/pulse)",
        "- Remove every edge attached to a node before removing the node",
        "- If inserting between nodes, remove the old edge first",
    ]
    return "\n".join(lines)
