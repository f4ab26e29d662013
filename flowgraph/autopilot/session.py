"""
Autopilot - propose, validate and apply agent edits to a flow.

A proposer turns a user request into a ``FlowChanges`` batch (or a plan).
The session validates every batch before it touches the snapshot; a
rejected batch is sent back to the proposer with retry guidance, up to
``max_attempts`` times. Nothing is applied unless validation passes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from flowgraph.autopilot.parser import FlowPlan, ParsedResponse, ParseKind, parse_agent_response
from flowgraph.config import get_default_text_model
from flowgraph.errors import ChangeApplicationError, ProviderCallError
from flowgraph.graph.changes import FlowChanges
from flowgraph.graph.ports import NODE_PORT_SCHEMAS
from flowgraph.graph.snapshot import AppliedChangesInfo, FlowSnapshot, apply_changes
from flowgraph.graph.validator import (
    KNOWN_IMAGE_MODELS,
    KNOWN_TEXT_MODELS,
    ChangeProposal,
    ChangeValidator,
    EvaluationResult,
)
from flowgraph.llm.provider import ProviderClient, ProviderRequest, ProviderTask
from flowgraph.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

_RESPONSE_FORMAT = """\
Respond with a short explanation followed by one ```json block of the form:

{"actions": [
  {"type": "addNode", "node": {"id": "...", "type": "text-generation",
    "position": {"x": 400, "y": 200}, "data": {"label": "..."}}},
  {"type": "addEdge", "edge": {"id": "...", "source": "...", "target": "...",
    "targetHandle": "prompt", "data": {"dataType": "string"}}},
  {"type": "removeEdge", "edgeId": "..."},
  {"type": "removeNode", "nodeId": "..."}
 ],
 "explanation": "..."}

Actions are applied in order, so an edge may reference a node added earlier
in the same list. Before a removeNode, include a removeEdge for every edge
connected to that node; a node removed while edges still touch it is rejected.

For large or ambiguous requests, answer with a plan instead:

{"type": "plan", "plan": {"summary": "...",
  "steps": [{"description": "...", "nodeType": "text-generation"}],
  "estimatedChanges": {"nodesToAdd": 0, "edgesToAdd": 0, "edgesToRemove": 0}}}
"""


def _format_models(models: dict[str, list[str]]) -> str:
    return "\n".join(f"- {provider}: {', '.join(ids)}" for provider, ids in models.items())


def _format_node_types() -> str:
    lines = []
    for node_type, schema in NODE_PORT_SCHEMAS.items():
        inputs = ", ".join(
            f"{p.id}:{p.data_type}{' (required)' if p.required else ''}" for p in schema.inputs
        )
        outputs = ", ".join(f"{p.id}:{p.data_type}" for p in schema.outputs)
        lines.append(f"- {node_type}: inputs [{inputs or '-'}] outputs [{outputs or '-'}]")
    return "\n".join(lines)


def build_system_prompt(snapshot: FlowSnapshot) -> str:
    """System prompt describing node types, handles, valid models and the current flow."""
    flow_json = snapshot.model_dump_json(indent=2, by_alias=True)
    return (
        "You edit node-based AI workflows. Nodes are connected by edges that carry data "
        "from an output handle (sourceHandle) to an input handle (targetHandle). "
        "Edges from a 'done' handle carry a pulse and only trigger the target.\n\n"
        f"## Node types\n{_format_node_types()}\n\n"
        f"## Text models (ONLY use these exact IDs)\n{_format_models(KNOWN_TEXT_MODELS)}\n\n"
        f"## Image models (ONLY use these exact IDs)\n{_format_models(KNOWN_IMAGE_MODELS)}\n\n"
        "Comment nodes are annotations; do not connect them.\n\n"
        f"## Current flow\n```json\n{flow_json}\n```\n\n"
        f"## Response format\n{_RESPONSE_FORMAT}"
    )


class ChangeProposer(ABC):
    """Produces an agent reply for a user request against a snapshot."""

    @abstractmethod
    async def propose(
        self,
        user_request: str,
        snapshot: FlowSnapshot,
        retry_context: str | None = None,
    ) -> ParsedResponse:
        """
        Args:
            user_request: What the user asked for
            snapshot: The flow the changes will apply to
            retry_context: Feedback from a rejected previous attempt

        Returns:
            Parsed reply: changes, a plan, or nothing usable
        """
        pass


class LLMChangeProposer(ChangeProposer):
    """Asks a text-generation provider for changes."""

    def __init__(
        self,
        provider: ProviderClient,
        provider_name: str | None = None,
        model: str | None = None,
    ):
        default_provider, default_model = get_default_text_model()
        self.provider = provider
        self.provider_name = provider_name or default_provider
        self.model = model or default_model

    async def propose(
        self,
        user_request: str,
        snapshot: FlowSnapshot,
        retry_context: str | None = None,
    ) -> ParsedResponse:
        system = build_system_prompt(snapshot)
        if retry_context:
            system = f"{system}\n\n{retry_context}"

        response = await self.provider.call(
            ProviderRequest(
                task=ProviderTask.TEXT_GENERATION,
                provider=self.provider_name,
                model=self.model,
                prompt=user_request,
                system=system,
            )
        )
        if not response.ok:
            raise ProviderCallError(f"Autopilot request failed: {response.error}")
        return parse_agent_response(str(response.value or ""))


@dataclass
class AutopilotOutcome:
    """What an autopilot request produced."""

    applied: bool
    snapshot: FlowSnapshot
    applied_info: AppliedChangesInfo | None = None
    changes: FlowChanges | None = None
    plan: FlowPlan | None = None
    attempts: int = 0
    evaluations: list[EvaluationResult] = field(default_factory=list)
    message: str = ""

    @property
    def last_evaluation(self) -> EvaluationResult | None:
        return self.evaluations[-1] if self.evaluations else None


class AutopilotSession:
    """
    Validation-gated change loop.

    Example:
        session = AutopilotSession(LLMChangeProposer(provider), ChangeValidator())
        outcome = await session.run("Add a summarizer after the input", snapshot)
        if outcome.applied:
            snapshot = outcome.snapshot
    """

    def __init__(
        self,
        proposer: ChangeProposer,
        validator: ChangeValidator | None = None,
        event_bus: EventBus | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.proposer = proposer
        self.validator = validator or ChangeValidator()
        self.event_bus = event_bus
        self.max_attempts = max(1, max_attempts)

    async def run(
        self,
        user_request: str,
        snapshot: FlowSnapshot,
        apply: bool = True,
    ) -> AutopilotOutcome:
        """
        Propose changes until a batch passes validation or attempts run out.

        Args:
            user_request: What the user asked for
            snapshot: Current flow; never modified
            apply: Apply a passing batch (False only validates it)

        Returns:
            AutopilotOutcome; ``snapshot`` is the new flow when ``applied``
        """
        outcome = AutopilotOutcome(applied=False, snapshot=snapshot)
        retry_context: str | None = None

        for attempt in range(1, self.max_attempts + 1):
            outcome.attempts = attempt
            logger.info(f"▶ Autopilot attempt {attempt}/{self.max_attempts}")
            reply = await self.proposer.propose(user_request, snapshot, retry_context)

            if reply.kind == ParseKind.PLAN:
                outcome.plan = reply.plan
                outcome.message = reply.plan.summary
                logger.info(f"✓ Autopilot returned a plan with {len(reply.plan.steps)} steps")
                return outcome
            if reply.kind == ParseKind.NONE:
                outcome.message = reply.text
                logger.info("⊘ Autopilot reply contained no changes")
                return outcome

            changes = reply.changes
            outcome.changes = changes
            result = self.validator.evaluate(
                ChangeProposal(user_request=user_request, flow_snapshot=snapshot, changes=changes)
            )
            outcome.evaluations.append(result)
            if self.event_bus:
                await self.event_bus.emit_changes_validated(
                    verdict=str(result.verdict),
                    diagnostics=[d.model_dump(mode="json") for d in result.diagnostics],
                    attempt=attempt,
                )

            if not result.passed:
                retry_context = result.retry_context
                continue

            outcome.message = changes.explanation
            if not apply:
                return outcome
            return await self._apply(outcome, snapshot, changes)

        outcome.message = (
            f"Changes failed validation after {self.max_attempts} attempts: "
            + "; ".join(d.message for d in outcome.last_evaluation.errors)
        )
        logger.warning(f"✗ {outcome.message}")
        return outcome

    async def _apply(
        self,
        outcome: AutopilotOutcome,
        snapshot: FlowSnapshot,
        changes: FlowChanges,
    ) -> AutopilotOutcome:
        try:
            new_snapshot, info = apply_changes(snapshot, changes)
        except ChangeApplicationError as e:
            # Validation passed, so this points at a validator gap
            logger.error(f"✗ Validated changes failed to apply: {e}")
            outcome.message = str(e)
            return outcome

        outcome.applied = True
        outcome.snapshot = new_snapshot
        outcome.applied_info = info
        if self.event_bus:
            await self.event_bus.emit_changes_applied(
                node_ids=info.node_ids,
                edge_ids=info.edge_ids,
                removed_node_ids=[n.id for n in info.removed_nodes],
                removed_edge_ids=[e.id for e in info.removed_edges],
            )
        logger.info(
            f"✓ Applied {len(changes.actions)} actions "
            f"({len(info.node_ids)} nodes added, {len(info.removed_nodes)} removed)"
        )
        return outcome

