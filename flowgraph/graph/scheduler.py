"""
Graph Scheduler - runs flow snapshots.

The scheduler:
1. Plans the run from execution edges, rejecting dangling edges,
   unregistered node types and cycles before anything executes
2. Launches every node whose upstream nodes have settled, concurrently
3. Resolves each node's inputs and invokes its executor
4. Skips nodes whose required inputs cannot be satisfied
5. Publishes queued → running → terminal status for every node
6. Honours a run-scoped cancellation token

Execution state lives in a per-run map of ``NodeRunState``; the snapshot
passed in is never mutated.
"""

import asyncio
import contextlib
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from flowgraph.config import SchedulerConfig
from flowgraph.errors import (
    CycleError,
    DanglingEdgeError,
    SchedulingError,
    UnregisteredNodeTypeError,
)
from flowgraph.executors.base import ExecuteResult, ExecutionContext, PartialEmitter, as_text
from flowgraph.executors.registry import ExecutorRegistry, default_registry
from flowgraph.graph.cache import CacheEntry, ResultCache, node_fingerprint
from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.inputs import resolve_inputs
from flowgraph.graph.node import NodeSpec, NodeType
from flowgraph.graph.ports import (
    get_port_schema,
    is_pulse_edge,
    is_required_input,
    source_port_id,
    target_port_id,
)
from flowgraph.graph.snapshot import FlowSnapshot
from flowgraph.llm.provider import ProviderClient
from flowgraph.observability import reset_trace_context, set_trace_context
from flowgraph.runtime.cancellation import CancellationToken
from flowgraph.runtime.event_bus import EventBus


class NodeStatus(StrEnum):
    """Per-node state within a run."""

    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED, NodeStatus.CANCELLED}
)


class RunOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass
class NodeRunState:
    """Transient execution state of one node."""

    status: NodeStatus = NodeStatus.IDLE
    output: Any = None
    error: str | None = None  # failure message, or why the node was skipped/cancelled
    side_effects: dict[str, Any] = field(default_factory=dict)
    port_outputs: dict[str, Any] = field(default_factory=dict)
    pulse_fired: bool = False
    pulse_at: datetime | None = None
    cached: bool = False
    latency_ms: int = 0
    settled_after_cancel: bool = False


@dataclass
class RunResult:
    """Result of one scheduler run."""

    run_id: str
    outcome: RunOutcome
    nodes: dict[str, NodeRunState] = field(default_factory=dict)
    error: str | None = None  # set for aborted runs
    diagnostics: list[str] = field(default_factory=list)
    total_latency_ms: int = 0

    @property
    def success(self) -> bool:
        return self.outcome == RunOutcome.SUCCEEDED

    @property
    def statuses(self) -> dict[str, NodeStatus]:
        return {node_id: state.status for node_id, state in self.nodes.items()}

    @property
    def outputs(self) -> dict[str, Any]:
        """Outputs of nodes that succeeded."""
        return {
            node_id: state.output
            for node_id, state in self.nodes.items()
            if state.status == NodeStatus.SUCCEEDED
        }

    @property
    def errors(self) -> dict[str, str]:
        """Error messages of nodes that failed."""
        return {
            node_id: state.error or ""
            for node_id, state in self.nodes.items()
            if state.status == NodeStatus.FAILED
        }

    def status_of(self, node_id: str) -> NodeStatus:
        state = self.nodes.get(node_id)
        return state.status if state else NodeStatus.IDLE

    def output_of(self, node_id: str) -> Any:
        state = self.nodes.get(node_id)
        return state.output if state else None

    def data_updates(self) -> dict[str, dict[str, Any]]:
        """Side effects to persist on nodes, e.g. switch state or generated code."""
        return {
            node_id: dict(state.side_effects)
            for node_id, state in self.nodes.items()
            if state.side_effects and state.status == NodeStatus.SUCCEEDED
        }

    def summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for state in self.nodes.values():
            counts[state.status.value] = counts.get(state.status.value, 0) + 1
        return counts


# === PLANNING ===


@dataclass
class ExecutionPlan:
    """Dependency structure of the execution-relevant subgraph."""

    nodes: dict[str, NodeSpec]
    order: list[str]  # topological, stable with respect to snapshot order
    incoming: dict[str, list[EdgeSpec]]
    outgoing: dict[str, list[EdgeSpec]]
    pulse_edge_ids: set[str] = field(default_factory=set)

    def dependencies(self, node_id: str) -> list[str]:
        return list(dict.fromkeys(e.source for e in self.incoming[node_id]))

    def dependents(self, node_id: str) -> list[str]:
        return list(dict.fromkeys(e.target for e in self.outgoing[node_id]))

    def downstream_of(self, node_id: str) -> list[str]:
        """Every node reachable from ``node_id``, in topological order."""
        seen: set[str] = set()
        stack = [node_id]
        while stack:
            for dependent in self.dependents(stack.pop()):
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        return [nid for nid in self.order if nid in seen]

    def preview_targets(self, node_id: str) -> list[str]:
        """
        Preview-output nodes that should mirror ``node_id``'s partial output.

        The search does not continue past image-generation nodes, which
        replace rather than pass on what they receive.
        """
        targets: list[str] = []
        seen = {node_id}
        queue = deque([node_id])
        while queue:
            for dependent in self.dependents(queue.popleft()):
                if dependent in seen:
                    continue
                seen.add(dependent)
                node_type = self.nodes[dependent].type
                if node_type == NodeType.PREVIEW_OUTPUT:
                    targets.append(dependent)
                elif node_type != NodeType.IMAGE_GENERATION:
                    queue.append(dependent)
        return targets


def plan_execution(snapshot: FlowSnapshot, registry: ExecutorRegistry) -> ExecutionPlan:
    """
    Build the execution plan for a snapshot.

    Annotation edges are ignored. Pulse edges are dependencies like data
    edges, but are tracked separately so pulse-only targets can be decided
    on whether a pulse fired.

    Raises:
        SchedulingError: Duplicate node ids
        DanglingEdgeError: An edge references a node not in the snapshot
        UnregisteredNodeTypeError: A node's type has no executor
        CycleError: The data/pulse subgraph has a cycle
    """
    nodes: dict[str, NodeSpec] = {}
    for node in snapshot.nodes:
        if node.id in nodes:
            raise SchedulingError(f"Duplicate node id '{node.id}'")
        nodes[node.id] = node

    for edge in snapshot.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in nodes:
                raise DanglingEdgeError(edge.id, endpoint)

    for node in snapshot.nodes:
        if not registry.has(node.type):
            raise UnregisteredNodeTypeError(node.id, node.type)

    incoming: dict[str, list[EdgeSpec]] = {nid: [] for nid in nodes}
    outgoing: dict[str, list[EdgeSpec]] = {nid: [] for nid in nodes}
    pulse_edge_ids: set[str] = set()
    for edge in snapshot.edges:
        if not edge.is_execution_edge:
            continue
        incoming[edge.target].append(edge)
        outgoing[edge.source].append(edge)
        if is_pulse_edge(edge, nodes[edge.source].type):
            pulse_edge_ids.add(edge.id)

    order = topological_order(list(nodes), incoming, outgoing)
    return ExecutionPlan(
        nodes=nodes,
        order=order,
        incoming=incoming,
        outgoing=outgoing,
        pulse_edge_ids=pulse_edge_ids,
    )


def topological_order(
    node_ids: list[str],
    incoming: dict[str, list[EdgeSpec]],
    outgoing: dict[str, list[EdgeSpec]],
) -> list[str]:
    """Kahn's algorithm; ties are broken by snapshot order."""
    in_degree = {nid: len({e.source for e in incoming[nid]}) for nid in node_ids}
    ready = deque(nid for nid in node_ids if in_degree[nid] == 0)
    order: list[str] = []

    while ready:
        node_id = ready.popleft()
        order.append(node_id)
        for target in dict.fromkeys(e.target for e in outgoing[node_id]):
            in_degree[target] -= 1
            if in_degree[target] == 0:
                ready.append(target)

    if len(order) < len(node_ids):
        remaining = {nid for nid in node_ids if in_degree[nid] > 0}
        # Peel off nodes that only sit downstream of a cycle
        changed = True
        while changed:
            changed = False
            for nid in list(remaining):
                if not any(e.target in remaining for e in outgoing[nid]):
                    remaining.discard(nid)
                    changed = True
        raise CycleError([nid for nid in node_ids if nid in remaining])

    return order


def _coerce_result(raw: Any) -> ExecuteResult:
    """Accept duck-typed executor results: ``{"output", "error"}`` dicts or bare values."""
    if isinstance(raw, ExecuteResult):
        return raw
    result_keys = {"output", "error", "side_effects", "port_outputs", "pulse"}
    if isinstance(raw, dict) and raw and set(raw) <= result_keys:
        return ExecuteResult(
            output=raw.get("output"),
            error=raw.get("error"),
            side_effects=raw.get("side_effects") or {},
            port_outputs=raw.get("port_outputs") or {},
            pulse=bool(raw.get("pulse", False)),
        )
    return ExecuteResult(output=raw)


# === SCHEDULER ===


@dataclass
class _Run:
    """Mutable bookkeeping for one run."""

    run_id: str
    flow_id: str | None
    plan: ExecutionPlan
    states: dict[str, NodeRunState]
    token: CancellationToken
    start_from: str | None = None
    semaphore: asyncio.Semaphore | None = None


class GraphScheduler:
    """
    Executes flow snapshots.

    Example:
        registry = register_builtin_executors(ExecutorRegistry())
        scheduler = GraphScheduler(registry=registry, provider=client, event_bus=bus)

        result = await scheduler.run(snapshot)
        if result.outcome == RunOutcome.COMPLETED_WITH_FAILURES:
            for node_id, error in result.errors.items():
                print(node_id, error)

        # Re-run one node and everything downstream of it
        result = await scheduler.run(snapshot, start_from="gen1")
    """

    def __init__(
        self,
        registry: ExecutorRegistry | None = None,
        provider: ProviderClient | None = None,
        event_bus: EventBus | None = None,
        config: SchedulerConfig | None = None,
        cache: ResultCache | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            registry: Executors by node type (defaults to the process-wide registry)
            provider: Provider client injected into executor contexts
            event_bus: Where status events are published
            config: Scheduler settings (defaults come from configuration)
            cache: Result cache; one is created when ``config.use_cache`` is set
        """
        self.registry = registry if registry is not None else default_registry
        self.provider = provider
        self.event_bus = event_bus
        self.config = config or SchedulerConfig()
        if cache is None and self.config.use_cache:
            cache = ResultCache()
        self.cache = cache
        self.logger = logging.getLogger(__name__)

        # States of the most recent run; upstream values for start_from runs
        self._last_states: dict[str, NodeRunState] = {}
        self._active_token: CancellationToken | None = None

    @property
    def node_states(self) -> dict[str, NodeRunState]:
        return dict(self._last_states)

    def status_of(self, node_id: str) -> NodeStatus:
        state = self._last_states.get(node_id)
        return state.status if state else NodeStatus.IDLE

    def cancel(self, reason: str = "Cancelled by user") -> bool:
        """Cancel the run in progress. Returns False if nothing is running."""
        if self._active_token is None:
            return False
        self._active_token.cancel(reason)
        return True

    async def reset(self, snapshot: FlowSnapshot | None = None) -> None:
        """
        Forget retained outputs and cached results.

        With a snapshot and an event bus, every node is published as idle so a
        UI can clear its badges. Node configuration is left untouched.
        """
        self._last_states = {}
        if self.cache is not None:
            self.cache.clear()
        if snapshot is not None and self.event_bus is not None:
            for node in snapshot.nodes:
                await self.event_bus.emit_node_status("reset", node.id, NodeStatus.IDLE.value)
        self.logger.info("Scheduler state reset")

    async def run(
        self,
        snapshot: FlowSnapshot,
        *,
        cancel_token: CancellationToken | None = None,
        start_from: str | None = None,
        input_overrides: dict[str, Any] | None = None,
        run_id: str | None = None,
        flow_id: str | None = None,
        raise_on_fatal: bool = False,
    ) -> RunResult:
        """
        Execute a snapshot.

        Args:
            snapshot: Nodes and edges to run
            cancel_token: Shared cancellation signal
            start_from: Run only this node and everything downstream of it,
                reading other upstream values from the previous run
            input_overrides: Values for text-input nodes, by node id
            run_id: Id used in events and logs (generated when omitted)
            flow_id: Flow id for trace context
            raise_on_fatal: Raise structural errors instead of returning an
                aborted result

        Returns:
            RunResult with the terminal state of every node
        """
        run_id = run_id or f"run_{uuid.uuid4().hex[:12]}"
        token = cancel_token or CancellationToken()
        context_token = set_trace_context(run_id=run_id, flow_id=flow_id)
        try:
            return await self._run(
                snapshot, token, start_from, input_overrides, run_id, flow_id, raise_on_fatal
            )
        finally:
            reset_trace_context(context_token)

    async def _run(
        self,
        snapshot: FlowSnapshot,
        token: CancellationToken,
        start_from: str | None,
        input_overrides: dict[str, Any] | None,
        run_id: str,
        flow_id: str | None,
        raise_on_fatal: bool,
    ) -> RunResult:
        started = time.monotonic()

        try:
            plan = plan_execution(self._apply_overrides(snapshot, input_overrides), self.registry)
            if start_from is not None and start_from not in plan.nodes:
                raise SchedulingError(f"Start node '{start_from}' is not in the snapshot")
        except SchedulingError as e:
            self.logger.error(f"✗ Run {run_id} aborted: {e}")
            if raise_on_fatal:
                raise
            return await self._abort(run_id, flow_id, snapshot, e)

        if start_from is None:
            run_ids = list(plan.order)
            states = {nid: NodeRunState() for nid in plan.nodes}
        else:
            reachable = set(plan.downstream_of(start_from)) | {start_from}
            run_ids = [nid for nid in plan.order if nid in reachable]
            previous = self._last_states
            states = {
                nid: NodeRunState() if nid in reachable else previous.get(nid, NodeRunState())
                for nid in plan.nodes
            }

        semaphore = None
        if self.config.max_concurrency:
            semaphore = asyncio.Semaphore(self.config.max_concurrency)
        run = _Run(
            run_id=run_id,
            flow_id=flow_id,
            plan=plan,
            states=states,
            token=token,
            start_from=start_from,
            semaphore=semaphore,
        )

        self.logger.info(f"▶ Run {run_id}: {len(run_ids)} of {len(plan.nodes)} nodes")
        if self.event_bus is not None:
            await self.event_bus.emit_run_started(run_id, run_ids, flow_id=flow_id)

        self._active_token = token
        try:
            cancelled = await self._execute(run, run_ids)
        finally:
            self._active_token = None
        self._last_states = states

        if cancelled:
            outcome = RunOutcome.CANCELLED
        elif any(states[nid].status == NodeStatus.FAILED for nid in run_ids):
            outcome = RunOutcome.COMPLETED_WITH_FAILURES
        else:
            outcome = RunOutcome.SUCCEEDED

        result = RunResult(
            run_id=run_id,
            outcome=outcome,
            nodes=states,
            total_latency_ms=int((time.monotonic() - started) * 1000),
        )
        marker = "✓" if outcome == RunOutcome.SUCCEEDED else "⊘" if cancelled else "✗"
        self.logger.info(f"{marker} Run {run_id} {outcome.value}: {result.summary()}")
        if self.event_bus is not None:
            await self.event_bus.emit_run_finished(
                run_id, outcome.value, error=token.reason if cancelled else None, flow_id=flow_id
            )
        return result

    async def _abort(
        self,
        run_id: str,
        flow_id: str | None,
        snapshot: FlowSnapshot,
        error: SchedulingError,
    ) -> RunResult:
        """Report every node failed with the structural error."""
        message = str(error)
        states = {
            node.id: NodeRunState(status=NodeStatus.FAILED, error=message)
            for node in snapshot.nodes
        }
        self._last_states = states
        if self.event_bus is not None:
            for node_id in states:
                await self.event_bus.emit_node_status(
                    run_id, node_id, NodeStatus.FAILED.value, error=message
                )
            await self.event_bus.emit_run_finished(
                run_id, RunOutcome.ABORTED.value, error=message, flow_id=flow_id
            )
        return RunResult(
            run_id=run_id,
            outcome=RunOutcome.ABORTED,
            nodes=states,
            error=message,
            diagnostics=[message],
        )

    def _apply_overrides(
        self,
        snapshot: FlowSnapshot,
        overrides: dict[str, Any] | None,
    ) -> FlowSnapshot:
        if not overrides:
            return snapshot
        nodes = []
        for node in snapshot.nodes:
            if node.id in overrides:
                if node.type == NodeType.TEXT_INPUT:
                    node = node.with_data(input_value=as_text(overrides[node.id]))
                else:
                    self.logger.warning(f"Ignoring input override for {node.type} node '{node.id}'")
            nodes.append(node)
        return FlowSnapshot(nodes=nodes, edges=list(snapshot.edges))

    # === EXECUTION LOOP ===

    async def _execute(self, run: _Run, run_ids: list[str]) -> bool:
        """
        Drive the run until every node is terminal or cancellation is observed.

        Returns:
            True if the run was cancelled
        """
        run_set = set(run_ids)
        waiting = {
            nid: {dep for dep in run.plan.dependencies(nid) if dep in run_set} for nid in run_ids
        }
        ready = deque(nid for nid in run_ids if not waiting[nid])
        undecided = set(run_ids)
        running: dict[asyncio.Task, str] = {}
        cancel_wait = asyncio.create_task(run.token.wait())

        try:
            while not run.token.is_cancelled:
                while ready and not run.token.is_cancelled:
                    node_id = ready.popleft()
                    undecided.discard(node_id)
                    reason = self._skip_reason(run, node_id)
                    if reason is not None:
                        await self._skip(run, node_id, reason)
                        self._release(run, node_id, waiting, ready)
                        continue
                    await self._set_status(run, node_id, NodeStatus.QUEUED)
                    running[asyncio.create_task(self._run_node(run, node_id))] = node_id

                if not running or run.token.is_cancelled:
                    break

                done, _ = await asyncio.wait(
                    [*running, cancel_wait], return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    if task is cancel_wait:
                        continue
                    self._release(run, running.pop(task), waiting, ready)

            if run.token.is_cancelled:
                await self._cancel_remaining(run, undecided, running)
                return True
            return False
        finally:
            cancel_wait.cancel()
            for task in running:
                if not task.done():
                    task.cancel()

    def _release(
        self,
        run: _Run,
        node_id: str,
        waiting: dict[str, set[str]],
        ready: deque[str],
    ) -> None:
        """Mark ``node_id`` settled and queue dependents with nothing left to wait for."""
        for dependent in run.plan.dependents(node_id):
            deps = waiting.get(dependent)
            if deps is None or node_id not in deps:
                continue
            deps.discard(node_id)
            if not deps:
                ready.append(dependent)

    def _skip_reason(self, run: _Run, node_id: str) -> str | None:
        """Why a node whose upstream nodes have all settled must not run, if it must not."""
        node = run.plan.nodes[node_id]
        edges = run.plan.incoming[node_id]
        data_edges = [e for e in edges if e.id not in run.plan.pulse_edge_ids]
        pulse_edges = [e for e in edges if e.id in run.plan.pulse_edge_ids]

        required: dict[str, list[EdgeSpec]] = {}
        for edge in data_edges:
            if is_required_input(edge, node.type):
                required.setdefault(target_port_id(edge, node.type), []).append(edge)
        for port, port_edges in required.items():
            if not any(self._succeeded(run, e.source) for e in port_edges):
                sources = ", ".join(dict.fromkeys(e.source for e in port_edges))
                return f"Required input '{port}' unavailable: {sources} did not succeed"

        if pulse_edges and not data_edges and node_id != run.start_from:
            if not any(self._pulse_fired(run, e.source) for e in pulse_edges):
                return "No pulse received"
        return None

    def _succeeded(self, run: _Run, node_id: str) -> bool:
        return run.states[node_id].status == NodeStatus.SUCCEEDED

    def _pulse_fired(self, run: _Run, node_id: str) -> bool:
        return self._succeeded(run, node_id) and run.states[node_id].pulse_fired

    def _edge_value(self, run: _Run, edge: EdgeSpec) -> Any:
        """The value an edge carries, or None if its source produced nothing usable."""
        state = run.states[edge.source]
        if state.status != NodeStatus.SUCCEEDED:
            return None
        if edge.id in run.plan.pulse_edge_ids:
            if not state.pulse_fired:
                return None
            timestamp = state.pulse_at.isoformat() if state.pulse_at else None
            return {"fired": True, "timestamp": timestamp}
        source_type = run.plan.nodes[edge.source].type
        port = source_port_id(edge, source_type)
        if port == get_port_schema(source_type).default_output:
            return state.output
        return state.port_outputs.get(port)

    # === NODE EXECUTION ===

    async def _run_node(self, run: _Run, node_id: str) -> None:
        node = run.plan.nodes[node_id]
        set_trace_context(node_id=node_id, node_type=str(node.type))
        state = run.states[node_id]
        limiter = run.semaphore if run.semaphore is not None else contextlib.nullcontext()

        try:
            async with limiter:
                if run.token.is_cancelled:
                    state.error = run.token.reason
                    await self._set_status(run, node_id, NodeStatus.CANCELLED, error=state.error)
                    return

                incoming = run.plan.incoming[node_id]
                inputs = resolve_inputs(node, [(e, self._edge_value(run, e)) for e in incoming])
                await self._set_status(run, node_id, NodeStatus.RUNNING)

                fingerprint = None
                if self.cache is not None and self.cache.is_cacheable(node.type):
                    fingerprint = node_fingerprint(node, incoming, inputs)
                    entry = self.cache.get(node_id, fingerprint)
                    if entry is not None:
                        result = ExecuteResult(
                            output=entry.output,
                            port_outputs=dict(entry.port_outputs),
                            side_effects=dict(entry.side_effects),
                            pulse=entry.pulse,
                        )
                        await self._finish(run, node, result, cached=True)
                        return

                self.logger.info(f"▶ {node_id} ({node.type})")
                started = time.monotonic()
                result = await self._invoke(run, node, inputs)
                state.latency_ms = int((time.monotonic() - started) * 1000)
                await self._finish(run, node, result)

                if fingerprint is not None and result.success:
                    self.cache.put(
                        node_id,
                        CacheEntry(
                            fingerprint=fingerprint,
                            output=result.output,
                            port_outputs=dict(result.port_outputs),
                            side_effects=dict(result.side_effects),
                            pulse=result.pulse,
                        ),
                    )
        except asyncio.CancelledError:
            # Forced after the grace period; the status event is published by the loop
            state.status = NodeStatus.CANCELLED
            raise

    async def _invoke(self, run: _Run, node: NodeSpec, inputs: dict[str, Any]) -> ExecuteResult:
        executor = self.registry.get(node.type)
        if executor is None:
            return ExecuteResult.fail(f"No executor registered for node type '{node.type}'")

        ctx = ExecutionContext(
            node=node,
            inputs=inputs,
            cancel_token=run.token,
            provider=self.provider,
            run_id=run.run_id,
            on_partial=self._partial_handler(run, node),
        )
        timeout = self.config.node_timeout_seconds
        try:
            if timeout:
                raw = await asyncio.wait_for(executor.execute(ctx), timeout=timeout)
            else:
                raw = await executor.execute(ctx)
        except TimeoutError:
            return ExecuteResult.fail(f"Timed out after {timeout}s")
        except Exception as e:
            self.logger.error(f"✗ {node.id} executor raised: {e}", exc_info=True)
            return ExecuteResult.fail(f"Executor raised {type(e).__name__}: {e}")
        return _coerce_result(raw)

    def _partial_handler(
        self,
        run: _Run,
        node: NodeSpec,
    ) -> PartialEmitter | None:
        """Publish streamed output for the node and, if it tracks downstream, its previews."""
        if self.event_bus is None:
            return None
        bus = self.event_bus
        targets: list[str] = []
        if self.registry.should_track_downstream(node.type):
            targets = run.plan.preview_targets(node.id)

        async def on_partial(partial: Any) -> None:
            await bus.emit_node_output_delta(run.run_id, node.id, partial)
            for target in targets:
                await bus.emit_node_output_delta(
                    run.run_id, target, partial, source_node_id=node.id
                )

        return on_partial

    async def _finish(
        self,
        run: _Run,
        node: NodeSpec,
        result: ExecuteResult,
        cached: bool = False,
    ) -> None:
        """Record a node's result and publish its terminal status."""
        state = run.states[node.id]
        state.cached = cached
        state.settled_after_cancel = run.token.is_cancelled

        if result.cancelled:
            status = NodeStatus.CANCELLED
        elif result.error is not None:
            status = NodeStatus.FAILED
        else:
            status = NodeStatus.SUCCEEDED

        if status == NodeStatus.SUCCEEDED:
            state.output = result.output
            state.port_outputs = dict(result.port_outputs)
            state.side_effects = dict(result.side_effects)
            if result.pulse and self.registry.has_pulse_output(node.type):
                state.pulse_fired = True
                state.pulse_at = datetime.now(UTC)
            suffix = " (cached)" if cached else f" ({state.latency_ms}ms)"
            self.logger.info(f"✓ {node.id} succeeded{suffix}")
        elif status == NodeStatus.FAILED:
            state.error = result.error
            self.logger.warning(f"✗ {node.id} failed: {result.error}")
        else:
            state.error = result.error or run.token.reason
            self.logger.info(f"⊘ {node.id} cancelled")

        await self._set_status(run, node.id, status, output=state.output, error=state.error)
        if state.pulse_fired and self.event_bus is not None:
            await self.event_bus.emit_pulse_fired(run.run_id, node.id)

    async def _skip(self, run: _Run, node_id: str, reason: str) -> None:
        run.states[node_id].error = reason
        self.logger.info(f"⊘ {node_id} skipped: {reason}")
        await self._set_status(run, node_id, NodeStatus.SKIPPED, error=reason)

    async def _cancel_remaining(
        self,
        run: _Run,
        undecided: set[str],
        running: dict[asyncio.Task, str],
    ) -> None:
        """
        Cancel nodes that never launched, then give running nodes the grace
        period to settle before force-cancelling them.
        """
        reason = run.token.reason or "Cancelled"
        self.logger.info(f"⊘ Run {run.run_id} cancelled: {reason}")
        for node_id in run.plan.order:
            if node_id in undecided:
                run.states[node_id].error = reason
                await self._set_status(run, node_id, NodeStatus.CANCELLED, error=reason)

        if not running:
            return
        _, pending = await asyncio.wait(list(running), timeout=self.config.cancel_grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in pending:
            node_id = running[task]
            state = run.states[node_id]
            if state.status in (NodeStatus.QUEUED, NodeStatus.RUNNING, NodeStatus.CANCELLED):
                state.error = state.error or reason
                self.logger.info(f"⊘ {node_id} force-cancelled after grace period")
                await self._set_status(run, node_id, NodeStatus.CANCELLED, error=state.error)
        running.clear()

    async def _set_status(
        self,
        run: _Run,
        node_id: str,
        status: NodeStatus,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        run.states[node_id].status = status
        if self.event_bus is not None:
            await self.event_bus.emit_node_status(run.run_id, node_id, status.value, output, error)
