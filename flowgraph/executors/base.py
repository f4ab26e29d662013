"""
Executor contract - what every node type implements.

An executor turns an ``ExecutionContext`` (resolved inputs, the node's own
data, a cancellation token and optional injected capabilities) into an
``ExecuteResult``. Expected failures (bad input, provider errors) are
returned as ``ExecuteResult(error=...)``. Raising is reserved for contract
violations such as using a provider client that was not injected.

Capabilities are plain class attributes, so the scheduler never inspects
concrete executor types:

- ``has_pulse_output``: the node fires a trigger on its ``done`` port
- ``should_track_downstream``: partial output should be forwarded to
  downstream preview nodes while the node streams
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from flowgraph.errors import MissingCapabilityError
from flowgraph.graph.node import NodeData, NodeSpec
from flowgraph.llm.provider import ProviderClient
from flowgraph.runtime.cancellation import CancellationToken

PartialEmitter = Callable[[Any], Awaitable[None]]


def as_text(value: Any) -> str:
    """Render an upstream value as text the way downstream text ports expect it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class ExecuteResult:
    """Result of executing one node."""

    output: Any = None
    error: str | None = None
    # Node data updates the editor should persist (e.g. switch state, generated code)
    side_effects: dict[str, Any] = field(default_factory=dict)
    # Values for output ports other than the default one
    port_outputs: dict[str, Any] = field(default_factory=dict)
    pulse: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and not self.cancelled

    @classmethod
    def fail(cls, error: str) -> "ExecuteResult":
        return cls(error=error)

    @classmethod
    def stopped(cls) -> "ExecuteResult":
        """Result for an executor that honoured a cancellation request."""
        return cls(error="Cancelled", cancelled=True)


@dataclass
class ExecutionContext:
    """Everything an executor may use."""

    node: NodeSpec
    inputs: dict[str, Any]
    cancel_token: CancellationToken
    provider: ProviderClient | None = None
    run_id: str = ""
    on_partial: PartialEmitter | None = None

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def config(self) -> NodeData:
        return self.node.data

    def require_provider(self) -> ProviderClient:
        """Return the injected provider client, or raise if the run has none."""
        if self.provider is None:
            raise MissingCapabilityError(
                f"Node '{self.node.id}' ({self.node.type}) needs a provider client"
            )
        return self.provider

    async def emit_partial(self, value: Any) -> None:
        if self.on_partial is not None:
            await self.on_partial(value)


class NodeExecutor(ABC):
    """Base class for node executors. Duck-typed objects with the same shape also work."""

    type: str
    has_pulse_output: bool = False
    should_track_downstream: bool = False

    @abstractmethod
    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        """Execute the node and return its result."""
        pass


class FunctionExecutor(NodeExecutor):
    """
    Wrap a plain (sync or async) function as an executor.

    The function receives the context and may return an ``ExecuteResult``
    or a bare value, which becomes the output.

    Example:
        registry.register(FunctionExecutor("text-generation", lambda ctx: ctx.inputs["prompt"]))
    """

    def __init__(
        self,
        type: str,
        func: Callable[[ExecutionContext], Any],
        has_pulse_output: bool = False,
        should_track_downstream: bool = False,
    ):
        self.type = type
        self.func = func
        self.has_pulse_output = has_pulse_output
        self.should_track_downstream = should_track_downstream

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        result = self.func(ctx)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ExecuteResult):
            return result
        return ExecuteResult(output=result, pulse=self.has_pulse_output)
