"""
flowgraph - run node-based AI workflows.

A flow is a snapshot of typed nodes joined by edges. ``GraphScheduler``
executes a snapshot with executors looked up in an ``ExecutorRegistry``,
publishing node status through an ``EventBus``. ``ChangeValidator`` checks
agent-proposed edits before they are applied.
"""

from flowgraph.errors import FlowError, SchedulingError
from flowgraph.executors import ExecutorRegistry, default_registry, register_builtin_executors
from flowgraph.graph.scheduler import GraphScheduler, NodeStatus, RunOutcome, RunResult
from flowgraph.graph.snapshot import FlowSnapshot, apply_changes, undo
from flowgraph.graph.validator import ChangeValidator, EvaluationResult
from flowgraph.runtime import CancellationToken, EventBus

__all__ = [
    "CancellationToken",
    "ChangeValidator",
    "EvaluationResult",
    "EventBus",
    "ExecutorRegistry",
    "FlowError",
    "FlowSnapshot",
    "GraphScheduler",
    "NodeStatus",
    "RunOutcome",
    "RunResult",
    "SchedulingError",
    "apply_changes",
    "default_registry",
    "register_builtin_executors",
    "undo",
]
