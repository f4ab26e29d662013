"""
Executor registry - node type tag → executor.

Lifecycle: executors are registered once at startup (``register_builtin_executors``
plus any plugin executors) into ``default_registry``; ``clear()`` exists for test
harnesses only. Nothing may depend on registration order.
"""

import logging

from flowgraph.errors import DuplicateExecutorError
from flowgraph.executors.base import NodeExecutor

logger = logging.getLogger(__name__)


class ExecutorRegistry:
    """
    Maps node type tags to executors and answers capability queries.

    Example:
        registry = ExecutorRegistry()
        registry.register(TextInputExecutor())

        executor = registry.get("text-input")
        if executor is None:
            ...
    """

    def __init__(self) -> None:
        self._executors: dict[str, NodeExecutor] = {}

    def register(self, executor: NodeExecutor) -> None:
        """
        Register an executor under its ``type`` tag.

        Raises:
            DuplicateExecutorError: If the tag already has an executor
        """
        node_type = str(executor.type)
        if node_type in self._executors:
            raise DuplicateExecutorError(node_type)
        self._executors[node_type] = executor
        logger.debug(f"Registered executor for '{node_type}'")

    def get(self, node_type: str) -> NodeExecutor | None:
        """Return the executor for a type, or None if nothing is registered."""
        return self._executors.get(str(node_type))

    def has(self, node_type: str) -> bool:
        return str(node_type) in self._executors

    def list_types(self) -> list[str]:
        return list(self._executors)

    def has_pulse_output(self, node_type: str) -> bool:
        """True only if the executor explicitly declares a pulse output."""
        return getattr(self.get(node_type), "has_pulse_output", False) is True

    def should_track_downstream(self, node_type: str) -> bool:
        """True only if the executor asks for incremental downstream updates."""
        return getattr(self.get(node_type), "should_track_downstream", False) is True

    def clear(self) -> None:
        """Remove every registration. For test isolation."""
        self._executors.clear()

    def __len__(self) -> int:
        return len(self._executors)

    def __contains__(self, node_type: object) -> bool:
        return str(node_type) in self._executors


# Process-wide registry used when a scheduler is not given one explicitly
default_registry = ExecutorRegistry()
