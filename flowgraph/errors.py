"""Exception taxonomy for flowgraph.

Structural problems (cycles, unregistered node types, dangling edges) are
raised before any node executes. Node-local failures are never raised; they
travel as ``ExecuteResult.error`` values and end up in the run result.
"""


class FlowError(Exception):
    """Base class for all flowgraph errors."""


class DuplicateExecutorError(FlowError):
    """An executor was registered for a node type that already has one."""

    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"Executor already registered for node type '{node_type}'")


class MissingCapabilityError(FlowError):
    """An executor used a capability (e.g. a provider client) the run did not supply."""


class SchedulingError(FlowError):
    """The graph cannot be scheduled at all. The run aborts before execution."""


class CycleError(SchedulingError):
    """A cycle exists among data/pulse edges."""

    def __init__(self, node_ids: list[str]):
        self.node_ids = node_ids
        super().__init__(f"Cycle detected among nodes: {', '.join(node_ids)}")


class UnregisteredNodeTypeError(SchedulingError):
    """A node references a type tag with no registered executor."""

    def __init__(self, node_id: str, node_type: str):
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(f"Node '{node_id}' has unregistered type '{node_type}'")


class DanglingEdgeError(SchedulingError):
    """An edge references a node that is not in the snapshot."""

    def __init__(self, edge_id: str, missing_node_id: str):
        self.edge_id = edge_id
        self.missing_node_id = missing_node_id
        super().__init__(f"Edge '{edge_id}' references missing node '{missing_node_id}'")


class ChangeApplicationError(FlowError):
    """A change batch could not be applied. The input snapshot is untouched."""

    def __init__(self, index: int, message: str):
        self.index = index
        super().__init__(f"Action {index}: {message}")


class UndoError(FlowError):
    """An applied-changes record does not match the snapshot it is undone against."""


class StorageError(FlowError):
    """A snapshot store failed to persist or read a flow."""


class ProviderCallError(FlowError):
    """Raised by provider adapters that cannot express a failure as a response."""
