"""Preview output executor."""

from flowgraph.executors.base import ExecuteResult, ExecutionContext, NodeExecutor
from flowgraph.graph.inputs import first_non_empty
from flowgraph.graph.node import NodeType


class PreviewOutputExecutor(NodeExecutor):
    """
    Collects whatever reaches the preview node.

    The primary output is the richest value available: image, then audio,
    then the generic input, then plain text. The individual values are kept
    in ``port_outputs`` so the editor can render each one.
    """

    type = NodeType.PREVIEW_OUTPUT

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        inputs = ctx.inputs
        collected = {port: inputs.get(port) for port in ("input", "string", "image", "audio")}
        primary = first_non_empty(
            [collected["image"], collected["audio"], collected["input"], collected["string"]]
        )
        return ExecuteResult(
            output=primary,
            port_outputs={port: value for port, value in collected.items() if value is not None},
        )
