"""Executors for nodes whose value comes from the user rather than upstream nodes."""

from flowgraph.executors.base import ExecuteResult, ExecutionContext, NodeExecutor
from flowgraph.graph.node import NodeType

NO_CONVERSATION = "(No conversation yet)"


class TextInputExecutor(NodeExecutor):
    type = NodeType.TEXT_INPUT

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        return ExecuteResult(output=ctx.config.input_value)


class ImageInputExecutor(NodeExecutor):
    type = NodeType.IMAGE_INPUT

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        return ExecuteResult(output=ctx.config.uploaded_image or "")


class AudioInputExecutor(NodeExecutor):
    """Emits the recorded audio buffer and fires a pulse."""

    type = NodeType.AUDIO_INPUT
    has_pulse_output = True

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        data = ctx.config
        if not data.audio_buffer:
            return ExecuteResult.fail("No audio recorded")
        return ExecuteResult(
            output={
                "type": "buffer",
                "buffer": data.audio_buffer,
                "mime_type": data.audio_mime_type or "audio/webm",
                "duration": data.recording_duration,
            },
            pulse=True,
        )


class RealtimeConversationExecutor(NodeExecutor):
    """
    Exposes the transcript of a live voice session.

    The session itself runs in the editor; a flow run only reads what has
    been said so far.
    """

    type = NodeType.REALTIME_CONVERSATION
    has_pulse_output = True

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        lines = [
            f"{'User' if entry.role == 'user' else 'AI'}: {entry.text}"
            for entry in ctx.config.transcript
        ]
        transcript = "\n".join(lines) if lines else NO_CONVERSATION
        return ExecuteResult(
            output=transcript,
            port_outputs={"audio-out": None},
            pulse=True,
        )
