"""Node executors and the executor registry."""

from flowgraph.config import get_default_image_model, get_default_text_model
from flowgraph.executors.base import (
    ExecuteResult,
    ExecutionContext,
    FunctionExecutor,
    NodeExecutor,
)
from flowgraph.executors.generation import (
    AudioTranscriptionExecutor,
    ImageGenerationExecutor,
    ReactComponentExecutor,
    TextGenerationExecutor,
    ThreejsSceneExecutor,
)
from flowgraph.executors.inputs import (
    AudioInputExecutor,
    ImageInputExecutor,
    RealtimeConversationExecutor,
    TextInputExecutor,
)
from flowgraph.executors.logic import (
    AILogicExecutor,
    CommentExecutor,
    StringCombineExecutor,
    SwitchExecutor,
    ThreejsOptionsExecutor,
)
from flowgraph.executors.output import PreviewOutputExecutor
from flowgraph.executors.registry import ExecutorRegistry, default_registry


def builtin_executors(
    text_model: tuple[str, str] | None = None,
    image_model: tuple[str, str] | None = None,
) -> list[NodeExecutor]:
    """
    Instantiate one executor per built-in node type.

    Args:
        text_model: (provider, model) default for text-like nodes. Read from
            configuration when omitted.
        image_model: (provider, model) default for image generation.
    """
    text_provider, text_model_id = text_model or get_default_text_model()
    image_provider, image_model_id = image_model or get_default_image_model()
    return [
        TextInputExecutor(),
        ImageInputExecutor(),
        AudioInputExecutor(),
        RealtimeConversationExecutor(),
        TextGenerationExecutor(text_provider, text_model_id),
        ImageGenerationExecutor(image_provider, image_model_id),
        ReactComponentExecutor(text_provider, text_model_id),
        ThreejsSceneExecutor(text_provider, text_model_id),
        AudioTranscriptionExecutor(),
        AILogicExecutor(text_provider, text_model_id),
        SwitchExecutor(),
        StringCombineExecutor(),
        ThreejsOptionsExecutor(),
        CommentExecutor(),
        PreviewOutputExecutor(),
    ]


def register_builtin_executors(
    registry: ExecutorRegistry | None = None,
    text_model: tuple[str, str] | None = None,
    image_model: tuple[str, str] | None = None,
) -> ExecutorRegistry:
    """Register every built-in executor. Call once at startup."""
    registry = registry if registry is not None else default_registry
    for executor in builtin_executors(text_model, image_model):
        registry.register(executor)
    return registry


__all__ = [
    "ExecuteResult",
    "ExecutionContext",
    "ExecutorRegistry",
    "FunctionExecutor",
    "NodeExecutor",
    "builtin_executors",
    "default_registry",
    "register_builtin_executors",
]
