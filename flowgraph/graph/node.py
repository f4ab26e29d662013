"""
Node model - what lives on the canvas.

A node is an id, a type tag drawn from a closed set, a position and a data
bag. The data bag is a tagged variant: each ``NodeType`` maps to one
``NodeData`` subclass, so ``NodeSpec(type="text-input", data={...})`` always
yields a ``TextInputData``. Unknown keys are preserved (``extra="allow"``)
so editor-specific fields survive a round trip.

Some fields only make sense while the editor is open (uploaded blobs,
recording flags, execution status). Each variant lists them in
``runtime_fields`` and ``create_snapshot`` strips them before persisting.
"""

from enum import StrEnum
from typing import Any, ClassVar, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    SerializeAsAny,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel


class NodeType(StrEnum):
    """Closed set of node type tags."""

    TEXT_INPUT = "text-input"
    IMAGE_INPUT = "image-input"
    AUDIO_INPUT = "audio-input"
    TEXT_GENERATION = "text-generation"
    IMAGE_GENERATION = "image-generation"
    AI_LOGIC = "ai-logic"
    COMMENT = "comment"
    REACT_COMPONENT = "react-component"
    REALTIME_CONVERSATION = "realtime-conversation"
    AUDIO_TRANSCRIPTION = "audio-transcription"
    PREVIEW_OUTPUT = "preview-output"
    SWITCH = "switch"
    STRING_COMBINE = "string-combine"
    THREEJS_SCENE = "threejs-scene"
    THREEJS_OPTIONS = "threejs-options"


class Position(BaseModel):
    """Canvas position. Irrelevant to execution."""

    x: float = 0.0
    y: float = 0.0


# Transient execution fields every variant may carry while the editor is open
EXECUTION_FIELDS = frozenset({"execution_status", "execution_output", "execution_error"})


class NodeData(BaseModel):
    """Fields shared by every node type."""

    label: str = ""
    execution_status: str | None = None
    execution_output: Any = None
    execution_error: str | None = None

    # Editor documents use camelCase keys (userPrompt, inputValue); both spellings validate
    model_config = {"extra": "allow", "alias_generator": to_camel, "populate_by_name": True}

    runtime_fields: ClassVar[frozenset[str]] = EXECUTION_FIELDS

    def persistable(self) -> "NodeData":
        """Return a copy with runtime-only fields removed."""
        return type(self).model_validate(self.model_dump(exclude=set(self.runtime_fields)))


class TextInputData(NodeData):
    input_value: str = ""


class ImageInputData(NodeData):
    # Data URL of the uploaded image; too large to persist
    uploaded_image: str | None = None

    runtime_fields: ClassVar[frozenset[str]] = EXECUTION_FIELDS | {"uploaded_image"}


class AudioInputData(NodeData):
    audio_buffer: str | None = Field(default=None, description="Base64 recorded audio")
    audio_mime_type: str | None = None
    recording_duration: float | None = None
    device_id: str | None = None
    is_recording: bool = False

    runtime_fields: ClassVar[frozenset[str]] = EXECUTION_FIELDS | {
        "audio_buffer",
        "audio_mime_type",
        "recording_duration",
        "is_recording",
    }


class TextGenerationData(NodeData):
    user_prompt: str = ""
    system_prompt: str = ""
    provider: str | None = None
    model: str | None = None
    # Inline image attached in the editor, used when no image edge is connected
    image_input: str | None = None
    reasoning: str | None = None

    runtime_fields: ClassVar[frozenset[str]] = EXECUTION_FIELDS | {"image_input", "reasoning"}


class ImageGenerationData(NodeData):
    prompt: str = Field(default="", description="Instructions prepended to the connected prompt")
    provider: str | None = None
    model: str | None = None
    aspect_ratio: str | None = None
    image_input: str | None = None

    runtime_fields: ClassVar[frozenset[str]] = EXECUTION_FIELDS | {"image_input"}


class AILogicData(NodeData):
    transform: str = Field(default="", description="Natural-language description of the logic")
    generated_code: str | None = None
    code_explanation: str | None = None
    # Transform text the generated code was produced from
    generated_for: str | None = None
    provider: str | None = None
    model: str | None = None


class CommentData(NodeData):
    title: str = ""
    color: str | None = None


class ReactComponentData(NodeData):
    user_prompt: str = ""
    system_prompt: str = ""
    provider: str | None = None
    model: str | None = None
    style_preset: str = "simple"


class TranscriptEntry(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class RealtimeConversationData(NodeData):
    instructions: str = ""
    voice: str = "marin"
    vad_mode: str = "server_vad"
    session_status: str | None = None
    transcript: list[TranscriptEntry] = Field(default_factory=list)

    runtime_fields: ClassVar[frozenset[str]] = EXECUTION_FIELDS | {
        "session_status",
        "transcript",
    }


class AudioTranscriptionData(NodeData):
    provider: str | None = None
    model: str | None = None
    language: str | None = None


class PreviewOutputData(NodeData):
    pass


class SwitchData(NodeData):
    is_on: bool = False


class StringCombineData(NodeData):
    separator: str = ""


class ThreejsSceneData(NodeData):
    user_prompt: str = ""
    system_prompt: str = ""
    provider: str | None = None
    model: str | None = None


class ThreejsOptionsData(NodeData):
    camera_text: str = ""
    light_text: str = ""
    mouse_text: str = ""


NODE_DATA_MODELS: dict[NodeType, type[NodeData]] = {
    NodeType.TEXT_INPUT: TextInputData,
    NodeType.IMAGE_INPUT: ImageInputData,
    NodeType.AUDIO_INPUT: AudioInputData,
    NodeType.TEXT_GENERATION: TextGenerationData,
    NodeType.IMAGE_GENERATION: ImageGenerationData,
    NodeType.AI_LOGIC: AILogicData,
    NodeType.COMMENT: CommentData,
    NodeType.REACT_COMPONENT: ReactComponentData,
    NodeType.REALTIME_CONVERSATION: RealtimeConversationData,
    NodeType.AUDIO_TRANSCRIPTION: AudioTranscriptionData,
    NodeType.PREVIEW_OUTPUT: PreviewOutputData,
    NodeType.SWITCH: SwitchData,
    NodeType.STRING_COMBINE: StringCombineData,
    NodeType.THREEJS_SCENE: ThreejsSceneData,
    NodeType.THREEJS_OPTIONS: ThreejsOptionsData,
}


class NodeSpec(BaseModel):
    """
    A node on the canvas.

    Example:
        NodeSpec(
            id="gen1",
            type=NodeType.TEXT_GENERATION,
            data={"label": "Summarise", "user_prompt": "Summarise this"},
        )
    """

    id: str
    type: NodeType
    position: Position = Field(default_factory=Position)
    data: SerializeAsAny[NodeData] = Field(default_factory=dict, validate_default=True)
    parent_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("parent_id", "parentId"),
        description="Containing comment/group node, display only",
    )

    model_config = {"extra": "allow"}

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value: Any, info: ValidationInfo) -> NodeData:
        model = NODE_DATA_MODELS.get(info.data.get("type"), NodeData)
        if isinstance(value, model):
            return value
        if isinstance(value, BaseModel):
            value = value.model_dump()
        return model.model_validate(value or {})

    def with_data(self, **updates: Any) -> "NodeSpec":
        """Return a copy of this node with data fields replaced."""
        return self.model_copy(update={"data": self.data.model_copy(update=updates)})

    def persistable(self) -> "NodeSpec":
        """Return a copy of this node with runtime-only data removed."""
        return self.model_copy(update={"data": self.data.persistable()})
