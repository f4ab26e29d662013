"""
Edge model - how nodes connect.

An edge links a source node's output port to a target node's input port.
A ``None`` handle means the node's default port. The optional ``data_type``
tag colours the edge in the editor and is type-checked by the change
validator. ``pulse`` edges carry control triggers instead of data.

Annotation edges are drawn by the editor (grouping, notes) and are invisible
to scheduling and validation: they may even form cycles.
"""

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, model_validator


class PortDataType(StrEnum):
    """Kinds of value a port produces or accepts."""

    STRING = "string"
    IMAGE = "image"
    AUDIO = "audio"
    RESPONSE = "response"
    BOOLEAN = "boolean"
    PULSE = "pulse"


class EdgeSpec(BaseModel):
    """
    Specification for an edge between two nodes.

    Examples:
        # Data edge into a named port
        EdgeSpec(
            id="e1",
            source="in1",
            source_handle="output",
            target="gen1",
            target_handle="prompt",
            data_type=PortDataType.STRING,
        )

        # Pulse edge triggering a switch
        EdgeSpec(
            id="e2",
            source="gen1",
            source_handle="done",
            target="sw1",
            target_handle="flip",
            data_type=PortDataType.PULSE,
        )
    """

    id: str
    source: str = Field(description="Source node ID")
    source_handle: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_handle", "sourceHandle"),
        description="Source port, None = default",
    )
    target: str = Field(description="Target node ID")
    target_handle: str | None = Field(
        default=None,
        validation_alias=AliasChoices("target_handle", "targetHandle"),
        description="Target port, None = default",
    )
    data_type: PortDataType | None = Field(
        default=None, validation_alias=AliasChoices("data_type", "dataType")
    )
    annotation: bool = Field(
        default=False, description="UI-only edge, ignored by scheduling and validation"
    )

    model_config = {"extra": "allow"}

    @model_validator(mode="before")
    @classmethod
    def _lift_editor_data_type(cls, value: Any) -> Any:
        """Editor edges carry the type as ``data: {"dataType": ...}``."""
        if isinstance(value, dict) and "data_type" not in value and "dataType" not in value:
            data = value.get("data")
            if isinstance(data, dict) and data.get("dataType"):
                value = {**value, "data_type": data["dataType"]}
        return value

    @property
    def is_execution_edge(self) -> bool:
        return not self.annotation
