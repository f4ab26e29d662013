"""
Port schemas for every node type.

Each node type declares its input and output ports. Inputs are optional unless
marked required. A required input is one the node cannot run without when it
is wired: if every edge feeding it comes from a node that did not succeed, the
node is skipped. The first declared input is the default target port and the
first declared output is the default source port. Pulse-emitting nodes expose
a ``done`` port.
"""

from dataclasses import dataclass, field

from flowgraph.graph.edge import EdgeSpec, PortDataType
from flowgraph.graph.node import NodeType

PULSE_PORT = "done"
DEFAULT_OUTPUT_PORT = "output"
FALLBACK_INPUT_PORT = "input"


@dataclass(frozen=True)
class PortDefinition:
    """A single named port."""

    id: str
    data_type: PortDataType
    required: bool = True
    label: str = ""


@dataclass(frozen=True)
class PortSchema:
    """Input and output ports of one node type."""

    inputs: tuple[PortDefinition, ...] = ()
    outputs: tuple[PortDefinition, ...] = ()
    _inputs_by_id: dict[str, PortDefinition] = field(init=False, repr=False, compare=False)
    _outputs_by_id: dict[str, PortDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_inputs_by_id", {p.id: p for p in self.inputs})
        object.__setattr__(self, "_outputs_by_id", {p.id: p for p in self.outputs})

    def get_input(self, port_id: str) -> PortDefinition | None:
        return self._inputs_by_id.get(port_id)

    def get_output(self, port_id: str) -> PortDefinition | None:
        return self._outputs_by_id.get(port_id)

    @property
    def default_input(self) -> str:
        return self.inputs[0].id if self.inputs else FALLBACK_INPUT_PORT

    @property
    def default_output(self) -> str:
        return self.outputs[0].id if self.outputs else DEFAULT_OUTPUT_PORT


def _in(port_id: str, data_type: PortDataType, required: bool = False) -> PortDefinition:
    return PortDefinition(id=port_id, data_type=data_type, required=required)


def _out(port_id: str, data_type: PortDataType) -> PortDefinition:
    return PortDefinition(id=port_id, data_type=data_type, required=False)


_S = PortDataType.STRING
_DONE = _out(PULSE_PORT, PortDataType.PULSE)

NODE_PORT_SCHEMAS: dict[NodeType, PortSchema] = {
    NodeType.TEXT_INPUT: PortSchema(outputs=(_out("output", _S),)),
    NodeType.IMAGE_INPUT: PortSchema(outputs=(_out("output", PortDataType.IMAGE),)),
    NodeType.AUDIO_INPUT: PortSchema(outputs=(_out("output", PortDataType.AUDIO), _DONE)),
    NodeType.TEXT_GENERATION: PortSchema(
        inputs=(
            _in("prompt", _S, required=True),
            _in("system", _S),
            _in("image", PortDataType.IMAGE),
        ),
        outputs=(_out("output", _S), _DONE),
    ),
    NodeType.IMAGE_GENERATION: PortSchema(
        inputs=(_in("prompt", _S), _in("image", PortDataType.IMAGE)),
        outputs=(_out("output", PortDataType.IMAGE), _DONE),
    ),
    NodeType.AI_LOGIC: PortSchema(
        inputs=(_in("transform", _S), _in("input1", _S), _in("input2", _S)),
        outputs=(_out("output", _S), _DONE),
    ),
    NodeType.COMMENT: PortSchema(),
    NodeType.REACT_COMPONENT: PortSchema(
        inputs=(_in("prompt", _S, required=True), _in("system", _S)),
        outputs=(_out("output", PortDataType.RESPONSE), _DONE),
    ),
    NodeType.REALTIME_CONVERSATION: PortSchema(
        inputs=(_in("instructions", _S), _in("audio-in", PortDataType.AUDIO)),
        outputs=(
            _out("transcript", _S),
            _out("audio-out", PortDataType.AUDIO),
            _DONE,
        ),
    ),
    NodeType.AUDIO_TRANSCRIPTION: PortSchema(
        inputs=(_in("audio", PortDataType.AUDIO, required=True), _in("language", _S)),
        outputs=(_out("output", _S), _DONE),
    ),
    NodeType.PREVIEW_OUTPUT: PortSchema(
        inputs=(
            _in("input", PortDataType.RESPONSE, required=True),
            _in("string", _S),
            _in("image", PortDataType.IMAGE),
            _in("audio", PortDataType.AUDIO),
        ),
    ),
    NodeType.SWITCH: PortSchema(
        inputs=(
            _in("flip", PortDataType.PULSE),
            _in("turnOn", PortDataType.PULSE),
            _in("turnOff", PortDataType.PULSE),
        ),
        outputs=(_out("output", PortDataType.BOOLEAN),),
    ),
    NodeType.STRING_COMBINE: PortSchema(
        inputs=tuple(_in(f"input{i}", _S) for i in range(1, 5)),
        outputs=(_out("output", _S), _DONE),
    ),
    NodeType.THREEJS_SCENE: PortSchema(
        inputs=(
            _in("prompt", _S, required=True),
            _in("system", _S),
            _in("scene", _S),
            _in("options", _S),
        ),
        outputs=(_out("output", PortDataType.RESPONSE), _DONE),
    ),
    NodeType.THREEJS_OPTIONS: PortSchema(
        inputs=(_in("camera", _S), _in("light", _S), _in("mouse", _S)),
        outputs=(_out("output", _S), _DONE),
    ),
}

# (source type, target type) pairs accepted without an exact match
ALLOWED_COERCIONS: frozenset[tuple[PortDataType, PortDataType]] = frozenset(
    {
        (PortDataType.STRING, PortDataType.RESPONSE),
        (PortDataType.IMAGE, PortDataType.RESPONSE),
        (PortDataType.AUDIO, PortDataType.RESPONSE),
        (PortDataType.BOOLEAN, PortDataType.STRING),
    }
)


def get_port_schema(node_type: str) -> PortSchema:
    """Return the schema for a node type; unknown types have no ports."""
    return NODE_PORT_SCHEMAS.get(node_type, PortSchema())


def is_compatible(source: PortDataType, target: PortDataType) -> bool:
    """True if a value of ``source`` type may flow into a ``target`` port."""
    return source == target or (source, target) in ALLOWED_COERCIONS


def source_port_id(edge: EdgeSpec, source_type: str) -> str:
    """The output port an edge reads from, resolving the default."""
    return edge.source_handle or get_port_schema(source_type).default_output


def target_port_id(edge: EdgeSpec, target_type: str) -> str:
    """The input port an edge writes to, resolving the default."""
    return edge.target_handle or get_port_schema(target_type).default_input


def is_pulse_edge(edge: EdgeSpec, source_type: str) -> bool:
    """Pulse edges are declared as such or leave from a pulse-typed port."""
    if edge.data_type == PortDataType.PULSE:
        return True
    port = get_port_schema(source_type).get_output(source_port_id(edge, source_type))
    return port is not None and port.data_type == PortDataType.PULSE


def is_required_input(edge: EdgeSpec, target_type: str) -> bool:
    """Whether the port an edge feeds is required. Unknown ports count as required."""
    port = get_port_schema(target_type).get_input(target_port_id(edge, target_type))
    if port is None:
        return True
    return port.required and port.data_type != PortDataType.PULSE
