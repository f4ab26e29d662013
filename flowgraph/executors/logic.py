"""Executors for control and transformation nodes."""

import json
import logging
import re
from typing import Any

from flowgraph.config import DEFAULT_TEXT_MODEL, DEFAULT_TEXT_PROVIDER
from flowgraph.executors.base import ExecuteResult, ExecutionContext, NodeExecutor, as_text
from flowgraph.executors.generation import ProviderExecutor, strip_code_fences
from flowgraph.graph.inputs import first_non_empty, is_empty
from flowgraph.graph.node import NodeType
from flowgraph.graph.safe_eval import SafeEvalError, safe_eval
from flowgraph.llm.provider import ProviderRequest, ProviderTask

logger = logging.getLogger(__name__)

AI_LOGIC_SYSTEM_PROMPT = """You turn a description of a data transformation into a single \
Python expression.

Available variables: input1 and input2 (strings, possibly empty).
Allowed: literals, arithmetic, comparisons, conditional expressions, slicing,
str/int/float/len/min/max/round/abs/sum/sorted/bool and string methods.
Not allowed: statements, imports, lambdas, comprehensions, attribute access
other than string methods.

Respond exactly in this format:
EXPLANATION: <one sentence>
CODE: <the expression>"""

_CODE_PATTERN = re.compile(r"CODE:\s*(.+)", re.DOTALL)
_EXPLANATION_PATTERN = re.compile(r"EXPLANATION:\s*(.+?)(?:\n|CODE:|$)")


def parse_generated_logic(text: str) -> tuple[str, str]:
    """Split a model reply into (code, explanation)."""
    code_match = _CODE_PATTERN.search(text)
    code = code_match.group(1) if code_match else text
    explanation_match = _EXPLANATION_PATTERN.search(text)
    explanation = explanation_match.group(1).strip() if explanation_match else ""
    return strip_code_fences(code), explanation


class AILogicExecutor(ProviderExecutor):
    """
    Runs a model-generated transform over input1/input2.

    Code is regenerated only when the transform text changes; otherwise the
    previously generated expression stored on the node is reused.
    """

    type = NodeType.AI_LOGIC
    has_pulse_output = True

    def __init__(
        self,
        default_provider: str = DEFAULT_TEXT_PROVIDER,
        default_model: str = DEFAULT_TEXT_MODEL,
    ):
        super().__init__(default_provider, default_model)

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        data = ctx.config
        transform = as_text(ctx.inputs.get("transform")).strip()
        code = data.generated_code
        explanation = data.code_explanation or ""

        if not transform and not code:
            return ExecuteResult.fail("No transform described")

        if transform and (not code or data.generated_for != transform):
            provider, model = self._target(ctx)
            request = ProviderRequest(
                task=ProviderTask.AI_LOGIC,
                provider=provider,
                model=model,
                prompt=transform,
                system=AI_LOGIC_SYSTEM_PROMPT,
            )
            response = await self._call(ctx, request, stream=False)
            if ctx.cancel_token.is_cancelled:
                return ExecuteResult.stopped()
            if not response.ok:
                return ExecuteResult.fail(str(response.error))
            code, explanation = parse_generated_logic(as_text(response.value))
            if not code:
                return ExecuteResult.fail("Model returned no code")

        side_effects = {
            "generated_code": code,
            "code_explanation": explanation,
            "generated_for": transform or data.generated_for,
        }
        variables = {
            "input1": as_text(ctx.inputs.get("input1")),
            "input2": as_text(ctx.inputs.get("input2")),
        }
        try:
            result = safe_eval(code, variables)
        except SafeEvalError as e:
            return ExecuteResult(error=f"Generated code rejected: {e}", side_effects=side_effects)
        except Exception as e:
            return ExecuteResult(error=f"Generated code failed: {e}", side_effects=side_effects)

        return ExecuteResult(output=as_text(result), side_effects=side_effects, pulse=True)


def is_pulse_fired(value: Any) -> bool:
    """A pulse value is ``{"fired": True, ...}``, its JSON text, or plain True."""
    if value is True:
        return True
    if isinstance(value, str) and value:
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return False
    return isinstance(value, dict) and value.get("fired") is True


class SwitchExecutor(NodeExecutor):
    """On/off state toggled by pulses. turnOff beats turnOn beats flip."""

    type = NodeType.SWITCH

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        state = ctx.config.is_on
        if is_pulse_fired(ctx.inputs.get("turnOff")):
            state = False
        elif is_pulse_fired(ctx.inputs.get("turnOn")):
            state = True
        elif is_pulse_fired(ctx.inputs.get("flip")):
            state = not state
        return ExecuteResult(output=state, side_effects={"is_on": state})


class StringCombineExecutor(NodeExecutor):
    type = NodeType.STRING_COMBINE
    has_pulse_output = True

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        parts = [ctx.inputs.get(f"input{i}") for i in range(1, 5)]
        combined = ctx.config.separator.join(as_text(p) for p in parts if not is_empty(p))
        return ExecuteResult(output=combined, pulse=True)


class ThreejsOptionsExecutor(NodeExecutor):
    """Combines camera, light and mouse settings into one options string."""

    type = NodeType.THREEJS_OPTIONS
    has_pulse_output = True

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        parts = []
        for port, heading in (("camera", "CAMERA"), ("light", "LIGHT"), ("mouse", "MOUSE")):
            value = ctx.inputs.get(port)
            if not is_empty(value):
                parts.append(f"{heading}: {as_text(value)}")
        return ExecuteResult(output="\n".join(parts), pulse=True)


class CommentExecutor(NodeExecutor):
    """Comments are normally unconnected; if wired, they pass their input through."""

    type = NodeType.COMMENT

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        return ExecuteResult(output=first_non_empty(ctx.inputs.values()) or "")
