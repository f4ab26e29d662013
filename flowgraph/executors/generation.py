"""
Executors backed by an AI provider call.

All of them obtain the provider client from the execution context, build a
``ProviderRequest`` from resolved inputs plus node data and translate the
``ProviderResponse`` into an ``ExecuteResult``. Provider errors become node
errors; nothing here raises for an expected failure.
"""

import json
import logging
import re
from typing import Any

from flowgraph.config import (
    DEFAULT_IMAGE_MODEL,
    DEFAULT_IMAGE_PROVIDER,
    DEFAULT_TEXT_MODEL,
    DEFAULT_TEXT_PROVIDER,
)
from flowgraph.executors.base import ExecuteResult, ExecutionContext, NodeExecutor, as_text
from flowgraph.graph.inputs import is_empty
from flowgraph.graph.node import NodeType
from flowgraph.llm.provider import ProviderRequest, ProviderResponse, ProviderTask

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPTION_MODEL = "gpt-4o-transcribe"

REACT_STYLE_PROMPTS = {
    "simple": "Use clean, minimal styling with inline styles.",
    "tailwind": "Style the component with Tailwind CSS utility classes.",
    "playful": "Use bright colours, rounded corners and friendly typography.",
}

REACT_SYSTEM_PROMPT = (
    "You write a single self-contained React function component. "
    "Return only the component code, no explanations. {style}"
)

THREEJS_SYSTEM_PROMPT = (
    "You write a single React Three Fiber scene component named Scene. "
    "Use @react-three/fiber and @react-three/drei only. The camera, lights and "
    "controls are yours to set up. Return only the component code, no explanations."
)

_FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\n?|\n?```$")


def image_url(value: Any) -> str | None:
    """Extract a URL/data URL from an image value (plain string or image dict)."""
    if isinstance(value, dict):
        return value.get("value") or value.get("url")
    if isinstance(value, str) and value:
        return value
    return None


def strip_code_fences(text: str) -> str:
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def error_result(response: ProviderResponse) -> ExecuteResult:
    return ExecuteResult.fail(str(response.error))


class ProviderExecutor(NodeExecutor):
    """Shared plumbing for provider-backed executors."""

    def __init__(self, default_provider: str, default_model: str):
        self.default_provider = default_provider
        self.default_model = default_model

    def _target(self, ctx: ExecutionContext) -> tuple[str, str]:
        data = ctx.config
        provider = getattr(data, "provider", None) or self.default_provider
        model = getattr(data, "model", None) or self.default_model
        return provider, model

    async def _call(self, ctx: ExecutionContext, request: ProviderRequest, stream: bool):
        provider = ctx.require_provider()
        logger.info(
            f"Calling {request.provider}/{request.model} for {request.task}",
            extra={"provider": request.provider, "model": request.model},
        )
        return await provider.call(
            request,
            cancel_token=ctx.cancel_token,
            on_partial=ctx.emit_partial if stream else None,
        )


class TextGenerationExecutor(ProviderExecutor):
    type = NodeType.TEXT_GENERATION
    has_pulse_output = True
    should_track_downstream = True

    def __init__(
        self,
        default_provider: str = DEFAULT_TEXT_PROVIDER,
        default_model: str = DEFAULT_TEXT_MODEL,
    ):
        super().__init__(default_provider, default_model)

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        prompt = ctx.inputs.get("prompt")
        if is_empty(prompt):
            return ExecuteResult.fail("No prompt provided")

        provider, model = self._target(ctx)
        image = image_url(ctx.inputs.get("image"))
        request = ProviderRequest(
            task=ProviderTask.TEXT_GENERATION,
            provider=provider,
            model=model,
            prompt=as_text(prompt),
            system=as_text(ctx.inputs.get("system")),
            images=[image] if image else [],
        )
        response = await self._call(ctx, request, stream=True)
        if ctx.cancel_token.is_cancelled:
            return ExecuteResult.stopped()
        if not response.ok:
            return error_result(response)

        text = as_text(response.value)
        if not text.strip():
            return ExecuteResult.fail("Model returned an empty response")

        side_effects = {"reasoning": response.reasoning} if response.reasoning else {}
        return ExecuteResult(output=text, side_effects=side_effects, pulse=True)


class ImageGenerationExecutor(ProviderExecutor):
    type = NodeType.IMAGE_GENERATION
    has_pulse_output = True
    should_track_downstream = True

    def __init__(
        self,
        default_provider: str = DEFAULT_IMAGE_PROVIDER,
        default_model: str = DEFAULT_IMAGE_MODEL,
    ):
        super().__init__(default_provider, default_model)

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        instructions = ctx.config.prompt.strip()
        connected = as_text(ctx.inputs.get("prompt")).strip()
        prompt = "\n\n".join(part for part in (instructions, connected) if part)
        image = image_url(ctx.inputs.get("image"))
        if not prompt and not image:
            return ExecuteResult.fail("No prompt provided")

        provider, model = self._target(ctx)
        options = {"aspect_ratio": ctx.config.aspect_ratio} if ctx.config.aspect_ratio else {}
        request = ProviderRequest(
            task=ProviderTask.IMAGE_GENERATION,
            provider=provider,
            model=model,
            prompt=prompt,
            images=[image] if image else [],
            options=options,
        )
        response = await self._call(ctx, request, stream=False)
        if ctx.cancel_token.is_cancelled:
            return ExecuteResult.stopped()
        if not response.ok:
            return error_result(response)

        value = response.value
        if isinstance(value, str):
            value = {"type": "image", "value": value}
        if not image_url(value):
            return ExecuteResult.fail("Provider returned no image")
        return ExecuteResult(output=value, pulse=True)


class ReactComponentExecutor(ProviderExecutor):
    type = NodeType.REACT_COMPONENT
    has_pulse_output = True
    should_track_downstream = True

    def __init__(
        self,
        default_provider: str = DEFAULT_TEXT_PROVIDER,
        default_model: str = DEFAULT_TEXT_MODEL,
    ):
        super().__init__(default_provider, default_model)

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        prompt = ctx.inputs.get("prompt")
        if is_empty(prompt):
            return ExecuteResult.fail("No prompt provided")

        style = REACT_STYLE_PROMPTS.get(ctx.config.style_preset, REACT_STYLE_PROMPTS["simple"])
        system = REACT_SYSTEM_PROMPT.format(style=style)
        extra_system = as_text(ctx.inputs.get("system"))
        if extra_system:
            system = f"{system}\n\n{extra_system}"

        provider, model = self._target(ctx)
        request = ProviderRequest(
            task=ProviderTask.REACT_COMPONENT,
            provider=provider,
            model=model,
            prompt=as_text(prompt),
            system=system,
        )
        response = await self._call(ctx, request, stream=True)
        if ctx.cancel_token.is_cancelled:
            return ExecuteResult.stopped()
        if not response.ok:
            return error_result(response)

        code = strip_code_fences(as_text(response.value))
        if not code:
            return ExecuteResult.fail("Model returned no component code")
        return ExecuteResult(output={"type": "react", "code": code}, pulse=True)


class ThreejsSceneExecutor(ProviderExecutor):
    """
    Generates a React Three Fiber scene.

    A connected ``scene`` value is handed to the model as the ``sceneInput``
    variable and ``options`` (usually from a threejs-options node) as camera,
    light and mouse requirements.
    """

    type = NodeType.THREEJS_SCENE
    has_pulse_output = True
    should_track_downstream = True

    def __init__(
        self,
        default_provider: str = DEFAULT_TEXT_PROVIDER,
        default_model: str = DEFAULT_TEXT_MODEL,
    ):
        super().__init__(default_provider, default_model)

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        prompt = as_text(ctx.inputs.get("prompt")).strip()
        if not prompt:
            return ExecuteResult.fail("Scene description is required")

        sections = [prompt]
        scene = ctx.inputs.get("scene")
        if not is_empty(scene):
            sections.append(f"sceneInput:\n{as_text(scene)}")
        options = ctx.inputs.get("options")
        if not is_empty(options):
            sections.append(f"Scene options:\n{as_text(options)}")

        system = THREEJS_SYSTEM_PROMPT
        extra_system = as_text(ctx.inputs.get("system"))
        if extra_system:
            system = f"{system}\n\n{extra_system}"

        provider, model = self._target(ctx)
        request = ProviderRequest(
            task=ProviderTask.THREEJS_SCENE,
            provider=provider,
            model=model,
            prompt="\n\n".join(sections),
            system=system,
        )
        response = await self._call(ctx, request, stream=True)
        if ctx.cancel_token.is_cancelled:
            return ExecuteResult.stopped()
        if not response.ok:
            return error_result(response)

        code = strip_code_fences(as_text(response.value))
        if not code:
            return ExecuteResult.fail("Model returned an empty response")
        return ExecuteResult(output={"type": "threejs", "code": code}, pulse=True)


class AudioTranscriptionExecutor(ProviderExecutor):
    type = NodeType.AUDIO_TRANSCRIPTION
    has_pulse_output = True

    def __init__(
        self,
        default_provider: str = DEFAULT_TEXT_PROVIDER,
        default_model: str = DEFAULT_TRANSCRIPTION_MODEL,
    ):
        super().__init__(default_provider, default_model)

    async def execute(self, ctx: ExecutionContext) -> ExecuteResult:
        audio = ctx.inputs.get("audio")
        if is_empty(audio):
            return ExecuteResult.fail("No audio input connected")
        if isinstance(audio, str):
            try:
                audio = json.loads(audio)
            except json.JSONDecodeError:
                return ExecuteResult.fail("Invalid audio input")
        if not isinstance(audio, dict) or audio.get("type") != "buffer" or not audio.get("buffer"):
            return ExecuteResult.fail("Invalid audio input: expected a recorded buffer")

        provider, model = self._target(ctx)
        language = as_text(ctx.inputs.get("language"))
        request = ProviderRequest(
            task=ProviderTask.AUDIO_TRANSCRIPTION,
            provider=provider,
            model=model,
            audio=audio,
            options={"language": language} if language else {},
        )
        response = await self._call(ctx, request, stream=False)
        if ctx.cancel_token.is_cancelled:
            return ExecuteResult.stopped()
        if not response.ok:
            return error_result(response)
        return ExecuteResult(output=as_text(response.value), pulse=True)
