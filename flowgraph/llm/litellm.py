"""
LiteLLM provider client.

Calls providers directly through LiteLLM's unified async API instead of
going through an execute endpoint. Provider names used by the editor map
onto LiteLLM model prefixes ("google" becomes "gemini").
"""

import base64
import logging
from typing import Any

import litellm

from flowgraph.config import ProviderConfig
from flowgraph.llm.provider import (
    PartialCallback,
    ProviderClient,
    ProviderError,
    ProviderErrorKind,
    ProviderRequest,
    ProviderResponse,
    ProviderTask,
)
from flowgraph.runtime.cancellation import CancellationToken

logger = logging.getLogger(__name__)

LITELLM_PREFIXES = {"google": "gemini"}


def litellm_model(provider: str, model: str) -> str:
    """Build the LiteLLM model string, e.g. ("google", "gemini-3-pro-preview")."""
    return f"{LITELLM_PREFIXES.get(provider, provider)}/{model}"


def classify_exception(error: Exception) -> ProviderErrorKind:
    """Map a LiteLLM exception onto a provider error kind."""
    if isinstance(error, litellm.Timeout):
        return ProviderErrorKind.TIMEOUT
    if isinstance(error, litellm.RateLimitError):
        return ProviderErrorKind.RATE_LIMIT
    if isinstance(error, litellm.AuthenticationError):
        return ProviderErrorKind.INVALID_CREDENTIALS
    return ProviderErrorKind.PROVIDER_ERROR


def build_messages(request: ProviderRequest) -> list[dict[str, Any]]:
    """Build chat messages, attaching images as image_url content parts."""
    messages: list[dict[str, Any]] = []
    if request.system:
        messages.append({"role": "system", "content": request.system})
    if request.images:
        content: list[dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        for image in request.images:
            content.append({"type": "image_url", "image_url": {"url": image}})
        messages.append({"role": "user", "content": content})
    else:
        messages.append({"role": "user", "content": request.prompt})
    return messages


class LiteLLMProviderClient(ProviderClient):
    """Provider client that calls LiteLLM for every task."""

    def __init__(self, config: ProviderConfig | None = None):
        self.config = config or ProviderConfig()

    async def call(
        self,
        request: ProviderRequest,
        *,
        cancel_token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> ProviderResponse:
        try:
            if request.task == ProviderTask.IMAGE_GENERATION:
                return await self._generate_image(request)
            if request.task == ProviderTask.AUDIO_TRANSCRIPTION:
                return await self._transcribe(request)
            return await self._complete(request, cancel_token, on_partial)
        except Exception as e:
            kind = classify_exception(e)
            logger.warning(
                f"LiteLLM call failed ({kind}): {e}",
                extra={"provider": request.provider, "model": request.model},
            )
            return ProviderResponse(error=ProviderError(kind, str(e)), model=request.model)

    def _common_kwargs(self, request: ProviderRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": litellm_model(request.provider, request.model),
            "timeout": self.config.timeout_seconds,
        }
        api_key = self.config.api_keys.get(request.provider)
        if api_key:
            kwargs["api_key"] = api_key
        return kwargs

    async def _complete(
        self,
        request: ProviderRequest,
        cancel_token: CancellationToken | None,
        on_partial: PartialCallback | None,
    ) -> ProviderResponse:
        kwargs = self._common_kwargs(request)
        kwargs.update(request.options)
        messages = build_messages(request)

        if on_partial is None:
            response = await litellm.acompletion(messages=messages, **kwargs)
            content = response.choices[0].message.content or ""
            return ProviderResponse(value=content, model=request.model, raw=response)

        text = ""
        stream = await litellm.acompletion(messages=messages, stream=True, **kwargs)
        async for chunk in stream:
            if cancel_token is not None and cancel_token.is_cancelled:
                logger.info("Stopping LiteLLM stream: run cancelled")
                break
            delta = chunk.choices[0].delta.content or ""
            if delta:
                text += delta
                await on_partial(text)
        return ProviderResponse(value=text, model=request.model)

    async def _generate_image(self, request: ProviderRequest) -> ProviderResponse:
        kwargs = self._common_kwargs(request)
        kwargs.update(request.options)
        response = await litellm.aimage_generation(prompt=request.prompt, **kwargs)
        item = response.data[0]
        if getattr(item, "b64_json", None):
            url = f"data:image/png;base64,{item.b64_json}"
        else:
            url = item.url
        return ProviderResponse(
            value={"type": "image", "value": url}, model=request.model, raw=response
        )

    async def _transcribe(self, request: ProviderRequest) -> ProviderResponse:
        audio = request.audio or {}
        mime_type = audio.get("mime_type", "audio/webm")
        extension = mime_type.split("/")[-1].split(";")[0] or "webm"
        data = base64.b64decode(audio.get("buffer", ""))
        kwargs = self._common_kwargs(request)
        if request.options.get("language"):
            kwargs["language"] = request.options["language"]
        response = await litellm.atranscription(
            file=(f"audio.{extension}", data, mime_type), **kwargs
        )
        return ProviderResponse(value=response.text, model=request.model, raw=response)
