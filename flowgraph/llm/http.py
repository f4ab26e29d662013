"""
HTTP provider client.

Talks to an execute endpoint that fronts the real providers. Requests are
JSON; responses are either a JSON body ``{"output": ..., "reasoning": ...}``
or, for streaming text tasks, a plain text body streamed in chunks. Errors
come back as ``{"error": "..."}`` with a non-2xx status.
"""

import logging
from typing import Any

import httpx

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

EXECUTE_PATH = "/api/execute"

STREAMING_TASKS = frozenset(
    {
        ProviderTask.TEXT_GENERATION,
        ProviderTask.REACT_COMPONENT,
        ProviderTask.THREEJS_SCENE,
        ProviderTask.AI_LOGIC,
    }
)


def classify_status(status_code: int) -> ProviderErrorKind:
    """Map an HTTP status onto a provider error kind."""
    if status_code in (401, 403):
        return ProviderErrorKind.INVALID_CREDENTIALS
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMIT
    if status_code in (408, 504):
        return ProviderErrorKind.TIMEOUT
    return ProviderErrorKind.PROVIDER_ERROR


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


class HttpProviderClient(ProviderClient):
    """
    Provider client backed by httpx.

    Example:
        async with HttpProviderClient() as provider:
            response = await provider.call(ProviderRequest(...))
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or ProviderConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
        )

    async def __aenter__(self) -> "HttpProviderClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _payload(self, request: ProviderRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": str(request.task),
            "provider": request.provider,
            "model": request.model,
            "prompt": request.prompt,
            "system": request.system,
            "images": request.images,
            "options": request.options,
        }
        if request.audio is not None:
            payload["audio"] = request.audio
        key = self.config.api_keys.get(request.provider)
        if key:
            payload["apiKeys"] = {request.provider: key}
        return payload

    async def call(
        self,
        request: ProviderRequest,
        *,
        cancel_token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> ProviderResponse:
        payload = self._payload(request)
        try:
            if on_partial is not None and request.task in STREAMING_TASKS:
                return await self._call_streaming(request, payload, cancel_token, on_partial)
            return await self._call_json(request, payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Provider call timed out: {request.provider}/{request.model}")
            return ProviderResponse(
                error=ProviderError(ProviderErrorKind.TIMEOUT, str(e) or "Request timed out"),
                model=request.model,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Provider call failed: {e}")
            return ProviderResponse(
                error=ProviderError(ProviderErrorKind.PROVIDER_ERROR, str(e)),
                model=request.model,
            )

    async def _call_json(
        self, request: ProviderRequest, payload: dict[str, Any]
    ) -> ProviderResponse:
        response = await self._client.post(EXECUTE_PATH, json=payload)
        if response.status_code >= 400:
            return self._error_response(request, response)

        body = response.json()
        if not isinstance(body, dict):
            return ProviderResponse(value=body, model=request.model, raw=body)
        return ProviderResponse(
            value=body.get("output"),
            reasoning=body.get("reasoning"),
            model=body.get("model", request.model),
            raw=body,
        )

    async def _call_streaming(
        self,
        request: ProviderRequest,
        payload: dict[str, Any],
        cancel_token: CancellationToken | None,
        on_partial: PartialCallback,
    ) -> ProviderResponse:
        text = ""
        async with self._client.stream("POST", EXECUTE_PATH, json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                return self._error_response(request, response)
            async for chunk in response.aiter_text():
                if cancel_token is not None and cancel_token.is_cancelled:
                    logger.info("Stopping provider stream: run cancelled")
                    break
                text += chunk
                await on_partial(text)
        return ProviderResponse(value=text, model=request.model)

    def _error_response(
        self, request: ProviderRequest, response: httpx.Response
    ) -> ProviderResponse:
        kind = classify_status(response.status_code)
        message = _error_message(response)
        logger.warning(
            f"Provider returned {response.status_code} for {request.provider}/{request.model}",
            extra={"provider": request.provider, "model": request.model},
        )
        return ProviderResponse(
            error=ProviderError(kind, message, retry_after=_retry_after(response)),
            model=request.model,
        )
