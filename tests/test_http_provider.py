"""Tests for the httpx-backed provider client."""

import json

import httpx
import pytest

from flowgraph.config import ProviderConfig
from flowgraph.llm.http import EXECUTE_PATH, HttpProviderClient, classify_status
from flowgraph.llm.provider import ProviderErrorKind, ProviderRequest, ProviderTask
from flowgraph.runtime.cancellation import CancellationToken


def make_client(handler, api_keys=None) -> HttpProviderClient:
    config = ProviderConfig(
        base_url="http://provider.test", timeout_seconds=5, api_keys=api_keys or {}
    )
    transport = httpx.MockTransport(handler)
    return HttpProviderClient(
        config, httpx.AsyncClient(base_url=config.base_url, transport=transport)
    )


def text_request(**kwargs) -> ProviderRequest:
    return ProviderRequest(
        task=kwargs.pop("task", ProviderTask.TEXT_GENERATION),
        provider=kwargs.pop("provider", "openai"),
        model=kwargs.pop("model", "gpt-5.2"),
        prompt=kwargs.pop("prompt", "Hi"),
        **kwargs,
    )


@pytest.mark.parametrize(
    "status, kind",
    [
        (401, ProviderErrorKind.INVALID_CREDENTIALS),
        (403, ProviderErrorKind.INVALID_CREDENTIALS),
        (429, ProviderErrorKind.RATE_LIMIT),
        (408, ProviderErrorKind.TIMEOUT),
        (504, ProviderErrorKind.TIMEOUT),
        (500, ProviderErrorKind.PROVIDER_ERROR),
    ],
)
def test_classify_status(status, kind):
    assert classify_status(status) == kind


@pytest.mark.asyncio
async def test_json_response():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"output": "Hello", "reasoning": "thought", "model": "m"})

    async with make_client(handler, api_keys={"openai": "sk-test"}) as client:
        response = await client.call(text_request(system="Be brief"))

    assert response.ok
    assert response.value == "Hello"
    assert response.reasoning == "thought"
    assert response.model == "m"
    path, payload = seen[0]
    assert path == EXECUTE_PATH
    assert payload["type"] == "text-generation"
    assert payload["system"] == "Be brief"
    assert payload["apiKeys"] == {"openai": "sk-test"}


@pytest.mark.asyncio
async def test_keys_for_other_providers_are_not_sent():
    payloads = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(200, json={"output": "ok"})

    async with make_client(handler, api_keys={"google": "g-key"}) as client:
        await client.call(text_request())

    assert "apiKeys" not in payloads[0]


@pytest.mark.asyncio
async def test_error_body_and_retry_after():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429, json={"error": "Too many requests"}, headers={"retry-after": "3"}
        )

    async with make_client(handler) as client:
        response = await client.call(text_request())

    assert not response.ok
    assert response.error.kind == ProviderErrorKind.RATE_LIMIT
    assert response.error.message == "Too many requests"
    assert response.error.retry_after == 3.0


@pytest.mark.asyncio
async def test_timeout_becomes_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with make_client(handler) as client:
        response = await client.call(text_request())

    assert response.error.kind == ProviderErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_connection_failure_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with make_client(handler) as client:
        response = await client.call(text_request())

    assert response.error.kind == ProviderErrorKind.PROVIDER_ERROR


@pytest.mark.asyncio
async def test_streaming_reports_accumulated_partials():
    partials = []

    async def on_partial(text):
        partials.append(text)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"Hello world")

    async with make_client(handler) as client:
        response = await client.call(text_request(), on_partial=on_partial)

    assert response.value == "Hello world"
    assert partials[-1] == "Hello world"


@pytest.mark.asyncio
async def test_streaming_error_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "Invalid API key"})

    async def on_partial(text):
        raise AssertionError("no partials expected")

    async with make_client(handler) as client:
        response = await client.call(text_request(), on_partial=on_partial)

    assert response.error.kind == ProviderErrorKind.INVALID_CREDENTIALS
    assert response.error.message == "Invalid API key"


@pytest.mark.asyncio
async def test_cancelled_stream_stops_reading():
    partials = []
    token = CancellationToken()
    token.cancel()

    async def on_partial(text):
        partials.append(text)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"never shown")

    async with make_client(handler) as client:
        response = await client.call(text_request(), cancel_token=token, on_partial=on_partial)

    assert partials == []
    assert response.value == ""


@pytest.mark.asyncio
async def test_image_task_is_not_streamed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"output": {"type": "image", "value": "https://img"}})

    async def on_partial(text):
        raise AssertionError("image generation does not stream")

    async with make_client(handler) as client:
        response = await client.call(
            text_request(task=ProviderTask.IMAGE_GENERATION, model="gpt-image-1"),
            on_partial=on_partial,
        )

    assert response.value == {"type": "image", "value": "https://img"}
