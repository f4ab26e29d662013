"""Mock provider client for tests and offline runs."""

import inspect
from collections.abc import Callable
from typing import Any

from flowgraph.llm.provider import (
    PartialCallback,
    ProviderClient,
    ProviderError,
    ProviderRequest,
    ProviderResponse,
)
from flowgraph.runtime.cancellation import CancellationToken

Responder = Callable[[ProviderRequest], Any]


class MockProviderClient(ProviderClient):
    """
    Canned-response provider.

    ``responses`` maps a task (e.g. "text-generation") to a value, or is a
    callable receiving the request. A ``ProviderError`` value is returned as
    the response error. Every request is recorded in ``calls``.

    Example:
        provider = MockProviderClient({"text-generation": "Hello!"})
        provider = MockProviderClient(lambda req: req.prompt.upper())
    """

    def __init__(
        self,
        responses: dict[str, Any] | Responder | None = None,
        stream_chunks: int = 1,
    ):
        self.responses = responses if responses is not None else {}
        self.stream_chunks = max(1, stream_chunks)
        self.calls: list[ProviderRequest] = []

    async def call(
        self,
        request: ProviderRequest,
        *,
        cancel_token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> ProviderResponse:
        self.calls.append(request)

        if callable(self.responses):
            value = self.responses(request)
            if inspect.isawaitable(value):
                value = await value
        else:
            value = self.responses.get(request.task, "")

        if isinstance(value, ProviderError):
            return ProviderResponse(error=value, model=request.model)
        if isinstance(value, ProviderResponse):
            return value

        if on_partial is not None and isinstance(value, str) and value:
            step = max(1, len(value) // self.stream_chunks)
            for end in range(step, len(value) + step, step):
                if cancel_token is not None and cancel_token.is_cancelled:
                    break
                await on_partial(value[: min(end, len(value))])

        return ProviderResponse(value=value, model=request.model)
