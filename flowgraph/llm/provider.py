"""Provider call abstraction for pluggable AI backends.

Executors never talk to a provider SDK directly. They receive a
``ProviderClient`` through their execution context and get back a
``ProviderResponse`` holding either a value or a structured error.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowgraph.runtime.cancellation import CancellationToken


class ProviderTask(StrEnum):
    """What the provider is asked to produce."""

    TEXT_GENERATION = "text-generation"
    IMAGE_GENERATION = "image-generation"
    REACT_COMPONENT = "react-component"
    THREEJS_SCENE = "threejs-scene"
    AUDIO_TRANSCRIPTION = "audio-transcription"
    AI_LOGIC = "ai-logic"


class ProviderErrorKind(StrEnum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    INVALID_CREDENTIALS = "invalid_credentials"
    PROVIDER_ERROR = "provider_error"


@dataclass
class ProviderError:
    """Structured failure returned by a provider call."""

    kind: ProviderErrorKind
    message: str
    retry_after: float | None = None

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass
class ProviderRequest:
    """A single call to a named provider/model."""

    task: ProviderTask
    provider: str
    model: str
    prompt: str = ""
    system: str = ""
    images: list[str] = field(default_factory=list)  # URLs or data URLs
    audio: dict[str, Any] | None = None  # {"type": "buffer", "buffer": b64, "mime_type": ...}
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderResponse:
    """Result of a provider call: a value or an error, never both."""

    value: Any = None
    error: ProviderError | None = None
    reasoning: str | None = None
    model: str = ""
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


# Called with the accumulated text so far while a response streams in
PartialCallback = Callable[[str], Awaitable[None]]


class ProviderClient(ABC):
    """
    Abstract provider client - plug in any AI backend.

    Implementations should handle:
    - Authentication
    - Request/response formatting for the backend
    - Mapping failures onto ``ProviderErrorKind`` instead of raising
    - Observing ``cancel_token`` while streaming
    """

    @abstractmethod
    async def call(
        self,
        request: ProviderRequest,
        *,
        cancel_token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> ProviderResponse:
        """
        Execute a provider request.

        Args:
            request: What to ask, and of which provider/model
            cancel_token: Run cancellation signal, checked between chunks
            on_partial: Receives accumulated text for streaming tasks

        Returns:
            ProviderResponse with either ``value`` or ``error`` set
        """
        pass

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
