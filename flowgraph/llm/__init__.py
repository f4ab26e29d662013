"""Provider call abstraction."""

from flowgraph.llm.mock import MockProviderClient
from flowgraph.llm.provider import (
    ProviderClient,
    ProviderError,
    ProviderErrorKind,
    ProviderRequest,
    ProviderResponse,
    ProviderTask,
)

__all__ = [
    "ProviderClient",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderRequest",
    "ProviderResponse",
    "ProviderTask",
    "MockProviderClient",
]

try:
    from flowgraph.llm.http import HttpProviderClient  # noqa: F401

    __all__.append("HttpProviderClient")
except ImportError:
    pass

try:
    from flowgraph.llm.litellm import LiteLLMProviderClient  # noqa: F401

    __all__.append("LiteLLMProviderClient")
except ImportError:
    pass
