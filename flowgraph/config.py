"""Shared flowgraph configuration utilities.

Centralises reading of ~/.flowgraph/configuration.json so the scheduler,
the provider clients and embedding applications share one implementation.

Example configuration file::

    {
      "scheduler": {"max_concurrency": 4, "node_timeout_seconds": 120},
      "providers": {"base_url": "http://localhost:3000", "timeout_seconds": 90},
      "defaults": {
        "text": {"provider": "anthropic", "model": "claude-sonnet-4-5"},
        "image": {"provider": "openai", "model": "gpt-image-1"}
      }
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWGRAPH_CONFIG_FILE = Path.home() / ".flowgraph" / "configuration.json"

DEFAULT_TEXT_PROVIDER = "openai"
DEFAULT_TEXT_MODEL = "gpt-5.2"
DEFAULT_IMAGE_PROVIDER = "openai"
DEFAULT_IMAGE_MODEL = "gpt-image-1"
DEFAULT_BASE_URL = "http://localhost:3000"

# Environment variable holding the API key for each provider
PROVIDER_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_GENERATIVE_AI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def get_config_path() -> Path:
    """Return the configuration file path, honouring FLOWGRAPH_CONFIG."""
    override = os.environ.get("FLOWGRAPH_CONFIG")
    return Path(override) if override else FLOWGRAPH_CONFIG_FILE


def get_flowgraph_config() -> dict[str, Any]:
    """Load flowgraph configuration. Missing or unreadable files yield {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _section(name: str) -> dict[str, Any]:
    value = get_flowgraph_config().get(name, {})
    return value if isinstance(value, dict) else {}


def get_default_text_model() -> tuple[str, str]:
    """Return the (provider, model) used when a text node does not pick one."""
    text = _section("defaults").get("text", {})
    if text.get("provider") and text.get("model"):
        return text["provider"], text["model"]
    return DEFAULT_TEXT_PROVIDER, DEFAULT_TEXT_MODEL


def get_default_image_model() -> tuple[str, str]:
    """Return the (provider, model) used when an image node does not pick one."""
    image = _section("defaults").get("image", {})
    if image.get("provider") and image.get("model"):
        return image["provider"], image["model"]
    return DEFAULT_IMAGE_PROVIDER, DEFAULT_IMAGE_MODEL


def get_provider_base_url() -> str:
    """Return the execute endpoint base URL for HttpProviderClient."""
    return (
        os.environ.get("FLOWGRAPH_PROVIDER_URL")
        or _section("providers").get("base_url")
        or DEFAULT_BASE_URL
    )


def get_api_keys() -> dict[str, str]:
    """Collect provider API keys from the environment, keyed by provider name."""
    keys = {}
    for provider, env_var in PROVIDER_KEY_ENV_VARS.items():
        value = os.environ.get(env_var)
        if value:
            keys[provider] = value
    return keys


def _get_scheduler_setting(name: str, default: Any) -> Any:
    return _section("scheduler").get(name, default)


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass
class SchedulerConfig:
    """Scheduler knobs loaded from the "scheduler" section."""

    # None = launch every eligible node at once
    max_concurrency: int | None = field(
        default_factory=lambda: _get_scheduler_setting("max_concurrency", None)
    )
    node_timeout_seconds: float | None = field(
        default_factory=lambda: _get_scheduler_setting("node_timeout_seconds", None)
    )
    # How long running nodes may take to settle after cancellation
    cancel_grace_seconds: float = field(
        default_factory=lambda: _get_scheduler_setting("cancel_grace_seconds", 5.0)
    )
    # Unknown ports are errors when strict, warnings otherwise
    strict_ports: bool = field(
        default_factory=lambda: _get_scheduler_setting("strict_ports", False)
    )
    use_cache: bool = field(default_factory=lambda: _get_scheduler_setting("use_cache", False))


@dataclass
class ProviderConfig:
    """Provider client settings loaded from the "providers" section."""

    base_url: str = field(default_factory=get_provider_base_url)
    timeout_seconds: float = field(
        default_factory=lambda: _section("providers").get("timeout_seconds", 60.0)
    )
    api_keys: dict[str, str] = field(default_factory=get_api_keys)
