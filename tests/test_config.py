"""Tests for configuration loading."""

import json

import pytest

from flowgraph.config import (
    ProviderConfig,
    SchedulerConfig,
    get_api_keys,
    get_default_image_model,
    get_default_text_model,
    get_flowgraph_config,
    get_provider_base_url,
)


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "configuration.json"
    monkeypatch.setenv("FLOWGRAPH_CONFIG", str(path))

    def write(document):
        path.write_text(json.dumps(document))

    return write


def test_missing_file_gives_defaults():
    assert get_flowgraph_config() == {}
    assert get_default_text_model() == ("openai", "gpt-5.2")
    assert get_default_image_model() == ("openai", "gpt-image-1")
    assert get_provider_base_url() == "http://localhost:3000"

    config = SchedulerConfig()
    assert config.max_concurrency is None
    assert config.cancel_grace_seconds == 5.0
    assert config.strict_ports is False


def test_file_values_are_used(config_file):
    config_file(
        {
            "scheduler": {"max_concurrency": 4, "node_timeout_seconds": 30},
            "providers": {"base_url": "http://exec.local", "timeout_seconds": 90},
            "defaults": {"text": {"provider": "anthropic", "model": "claude-sonnet-4-5"}},
        }
    )

    scheduler = SchedulerConfig()
    provider = ProviderConfig()

    assert scheduler.max_concurrency == 4
    assert scheduler.node_timeout_seconds == 30
    assert provider.base_url == "http://exec.local"
    assert provider.timeout_seconds == 90
    assert get_default_text_model() == ("anthropic", "claude-sonnet-4-5")
    assert get_default_image_model() == ("openai", "gpt-image-1")


def test_incomplete_default_falls_back(config_file):
    config_file({"defaults": {"text": {"provider": "google"}}})

    assert get_default_text_model() == ("openai", "gpt-5.2")


def test_unreadable_file_is_ignored(tmp_path, monkeypatch):
    path = tmp_path / "broken.json"
    path.write_text("{oops")
    monkeypatch.setenv("FLOWGRAPH_CONFIG", str(path))

    assert get_flowgraph_config() == {}


def test_environment_overrides(config_file, monkeypatch):
    config_file({"providers": {"base_url": "http://exec.local"}})
    monkeypatch.setenv("FLOWGRAPH_PROVIDER_URL", "http://override")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert get_provider_base_url() == "http://override"
    assert get_api_keys() == {"openai": "sk-test"}


def test_explicit_arguments_win(config_file):
    config_file({"scheduler": {"max_concurrency": 4}})

    assert SchedulerConfig(max_concurrency=1).max_concurrency == 1
