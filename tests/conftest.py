"""Shared fixtures for flowgraph tests."""

import pytest

from flowgraph.executors import ExecutorRegistry, default_registry
from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.node import NodeSpec
from flowgraph.graph.snapshot import FlowSnapshot
from flowgraph.observability import clear_trace_context
from flowgraph.runtime.event_bus import EventBus


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user configuration, the process-wide registry and trace context out of tests."""
    monkeypatch.setenv("FLOWGRAPH_CONFIG", str(tmp_path / "no-config.json"))
    for env_var in (
        "OPENAI_API_KEY",
        "GOOGLE_GENERATIVE_AI_API_KEY",
        "ANTHROPIC_API_KEY",
        "FLOWGRAPH_PROVIDER_URL",
    ):
        monkeypatch.delenv(env_var, raising=False)
    default_registry.clear()
    clear_trace_context()
    yield
    default_registry.clear()
    clear_trace_context()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def registry():
    return ExecutorRegistry()


@pytest.fixture
def hello_snapshot():
    """in1 (text-input) → gen1 (text-generation) → out1 (preview-output)."""
    return FlowSnapshot(
        nodes=[
            NodeSpec(id="in1", type="text-input", data={"label": "Input", "input_value": "hello"}),
            NodeSpec(id="gen1", type="text-generation", data={"label": "Generate"}),
            NodeSpec(id="out1", type="preview-output", data={"label": "Output"}),
        ],
        edges=[
            EdgeSpec(
                id="e1",
                source="in1",
                source_handle="output",
                target="gen1",
                target_handle="prompt",
                data_type="string",
            ),
            EdgeSpec(
                id="e2",
                source="gen1",
                source_handle="output",
                target="out1",
                target_handle="input",
                data_type="string",
            ),
        ],
    )
