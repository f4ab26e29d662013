"""Tests for structured logging and trace context propagation."""

import json
import logging

import pytest

from flowgraph.config import SchedulerConfig
from flowgraph.executors import FunctionExecutor
from flowgraph.executors.inputs import TextInputExecutor
from flowgraph.executors.output import PreviewOutputExecutor
from flowgraph.graph.scheduler import GraphScheduler
from flowgraph.observability import clear_trace_context, get_trace_context, set_trace_context
from flowgraph.observability.logging import HumanReadableFormatter, StructuredFormatter


def make_record(message="hello", **extra):
    record = logging.LogRecord("flowgraph.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_trace_context_merges_fields():
    set_trace_context(run_id="run_1", flow_id="demo")
    set_trace_context(node_id="gen1")

    assert get_trace_context() == {"run_id": "run_1", "flow_id": "demo", "node_id": "gen1"}
    clear_trace_context()
    assert get_trace_context() == {}


def test_structured_formatter_includes_context_and_extras():
    set_trace_context(run_id="run_1", node_id="gen1")

    line = StructuredFormatter().format(
        make_record("\033[32mdone\033[0m", provider="openai", model="gpt-5.2")
    )
    entry = json.loads(line)

    assert entry["message"] == "done"
    assert entry["level"] == "info"
    assert entry["run_id"] == "run_1"
    assert entry["node_id"] == "gen1"
    assert entry["provider"] == "openai"
    assert entry["model"] == "gpt-5.2"


def test_human_formatter_prefixes_ids():
    set_trace_context(run_id="run_abcdef123456", node_id="gen1")

    line = HumanReadableFormatter().format(make_record("working", event="node_started"))

    assert "[run:ef123456 | node:gen1]" in line
    assert line.endswith("working [node_started]")


@pytest.mark.asyncio
async def test_executors_see_run_and_node_context(registry, bus, hello_snapshot):
    seen = {}

    def capture(ctx):
        seen.update(get_trace_context())
        return "ok"

    registry.register(TextInputExecutor())
    registry.register(FunctionExecutor("text-generation", capture))
    registry.register(PreviewOutputExecutor())
    scheduler = GraphScheduler(
        registry=registry,
        event_bus=bus,
        config=SchedulerConfig(max_concurrency=None, node_timeout_seconds=None),
    )

    await scheduler.run(hello_snapshot, run_id="run_ctx", flow_id="demo")

    assert seen == {
        "run_id": "run_ctx",
        "flow_id": "demo",
        "node_id": "gen1",
        "node_type": "text-generation",
    }


@pytest.mark.asyncio
async def test_run_context_is_restored_after_run(registry, hello_snapshot):
    registry.register(TextInputExecutor())
    registry.register(FunctionExecutor("text-generation", lambda ctx: "ok"))
    registry.register(PreviewOutputExecutor())
    scheduler = GraphScheduler(registry=registry)
    set_trace_context(request_id="req_1")

    await scheduler.run(hello_snapshot, run_id="run_ctx", flow_id="demo")

    assert get_trace_context() == {"request_id": "req_1"}
