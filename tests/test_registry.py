"""Tests for ExecutorRegistry."""

import pytest

from flowgraph.errors import DuplicateExecutorError
from flowgraph.executors import (
    FunctionExecutor,
    default_registry,
    register_builtin_executors,
)
from flowgraph.executors.inputs import TextInputExecutor
from flowgraph.graph.node import NodeType


class DuckExecutor:
    """Satisfies the executor shape without subclassing NodeExecutor."""

    type = "switch"
    has_pulse_output = "yes"
    should_track_downstream = 1

    async def execute(self, ctx):
        return None


def test_register_and_lookup(registry):
    executor = TextInputExecutor()

    registry.register(executor)

    assert registry.get("text-input") is executor
    assert registry.get(NodeType.TEXT_INPUT) is executor
    assert registry.has("text-input")
    assert "text-input" in registry
    assert len(registry) == 1
    assert registry.list_types() == ["text-input"]


def test_unknown_type_returns_none(registry):
    assert registry.get("spreadsheet") is None
    assert not registry.has("spreadsheet")
    assert not registry.has_pulse_output("spreadsheet")


def test_duplicate_registration_is_rejected(registry):
    registry.register(TextInputExecutor())

    with pytest.raises(DuplicateExecutorError) as exc_info:
        registry.register(FunctionExecutor("text-input", lambda ctx: "other"))

    assert exc_info.value.node_type == "text-input"


def test_capability_flags(registry):
    registry.register(FunctionExecutor("text-generation", lambda ctx: "", has_pulse_output=True))
    registry.register(FunctionExecutor("comment", lambda ctx: "", should_track_downstream=True))

    assert registry.has_pulse_output("text-generation")
    assert not registry.should_track_downstream("text-generation")
    assert registry.should_track_downstream("comment")
    assert not registry.has_pulse_output("comment")


def test_truthy_non_bool_flags_do_not_count(registry):
    registry.register(DuckExecutor())

    assert registry.get("switch") is not None
    assert not registry.has_pulse_output("switch")
    assert not registry.should_track_downstream("switch")


def test_clear(registry):
    registry.register(TextInputExecutor())

    registry.clear()

    assert len(registry) == 0
    assert registry.get("text-input") is None


def test_builtins_cover_every_node_type():
    register_builtin_executors()

    assert set(default_registry.list_types()) == {t.value for t in NodeType}
    assert default_registry.has_pulse_output("text-generation")
    assert default_registry.should_track_downstream("text-generation")
    assert not default_registry.has_pulse_output("preview-output")


def test_builtins_registered_twice_conflict(registry):
    register_builtin_executors(registry)

    with pytest.raises(DuplicateExecutorError):
        register_builtin_executors(registry)
