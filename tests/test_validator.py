"""Tests for ChangeValidator diagnostics and retry guidance."""

import pytest

from flowgraph.executors import ExecutorRegistry, FunctionExecutor
from flowgraph.graph.changes import AddEdge, AddNode, FlowChanges, RemoveEdge, RemoveNode
from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.node import NodeSpec, NodeType
from flowgraph.graph.ports import get_port_schema
from flowgraph.graph.snapshot import FlowSnapshot, apply_changes
from flowgraph.graph.validator import (
    ChangeProposal,
    ChangeValidator,
    DiagnosticKind,
    Severity,
    Verdict,
)


def node(node_id, node_type="text-generation", **data):
    data.setdefault("label", node_id)
    return NodeSpec(id=node_id, type=node_type, data=data)


def edge(edge_id, source, target, **kwargs):
    return EdgeSpec(id=edge_id, source=source, target=target, **kwargs)


@pytest.fixture
def validator():
    return ChangeValidator()


class TestReferences:
    def test_valid_insertion_passes(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            RemoveEdge(edge_id="e2"),
            AddNode(node=node("sum1")),
            AddEdge(edge=edge("e3", "gen1", "sum1", target_handle="prompt", data_type="string")),
            AddEdge(edge=edge("e4", "sum1", "out1", target_handle="input", data_type="string")),
        )

        result = validator.validate(hello_snapshot, changes)

        assert result.verdict == Verdict.PASSED
        assert result.errors == []
        assert result.retry_context is None

    def test_removing_node_without_its_edges_is_dangling(self, validator, hello_snapshot):
        changes = FlowChanges.of(RemoveNode(node_id="gen1"))

        result = validator.validate(hello_snapshot, changes)

        assert not result.passed
        dangling = [d for d in result.diagnostics if d.kind == DiagnosticKind.DANGLING_EDGE]
        assert len(dangling) == 1
        assert dangling[0].target_id == "gen1"
        assert dangling[0].related_ids == ["e1", "e2"]
        assert "e1" in dangling[0].message and "e2" in dangling[0].message

    def test_removing_node_with_its_edges_passes(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            RemoveEdge(edge_id="e1"),
            RemoveEdge(edge_id="e2"),
            RemoveNode(node_id="gen1"),
        )

        assert validator.validate(hello_snapshot, changes).passed

    def test_edges_removed_after_their_node_are_dangling(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            RemoveNode(node_id="gen1"),
            RemoveEdge(edge_id="e1"),
            RemoveEdge(edge_id="e2"),
        )

        result = validator.validate(hello_snapshot, changes)

        assert not result.passed
        assert [(d.kind, d.action_index) for d in result.errors] == [
            (DiagnosticKind.DANGLING_EDGE, 0)
        ]
        assert result.errors[0].related_ids == ["e1", "e2"]

    def test_passing_removal_batch_applies(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            RemoveEdge(edge_id="e1"),
            RemoveEdge(edge_id="e2"),
            RemoveNode(node_id="gen1"),
        )

        assert validator.validate(hello_snapshot, changes).passed
        new, _ = apply_changes(hello_snapshot, changes)
        assert [n.id for n in new.nodes] == ["in1", "out1"]
        assert new.edges == []

    def test_edge_to_node_added_later_is_dangling_reference(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddEdge(edge=edge("e3", "gen1", "late", target_handle="prompt")),
            AddNode(node=node("late")),
        )

        result = validator.validate(hello_snapshot, changes)

        assert DiagnosticKind.DANGLING_REFERENCE in result.kinds()
        diagnostic = result.errors[0]
        assert diagnostic.action_index == 0
        assert diagnostic.related_ids == ["late"]

    def test_duplicate_and_missing_ids(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddNode(node=node("gen1")),
            AddEdge(edge=edge("e1", "in1", "out1")),
            RemoveNode(node_id="ghost"),
            RemoveEdge(edge_id="nope"),
        )

        result = validator.validate(hello_snapshot, changes)

        assert result.kinds() >= {
            DiagnosticKind.DUPLICATE_NODE_ID,
            DiagnosticKind.DUPLICATE_EDGE_ID,
            DiagnosticKind.MISSING_NODE,
            DiagnosticKind.MISSING_EDGE,
        }
        assert [d.action_index for d in result.errors] == [0, 1, 2, 3]


class TestPorts:
    def test_type_mismatch_is_reported(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddNode(node=node("img1", "image-generation")),
            AddEdge(edge=edge("e3", "img1", "gen1", target_handle="system")),
        )

        result = validator.validate(hello_snapshot, changes)

        mismatches = [d for d in result.errors if d.kind == DiagnosticKind.TYPE_MISMATCH]
        assert len(mismatches) == 1
        assert "expects string" in mismatches[0].message

    def test_declared_type_must_match_source(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddNode(node=node("gen2")),
            AddEdge(edge=edge("e3", "in1", "gen2", target_handle="prompt", data_type="image")),
        )

        result = validator.validate(hello_snapshot, changes)

        assert DiagnosticKind.TYPE_MISMATCH in result.kinds()

    def test_allowed_coercion_passes(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddNode(node=node("out2", "preview-output")),
            AddEdge(edge=edge("e3", "gen1", "out2", data_type="string")),
        )

        assert validator.validate(hello_snapshot, changes).passed

    def test_unknown_port_warns_unless_strict(self, hello_snapshot):
        changes = FlowChanges.of(
            AddNode(node=node("gen2")),
            AddEdge(edge=edge("e3", "in1", "gen2", target_handle="context")),
        )

        lenient = ChangeValidator().validate(hello_snapshot, changes)
        strict = ChangeValidator(strict_ports=True).validate(hello_snapshot, changes)

        assert lenient.passed
        assert lenient.warnings[0].kind == DiagnosticKind.UNKNOWN_PORT
        assert not strict.passed
        assert strict.errors[0].kind == DiagnosticKind.UNKNOWN_PORT

    def test_duplicate_connection(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddEdge(edge=edge("e3", "in1", "gen1", target_handle="prompt")),
        )

        result = validator.validate(hello_snapshot, changes)

        assert result.errors[0].kind == DiagnosticKind.DUPLICATE_EDGE
        assert result.errors[0].related_ids == ["e1"]


class TestGraphShape:
    def test_new_cycle_is_rejected(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddEdge(edge=edge("e3", "gen1", "in1")),
        )

        result = validator.validate(hello_snapshot, changes)

        cycles = [d for d in result.errors if d.kind == DiagnosticKind.CYCLE]
        assert cycles and set(cycles[0].related_ids) == {"in1", "gen1"}

    def test_second_cycle_is_rejected_when_flow_already_has_one(self, validator, hello_snapshot):
        cyclic = FlowSnapshot(
            nodes=hello_snapshot.nodes,
            edges=[*hello_snapshot.edges, edge("back", "gen1", "in1")],
        )
        changes = FlowChanges.of(
            AddNode(node=node("a")),
            AddNode(node=node("b")),
            AddEdge(edge=edge("ab", "a", "b", target_handle="prompt")),
            AddEdge(edge=edge("ba", "b", "a", target_handle="prompt")),
        )

        result = validator.validate(cyclic, changes)

        cycles = [d for d in result.errors if d.kind == DiagnosticKind.CYCLE]
        assert len(cycles) == 1
        assert set(cycles[0].related_ids) == {"a", "b"}

    def test_existing_cycle_alone_is_not_blamed_on_the_batch(self, validator, hello_snapshot):
        cyclic = FlowSnapshot(
            nodes=hello_snapshot.nodes,
            edges=[*hello_snapshot.edges, edge("back", "gen1", "in1")],
        )

        result = validator.validate(cyclic, FlowChanges.of(RemoveEdge(edge_id="e2")))

        assert DiagnosticKind.CYCLE not in result.kinds()

    def test_annotation_edges_are_not_checked(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddEdge(edge=edge("note", "out1", "in1", annotation=True)),
        )

        assert validator.validate(hello_snapshot, changes).passed

    def test_orphan_and_missing_label_are_warnings(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddNode(node=NodeSpec(id="lonely", type="text-generation")),
            AddNode(node=NodeSpec(id="note", type="comment", data={"label": "Note"})),
        )

        result = validator.validate(hello_snapshot, changes)

        assert result.passed
        kinds = [(d.kind, d.target_id) for d in result.warnings]
        assert (DiagnosticKind.ORPHAN_NODE, "lonely") in kinds
        assert (DiagnosticKind.MISSING_FIELD, "lonely") in kinds
        assert (DiagnosticKind.MISSING_FIELD, "note") in kinds
        assert (DiagnosticKind.ORPHAN_NODE, "note") not in kinds

    def test_unknown_model_warns(self, validator, hello_snapshot):
        changes = FlowChanges.of(
            AddNode(node=node("gen2", provider="openai", model="gpt-99")),
            AddEdge(edge=edge("e3", "in1", "gen2", target_handle="prompt")),
        )

        result = validator.validate(hello_snapshot, changes)

        assert result.passed
        assert [d.kind for d in result.warnings] == [DiagnosticKind.UNKNOWN_MODEL]
        assert result.warnings[0].severity == Severity.WARNING

    def test_unregistered_type_with_registry(self, hello_snapshot):
        registry = ExecutorRegistry()
        registry.register(FunctionExecutor("text-generation", lambda ctx: ""))
        changes = FlowChanges.of(
            AddNode(node=node("sw1", "switch")),
        )

        result = ChangeValidator(registry=registry).validate(hello_snapshot, changes)

        assert DiagnosticKind.UNREGISTERED_TYPE in {d.kind for d in result.errors}


class TestProposalInterface:
    def test_camel_case_proposal(self, validator):
        proposal = ChangeProposal.model_validate(
            {
                "userRequest": "Remove the generator",
                "flowSnapshot": {
                    "nodes": [
                        {
                            "id": "in1",
                            "type": "text-input",
                            "data": {"label": "In", "inputValue": "hi"},
                        },
                        {"id": "gen1", "type": "text-generation", "data": {"label": "Gen"}},
                    ],
                    "edges": [
                        {
                            "id": "e1",
                            "source": "in1",
                            "target": "gen1",
                            "targetHandle": "prompt",
                            "data": {"dataType": "string"},
                        }
                    ],
                },
                "changes": {"actions": [{"type": "removeNode", "nodeId": "gen1"}]},
            }
        )

        assert proposal.flow_snapshot.edges[0].data_type == "string"
        assert proposal.flow_snapshot.nodes[0].data.input_value == "hi"
        result = validator.evaluate(proposal)
        assert result.verdict == Verdict.FAILED
        assert result.errors[0].related_ids == ["e1"]

    def test_failed_result_carries_retry_context(self, validator, hello_snapshot):
        changes = FlowChanges.of(RemoveNode(node_id="gen1"))

        result = validator.validate(hello_snapshot, changes)

        context = result.retry_context
        assert context.startswith("## IMPORTANT: Fix Previous Validation Errors")
        assert "1. [dangling_edge]" in context
        assert "(action 0: removeNode gen1)" in context
        assert '"removeNode"' in context
        assert "gpt-image-1" in context
        assert "Double-check:" in context

    def test_result_serializes_for_interop(self, validator, hello_snapshot):
        result = validator.validate(hello_snapshot, FlowChanges.of(RemoveNode(node_id="gen1")))

        payload = result.model_dump(mode="json")

        assert payload["verdict"] == "failed"
        assert payload["diagnostics"][0]["kind"] == "dangling_edge"
        assert payload["retry_context"]


def test_inputs_are_optional_unless_marked_required():
    required = {
        node_type: [p.id for p in get_port_schema(node_type).inputs if p.required]
        for node_type in NodeType
    }

    assert required[NodeType.TEXT_GENERATION] == ["prompt"]
    assert required[NodeType.THREEJS_SCENE] == ["prompt"]
    assert required[NodeType.THREEJS_OPTIONS] == []
    assert required[NodeType.STRING_COMBINE] == []
