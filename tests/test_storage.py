"""Tests for snapshot persistence."""

import json

import pytest

from flowgraph.errors import StorageError
from flowgraph.graph.node import NodeSpec
from flowgraph.graph.snapshot import FlowSnapshot
from flowgraph.storage import FileSnapshotStore, InMemorySnapshotStore, validate_key


@pytest.fixture
def file_store(tmp_path):
    return FileSnapshotStore(tmp_path)


@pytest.fixture(params=["file", "memory"])
def store(request, tmp_path):
    if request.param == "file":
        return FileSnapshotStore(tmp_path)
    return InMemorySnapshotStore()


@pytest.mark.asyncio
async def test_save_and_load(store, hello_snapshot):
    flow = await store.save("demo", hello_snapshot, name="Demo")

    loaded = await store.load("demo")

    assert flow.name == "Demo"
    assert loaded == hello_snapshot
    assert await store.exists("demo")
    assert await store.load("missing") is None


@pytest.mark.asyncio
async def test_resave_keeps_creation_time_and_name(store, hello_snapshot):
    first = await store.save("demo", hello_snapshot, name="Demo")
    changed = hello_snapshot.with_data_updates({"in1": {"input_value": "bye"}})

    second = await store.save("demo", changed)

    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at
    assert second.name == "Demo"
    loaded = await store.load("demo")
    assert loaded.get_node("in1").data.input_value == "bye"


@pytest.mark.asyncio
async def test_runtime_fields_are_not_persisted(store):
    snapshot = FlowSnapshot(
        nodes=[
            NodeSpec(
                id="gen1",
                type="text-generation",
                data={"label": "Gen", "executionStatus": "running", "executionOutput": "par"},
            )
        ]
    )

    await store.save("demo", snapshot)
    loaded = await store.load("demo")

    data = loaded.get_node("gen1").data
    assert data.label == "Gen"
    assert data.execution_status is None
    assert data.execution_output is None


@pytest.mark.asyncio
async def test_list_and_delete(store, hello_snapshot):
    await store.save("one", hello_snapshot)
    await store.save("two", hello_snapshot)

    flows = await store.list_flows()

    assert sorted(f.id for f in flows) == ["one", "two"]
    assert await store.delete("one") is True
    assert await store.delete("one") is False
    assert [f.id for f in await store.list_flows()] == ["two"]


@pytest.mark.asyncio
async def test_file_layout(file_store, hello_snapshot, tmp_path):
    await file_store.save("demo", hello_snapshot)

    path = tmp_path / "flows" / "demo.json"
    document = json.loads(path.read_text())

    assert file_store.get_flow_path("demo") == path
    assert document["schema_version"] == 1
    assert [n["id"] for n in document["snapshot"]["nodes"]] == ["in1", "gen1", "out1"]


@pytest.mark.asyncio
async def test_newer_schema_is_refused(file_store, tmp_path):
    path = tmp_path / "flows" / "future.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"id": "future", "schema_version": 99}))

    with pytest.raises(StorageError) as exc_info:
        await file_store.load("future")

    assert "schema version 99" in str(exc_info.value)


@pytest.mark.asyncio
async def test_corrupt_file_raises_storage_error(file_store, tmp_path):
    path = tmp_path / "flows" / "broken.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    with pytest.raises(StorageError):
        await file_store.load("broken")
    assert await file_store.list_flows() == []


@pytest.mark.parametrize("key", ["", "  ", "../etc", "a/b", "a\\b", ".hidden", "C:x", "a$b"])
def test_validate_key_rejects_unsafe_ids(key):
    with pytest.raises(ValueError):
        validate_key(key)


@pytest.mark.asyncio
async def test_store_rejects_unsafe_ids(store, hello_snapshot):
    with pytest.raises(ValueError):
        await store.save("../escape", hello_snapshot)
