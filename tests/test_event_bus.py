"""Tests for the EventBus."""

import asyncio

import pytest

from flowgraph.runtime.event_bus import EventBus, EventType, FlowEvent


@pytest.mark.asyncio
async def test_subscribers_receive_matching_events(bus):
    received = []

    async def handler(event: FlowEvent):
        received.append((event.node_id, event.status))

    bus.subscribe([EventType.NODE_STATUS_CHANGED], handler)

    await bus.emit_node_status("run1", "a", "running")
    await bus.emit_pulse_fired("run1", "a")
    await bus.emit_node_status("run1", "a", "succeeded", output="hi")

    assert received == [("a", "running"), ("a", "succeeded")]


@pytest.mark.asyncio
async def test_run_and_node_filters(bus):
    received = []

    async def handler(event: FlowEvent):
        received.append((event.run_id, event.node_id))

    bus.subscribe([EventType.NODE_STATUS_CHANGED], handler, filter_run="r1", filter_node="a")

    await bus.emit_node_status("r1", "a", "running")
    await bus.emit_node_status("r1", "b", "running")
    await bus.emit_node_status("r2", "a", "running")

    assert received == [("r1", "a")]


@pytest.mark.asyncio
async def test_unsubscribe(bus):
    received = []

    async def handler(event: FlowEvent):
        received.append(event)

    sub_id = bus.subscribe([EventType.PULSE_FIRED], handler)

    assert bus.unsubscribe(sub_id) is True
    assert bus.unsubscribe(sub_id) is False
    await bus.emit_pulse_fired("r1", "a")
    assert received == []


@pytest.mark.asyncio
async def test_handler_errors_do_not_reach_publisher(bus):
    received = []

    async def broken(event: FlowEvent):
        raise RuntimeError("boom")

    async def healthy(event: FlowEvent):
        received.append(event.type)

    bus.subscribe([EventType.RUN_STARTED], broken)
    bus.subscribe([EventType.RUN_STARTED], healthy)

    await bus.emit_run_started("r1", ["a", "b"])

    assert received == [EventType.RUN_STARTED]


@pytest.mark.asyncio
async def test_history_and_status_sequence(bus):
    await bus.emit_node_status("r1", "a", "queued")
    await bus.emit_node_status("r1", "a", "running")
    await bus.emit_node_status("r2", "a", "queued")
    await bus.emit_node_status("r1", "a", "failed", error="bad")

    latest = bus.get_history(EventType.NODE_STATUS_CHANGED, run_id="r1", limit=1)

    assert latest[0].status == "failed"
    assert latest[0].data["error"] == "bad"
    assert bus.status_sequence("a", run_id="r1") == ["queued", "running", "failed"]
    assert bus.status_sequence("a") == ["queued", "running", "queued", "failed"]
    assert bus.get_stats()["events_by_type"] == {"node_status_changed": 4}


@pytest.mark.asyncio
async def test_history_is_bounded():
    bus = EventBus(max_history=3)

    for i in range(5):
        await bus.emit_pulse_fired("r1", f"n{i}")

    assert [e.node_id for e in bus.get_history()] == ["n4", "n3", "n2"]


@pytest.mark.asyncio
async def test_run_finished_maps_outcome_to_event_type(bus):
    await bus.emit_run_finished("r1", "completed")
    await bus.emit_run_finished("r2", "cancelled", error="Stopped")
    await bus.emit_run_finished("r3", "aborted", error="Cycle")

    assert [e.type for e in bus.get_history()] == [
        EventType.RUN_ABORTED,
        EventType.RUN_CANCELLED,
        EventType.RUN_COMPLETED,
    ]
    assert bus.get_history(run_id="r2")[0].data == {"outcome": "cancelled", "error": "Stopped"}


@pytest.mark.asyncio
async def test_output_delta_carries_forwarding_source(bus):
    await bus.emit_node_output_delta("r1", "out1", "Hel", source_node_id="gen1")

    event = bus.get_history(EventType.NODE_OUTPUT_DELTA)[0]

    assert event.node_id == "out1"
    assert event.data == {"partial": "Hel", "source_node_id": "gen1"}
    assert event.to_dict()["type"] == "node_output_delta"


@pytest.mark.asyncio
async def test_wait_for(bus):
    async def later():
        await asyncio.sleep(0.01)
        await bus.emit_run_finished("r1", "completed")

    task = asyncio.create_task(later())
    event = await bus.wait_for(EventType.RUN_COMPLETED, run_id="r1", timeout=1)
    await task

    assert event is not None
    assert event.data["outcome"] == "completed"
    assert bus.get_stats()["subscriptions"] == 0


@pytest.mark.asyncio
async def test_wait_for_times_out(bus):
    event = await bus.wait_for(EventType.RUN_COMPLETED, timeout=0.01)

    assert event is None
