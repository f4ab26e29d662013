"""Runtime plumbing shared by runs: cancellation and the event bus."""

from flowgraph.runtime.cancellation import CancellationToken
from flowgraph.runtime.event_bus import EventBus, EventType, FlowEvent

__all__ = ["CancellationToken", "EventBus", "EventType", "FlowEvent"]
