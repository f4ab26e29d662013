"""
Event Bus - pub/sub status stream for flow runs.

The scheduler publishes run lifecycle and per-node status events here; an
editor, a logger or a test subscribes to them. For a given node, events are
published strictly in ``queued → running → terminal`` order because the
scheduler awaits each publish before moving the node on. Events of
independent nodes may interleave.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_CANCELLED = "run_cancelled"
    RUN_ABORTED = "run_aborted"

    # Node lifecycle
    NODE_STATUS_CHANGED = "node_status_changed"
    NODE_OUTPUT_DELTA = "node_output_delta"
    PULSE_FIRED = "pulse_fired"

    # Autopilot
    CHANGES_VALIDATED = "changes_validated"
    CHANGES_APPLIED = "changes_applied"

    # Custom events
    CUSTOM = "custom"


@dataclass
class FlowEvent:
    """An event in a flow run."""

    type: EventType
    run_id: str | None = None
    node_id: str | None = None
    flow_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def status(self) -> str | None:
        """Node status carried by NODE_STATUS_CHANGED events."""
        return self.data.get("status")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "flow_id": self.flow_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_run: str | None = None  # Only receive events from this run
    filter_node: str | None = None  # Only receive events about this node


class EventBus:
    """
    Pub/sub event bus for run status.

    Features:
    - Async event handling
    - Type-based subscriptions
    - Run/node filtering
    - Event history for debugging and tests

    Example:
        bus = EventBus()

        async def on_status(event: FlowEvent):
            print(event.node_id, event.status)

        bus.subscribe(event_types=[EventType.NODE_STATUS_CHANGED], handler=on_status)

        scheduler = GraphScheduler(event_bus=bus)
        await scheduler.run(snapshot)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            event_types: Types of events to receive
            handler: Async function to call when event occurs
            filter_run: Only receive events from this run
            filter_node: Only receive events about this node

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Record an event and deliver it to every matching subscriber."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            subscription.handler
            for subscription in self._subscriptions.values()
            if self._matches(subscription, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: FlowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_run_started(
        self,
        run_id: str,
        node_ids: list[str],
        flow_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.RUN_STARTED,
                run_id=run_id,
                flow_id=flow_id,
                data={"node_ids": node_ids},
            )
        )

    async def emit_run_finished(
        self,
        run_id: str,
        outcome: str,
        error: str | None = None,
        flow_id: str | None = None,
    ) -> None:
        """Emit the terminal run event matching ``outcome``."""
        event_type = {
            "cancelled": EventType.RUN_CANCELLED,
            "aborted": EventType.RUN_ABORTED,
        }.get(outcome, EventType.RUN_COMPLETED)
        data: dict[str, Any] = {"outcome": outcome}
        if error:
            data["error"] = error
        await self.publish(
            FlowEvent(type=event_type, run_id=run_id, flow_id=flow_id, data=data)
        )

    async def emit_node_status(
        self,
        run_id: str,
        node_id: str,
        status: str,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        """Emit a ``{node_id, status, output?, error?}`` status event."""
        data: dict[str, Any] = {"status": status}
        if output is not None:
            data["output"] = output
        if error is not None:
            data["error"] = error
        await self.publish(
            FlowEvent(
                type=EventType.NODE_STATUS_CHANGED,
                run_id=run_id,
                node_id=node_id,
                data=data,
            )
        )

    async def emit_node_output_delta(
        self,
        run_id: str,
        node_id: str,
        partial: Any,
        source_node_id: str | None = None,
    ) -> None:
        """Emit streamed partial output, optionally forwarded from an upstream node."""
        data: dict[str, Any] = {"partial": partial}
        if source_node_id is not None:
            data["source_node_id"] = source_node_id
        await self.publish(
            FlowEvent(
                type=EventType.NODE_OUTPUT_DELTA,
                run_id=run_id,
                node_id=node_id,
                data=data,
            )
        )

    async def emit_pulse_fired(self, run_id: str, node_id: str) -> None:
        await self.publish(FlowEvent(type=EventType.PULSE_FIRED, run_id=run_id, node_id=node_id))

    async def emit_changes_validated(
        self,
        verdict: str,
        diagnostics: list[dict[str, Any]],
        attempt: int = 1,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.CHANGES_VALIDATED,
                data={"verdict": verdict, "diagnostics": diagnostics, "attempt": attempt},
            )
        )

    async def emit_changes_applied(
        self,
        node_ids: list[str],
        edge_ids: list[str],
        removed_node_ids: list[str],
        removed_edge_ids: list[str],
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.CHANGES_APPLIED,
                data={
                    "node_ids": node_ids,
                    "edge_ids": edge_ids,
                    "removed_node_ids": removed_node_ids,
                    "removed_edge_ids": removed_edge_ids,
                },
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        if node_id:
            events = [e for e in events if e.node_id == node_id]

        return events[:limit]

    def status_sequence(self, node_id: str, run_id: str | None = None) -> list[str]:
        """Statuses a node went through, oldest first."""
        return [
            e.data["status"]
            for e in self._event_history
            if e.type == EventType.NODE_STATUS_CHANGED
            and e.node_id == node_id
            and (run_id is None or e.run_id == run_id)
        ]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_run=run_id,
            filter_node=node_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)
