"""Tests for events/bus.py -- async pub/sub event bus.

Covers publish/subscribe, buffering, close_run sentinel, history,
error isolation between subscribers, and the global singleton accessor.
"""

import asyncio

from events.bus import EventBus, get_event_bus, reset_event_bus
from events.types import EventType, PlanEvent

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_event(
    run_id: str = "run_test",
    event_type: EventType = EventType.TASK_STARTED,
) -> PlanEvent:
    return PlanEvent(
        type=event_type,
        run_id=run_id,
        message="Executing task: Draft outline",
        data={"test": True},
    )


# =========================================================================
# Subscribe / Publish basics
# =========================================================================


class TestSubscribePublish:
    """Basic subscribe and async publish."""

    async def test_subscribe_returns_queue(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("run_1")
        assert isinstance(queue, asyncio.Queue)

    async def test_publish_delivers_to_subscriber(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("run_1")
        await event_bus.publish(_make_event("run_1"))
        received = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert received.type == EventType.TASK_STARTED
        assert received.run_id == "run_1"

    async def test_publish_multiple_subscribers(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("run_1")
        q2 = event_bus.subscribe("run_1")
        await event_bus.publish(_make_event("run_1"))
        r1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        r2 = await asyncio.wait_for(q2.get(), timeout=1.0)
        assert r1.type == r2.type == EventType.TASK_STARTED

    async def test_publish_does_not_cross_runs(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("run_1")
        q2 = event_bus.subscribe("run_2")
        await event_bus.publish(_make_event("run_1"))
        r1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        assert r1.run_id == "run_1"
        assert q2.empty()


# =========================================================================
# Event Buffering
# =========================================================================


class TestEventBuffering:
    """Events published before a subscriber connects are buffered."""

    async def test_buffered_events_delivered_on_subscribe(
        self, event_bus: EventBus
    ) -> None:
        await event_bus.publish(_make_event("run_1", EventType.PLAN_CREATED))
        await event_bus.publish(_make_event("run_1", EventType.TASK_STARTED))

        queue = event_bus.subscribe("run_1")
        r1 = await asyncio.wait_for(queue.get(), timeout=1.0)
        r2 = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert r1.type == EventType.PLAN_CREATED
        assert r2.type == EventType.TASK_STARTED

    async def test_buffer_cleared_after_subscribe(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("run_1"))
        q1 = event_bus.subscribe("run_1")
        assert not q1.empty()
        # A second subscriber should NOT get the already-delivered buffer
        q2 = event_bus.subscribe("run_1")
        assert q2.empty()

    async def test_buffer_keeps_newest_events_when_full(
        self, event_bus: EventBus
    ) -> None:
        event_bus.MAX_BUFFER_PER_RUN = 3
        for event_type in (
            EventType.PLAN_CREATED,
            EventType.TASK_STARTED,
            EventType.TASK_COMPLETED,
            EventType.TASK_FAILED,
            EventType.PLAN_FAILED,
        ):
            await event_bus.publish(_make_event("run_1", event_type))

        queue = event_bus.subscribe("run_1")
        assert queue.qsize() == 3
        received = [queue.get_nowait().type for _ in range(3)]
        assert received == [
            EventType.TASK_COMPLETED,
            EventType.TASK_FAILED,
            EventType.PLAN_FAILED,
        ]


# =========================================================================
# Unsubscribe
# =========================================================================


class TestUnsubscribe:
    """Unsubscribe removes a specific queue from the run."""

    async def test_unsubscribe_removes_queue(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("run_1")
        event_bus.unsubscribe("run_1", queue)
        assert event_bus.get_subscriber_count("run_1") == 0

    async def test_unsubscribe_nonexistent_is_noop(self, event_bus: EventBus) -> None:
        dummy: asyncio.Queue[PlanEvent] = asyncio.Queue()
        event_bus.unsubscribe("no_such_run", dummy)

    async def test_unsubscribe_wrong_queue_is_noop(self, event_bus: EventBus) -> None:
        event_bus.subscribe("run_1")
        wrong_queue: asyncio.Queue[PlanEvent] = asyncio.Queue()
        event_bus.unsubscribe("run_1", wrong_queue)
        assert event_bus.get_subscriber_count("run_1") == 1

    async def test_after_unsubscribe_events_not_delivered(
        self, event_bus: EventBus
    ) -> None:
        queue = event_bus.subscribe("run_1")
        event_bus.unsubscribe("run_1", queue)
        await event_bus.publish(_make_event("run_1"))
        assert queue.empty()


# =========================================================================
# close_run -- sentinel
# =========================================================================


class TestCloseRun:
    """close_run sends a RUN_CLOSED sentinel and cleans up."""

    async def test_close_sends_sentinel(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("run_1")
        await event_bus.close_run("run_1")
        sentinel = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert sentinel.type == EventType.RUN_CLOSED
        assert sentinel.run_id == "run_1"

    async def test_close_removes_subscribers(self, event_bus: EventBus) -> None:
        event_bus.subscribe("run_1")
        await event_bus.close_run("run_1")
        assert event_bus.get_subscriber_count("run_1") == 0

    async def test_close_clears_buffer(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("run_1"))
        await event_bus.close_run("run_1")
        queue = event_bus.subscribe("run_1")
        assert queue.empty()

    async def test_close_nonexistent_is_noop(self, event_bus: EventBus) -> None:
        await event_bus.close_run("no_such_run")

    async def test_close_multiple_subscribers(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("run_1")
        q2 = event_bus.subscribe("run_1")
        await event_bus.close_run("run_1")
        s1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        s2 = await asyncio.wait_for(q2.get(), timeout=1.0)
        assert s1.type == EventType.RUN_CLOSED
        assert s2.type == EventType.RUN_CLOSED


# =========================================================================
# History
# =========================================================================


class TestEventHistory:
    """Every published event is kept for replay, sentinels excluded."""

    async def test_history_records_events_in_order(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("run_1", EventType.PLAN_CREATED))
        event_bus.subscribe("run_1")
        await event_bus.publish(_make_event("run_1", EventType.PLAN_COMPLETED))

        history = event_bus.get_event_history("run_1")
        assert [e.type for e in history] == [
            EventType.PLAN_CREATED,
            EventType.PLAN_COMPLETED,
        ]

    async def test_history_survives_close(self, event_bus: EventBus) -> None:
        event_bus.subscribe("run_1")
        await event_bus.publish(_make_event("run_1"))
        await event_bus.close_run("run_1")
        history = event_bus.get_event_history("run_1")
        assert len(history) == 1
        assert history[0].type != EventType.RUN_CLOSED

    async def test_history_is_trimmed(self, event_bus: EventBus) -> None:
        event_bus.MAX_HISTORY_PER_RUN = 3
        for _ in range(5):
            await event_bus.publish(_make_event("run_1"))
        assert len(event_bus.get_event_history("run_1")) == 3

    async def test_clear_event_history(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("run_1"))
        event_bus.clear_event_history("run_1")
        assert event_bus.get_event_history("run_1") == []


# =========================================================================
# Error isolation
# =========================================================================


class TestErrorIsolation:
    """A failing subscriber should not prevent delivery to other subscribers."""

    async def test_error_does_not_block_other_subscribers(
        self, event_bus: EventBus
    ) -> None:
        q1 = event_bus.subscribe("run_1")
        q2 = event_bus.subscribe("run_1")

        call_count = 0

        async def failing_put(item: PlanEvent) -> None:
            nonlocal call_count
            call_count += 1
            raise RuntimeError("subscriber error")

        q1.put = failing_put  # type: ignore[assignment]

        await event_bus.publish(_make_event("run_1"))

        assert not q2.empty()
        received = q2.get_nowait()
        assert received.type == EventType.TASK_STARTED
        assert call_count == 1


# =========================================================================
# Global singleton
# =========================================================================


class TestGlobalEventBus:
    """get_event_bus / reset_event_bus singleton pattern."""

    def test_get_event_bus_returns_same_instance(self) -> None:
        reset_event_bus()
        bus1 = get_event_bus()
        bus2 = get_event_bus()
        assert bus1 is bus2

    def test_reset_event_bus_creates_new_instance(self) -> None:
        reset_event_bus()
        bus1 = get_event_bus()
        reset_event_bus()
        bus2 = get_event_bus()
        assert bus1 is not bus2


class TestSubscriberInfo:
    async def test_subscriber_count(self, event_bus: EventBus) -> None:
        assert event_bus.get_subscriber_count("run_1") == 0
        event_bus.subscribe("run_1")
        assert event_bus.get_subscriber_count("run_1") == 1
        event_bus.subscribe("run_1")
        assert event_bus.get_subscriber_count("run_1") == 2
