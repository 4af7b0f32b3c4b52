# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for ProgressBus."""

import asyncio

import pytest

from flyrecord.core.progress import EventType, ProgressBus, ProgressEvent


async def drain(subscription, timeout=1.0):
    """Collect events until the subscription finishes."""
    events = []

    async def collect():
        async for event in subscription:
            events.append(event)

    await asyncio.wait_for(collect(), timeout=timeout)
    return events


class TestProgressEvent:
    """Tests for ProgressEvent serialization."""

    def test_to_dict(self):
        event = ProgressEvent("s1", EventType.PROGRESS, {"message": "Recording", "progress": 40})

        assert event.to_dict() == {
            "message": "Recording",
            "progress": 40,
            "sessionId": "s1",
            "type": "progress",
        }

    def test_terminal_types(self):
        assert EventType.COMPLETE.is_terminal
        assert EventType.ERROR.is_terminal
        assert not EventType.PROGRESS.is_terminal


class TestSubscriptions:
    """Tests for filtering and stream termination."""

    @pytest.mark.asyncio
    async def test_filtered_subscriber_sees_only_its_session(self):
        """Test a subscriber for A never receives B's events."""
        bus = ProgressBus()
        sub_a = bus.subscribe("a")

        bus.publish("b", EventType.PROGRESS, {"step": 1})
        bus.publish("a", EventType.PROGRESS, {"step": 1})
        bus.publish("b", EventType.COMPLETE, {"progress": 100})
        bus.publish("a", EventType.COMPLETE, {"progress": 100})

        events = await drain(sub_a)

        assert [e.session_id for e in events] == ["a", "a"]
        assert [e.type for e in events] == [EventType.PROGRESS, EventType.COMPLETE]

    @pytest.mark.asyncio
    async def test_filtered_stream_finishes_after_terminal_event(self):
        """Test a filtered stream ends and detaches after the terminal event."""
        bus = ProgressBus()
        subscription = bus.subscribe("a")

        bus.publish("a", EventType.ERROR, {"message": "boom"})
        bus.publish("a", EventType.PROGRESS, {"message": "late"})

        events = await drain(subscription)

        assert len(events) == 1
        assert events[0].payload["message"] == "boom"
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unfiltered_subscriber_sees_everything(self):
        """Test an unfiltered subscriber receives all sessions' events."""
        bus = ProgressBus()
        subscription = bus.subscribe()

        bus.publish("a", EventType.COMPLETE)
        bus.publish("b", EventType.ERROR)
        subscription.close()

        events = await drain(subscription)
        assert [e.session_id for e in events] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_close_wakes_pending_reader(self):
        """Test closing a subscription ends a blocked iteration."""
        bus = ProgressBus()
        subscription = bus.subscribe()

        reader = asyncio.ensure_future(drain(subscription))
        await asyncio.sleep(0)
        subscription.close()

        assert await reader == []
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_context_manager_unsubscribes(self):
        bus = ProgressBus()
        async with bus.subscribe("a"):
            assert bus.subscriber_count == 1
        assert bus.subscriber_count == 0


class TestPublish:
    """Tests for fire-and-forget delivery."""

    def test_publish_without_subscribers(self):
        bus = ProgressBus()
        event = bus.publish("a", EventType.PROGRESS, {"step": 1})

        assert event.session_id == "a"
        assert bus.get_stats()["published"] == 1

    @pytest.mark.asyncio
    async def test_full_subscriber_is_dropped(self):
        """Test a subscriber that cannot keep up is removed, not waited on."""
        bus = ProgressBus()
        slow = bus.subscribe(max_queue=2)
        healthy = bus.subscribe(max_queue=10)

        for step in range(5):
            bus.publish("a", EventType.PROGRESS, {"step": step})

        assert slow.closed
        assert bus.subscriber_count == 1
        assert bus.get_stats()["dropped"] == 1

        healthy.close()
        events = await drain(healthy)
        assert [e.payload["step"] for e in events] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_dropped_subscriber_still_drains_buffered_events(self):
        """Test a dropped subscriber can read what it had before it ends."""
        bus = ProgressBus()
        slow = bus.subscribe(max_queue=2)

        for step in range(3):
            bus.publish("a", EventType.PROGRESS, {"step": step})

        events = await drain(slow)
        assert [e.payload["step"] for e in events] == [0, 1]

    @pytest.mark.asyncio
    async def test_bus_close(self):
        bus = ProgressBus()
        first = bus.subscribe()
        second = bus.subscribe("a")

        bus.close()

        assert first.closed and second.closed
        assert bus.subscriber_count == 0
