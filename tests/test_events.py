"""Tests for the outbound learning-event bus."""

import pytest

from triage_trainer.events import EventBus, EventType, LearningEvent


@pytest.fixture
def bus():
    return EventBus(session_id="session-1", recent_size=10)


# =============================================================================
# Callback Tests
# =============================================================================


class TestCallbacks:
    """Tests for callback subscriptions."""

    def test_emit_delivers_event(self, bus):
        received = []
        bus.subscribe(received.append)

        event = bus.emit(EventType.EPISODE_STARTED, episode=1)

        assert received == [event]
        assert isinstance(event, LearningEvent)
        assert event.session_id == "session-1"
        assert event.payload == {"episode": 1}

    def test_type_filter(self, bus):
        received = []
        bus.subscribe(received.append, event_types=[EventType.EPISODE_COMPLETED])

        bus.emit(EventType.EPISODE_STARTED)
        bus.emit(EventType.EPISODE_COMPLETED)

        assert [e.type for e in received] == [EventType.EPISODE_COMPLETED]

    def test_unsubscribe(self, bus):
        received = []
        unsubscribe = bus.subscribe(received.append)
        unsubscribe()
        unsubscribe()

        bus.emit(EventType.EPISODE_STARTED)

        assert received == []
        assert bus.get_stats()["subscribers"] == 0

    def test_failing_subscriber_does_not_block_others(self, bus):
        def broken(event):
            raise RuntimeError("dashboard offline")

        received = []
        bus.subscribe(broken)
        bus.subscribe(received.append)

        bus.emit(EventType.STEP_COMPLETED, step=0)

        assert len(received) == 1
        assert bus.get_stats()["delivery_failures"] == 1


# =============================================================================
# Queue Tests
# =============================================================================


class TestQueues:
    """Tests for bounded queue subscribers."""

    def test_queue_receives_events(self, bus):
        queue = bus.open_queue(maxsize=5)
        bus.emit(EventType.EPISODE_STARTED)
        assert queue.qsize() == 1
        assert queue.get_nowait().type == EventType.EPISODE_STARTED

    def test_full_queue_drops_oldest(self, bus):
        queue = bus.open_queue(maxsize=2)
        for step in range(3):
            bus.emit(EventType.STEP_COMPLETED, step=step)

        steps = [queue.get_nowait().payload["step"] for _ in range(queue.qsize())]
        assert steps == [1, 2]
        assert bus.get_stats()["dropped"] == 1

    def test_closed_queue_stops_receiving(self, bus):
        queue = bus.open_queue()
        bus.close_queue(queue)
        bus.emit(EventType.EPISODE_STARTED)
        assert queue.empty()


# =============================================================================
# History Tests
# =============================================================================


class TestRecent:
    """Tests for the recent-event buffer."""

    def test_recent_is_bounded(self, bus):
        for step in range(15):
            bus.emit(EventType.STEP_COMPLETED, step=step)
        recent = bus.recent(limit=100)
        assert len(recent) == 10
        assert recent[-1].payload["step"] == 14
        assert bus.get_stats()["emitted"] == 15

    def test_recent_filters_by_type(self, bus):
        bus.emit(EventType.EPISODE_STARTED)
        bus.emit(EventType.STEP_COMPLETED)
        assert [e.type for e in bus.recent(EventType.EPISODE_STARTED)] == [EventType.EPISODE_STARTED]
