"""Outbound learning-event channel.

The orchestrator writes typed events here and never waits on readers.
Consumers either register a callback or take a bounded asyncio queue.
A failing callback is logged and skipped. A full queue drops its oldest
event.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, Field

from triage_trainer.models import _new_id

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Learning events emitted by a training session."""

    TRAINING_STARTED = "training_started"
    TRAINING_STOPPED = "training_stopped"
    EPISODE_STARTED = "episode_started"
    STEP_COMPLETED = "step_completed"
    EPISODE_COMPLETED = "episode_completed"
    EPISODE_FAILED = "episode_failed"
    ACTIVE_QUERY_GENERATED = "active_query_generated"
    ACTIVE_QUERY_PROCESSED = "active_query_processed"
    EXPERT_CONSULTATION_REQUESTED = "expert_consultation_requested"
    EXPERT_CONSULTATION_RESOLVED = "expert_consultation_resolved"
    CURRICULUM_INITIALIZED = "curriculum_initialized"
    CURRICULUM_ADVANCED = "curriculum_advanced"
    CURRICULUM_REGRESSED = "curriculum_regressed"
    STRATEGY_CHANGED = "strategy_changed"
    THRESHOLD_ADJUSTED = "threshold_adjusted"
    EPISODE_LEARNING_PROCESSED = "episode_learning_processed"
    PERIODIC_OPTIMIZATION = "periodic_optimization"


class LearningEvent(BaseModel):
    id: str = Field(default_factory=_new_id)
    type: EventType
    session_id: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict[str, Any] = Field(default_factory=dict)


EventCallback = Callable[[LearningEvent], Any]


class EventBus:
    """Callback registry plus bounded queues for learning events."""

    def __init__(self, session_id: str = "", recent_size: int = 200):
        self.session_id = session_id
        self._callbacks: list[tuple[EventCallback, Optional[frozenset[EventType]]]] = []
        self._queues: list[asyncio.Queue[LearningEvent]] = []
        self._recent: deque[LearningEvent] = deque(maxlen=recent_size)
        self._emitted = 0
        self._delivery_failures = 0
        self._dropped = 0

    def subscribe(
        self,
        callback: EventCallback,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        """Register a callback, optionally filtered to some event types.

        Returns:
            A function that removes the subscription
        """
        entry = (callback, frozenset(event_types) if event_types is not None else None)
        self._callbacks.append(entry)

        def unsubscribe() -> None:
            if entry in self._callbacks:
                self._callbacks.remove(entry)

        return unsubscribe

    def open_queue(self, maxsize: int = 100) -> asyncio.Queue[LearningEvent]:
        """Create a bounded queue that receives every subsequent event."""
        queue: asyncio.Queue[LearningEvent] = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def close_queue(self, queue: asyncio.Queue[LearningEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def emit(self, event_type: EventType, **payload: Any) -> LearningEvent:
        """Deliver an event to every subscriber without blocking."""
        event = LearningEvent(type=event_type, session_id=self.session_id, payload=payload)
        self._recent.append(event)
        self._emitted += 1

        for callback, types in list(self._callbacks):
            if types is not None and event_type not in types:
                continue
            try:
                callback(event)
            except Exception as e:
                self._delivery_failures += 1
                logger.warning(f"[EVENTS] Subscriber failed on {event_type.value}: {e}")

        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
                self._dropped += 1
            queue.put_nowait(event)

        return event

    def recent(self, event_type: Optional[EventType] = None, limit: int = 50) -> list[LearningEvent]:
        events = [e for e in self._recent if event_type is None or e.type == event_type]
        return events[-limit:]

    def get_stats(self) -> dict[str, int]:
        return {
            "emitted": self._emitted,
            "subscribers": len(self._callbacks),
            "queues": len(self._queues),
            "delivery_failures": self._delivery_failures,
            "dropped": self._dropped,
        }
