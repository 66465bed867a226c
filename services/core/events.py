"""
Decision Change Events

Authoritative invalidation signal for the presentation layer.

Architecture:
  Service mutates entities inside a UnitOfWork
         ↓
  UnitOfWork collects DecisionChanged events
         ↓
  commit succeeds → EventBus.publish (rollback → events dropped)
         ↓
  GET /events streams them to subscribers as server-sent events
"""

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from logging_config import get_logger

logger = get_logger(__name__)


class DecisionChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    EVALUATED = "evaluated"
    REVIEWED = "reviewed"
    RETIRED = "retired"
    INVALIDATED = "invalidated"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    CONFLICT_DETECTED = "conflict_detected"
    CONFLICT_RESOLVED = "conflict_resolved"
    EDIT_REQUESTED = "edit_requested"
    EDIT_RESOLVED = "edit_resolved"


class DecisionChanged(BaseModel):
    """Carries the changed entity id so subscribers refetch exactly one record"""
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    decision_id: str = Field(..., description="Decision UUID")
    change: DecisionChangeType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: dict = Field(default_factory=dict)


class EventBus:
    """In-process fan-out to per-subscriber queues"""

    def __init__(self, max_queue_size: int = 1000):
        self._subscribers: set[asyncio.Queue] = set()
        self._max_queue_size = max_queue_size

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: DecisionChanged) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "event_subscriber_queue_full",
                    decision_id=event.decision_id,
                    change=event.change.value
                )

    def publish_all(self, events) -> None:
        for event in events:
            self.publish(event)
        if events:
            logger.debug("decision_events_published", count=len(events))


event_bus = EventBus()


def decision_changed(decision_id, change: DecisionChangeType, now: Optional[datetime] = None, **details) -> DecisionChanged:
    return DecisionChanged(
        decision_id=str(decision_id),
        change=change,
        timestamp=now or datetime.now(timezone.utc),
        details=details
    )
