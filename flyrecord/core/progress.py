# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Progress bus for FlyRecord.

Fans session-scoped progress events out to any number of subscribers:

- Unfiltered subscribers receive every session's events
- Filtered subscribers receive one session's events, and their stream
  finishes after that session's terminal event
- Delivery is fire-and-forget through bounded per-subscriber queues;
  ``publish`` never waits, and a subscriber that cannot take an event
  is dropped instead of retried

Example:
    >>> bus = ProgressBus()
    >>> async with bus.subscribe(session_id) as events:
    ...     async for event in events:
    ...         print(event.to_dict())
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from flyrecord.utils.logger import logger

_CLOSED = object()


class EventType(str, Enum):
    """Type of a progress event."""

    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (EventType.COMPLETE, EventType.ERROR)


@dataclass(frozen=True)
class ProgressEvent:
    """One broadcast event. Never persisted."""

    session_id: str
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.type.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: payload fields plus sessionId and type."""
        data = dict(self.payload)
        data["sessionId"] = self.session_id
        data["type"] = self.type.value
        return data


class Subscription:
    """A subscriber's view of the bus, consumed as an async iterator."""

    def __init__(
        self,
        bus: "ProgressBus",
        session_id: Optional[str] = None,
        max_queue: int = 256,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.session_id = session_id
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._closed = False
        self._finished = False
        self.delivered = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: ProgressEvent) -> bool:
        return self.session_id is None or self.session_id == event.session_id

    def deliver(self, event: ProgressEvent) -> bool:
        """Enqueue without waiting. False means the subscriber should be dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        self.delivered += 1
        return True

    async def get(self) -> Optional[ProgressEvent]:
        """Next event, or None once the stream is over."""
        if self._finished or (self._closed and self._queue.empty()):
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            return None
        if self.session_id is not None and item.is_terminal:
            self._finished = True
        return item

    def close(self) -> None:
        """Detach from the bus and wake any pending reader."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Reader is not blocked on a full queue; it drains and sees _closed
            pass
        self._bus.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class ProgressBus:
    """Process-wide publish/subscribe channel for session events."""

    def __init__(self, max_queue: int = 256) -> None:
        self.max_queue = max_queue
        self._subscribers: Dict[str, Subscription] = {}
        self._published = 0
        self._dropped = 0

    def subscribe(
        self,
        session_id: Optional[str] = None,
        max_queue: Optional[int] = None,
    ) -> Subscription:
        """Register a subscriber, optionally filtered to one session."""
        subscription = Subscription(self, session_id, max_queue or self.max_queue)
        self._subscribers[subscription.id] = subscription
        logger.debug(
            f"[BUS] Subscriber {subscription.id} added "
            f"(filter: {session_id or 'all'}, total: {len(self._subscribers)})"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscribers.pop(subscription.id, None) is not None:
            logger.debug(f"[BUS] Subscriber {subscription.id} removed")
        if not subscription.closed:
            subscription.close()

    def publish(
        self,
        session_id: str,
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ProgressEvent:
        """Broadcast an event to every matching subscriber without waiting."""
        event = ProgressEvent(session_id=session_id, type=EventType(event_type), payload=payload or {})
        self._published += 1

        dead: List[Subscription] = []
        finished: List[Subscription] = []
        for subscription in list(self._subscribers.values()):
            if not subscription.matches(event):
                continue
            if not subscription.deliver(event):
                dead.append(subscription)
            elif subscription.session_id is not None and event.is_terminal:
                finished.append(subscription)

        for subscription in dead:
            self._dropped += 1
            logger.warning(f"[BUS] Dropping subscriber {subscription.id}: delivery failed")
            self._subscribers.pop(subscription.id, None)
            subscription.close()

        # Filtered streams end at their session's terminal event
        for subscription in finished:
            self._subscribers.pop(subscription.id, None)

        return event

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "subscribers": len(self._subscribers),
            "published": self._published,
            "dropped": self._dropped,
        }

    def close(self) -> None:
        """Close every subscription."""
        for subscription in list(self._subscribers.values()):
            subscription.close()
        self._subscribers.clear()
