# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Event bus module for per-task event delivery."""

import json
import asyncio
import logging

from collections import defaultdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Any
from pydantic import BaseModel, PrivateAttr

from ..types.event_types import EventType, Event

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

EventTypes = EventType | set[EventType] | list[EventType] | tuple[EventType, ...] | frozenset[EventType]


def _as_types(event_type: EventTypes) -> list[EventType]:
    if isinstance(event_type, EventType):
        return [event_type]
    return list(event_type)


def _same_chain(a: str, b: str) -> bool:
    """Whether one publisher id is the other or one of its descendants."""
    return a == b or a.startswith(b + ".") or b.startswith(a + ".")


class EventEncoder(json.JSONEncoder):
    """JSON encoder for handling special types in event serialization."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Event):
            return {
                "type": obj.type.value,
                "content": obj.content,
                "metadata": obj.metadata,
                "timestamp": obj.timestamp.isoformat(),
            }
        elif hasattr(obj, "model_dump"):
            return obj.model_dump()
        elif isinstance(obj, Enum):
            return obj.value
        elif isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, Path):
            return str(obj)
        elif isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


class EventBus(BaseModel):
    """
    Event channel passed explicitly into Round Loops and Phase Executors.

    Features:
    - publish/subscribe by event type
    - compositional publisher id based event storage, so nested agents
      (``task_1.agent_2``) can be inspected as one chain
    - optional per-publisher asyncio queues for consumers that prefer pulling

    Events from one publisher are delivered in the order they are published.
    Nothing is guaranteed about the interleaving of unrelated publishers.
    """

    _subscribers: Dict[EventType, List[Callable]] = PrivateAttr(
        default_factory=lambda: defaultdict(list)
    )
    _event_store: Dict[str, List[Event]] = PrivateAttr(default_factory=dict)
    _queues: Dict[str, asyncio.Queue] = PrivateAttr(default_factory=dict)

    class Config:
        arbitrary_types_allowed = True

    async def publish(self, event: Event, publisher_id: str) -> None:
        """Publish an event to the bus.

        Args:
            event: The event to publish
            publisher_id: Compositional ID of the publishing task
        """
        logger.debug(f"New event from {publisher_id}: {event.type}")
        event.metadata["publisher_id"] = publisher_id

        if publisher_id not in self._event_store:
            self._event_store[publisher_id] = []
        self._event_store[publisher_id].append(event)

        queue = self._queues.get(publisher_id)
        if queue is not None:
            queue.put_nowait(event)

        # Snapshot so that a callback may unsubscribe itself
        for callback in list(self._subscribers[event.type]):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Error in event subscriber {callback}: {e}")

    def subscribe(self, event_type: EventTypes, callback: Callable) -> None:
        """Subscribe to events of a specific type.

        Args:
            event_type: Single EventType or collection of EventTypes to subscribe to
            callback: Async callback function for event handling
        """
        for et in _as_types(event_type):
            logger.debug(f"Subscribing {callback} to {et}")
            self._subscribers[et].append(callback)

    def unsubscribe(self, event_type: EventTypes, callback: Callable) -> None:
        """Unsubscribe from events of a specific type."""
        for et in _as_types(event_type):
            if callback in self._subscribers[et]:
                self._subscribers[et].remove(callback)

    def channel(self, publisher_id: str) -> asyncio.Queue:
        """Get (creating if needed) the queue receiving every event that
        ``publisher_id`` publishes from now on."""
        if publisher_id not in self._queues:
            self._queues[publisher_id] = asyncio.Queue()
        return self._queues[publisher_id]

    def close_channel(self, publisher_id: str) -> None:
        self._queues.pop(publisher_id, None)

    def get_events(self, publisher_id: str) -> List[Event]:
        """Get all events published by a specific publisher."""
        return self._event_store.get(publisher_id, [])

    def get_events_by_type(
        self, event_type: EventType, publisher_id: Optional[str] = None
    ) -> List[Event]:
        """Get all events of a specific type, optionally for one publisher only.

        Args:
            event_type: The type of events to retrieve
            publisher_id: Restrict the search to this publisher

        Returns:
            List of events of the specified type
        """
        if publisher_id is not None:
            return [e for e in self.get_events(publisher_id) if e.type == event_type]
        events = []
        for publisher_events in self._event_store.values():
            events.extend([e for e in publisher_events if e.type == event_type])
        return events

    def get_events_in_chain(self, publisher_id: str) -> List[Event]:
        """Get all events in a task's call chain (parent and children)."""
        events = []
        for pid, publisher_events in self._event_store.items():
            if _same_chain(pid, publisher_id):
                events.extend(publisher_events)
        return sorted(events, key=lambda e: e.timestamp)

    def clear(self) -> None:
        """Clear all events, queues and subscribers."""
        self._event_store.clear()
        self._subscribers.clear()
        self._queues.clear()

    def dump(self, path: Path) -> None:
        """Write the event store as JSON, keyed by publisher id."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self._event_store, indent=2, cls=EventEncoder))
