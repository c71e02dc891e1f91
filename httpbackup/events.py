"""
Event channel between the web surface and the orchestrator.

Producers never block: when the bounded queue is full the event is dropped.
That is acceptable because every event only asks the orchestrator to look at
the current config again (or to start a run), and a burst of identical
requests collapses into one.
"""

import enum
import logging
import queue
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    CONFIG_CHANGED = 'config_changed'
    RUN_NOW = 'run_now'
    TICK = 'tick'  # emitted by the orchestrator's own interval job


@dataclass(frozen=True)
class Event:
    type: EventType
    created_at: datetime = field(default_factory=datetime.now)


class EventChannel:
    """Bounded, drop-on-full queue of orchestrator events."""

    def __init__(self, maxsize: int = 8):
        if maxsize <= 0:
            maxsize = 8
        self._queue = queue.Queue(maxsize=maxsize)

    def publish(self, event: Event) -> bool:
        """
        Enqueue an event without blocking.

        Returns:
            True if queued, False if the channel was full and the event dropped
        """
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            logger.warning(f"Event channel full, dropping {event.type.value} event")
            return False

    def notify_config_changed(self) -> bool:
        return self.publish(Event(EventType.CONFIG_CHANGED))

    def request_run(self) -> bool:
        return self.publish(Event(EventType.RUN_NOW))

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """
        Wait for the next event.

        Returns:
            The event, or None if nothing arrived within timeout
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()
