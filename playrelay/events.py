"""
Observability events emitted by sources and clients.

Nothing in the pipeline consumes these; they exist for status displays and
logging sinks. The channel is bounded and drops the oldest event when full
so a missing consumer can never block a worker loop.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from .models import utcnow

SCROBBLE_QUEUED = "scrobbleQueued"
SCROBBLE_DEQUEUED = "scrobbleDequeued"
SCROBBLE = "scrobble"
DEAD_LETTER = "deadLetter"
STATUS_CHANGE = "statusChange"
DISCOVERED = "discovered"


@dataclass(frozen=True)
class Event:
    name: str
    origin: str  # "source" | "client"
    component: str
    data: Dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utcnow)


class EventChannel:
    def __init__(self, maxsize: int = 1000):
        self._q: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)

    def emit(self, event: Event) -> None:
        while True:
            try:
                self._q.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._q.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> Event | None:
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        events = []
        while True:
            try:
                events.append(self._q.get_nowait())
            except queue.Empty:
                return events


class Emitter:
    """Per-component handle that stamps events with their origin."""

    def __init__(self, channel: EventChannel | None, origin: str, component: str):
        self.channel = channel
        self.origin = origin
        self.component = component

    def emit(self, name: str, **data: Any) -> None:
        if self.channel is None:
            return
        self.channel.emit(Event(name=name, origin=self.origin, component=self.component, data=data))


def log_events(channel: EventChannel, stop, logger: logging.Logger | None = None) -> None:
    """Drain the channel into the log until ``stop`` (a threading.Event) is set."""
    logger = logger or logging.getLogger("events")
    while not stop.is_set():
        event = channel.get(timeout=1.0)
        if event is not None:
            logger.debug("[%s %s] %s %s", event.origin, event.component, event.name, event.data)
