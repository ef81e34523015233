"""Event publishing for batch progress."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessingEvent:
    """Event during batch processing."""
    stage: str
    message: str
    progress: float | None = None  # 0.0 to 1.0
    group_id: str | None = None


@runtime_checkable
class EventPublisher(Protocol):
    """Port for publishing processing events."""

    def publish(self, event: ProcessingEvent) -> None:
        """Publish an event."""
        ...

    def subscribe(self, callback: Callable[[ProcessingEvent], None]) -> None:
        """Subscribe to events."""
        ...


class SimpleEventPublisher:
    """Synchronous publisher, safe to call from worker threads.

    A failing subscriber is logged and skipped so one bad callback cannot
    stall the scheduler.
    """

    def __init__(self):
        self._subscribers: list[Callable[[ProcessingEvent], None]] = []
        self._lock = threading.Lock()

    def publish(self, event: ProcessingEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber failed on '{event.stage}'")

    def subscribe(self, callback: Callable[[ProcessingEvent], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)
