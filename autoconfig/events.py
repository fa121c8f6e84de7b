"""
Progress event queue.

Probes push ``starting_step`` / ``progress`` / ``stopping_step`` /
``error`` / ``done`` notifications; the caller drains them by polling
:meth:`EventQueue.pop`.  Neither side ever blocks.
"""
from __future__ import annotations

import enum
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional


class EventKind(enum.Enum):
    STARTING_STEP = "starting_step"
    STOPPING_STEP = "stopping_step"
    PROGRESS = "progress"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class ProgressEvent:
    kind: EventKind
    label: str = ""
    percent: float = 0.0

    @property
    def terminal(self) -> bool:
        return self.kind in (EventKind.ERROR, EventKind.DONE)

    def to_dict(self) -> dict:
        return {"event": self.kind.value, "description": self.label, "percentage": self.percent}


class EventQueue:
    """FIFO of :class:`ProgressEvent`, safe for many producers and one consumer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: Deque[ProgressEvent] = deque()

    def push(self, event: ProgressEvent) -> None:
        with self._lock:
            self._events.append(event)

    def pop(self) -> Optional[ProgressEvent]:
        with self._lock:
            if not self._events:
                return None
            return self._events.popleft()

    def drain(self) -> List[ProgressEvent]:
        with self._lock:
            events = list(self._events)
            self._events.clear()
        return events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    # -- Convenience producers ---------------------------------------------

    def starting(self, label: str) -> None:
        self.push(ProgressEvent(EventKind.STARTING_STEP, label, 0.0))

    def stopping(self, label: str) -> None:
        self.push(ProgressEvent(EventKind.STOPPING_STEP, label, 100.0))

    def progress(self, label: str, percent: float) -> None:
        self.push(ProgressEvent(EventKind.PROGRESS, label, float(percent)))

    def error(self, label: str, percent: float = 0.0) -> None:
        self.push(ProgressEvent(EventKind.ERROR, label, float(percent)))

    def done(self) -> None:
        self.push(ProgressEvent(EventKind.DONE, "", 0.0))
