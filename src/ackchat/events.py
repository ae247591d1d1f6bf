from __future__ import annotations

import enum
import queue
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Union


class CloseReason(str, enum.Enum):
    EOF = "eof"
    LOCAL = "local"
    TRANSPORT_ERROR = "transport_error"
    FRAMING_ERROR = "framing_error"


@dataclass(frozen=True, slots=True)
class SessionOpened:
    session_id: int
    peer: str


@dataclass(frozen=True, slots=True)
class Received:
    session_id: int
    seq: int
    payload: bytes


@dataclass(frozen=True, slots=True)
class Acknowledged:
    session_id: int
    seq: int
    elapsed_s: float


@dataclass(frozen=True, slots=True)
class SessionClosed:
    session_id: int
    reason: CloseReason
    error: str | None = None
    unresolved: frozenset[int] = field(default_factory=frozenset)

    @property
    def ok(self) -> bool:
        return self.reason in (CloseReason.EOF, CloseReason.LOCAL)


Event = Union[SessionOpened, Received, Acknowledged, SessionClosed]
Sink = Callable[[Event], None]


def discard(event: Event) -> None:
    pass


class QueueSink:
    """
    Bounded channel between sessions and a single consumer.

    Sessions block in ``put`` while the queue is full, so a slow consumer
    slows the sessions feeding it instead of growing memory.
    """

    def __init__(self, maxsize: int = 1024):
        self._q: queue.Queue[Event] = queue.Queue(maxsize=maxsize)
        self._backlog: deque[Event] = deque()

    def __call__(self, event: Event) -> None:
        self._q.put(event)

    def get(self, timeout: float | None = None) -> Event:
        if self._backlog:
            return self._backlog.popleft()
        return self._q.get(timeout=timeout)

    def wait_for(self, kind: type, timeout: float = 5.0, **match) -> Event:
        """
        Return the first event of type ``kind`` whose attributes equal ``match``.

        Events that do not match are kept, in order, for later calls. Raises
        ``queue.Empty`` when nothing matches within ``timeout`` seconds.
        """

        def matches(event: Event) -> bool:
            return isinstance(event, kind) and all(getattr(event, k) == v for k, v in match.items())

        for i, event in enumerate(self._backlog):
            if matches(event):
                del self._backlog[i]
                return event

        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise queue.Empty
            event = self._q.get(timeout=remaining)
            if matches(event):
                return event
            self._backlog.append(event)

    def drain(self) -> list[Event]:
        events = list(self._backlog)
        self._backlog.clear()
        while True:
            try:
                events.append(self._q.get_nowait())
            except queue.Empty:
                return events
