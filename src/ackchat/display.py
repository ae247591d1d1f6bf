"""
Console output for session events.

Human-readable lines follow the ``--display`` mode; ``--json`` switches to one
JSON object per line instead. This module only formats: it never touches
session state.
"""

from __future__ import annotations

import json
import sys
import threading
from typing import Any, TextIO

from .config import Display
from .events import Acknowledged, Event, Received, SessionClosed, SessionOpened


def render_payload(payload: bytes, display: Display) -> str:
    if display == "none":
        return f"{len(payload)} bytes received"
    if display == "utf8":
        try:
            return f"message[utf8]: {payload.decode('utf-8')}"
        except UnicodeDecodeError:
            pass
    return f"message: {payload!r}"


def format_event(event: Event, display: Display = "binary") -> str:
    prefix = f"[{event.session_id}]"
    if isinstance(event, Received):
        return f"{prefix} #{event.seq} {render_payload(event.payload, display)}"
    if isinstance(event, Acknowledged):
        return f"{prefix} ack #{event.seq} in {event.elapsed_s * 1000:.3f} ms"
    if isinstance(event, SessionOpened):
        return f"{prefix} connected: {event.peer}"
    if isinstance(event, SessionClosed):
        line = f"{prefix} connection closed ({event.reason.value})"
        if event.error:
            line += f": {event.error}"
        if event.unresolved:
            line += f"; never acknowledged: {', '.join(str(s) for s in sorted(event.unresolved))}"
        return line
    raise TypeError(f"unknown event: {event!r}")


def event_record(event: Event, display: Display = "binary") -> dict[str, Any]:
    record: dict[str, Any] = {"session": event.session_id}
    if isinstance(event, Received):
        record.update(event="received", seq=event.seq, size=len(event.payload))
        if display == "utf8":
            record["payload"] = event.payload.decode("utf-8", errors="backslashreplace")
        elif display == "binary":
            record["payload_hex"] = event.payload.hex()
    elif isinstance(event, Acknowledged):
        record.update(event="acknowledged", seq=event.seq, rtt_ms=round(event.elapsed_s * 1000, 3))
    elif isinstance(event, SessionOpened):
        record.update(event="opened", peer=event.peer)
    elif isinstance(event, SessionClosed):
        record.update(
            event="closed",
            reason=event.reason.value,
            error=event.error,
            unresolved=sorted(event.unresolved),
        )
    else:
        raise TypeError(f"unknown event: {event!r}")
    return record


class ConsoleSink:
    """Writes each event as one line. Safe to call from every session thread."""

    def __init__(self, display: Display = "binary", json_output: bool = False, stream: TextIO | None = None):
        self.display = display
        self.json_output = json_output
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def __call__(self, event: Event) -> None:
        if self.json_output:
            line = json.dumps(event_record(event, self.display), ensure_ascii=False, separators=(",", ":"))
        else:
            line = format_event(event, self.display)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()
