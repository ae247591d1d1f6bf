from __future__ import annotations

import threading


class PendingSends:
    """
    Payloads sent on one connection that are still waiting for their ack.

    Maps sequence number to send timestamp. The session's reader thread
    resolves entries while an input thread may be recording new ones, so all
    access goes through one lock owned by this tracker.
    """

    def __init__(self) -> None:
        self._sent_at: dict[int, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sent_at)

    def __contains__(self, seq: int) -> bool:
        with self._lock:
            return seq in self._sent_at

    def record(self, seq: int, timestamp: float) -> None:
        with self._lock:
            if seq in self._sent_at:
                raise ValueError(f"sequence number already pending: {seq}")
            self._sent_at[seq] = timestamp

    def resolve(self, seq: int, now: float) -> float | None:
        """
        Remove ``seq`` and return the elapsed seconds since it was recorded.

        Returns ``None`` when ``seq`` is not pending (duplicate or spurious ack).
        """
        with self._lock:
            sent_at = self._sent_at.pop(seq, None)
        if sent_at is None:
            return None
        return max(0.0, now - sent_at)

    def drain_unresolved(self) -> set[int]:
        with self._lock:
            unresolved = set(self._sent_at)
            self._sent_at.clear()
        return unresolved
