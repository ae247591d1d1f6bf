from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from .constants import DEFAULT_MAX_PAYLOAD, INITIAL_SEQ, SEQ_MAX
from .errors import FramingError, TransportError
from .events import Acknowledged, CloseReason, Received, SessionClosed, Sink, discard
from .net import TcpEndpoint
from .packet import Frame, FrameDecoder
from .pending import PendingSends

logger = logging.getLogger(__name__)

# outbox markers handled by the writer thread
_HALF_CLOSE = object()
_STOP = object()


@dataclass(slots=True)
class Metrics:
    payloads_sent: int = 0
    bytes_sent: int = 0
    payloads_received: int = 0
    bytes_received: int = 0
    acks_received: int = 0
    stale_acks: int = 0
    rtt_total_s: float = 0.0
    rtt_min_s: float | None = None
    rtt_max_s: float | None = None
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    def add_rtt(self, elapsed_s: float) -> None:
        self.acks_received += 1
        self.rtt_total_s += elapsed_s
        if self.rtt_min_s is None or elapsed_s < self.rtt_min_s:
            self.rtt_min_s = elapsed_s
        if self.rtt_max_s is None or elapsed_s > self.rtt_max_s:
            self.rtt_max_s = elapsed_s

    @property
    def rtt_mean_s(self) -> float:
        if self.acks_received == 0:
            return 0.0
        return self.rtt_total_s / self.acks_received

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)


class Session:
    """
    Send path and read loop for one connection.

    Every inbound payload is acknowledged at once and then handed to the sink
    as ``Received``. Every inbound ack resolves a pending send and is reported
    as ``Acknowledged``; acks for unknown sequence numbers are counted and
    dropped. The session ends on end-of-stream, a transport error, a framing
    error, or ``close()``, and reports exactly one ``SessionClosed`` listing the
    sends that were never acknowledged.

    ``run()`` blocks the calling thread; ``start()`` runs it on a new one.
    ``send()`` may be called from any thread. Outbound frames, payloads and
    acks alike, go through a queue drained by a single writer thread, so the
    read loop never waits on the socket's send buffer.
    """

    def __init__(
        self,
        endpoint: TcpEndpoint,
        sink: Sink = discard,
        *,
        session_id: int = 0,
        max_payload: int = DEFAULT_MAX_PAYLOAD,
        initial_seq: int = INITIAL_SEQ,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.endpoint = endpoint
        self.sink = sink
        self.session_id = session_id
        self.max_payload = max_payload
        self.clock = clock
        self.pending = PendingSends()
        self.metrics = Metrics()
        self.close_event: SessionClosed | None = None
        self._decoder = FrameDecoder(max_payload)
        self._next_seq = initial_seq
        self._outbox: queue.Queue = queue.Queue()
        # guards seq assignment, the pending record and the closing flag
        self._lock = threading.Lock()
        self._closing = False
        self._done = threading.Event()
        self._writer = threading.Thread(
            target=self._write_loop, name=f"ackchat-writer-{session_id}", daemon=True
        )
        self._writer.start()

    def __repr__(self) -> str:
        return f"Session(id={self.session_id}, peer={self.endpoint.peer})"

    @property
    def closed(self) -> bool:
        return self._done.is_set()

    # ------------------------------------------------------------------
    # Send path
    # ------------------------------------------------------------------

    def send(self, payload: bytes) -> int:
        """
        Queue one payload for transmission and return its sequence number.

        Raises ``TransportError`` once the session is closing and ``ValueError``
        for an oversized payload or an exhausted sequence space. A transport
        failure after queueing ends the session; the payload is then listed as
        unresolved in ``SessionClosed``.
        """
        with self._lock:
            if self._closing:
                raise TransportError(f"session {self.session_id} is closed")
            seq = self._next_seq
            if seq > SEQ_MAX:
                raise ValueError(f"session {self.session_id} exhausted its sequence space")
            raw = Frame.data(seq, payload, self.max_payload).to_bytes()
            self._next_seq += 1
            # tracked before the bytes are queued so the ack cannot outrun the record
            self.pending.record(seq, self.clock())
            self._outbox.put(raw)
            self.metrics.payloads_sent += 1
            self.metrics.bytes_sent += len(payload)
        logger.debug("session %d: queued #%d (%d bytes)", self.session_id, seq, len(payload))
        return seq

    def _send_ack(self, seq: int) -> None:
        self._outbox.put(Frame.make_ack(seq).to_bytes())

    def shutdown_write(self) -> None:
        """Half-close after everything queued so far: the peer sees end-of-stream, we can still read acks."""
        with self._lock:
            if self._closing:
                return
            self._outbox.put(_HALF_CLOSE)

    def _write_loop(self) -> None:
        while True:
            item = self._outbox.get()
            if item is _STOP or self._closing:
                return
            try:
                if item is _HALF_CLOSE:
                    self.endpoint.shutdown_write()
                else:
                    self.endpoint.sendall(item)
            except TransportError as exc:
                self._teardown(CloseReason.TRANSPORT_ERROR, exc)
                return

    # ------------------------------------------------------------------
    # Receive path
    # ------------------------------------------------------------------

    def run(self) -> SessionClosed:
        try:
            self._read_loop()
        except FramingError as exc:
            self._teardown(CloseReason.FRAMING_ERROR, exc)
        except TransportError as exc:
            self._teardown(CloseReason.TRANSPORT_ERROR, exc)
        finally:
            # no-op unless the loop was left by an exception from the sink
            self._teardown(CloseReason.LOCAL)
        self._done.wait()
        if self.close_event is None:
            raise RuntimeError(f"session {self.session_id} finished without a close event")
        return self.close_event

    def _read_loop(self) -> None:
        while not self._closing:
            data = self.endpoint.recv()
            if not data:
                if self._decoder.buffered:
                    logger.debug(
                        "session %d: %d bytes of a partial frame at end of stream",
                        self.session_id,
                        self._decoder.buffered,
                    )
                # acks already queued for the peer still go out before we close
                self._outbox.put(_STOP)
                self._writer.join()
                self._teardown(CloseReason.EOF)
                return
            self._decoder.feed(data)
            for frame in self._decoder:
                self._dispatch(frame)

    def _dispatch(self, frame: Frame) -> None:
        if frame.is_ack:
            elapsed = self.pending.resolve(frame.seq, self.clock())
            if elapsed is None:
                self.metrics.stale_acks += 1
                logger.debug("session %d: ignoring ack for unknown #%d", self.session_id, frame.seq)
                return
            self.metrics.add_rtt(elapsed)
            logger.debug("session %d: ack #%d after %.6fs", self.session_id, frame.seq, elapsed)
            self.sink(Acknowledged(self.session_id, frame.seq, elapsed))
            return

        self._send_ack(frame.seq)
        self.metrics.payloads_received += 1
        self.metrics.bytes_received += len(frame.payload)
        logger.debug("session %d: received #%d (%d bytes)", self.session_id, frame.seq, len(frame.payload))
        self.sink(Received(self.session_id, frame.seq, frame.payload))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> threading.Thread:
        t = threading.Thread(target=self.run, name=f"ackchat-session-{self.session_id}", daemon=True)
        t.start()
        return t

    def wait(self, timeout: float | None = None) -> SessionClosed | None:
        """Block until the session has ended; ``None`` on timeout."""
        if not self._done.wait(timeout):
            return None
        return self.close_event

    def close(self) -> None:
        self._teardown(CloseReason.LOCAL)

    def _teardown(self, reason: CloseReason, exc: Exception | None = None) -> None:
        with self._lock:
            if self.close_event is not None:
                return
            self._closing = True
            self._outbox.put(_STOP)
            unresolved = self.pending.drain_unresolved()
            self.metrics.end_ts = time.monotonic()
            self.close_event = SessionClosed(
                session_id=self.session_id,
                reason=reason,
                error=str(exc) if exc is not None else None,
                unresolved=frozenset(unresolved),
            )
        if exc is not None:
            logger.warning("session %d (%s) closed: %s: %s", self.session_id, self.endpoint.peer, reason.value, exc)
        else:
            logger.info("session %d (%s) closed: %s", self.session_id, self.endpoint.peer, reason.value)
        if unresolved:
            logger.info("session %d: %d sends never acknowledged: %s", self.session_id, len(unresolved), sorted(unresolved))
        try:
            self.sink(self.close_event)
        finally:
            self.endpoint.close()
            self._done.set()
