from __future__ import annotations

import logging
import threading
from typing import Iterable

from .constants import DEFAULT_LINGER_S, DEFAULT_MAX_PAYLOAD, INITIAL_SEQ
from .errors import TransportError
from .events import SessionClosed, Sink, discard
from .net import Impairment, TcpEndpoint
from .session import Session

logger = logging.getLogger(__name__)


class Client:
    """One outbound connection, one session. No reconnection."""

    def __init__(self, session: Session):
        self.session = session

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        sink: Sink = discard,
        *,
        max_payload: int = DEFAULT_MAX_PAYLOAD,
        initial_seq: int = INITIAL_SEQ,
        timeout_s: float | None = None,
        impairment: Impairment | None = None,
    ) -> "Client":
        """Connect and start reading. Raises ``TransportError`` when the connect fails."""
        endpoint = TcpEndpoint.connecting(host, port, timeout_s=timeout_s, impairment=impairment)
        logger.info("connected to %s", endpoint.peer)
        session = Session(endpoint, sink, session_id=0, max_payload=max_payload, initial_seq=initial_seq)
        session.start()
        return cls(session)

    def send(self, payload: bytes) -> int:
        return self.session.send(payload)

    def run(self, payloads: Iterable[bytes], linger_s: float = DEFAULT_LINGER_S) -> SessionClosed:
        """
        Send every payload, then shut down gracefully.

        Input is pumped on a separate thread so the session can end (peer
        disconnect) while the input source is still blocked. Returns once the
        session has closed.
        """
        pump = threading.Thread(
            target=self._pump, args=(payloads, linger_s), name="ackchat-input", daemon=True
        )
        pump.start()
        closed = self.session.wait()
        if closed is None:
            raise RuntimeError("session ended without a close event")
        return closed

    def _pump(self, payloads: Iterable[bytes], linger_s: float) -> None:
        for payload in payloads:
            if self.session.closed:
                return
            try:
                self.session.send(payload)
            except ValueError as exc:
                logger.warning("message not sent: %s", exc)
            except TransportError:
                return
        self.finish(linger_s)

    def finish(self, linger_s: float = DEFAULT_LINGER_S) -> SessionClosed:
        """Half-close, wait up to ``linger_s`` for outstanding acks, then close."""
        try:
            self.session.shutdown_write()
        except TransportError as exc:
            logger.debug("half-close failed: %s", exc)
        closed = self.session.wait(linger_s)
        if closed is None:
            logger.info("peer still open after %.1fs; closing", linger_s)
            self.session.close()
            closed = self.session.wait()
        if closed is None:
            raise RuntimeError("session ended without a close event")
        return closed

    def close(self) -> None:
        self.session.close()


def connect(
    host: str,
    port: int,
    sink: Sink = discard,
    *,
    max_payload: int = DEFAULT_MAX_PAYLOAD,
    initial_seq: int = INITIAL_SEQ,
) -> Client:
    return Client.connect(host, port, sink, max_payload=max_payload, initial_seq=initial_seq)
