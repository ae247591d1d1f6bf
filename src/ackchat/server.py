from __future__ import annotations

import itertools
import logging
import threading
from typing import Tuple

from .constants import ACCEPT_RETRY_S, DEFAULT_MAX_PAYLOAD, INITIAL_SEQ
from .errors import TransportError
from .events import SessionOpened, Sink, discard
from .net import Impairment, TcpEndpoint, TcpListener
from .session import Session

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Accepts connections and runs one ``Session`` per connection on its own thread.

    The dispatcher only supervises: it hands out session ids, keeps a registry
    of live sessions, and drops them when they end. Sessions share nothing but
    the read-only settings passed in here, so one failing session never
    touches another or the accept loop.
    """

    def __init__(
        self,
        listener: TcpListener,
        sink: Sink = discard,
        *,
        max_payload: int = DEFAULT_MAX_PAYLOAD,
        initial_seq: int = INITIAL_SEQ,
    ):
        self.listener = listener
        self.sink = sink
        self.max_payload = max_payload
        self.initial_seq = initial_seq
        self._ids = itertools.count(1)
        self._sessions: dict[int, Session] = {}
        self._lock = threading.Lock()
        self._stopping = threading.Event()

    @classmethod
    def bind(
        cls,
        host: str,
        port: int,
        sink: Sink = discard,
        *,
        max_payload: int = DEFAULT_MAX_PAYLOAD,
        initial_seq: int = INITIAL_SEQ,
        impairment: Impairment | None = None,
    ) -> "Dispatcher":
        listener = TcpListener.listening(host, port, impairment=impairment)
        return cls(listener, sink, max_payload=max_payload, initial_seq=initial_seq)

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    @property
    def address(self) -> Tuple[str, int]:
        return self.listener.address

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def get(self, session_id: int) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def serve_forever(self) -> None:
        host, port = self.address
        logger.info("listening on %s:%d", host, port)
        while not self._stopping.is_set():
            try:
                endpoint = self.listener.accept()
            except TransportError as exc:
                if self._stopping.is_set() or self.listener.sock.fileno() < 0:
                    break
                logger.warning("%s; retrying in %.1fs", exc, ACCEPT_RETRY_S)
                self._stopping.wait(ACCEPT_RETRY_S)
                continue
            if self._stopping.is_set():
                endpoint.close()
                break
            self._spawn(endpoint)
        logger.info("no longer accepting connections")

    def _spawn(self, endpoint: TcpEndpoint) -> Session:
        session_id = next(self._ids)
        session = Session(
            endpoint,
            self.sink,
            session_id=session_id,
            max_payload=self.max_payload,
            initial_seq=self.initial_seq,
        )
        with self._lock:
            self._sessions[session_id] = session
        logger.info("session %d: accepted %s", session_id, endpoint.peer)
        self.sink(SessionOpened(session_id, endpoint.peer))
        threading.Thread(
            target=self._run_session,
            args=(session,),
            name=f"ackchat-session-{session_id}",
            daemon=True,
        ).start()
        return session

    def _run_session(self, session: Session) -> None:
        try:
            session.run()
        finally:
            with self._lock:
                self._sessions.pop(session.session_id, None)

    def broadcast(self, payload: bytes) -> dict[int, int]:
        """
        Send ``payload`` to every live session.

        Returns the sequence number each session assigned, keyed by session id.
        Sessions whose connection fails during the send are left out.
        """
        sent: dict[int, int] = {}
        for session in self.sessions():
            try:
                sent[session.session_id] = session.send(payload)
            except TransportError as exc:
                logger.warning("session %d: broadcast skipped: %s", session.session_id, exc)
        return sent

    def shutdown(self) -> None:
        if self._stopping.is_set():
            return
        self._stopping.set()
        self.listener.close()
        for session in self.sessions():
            session.close()


def listen(
    host: str,
    port: int,
    sink: Sink = discard,
    *,
    max_payload: int = DEFAULT_MAX_PAYLOAD,
    initial_seq: int = INITIAL_SEQ,
) -> None:
    """Bind and serve until shut down. Raises ``TransportError`` if binding fails."""
    dispatcher = Dispatcher.bind(host, port, sink, max_payload=max_payload, initial_seq=initial_seq)
    try:
        dispatcher.serve_forever()
    finally:
        dispatcher.shutdown()
