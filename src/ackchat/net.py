from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass
from typing import Tuple

from .constants import RECV_CHUNK
from .errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Impairment:
    delay_ms: int = 0

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


def describe_peer(sock: socket.socket) -> str:
    try:
        peer = sock.getpeername()
    except OSError:
        return "?"
    if isinstance(peer, tuple):
        return f"{peer[0]}:{peer[1]}"
    return str(peer) or "local"


class TcpEndpoint:
    """One connected stream socket. Errors surface as ``TransportError``."""

    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment or Impairment()
        self.peer = describe_peer(sock)
        if sock.family in (socket.AF_INET, socket.AF_INET6):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    @classmethod
    def connecting(
        cls,
        host: str,
        port: int,
        timeout_s: float | None = None,
        impairment: Impairment | None = None,
    ) -> "TcpEndpoint":
        try:
            sock = socket.create_connection((host, port), timeout=timeout_s)
        except OSError as exc:
            raise TransportError(f"cannot connect to {host}:{port}: {exc}") from exc
        sock.settimeout(None)
        return cls(sock, impairment)

    def sendall(self, data: bytes) -> None:
        self.impairment.sleep_if_needed()
        try:
            self.sock.sendall(data)
        except OSError as exc:
            raise TransportError(f"send to {self.peer} failed: {exc}") from exc

    def recv(self, bufsize: int = RECV_CHUNK) -> bytes:
        """Return the next chunk, or ``b""`` once the peer has closed."""
        try:
            return self.sock.recv(bufsize)
        except OSError as exc:
            raise TransportError(f"receive from {self.peer} failed: {exc}") from exc

    def shutdown_write(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_WR)
        except OSError as exc:
            raise TransportError(f"half-close to {self.peer} failed: {exc}") from exc

    def close(self) -> None:
        # shutdown first so a reader blocked in recv() on another thread wakes up
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            logger.debug("shutdown on %s: socket already disconnected", self.peer)
        self.sock.close()


class TcpListener:
    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        backlog: int = 128,
        impairment: Impairment | None = None,
    ) -> "TcpListener":
        try:
            sock = socket.create_server((host, port), backlog=backlog)
        except OSError as exc:
            raise TransportError(f"cannot listen on {host}:{port}: {exc}") from exc
        return cls(sock, impairment)

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def accept(self) -> TcpEndpoint:
        try:
            conn, _ = self.sock.accept()
        except OSError as exc:
            raise TransportError(f"accept failed: {exc}") from exc
        return TcpEndpoint(conn, self.impairment)

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            logger.debug("listener shutdown: not connected")
        self.sock.close()
