from __future__ import annotations

import socket
import threading

import pytest

from ackchat.events import QueueSink
from ackchat.server import Dispatcher


@pytest.fixture
def server():
    sink = QueueSink()
    dispatcher = Dispatcher.bind("127.0.0.1", 0, sink)
    t = threading.Thread(target=dispatcher.serve_forever, daemon=True)
    t.start()
    yield dispatcher, sink
    dispatcher.shutdown()
    t.join(timeout=5.0)


@pytest.fixture
def closed_port() -> int:
    """A loopback port with nothing listening on it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
