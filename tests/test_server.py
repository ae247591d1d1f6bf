from __future__ import annotations

import socket
import threading
import time

import pytest

from ackchat.client import Client
from ackchat.errors import TransportError
from ackchat.events import Acknowledged, CloseReason, QueueSink, Received, SessionClosed, SessionOpened
from ackchat.server import Dispatcher, listen

from helpers import eventually, local_name


def connect(dispatcher, server_sink):
    sink = QueueSink()
    client = Client.connect(*dispatcher.address, sink)
    opened = server_sink.wait_for(SessionOpened, peer=local_name(client.session.endpoint.sock))
    return client, sink, opened.session_id


def test_hello_is_received_and_acknowledged(server):
    dispatcher, server_sink = server
    client, client_sink, sid = connect(dispatcher, server_sink)

    seq = client.send(b"hello")

    assert seq == 1
    ack = client_sink.wait_for(Acknowledged, seq=1)
    assert ack.elapsed_s >= 0
    got = server_sink.wait_for(Received, session_id=sid)
    assert (got.seq, got.payload) == (1, b"hello")
    client.close()


def test_empty_payload_round_trips_like_any_other(server):
    dispatcher, server_sink = server
    client, client_sink, sid = connect(dispatcher, server_sink)

    seq = client.send(b"")

    assert client_sink.wait_for(Acknowledged).seq == seq
    got = server_sink.wait_for(Received, session_id=sid)
    assert got.payload == b""
    client.close()


def test_sessions_are_isolated(server):
    dispatcher, server_sink = server
    first, first_sink, first_id = connect(dispatcher, server_sink)
    second, second_sink, second_id = connect(dispatcher, server_sink)
    assert first_id != second_id

    first.send(b"from first")
    second.send(b"from second")
    assert first_sink.wait_for(Acknowledged).seq == 1
    assert second_sink.wait_for(Acknowledged).seq == 1
    assert server_sink.wait_for(Received, session_id=first_id).payload == b"from first"
    assert server_sink.wait_for(Received, session_id=second_id).payload == b"from second"
    assert not [e for e in first_sink.drain() if isinstance(e, Acknowledged)]
    assert not [e for e in second_sink.drain() if isinstance(e, Acknowledged)]

    # break the first server-side session's transport
    victim = dispatcher.get(first_id)

    def broken_sendall(data: bytes) -> None:
        raise TransportError("injected failure")

    victim.endpoint.sendall = broken_sendall
    first.send(b"trigger")

    failed = server_sink.wait_for(SessionClosed, session_id=first_id)
    assert failed.reason == CloseReason.TRANSPORT_ERROR
    gone = first_sink.wait_for(SessionClosed)
    assert gone.unresolved == {2}

    second.send(b"still here")
    assert second_sink.wait_for(Acknowledged).seq == 2
    assert server_sink.wait_for(Received, session_id=second_id).payload == b"still here"
    assert eventually(lambda: dispatcher.get(first_id) is None)
    assert dispatcher.get(second_id) is not None
    second.close()


def test_garbage_from_one_client_does_not_stop_accepting(server):
    dispatcher, server_sink = server
    raw = socket.create_connection(dispatcher.address, timeout=5.0)
    raw.sendall(b"\xff" * 9)

    closed = server_sink.wait_for(SessionClosed)
    assert closed.reason == CloseReason.FRAMING_ERROR
    raw.close()

    client, client_sink, _ = connect(dispatcher, server_sink)
    client.send(b"after garbage")
    assert client_sink.wait_for(Acknowledged).seq == 1
    client.close()


def test_broadcast_reaches_every_client(server):
    dispatcher, server_sink = server
    first, first_sink, first_id = connect(dispatcher, server_sink)
    second, second_sink, second_id = connect(dispatcher, server_sink)

    sent = dispatcher.broadcast(b"to all")

    assert sent == {first_id: 1, second_id: 1}
    assert first_sink.wait_for(Received).payload == b"to all"
    assert second_sink.wait_for(Received).payload == b"to all"
    assert server_sink.wait_for(Acknowledged, session_id=first_id).seq == 1
    assert server_sink.wait_for(Acknowledged, session_id=second_id).seq == 1
    first.close()
    second.close()


def test_finished_sessions_leave_the_registry(server):
    dispatcher, server_sink = server
    client, _, sid = connect(dispatcher, server_sink)
    assert dispatcher.get(sid) is not None

    client.close()

    assert server_sink.wait_for(SessionClosed, session_id=sid).reason == CloseReason.EOF
    assert eventually(lambda: not dispatcher.sessions())


def test_shutdown_closes_live_sessions(server):
    dispatcher, server_sink = server
    client, client_sink, sid = connect(dispatcher, server_sink)

    dispatcher.shutdown()

    assert server_sink.wait_for(SessionClosed, session_id=sid).reason == CloseReason.LOCAL
    assert client_sink.wait_for(SessionClosed).reason == CloseReason.EOF
    with pytest.raises(TransportError):
        Client.connect(*dispatcher.address, timeout_s=1.0)


def test_listen_reports_bind_failure():
    taken = socket.create_server(("127.0.0.1", 0))
    try:
        with pytest.raises(TransportError):
            listen("127.0.0.1", taken.getsockname()[1])
    finally:
        taken.close()


def test_accept_failures_are_retried_with_a_pause(monkeypatch):
    dispatcher = Dispatcher.bind("127.0.0.1", 0)
    calls = []

    def failing_accept():
        calls.append(time.monotonic())
        raise TransportError("accept failed: too many open files")

    monkeypatch.setattr(dispatcher.listener, "accept", failing_accept)
    t = threading.Thread(target=dispatcher.serve_forever, daemon=True)
    t.start()
    time.sleep(0.35)
    dispatcher.shutdown()
    t.join(5.0)

    assert not t.is_alive()
    assert 1 <= len(calls) <= 6
