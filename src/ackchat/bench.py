from __future__ import annotations

import threading
from dataclasses import dataclass

from .client import Client
from .constants import DEFAULT_MAX_PAYLOAD
from .net import Impairment
from .server import Dispatcher


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    messages: int
    acknowledged: int
    unresolved: int
    bytes_sent: int
    duration_s: float
    rtt_min_ms: float
    rtt_mean_ms: float
    rtt_max_ms: float


def run_benchmark(
    *,
    count: int,
    size_bytes: int,
    delay_ms: int = 0,
    max_payload: int = DEFAULT_MAX_PAYLOAD,
    linger_s: float = 10.0,
) -> BenchmarkResult:
    if size_bytes > max_payload:
        raise ValueError(f"size_bytes {size_bytes} exceeds max_payload {max_payload}")

    impair = Impairment(delay_ms=delay_ms)
    dispatcher = Dispatcher.bind("127.0.0.1", 0, max_payload=max_payload, impairment=impair)
    host, port = dispatcher.address

    t = threading.Thread(target=dispatcher.serve_forever, daemon=True)
    t.start()

    try:
        client = Client.connect(host, port, max_payload=max_payload, impairment=impair)
        payload = b"A" * size_bytes
        closed = client.run((payload for _ in range(count)), linger_s=linger_s)
    finally:
        dispatcher.shutdown()
        t.join(timeout=5.0)

    metrics = client.session.metrics
    return BenchmarkResult(
        messages=metrics.payloads_sent,
        acknowledged=metrics.acks_received,
        unresolved=len(closed.unresolved),
        bytes_sent=metrics.bytes_sent,
        duration_s=max(0.001, metrics.duration_s),
        rtt_min_ms=(metrics.rtt_min_s or 0.0) * 1000,
        rtt_mean_ms=metrics.rtt_mean_s * 1000,
        rtt_max_ms=(metrics.rtt_max_s or 0.0) * 1000,
    )
