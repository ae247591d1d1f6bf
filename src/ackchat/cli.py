from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from dataclasses import asdict
from typing import Iterable

from .bench import run_benchmark
from .client import Client
from .config import ChatConfig
from .constants import DEFAULT_LINGER_S
from .display import ConsoleSink
from .errors import TransportError
from .events import Sink
from .net import Impairment
from .server import Dispatcher
from .source import iter_payloads

logger = logging.getLogger(__name__)


def run(config: ChatConfig, payloads: Iterable[bytes], sink: Sink, linger_s: float = DEFAULT_LINGER_S) -> int:
    """Start a server or a client according to ``config.mode``; return the exit code."""
    if config.mode == "server":
        return serve(config, payloads, sink)
    return chat(config, payloads, sink, linger_s)


def serve(config: ChatConfig, payloads: Iterable[bytes], sink: Sink) -> int:
    try:
        dispatcher = Dispatcher.bind(
            config.host,
            config.port,
            sink,
            max_payload=config.max_payload,
            initial_seq=config.initial_seq,
            impairment=Impairment(config.delay_ms),
        )
    except TransportError as exc:
        logger.error("%s", exc)
        return 1

    def pump() -> None:
        for payload in payloads:
            try:
                sent = dispatcher.broadcast(payload)
            except ValueError as exc:
                logger.warning("message not sent: %s", exc)
                continue
            if not sent:
                logger.info("no connected peers; message dropped")
        logger.info("still receiving from peers")

    threading.Thread(target=pump, name="ackchat-input", daemon=True).start()
    try:
        dispatcher.serve_forever()
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        dispatcher.shutdown()
    return 0


def chat(config: ChatConfig, payloads: Iterable[bytes], sink: Sink, linger_s: float = DEFAULT_LINGER_S) -> int:
    try:
        client = Client.connect(
            config.host,
            config.port,
            sink,
            max_payload=config.max_payload,
            initial_seq=config.initial_seq,
            impairment=Impairment(config.delay_ms),
        )
    except TransportError as exc:
        logger.error("%s", exc)
        return 1

    try:
        closed = client.run(payloads, linger_s=linger_s)
    except KeyboardInterrupt:
        logger.info("interrupted")
        client.close()
        return 0
    return 0 if closed.ok else 1


def cmd_chat(args: argparse.Namespace, config: ChatConfig) -> int:
    sink = ConsoleSink(config.display, config.json_output)
    payloads = iter_payloads(sys.stdin.buffer, config.input_mode)
    if config.mode == "server":
        logger.info("running as server")
    else:
        logger.info("running as client")
    if sys.stdin.isatty():
        hint = "Ctrl+D to send" if config.input_mode == "eof" else "Enter to send"
        logger.info("reading stdin, %s", hint)
    return run(config, payloads, sink, linger_s=args.linger)


def cmd_bench(args: argparse.Namespace, config: ChatConfig) -> int:
    r = run_benchmark(
        count=args.count,
        size_bytes=args.size_bytes,
        delay_ms=config.delay_ms,
        max_payload=config.max_payload,
    )
    payload = {"role": "bench", **asdict(r)}
    print(json.dumps(payload, indent=2) if config.json_output else payload)
    return 0 if r.unresolved == 0 else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ackchat", description="Point-to-point messaging with per-message acks and RTT.")
    p.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--max-payload", type=int, default=None, help="largest payload accepted, in bytes")
        x.add_argument("--delay-ms", type=int, default=None, help="simulate outbound send delay")
        x.add_argument("--json", action="store_true")

    def add_chat(x: argparse.ArgumentParser) -> None:
        add_common(x)
        x.add_argument("--host", default=None)
        x.add_argument("--port", type=int, default=None)
        x.add_argument("--display", choices=["binary", "utf8", "none"], default="binary",
                       help="how received messages are printed")
        x.add_argument("--input", dest="input_mode", choices=["lines", "eof"], default="lines",
                       help="one message per line, or one per end-of-file (Ctrl+D)")
        x.add_argument("--initial-seq", type=int, default=None)
        x.add_argument("--linger", type=float, default=DEFAULT_LINGER_S,
                       help="seconds to wait for outstanding acks after input ends")
        x.set_defaults(func=cmd_chat)

    serve = sub.add_parser("serve", help="accept connections from any number of clients")
    add_chat(serve)
    serve.set_defaults(mode="server")

    connect = sub.add_parser("connect", help="connect to a server")
    add_chat(connect)
    connect.set_defaults(mode="client")

    bench = sub.add_parser("bench", help="loopback round-trip benchmark")
    add_common(bench)
    bench.add_argument("--count", type=int, default=100)
    bench.add_argument("--size-bytes", type=int, default=64)
    bench.set_defaults(func=cmd_bench, mode="client")

    return p


def config_from_args(args: argparse.Namespace) -> ChatConfig:
    base = ChatConfig.load_from_env(args.mode)
    return base.with_overrides(
        host=getattr(args, "host", None),
        port=getattr(args, "port", None),
        max_payload=args.max_payload,
        initial_seq=getattr(args, "initial_seq", None),
        delay_ms=args.delay_ms,
        display=getattr(args, "display", None),
        input_mode=getattr(args, "input_mode", None),
        json_output=args.json,
        log_level=args.log_level,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stderr,
    )
    return int(args.func(args, config))


if __name__ == "__main__":
    raise SystemExit(main())
