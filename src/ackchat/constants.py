from __future__ import annotations

HEADER_FORMAT = "!BII"  # kind, seq, payload_len

PAYLOAD = 0
ACK = 1

SEQ_MAX = 0xFFFF_FFFF
INITIAL_SEQ = 1

DEFAULT_MAX_PAYLOAD = 16 * 1024 * 1024
DEFAULT_HOST = "127.0.0.1"
DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_PORT = 12345

RECV_CHUNK = 65536
DEFAULT_LINGER_S = 5.0
ACCEPT_RETRY_S = 0.1
