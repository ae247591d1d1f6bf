"""ackchat: point-to-point messaging over TCP with per-message acks

Either side sends payloads (text or binary); the receiver acknowledges each
one automatically and the sender reports the round-trip time.

Each connection is a Session: a reader thread decodes frames from the stream
and a writer thread sends queued payloads and acks. The server only keeps a
registry of live sessions, used for broadcast and shutdown.
"""

from .client import Client
from .errors import ChatError, FramingError, ProtocolMismatch, TransportError
from .packet import Frame, FrameDecoder, FrameKind
from .server import Dispatcher
from .session import Session

__all__ = [
    "ChatError",
    "Client",
    "Dispatcher",
    "Frame",
    "FrameDecoder",
    "FrameKind",
    "FramingError",
    "ProtocolMismatch",
    "Session",
    "TransportError",
]
