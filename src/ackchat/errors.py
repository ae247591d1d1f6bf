from __future__ import annotations


class ChatError(Exception):
    """Base class for ackchat errors."""


class TransportError(ChatError):
    """The byte stream failed: refused, reset, broken pipe, or already closed."""


class FramingError(ChatError, ValueError):
    """
    Inbound bytes do not form a valid frame.

    Raised for an unrecognized kind tag or a length field above the configured
    maximum. The stream can no longer be trusted once this is raised.
    """


class ProtocolMismatch(FramingError):
    """An acknowledgment frame announced a nonzero payload length."""
