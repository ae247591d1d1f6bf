from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

from .constants import ACK, DEFAULT_MAX_PAYLOAD, HEADER_FORMAT, PAYLOAD, SEQ_MAX
from .errors import FramingError, ProtocolMismatch

HEADER = struct.Struct(HEADER_FORMAT)
HEADER_SIZE = HEADER.size


class FrameKind(enum.IntEnum):
    PAYLOAD = PAYLOAD
    ACK = ACK


@dataclass(frozen=True, slots=True)
class Frame:
    kind: FrameKind
    seq: int
    payload: bytes = b""

    @property
    def is_ack(self) -> bool:
        return self.kind == FrameKind.ACK

    def to_bytes(self) -> bytes:
        if not 0 <= self.seq <= SEQ_MAX:
            raise ValueError(f"sequence number out of range: {self.seq}")
        return HEADER.pack(int(self.kind), self.seq, len(self.payload)) + self.payload

    @staticmethod
    def data(seq: int, payload: bytes, max_payload: int = DEFAULT_MAX_PAYLOAD) -> "Frame":
        if len(payload) > max_payload:
            raise ValueError(f"payload too large: {len(payload)} > {max_payload}")
        return Frame(kind=FrameKind.PAYLOAD, seq=seq, payload=bytes(payload))

    @staticmethod
    def make_ack(seq: int) -> "Frame":
        return Frame(kind=FrameKind.ACK, seq=seq)


def parse_header(raw: bytes | bytearray | memoryview, max_payload: int) -> tuple[FrameKind, int, int]:
    """Validate a frame header and return ``(kind, seq, payload_len)``."""
    kind, seq, length = HEADER.unpack_from(raw)
    try:
        kind = FrameKind(kind)
    except ValueError:
        raise FramingError(f"unrecognized frame kind: {kind}") from None
    if kind == FrameKind.ACK and length != 0:
        raise ProtocolMismatch(f"ack #{seq} carries {length} payload bytes")
    if length > max_payload:
        raise FramingError(f"payload length {length} exceeds maximum {max_payload}")
    return kind, seq, length


class FrameDecoder:
    """
    Incremental decoder for the inbound byte stream.

    Bytes arrive in arbitrary chunks through ``feed``; ``next_frame`` returns
    the next complete frame, or ``None`` while more data is needed. Partial
    frames stay buffered between calls. The header is validated as soon as it
    is complete, so a hostile length field is rejected before any of its
    payload is buffered.
    """

    def __init__(self, max_payload: int = DEFAULT_MAX_PAYLOAD):
        self.max_payload = max_payload
        self._buf = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> None:
        self._buf.extend(data)

    def next_frame(self) -> Frame | None:
        if len(self._buf) < HEADER_SIZE:
            return None
        kind, seq, length = parse_header(self._buf, self.max_payload)
        end = HEADER_SIZE + length
        if len(self._buf) < end:
            return None
        payload = bytes(self._buf[HEADER_SIZE:end])
        del self._buf[:end]
        return Frame(kind=kind, seq=seq, payload=payload)

    def __iter__(self):
        while True:
            frame = self.next_frame()
            if frame is None:
                return
            yield frame


def decode_all(raw: bytes, max_payload: int = DEFAULT_MAX_PAYLOAD) -> list[Frame]:
    """Decode a buffer that holds only complete frames."""
    decoder = FrameDecoder(max_payload)
    decoder.feed(raw)
    frames = list(decoder)
    if decoder.buffered:
        raise FramingError(f"{decoder.buffered} trailing bytes do not form a frame")
    return frames
