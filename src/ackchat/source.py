from __future__ import annotations

import logging
from typing import BinaryIO, Iterator

from .config import InputMode

logger = logging.getLogger(__name__)


def iter_lines(stream: BinaryIO) -> Iterator[bytes]:
    """One payload per line, without the line ending. Blank lines are empty payloads."""
    for line in stream:
        yield line.rstrip(b"\r\n")


def iter_reads(stream: BinaryIO) -> Iterator[bytes]:
    """
    One payload per read-to-end-of-file.

    On a terminal every Ctrl+D ends one message and reading resumes; piped
    input is sent as a single message. An empty read ends the input.
    """
    interactive = stream.isatty()
    while True:
        data = stream.read()
        if not data:
            return
        yield data
        if not interactive:
            return


def iter_payloads(stream: BinaryIO, mode: InputMode = "lines") -> Iterator[bytes]:
    if mode == "eof":
        yield from iter_reads(stream)
    else:
        yield from iter_lines(stream)
    logger.info("no more input")
