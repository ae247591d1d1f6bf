"""
Process configuration.

Built once at startup from the environment and the command line, then passed
down as plain values. Sessions only read ``max_payload`` and ``initial_seq``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Literal

from .constants import DEFAULT_HOST, DEFAULT_LISTEN_HOST, DEFAULT_MAX_PAYLOAD, DEFAULT_PORT, INITIAL_SEQ

Mode = Literal["server", "client"]
Display = Literal["binary", "utf8", "none"]
InputMode = Literal["lines", "eof"]


@dataclass(frozen=True, slots=True)
class ChatConfig:
    mode: Mode = "client"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_payload: int = DEFAULT_MAX_PAYLOAD
    initial_seq: int = INITIAL_SEQ
    delay_ms: int = 0
    display: Display = "binary"
    input_mode: InputMode = "lines"
    json_output: bool = False
    log_level: str = "INFO"

    @property
    def address(self) -> tuple[str, int]:
        return self.host, self.port

    def with_overrides(self, **changes) -> "ChatConfig":
        """Return a copy with every non-``None`` value in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @staticmethod
    def load_from_env(mode: Mode = "client") -> "ChatConfig":
        """
        Read ``ACKCHAT_*`` variables.

        Raises:
            ValueError if a numeric variable is not an integer.
        """
        default_host = DEFAULT_LISTEN_HOST if mode == "server" else DEFAULT_HOST
        return ChatConfig(
            mode=mode,
            host=os.environ.get("ACKCHAT_HOST", default_host),
            port=int(os.environ.get("ACKCHAT_PORT", DEFAULT_PORT)),
            max_payload=int(os.environ.get("ACKCHAT_MAX_PAYLOAD", DEFAULT_MAX_PAYLOAD)),
            log_level=os.environ.get("ACKCHAT_LOG_LEVEL", "INFO"),
        )
