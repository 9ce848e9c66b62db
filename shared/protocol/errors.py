from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Reasons a frame or connection is rejected."""

    MALFORMED_HELLO = 1001
    VERSION_MISMATCH = 1002
    FRAME_TOO_LARGE = 1003
    TRUNCATED_PAYLOAD = 1004
    CONNECTION_LOST = 1005


class ProtocolError(Exception):
    """Structured protocol exception carrying an error code + message."""

    def __init__(self, code: ErrorCode, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code.name} ({int(code)}): {message}")


__all__ = ["ErrorCode", "ProtocolError"]
