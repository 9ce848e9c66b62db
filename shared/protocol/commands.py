from __future__ import annotations

from enum import IntEnum
from typing import Optional, Union


class MsgType(IntEnum):
    """Frame type byte. Closed set for protocol v1."""

    HELLO = 0x01
    HELLO_ACK = 0x02
    GOODBYE = 0x03
    GOODBYE_ACK = 0x04
    INFO = 0x05
    SYNC = 0x06


class GoodbyeReason(IntEnum):
    CLIENT_REQUEST = 0
    SERVER_SHUTDOWN = 1
    PROTOCOL_ERROR = 2


class SyncReason(IntEnum):
    INITIAL = 0
    LOAD_STATE = 1
    RESET = 2


def lookup_msg_type(value: Union[int, MsgType]) -> Optional[MsgType]:
    """Map a raw type byte to MsgType, or None for types this version does not know."""
    try:
        return MsgType(value)
    except ValueError:
        return None


__all__ = ["MsgType", "GoodbyeReason", "SyncReason", "lookup_msg_type"]
