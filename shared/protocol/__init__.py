"""
Shared protocol package: message types, wire constants, frame/field writers
and payload models used by both the streamer and its client.
"""

from .commands import GoodbyeReason, MsgType, SyncReason, lookup_msg_type
from .constants import (
    ENCODING,
    FRAME_HEADER_SIZE,
    LOOPBACK_HOST,
    MAX_PAYLOAD_SIZE,
    PORT_ATTEMPTS,
    PORT_START,
    PROTOCOL_MAJOR,
    PROTOCOL_MINOR,
)
from .errors import ErrorCode, ProtocolError
from .framing import (
    make_frame,
    peek_frame,
    read_u16le,
    split_frame,
    write_cpu_cycle40le,
    write_i16le,
    write_i32le,
    write_len16_bytes,
    write_len16_string,
    write_u8,
    write_u16le,
    write_u32le,
)
from .messages import (
    FrameMsg,
    GoodbyeAckMsg,
    GoodbyeMsg,
    HelloAckMsg,
    HelloMsg,
    InfoSnapshot,
    SyncMsg,
    SyncSnapshot,
)

__all__ = [
    "MsgType",
    "GoodbyeReason",
    "SyncReason",
    "lookup_msg_type",
    "ENCODING",
    "FRAME_HEADER_SIZE",
    "LOOPBACK_HOST",
    "MAX_PAYLOAD_SIZE",
    "PORT_ATTEMPTS",
    "PORT_START",
    "PROTOCOL_MAJOR",
    "PROTOCOL_MINOR",
    "ErrorCode",
    "ProtocolError",
    "make_frame",
    "peek_frame",
    "read_u16le",
    "split_frame",
    "write_cpu_cycle40le",
    "write_i16le",
    "write_i32le",
    "write_len16_bytes",
    "write_len16_string",
    "write_u8",
    "write_u16le",
    "write_u32le",
    "FrameMsg",
    "HelloMsg",
    "HelloAckMsg",
    "GoodbyeMsg",
    "GoodbyeAckMsg",
    "InfoSnapshot",
    "SyncSnapshot",
    "SyncMsg",
]
