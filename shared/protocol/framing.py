from __future__ import annotations

from typing import Optional, Tuple, Union

from .commands import MsgType
from .constants import ENCODING, FRAME_HEADER_SIZE, MAX_PAYLOAD_SIZE
from .errors import ErrorCode, ProtocolError

BytesLike = Union[bytes, bytearray, memoryview]


def _write_int(out: bytearray, value: int, width: int) -> None:
    # Mask like a C cast so negative / oversized values never raise.
    mask = (1 << (8 * width)) - 1
    out += (int(value) & mask).to_bytes(width, "little")


def write_u8(out: bytearray, value: int) -> None:
    _write_int(out, value, 1)


def write_u16le(out: bytearray, value: int) -> None:
    _write_int(out, value, 2)


def write_u32le(out: bytearray, value: int) -> None:
    _write_int(out, value, 4)


def write_i16le(out: bytearray, value: int) -> None:
    _write_int(out, value, 2)


def write_i32le(out: bytearray, value: int) -> None:
    _write_int(out, value, 4)


def write_len16_bytes(out: bytearray, data: BytesLike) -> None:
    """Append u16le length + data; anything past 65535 bytes is dropped."""
    data = bytes(data[:MAX_PAYLOAD_SIZE])
    write_u16le(out, len(data))
    out += data


def write_len16_string(out: bytearray, text: str) -> None:
    """Append a UTF-8 string with a u16le byte-length prefix, truncated to 65535 bytes."""
    write_len16_bytes(out, text.encode(ENCODING))


def write_cpu_cycle40le(out: bytearray, cycle_count: int) -> None:
    """Low 40 bits of the cycle counter as 5 little-endian bytes."""
    _write_int(out, cycle_count, 5)


def make_frame(msg_type: Union[MsgType, int], payload: BytesLike = b"") -> bytes:
    """Encode one frame: 1 byte type + 2 bytes little-endian len + payload."""
    if not (0 <= int(msg_type) <= 0xFF):
        raise ProtocolError(ErrorCode.FRAME_TOO_LARGE, message="Frame type must be 0-255")
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ProtocolError(ErrorCode.FRAME_TOO_LARGE, message=f"Payload of {len(payload)} bytes exceeds u16 length")
    out = bytearray()
    write_u8(out, int(msg_type))
    write_u16le(out, len(payload))
    out += payload
    return bytes(out)


def read_u16le(data: BytesLike, offset: int = 0) -> int:
    return data[offset] | (data[offset + 1] << 8)


def peek_frame(buf: BytesLike) -> Optional[Tuple[int, int]]:
    """Return (type, payload length) when a whole frame sits at the front of buf."""
    if len(buf) < FRAME_HEADER_SIZE:
        return None
    length = read_u16le(buf, 1)
    if len(buf) < FRAME_HEADER_SIZE + length:
        return None
    return buf[0], length


def split_frame(data: BytesLike) -> Tuple[int, bytes]:
    """Decode exactly one complete frame."""
    header = peek_frame(data)
    if header is None:
        raise ProtocolError(ErrorCode.TRUNCATED_PAYLOAD, message="Incomplete frame")
    msg_type, length = header
    return msg_type, bytes(data[FRAME_HEADER_SIZE : FRAME_HEADER_SIZE + length])


__all__ = [
    "write_u8",
    "write_u16le",
    "write_u32le",
    "write_i16le",
    "write_i32le",
    "write_len16_bytes",
    "write_len16_string",
    "write_cpu_cycle40le",
    "make_frame",
    "read_u16le",
    "peek_frame",
    "split_frame",
]
