"""Protocol-wide constants shared by the streamer and its client."""

PROTOCOL_MAJOR = 1
PROTOCOL_MINOR = 0
LOOPBACK_HOST = "127.0.0.1"
PORT_START = 63783
PORT_ATTEMPTS = 10
FRAME_HEADER_SIZE = 3  # type:u8 + length:u16le
MAX_PAYLOAD_SIZE = 0xFFFF
ENCODING = "utf-8"

__all__ = [
    "PROTOCOL_MAJOR",
    "PROTOCOL_MINOR",
    "LOOPBACK_HOST",
    "PORT_START",
    "PORT_ATTEMPTS",
    "FRAME_HEADER_SIZE",
    "MAX_PAYLOAD_SIZE",
    "ENCODING",
]
