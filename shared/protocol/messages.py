from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from . import framing
from .commands import GoodbyeReason, MsgType, SyncReason
from .constants import ENCODING, PROTOCOL_MAJOR, PROTOCOL_MINOR
from .errors import ErrorCode, ProtocolError

BytesLike = Union[bytes, bytearray, memoryview]


class _PayloadReader:
    """Sequential little-endian reader used by the client-side decoders."""

    def __init__(self, data: BytesLike) -> None:
        self._data = bytes(data)
        self._pos = 0

    def _take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise ProtocolError(
                ErrorCode.TRUNCATED_PAYLOAD,
                message=f"Need {count} bytes at offset {self._pos}, have {len(self._data) - self._pos}",
            )
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk

    def uint(self, width: int) -> int:
        return int.from_bytes(self._take(width), "little")

    def sint(self, width: int) -> int:
        return int.from_bytes(self._take(width), "little", signed=True)

    def len16_string(self) -> str:
        length = self.uint(2)
        return self._take(length).decode(ENCODING, errors="replace")


class FrameMsg(BaseModel):
    """A decoded frame: type byte plus raw payload."""

    msg_type: int = Field(..., ge=0, le=0xFF)
    payload: bytes = b""

    @property
    def length(self) -> int:
        return len(self.payload)

    def encode(self) -> bytes:
        return framing.make_frame(self.msg_type, self.payload)

    @classmethod
    def decode(cls, data: BytesLike) -> "FrameMsg":
        msg_type, payload = framing.split_frame(data)
        return cls(msg_type=msg_type, payload=payload)


class HelloMsg(BaseModel):
    major: int = Field(default=PROTOCOL_MAJOR, ge=0, le=0xFFFF)
    minor: int = Field(default=PROTOCOL_MINOR, ge=0, le=0xFFFF)

    msg_type: MsgType = Field(default=MsgType.HELLO, frozen=True, exclude=True)

    def to_payload(self) -> bytes:
        out = bytearray()
        framing.write_u16le(out, self.major)
        framing.write_u16le(out, self.minor)
        return bytes(out)

    def to_frame(self) -> bytes:
        return framing.make_frame(self.msg_type, self.to_payload())

    @classmethod
    def from_payload(cls, payload: BytesLike) -> "HelloMsg":
        reader = _PayloadReader(payload)
        return cls(major=reader.uint(2), minor=reader.uint(2))


class HelloAckMsg(HelloMsg):
    msg_type: MsgType = Field(default=MsgType.HELLO_ACK, frozen=True, exclude=True)


class GoodbyeMsg(BaseModel):
    reason: int = Field(default=GoodbyeReason.CLIENT_REQUEST, ge=0, le=0xFF)

    msg_type: MsgType = Field(default=MsgType.GOODBYE, frozen=True, exclude=True)

    def to_payload(self) -> bytes:
        out = bytearray()
        framing.write_u8(out, self.reason)
        return bytes(out)

    def to_frame(self) -> bytes:
        return framing.make_frame(self.msg_type, self.to_payload())

    @classmethod
    def from_payload(cls, payload: BytesLike) -> "GoodbyeMsg":
        if not payload:
            return cls()
        return cls(reason=payload[0])


class GoodbyeAckMsg(GoodbyeMsg):
    msg_type: MsgType = Field(default=MsgType.GOODBYE_ACK, frozen=True, exclude=True)


class InfoSnapshot(BaseModel):
    """Loaded-game metadata. Only has_game is meaningful when no game is loaded."""

    model_config = ConfigDict(frozen=True)

    has_game: bool = False
    file_name: str = ""
    sha1: str = ""
    crc32: int = 0
    prg_crc32: int = 0
    prg_chr_crc32: int = 0
    mapper_id: int = 0
    submapper_id: int = 0
    mirroring: int = 0
    prg_rom_size: int = 0
    chr_rom_size: int = 0
    work_ram_size: int = 0
    save_ram_size: int = 0
    chr_ram_size: int = 0
    save_chr_ram_size: int = 0

    def to_payload(self) -> bytes:
        out = bytearray()
        framing.write_u8(out, 1 if self.has_game else 0)
        if not self.has_game:
            return bytes(out)

        framing.write_len16_string(out, self.file_name)
        framing.write_len16_string(out, self.sha1)
        framing.write_u32le(out, self.crc32)
        framing.write_u32le(out, self.prg_crc32)
        framing.write_u32le(out, self.prg_chr_crc32)
        framing.write_u16le(out, self.mapper_id)
        framing.write_u8(out, self.submapper_id)
        framing.write_u8(out, self.mirroring)

        framing.write_i32le(out, self.prg_rom_size)
        framing.write_i32le(out, self.chr_rom_size)
        framing.write_i32le(out, self.work_ram_size)
        framing.write_i32le(out, self.save_ram_size)
        framing.write_i32le(out, self.chr_ram_size)
        framing.write_i32le(out, self.save_chr_ram_size)
        return bytes(out)

    def to_frame(self) -> bytes:
        return framing.make_frame(MsgType.INFO, self.to_payload())

    @classmethod
    def from_payload(cls, payload: BytesLike) -> "InfoSnapshot":
        reader = _PayloadReader(payload)
        if not reader.uint(1):
            return cls()
        return cls(
            has_game=True,
            file_name=reader.len16_string(),
            sha1=reader.len16_string(),
            crc32=reader.uint(4),
            prg_crc32=reader.uint(4),
            prg_chr_crc32=reader.uint(4),
            mapper_id=reader.uint(2),
            submapper_id=reader.uint(1),
            mirroring=reader.uint(1),
            prg_rom_size=reader.sint(4),
            chr_rom_size=reader.sint(4),
            work_ram_size=reader.sint(4),
            save_ram_size=reader.sint(4),
            chr_ram_size=reader.sint(4),
            save_chr_ram_size=reader.sint(4),
        )


class SyncSnapshot(BaseModel):
    """CPU registers and PPU beam position at one instant."""

    model_config = ConfigDict(frozen=True)

    valid: bool = False
    cpu_cycle_count: int = 0
    scanline: int = 0
    dot: int = 0
    pc: int = 0
    a: int = 0
    x: int = 0
    y: int = 0
    sp: int = 0
    ps: int = 0


class SyncMsg(BaseModel):
    reason: int = Field(default=SyncReason.INITIAL, ge=0, le=0xFF)
    snapshot: SyncSnapshot

    def to_payload(self) -> bytes:
        snap = self.snapshot
        out = bytearray()
        framing.write_u8(out, self.reason)
        framing.write_cpu_cycle40le(out, snap.cpu_cycle_count)
        framing.write_i16le(out, snap.scanline)
        framing.write_u16le(out, snap.dot)
        framing.write_u16le(out, snap.pc)
        framing.write_u8(out, snap.a)
        framing.write_u8(out, snap.x)
        framing.write_u8(out, snap.y)
        framing.write_u8(out, snap.sp)
        framing.write_u8(out, snap.ps)
        return bytes(out)

    def to_frame(self) -> bytes:
        return framing.make_frame(MsgType.SYNC, self.to_payload())

    @classmethod
    def from_payload(cls, payload: BytesLike) -> "SyncMsg":
        reader = _PayloadReader(payload)
        reason = reader.uint(1)
        snapshot = SyncSnapshot(
            valid=True,
            cpu_cycle_count=reader.uint(5),
            scanline=reader.sint(2),
            dot=reader.uint(2),
            pc=reader.uint(2),
            a=reader.uint(1),
            x=reader.uint(1),
            y=reader.uint(1),
            sp=reader.uint(1),
            ps=reader.uint(1),
        )
        return cls(reason=reason, snapshot=snapshot)


__all__ = [
    "FrameMsg",
    "HelloMsg",
    "HelloAckMsg",
    "GoodbyeMsg",
    "GoodbyeAckMsg",
    "InfoSnapshot",
    "SyncSnapshot",
    "SyncMsg",
]
