"""
Interfaces the streamer consumes from the embedding emulator.

Only the accessors needed to fill Info/Sync snapshots are described here. The
emulator owns all of these objects; the streamer reads them while holding the
emulator lock and never keeps references past a snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ContextManager, Optional, Protocol


class ConsoleType(Enum):
    NES = "nes"
    SNES = "snes"
    GAMEBOY = "gameboy"
    PCE = "pce"
    SMS = "sms"
    GBA = "gba"
    WS = "ws"


class RomFormat(Enum):
    UNKNOWN = "unknown"
    INES = "ines"
    UNIF = "unif"
    FDS = "fds"
    NSF = "nsf"


@dataclass
class RomInfo:
    file_name: str = ""
    sha1: str = ""
    format: RomFormat = RomFormat.UNKNOWN


@dataclass
class NesRomInfo:
    crc32: int = 0
    prg_crc32: int = 0
    prg_chr_crc32: int = 0
    mapper_id: int = 0
    submapper_id: int = 0
    mirroring: int = 0


@dataclass
class CartridgeState:
    prg_rom_size: int = 0
    chr_rom_size: int = 0


@dataclass
class NesCpuState:
    cycle_count: int = 0
    pc: int = 0
    a: int = 0
    x: int = 0
    y: int = 0
    sp: int = 0
    ps: int = 0


@dataclass
class PpuPosition:
    scanline: int = 0
    cycle: int = 0


class NesMapper(Protocol):
    def get_rom_info(self) -> NesRomInfo: ...

    def get_cartridge_state(self) -> CartridgeState: ...

    def get_effective_work_ram_size(self) -> int: ...

    def get_effective_save_ram_size(self) -> int: ...

    def get_effective_chr_ram_size(self) -> int: ...

    def get_effective_save_chr_ram_size(self) -> int: ...


class NesAccess(Protocol):
    """NES-specific view of a console, handed out by Console.nes_access()."""

    def get_mapper(self) -> Optional[NesMapper]: ...

    def get_cpu_state(self) -> Optional[NesCpuState]: ...

    def get_ppu_position(self) -> Optional[PpuPosition]: ...


class Console(Protocol):
    console_type: ConsoleType

    def nes_access(self) -> Optional[NesAccess]:
        """Return the NES accessor, or None when this console is not a NES."""
        ...


class Emulator(Protocol):
    def acquire_lock(self) -> ContextManager[object]: ...

    def get_console(self) -> Optional[Console]: ...

    def get_rom_info(self) -> RomInfo: ...


__all__ = [
    "ConsoleType",
    "RomFormat",
    "RomInfo",
    "NesRomInfo",
    "CartridgeState",
    "NesCpuState",
    "PpuPosition",
    "NesMapper",
    "NesAccess",
    "Console",
    "Emulator",
]
