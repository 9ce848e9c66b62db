from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

import pytest

from server.emulator import (
    CartridgeState,
    ConsoleType,
    NesCpuState,
    NesRomInfo,
    PpuPosition,
    RomFormat,
    RomInfo,
)
from shared.protocol import peek_frame


class FakeMapper:
    def __init__(self) -> None:
        self.rom_info = NesRomInfo(
            crc32=0x1234ABCD,
            prg_crc32=0x0BADF00D,
            prg_chr_crc32=0xDEADBEEF,
            mapper_id=4,
            submapper_id=1,
            mirroring=2,
        )
        self.cartridge = CartridgeState(prg_rom_size=0x40000, chr_rom_size=0x20000)

    def get_rom_info(self) -> NesRomInfo:
        return self.rom_info

    def get_cartridge_state(self) -> CartridgeState:
        return self.cartridge

    def get_effective_work_ram_size(self) -> int:
        return 0x2000

    def get_effective_save_ram_size(self) -> int:
        return 0x2000

    def get_effective_chr_ram_size(self) -> int:
        return 0

    def get_effective_save_chr_ram_size(self) -> int:
        return 0


class FakeNesAccess:
    def __init__(self) -> None:
        self.mapper: Optional[FakeMapper] = FakeMapper()
        self.cpu: Optional[NesCpuState] = NesCpuState(
            cycle_count=0x12_3456_789A, pc=0xC000, a=0x01, x=0x02, y=0x03, sp=0xFD, ps=0x24
        )
        self.ppu: Optional[PpuPosition] = PpuPosition(scanline=-1, cycle=340)

    def get_mapper(self) -> Optional[FakeMapper]:
        return self.mapper

    def get_cpu_state(self) -> Optional[NesCpuState]:
        return self.cpu

    def get_ppu_position(self) -> Optional[PpuPosition]:
        return self.ppu


class FakeConsole:
    def __init__(self, console_type: ConsoleType = ConsoleType.NES) -> None:
        self.console_type = console_type
        self.nes = FakeNesAccess() if console_type is ConsoleType.NES else None

    def nes_access(self) -> Optional[FakeNesAccess]:
        return self.nes


class FakeEmulator:
    """Emulator double; tracks whether its lock is currently held."""

    def __init__(self) -> None:
        self.console: Optional[FakeConsole] = None
        self.rom_info = RomInfo()
        self._lock = threading.RLock()
        self.lock_depth = 0
        self.lock_count = 0

    @contextmanager
    def acquire_lock(self) -> Iterator[None]:
        with self._lock:
            self.lock_depth += 1
            self.lock_count += 1
            try:
                yield
            finally:
                self.lock_depth -= 1

    @property
    def locked(self) -> bool:
        return self.lock_depth > 0

    def get_console(self) -> Optional[FakeConsole]:
        return self.console

    def get_rom_info(self) -> RomInfo:
        return self.rom_info

    def load_game(self, file_name: str = "Mega Man 2 (USA).nes") -> FakeConsole:
        with self.acquire_lock():
            self.console = FakeConsole()
            self.rom_info = RomInfo(file_name=file_name, sha1="A" * 40, format=RomFormat.INES)
        return self.console

    def unload_game(self) -> None:
        with self.acquire_lock():
            self.console = None
            self.rom_info = RomInfo()


class FakeSocket:
    """In-memory stand-in for server.core.transport.Socket."""

    def __init__(self, emu: Optional[FakeEmulator] = None) -> None:
        self.inbound: List[bytes] = []
        self.sent = bytearray()
        self.closed = False
        self.error = False
        self.recv_calls = 0
        self.sent_under_lock = False
        self.peername = "fake:0"
        self._emu = emu

    @property
    def connection_error(self) -> bool:
        return self.error or self.closed

    def feed(self, *chunks: bytes) -> None:
        self.inbound.extend(chunks)

    def recv(self, size: int) -> bytes:
        self.recv_calls += 1
        if not self.inbound:
            return b""
        chunk = self.inbound.pop(0)
        if len(chunk) > size:
            self.inbound.insert(0, chunk[size:])
            chunk = chunk[:size]
        return chunk

    def send(self, data: bytes) -> None:
        if self.connection_error:
            return
        if self._emu is not None and self._emu.locked:
            self.sent_under_lock = True
        self.sent += data

    def close(self) -> None:
        self.closed = True


def split_frames(data: bytes) -> List[Tuple[int, bytes]]:
    frames = []
    buf = bytes(data)
    while buf:
        header = peek_frame(buf)
        assert header is not None, f"trailing partial frame: {buf!r}"
        msg_type, length = header
        frames.append((msg_type, buf[3 : 3 + length]))
        buf = buf[3 + length :]
    return frames


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def emulator() -> FakeEmulator:
    return FakeEmulator()


@pytest.fixture
def fake_socket(emulator: FakeEmulator) -> FakeSocket:
    return FakeSocket(emulator)
