from __future__ import annotations

from shared.protocol import InfoSnapshot, SyncSnapshot

from server.emulator import ConsoleType, Emulator, RomFormat


def get_info_snapshot(emu: Emulator) -> InfoSnapshot:
    """Read loaded-game metadata under the emulator lock; "no game" on any mismatch."""
    with emu.acquire_lock():
        console = emu.get_console()
        if console is None:
            return InfoSnapshot()

        rom_info = emu.get_rom_info()
        if console.console_type != ConsoleType.NES or rom_info.format != RomFormat.INES:
            return InfoSnapshot()

        nes = console.nes_access()
        if nes is None:
            return InfoSnapshot()

        mapper = nes.get_mapper()
        if mapper is None:
            return InfoSnapshot()

        nes_info = mapper.get_rom_info()
        cart = mapper.get_cartridge_state()

        return InfoSnapshot(
            has_game=True,
            file_name=rom_info.file_name,
            sha1=rom_info.sha1,
            crc32=nes_info.crc32,
            prg_crc32=nes_info.prg_crc32,
            prg_chr_crc32=nes_info.prg_chr_crc32,
            mapper_id=nes_info.mapper_id,
            submapper_id=nes_info.submapper_id,
            mirroring=int(nes_info.mirroring),
            prg_rom_size=cart.prg_rom_size,
            chr_rom_size=cart.chr_rom_size,
            work_ram_size=mapper.get_effective_work_ram_size(),
            save_ram_size=mapper.get_effective_save_ram_size(),
            chr_ram_size=mapper.get_effective_chr_ram_size(),
            save_chr_ram_size=mapper.get_effective_save_chr_ram_size(),
        )


def get_sync_snapshot(emu: Emulator) -> SyncSnapshot:
    with emu.acquire_lock():
        console = emu.get_console()
        if console is None or console.console_type != ConsoleType.NES:
            return SyncSnapshot()

        nes = console.nes_access()
        if nes is None:
            return SyncSnapshot()

        cpu = nes.get_cpu_state()
        ppu = nes.get_ppu_position()
        if cpu is None or ppu is None:
            return SyncSnapshot()

        return SyncSnapshot(
            valid=True,
            cpu_cycle_count=cpu.cycle_count,
            scanline=ppu.scanline,
            dot=ppu.cycle,
            pc=cpu.pc,
            a=cpu.a,
            x=cpu.x,
            y=cpu.y,
            sp=cpu.sp,
            ps=cpu.ps,
        )


__all__ = ["get_info_snapshot", "get_sync_snapshot"]
