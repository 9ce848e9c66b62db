from __future__ import annotations

import asyncio
import logging

from client.config import CLIENT_CONFIG, load_config
from client.core import Message, TraceClient
from shared.protocol import InfoSnapshot, MsgType, SyncMsg

logger = logging.getLogger(__name__)


async def _log_info(msg: Message) -> None:
    if not isinstance(msg, InfoSnapshot):
        return
    if not msg.has_game:
        logger.info("INFO: no game loaded")
        return
    logger.info(
        "INFO: %s sha1=%s crc32=%08X mapper=%s.%s prg=%s chr=%s",
        msg.file_name,
        msg.sha1,
        msg.crc32,
        msg.mapper_id,
        msg.submapper_id,
        msg.prg_rom_size,
        msg.chr_rom_size,
    )


async def _log_sync(msg: Message) -> None:
    if not isinstance(msg, SyncMsg):
        return
    snap = msg.snapshot
    logger.info(
        "SYNC(reason=%s): cycle=%s scanline=%s dot=%s PC=%04X A=%02X X=%02X Y=%02X SP=%02X P=%02X",
        msg.reason,
        snap.cpu_cycle_count,
        snap.scanline,
        snap.dot,
        snap.pc,
        snap.a,
        snap.x,
        snap.y,
        snap.sp,
        snap.ps,
    )


async def run_client() -> None:
    load_config()
    logging.basicConfig(level=CLIENT_CONFIG["log_level"])
    client = TraceClient()
    client.register_handler(MsgType.INFO, _log_info)
    client.register_handler(MsgType.SYNC, _log_sync)

    await client.connect()
    await client.hello()
    try:
        await client.run()
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(run_client())
