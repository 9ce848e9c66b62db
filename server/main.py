from __future__ import annotations

import logging
from typing import Optional

from server.config import STREAMER_CONFIG, load_streamer_config
from server.core import TraceStreamer
from server.emulator import Emulator
from server.notifications import NotificationManager

logger = logging.getLogger(__name__)


def start_trace_streamer(
    emu: Emulator,
    notifications: Optional[NotificationManager] = None,
    env_path: str = ".env",
) -> Optional[TraceStreamer]:
    """Hook for the embedding application's init: load config and auto-start.

    Returns None when the streamer is disabled by configuration.
    """
    load_streamer_config(env_path)
    logging.basicConfig(level=STREAMER_CONFIG["log_level"])

    if not STREAMER_CONFIG["enabled"]:
        logger.info("TraceStreamer disabled by configuration")
        return None

    streamer = TraceStreamer(emu, notifications, config=STREAMER_CONFIG)
    streamer.start_auto()
    return streamer


__all__ = ["start_trace_streamer"]
