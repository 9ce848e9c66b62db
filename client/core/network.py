from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional, Union

from client.config import CLIENT_CONFIG
from shared.protocol import (
    FRAME_HEADER_SIZE,
    PORT_ATTEMPTS,
    PORT_START,
    PROTOCOL_MAJOR,
    PROTOCOL_MINOR,
    ErrorCode,
    FrameMsg,
    GoodbyeAckMsg,
    GoodbyeMsg,
    HelloAckMsg,
    HelloMsg,
    InfoSnapshot,
    MsgType,
    ProtocolError,
    SyncMsg,
    make_frame,
    read_u16le,
)

logger = logging.getLogger(__name__)

Message = Union[HelloAckMsg, GoodbyeAckMsg, InfoSnapshot, SyncMsg, FrameMsg]
MessageHandler = Callable[[Message], Awaitable[None]]

_DECODERS: Dict[int, Callable[[bytes], Any]] = {
    MsgType.HELLO_ACK: HelloAckMsg.from_payload,
    MsgType.GOODBYE_ACK: GoodbyeAckMsg.from_payload,
    MsgType.INFO: InfoSnapshot.from_payload,
    MsgType.SYNC: SyncMsg.from_payload,
}


class NetworkError(ProtocolError):
    """Network level error surfaced to higher layers."""

    pass


def decode_message(frame: FrameMsg) -> Message:
    """Turn a raw frame into its payload model; unknown types come back as the frame."""
    decoder = _DECODERS.get(frame.msg_type)
    if decoder is None:
        return frame
    return decoder(frame.payload)


class TraceClient:
    """asyncio client for the emulator trace streamer."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config = config or CLIENT_CONFIG
        self.host: str = self.config["server_host"]
        self.port: int = int(self.config["server_port"])
        self.connect_timeout: float = float(self.config["connect_timeout"])
        self.read_timeout: float = float(self.config["read_timeout"])

        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.connected: bool = False
        self._handlers: Dict[int, MessageHandler] = {}

    async def connect(self) -> int:
        """Connect to the configured port, or scan the streamer's range. Returns the port."""
        if self.connected:
            return self.port

        candidates = [self.port] if self.port else [PORT_START + i for i in range(PORT_ATTEMPTS)]
        last_exc: Optional[Exception] = None
        for port in candidates:
            try:
                self.reader, self.writer = await asyncio.wait_for(
                    asyncio.open_connection(self.host, port), timeout=self.connect_timeout
                )
            except (OSError, asyncio.TimeoutError) as exc:
                last_exc = exc
                logger.debug("Connect to %s:%s failed: %s", self.host, port, exc)
                continue
            self.port = port
            self.connected = True
            logger.info("Connected to %s:%s", self.host, port)
            return port
        raise NetworkError(ErrorCode.CONNECTION_LOST, message=f"No trace streamer reachable: {last_exc}")

    async def close(self) -> None:
        self.connected = False
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError) as exc:
                logger.debug("Error during writer cleanup: %s", exc)
            self.writer = None
        logger.info("Trace client closed")

    async def send_raw(self, data: bytes) -> None:
        if not self.connected or self.writer is None:
            raise NetworkError(ErrorCode.CONNECTION_LOST, message="Not connected")
        try:
            self.writer.write(data)
            await self.writer.drain()
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError) as exc:
            self.connected = False
            raise NetworkError(ErrorCode.CONNECTION_LOST, message=f"Connection lost: {exc}") from exc

    async def send_frame(self, msg_type: Union[MsgType, int], payload: bytes = b"") -> None:
        await self.send_raw(make_frame(msg_type, payload))

    async def read_frame(self, timeout: Optional[float] = None) -> Optional[FrameMsg]:
        """Read one frame; None once the server has closed the stream.

        The timeout covers the whole frame. A timeout raises asyncio.TimeoutError and
        leaves the stream position undefined, so callers should treat it as fatal.
        """
        wait = self.read_timeout if timeout is None else timeout
        return await asyncio.wait_for(self._read_frame_unbounded(), timeout=wait)

    async def _read_frame_unbounded(self) -> Optional[FrameMsg]:
        if self.reader is None:
            raise NetworkError(ErrorCode.CONNECTION_LOST, message="Not connected")
        try:
            header = await self.reader.readexactly(FRAME_HEADER_SIZE)
            length = read_u16le(header, 1)
            payload = await self.reader.readexactly(length) if length else b""
        except asyncio.IncompleteReadError:
            self.connected = False
            return None
        except (ConnectionResetError, ConnectionAbortedError) as exc:
            logger.debug("Read failed: %s", exc)
            self.connected = False
            return None
        return FrameMsg(msg_type=header[0], payload=payload)

    async def read_message(self, timeout: Optional[float] = None) -> Optional[Message]:
        frame = await self.read_frame(timeout)
        if frame is None:
            return None
        return decode_message(frame)

    async def hello(self, major: int = PROTOCOL_MAJOR, minor: int = PROTOCOL_MINOR) -> HelloAckMsg:
        await self.send_raw(HelloMsg(major=major, minor=minor).to_frame())
        reply = await self.read_message()
        if not isinstance(reply, HelloAckMsg):
            raise NetworkError(ErrorCode.VERSION_MISMATCH, message=f"Handshake rejected: {reply!r}")
        logger.info("Server speaks protocol %s.%s", reply.major, reply.minor)
        return reply

    async def goodbye(self, reason: Optional[int] = None) -> Optional[GoodbyeAckMsg]:
        """Send Goodbye (empty payload when reason is None) and wait for the ack.

        Info/Sync pushes that were already in flight are skipped.
        """
        payload = b"" if reason is None else GoodbyeMsg(reason=reason).to_payload()
        await self.send_frame(MsgType.GOODBYE, payload)
        while True:
            reply = await self.read_message()
            if reply is None:
                return None
            if isinstance(reply, GoodbyeAckMsg):
                return reply

    def register_handler(self, msg_type: Union[MsgType, int], handler: MessageHandler) -> None:
        self._handlers[int(msg_type)] = handler

    async def run(self) -> None:
        """Dispatch incoming messages to handlers until the server closes the stream.

        Pushes arrive only on lifecycle events, so reads here wait without a timeout.
        """
        while self.connected:
            frame = await self._read_frame_unbounded()
            if frame is None:
                logger.info("Server closed the stream")
                break
            await self._dispatch(frame)

    async def _dispatch(self, frame: FrameMsg) -> None:
        handler = self._handlers.get(frame.msg_type)
        if handler is None:
            logger.debug("No handler registered for frame type 0x%02x", frame.msg_type)
            return
        try:
            await handler(decode_message(frame))
        except ProtocolError as exc:
            logger.warning("Bad payload for frame type 0x%02x: %s", frame.msg_type, exc)
        except Exception as exc:
            logger.exception("Handler error for frame type 0x%02x: %s", frame.msg_type, exc)


__all__ = ["TraceClient", "NetworkError", "decode_message", "Message"]
