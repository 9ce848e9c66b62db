from __future__ import annotations

import logging
from typing import Optional

from shared.protocol import (
    FRAME_HEADER_SIZE,
    PROTOCOL_MAJOR,
    PROTOCOL_MINOR,
    ErrorCode,
    GoodbyeAckMsg,
    GoodbyeReason,
    HelloAckMsg,
    MsgType,
    ProtocolError,
    SyncMsg,
    SyncReason,
    lookup_msg_type,
    peek_frame,
    read_u16le,
)

from server.core.snapshots import get_info_snapshot, get_sync_snapshot
from server.core.transport import Socket
from server.emulator import Emulator

logger = logging.getLogger(__name__)

DEFAULT_RECV_ATTEMPTS = 32
DEFAULT_RECV_CHUNK_SIZE = 4096


class TraceStreamerConnection:
    """One client session: buffers inbound bytes into frames and answers them.

    Outbound traffic only happens in reply to an inbound frame or when the
    owning server asks for a push via send_info_update().
    """

    def __init__(
        self,
        emu: Emulator,
        socket: Socket,
        recv_attempts: int = DEFAULT_RECV_ATTEMPTS,
        recv_chunk_size: int = DEFAULT_RECV_CHUNK_SIZE,
    ) -> None:
        self._emu = emu
        self._socket: Optional[Socket] = socket
        self._rx_buf = bytearray()
        self._handshake_complete = False
        self.recv_attempts = recv_attempts
        self.recv_chunk_size = recv_chunk_size
        self.peername = getattr(socket, "peername", "") or "client"

    @property
    def connection_error(self) -> bool:
        return self._socket is None or self._socket.connection_error

    @property
    def handshake_complete(self) -> bool:
        return self._handshake_complete

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()

    # Pump socket IO + handle messages. Safe to call frequently.
    def poll(self) -> None:
        if self.connection_error:
            return

        for _ in range(self.recv_attempts):
            if not self._try_receive():
                break
            if self.connection_error:
                return

        if self.connection_error:
            return

        self._process_frames()

    def send_info_update(self, send_sync: bool, sync_reason: int) -> None:
        if not self._handshake_complete or self.connection_error:
            return

        has_game = self._send_info()
        if send_sync and has_game:
            self._send_sync(sync_reason)

    def _try_receive(self) -> bool:
        data = self._socket.recv(self.recv_chunk_size)
        if not data:
            return False
        self._rx_buf += data
        return True

    def _process_frames(self) -> None:
        while True:
            header = peek_frame(self._rx_buf)
            if header is None:
                return

            msg_type, length = header
            payload = bytes(self._rx_buf[FRAME_HEADER_SIZE : FRAME_HEADER_SIZE + length])
            try:
                self._dispatch(msg_type, payload)
            except ProtocolError as exc:
                logger.warning("Protocol error from %s: %s", self.peername, exc)
                self._socket.close()

            del self._rx_buf[: FRAME_HEADER_SIZE + length]

            if self.connection_error:
                return

    def _dispatch(self, msg_type: int, payload: bytes) -> None:
        known = lookup_msg_type(msg_type)
        if known is MsgType.HELLO:
            if self._handshake_complete:
                logger.debug("Ignoring repeated hello from %s", self.peername)
                return
            self._handle_hello(payload)
        elif known is MsgType.GOODBYE:
            self._handle_goodbye(payload)
        else:
            # Unknown / unsupported message type in v1; ignore.
            logger.debug("Ignoring frame type 0x%02x (%s bytes) from %s", msg_type, len(payload), self.peername)

    def _handle_hello(self, payload: bytes) -> None:
        if len(payload) < 4:
            raise ProtocolError(ErrorCode.MALFORMED_HELLO, message=f"Hello payload is {len(payload)} bytes")

        major = read_u16le(payload, 0)
        minor = read_u16le(payload, 2)
        if major != PROTOCOL_MAJOR:
            raise ProtocolError(
                ErrorCode.VERSION_MISMATCH,
                message=f"Client speaks {major}.{minor}, server requires major {PROTOCOL_MAJOR}",
            )

        # Always answer with our own version; the client's minor is not negotiated.
        self._send_frame(HelloAckMsg(major=PROTOCOL_MAJOR, minor=PROTOCOL_MINOR).to_frame())
        self._handshake_complete = True
        logger.info("Handshake complete with %s (client %s.%s)", self.peername, major, minor)

        if self._send_info():
            self._send_sync(SyncReason.INITIAL)

    def _handle_goodbye(self, payload: bytes) -> None:
        reason = payload[0] if payload else int(GoodbyeReason.CLIENT_REQUEST)
        self._send_frame(GoodbyeAckMsg(reason=reason).to_frame())
        logger.info("Goodbye from %s (reason %s)", self.peername, reason)
        self._socket.close()

    def _send_info(self) -> bool:
        snap = get_info_snapshot(self._emu)
        self._send_frame(snap.to_frame())
        return snap.has_game

    def _send_sync(self, reason: int) -> None:
        snap = get_sync_snapshot(self._emu)
        if not snap.valid:
            return
        self._send_frame(SyncMsg(reason=int(reason), snapshot=snap).to_frame())

    def _send_frame(self, frame: bytes) -> None:
        if self.connection_error:
            return
        logger.debug("Sending %s (%s bytes) to %s", _frame_name(frame[0]), len(frame), self.peername)
        self._socket.send(frame)


def _frame_name(msg_type: int) -> str:
    known = lookup_msg_type(msg_type)
    return known.name if known is not None else f"0x{msg_type:02x}"


__all__ = ["TraceStreamerConnection", "DEFAULT_RECV_ATTEMPTS", "DEFAULT_RECV_CHUNK_SIZE"]
