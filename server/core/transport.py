from __future__ import annotations

import logging
import select
import socket
from typing import Optional, Union

from shared.protocol import LOOPBACK_HOST

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]

SEND_TIMEOUT = 1.0  # seconds a full send buffer may stall one frame


class Socket:
    """Non-blocking TCP socket that latches the first failure into an error flag.

    Callers check `connection_error` after each operation instead of catching
    exceptions; once set the socket is unusable and should be dropped.
    """

    def __init__(self, sock: Optional[socket.socket] = None) -> None:
        self._error = False
        self._sock: Optional[socket.socket] = None
        self.peername = ""
        try:
            if sock is None:
                sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            else:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.setblocking(False)
            self._sock = sock
        except OSError as exc:
            logger.debug("Socket setup failed: %s", exc)
            self._fail(sock)

    @property
    def connection_error(self) -> bool:
        return self._error

    def _fail(self, sock: Optional[socket.socket] = None) -> None:
        self._error = True
        sock = sock or self._sock
        self._sock = None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

    def bind_loopback(self, port: int) -> None:
        if self._sock is None:
            return
        try:
            self._sock.bind((LOOPBACK_HOST, port))
        except OSError as exc:
            logger.debug("Bind to %s:%s failed: %s", LOOPBACK_HOST, port, exc)
            self._fail()

    def listen(self, backlog: int) -> None:
        if self._sock is None:
            return
        try:
            self._sock.listen(backlog)
        except OSError as exc:
            logger.debug("Listen failed: %s", exc)
            self._fail()

    def accept(self) -> Optional["Socket"]:
        """Return the next pending connection, or None when the backlog is empty."""
        if self._sock is None:
            return None
        try:
            conn, addr = self._sock.accept()
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as exc:
            logger.debug("Accept failed: %s", exc)
            return None
        accepted = Socket(conn)
        accepted.peername = f"{addr[0]}:{addr[1]}"
        return accepted

    def send(self, data: BytesLike) -> None:
        if self._sock is None:
            return
        view = memoryview(bytes(data))
        while view:
            try:
                sent = self._sock.send(view)
                view = view[sent:]
            except (BlockingIOError, InterruptedError):
                _, writable, _ = select.select([], [self._sock], [], SEND_TIMEOUT)
                if not writable:
                    logger.debug("Send to %s stalled, dropping connection", self.peername)
                    self._fail()
                    return
            except OSError as exc:
                logger.debug("Send to %s failed: %s", self.peername, exc)
                self._fail()
                return

    def recv(self, size: int) -> bytes:
        """Read whatever is available (b"" if nothing). A closed peer sets the error flag."""
        if self._sock is None:
            return b""
        try:
            data = self._sock.recv(size)
        except (BlockingIOError, InterruptedError):
            return b""
        except OSError as exc:
            logger.debug("Recv from %s failed: %s", self.peername, exc)
            self._fail()
            return b""
        if not data:
            logger.debug("Peer %s closed the connection", self.peername)
            self._fail()
        return data

    def close(self) -> None:
        if self._sock is None:
            self._error = True
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._fail()


__all__ = ["Socket"]
