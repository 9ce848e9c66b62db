from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from shared.protocol import LOOPBACK_HOST, PORT_ATTEMPTS, PORT_START, SyncReason

from server.config import STREAMER_CONFIG
from server.core.connection import TraceStreamerConnection
from server.core.mailbox import PendingPush
from server.core.transport import Socket
from server.emulator import Emulator
from server.notifications import NotificationManager, NotificationType, Subscription

logger = logging.getLogger(__name__)

SocketFactory = Callable[[], Socket]


class _NotificationBridge:
    """Bus listener that turns lifecycle events into pending pushes.

    Runs on the emulator's thread, so it only touches the mailbox.
    """

    def __init__(self, pending: PendingPush) -> None:
        self._pending = pending

    def process_notification(self, notification: NotificationType, parameter: Any = None) -> None:
        if notification is NotificationType.GAME_LOADED:
            self._pending.request_info_and_sync(SyncReason.INITIAL)
        elif notification is NotificationType.STATE_LOADED:
            self._pending.request_info_and_sync(SyncReason.LOAD_STATE)
        elif notification is NotificationType.GAME_RESET:
            self._pending.request_info_and_sync(SyncReason.RESET)
        elif notification is NotificationType.EMULATION_STOPPED:
            self._pending.request_info()


class TraceStreamer:
    """Loopback server that streams emulator state to one debug client."""

    def __init__(
        self,
        emu: Emulator,
        notifications: Optional[NotificationManager] = None,
        config: Optional[Dict[str, Any]] = None,
        socket_factory: SocketFactory = Socket,
    ) -> None:
        self.config = config or STREAMER_CONFIG
        self._emu = emu
        self._notifications = notifications
        self._socket_factory = socket_factory
        self._poll_interval = float(self.config["poll_interval_ms"]) / 1000.0
        self._backlog = int(self.config["listen_backlog"])

        self._listener: Optional[Socket] = None
        self._conn: Optional[TraceStreamerConnection] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._listening = threading.Event()
        self._port = 0

        self._pending = PendingPush()
        self._bridge = _NotificationBridge(self._pending)
        self._subscription: Optional[Subscription] = None

    def __enter__(self) -> "TraceStreamer":
        self.start_auto()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def is_listening(self) -> bool:
        return self._listening.is_set()

    def get_port(self) -> int:
        return self._port

    def is_connected(self) -> bool:
        conn = self._conn
        return conn is not None and not conn.connection_error

    @property
    def pending(self) -> PendingPush:
        return self._pending

    def start_auto(self) -> None:
        if self._thread is not None:
            if self._thread.is_alive():
                return
            # Previous run ended on its own (bind failure); allow a retry.
            self._thread.join()
            self._thread = None

        self._subscribe()

        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="TraceStreamer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

        if self._thread is not None:
            self._thread.join()
            self._thread = None

        self._release()

        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _subscribe(self) -> None:
        # Registered once per run; stop() closes the subscription.
        if self._notifications is not None and self._subscription is None:
            self._subscription = self._notifications.register_listener(self._bridge)

    def _release(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        self._listening.clear()
        self._port = 0

    def _try_bind_listener(self) -> bool:
        for i in range(PORT_ATTEMPTS):
            port = PORT_START + i

            sock = self._socket_factory()
            if sock.connection_error:
                continue

            sock.bind_loopback(port)
            if sock.connection_error:
                continue

            sock.listen(self._backlog)
            if sock.connection_error:
                continue

            self._listener = sock
            self._port = port
            self._listening.set()
            logger.info("TraceStreamer listening on %s:%s", LOOPBACK_HOST, port)
            return True

        logger.error(
            "TraceStreamer: failed to bind any port in range %s-%s",
            PORT_START,
            PORT_START + PORT_ATTEMPTS - 1,
        )
        return False

    def _accept_connections(self) -> None:
        if self._listener is None or self._listener.connection_error:
            return

        while True:
            sock = self._listener.accept()
            if sock is None or sock.connection_error:
                break

            if self._conn is None or self._conn.connection_error:
                self._conn = TraceStreamerConnection(
                    self._emu,
                    sock,
                    recv_attempts=int(self.config["recv_attempts"]),
                    recv_chunk_size=int(self.config["recv_chunk_size"]),
                )
                logger.info("Client %s connected", sock.peername)
            else:
                # Single connection only; reject additional clients.
                logger.info("Rejecting client %s, a session is already active", sock.peername)
                sock.close()

        # Re-arm listen after the accept drain.
        self._listener.listen(self._backlog)

    def _deliver_pending(self) -> None:
        conn = self._conn
        if conn is None or conn.connection_error or not conn.handshake_complete:
            return

        request = self._pending.take()
        if request is None:
            return
        logger.debug(
            "Pushing info (sync=%s, reason=%s) to %s", request.send_sync, request.sync_reason, conn.peername
        )
        conn.send_info_update(request.send_sync, request.sync_reason)

    def _run(self) -> None:
        self._listening.clear()
        self._port = 0

        if not self._try_bind_listener():
            return

        while not self._stop.is_set():
            self._accept_connections()

            if self._conn is not None:
                self._conn.poll()
                if self._conn.connection_error:
                    logger.info("Client %s disconnected", self._conn.peername)
                    self._conn = None

            self._deliver_pending()

            self._stop.wait(self._poll_interval)

        self._release()


__all__ = ["TraceStreamer"]
