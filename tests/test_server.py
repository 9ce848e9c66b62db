from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

import pytest

from client.config import DEFAULT_CONFIG
from client.core import TraceClient
from conftest import FakeEmulator, wait_until
from server.config import DEFAULT_STREAMER_CONFIG
from server.core.server import TraceStreamer
from server.notifications import NotificationManager, NotificationType
from shared.protocol import (
    FRAME_HEADER_SIZE,
    PORT_ATTEMPTS,
    PORT_START,
    GoodbyeAckMsg,
    HelloAckMsg,
    InfoSnapshot,
    MsgType,
    SyncMsg,
    SyncReason,
)


class RefusingSocket:
    """Listener double whose bind fails for every port not in `free_ports`."""

    free_ports: List[int] = []
    created: Dict[int, "RefusingSocket"] = {}

    def __init__(self) -> None:
        self.error = False
        self.port = 0
        self.closed = False

    @property
    def connection_error(self) -> bool:
        return self.error

    def bind_loopback(self, port: int) -> None:
        self.port = port
        RefusingSocket.created[port] = self
        if port not in RefusingSocket.free_ports:
            self.error = True

    def listen(self, backlog: int) -> None:
        pass

    def accept(self):
        return None

    def close(self) -> None:
        self.closed = True


class CountingSocket(RefusingSocket):
    """Listener double that records every listen() call."""

    def __init__(self) -> None:
        super().__init__()
        self.backlogs: List[int] = []

    def listen(self, backlog: int) -> None:
        self.backlogs.append(backlog)


@pytest.fixture
def streamer_config():
    return DEFAULT_STREAMER_CONFIG.copy()


@pytest.fixture
def client_config():
    config = DEFAULT_CONFIG.copy()
    config["read_timeout"] = 3.0
    return config


@pytest.fixture
def bus() -> NotificationManager:
    return NotificationManager()


@pytest.fixture
def streamer(emulator: FakeEmulator, bus: NotificationManager, streamer_config):
    s = TraceStreamer(emulator, bus, config=streamer_config)
    s.start_auto()
    assert wait_until(s.is_listening)
    yield s
    s.stop()


def _client(streamer: TraceStreamer, client_config) -> TraceClient:
    config = dict(client_config)
    config["server_port"] = streamer.get_port()
    return TraceClient(config)


def test_bind_failure_leaves_streamer_idle(emulator, streamer_config):
    RefusingSocket.free_ports = []
    RefusingSocket.created = {}
    s = TraceStreamer(emulator, config=streamer_config, socket_factory=RefusingSocket)
    s.start_auto()
    assert wait_until(lambda: not s._thread.is_alive())

    assert not s.is_listening()
    assert s.get_port() == 0
    assert sorted(RefusingSocket.created) == [PORT_START + i for i in range(PORT_ATTEMPTS)]
    s.stop()


def test_first_free_port_wins(emulator, streamer_config):
    RefusingSocket.free_ports = [PORT_START + 3, PORT_START + 5]
    RefusingSocket.created = {}
    s = TraceStreamer(emulator, config=streamer_config, socket_factory=RefusingSocket)
    s.start_auto()
    try:
        assert wait_until(s.is_listening)
        assert s.get_port() == PORT_START + 3
        assert PORT_START + 4 not in RefusingSocket.created
    finally:
        s.stop()

    assert RefusingSocket.created[PORT_START + 3].closed
    assert not s.is_listening()
    assert s.get_port() == 0


def test_stop_without_start_is_safe(emulator, bus):
    s = TraceStreamer(emulator, bus)
    s.stop()
    assert not s.is_listening()
    assert not s.is_connected()


def test_start_is_idempotent_and_subscribes_once(emulator, bus, streamer_config):
    s = TraceStreamer(emulator, bus, config=streamer_config)
    s.start_auto()
    thread = s._thread
    s.start_auto()
    try:
        assert s._thread is thread
        assert bus.listener_count() == 1
    finally:
        s.stop()
    assert bus.listener_count() == 0


def test_end_to_end_handshake_and_goodbye(streamer, client_config):
    assert streamer.get_port() == PORT_START

    async def scenario():
        client = _client(streamer, client_config)
        await client.connect()
        ack = await client.hello(1, 0)
        info = await client.read_message()
        goodbye = await client.goodbye()
        closed = await client.read_frame()
        await client.close()
        return ack, info, goodbye, closed

    ack, info, goodbye, closed = asyncio.run(scenario())
    assert ack == HelloAckMsg(major=1, minor=0)
    assert info == InfoSnapshot(has_game=False)
    assert goodbye == GoodbyeAckMsg(reason=0)
    assert closed is None
    assert wait_until(lambda: not streamer.is_connected())


def test_version_mismatch_closes_socket(streamer, client_config):
    async def scenario():
        client = _client(streamer, client_config)
        await client.connect()
        await client.send_raw(b"\x01\x04\x00\x02\x00\x00\x00")
        frame = await client.read_frame()
        await client.close()
        return frame

    assert asyncio.run(scenario()) is None


def test_second_client_is_rejected(streamer, client_config):
    async def scenario():
        first = _client(streamer, client_config)
        await first.connect()
        await first.hello()
        await first.read_message()

        second = _client(streamer, client_config)
        await second.connect()
        rejected = await second.read_frame()
        await second.close()

        goodbye = await first.goodbye(5)
        await first.close()
        return rejected, goodbye

    rejected, goodbye = asyncio.run(scenario())
    assert rejected is None
    assert goodbye == GoodbyeAckMsg(reason=5)


def test_slot_frees_after_disconnect(streamer, client_config):
    async def connect_and_drop():
        client = _client(streamer, client_config)
        await client.connect()
        await client.hello()
        await client.close()

    async def connect_again():
        client = _client(streamer, client_config)
        await client.connect()
        ack = await client.hello()
        await client.close()
        return ack

    asyncio.run(connect_and_drop())
    assert wait_until(lambda: not streamer.is_connected())
    assert asyncio.run(connect_again()) == HelloAckMsg(major=1, minor=0)


def test_game_loaded_notification_is_pushed(streamer, emulator, bus, client_config):
    async def scenario():
        client = _client(streamer, client_config)
        await client.connect()
        await client.hello()
        initial = await client.read_message()
        assert wait_until(streamer.is_connected)

        emulator.load_game()
        bus.send_notification(NotificationType.GAME_LOADED)
        info = await client.read_message()
        sync = await client.read_message()

        emulator.unload_game()
        bus.send_notification(NotificationType.EMULATION_STOPPED)
        stopped = await client.read_message()

        await client.goodbye()
        await client.close()
        return initial, info, sync, stopped

    initial, info, sync, stopped = asyncio.run(scenario())
    assert initial == InfoSnapshot(has_game=False)
    assert isinstance(info, InfoSnapshot) and info.has_game
    assert info.sha1 == "A" * 40
    assert isinstance(sync, SyncMsg)
    assert sync.reason == SyncReason.INITIAL
    assert stopped == InfoSnapshot(has_game=False)


def test_handshake_with_game_loaded_includes_sync(streamer, emulator, client_config):
    emulator.load_game("Zelda.nes")

    async def scenario():
        client = _client(streamer, client_config)
        await client.connect()
        await client.hello(1, 9)
        info = await client.read_message()
        sync = await client.read_message()
        await client.goodbye()
        await client.close()
        return info, sync

    info, sync = asyncio.run(scenario())
    assert info.file_name == "Zelda.nes"
    assert sync.reason == SyncReason.INITIAL
    assert sync.snapshot.cpu_cycle_count == 0x12_3456_789A


def test_client_handlers_receive_decoded_messages(streamer, emulator, client_config):
    emulator.load_game()
    seen = []

    async def record(msg):
        seen.append(msg)

    async def scenario():
        client = _client(streamer, client_config)
        client.register_handler(MsgType.INFO, record)
        client.register_handler(MsgType.SYNC, record)
        await client.connect()
        await client.hello()
        run = asyncio.create_task(client.run())
        while len(seen) < 2:
            await asyncio.sleep(0.01)
        await client.send_frame(MsgType.GOODBYE)
        await asyncio.wait_for(run, timeout=3.0)
        await client.close()

    asyncio.run(scenario())
    assert isinstance(seen[0], InfoSnapshot)
    assert isinstance(seen[1], SyncMsg)


def test_stop_closes_active_session(emulator, bus, streamer_config, client_config):
    s = TraceStreamer(emulator, bus, config=streamer_config)
    s.start_auto()
    assert wait_until(s.is_listening)

    async def scenario():
        client = _client(s, client_config)
        await client.connect()
        await client.hello()
        await client.read_message()
        await asyncio.get_running_loop().run_in_executor(None, s.stop)
        frame = await client.read_frame()
        await client.close()
        return frame

    assert asyncio.run(scenario()) is None
    assert not s.is_listening()
    assert s.get_port() == 0
    assert bus.listener_count() == 0


def test_start_hook_respects_enabled_flag(monkeypatch, tmp_path, emulator, bus):
    from server.config import STREAMER_CONFIG
    from server.main import start_trace_streamer

    saved = STREAMER_CONFIG.copy()
    try:
        monkeypatch.setenv("TRACE_STREAMER_ENABLED", "false")
        assert start_trace_streamer(emulator, bus, env_path=str(tmp_path / "missing.env")) is None

        monkeypatch.setenv("TRACE_STREAMER_ENABLED", "true")
        streamer = start_trace_streamer(emulator, bus, env_path=str(tmp_path / "missing.env"))
        try:
            assert wait_until(streamer.is_listening)
            assert bus.listener_count() == 1
        finally:
            streamer.stop()
    finally:
        STREAMER_CONFIG.clear()
        STREAMER_CONFIG.update(saved)


def test_listen_is_rearmed_after_each_accept_drain(emulator, streamer_config):
    RefusingSocket.free_ports = [PORT_START]
    RefusingSocket.created = {}
    s = TraceStreamer(emulator, config=streamer_config, socket_factory=CountingSocket)
    s.start_auto()
    try:
        assert wait_until(s.is_listening)
        listener = RefusingSocket.created[PORT_START]
        assert wait_until(lambda: len(listener.backlogs) >= 5)
    finally:
        s.stop()

    assert set(listener.backlogs) == {streamer_config["listen_backlog"]}


def test_run_keeps_frame_sync_across_slow_payload(client_config):
    frame = InfoSnapshot(has_game=False).to_frame()
    seen = []

    async def record(msg):
        seen.append(msg)

    async def serve(reader, writer):
        writer.write(frame[:FRAME_HEADER_SIZE])
        await writer.drain()
        await asyncio.sleep(0.3)
        writer.write(frame[FRAME_HEADER_SIZE:] + frame)
        await writer.drain()
        writer.close()

    async def scenario():
        server = await asyncio.start_server(serve, "127.0.0.1", 0)
        config = dict(client_config)
        config["server_port"] = server.sockets[0].getsockname()[1]
        config["read_timeout"] = 0.1
        client = TraceClient(config)
        client.register_handler(MsgType.INFO, record)
        await client.connect()
        await asyncio.wait_for(client.run(), timeout=3.0)
        await client.close()
        server.close()
        await server.wait_closed()

    asyncio.run(scenario())
    assert seen == [InfoSnapshot(has_game=False), InfoSnapshot(has_game=False)]


def test_read_frame_timeout_covers_whole_frame(client_config):
    frame = InfoSnapshot(has_game=False).to_frame()

    async def serve(reader, writer):
        writer.write(frame[:FRAME_HEADER_SIZE])
        await writer.drain()
        await asyncio.sleep(0.3)
        writer.close()

    async def scenario():
        server = await asyncio.start_server(serve, "127.0.0.1", 0)
        config = dict(client_config)
        config["server_port"] = server.sockets[0].getsockname()[1]
        client = TraceClient(config)
        await client.connect()
        try:
            with pytest.raises(asyncio.TimeoutError):
                await client.read_frame(timeout=0.1)
        finally:
            await client.close()
            server.close()
            await server.wait_closed()

    asyncio.run(scenario())


def test_log_handlers_ignore_unexpected_messages(caplog):
    from client.main import _log_info, _log_sync

    with caplog.at_level(logging.INFO, logger="client.main"):
        asyncio.run(_log_info(HelloAckMsg(major=1, minor=0)))
        asyncio.run(_log_sync(InfoSnapshot(has_game=False)))
    assert [r for r in caplog.records if r.name == "client.main"] == []
