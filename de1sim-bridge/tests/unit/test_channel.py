"""Tests for the TCP channel using loopback sockets."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import MagicMock

import pytest

from de1sim_bridge.channel import BridgeClient, BridgeListener, _make_sender
from de1sim_bridge.handler import BridgeDiagnostics, BridgeHandler
from de1sim_bridge.messages import StartCommand
from de1sim_core.machine import MachineSimulator
from de1sim_core.registers import AccessLevel, RegisterBank
from de1sim_core.states import MachineState

_TIMEOUT = 2.0


def _make_handler() -> tuple[MachineSimulator, BridgeHandler]:
    loop = asyncio.get_running_loop()
    machine = MachineSimulator(loop, registers=RegisterBank(access_level=AccessLevel.DEBUG))
    return machine, BridgeHandler(machine, loop)


async def _read_json(reader: asyncio.StreamReader) -> dict[str, Any]:
    line = await asyncio.wait_for(reader.readline(), _TIMEOUT)
    return json.loads(line)


async def _read_until(reader: asyncio.StreamReader, cmd: str, char: str) -> dict[str, Any]:
    while True:
        message = await _read_json(reader)
        if message.get("cmd") == cmd and message.get("char") == char:
            return message


async def _wait_for(predicate: Any) -> None:
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


class TestBridgeListener:
    """Tests for listen mode."""

    @pytest.mark.asyncio
    async def test_ready_and_write(self) -> None:
        machine, handler = _make_handler()
        listener = BridgeListener(handler, port=0)
        await listener.start()
        try:
            host, port = listener.address
            reader, writer = await asyncio.open_connection(host, port)
            writer.write(b'{"event":"ready","version":"1.0.0"}\n')
            await writer.drain()

            state = await _read_until(reader, "notify", "A00E")
            assert state["data"] == "0200"

            writer.write(b'{"event":"write","char":"A002","data":"06"}\n')
            await writer.drain()
            state = await _read_until(reader, "notify", "A00E")
            assert state["data"] == "0605"
            assert machine.state is MachineState.HOT_WATER

            writer.close()
            await writer.wait_closed()
            await _wait_for(lambda: not handler.is_attached)
            assert machine.state is MachineState.IDLE
        finally:
            await listener.stop()

    @pytest.mark.asyncio
    async def test_second_peer_rejected(self) -> None:
        _, handler = _make_handler()
        listener = BridgeListener(handler, port=0)
        await listener.start()
        try:
            host, port = listener.address
            _, first = await asyncio.open_connection(host, port)
            await _wait_for(lambda: listener.has_peer)

            second_reader, second = await asyncio.open_connection(host, port)
            assert await asyncio.wait_for(second_reader.read(), _TIMEOUT) == b""
            assert handler.diagnostics.rejected_peers == 1
            assert handler.is_attached

            second.close()
            first.close()
            await first.wait_closed()
        finally:
            await listener.stop()

    @pytest.mark.asyncio
    async def test_address_before_start(self) -> None:
        _, handler = _make_handler()
        with pytest.raises(RuntimeError):
            _ = BridgeListener(handler, port=0).address


class TestBridgeClient:
    """Tests for connect mode."""

    @pytest.mark.asyncio
    async def test_connects_and_reconnects(self) -> None:
        connections: asyncio.Queue[tuple[asyncio.StreamReader, asyncio.StreamWriter]] = (
            asyncio.Queue()
        )

        async def daemon(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            await connections.put((reader, writer))

        server = await asyncio.start_server(daemon, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        _, handler = _make_handler()
        client = BridgeClient(handler, "127.0.0.1", port, reconnect_interval=0.05)
        await client.start()
        try:
            reader, writer = await asyncio.wait_for(connections.get(), _TIMEOUT)
            writer.write(b'{"event":"ready","version":"1.0.0"}\n')
            await writer.drain()
            message = await _read_until(reader, "notify", "A011")
            assert message["data"] == "1900"
            assert client.is_connected

            writer.close()
            await writer.wait_closed()
            reader, writer = await asyncio.wait_for(connections.get(), _TIMEOUT)
            assert client.is_running
            writer.close()
            await writer.wait_closed()
        finally:
            await client.stop()
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_unreachable_daemon_keeps_retrying(self) -> None:
        _, handler = _make_handler()
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        client = BridgeClient(handler, "127.0.0.1", port, reconnect_interval=0.01)
        await client.start()
        await asyncio.sleep(0.05)
        assert client.is_running
        assert not client.is_connected
        await client.stop()
        assert not client.is_running


class TestSender:
    """Tests for outbound write buffering."""

    @staticmethod
    def _writer(buffered: int) -> MagicMock:
        writer = MagicMock(spec=asyncio.StreamWriter)
        writer.is_closing.return_value = False
        writer.transport.get_write_buffer_size.return_value = buffered
        return writer

    def test_writes_below_limit(self) -> None:
        handler = MagicMock(spec=BridgeHandler)
        handler.diagnostics = BridgeDiagnostics()
        writer = self._writer(0)
        send = _make_sender(handler, writer, limit=1024)

        send(StartCommand())

        writer.write.assert_called_once_with(b'{"cmd":"start"}\n')
        assert handler.diagnostics.commands_dropped == 0

    def test_drops_when_peer_not_reading(self) -> None:
        handler = MagicMock(spec=BridgeHandler)
        handler.diagnostics = BridgeDiagnostics()
        writer = self._writer(4096)
        send = _make_sender(handler, writer, limit=1024)

        for _ in range(3):
            send(StartCommand())

        writer.write.assert_not_called()
        assert handler.diagnostics.commands_dropped == 3

        writer.transport.get_write_buffer_size.return_value = 0
        send(StartCommand())
        writer.write.assert_called_once()

    def test_closing_writer_skipped(self) -> None:
        handler = MagicMock(spec=BridgeHandler)
        handler.diagnostics = BridgeDiagnostics()
        writer = self._writer(0)
        writer.is_closing.return_value = True

        _make_sender(handler, writer)(StartCommand())

        writer.write.assert_not_called()
        assert handler.diagnostics.commands_dropped == 0
