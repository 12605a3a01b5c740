"""TCP channel to the peripheral daemon.

Two modes are supported:

* :class:`BridgeClient` dials the daemon (which listens on port 12345 by
  default) and redials after a delay whenever the link drops.
* :class:`BridgeListener` listens for the daemon to connect. Exactly one peer
  is served at a time; a second concurrent peer is closed immediately.

Both feed received lines to a :class:`~de1sim_bridge.handler.BridgeHandler`
one at a time and attach a send function for its outbound commands. Losing the
link detaches the handler, which stops any running operation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from de1sim_bridge.handler import BridgeHandler
from de1sim_bridge.messages import Command, encode_command

logger = logging.getLogger(__name__)

DEFAULT_PORT = 12345

#: Outbound bytes allowed to queue on a link before commands are dropped.
WRITE_BUFFER_LIMIT = 64 * 1024


def _make_sender(
    handler: BridgeHandler,
    writer: asyncio.StreamWriter,
    limit: int = WRITE_BUFFER_LIMIT,
) -> Callable[[Command], None]:
    """Return a send function that drops commands while the peer is not reading.

    Timer-driven notifications are written without awaiting a drain, so the
    transport buffer is checked before each write instead.
    """
    stalled = False

    def send(command: Command) -> None:
        nonlocal stalled
        if writer.is_closing():
            return
        if writer.transport.get_write_buffer_size() > limit:
            handler.diagnostics.commands_dropped += 1
            if not stalled:
                stalled = True
                logger.warning("PI: daemon not reading, dropping outbound commands")
            return
        if stalled:
            stalled = False
            logger.info("PI: daemon reading again")
        writer.write(encode_command(command))

    return send


async def _serve_link(
    handler: BridgeHandler,
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
) -> None:
    """Run one link until the peer closes it."""
    handler.attach(_make_sender(handler, writer))
    try:
        while True:
            try:
                line = await reader.readline()
            except ValueError:
                logger.warning("PI: line too long, dropping link")
                break
            if not line:
                break
            handler.handle_line(line)
            await writer.drain()
    except ConnectionError as exc:
        logger.warning("PI: link error: %s", exc)
    finally:
        handler.detach()
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()


class BridgeClient:
    """Dials the peripheral daemon and keeps redialing.

    Args:
        handler: Handler receiving events and sending commands.
        host: Daemon host name or address.
        port: Daemon TCP port.
        reconnect_interval: Seconds to wait before redialing.
    """

    def __init__(
        self,
        handler: BridgeHandler,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        reconnect_interval: float = 5.0,
    ) -> None:
        self._handler = handler
        self._host = host
        self._port = port
        self._reconnect_interval = reconnect_interval
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        """Return True while a link to the daemon is up."""
        return self._handler.is_attached

    async def start(self) -> None:
        """Start the connect loop in a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the connect loop and drop any link."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._handler.detach()

    async def _run(self) -> None:
        while self._running:
            try:
                reader, writer = await asyncio.open_connection(self._host, self._port)
            except OSError as exc:
                logger.warning(
                    "PI: cannot reach daemon at %s:%d: %s", self._host, self._port, exc
                )
            else:
                logger.info("PI: connected to daemon at %s:%d", self._host, self._port)
                await _serve_link(self._handler, reader, writer)
                logger.info("PI: daemon link closed")
            if self._running:
                await asyncio.sleep(self._reconnect_interval)


class BridgeListener:
    """Accepts a single daemon connection.

    Args:
        handler: Handler receiving events and sending commands.
        host: Bind address.
        port: Bind port; use ``0`` for an OS-assigned port.
    """

    def __init__(
        self,
        handler: BridgeHandler,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
    ) -> None:
        self._handler = handler
        self._host = host
        self._port = port
        self._server: asyncio.Server | None = None
        self._peer: asyncio.StreamWriter | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Return the bound ``(host, port)``.

        Raises:
            RuntimeError: If the listener is not started.
        """
        if self._server is None or not self._server.sockets:
            raise RuntimeError("Listener not started")
        addr = self._server.sockets[0].getsockname()
        return (str(addr[0]), int(addr[1]))

    @property
    def has_peer(self) -> bool:
        return self._peer is not None

    async def start(self) -> None:
        """Start listening."""
        self._server = await asyncio.start_server(self._on_peer, self._host, self._port)
        host, port = self.address
        logger.info("PI: listening for daemon on %s:%d", host, port)

    async def stop(self) -> None:
        """Close the current peer and stop listening."""
        if self._peer is not None:
            self._peer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._handler.detach()

    async def _on_peer(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        if self._peer is not None:
            self._handler.diagnostics.rejected_peers += 1
            logger.warning("PI: rejected second daemon connection from %s", peer)
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()
            return
        logger.info("PI: daemon connected from %s", peer)
        self._peer = writer
        try:
            await _serve_link(self._handler, reader, writer)
        finally:
            self._peer = None
            logger.info("PI: daemon disconnected")
