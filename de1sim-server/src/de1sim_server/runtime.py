"""Runtime composition of the simulator service.

Builds the register bank, profile store, machine, bridge handler and channel
on the running event loop so every timer and channel callback runs on one
thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from de1sim_bridge.channel import BridgeClient, BridgeListener
from de1sim_bridge.handler import BridgeHandler
from de1sim_core.machine import MachineSimulator
from de1sim_core.profile import ProfileStore
from de1sim_core.registers import AccessLevel, RegisterBank
from de1sim_server.config import SimulatorConfig

logger = logging.getLogger(__name__)


class SimulatorRuntime:
    """Owns the simulator components for the lifetime of the service.

    Args:
        config: Service configuration.
    """

    def __init__(self, config: SimulatorConfig | None = None) -> None:
        self._config = config or SimulatorConfig()
        self._machine: MachineSimulator | None = None
        self._handler: BridgeHandler | None = None
        self._channel: BridgeClient | BridgeListener | None = None
        self._start_time = time.time()

    @property
    def config(self) -> SimulatorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._machine is not None

    @property
    def uptime(self) -> float:
        """Return uptime in seconds."""
        return time.time() - self._start_time

    @property
    def machine(self) -> MachineSimulator:
        """Return the machine.

        Raises:
            RuntimeError: If the runtime is not started.
        """
        if self._machine is None:
            raise RuntimeError("Runtime not started")
        return self._machine

    @property
    def handler(self) -> BridgeHandler:
        if self._handler is None:
            raise RuntimeError("Runtime not started")
        return self._handler

    @property
    def channel(self) -> BridgeClient | BridgeListener | None:
        return self._channel

    async def start(self) -> None:
        """Build the components and start the bridge channel.

        Raises:
            RuntimeError: If already running.
        """
        if self._machine is not None:
            raise RuntimeError("Runtime already running")

        loop = asyncio.get_running_loop()
        reg = self._config.registers
        registers = RegisterBank(
            access_level=AccessLevel(reg.access_level),
            machine_model=reg.machine_model,
            firmware_version=reg.firmware_version,
            usb_charger_on=reg.usb_charger_on,
        )
        machine = MachineSimulator(
            loop, registers=registers, profile=ProfileStore(), config=self._config.machine
        )
        handler = BridgeHandler(machine, loop)

        channel: BridgeClient | BridgeListener | None = None
        bridge = self._config.bridge
        if bridge.enabled:
            if bridge.mode == "listen":
                channel = BridgeListener(handler, bridge.host, bridge.port)
            else:
                channel = BridgeClient(handler, bridge.host, bridge.port, bridge.reconnect_interval)
            # Components are kept only once the channel is up.
            await channel.start()
            logger.info("Bridge %s mode on %s:%d", bridge.mode, bridge.host, bridge.port)
        else:
            logger.info("Bridge disabled")

        self._machine = machine
        self._handler = handler
        self._channel = channel
        self._start_time = time.time()

        logger.info("Simulator started (access level %d)", registers.access_level)

    async def stop(self) -> None:
        """Stop the channel and any running operation."""
        if self._channel is not None:
            await self._channel.stop()
            self._channel = None
        if self._machine is not None:
            self._machine.stop_operation()
        self._machine = None
        self._handler = None
        logger.info("Simulator stopped")

    def bridge_status(self) -> dict[str, Any]:
        """Return channel mode and handler link state."""
        bridge = self._config.bridge
        return {
            "enabled": bridge.enabled,
            "mode": bridge.mode,
            **self.handler.snapshot(),
        }
