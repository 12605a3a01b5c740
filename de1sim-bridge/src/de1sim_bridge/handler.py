"""Bridge protocol handler.

Translates between the simulated machine and the peripheral daemon. Inbound
events are dispatched to the register bank, profile store and state machine;
machine changes flow back out as ``notify`` and ``update`` commands.

The handler does no I/O of its own. A channel attaches a send function when
the link to the daemon comes up and detaches it when the link drops, and
feeds every received line to :meth:`BridgeHandler.handle_line`. Each line is
processed to completion before the next is read.

Malformed input never propagates: wrong-size payloads and unparsable lines
are logged, counted and dropped without touching machine state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from de1sim_bridge.characteristics import VERSION_VALUE, Characteristic
from de1sim_bridge.messages import (
    AdvertisingEvent,
    Command,
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    Event,
    NotifyCommand,
    ReadEvent,
    ReadyEvent,
    StartCommand,
    UpdateCommand,
    WriteEvent,
    parse_event,
)
from de1sim_bridge.payloads import (
    decode_frame,
    decode_header,
    decode_mmr_read,
    decode_mmr_write,
    decode_requested_state,
    decode_shot_settings,
    encode_mmr_response,
    encode_shot_settings,
    encode_water_level,
    water_level_mm,
)
from de1sim_core.errors import MessageError, PayloadError
from de1sim_core.machine import (
    MachineSimulator,
    RequestOutcome,
    Scheduler,
    SimulationSample,
    TimerHandle,
)
from de1sim_core.registers import address_name
from de1sim_core.states import MachineState, MachineStatus

logger = logging.getLogger(__name__)

SendFunction = Callable[[Command], None]


@dataclass
class BridgeDiagnostics:
    """Counters exposed through the operator API."""

    messages_handled: int = 0
    malformed_dropped: int = 0
    blocked_requests: int = 0
    rejected_peers: int = 0
    notifications_sent: int = 0
    commands_dropped: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class BridgeHandler:
    """Dispatches daemon events and publishes machine changes.

    Args:
        machine: The simulated machine.
        scheduler: Timer source for periodic water level notifications.
    """

    def __init__(self, machine: MachineSimulator, scheduler: Scheduler) -> None:
        self._machine = machine
        self._scheduler = scheduler
        self._send: SendFunction | None = None
        self._client: str | None = None
        self._daemon_version: str | None = None
        self._water_handle: TimerHandle | None = None
        self.diagnostics = BridgeDiagnostics()

        machine.add_state_callback(self._on_state)
        machine.add_sample_callback(self._on_sample)
        machine.add_blocked_callback(self._on_blocked)
        machine.add_water_level_callback(self._on_water_level)

    # -------------------------------------------------------------------------
    # Link lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_attached(self) -> bool:
        """Return True while a channel to the daemon is up."""
        return self._send is not None

    @property
    def client(self) -> str | None:
        """Return the address of the connected BLE client, if any."""
        return self._client

    @property
    def daemon_version(self) -> str | None:
        return self._daemon_version

    def attach(self, send: SendFunction) -> None:
        """Start publishing through *send*.

        Raises:
            RuntimeError: If a channel is already attached.
        """
        if self._send is not None:
            raise RuntimeError("Bridge channel already attached")
        self._send = send
        logger.info("PI: channel up")
        self._arm_water_timer()

    def detach(self) -> None:
        """Stop publishing; stops any running operation and all timers."""
        if self._send is None:
            return
        self._send = None
        self._client = None
        self._daemon_version = None
        if self._water_handle is not None:
            self._water_handle.cancel()
            self._water_handle = None
        logger.info("PI: channel down")
        self._machine.stop_operation()

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def handle_line(self, line: str | bytes) -> None:
        """Parse and dispatch one line received from the daemon."""
        if not line.strip():
            return
        try:
            event = parse_event(line)
        except MessageError as exc:
            self.diagnostics.malformed_dropped += 1
            logger.warning("PI: dropped malformed message: %s", exc)
            return
        self.handle_event(event)

    def handle_event(self, event: Event) -> None:
        """Dispatch one parsed event."""
        self.diagnostics.messages_handled += 1
        if isinstance(event, ReadyEvent):
            self._on_ready(event)
        elif isinstance(event, AdvertisingEvent):
            logger.info("PI: BLE advertising started")
        elif isinstance(event, ConnectedEvent):
            self._on_connected(event)
        elif isinstance(event, DisconnectedEvent):
            self._on_disconnected(event)
        elif isinstance(event, WriteEvent):
            self._on_write(event)
        elif isinstance(event, ReadEvent):
            self._on_read(event)
        elif isinstance(event, ErrorEvent):
            logger.error("PI: BLE error %d %s", event.code, event.message)

    def _on_ready(self, event: ReadyEvent) -> None:
        self._daemon_version = event.version
        logger.info("PI: daemon ready (v%s)", event.version)
        self._publish_state(self._machine.status)
        self._publish_water_level()
        for char in (Characteristic.VERSION, Characteristic.SHOT_SETTINGS):
            self._update(char, self._read_value(char))

    def _on_connected(self, event: ConnectedEvent) -> None:
        if self._client is not None:
            self.diagnostics.rejected_peers += 1
            logger.warning(
                "PI: second BLE client %s rejected, %s already connected",
                event.client,
                self._client,
            )
            return
        self._client = event.client
        logger.info("PI: BLE client connected: %s", event.client)

    def _on_disconnected(self, event: DisconnectedEvent) -> None:
        if self._client is None:
            logger.warning("PI: disconnect without a connected BLE client, ignored")
            return
        if event.client and event.client != self._client:
            logger.info("PI: rejected BLE client %s disconnected", event.client)
            return
        logger.info("PI: BLE client disconnected: %s", self._client)
        self._client = None
        self._machine.stop_operation()
        self._emit(StartCommand())

    def _on_write(self, event: WriteEvent) -> None:
        try:
            char = Characteristic.from_id(event.char)
        except ValueError:
            logger.info("RX %s: %s (unhandled)", event.char, event.data)
            return
        try:
            self._dispatch_write(char, event.payload)
        except PayloadError as exc:
            self.diagnostics.malformed_dropped += 1
            logger.warning("RX dropped: %s", exc)

    def _dispatch_write(self, char: Characteristic, data: bytes) -> None:
        if char is Characteristic.REQUESTED_STATE:
            state = decode_requested_state(data)
            logger.info("RX REQUESTED_STATE: %s (0x%02x)", state.display_name, state)
            self._machine.request_state(state)
        elif char is Characteristic.READ_FROM_MMR:
            address = decode_mmr_read(data)
            value = self._machine.registers.read(address)
            logger.info("RX MMR_READ: %s -> %s", address_name(address), value.hex())
            self._notify(Characteristic.READ_FROM_MMR, encode_mmr_response(address, value))
        elif char is Characteristic.WRITE_TO_MMR:
            write = decode_mmr_write(data)
            self._machine.registers.write(write.address, write.value)
        elif char is Characteristic.HEADER_WRITE:
            self._machine.profile.begin_profile(decode_header(data))
        elif char is Characteristic.FRAME_WRITE:
            write = decode_frame(data)
            self._machine.profile.set_frame(write.index, write.frame, write.extension)
        elif char is Characteristic.SHOT_SETTINGS:
            settings = decode_shot_settings(data)
            self._machine.apply_shot_settings(settings)
            self._update(Characteristic.SHOT_SETTINGS, encode_shot_settings(settings))
        else:
            logger.info("RX %s: %s (read-only)", char.name, data.hex())

    def _on_read(self, event: ReadEvent) -> None:
        try:
            char = Characteristic.from_id(event.char)
        except ValueError:
            logger.info("RX CHAR_READ: %s", event.char)
            return
        logger.info("RX CHAR_READ: %s", char.name)
        value = self._read_value(char)
        if value is not None:
            self._update(char, value)

    def _read_value(self, char: Characteristic) -> bytes | None:
        if char is Characteristic.STATE_INFO:
            return self._machine.status.to_bytes()
        if char is Characteristic.WATER_LEVELS:
            return encode_water_level(self._machine.water_level)
        if char is Characteristic.SHOT_SETTINGS:
            return encode_shot_settings(self._machine.shot_settings)
        if char is Characteristic.VERSION:
            return VERSION_VALUE
        return None

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def _emit(self, command: Command) -> None:
        if self._send is None:
            return
        try:
            self._send(command)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("PI: failed to send %s command", command.cmd)

    def _notify(self, char: Characteristic, payload: bytes) -> None:
        if self._send is None:
            return
        self.diagnostics.notifications_sent += 1
        self._emit(NotifyCommand.for_payload(char, payload))

    def _update(self, char: Characteristic, payload: bytes | None) -> None:
        if payload is not None:
            self._emit(UpdateCommand.for_payload(char, payload))

    def _publish_state(self, status: MachineStatus) -> None:
        if self._send is None:
            return
        logger.info("TX STATE_INFO: %s", status)
        self._notify(Characteristic.STATE_INFO, status.to_bytes())
        self._update(Characteristic.STATE_INFO, status.to_bytes())

    def _publish_water_level(self) -> None:
        if self._send is None:
            return
        level = self._machine.water_level
        payload = encode_water_level(level)
        logger.debug("TX WATER_LEVELS: %.0f%% (%.1f mm)", level, water_level_mm(level))
        self._notify(Characteristic.WATER_LEVELS, payload)
        self._update(Characteristic.WATER_LEVELS, payload)

    def _on_state(self, status: MachineStatus) -> None:
        self._publish_state(status)

    def _on_sample(self, sample: SimulationSample) -> None:
        self._notify(Characteristic.SHOT_SAMPLE, sample.to_bytes())

    def _on_blocked(self, state: MachineState) -> None:
        self.diagnostics.blocked_requests += 1

    def _on_water_level(self, percent: float) -> None:
        self._publish_water_level()

    def _arm_water_timer(self) -> None:
        self._water_handle = self._scheduler.call_later(
            self._machine.config.water_level_interval, self._on_water_timer
        )

    def _on_water_timer(self) -> None:
        self._water_handle = None
        if self._send is None:
            return
        self._publish_water_level()
        self._arm_water_timer()

    def snapshot(self) -> dict[str, Any]:
        """Return link state and counters."""
        return {
            "attached": self.is_attached,
            "daemon_version": self._daemon_version,
            "client": self._client,
            "diagnostics": self.diagnostics.to_dict(),
        }
