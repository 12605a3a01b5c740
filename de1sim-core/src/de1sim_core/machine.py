"""Simulation state machine.

Owns the machine's ``(state, substate)`` pair, advances it through a fixed
phase table on a single-shot phase timer and emits a synthetic sensor sample
on a fixed period.

Timers are created through a :class:`Scheduler`. An asyncio event loop
satisfies the protocol directly (``loop.time()`` and ``loop.call_later()``),
so in production every callback runs on the one loop thread and no locking is
needed. Tests drive the machine with a virtual clock.

A sample tick never observes a stale phase: if the tick fires at or after
the current phase deadline, the phase is advanced first.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, TypeVar

from de1sim_core.codec import (
    decode_centiseconds,
    decode_u8p4,
    decode_u16p8,
    decode_u16p12,
    decode_u24p16,
    encode_centiseconds,
    encode_u8p4,
    encode_u16p8,
    encode_u16p12,
    encode_u24p16,
)
from de1sim_core.errors import CodecError
from de1sim_core.profile import FLAG_CTRL_FLOW, ProfileStore
from de1sim_core.registers import RegisterBank
from de1sim_core.states import (
    IDLE_READY,
    OPERATION_STATES,
    SLEEP_READY,
    MachineState,
    MachineStatus,
    SubState,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

SAMPLE_SIZE = 19

#: Ordered ``(substate, seconds)`` phases per simulated operation.
PHASE_TABLE: dict[MachineState, tuple[tuple[SubState, float], ...]] = {
    MachineState.ESPRESSO: (
        (SubState.HEATING, 2.0),
        (SubState.PREINFUSION, 5.0),
        (SubState.POURING, 25.0),
        (SubState.ENDING, 2.0),
    ),
    MachineState.STEAM: ((SubState.STEAMING, 45.0),),
    MachineState.HOT_WATER: ((SubState.POURING, 30.0),),
    MachineState.HOT_WATER_RINSE: ((SubState.POURING, 10.0),),
}

# Frame layout assumed when no profile has been uploaded.
_DEFAULT_FRAME_COUNT = 6
_DEFAULT_PREINFUSE_FRAMES = 1
_SECONDS_PER_POUR_FRAME = 5.0


class TimerHandle(Protocol):
    """A cancellable scheduled callback."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock and timer source (an asyncio event loop satisfies this)."""

    def time(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle: ...


class RequestOutcome(Enum):
    """Result of a protocol state request."""

    ACCEPTED = "accepted"
    BLOCKED = "blocked"
    IGNORED = "ignored"


@dataclass(frozen=True)
class MachineConfig:
    """Simulation parameters.

    Args:
        sample_interval: Seconds between shot samples.
        water_level_interval: Seconds between periodic water level notifications.
        water_level: Initial water level in percent.
        group_temperature: Simulated group and mix temperature in degrees C.
        pressure_setpoint: Pressure target reported while pouring (bar).
        flow_setpoint: Flow target reported while pouring (mL/s).
    """

    sample_interval: float = 0.2
    water_level_interval: float = 5.0
    water_level: float = 75.0
    group_temperature: float = 93.0
    pressure_setpoint: float = 9.0
    flow_setpoint: float = 2.0

    def __post_init__(self) -> None:
        if self.sample_interval <= 0:
            raise ValueError("sample_interval must be positive")
        if self.water_level_interval <= 0:
            raise ValueError("water_level_interval must be positive")
        if not 0.0 <= self.water_level <= 100.0:
            raise ValueError("water_level must be between 0 and 100")


@dataclass(frozen=True)
class ShotSettings:
    """Retained SHOT_SETTINGS values.

    Temperatures are whole degrees C, volumes mL and durations seconds,
    except ``group_temperature`` which is fractional.
    """

    steam_flags: int = 0
    steam_temperature: int = 160
    steam_duration: int = 120
    hot_water_temperature: int = 80
    hot_water_volume: int = 250
    hot_water_duration: int = 60
    espresso_volume: int = 200
    group_temperature: float = 93.0


@dataclass(frozen=True)
class SimulationSample:
    """One synthetic SHOT_SAMPLE reading.

    Attributes:
        elapsed: Seconds since the operation started.
        pressure: Group pressure in bar.
        flow: Flow in mL/s.
        mix_temp: Mix temperature in degrees C.
        head_temp: Head temperature in degrees C.
        set_mix_temp: Mix temperature target.
        set_head_temp: Head temperature target.
        set_pressure: Pressure target.
        set_flow: Flow target.
        frame_number: Active profile frame.
        steam_temp: Steam heater temperature in whole degrees C.
    """

    elapsed: float = 0.0
    pressure: float = 0.0
    flow: float = 0.0
    mix_temp: float = 0.0
    head_temp: float = 0.0
    set_mix_temp: float = 0.0
    set_head_temp: float = 0.0
    set_pressure: float = 0.0
    set_flow: float = 0.0
    frame_number: int = 0
    steam_temp: int = 0

    @classmethod
    def idle(cls, temperature: float) -> SimulationSample:
        """Return a zeroed sample holding the given temperatures."""
        return cls(
            mix_temp=temperature,
            head_temp=temperature,
            set_mix_temp=temperature,
            set_head_temp=temperature,
        )

    def to_bytes(self) -> bytes:
        """Serialize to the 19-byte SHOT_SAMPLE payload."""
        return b"".join(
            (
                encode_centiseconds(self.elapsed),
                encode_u16p12(self.pressure),
                encode_u16p12(self.flow),
                encode_u16p8(self.mix_temp),
                encode_u24p16(self.head_temp),
                encode_u16p8(self.set_mix_temp),
                encode_u16p8(self.set_head_temp),
                bytes(
                    (
                        encode_u8p4(self.set_pressure),
                        encode_u8p4(self.set_flow),
                        min(max(self.frame_number, 0), 0xFF),
                        min(max(self.steam_temp, 0), 0xFF),
                    )
                ),
            )
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> SimulationSample:
        """Deserialize a 19-byte SHOT_SAMPLE payload.

        Raises:
            CodecError: If the payload is not 19 bytes.
        """
        if len(data) != SAMPLE_SIZE:
            raise CodecError(f"SHOT_SAMPLE must be {SAMPLE_SIZE} bytes, got {len(data)}")
        return cls(
            elapsed=decode_centiseconds(data[0:2]),
            pressure=decode_u16p12(data[2:4]),
            flow=decode_u16p12(data[4:6]),
            mix_temp=decode_u16p8(data[6:8]),
            head_temp=decode_u24p16(data[8:11]),
            set_mix_temp=decode_u16p8(data[11:13]),
            set_head_temp=decode_u16p8(data[13:15]),
            set_pressure=decode_u8p4(data[15]),
            set_flow=decode_u8p4(data[16]),
            frame_number=data[17],
            steam_temp=data[18],
        )


StateCallback = Callable[[MachineStatus], None]
SampleCallback = Callable[[SimulationSample], None]
BlockedCallback = Callable[[MachineState], None]
WaterLevelCallback = Callable[[float], None]


@dataclass
class _Operation:
    """Bookkeeping for the running operation."""

    state: MachineState
    started: float
    phase_index: int = 0
    phase_started: float = 0.0
    phase_deadline: float = 0.0
    ending_from: tuple[float, float] = (0.0, 0.0)


@dataclass
class _Callbacks:
    state: list[StateCallback] = field(default_factory=list)
    sample: list[SampleCallback] = field(default_factory=list)
    blocked: list[BlockedCallback] = field(default_factory=list)
    water_level: list[WaterLevelCallback] = field(default_factory=list)


class MachineSimulator:
    """The simulated espresso machine.

    Args:
        scheduler: Clock and timer source.
        registers: Register bank consulted for the access-control policy.
        profile: Profile store consulted for frame bookkeeping.
        config: Simulation parameters.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        registers: RegisterBank | None = None,
        profile: ProfileStore | None = None,
        config: MachineConfig | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._registers = registers or RegisterBank()
        self._profile = profile or ProfileStore()
        self._config = config or MachineConfig()

        self._status = IDLE_READY
        self._operation: _Operation | None = None
        self._phase_handle: TimerHandle | None = None
        self._sample_handle: TimerHandle | None = None
        self._shot_settings = ShotSettings(group_temperature=self._config.group_temperature)
        self._sample = SimulationSample.idle(self._config.group_temperature)
        self._water_level = self._config.water_level
        self._callbacks = _Callbacks()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> MachineConfig:
        return self._config

    @property
    def registers(self) -> RegisterBank:
        return self._registers

    @property
    def profile(self) -> ProfileStore:
        return self._profile

    @property
    def status(self) -> MachineStatus:
        """Return the current ``(state, substate)`` pair."""
        return self._status

    @property
    def state(self) -> MachineState:
        return self._status.state

    @property
    def substate(self) -> SubState:
        return self._status.substate

    @property
    def is_active(self) -> bool:
        """Return True if the machine is neither idle nor asleep."""
        return self._status.is_active

    @property
    def sample(self) -> SimulationSample:
        """Return the most recent sample."""
        return self._sample

    @property
    def shot_settings(self) -> ShotSettings:
        return self._shot_settings

    @property
    def water_level(self) -> float:
        """Return the water level in percent."""
        return self._water_level

    @property
    def has_pending_timers(self) -> bool:
        return self._phase_handle is not None or self._sample_handle is not None

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def add_state_callback(self, callback: StateCallback) -> None:
        """Register a callback invoked on every state or substate change."""
        self._callbacks.state.append(callback)

    def remove_state_callback(self, callback: StateCallback) -> None:
        if callback in self._callbacks.state:
            self._callbacks.state.remove(callback)

    def add_sample_callback(self, callback: SampleCallback) -> None:
        """Register a callback invoked with every emitted sample."""
        self._callbacks.sample.append(callback)

    def remove_sample_callback(self, callback: SampleCallback) -> None:
        if callback in self._callbacks.sample:
            self._callbacks.sample.remove(callback)

    def add_blocked_callback(self, callback: BlockedCallback) -> None:
        """Register a callback invoked with each request refused by policy."""
        self._callbacks.blocked.append(callback)

    def add_water_level_callback(self, callback: WaterLevelCallback) -> None:
        """Register a callback invoked when the operator changes the water level."""
        self._callbacks.water_level.append(callback)

    def _fire(self, callbacks: list[Callable[[_T], None]], value: _T, what: str) -> None:
        for callback in list(callbacks):
            try:
                callback(value)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Error in %s callback", what)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def start_operation(self, state: MachineState) -> bool:
        """Start a timed operation from Idle or Sleep.

        Args:
            state: ESPRESSO, STEAM, HOT_WATER or HOT_WATER_RINSE.

        Returns:
            True if started, False if another operation is already active.

        Raises:
            ValueError: If *state* has no simulated operation.
        """
        if state not in OPERATION_STATES:
            raise ValueError(f"{state.display_name} is not a simulated operation")
        if self.is_active:
            logger.info(
                "Start %s ignored: %s already active", state.display_name, self._status
            )
            return False

        now = self._scheduler.time()
        self._operation = _Operation(state=state, started=now)
        logger.info("Starting %s", state.display_name)
        self._enter_phase(0, now)
        self._sample_handle = self._scheduler.call_later(
            self._config.sample_interval, self._on_sample_tick
        )
        return True

    def stop_operation(self) -> None:
        """Stop any operation and return to Idle/Ready.

        Cancels both timers and zeroes the sample. Safe to call repeatedly
        and from any state, including Sleep.
        """
        self._cancel_timers()
        was_running = self._operation is not None
        self._operation = None
        self._sample = SimulationSample.idle(self._shot_settings.group_temperature)
        if was_running:
            logger.info("Operation stopped")
            self._fire(self._callbacks.sample, self._sample, "sample")
        self._set_status(IDLE_READY)

    def skip_to_next(self) -> bool:
        """Advance the running operation to its next phase.

        Returns:
            True if an operation was running.
        """
        if self._operation is None:
            logger.info("SkipToNext ignored: no operation running")
            return False
        self._advance_phase(self._scheduler.time())
        return True

    def sleep(self) -> None:
        """Stop any operation and go to Sleep."""
        self._cancel_timers()
        self._operation = None
        self._sample = SimulationSample.idle(self._shot_settings.group_temperature)
        self._set_status(SLEEP_READY)

    def wake(self) -> None:
        """Leave Sleep for Idle; no effect in any other state."""
        if self._status.state == MachineState.SLEEP:
            self._set_status(IDLE_READY)

    def toggle_power(self) -> MachineStatus:
        """Toggle between Sleep and Idle, stopping any operation.

        Returns:
            The new status.
        """
        if self._status.state == MachineState.SLEEP:
            self.wake()
        else:
            self.sleep()
        return self._status

    def request_state(self, state: MachineState) -> RequestOutcome:
        """Handle a REQUESTED_STATE write from the protocol.

        The access-control level is checked first: when the group-head
        controller is active only Sleep and Idle may be requested.

        Args:
            state: Requested machine state.

        Returns:
            Whether the request was accepted, blocked by policy or ignored.
        """
        allowed = (MachineState.SLEEP, MachineState.IDLE)
        if state not in allowed and not self._registers.access_level.allows_remote_start:
            logger.warning(
                "BLOCKED: request for %s refused (access level %d, controller active)",
                state.display_name,
                self._registers.access_level,
            )
            self._fire(self._callbacks.blocked, state, "blocked")
            return RequestOutcome.BLOCKED

        if state == MachineState.IDLE:
            self.stop_operation()
            return RequestOutcome.ACCEPTED
        if state == MachineState.SLEEP:
            self.sleep()
            return RequestOutcome.ACCEPTED
        if state in OPERATION_STATES:
            accepted = self.start_operation(state)
        elif state == MachineState.SKIP_TO_NEXT:
            accepted = self.skip_to_next()
        elif state == MachineState.NO_REQUEST:
            return RequestOutcome.IGNORED
        elif self.is_active:
            logger.info("Request for %s ignored while %s", state.display_name, self._status)
            return RequestOutcome.IGNORED
        else:
            self._set_status(MachineStatus(state))
            accepted = True
        return RequestOutcome.ACCEPTED if accepted else RequestOutcome.IGNORED

    def set_water_level(self, percent: float) -> None:
        """Set the reservoir level.

        Raises:
            ValueError: If *percent* is outside 0-100.
        """
        if not 0.0 <= percent <= 100.0:
            raise ValueError(f"Water level must be between 0 and 100, got {percent}")
        self._water_level = float(percent)
        logger.info("Water level set to %.0f%%", percent)
        self._fire(self._callbacks.water_level, self._water_level, "water level")

    def apply_shot_settings(self, settings: ShotSettings) -> None:
        """Retain shot settings; the group temperature becomes the head setpoint."""
        self._shot_settings = settings
        logger.info(
            "Shot settings: steam %dC/%ds, hot water %dC/%dmL/%ds, espresso %dmL, group %.1fC",
            settings.steam_temperature,
            settings.steam_duration,
            settings.hot_water_temperature,
            settings.hot_water_volume,
            settings.hot_water_duration,
            settings.espresso_volume,
            settings.group_temperature,
        )

    # -------------------------------------------------------------------------
    # Phase handling
    # -------------------------------------------------------------------------

    def _set_status(self, status: MachineStatus) -> None:
        if status == self._status:
            return
        self._status = status
        logger.info("State: %s", status)
        self._fire(self._callbacks.state, status, "state")

    def _cancel_timers(self) -> None:
        if self._phase_handle is not None:
            self._phase_handle.cancel()
            self._phase_handle = None
        if self._sample_handle is not None:
            self._sample_handle.cancel()
            self._sample_handle = None

    def _enter_phase(self, index: int, started: float) -> None:
        operation = self._operation
        assert operation is not None
        substate, duration = PHASE_TABLE[operation.state][index]
        operation.phase_index = index
        operation.phase_started = started
        operation.phase_deadline = started + duration
        if substate == SubState.ENDING:
            operation.ending_from = (self._sample.pressure, self._sample.flow)
        delay = max(operation.phase_deadline - self._scheduler.time(), 0.0)
        self._phase_handle = self._scheduler.call_later(delay, self._on_phase_timer)
        self._set_status(MachineStatus(operation.state, substate))

    def _advance_phase(self, at: float) -> None:
        if self._phase_handle is not None:
            self._phase_handle.cancel()
            self._phase_handle = None
        operation = self._operation
        if operation is None:
            return
        next_index = operation.phase_index + 1
        if next_index >= len(PHASE_TABLE[operation.state]):
            logger.info("%s complete", operation.state.display_name)
            self.stop_operation()
            return
        self._enter_phase(next_index, at)

    def _on_phase_timer(self) -> None:
        self._phase_handle = None
        if self._operation is not None:
            self._advance_phase(self._operation.phase_deadline)

    def _on_sample_tick(self) -> None:
        self._sample_handle = None
        operation = self._operation
        if operation is None:
            return
        now = self._scheduler.time()
        if now >= operation.phase_deadline:
            self._advance_phase(operation.phase_deadline)
            if self._operation is None:
                return
        self._sample_handle = self._scheduler.call_later(
            self._config.sample_interval, self._on_sample_tick
        )
        self._sample = self._compute_sample(now)
        logger.debug(
            "TX sample: t=%.1f P=%.2f F=%.2f frame=%d",
            self._sample.elapsed,
            self._sample.pressure,
            self._sample.flow,
            self._sample.frame_number,
        )
        self._fire(self._callbacks.sample, self._sample, "sample")

    # -------------------------------------------------------------------------
    # Sample computation
    # -------------------------------------------------------------------------

    def _frame_layout(self) -> tuple[int, int]:
        if self._profile.header is None:
            return _DEFAULT_FRAME_COUNT, _DEFAULT_PREINFUSE_FRAMES
        return self._profile.frame_count, self._profile.preinfuse_frame_count

    def _frame_for(self, substate: SubState, t: float) -> int:
        """Return the profile frame active *t* seconds into an espresso phase.

        Preinfuse frames share the Preinfusion phase evenly; pour frames
        follow at a fixed pace from the first frame after them.
        """
        frames, preinfuse = self._frame_layout()
        last = max(frames - 1, 0)
        if substate == SubState.PREINFUSION:
            if preinfuse == 0:
                return 0
            duration = dict(PHASE_TABLE[MachineState.ESPRESSO])[SubState.PREINFUSION]
            return min(last, preinfuse - 1, int(t * preinfuse / duration))
        return min(last, preinfuse + int(t / _SECONDS_PER_POUR_FRAME))

    def _compute_sample(self, now: float) -> SimulationSample:
        operation = self._operation
        assert operation is not None
        t = now - operation.phase_started
        temperature = self._config.group_temperature
        set_head = self._shot_settings.group_temperature
        set_pressure = self._config.pressure_setpoint
        set_flow = self._config.flow_setpoint
        pressure = flow = 0.0
        frame_number = 0
        steam_temp = 0
        substate = self._status.substate

        if operation.state == MachineState.ESPRESSO:
            if substate == SubState.PREINFUSION:
                pressure = min(4.0, t * 0.8)
                flow = 2.0
                set_pressure, set_flow = 4.0, 2.0
                frame_number = self._frame_for(substate, t)
            elif substate == SubState.POURING:
                frame_number = self._frame_for(substate, t)
                pressure = 8.0 + math.sin(t * 0.5)
                flow = 2.0 + 0.5 * math.sin(t * 0.3)
            elif substate == SubState.ENDING:
                start_pressure, start_flow = operation.ending_from
                pressure = max(0.0, start_pressure - 2.5 * t)
                flow = max(0.0, start_flow - 1.5 * t)
                frame_number = self._sample.frame_number
        elif operation.state == MachineState.STEAM:
            pressure = 1.5
            steam_temp = round(min(150.0, 100.0 + 2.0 * t))
        elif operation.state == MachineState.HOT_WATER:
            pressure, flow = 0.5, 6.0
        elif operation.state == MachineState.HOT_WATER_RINSE:
            pressure, flow = 1.0, 8.0

        set_mix = set_head
        active = None
        if operation.state == MachineState.ESPRESSO:
            active = self._profile.frame(frame_number)
        if active is not None:
            set_mix = active.temperature
            header = self._profile.header
            if active.flags & FLAG_CTRL_FLOW:
                set_flow = active.setpoint
                set_pressure = header.min_pressure if header else 0.0
            else:
                set_pressure = active.setpoint
                set_flow = header.max_flow if header else 0.0

        return SimulationSample(
            elapsed=now - operation.started,
            pressure=pressure,
            flow=flow,
            mix_temp=temperature,
            head_temp=temperature,
            set_mix_temp=set_mix,
            set_head_temp=set_head,
            set_pressure=set_pressure,
            set_flow=set_flow,
            frame_number=frame_number,
            steam_temp=steam_temp,
        )
