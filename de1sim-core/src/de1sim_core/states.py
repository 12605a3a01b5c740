"""Machine state and substate types.

The controller reports its operating mode as a ``(state, substate)`` pair.
A substate is only meaningful relative to its owning state, so the pair is
modeled as a single frozen :class:`MachineStatus` value that refuses illegal
combinations at construction time.

Classes:
    MachineState: Operating modes, by wire code.
    SubState: Fine-grained phases, by wire code.
    MachineStatus: A validated ``(state, substate)`` pair.

Example:
    >>> status = MachineStatus(MachineState.ESPRESSO, SubState.PREINFUSION)
    >>> status.to_bytes().hex()
    '0404'
    >>> MachineStatus(MachineState.STEAM, SubState.PREINFUSION)
    Traceback (most recent call last):
    ...
    de1sim_core.errors.StateError: Steam cannot be in substate Preinfusion
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from de1sim_core.errors import StateError


class MachineState(IntEnum):
    """Machine operating modes.

    Only SLEEP, IDLE, ESPRESSO, STEAM, HOT_WATER and HOT_WATER_RINSE (shown
    as "Flush") are simulated; the remaining codes are recognized so they can
    be logged and displayed.
    """

    SLEEP = 0x00
    GOING_TO_SLEEP = 0x01
    IDLE = 0x02
    BUSY = 0x03
    ESPRESSO = 0x04
    STEAM = 0x05
    HOT_WATER = 0x06
    SHORT_CAL = 0x07
    SELF_TEST = 0x08
    LONG_CAL = 0x09
    DESCALE = 0x0A
    FATAL_ERROR = 0x0B
    INIT = 0x0C
    NO_REQUEST = 0x0D
    SKIP_TO_NEXT = 0x0E
    HOT_WATER_RINSE = 0x0F
    STEAM_RINSE = 0x10
    REFILL = 0x11
    CLEAN = 0x12
    IN_BOOT_LOADER = 0x13
    AIR_PURGE = 0x14
    SCHED_IDLE = 0x15

    @property
    def display_name(self) -> str:
        """Return the name shown in logs and the operator API."""
        return _STATE_NAMES[self]

    @classmethod
    def from_name(cls, name: str) -> MachineState:
        """Look up a state by display name or enum name (case-insensitive).

        Raises:
            ValueError: If no state matches.
        """
        key = name.replace("-", "").replace("_", "").lower()
        for state in cls:
            if key in (state.display_name.lower(), state.name.replace("_", "").lower()):
                return state
        raise ValueError(f"Unknown machine state: {name!r}")


class SubState(IntEnum):
    """Phases within an operating mode."""

    READY = 0
    HEATING = 1
    FINAL_HEATING = 2
    STABILISING = 3
    PREINFUSION = 4
    POURING = 5
    ENDING = 6
    STEAMING = 7
    DESCALE_INIT = 8
    DESCALE_FILL_GROUP = 9
    DESCALE_RETURN = 10
    DESCALE_GROUP = 11
    DESCALE_STEAM = 12
    CLEAN_INIT = 13
    CLEAN_FILL_GROUP = 14
    CLEAN_SOAK = 15
    CLEAN_GROUP = 16
    REFILL = 17
    PAUSED_STEAM = 18
    USER_NOT_PRESENT = 19
    PUFFING = 20

    @property
    def display_name(self) -> str:
        """Return the CamelCase name used by the controller documentation."""
        return "".join(part.capitalize() for part in self.name.split("_"))


_STATE_NAMES: dict[MachineState, str] = {
    state: "".join(part.capitalize() for part in state.name.split("_"))
    for state in MachineState
}
_STATE_NAMES[MachineState.HOT_WATER_RINSE] = "Flush"

#: States with a simulated operation (a timed phase sequence).
OPERATION_STATES: frozenset[MachineState] = frozenset(
    {
        MachineState.ESPRESSO,
        MachineState.STEAM,
        MachineState.HOT_WATER,
        MachineState.HOT_WATER_RINSE,
    }
)

#: Legal substates per simulated state. States not listed only allow READY.
LEGAL_SUBSTATES: dict[MachineState, frozenset[SubState]] = {
    MachineState.SLEEP: frozenset({SubState.READY}),
    MachineState.IDLE: frozenset({SubState.READY}),
    MachineState.ESPRESSO: frozenset(
        {SubState.HEATING, SubState.PREINFUSION, SubState.POURING, SubState.ENDING}
    ),
    MachineState.STEAM: frozenset({SubState.STEAMING}),
    MachineState.HOT_WATER: frozenset({SubState.POURING}),
    MachineState.HOT_WATER_RINSE: frozenset({SubState.POURING}),
}


@dataclass(frozen=True)
class MachineStatus:
    """A validated ``(state, substate)`` pair.

    Attributes:
        state: Operating mode.
        substate: Phase within the operating mode.

    Raises:
        StateError: If the substate is not legal for the state.
    """

    state: MachineState
    substate: SubState = SubState.READY

    def __post_init__(self) -> None:
        legal = LEGAL_SUBSTATES.get(self.state, frozenset({SubState.READY}))
        if self.substate not in legal:
            raise StateError(
                f"{self.state.display_name} cannot be in substate {self.substate.display_name}"
            )

    @property
    def is_active(self) -> bool:
        """Return True if an operation is running (not Idle or Sleep)."""
        return self.state not in (MachineState.IDLE, MachineState.SLEEP)

    def to_bytes(self) -> bytes:
        """Serialize to the 2-byte STATE_INFO payload."""
        return bytes((int(self.state), int(self.substate)))

    @classmethod
    def from_bytes(cls, data: bytes) -> MachineStatus:
        """Deserialize a 2-byte STATE_INFO payload.

        Raises:
            StateError: If the payload is not 2 bytes or names an illegal pair.
        """
        if len(data) != 2:
            raise StateError(f"STATE_INFO must be 2 bytes, got {len(data)}")
        try:
            return cls(MachineState(data[0]), SubState(data[1]))
        except ValueError as exc:
            raise StateError(str(exc)) from exc

    def __str__(self) -> str:
        return f"{self.state.display_name}/{self.substate.display_name}"


IDLE_READY = MachineStatus(MachineState.IDLE, SubState.READY)
SLEEP_READY = MachineStatus(MachineState.SLEEP, SubState.READY)
