"""de1sim-core: protocol simulation engine for a DE1 espresso machine.

This package models the wire-level behavior of the machine's controller so
client applications can be developed without hardware:

- Fixed-point codec for the compact binary wire formats
- Machine state and substate types
- Simulated memory-mapped register bank with access-control policy
- Profile store for uploaded brew profiles
- Timer-driven simulation state machine producing shot samples

It depends only on the standard library.
"""

from de1sim_core.errors import (
    CodecError,
    ConfigError,
    De1SimError,
    MessageError,
    PayloadError,
    StateError,
)
from de1sim_core.machine import (
    PHASE_TABLE,
    MachineConfig,
    MachineSimulator,
    RequestOutcome,
    Scheduler,
    ShotSettings,
    SimulationSample,
    TimerHandle,
)
from de1sim_core.profile import (
    FrameExtension,
    FrameWriteResult,
    ProfileFrame,
    ProfileHeader,
    ProfileStore,
)
from de1sim_core.registers import AccessLevel, MmrAddress, RegisterBank, address_name
from de1sim_core.states import (
    IDLE_READY,
    SLEEP_READY,
    MachineState,
    MachineStatus,
    SubState,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "CodecError",
    "ConfigError",
    "De1SimError",
    "MessageError",
    "PayloadError",
    "StateError",
    # States
    "IDLE_READY",
    "SLEEP_READY",
    "MachineState",
    "MachineStatus",
    "SubState",
    # Registers
    "AccessLevel",
    "MmrAddress",
    "RegisterBank",
    "address_name",
    # Profile
    "FrameExtension",
    "FrameWriteResult",
    "ProfileFrame",
    "ProfileHeader",
    "ProfileStore",
    # Machine
    "PHASE_TABLE",
    "MachineConfig",
    "MachineSimulator",
    "RequestOutcome",
    "Scheduler",
    "ShotSettings",
    "SimulationSample",
    "TimerHandle",
]
