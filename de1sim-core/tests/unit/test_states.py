"""Tests for machine state types."""

from __future__ import annotations

import pytest

from de1sim_core.errors import StateError
from de1sim_core.states import (
    IDLE_READY,
    MachineState,
    MachineStatus,
    SubState,
)


class TestMachineState:
    """Tests for MachineState."""

    def test_wire_codes(self) -> None:
        assert MachineState.SLEEP == 0x00
        assert MachineState.IDLE == 0x02
        assert MachineState.ESPRESSO == 0x04
        assert MachineState.HOT_WATER_RINSE == 0x0F
        assert MachineState.SCHED_IDLE == 0x15

    def test_display_names(self) -> None:
        assert MachineState.HOT_WATER.display_name == "HotWater"
        assert MachineState.GOING_TO_SLEEP.display_name == "GoingToSleep"

    def test_rinse_displays_as_flush(self) -> None:
        assert MachineState.HOT_WATER_RINSE.display_name == "Flush"

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("espresso", MachineState.ESPRESSO),
            ("HotWater", MachineState.HOT_WATER),
            ("hot-water", MachineState.HOT_WATER),
            ("flush", MachineState.HOT_WATER_RINSE),
            ("HOT_WATER_RINSE", MachineState.HOT_WATER_RINSE),
        ],
    )
    def test_from_name(self, name: str, expected: MachineState) -> None:
        assert MachineState.from_name(name) is expected

    def test_from_name_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown machine state"):
            MachineState.from_name("latte")


class TestMachineStatus:
    """Tests for the validated state/substate pair."""

    def test_default_substate_is_ready(self) -> None:
        assert MachineStatus(MachineState.IDLE).substate is SubState.READY

    def test_legal_espresso_phases(self) -> None:
        for sub in (SubState.HEATING, SubState.PREINFUSION, SubState.POURING, SubState.ENDING):
            assert MachineStatus(MachineState.ESPRESSO, sub).state is MachineState.ESPRESSO

    def test_illegal_pair_rejected(self) -> None:
        with pytest.raises(StateError, match="Steam cannot be in substate Preinfusion"):
            MachineStatus(MachineState.STEAM, SubState.PREINFUSION)

    def test_idle_cannot_pour(self) -> None:
        with pytest.raises(StateError):
            MachineStatus(MachineState.IDLE, SubState.POURING)

    def test_unlisted_state_allows_ready_only(self) -> None:
        assert MachineStatus(MachineState.DESCALE).substate is SubState.READY
        with pytest.raises(StateError):
            MachineStatus(MachineState.DESCALE, SubState.HEATING)

    def test_is_active(self) -> None:
        assert not IDLE_READY.is_active
        assert not MachineStatus(MachineState.SLEEP).is_active
        assert MachineStatus(MachineState.STEAM, SubState.STEAMING).is_active

    def test_to_bytes(self) -> None:
        status = MachineStatus(MachineState.ESPRESSO, SubState.POURING)
        assert status.to_bytes() == b"\x04\x05"

    def test_from_bytes(self) -> None:
        status = MachineStatus.from_bytes(b"\x05\x07")
        assert status == MachineStatus(MachineState.STEAM, SubState.STEAMING)

    def test_from_bytes_wrong_size(self) -> None:
        with pytest.raises(StateError):
            MachineStatus.from_bytes(b"\x02")

    def test_from_bytes_unknown_code(self) -> None:
        with pytest.raises(StateError):
            MachineStatus.from_bytes(b"\x7f\x00")

    def test_str(self) -> None:
        status = MachineStatus(MachineState.HOT_WATER_RINSE, SubState.POURING)
        assert str(status) == "Flush/Pouring"

    def test_frozen(self) -> None:
        with pytest.raises(AttributeError):
            IDLE_READY.state = MachineState.SLEEP  # type: ignore[misc]
