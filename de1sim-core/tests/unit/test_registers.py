"""Tests for the simulated register bank."""

from __future__ import annotations

import pytest

from de1sim_core.registers import AccessLevel, MmrAddress, RegisterBank, address_name


class TestAddressName:
    """Tests for address_name."""

    def test_known(self) -> None:
        assert address_name(0x80381C) == "GHC_INFO"

    def test_unknown(self) -> None:
        assert address_name(0x123456) == "0x123456"


class TestAccessLevel:
    """Tests for AccessLevel."""

    def test_controller_active_blocks_remote_start(self) -> None:
        assert not AccessLevel.PRESENT_ACTIVE.allows_remote_start

    @pytest.mark.parametrize(
        "level",
        [
            AccessLevel.NOT_INSTALLED,
            AccessLevel.PRESENT_UNUSED,
            AccessLevel.INSTALLED_INACTIVE,
            AccessLevel.DEBUG,
        ],
    )
    def test_other_levels_allow_remote_start(self, level: AccessLevel) -> None:
        assert level.allows_remote_start


class TestRegisterBank:
    """Tests for RegisterBank reads and writes."""

    def test_default_access_level(self) -> None:
        bank = RegisterBank()
        assert bank.access_level is AccessLevel.PRESENT_ACTIVE
        assert bank.read(MmrAddress.GHC_INFO) == b"\x03\x00\x00\x00"

    def test_access_level_reflects_live_value(self) -> None:
        bank = RegisterBank()
        bank.access_level = AccessLevel.NOT_INSTALLED
        assert bank.read_int(MmrAddress.GHC_INFO) == 0

    def test_invalid_access_level(self) -> None:
        bank = RegisterBank()
        with pytest.raises(ValueError):
            bank.access_level = 9

    def test_modeled_values(self) -> None:
        bank = RegisterBank()
        assert bank.read_int(MmrAddress.USB_CHARGER) == 1
        assert bank.read_int(MmrAddress.MACHINE_MODEL) == 2
        assert bank.read(MmrAddress.FIRMWARE_VERSION) == b"\x01\x00\x00\x00"

    def test_usb_charger_off(self) -> None:
        bank = RegisterBank(usb_charger_on=False)
        assert bank.read_int(MmrAddress.USB_CHARGER) == 0

    def test_unknown_address_reads_zero(self) -> None:
        assert RegisterBank().read(0x123456) == b"\x00\x00\x00\x00"

    def test_write_never_fails(self) -> None:
        bank = RegisterBank()
        bank.write(0x123456, 0xDEADBEEF)
        assert bank.read(0x123456) == b"\x00\x00\x00\x00"

    def test_protocol_cannot_change_access_level(self) -> None:
        bank = RegisterBank()
        bank.write(MmrAddress.GHC_INFO, 0)
        assert bank.access_level is AccessLevel.PRESENT_ACTIVE

    def test_tunable_is_retained(self) -> None:
        bank = RegisterBank()
        bank.write(MmrAddress.FAN_THRESHOLD, 45)
        assert bank.read_int(MmrAddress.FAN_THRESHOLD) == 45

    def test_snapshot(self) -> None:
        bank = RegisterBank(access_level=AccessLevel.DEBUG)
        bank.write(MmrAddress.STEAM_FLOW, 90)
        snapshot = bank.snapshot()
        assert snapshot["GHC_INFO"] == 4
        assert snapshot["MACHINE_MODEL"] == 2
        assert snapshot["STEAM_FLOW"] == 90
