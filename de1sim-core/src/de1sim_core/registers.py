"""Simulated memory-mapped register bank.

The controller exposes configuration through 24-bit addressed registers
(MMR). The simulator models a handful of them: the group-head controller
access level, the USB charger flag, the machine model and the firmware
version. Unknown addresses read as zero and writes are never refused, since
client tooling probes arbitrary addresses.

Register values are 4 bytes, little-endian, matching the value field of
the ``WRITE_TO_MMR`` and ``READ_FROM_MMR`` payloads.
"""

from __future__ import annotations

import logging
from enum import IntEnum

logger = logging.getLogger(__name__)

VALUE_SIZE = 4
_ZERO = bytes(VALUE_SIZE)


class MmrAddress(IntEnum):
    """Known register addresses."""

    CPU_BOARD_MODEL = 0x800008
    MACHINE_MODEL = 0x80000C
    FIRMWARE_VERSION = 0x800010
    FAN_THRESHOLD = 0x803808
    GHC_INFO = 0x80381C
    GHC_MODE = 0x803820
    STEAM_FLOW = 0x803828
    SERIAL_NUMBER = 0x803830
    HEATER_VOLTAGE = 0x803834
    USB_CHARGER = 0x803854
    REFILL_KIT = 0x80385C


class AccessLevel(IntEnum):
    """Group-head controller (GHC) status, read from ``GHC_INFO``.

    When the controller is present and active, only local controls may start
    operations; remote requests are limited to Sleep and Idle.
    """

    NOT_INSTALLED = 0
    PRESENT_UNUSED = 1
    INSTALLED_INACTIVE = 2
    PRESENT_ACTIVE = 3
    DEBUG = 4

    @property
    def allows_remote_start(self) -> bool:
        """Return True if protocol requests may start any operation."""
        return self is not AccessLevel.PRESENT_ACTIVE


#: Registers whose written value is retained and read back.
WRITABLE_REGISTERS: frozenset[int] = frozenset(
    {
        MmrAddress.FAN_THRESHOLD,
        MmrAddress.GHC_MODE,
        MmrAddress.STEAM_FLOW,
        MmrAddress.HEATER_VOLTAGE,
        MmrAddress.REFILL_KIT,
    }
)


def address_name(address: int) -> str:
    """Return the register name, or a hex string for unknown addresses."""
    try:
        return MmrAddress(address).name
    except ValueError:
        return f"0x{address:06x}"


class RegisterBank:
    """Read-computed register bank.

    Args:
        access_level: Initial access-control level.
        machine_model: Value reported by ``MACHINE_MODEL`` (2 = DE1Plus).
        firmware_version: Four version bytes reported by ``FIRMWARE_VERSION``.
        usb_charger_on: Value reported by ``USB_CHARGER``.
    """

    def __init__(
        self,
        access_level: AccessLevel = AccessLevel.PRESENT_ACTIVE,
        machine_model: int = 2,
        firmware_version: tuple[int, int, int, int] = (1, 0, 0, 0),
        usb_charger_on: bool = True,
    ) -> None:
        self._access_level = AccessLevel(access_level)
        self._machine_model = machine_model
        self._firmware_version = bytes(firmware_version)
        self._usb_charger_on = usb_charger_on
        self._written: dict[int, bytes] = {}

    @property
    def access_level(self) -> AccessLevel:
        """Return the current access-control level."""
        return self._access_level

    @access_level.setter
    def access_level(self, level: int) -> None:
        """Set the access-control level (operator control only).

        Raises:
            ValueError: If *level* is not a known access level.
        """
        self._access_level = AccessLevel(level)
        logger.info("Access level set to %d (%s)", self._access_level, self._access_level.name)

    def read(self, address: int) -> bytes:
        """Read a register value.

        Args:
            address: 24-bit register address.

        Returns:
            4-byte little-endian value; all zero for unknown addresses.
        """
        if address == MmrAddress.GHC_INFO:
            return int(self._access_level).to_bytes(VALUE_SIZE, "little")
        if address == MmrAddress.USB_CHARGER:
            return int(self._usb_charger_on).to_bytes(VALUE_SIZE, "little")
        if address == MmrAddress.MACHINE_MODEL:
            return self._machine_model.to_bytes(VALUE_SIZE, "little")
        if address == MmrAddress.FIRMWARE_VERSION:
            return self._firmware_version
        return self._written.get(address, _ZERO)

    def read_int(self, address: int) -> int:
        """Read a register value as an unsigned integer."""
        return int.from_bytes(self.read(address), "little")

    def write(self, address: int, value: int) -> None:
        """Write a register value.

        Writes always succeed. Only the writable tunables retain their value;
        the access level cannot be changed through the protocol.

        Args:
            address: 24-bit register address.
            value: 32-bit unsigned value.
        """
        name = address_name(address)
        if address in WRITABLE_REGISTERS:
            self._written[address] = (value & 0xFFFFFFFF).to_bytes(VALUE_SIZE, "little")
            logger.info("MMR_WRITE: %s = %d (0x%08x)", name, value, value)
        elif address == MmrAddress.GHC_INFO:
            logger.warning("MMR_WRITE: %s is not writable remotely, ignored", name)
        else:
            logger.info("MMR_WRITE: %s = %d (0x%08x) not retained", name, value, value)

    def snapshot(self) -> dict[str, int]:
        """Return the modeled and retained register values by name."""
        values = {
            address_name(address): self.read_int(address)
            for address in (
                MmrAddress.GHC_INFO,
                MmrAddress.USB_CHARGER,
                MmrAddress.MACHINE_MODEL,
                MmrAddress.FIRMWARE_VERSION,
            )
        }
        for address, raw in sorted(self._written.items()):
            values[address_name(address)] = int.from_bytes(raw, "little")
        return values
