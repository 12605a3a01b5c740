"""GATT characteristic identifiers exposed by the peripheral daemon.

The bridge channel refers to characteristics by their 4-hex-digit short id
(uppercase, e.g. ``"A00E"``). The full 128-bit UUID is the Bluetooth base
UUID with the short id substituted.
"""

from __future__ import annotations

from enum import Enum

BASE_UUID = "0000{short}-0000-1000-8000-00805F9B34FB"

#: Value returned for reads of the VERSION characteristic.
VERSION_VALUE = bytes.fromhex("02010000")


class Characteristic(str, Enum):
    """Characteristics by short id."""

    VERSION = "A001"
    REQUESTED_STATE = "A002"
    READ_FROM_MMR = "A005"
    WRITE_TO_MMR = "A006"
    SHOT_SETTINGS = "A00B"
    SHOT_SAMPLE = "A00D"
    STATE_INFO = "A00E"
    HEADER_WRITE = "A00F"
    FRAME_WRITE = "A010"
    WATER_LEVELS = "A011"

    @property
    def uuid(self) -> str:
        """Return the full 128-bit UUID string."""
        return BASE_UUID.format(short=self.value)

    @classmethod
    def from_id(cls, char_id: str) -> Characteristic:
        """Look up a characteristic by short id or full UUID (case-insensitive).

        Raises:
            ValueError: If the id is not a known characteristic.
        """
        text = char_id.strip().upper()
        if len(text) == 36:
            text = text[4:8]
        return cls(text)
