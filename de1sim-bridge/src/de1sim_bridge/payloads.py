"""Characteristic payload decoders and encoders.

One decode function per writable characteristic. Each validates the payload
length in one place and returns a typed result, raising
:class:`~de1sim_core.errors.PayloadError` otherwise. Multi-byte integers are
big-endian except the register write value, which is little-endian.
"""

from __future__ import annotations

from dataclasses import dataclass

from de1sim_core.codec import (
    decode_f8_1_7,
    decode_u8p1,
    decode_u8p4,
    decode_u10p0,
    decode_u16p8,
    decode_u24,
    decode_u32_le,
    encode_f8_1_7,
    encode_u8p1,
    encode_u8p4,
    encode_u10p0,
    encode_u16p8,
    encode_u32,
)
from de1sim_core.errors import PayloadError
from de1sim_core.machine import ShotSettings
from de1sim_core.profile import EXTENSION_OFFSET, FrameExtension, ProfileFrame, ProfileHeader
from de1sim_core.registers import VALUE_SIZE
from de1sim_core.states import MachineState

HEADER_SIZE = 5
FRAME_SIZE = 8
MMR_READ_MIN_SIZE = 4
MMR_WRITE_MIN_SIZE = 8
SHOT_SETTINGS_MIN_SIZE = 9

# Water tank geometry: mm above the refill sensor for a 0-100 % level.
_WATER_TANK_MM = 40.0
_WATER_SENSOR_OFFSET_MM = 5.0


@dataclass(frozen=True)
class RegisterWrite:
    """A decoded WRITE_TO_MMR payload."""

    address: int
    value: int


@dataclass(frozen=True)
class FrameWrite:
    """A decoded FRAME_WRITE payload.

    ``frame`` holds the bytes interpreted as primary fields. ``extension`` is
    set when the index is in the extension range, where bytes 1 and 2 carry
    the limiter value and range.
    """

    index: int
    frame: ProfileFrame
    extension: FrameExtension | None = None


def decode_requested_state(data: bytes) -> MachineState:
    """Decode a REQUESTED_STATE write (exactly one state code byte)."""
    if len(data) != 1:
        raise PayloadError.wrong_size("REQUESTED_STATE", "1", len(data))
    try:
        return MachineState(data[0])
    except ValueError as exc:
        raise PayloadError("REQUESTED_STATE", f"unknown state code 0x{data[0]:02x}") from exc


def decode_mmr_read(data: bytes) -> int:
    """Decode a READ_FROM_MMR request and return the 24-bit address."""
    if len(data) < MMR_READ_MIN_SIZE:
        raise PayloadError.wrong_size("READ_FROM_MMR", f">={MMR_READ_MIN_SIZE}", len(data))
    return decode_u24(data[1:4])


def encode_mmr_response(address: int, value: bytes) -> bytes:
    """Build the 8-byte READ_FROM_MMR response.

    Args:
        address: Register address, echoed as a big-endian u32.
        value: Register value (little-endian, padded or cut to 4 bytes).
    """
    return encode_u32(address) + bytes(value[:VALUE_SIZE]).ljust(VALUE_SIZE, b"\x00")


def decode_mmr_write(data: bytes) -> RegisterWrite:
    """Decode a WRITE_TO_MMR payload."""
    if len(data) < MMR_WRITE_MIN_SIZE:
        raise PayloadError.wrong_size("WRITE_TO_MMR", f">={MMR_WRITE_MIN_SIZE}", len(data))
    return RegisterWrite(address=decode_u24(data[1:4]), value=decode_u32_le(data[4:8]))


def decode_header(data: bytes) -> ProfileHeader:
    """Decode a HEADER_WRITE payload."""
    if len(data) != HEADER_SIZE:
        raise PayloadError.wrong_size("HEADER_WRITE", str(HEADER_SIZE), len(data))
    return ProfileHeader(
        version=data[0],
        frame_count=data[1],
        preinfuse_frame_count=data[2],
        min_pressure=decode_u8p4(data[3]),
        max_flow=decode_u8p4(data[4]),
    )


def encode_header(header: ProfileHeader) -> bytes:
    return bytes(
        (
            header.version,
            header.frame_count,
            header.preinfuse_frame_count,
            encode_u8p4(header.min_pressure),
            encode_u8p4(header.max_flow),
        )
    )


def decode_frame(data: bytes) -> FrameWrite:
    """Decode a FRAME_WRITE payload."""
    if len(data) != FRAME_SIZE:
        raise PayloadError.wrong_size("FRAME_WRITE", str(FRAME_SIZE), len(data))
    index = data[0]
    frame = ProfileFrame(
        index=index,
        flags=data[1],
        setpoint=decode_u8p4(data[2]),
        temperature=decode_u8p1(data[3]),
        duration=decode_f8_1_7(data[4]),
        exit_trigger=decode_u8p4(data[5]),
        max_volume=decode_u10p0(data[6:8]),
    )
    extension = None
    if index >= EXTENSION_OFFSET:
        extension = FrameExtension(
            limiter_value=decode_u8p4(data[1]),
            limiter_range=decode_u8p4(data[2]),
        )
    return FrameWrite(index=index, frame=frame, extension=extension)


def encode_frame(frame: ProfileFrame) -> bytes:
    return (
        bytes(
            (
                frame.index,
                frame.flags,
                encode_u8p4(frame.setpoint),
                encode_u8p1(frame.temperature),
                encode_f8_1_7(frame.duration),
                encode_u8p4(frame.exit_trigger),
            )
        )
        + encode_u10p0(frame.max_volume)
    )


def encode_extension(index: int, extension: FrameExtension) -> bytes:
    """Build the FRAME_WRITE payload carrying the extension of frame *index*."""
    return bytes(
        (
            index + EXTENSION_OFFSET,
            encode_u8p4(extension.limiter_value),
            encode_u8p4(extension.limiter_range),
            0,
            0,
            0,
            0,
            0,
        )
    )


def decode_shot_settings(data: bytes) -> ShotSettings:
    """Decode a SHOT_SETTINGS write."""
    if len(data) < SHOT_SETTINGS_MIN_SIZE:
        raise PayloadError.wrong_size(
            "SHOT_SETTINGS", f">={SHOT_SETTINGS_MIN_SIZE}", len(data)
        )
    return ShotSettings(
        steam_flags=data[0],
        steam_temperature=data[1],
        steam_duration=data[2],
        hot_water_temperature=data[3],
        hot_water_volume=data[4],
        hot_water_duration=data[5],
        espresso_volume=data[6],
        group_temperature=decode_u16p8(data[7:9]),
    )


def encode_shot_settings(settings: ShotSettings) -> bytes:
    return (
        bytes(
            min(max(value, 0), 0xFF)
            for value in (
                settings.steam_flags,
                settings.steam_temperature,
                settings.steam_duration,
                settings.hot_water_temperature,
                settings.hot_water_volume,
                settings.hot_water_duration,
                settings.espresso_volume,
            )
        )
        + encode_u16p8(settings.group_temperature)
    )


def water_level_mm(percent: float) -> float:
    """Convert a 0-100 % tank level to millimetres above the refill sensor."""
    return percent / 100.0 * _WATER_TANK_MM - _WATER_SENSOR_OFFSET_MM


def encode_water_level(percent: float) -> bytes:
    """Build the 2-byte WATER_LEVELS payload (U16P8 millimetres)."""
    return encode_u16p8(water_level_mm(percent))
