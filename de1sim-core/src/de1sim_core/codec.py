"""Fixed-point codec for the DE1 wire formats.

Pure conversions between engineering units (bar, degrees Celsius, mL/s,
seconds, millilitres) and the machine's compact binary representations.
All multi-byte values are big-endian unless noted otherwise.

Encoding saturates: a value outside the representable range is clamped to
the nearest bound, and NaN encodes as zero. Scaled values are truncated
toward zero, matching the controller firmware. Decoding raises
:class:`~de1sim_core.errors.CodecError` only when the raw input has the
wrong size.

Formats:
    ======== ========= ==========================================
    Name     Scale     Encoded form
    ======== ========= ==========================================
    U8P4     x16       1 byte, pressure/flow
    U8P1     x2        1 byte, 0.5 degree steps
    U16P8    x256      2 bytes, temperature
    U16P12   x4096     2 bytes, high-precision pressure/flow
    U24P16   x65536    3 bytes, head temperature
    F8_1_7   variable  1 byte, bit 7 set = whole seconds
    U10P0    x1        10 bits in 2 bytes, volume in mL
    ======== ========= ==========================================
"""

from __future__ import annotations

import math

from de1sim_core.errors import CodecError

U8_MAX = 0xFF
U16_MAX = 0xFFFF
U24_MAX = 0xFFFFFF
U10_MAX = 0x3FF

_F8_WHOLE_SECONDS = 0x80
_F8_VALUE_MASK = 0x7F


def _saturate(value: float, scale: float, maximum: int) -> int:
    """Scale *value* and clamp the truncated result to ``[0, maximum]``."""
    scaled = value * scale
    if math.isnan(scaled):
        return 0
    return int(min(max(scaled, 0.0), float(maximum)))


def _check_byte(raw: int, name: str) -> int:
    if not 0 <= raw <= U8_MAX:
        raise CodecError(f"{name}: raw value {raw} is not a byte")
    return raw


def _check_length(data: bytes, length: int, name: str) -> bytes:
    if len(data) != length:
        raise CodecError(f"{name}: expected {length} bytes, got {len(data)}")
    return bytes(data)


# ---------------------------------------------------------------------------
# Plain integers
# ---------------------------------------------------------------------------


def encode_u16(value: int) -> bytes:
    """Encode an unsigned integer as 2 big-endian bytes, saturating at 65535."""
    return min(max(int(value), 0), U16_MAX).to_bytes(2, "big")


def decode_u16(data: bytes) -> int:
    """Decode 2 big-endian bytes to an unsigned integer."""
    return int.from_bytes(_check_length(data, 2, "u16"), "big")


def decode_u24(data: bytes) -> int:
    """Decode 3 big-endian bytes (e.g. a register address) to an integer."""
    return int.from_bytes(_check_length(data, 3, "u24"), "big")


def encode_u32(value: int) -> bytes:
    """Encode an unsigned integer as 4 big-endian bytes."""
    return (int(value) & 0xFFFFFFFF).to_bytes(4, "big")


def decode_u32_le(data: bytes) -> int:
    """Decode 4 little-endian bytes, as used by register write values."""
    return int.from_bytes(_check_length(data, 4, "u32le"), "little")


def encode_centiseconds(seconds: float) -> bytes:
    """Encode an elapsed time as hundredths of a second in 2 bytes."""
    return _saturate(seconds, 100.0, U16_MAX).to_bytes(2, "big")


def decode_centiseconds(data: bytes) -> float:
    """Decode a 2-byte hundredths-of-a-second value to seconds."""
    return decode_u16(data) / 100.0


# ---------------------------------------------------------------------------
# Fixed-point formats
# ---------------------------------------------------------------------------


def encode_u8p4(value: float) -> int:
    """Encode a pressure or flow as U8P4 (1/16 units in one byte).

    Args:
        value: Value in bar or mL/s.

    Returns:
        Encoded byte value in ``[0, 255]``.
    """
    return _saturate(value, 16.0, U8_MAX)


def decode_u8p4(raw: int) -> float:
    """Decode a U8P4 byte to bar or mL/s."""
    return _check_byte(raw, "U8P4") / 16.0


def encode_u8p1(value: float) -> int:
    """Encode a temperature as U8P1 (half-degree steps in one byte)."""
    return _saturate(value, 2.0, U8_MAX)


def decode_u8p1(raw: int) -> float:
    """Decode a U8P1 byte to degrees Celsius."""
    return _check_byte(raw, "U8P1") / 2.0


def encode_u16p8(value: float) -> bytes:
    """Encode a temperature (or millimetre level) as U16P8."""
    return _saturate(value, 256.0, U16_MAX).to_bytes(2, "big")


def decode_u16p8(data: bytes) -> float:
    """Decode 2 U16P8 bytes."""
    return decode_u16(data) / 256.0


def encode_u16p12(value: float) -> bytes:
    """Encode a high-precision pressure or flow as U16P12."""
    return _saturate(value, 4096.0, U16_MAX).to_bytes(2, "big")


def decode_u16p12(data: bytes) -> float:
    """Decode 2 U16P12 bytes."""
    return decode_u16(data) / 4096.0


def encode_u24p16(value: float) -> bytes:
    """Encode a head temperature as U24P16 (3 bytes)."""
    return _saturate(value, 65536.0, U24_MAX).to_bytes(3, "big")


def decode_u24p16(data: bytes) -> float:
    """Decode 3 U24P16 bytes."""
    return decode_u24(data) / 65536.0


def encode_f8_1_7(seconds: float) -> int:
    """Encode a duration as F8_1_7.

    Durations below 12.75 s are stored as deciseconds with bit 7 clear;
    longer durations are stored as whole seconds with bit 7 set, saturating
    at 127 s.

    Args:
        seconds: Duration in seconds.

    Returns:
        Encoded byte value.
    """
    if math.isnan(seconds) or seconds <= 0:
        return 0
    if seconds < 12.75:
        return min(int(round(seconds * 10.0)), _F8_VALUE_MASK)
    return _F8_WHOLE_SECONDS | min(int(round(seconds)), _F8_VALUE_MASK)


def decode_f8_1_7(raw: int) -> float:
    """Decode an F8_1_7 byte to seconds."""
    _check_byte(raw, "F8_1_7")
    if raw & _F8_WHOLE_SECONDS:
        return float(raw & _F8_VALUE_MASK)
    return raw / 10.0


def encode_u10p0(volume: int) -> bytes:
    """Encode a volume in mL into the low 10 bits of 2 bytes."""
    return min(max(int(volume), 0), U10_MAX).to_bytes(2, "big")


def decode_u10p0(data: bytes) -> int:
    """Decode a U10P0 volume; the top 6 bits are flags and are masked off."""
    return decode_u16(data) & U10_MAX
