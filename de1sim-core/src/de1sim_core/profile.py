"""Profile store for uploaded brew profiles.

A profile arrives as one header write followed by a series of frame writes.
Frame writes are addressed by index:

* ``index < frame_count`` writes the primary fields of that frame,
* ``32 <= index < 32 + frame_count`` writes the limiter extension of frame
  ``index - 32`` (the primary fields are left untouched),
* ``index == frame_count`` is the terminator and marks the upload complete,
* anything else is out of range and ignored.

The store does not check physical plausibility of the uploaded setpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

EXTENSION_OFFSET = 32

# Frame flag bits
FLAG_CTRL_FLOW = 0x01
FLAG_DO_COMPARE = 0x02
FLAG_COMPARE_GREATER = 0x04
FLAG_COMPARE_FLOW = 0x08
FLAG_TEMP_WATER = 0x10
FLAG_INTERPOLATE = 0x20
FLAG_IGNORE_LIMIT = 0x40


@dataclass(frozen=True)
class ProfileHeader:
    """Profile header.

    Attributes:
        version: Header format version.
        frame_count: Number of frames in the profile.
        preinfuse_frame_count: Number of leading preinfusion frames.
        min_pressure: Minimum pressure in flow-controlled frames (bar).
        max_flow: Maximum flow in pressure-controlled frames (mL/s).
    """

    version: int
    frame_count: int
    preinfuse_frame_count: int
    min_pressure: float
    max_flow: float

    def __post_init__(self) -> None:
        if not 0 <= self.frame_count <= 0xFF:
            raise ValueError(f"frame_count must be a byte, got {self.frame_count}")
        if not 0 <= self.preinfuse_frame_count <= 0xFF:
            raise ValueError(
                f"preinfuse_frame_count must be a byte, got {self.preinfuse_frame_count}"
            )


@dataclass(frozen=True)
class FrameExtension:
    """Limiter settings attached to a frame.

    Attributes:
        limiter_value: Limit applied to the uncontrolled quantity.
        limiter_range: Range over which the limiter acts.
    """

    limiter_value: float
    limiter_range: float


@dataclass(frozen=True)
class ProfileFrame:
    """One profile frame.

    Attributes:
        index: Position within the profile.
        flags: Control flag bits (see the ``FLAG_*`` constants).
        setpoint: Pressure (bar) or flow (mL/s) target, depending on flags.
        temperature: Target temperature in degrees Celsius.
        duration: Frame duration in seconds.
        exit_trigger: Exit condition threshold.
        max_volume: Volume limit in mL (0 = none).
        extension: Optional limiter extension.
    """

    index: int
    flags: int
    setpoint: float
    temperature: float
    duration: float
    exit_trigger: float
    max_volume: int
    extension: FrameExtension | None = None

    @property
    def pump_mode(self) -> str:
        return "Flow" if self.flags & FLAG_CTRL_FLOW else "Pressure"

    @property
    def has_exit_condition(self) -> bool:
        return bool(self.flags & FLAG_DO_COMPARE)

    @property
    def exit_type(self) -> str:
        """Return the exit comparison, e.g. ``"Pressure>"`` or ``"Flow<"``."""
        quantity = "Flow" if self.flags & FLAG_COMPARE_FLOW else "Pressure"
        operator = ">" if self.flags & FLAG_COMPARE_GREATER else "<"
        return quantity + operator

    @property
    def sensor(self) -> str:
        return "Water" if self.flags & FLAG_TEMP_WATER else "Coffee"

    @property
    def transition(self) -> str:
        return "Smooth" if self.flags & FLAG_INTERPOLATE else "Fast"

    def describe(self) -> str:
        """Return a one-line human-readable description."""
        unit = "mL/s" if self.flags & FLAG_CTRL_FLOW else "bar"
        text = (
            f"Frame {self.index}: {self.pump_mode} {self.setpoint:.1f}{unit}, "
            f"{self.temperature:.1f}C, {self.duration:.1f}s, max {self.max_volume}mL"
        )
        if self.has_exit_condition:
            text += f", exit: {self.exit_type}{self.exit_trigger:.1f}"
        if self.extension is not None:
            text += (
                f", Limiter: {self.extension.limiter_value:.1f}"
                f"/{self.extension.limiter_range:.1f}"
            )
        return text

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "index": self.index,
            "flags": self.flags,
            "pump_mode": self.pump_mode,
            "sensor": self.sensor,
            "transition": self.transition,
            "exit": self.exit_type if self.has_exit_condition else None,
            "setpoint": self.setpoint,
            "temperature": self.temperature,
            "duration": self.duration,
            "exit_trigger": self.exit_trigger,
            "max_volume": self.max_volume,
            "extension": (
                None
                if self.extension is None
                else {
                    "limiter_value": self.extension.limiter_value,
                    "limiter_range": self.extension.limiter_range,
                }
            ),
        }


class FrameWriteResult(Enum):
    """Outcome of :meth:`ProfileStore.set_frame`."""

    STORED = "stored"
    EXTENDED = "extended"
    COMPLETE = "complete"
    IGNORED = "ignored"
    REJECTED = "rejected"


class ProfileStore:
    """Accumulates an uploaded profile.

    The store owns the header and the frame list. Slots stay empty (``None``)
    until their primary frame is written.
    """

    def __init__(self) -> None:
        self._header: ProfileHeader | None = None
        self._frames: list[ProfileFrame | None] = []
        self._complete = False

    @property
    def header(self) -> ProfileHeader | None:
        """Return the current header, or None if no profile was started."""
        return self._header

    @property
    def frame_count(self) -> int:
        return 0 if self._header is None else self._header.frame_count

    @property
    def preinfuse_frame_count(self) -> int:
        return 0 if self._header is None else self._header.preinfuse_frame_count

    @property
    def is_complete(self) -> bool:
        """Return True once the terminator frame has been received."""
        return self._complete

    @property
    def frames(self) -> tuple[ProfileFrame | None, ...]:
        """Return a read-only snapshot of the frame slots."""
        return tuple(self._frames)

    def frame(self, index: int) -> ProfileFrame | None:
        """Return the frame at *index*, or None if empty or out of range."""
        if 0 <= index < len(self._frames):
            return self._frames[index]
        return None

    def begin_profile(self, header: ProfileHeader) -> None:
        """Start a new profile, discarding any stored frames.

        Args:
            header: The uploaded header.
        """
        self._header = header
        self._frames = [None] * header.frame_count
        self._complete = False
        logger.info(
            "Profile header: v%d, %d frames (%d preinfuse), min %.1f bar, max %.1f mL/s",
            header.version,
            header.frame_count,
            header.preinfuse_frame_count,
            header.min_pressure,
            header.max_flow,
        )

    def set_frame(
        self,
        index: int,
        frame: ProfileFrame | None = None,
        extension: FrameExtension | None = None,
    ) -> FrameWriteResult:
        """Apply one frame write.

        Args:
            index: Raw frame index from the wire.
            frame: Primary frame fields, used when *index* addresses a frame.
            extension: Limiter fields, used when *index* addresses an extension.

        Returns:
            What the write did.
        """
        count = self.frame_count

        if index < count:
            if frame is None:
                logger.warning("Frame %d: no primary fields supplied", index)
                return FrameWriteResult.REJECTED
            existing = self._frames[index]
            kept = existing.extension if existing is not None else None
            self._frames[index] = replace(frame, index=index, extension=kept)
            logger.info("%s", self._frames[index].describe())  # type: ignore[union-attr]
            return FrameWriteResult.STORED

        if EXTENSION_OFFSET <= index < EXTENSION_OFFSET + count:
            slot = index - EXTENSION_OFFSET
            existing = self._frames[slot]
            if existing is None or extension is None:
                logger.warning("Extension for frame %d ignored: no primary frame", slot)
                return FrameWriteResult.IGNORED
            self._frames[slot] = replace(existing, extension=extension)
            logger.info(
                "Frame %d extension: limiter %.1f/%.1f",
                slot,
                extension.limiter_value,
                extension.limiter_range,
            )
            return FrameWriteResult.EXTENDED

        if self._header is not None and index == count:
            self._complete = True
            logger.info("Profile complete: %d frames", count)
            return FrameWriteResult.COMPLETE

        logger.warning("Frame index %d out of range (frame count %d), ignored", index, count)
        return FrameWriteResult.REJECTED

    def describe(self) -> str:
        """Return a multi-line human-readable profile description."""
        if self._header is None:
            return "No profile loaded"
        lines = [
            f"Profile v{self._header.version}: {self._header.frame_count} frames, "
            f"{self._header.preinfuse_frame_count} preinfuse"
        ]
        for slot, frame in enumerate(self._frames):
            prefix = "[Preinfuse]" if slot < self._header.preinfuse_frame_count else "[Pour]"
            if frame is None:
                lines.append(f"  {prefix} Frame {slot}: (empty)")
            else:
                lines.append(f"  {prefix} {frame.describe()}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot."""
        header = self._header
        return {
            "header": (
                None
                if header is None
                else {
                    "version": header.version,
                    "frame_count": header.frame_count,
                    "preinfuse_frame_count": header.preinfuse_frame_count,
                    "min_pressure": header.min_pressure,
                    "max_flow": header.max_flow,
                }
            ),
            "complete": self._complete,
            "frames": [None if f is None else f.to_dict() for f in self._frames],
        }
