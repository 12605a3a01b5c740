"""Tests for the profile store."""

from __future__ import annotations

import pytest

from de1sim_core.profile import (
    FLAG_COMPARE_FLOW,
    FLAG_COMPARE_GREATER,
    FLAG_CTRL_FLOW,
    FLAG_DO_COMPARE,
    FLAG_INTERPOLATE,
    FLAG_TEMP_WATER,
    FrameExtension,
    FrameWriteResult,
    ProfileFrame,
    ProfileHeader,
    ProfileStore,
)


def _header(frame_count: int = 8, preinfuse: int = 2) -> ProfileHeader:
    return ProfileHeader(
        version=1,
        frame_count=frame_count,
        preinfuse_frame_count=preinfuse,
        min_pressure=0.0,
        max_flow=6.0,
    )


def _frame(index: int, setpoint: float = 9.0, flags: int = 0) -> ProfileFrame:
    return ProfileFrame(
        index=index,
        flags=flags,
        setpoint=setpoint,
        temperature=92.0,
        duration=25.0,
        exit_trigger=0.0,
        max_volume=0,
    )


class TestProfileHeader:
    """Tests for ProfileHeader validation."""

    def test_frame_count_must_be_byte(self) -> None:
        with pytest.raises(ValueError):
            _header(frame_count=300)


class TestProfileFrame:
    """Tests for frame flag helpers and description."""

    def test_pressure_defaults(self) -> None:
        frame = _frame(0)
        assert frame.pump_mode == "Pressure"
        assert frame.sensor == "Coffee"
        assert frame.transition == "Fast"
        assert not frame.has_exit_condition

    def test_flag_bits(self) -> None:
        flags = (
            FLAG_CTRL_FLOW
            | FLAG_DO_COMPARE
            | FLAG_COMPARE_GREATER
            | FLAG_COMPARE_FLOW
            | FLAG_TEMP_WATER
            | FLAG_INTERPOLATE
        )
        frame = _frame(0, flags=flags)
        assert frame.pump_mode == "Flow"
        assert frame.has_exit_condition
        assert frame.exit_type == "Flow>"
        assert frame.sensor == "Water"
        assert frame.transition == "Smooth"

    def test_exit_type_pressure_less(self) -> None:
        assert _frame(0, flags=FLAG_DO_COMPARE).exit_type == "Pressure<"

    def test_describe(self) -> None:
        text = _frame(3).describe()
        assert text.startswith("Frame 3: Pressure 9.0bar")
        assert "92.0C" in text
        assert "exit" not in text

    def test_describe_with_limiter(self) -> None:
        frame = ProfileFrame(0, 0, 9.0, 92.0, 25.0, 0.0, 0, FrameExtension(6.0, 0.6))
        assert "Limiter: 6.0/0.6" in frame.describe()


class TestProfileStore:
    """Tests for header upload and frame addressing."""

    def test_empty_store(self) -> None:
        store = ProfileStore()
        assert store.header is None
        assert store.frame_count == 0
        assert store.describe() == "No profile loaded"

    def test_begin_profile_creates_empty_slots(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header(frame_count=4))
        assert store.frames == (None, None, None, None)
        assert not store.is_complete

    def test_begin_profile_discards_frames(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header(frame_count=4))
        store.set_frame(0, _frame(0))
        store.begin_profile(_header(frame_count=2, preinfuse=0))
        assert store.frames == (None, None)
        assert store.preinfuse_frame_count == 0

    def test_primary_write(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header())
        assert store.set_frame(5, _frame(5)) is FrameWriteResult.STORED
        assert store.frame(5) == _frame(5)

    def test_extension_keeps_primary_fields(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header())
        store.set_frame(5, _frame(5, setpoint=8.5))
        result = store.set_frame(37, extension=FrameExtension(4.0, 0.5))
        assert result is FrameWriteResult.EXTENDED
        frame = store.frame(5)
        assert frame is not None
        assert frame.setpoint == 8.5
        assert frame.temperature == 92.0
        assert frame.extension == FrameExtension(4.0, 0.5)

    def test_primary_rewrite_keeps_extension(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header())
        store.set_frame(1, _frame(1))
        store.set_frame(33, extension=FrameExtension(4.0, 0.5))
        store.set_frame(1, _frame(1, setpoint=7.0))
        frame = store.frame(1)
        assert frame is not None
        assert frame.setpoint == 7.0
        assert frame.extension == FrameExtension(4.0, 0.5)

    def test_extension_without_primary_ignored(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header())
        result = store.set_frame(34, extension=FrameExtension(4.0, 0.5))
        assert result is FrameWriteResult.IGNORED
        assert store.frame(2) is None

    def test_terminator_signals_complete(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header(frame_count=8))
        store.set_frame(0, _frame(0))
        before = store.frames
        assert store.set_frame(8, _frame(8)) is FrameWriteResult.COMPLETE
        assert store.is_complete
        assert store.frames == before

    def test_out_of_range_rejected(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header(frame_count=4))
        before = store.frames
        assert store.set_frame(10, _frame(10)) is FrameWriteResult.REJECTED
        assert store.set_frame(36, extension=FrameExtension(1.0, 1.0)) is FrameWriteResult.REJECTED
        assert store.frames == before

    def test_frame_without_header_rejected(self) -> None:
        store = ProfileStore()
        assert store.set_frame(0, _frame(0)) is FrameWriteResult.REJECTED

    def test_describe_prefixes(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header(frame_count=3, preinfuse=1))
        store.set_frame(0, _frame(0))
        store.set_frame(1, _frame(1))
        lines = store.describe().splitlines()
        assert lines[0] == "Profile v1: 3 frames, 1 preinfuse"
        assert lines[1].strip().startswith("[Preinfuse] Frame 0")
        assert lines[2].strip().startswith("[Pour] Frame 1")
        assert lines[3].strip() == "[Pour] Frame 2: (empty)"

    def test_to_dict(self) -> None:
        store = ProfileStore()
        store.begin_profile(_header(frame_count=1))
        store.set_frame(0, _frame(0, flags=FLAG_CTRL_FLOW, setpoint=2.0))
        snapshot = store.to_dict()
        assert snapshot["header"]["frame_count"] == 1
        assert snapshot["frames"][0]["pump_mode"] == "Flow"
        assert snapshot["frames"][0]["extension"] is None
