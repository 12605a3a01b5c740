"""Pydantic models for the simulator operator REST API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "degraded"]
    version: str
    uptime_seconds: float


class MachineStatusModel(BaseModel):
    """Machine state and substate."""

    state: str
    substate: str
    state_code: int
    substate_code: int
    active: bool


class SampleModel(BaseModel):
    """Most recent SHOT_SAMPLE values."""

    elapsed: float
    pressure: float
    flow: float
    mix_temp: float
    head_temp: float
    set_mix_temp: float
    set_head_temp: float
    set_pressure: float
    set_flow: float
    frame_number: int
    steam_temp: int


class BridgeStatusModel(BaseModel):
    """Bridge link state and counters."""

    enabled: bool
    mode: str
    attached: bool
    daemon_version: str | None = None
    client: str | None = None
    diagnostics: dict[str, int] = Field(default_factory=dict)


class StatusResponse(BaseModel):
    """Full simulator status."""

    machine: MachineStatusModel
    sample: SampleModel
    water_level: float
    access_level: int
    access_level_name: str
    shot_settings: dict[str, Any]
    registers: dict[str, int]
    bridge: BridgeStatusModel


class ProfileResponse(BaseModel):
    """Uploaded profile snapshot."""

    header: dict[str, Any] | None
    complete: bool
    frames: list[dict[str, Any] | None]
    description: str


class RegisterResponse(BaseModel):
    """Value of one memory-mapped register."""

    address: int
    name: str
    value: int
    raw: str


class OperationResponse(BaseModel):
    """Result of an operator command."""

    accepted: bool
    machine: MachineStatusModel


class AccessLevelRequest(BaseModel):
    """Request to change the group-head controller access level."""

    level: int = Field(..., ge=0, le=4)


class WaterLevelRequest(BaseModel):
    """Request to set the tank water level."""

    percent: float = Field(..., ge=0.0, le=100.0)


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str
