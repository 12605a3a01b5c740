"""FastAPI operator server for the DE1 simulator.

The REST API stands in for the physical controls of the machine: the power
button, the group-head controller buttons, the access-level switch and the
water tank.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import asdict, replace
from pathlib import Path

from fastapi import FastAPI, HTTPException

from de1sim_core.errors import ConfigError
from de1sim_core.registers import address_name
from de1sim_core.states import OPERATION_STATES, MachineState, MachineStatus
from de1sim_server import __version__
from de1sim_server.config import SimulatorConfig, load_config
from de1sim_server.models import (
    AccessLevelRequest,
    BridgeStatusModel,
    ErrorResponse,
    HealthResponse,
    MachineStatusModel,
    OperationResponse,
    ProfileResponse,
    RegisterResponse,
    SampleModel,
    StatusResponse,
    WaterLevelRequest,
)
from de1sim_server.runtime import SimulatorRuntime

logger = logging.getLogger(__name__)

# Global runtime instance
_runtime: SimulatorRuntime | None = None


def _get_runtime() -> SimulatorRuntime:
    """Get the runtime instance, raising if not initialized."""
    if _runtime is None or not _runtime.is_running:
        raise RuntimeError("Simulator not initialized")
    return _runtime


def create_app(config: SimulatorConfig | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        config: Service configuration. Defaults are used if None.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        global _runtime  # pylint: disable=global-statement

        _runtime = SimulatorRuntime(config)
        await _runtime.start()

        yield

        await _runtime.stop()
        _runtime = None

    app = FastAPI(
        title="DE1 Simulator API",
        description="Operator controls and status for the simulated DE1 espresso machine",
        version=__version__,
        lifespan=lifespan,
    )

    # Register routes
    app.add_api_route("/health", _health, methods=["GET"], response_model=HealthResponse)
    app.add_api_route("/status", _status, methods=["GET"], response_model=StatusResponse)
    app.add_api_route("/profile", _profile, methods=["GET"], response_model=ProfileResponse)
    app.add_api_route(
        "/registers/{address}",
        _read_register,
        methods=["GET"],
        response_model=RegisterResponse,
        responses={400: {"model": ErrorResponse}},
    )
    app.add_api_route("/power", _power, methods=["POST"], response_model=OperationResponse)
    app.add_api_route(
        "/operations/{name}",
        _start_operation,
        methods=["POST"],
        response_model=OperationResponse,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
        },
    )
    app.add_api_route("/stop", _stop, methods=["POST"], response_model=OperationResponse)
    app.add_api_route(
        "/access-level", _set_access_level, methods=["PUT"], response_model=StatusResponse
    )
    app.add_api_route(
        "/water-level", _set_water_level, methods=["PUT"], response_model=StatusResponse
    )

    return app


def _machine_model(status: MachineStatus) -> MachineStatusModel:
    return MachineStatusModel(
        state=status.state.display_name,
        substate=status.substate.display_name,
        state_code=int(status.state),
        substate_code=int(status.substate),
        active=status.is_active,
    )


# -----------------------------------------------------------------------------
# Status
# -----------------------------------------------------------------------------


async def _health() -> HealthResponse:
    """Health check endpoint."""
    runtime = _get_runtime()
    bridge = runtime.config.bridge
    degraded = bridge.enabled and not runtime.handler.is_attached
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        version=__version__,
        uptime_seconds=runtime.uptime,
    )


async def _status() -> StatusResponse:
    """Full simulator status."""
    runtime = _get_runtime()
    machine = runtime.machine
    level = machine.registers.access_level
    return StatusResponse(
        machine=_machine_model(machine.status),
        sample=SampleModel(**asdict(machine.sample)),
        water_level=machine.water_level,
        access_level=int(level),
        access_level_name=level.name,
        shot_settings=asdict(machine.shot_settings),
        registers=machine.registers.snapshot(),
        bridge=BridgeStatusModel(**runtime.bridge_status()),
    )


async def _profile() -> ProfileResponse:
    """Return the uploaded profile."""
    profile = _get_runtime().machine.profile
    return ProfileResponse(**profile.to_dict(), description=profile.describe())


async def _read_register(address: str) -> RegisterResponse:
    """Read a register; the address may be decimal or 0x-prefixed hex."""
    try:
        value = int(address, 0)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid address: {address}") from exc
    if not 0 <= value <= 0xFFFFFF:
        raise HTTPException(status_code=400, detail=f"Address out of range: {address}")
    registers = _get_runtime().machine.registers
    raw = registers.read(value)
    return RegisterResponse(
        address=value,
        name=address_name(value),
        value=int.from_bytes(raw, "little"),
        raw=raw.hex(),
    )


# -----------------------------------------------------------------------------
# Operator controls
# -----------------------------------------------------------------------------


async def _power() -> OperationResponse:
    """Press the power button: toggle between Sleep and Idle."""
    status = _get_runtime().machine.toggle_power()
    return OperationResponse(accepted=True, machine=_machine_model(status))


async def _start_operation(name: str) -> OperationResponse:
    """Press a group-head controller button.

    Local controls are not subject to the access-level policy.
    """
    try:
        state = MachineState.from_name(name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if state not in OPERATION_STATES:
        raise HTTPException(
            status_code=400, detail=f"{state.display_name} is not a timed operation"
        )
    machine = _get_runtime().machine
    if not machine.start_operation(state):
        raise HTTPException(
            status_code=409, detail=f"Operation already running: {machine.status}"
        )
    return OperationResponse(accepted=True, machine=_machine_model(machine.status))


async def _stop() -> OperationResponse:
    """Press the stop button."""
    machine = _get_runtime().machine
    was_active = machine.is_active
    machine.stop_operation()
    return OperationResponse(accepted=was_active, machine=_machine_model(machine.status))


async def _set_access_level(request: AccessLevelRequest) -> StatusResponse:
    """Change the group-head controller access level."""
    _get_runtime().machine.registers.access_level = request.level
    return await _status()


async def _set_water_level(request: WaterLevelRequest) -> StatusResponse:
    """Set the tank water level."""
    _get_runtime().machine.set_water_level(request.percent)
    return await _status()


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------


def _apply_overrides(config: SimulatorConfig, args: argparse.Namespace) -> SimulatorConfig:
    bridge = config.bridge
    if args.bridge_host is not None:
        bridge = replace(bridge, host=args.bridge_host)
    if args.bridge_port is not None:
        bridge = replace(bridge, port=args.bridge_port)
    if args.listen:
        bridge = replace(bridge, mode="listen")
    if args.no_bridge:
        bridge = replace(bridge, enabled=False)

    api = config.api
    if args.host is not None:
        api = replace(api, host=args.host)
    if args.port is not None:
        api = replace(api, port=args.port)

    registers = config.registers
    if args.access_level is not None:
        registers = replace(registers, access_level=args.access_level)

    return replace(config, bridge=bridge, api=api, registers=registers)


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Start the DE1 machine simulator")
    parser.add_argument(
        "config",
        type=Path,
        nargs="?",
        help="Path to simulator configuration YAML file",
    )
    parser.add_argument("--host", help="API host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="API port to listen on (default: 8080)")
    parser.add_argument("--bridge-host", help="BLE daemon host (default: 127.0.0.1)")
    parser.add_argument("--bridge-port", type=int, help="BLE daemon port (default: 12345)")
    parser.add_argument(
        "--listen",
        action="store_true",
        help="Accept the daemon connection instead of dialing it",
    )
    parser.add_argument("--no-bridge", action="store_true", help="Run without the BLE daemon")
    parser.add_argument(
        "--access-level",
        type=int,
        choices=range(5),
        help="Initial group-head controller access level (default: 3)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config) if args.config else SimulatorConfig()
        config = _apply_overrides(config, args)
    except (FileNotFoundError, ConfigError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(1)

    import uvicorn  # pylint: disable=import-outside-toplevel

    app = create_app(config)
    uvicorn.run(app, host=config.api.host, port=config.api.port)


if __name__ == "__main__":
    main()
