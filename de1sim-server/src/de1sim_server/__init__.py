"""Simulator service and operator REST API for de1sim.

Runs the simulated machine, connects it to the BLE peripheral daemon and
exposes the physical controls of the machine over HTTP.

Example:
    from de1sim_server import SimulatorRuntime, load_config

    runtime = SimulatorRuntime(load_config("de1sim.yaml"))
    await runtime.start()

Command line:
    de1sim config/de1sim.yaml --listen --access-level 0
"""

__version__ = "0.1.0"

from de1sim_server.config import (  # noqa: E402
    ApiConfig,
    BridgeConfig,
    RegisterConfig,
    SimulatorConfig,
    load_config,
    parse_config,
)
from de1sim_server.runtime import SimulatorRuntime  # noqa: E402

__all__ = [
    "__version__",
    # Config
    "ApiConfig",
    "BridgeConfig",
    "RegisterConfig",
    "SimulatorConfig",
    "load_config",
    "parse_config",
    # Runtime
    "SimulatorRuntime",
]
