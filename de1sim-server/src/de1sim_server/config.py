"""YAML configuration loading for the simulator service.

Example YAML configuration:
    machine:
      sample_interval: 0.2
      water_level: 75
      group_temperature: 93.0

    bridge:
      mode: connect          # or "listen"
      host: "192.168.1.50"   # Raspberry Pi running the BLE daemon
      port: 12345
      reconnect_interval: 5.0

    api:
      host: "0.0.0.0"
      port: 8080

    registers:
      access_level: 3        # controller present and active
      machine_model: 2
      firmware_version: [1, 0, 0, 0]

Every section and key is optional; missing values take their defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from de1sim_core.errors import ConfigError
from de1sim_core.machine import MachineConfig
from de1sim_core.registers import AccessLevel

BRIDGE_MODES = ("connect", "listen")


@dataclass(frozen=True)
class BridgeConfig:
    """Link to the BLE peripheral daemon.

    Attributes:
        enabled: Run the bridge channel at all.
        mode: ``"connect"`` to dial the daemon, ``"listen"`` to accept it.
        host: Daemon address (connect) or bind address (listen).
        port: TCP port.
        reconnect_interval: Seconds between connect attempts.
    """

    enabled: bool = True
    mode: str = "connect"
    host: str = "127.0.0.1"
    port: int = 12345
    reconnect_interval: float = 5.0

    def __post_init__(self) -> None:
        if self.mode not in BRIDGE_MODES:
            raise ValueError(f"bridge mode must be one of {BRIDGE_MODES}, got {self.mode!r}")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"bridge port out of range: {self.port}")
        if self.reconnect_interval <= 0:
            raise ValueError("reconnect_interval must be positive")


@dataclass(frozen=True)
class ApiConfig:
    """Operator REST API bind address."""

    host: str = "0.0.0.0"
    port: int = 8080

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ValueError(f"api port out of range: {self.port}")


@dataclass(frozen=True)
class RegisterConfig:
    """Initial register bank values.

    Attributes:
        access_level: Group-head controller level (0-4); 3 blocks remote starts.
        machine_model: Reported machine model (2 = DE1Plus).
        firmware_version: Reported firmware version bytes.
        usb_charger_on: Reported USB charger state.
    """

    access_level: int = int(AccessLevel.PRESENT_ACTIVE)
    machine_model: int = 2
    firmware_version: tuple[int, int, int, int] = (1, 0, 0, 0)
    usb_charger_on: bool = True

    def __post_init__(self) -> None:
        AccessLevel(self.access_level)
        if len(self.firmware_version) != 4 or not all(
            0 <= part <= 0xFF for part in self.firmware_version
        ):
            raise ValueError(f"firmware_version must be 4 bytes, got {self.firmware_version}")


@dataclass(frozen=True)
class SimulatorConfig:
    """Complete service configuration."""

    machine: MachineConfig = field(default_factory=MachineConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    registers: RegisterConfig = field(default_factory=RegisterConfig)


def _build_section(data: dict[str, Any], name: str, cls: type[Any]) -> Any:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{name} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigError(f"Unknown key(s) in {name}: {', '.join(unknown)}")
    values = dict(section)
    if "firmware_version" in values and isinstance(values["firmware_version"], list):
        values["firmware_version"] = tuple(values["firmware_version"])
    try:
        return cls(**values)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name} configuration: {exc}") from exc


def parse_config(data: dict[str, Any] | None) -> SimulatorConfig:
    """Build a configuration from already-parsed YAML data.

    Raises:
        ConfigError: If a section is malformed or a value is invalid.
    """
    if data is None:
        return SimulatorConfig()
    if not isinstance(data, dict):
        raise ConfigError("Config must be a YAML mapping")
    unknown = sorted(set(data) - {"machine", "bridge", "api", "registers"})
    if unknown:
        raise ConfigError(f"Unknown section(s): {', '.join(unknown)}")
    return SimulatorConfig(
        machine=_build_section(data, "machine", MachineConfig),
        bridge=_build_section(data, "bridge", BridgeConfig),
        api=_build_section(data, "api", ApiConfig),
        registers=_build_section(data, "registers", RegisterConfig),
    )


def load_config(path: str | Path) -> SimulatorConfig:
    """Load service configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Parsed configuration.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigError: If the config is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    return parse_config(data)
