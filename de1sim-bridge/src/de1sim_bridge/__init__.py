"""de1sim-bridge: link between the simulator and the BLE peripheral daemon.

The daemon owns the Bluetooth radio: it advertises, accepts the client
connection and exposes the GATT characteristics. This package speaks its
newline-delimited JSON protocol:

- Characteristic catalogue and UUIDs
- Payload decoders and encoders for each characteristic
- Command and event message models
- Protocol handler dispatching events to the simulated machine
- TCP channel in connect or listen mode
"""

from de1sim_bridge.channel import BridgeClient, BridgeListener
from de1sim_bridge.characteristics import Characteristic
from de1sim_bridge.handler import BridgeDiagnostics, BridgeHandler
from de1sim_bridge.messages import (
    NotifyCommand,
    StartCommand,
    StopCommand,
    UpdateCommand,
    encode_command,
    parse_event,
)
from de1sim_bridge.payloads import encode_water_level, water_level_mm

__version__ = "0.1.0"

__all__ = [
    # Channel
    "BridgeClient",
    "BridgeListener",
    # Handler
    "BridgeDiagnostics",
    "BridgeHandler",
    # Characteristics
    "Characteristic",
    # Messages
    "NotifyCommand",
    "StartCommand",
    "StopCommand",
    "UpdateCommand",
    "encode_command",
    "parse_event",
    # Payloads
    "encode_water_level",
    "water_level_mm",
]
