"""Newline-delimited JSON messages exchanged with the peripheral daemon.

Commands flow from the simulator to the daemon, events flow back. Each
message is one compact JSON object on its own line. Characteristic ids are
4-hex-digit short ids and payloads are hex strings.

Example:
    >>> encode_command(NotifyCommand.for_payload(Characteristic.STATE_INFO, b"\\x02\\x00"))
    b'{"cmd":"notify","char":"A00E","data":"0200"}\\n'
    >>> parse_event('{"event":"write","char":"a002","data":"04"}').payload
    b'\\x04'
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from de1sim_bridge.characteristics import Characteristic
from de1sim_core.errors import MessageError


def _normalize_char(value: str) -> str:
    text = value.strip().upper()
    if len(text) != 4 or any(c not in "0123456789ABCDEF" for c in text):
        raise ValueError(f"characteristic id must be 4 hex digits, got {value!r}")
    return text


def _normalize_hex(value: str) -> str:
    text = value.strip().lower()
    bytes.fromhex(text)
    return text


# -----------------------------------------------------------------------------
# Commands (simulator -> daemon)
# -----------------------------------------------------------------------------


class StartCommand(BaseModel):
    """Start (or resume) advertising."""

    cmd: Literal["start"] = "start"


class StopCommand(BaseModel):
    """Stop advertising."""

    cmd: Literal["stop"] = "stop"


class _PayloadCommand(BaseModel):
    cmd: str
    char: str
    data: str

    @field_validator("char")
    @classmethod
    def check_char(cls, value: str) -> str:
        return _normalize_char(value)

    @field_validator("data")
    @classmethod
    def check_data(cls, value: str) -> str:
        return _normalize_hex(value)

    @classmethod
    def for_payload(cls, char: Characteristic, payload: bytes) -> _PayloadCommand:
        return cls(char=char.value, data=payload.hex())


class NotifyCommand(_PayloadCommand):
    """Send a notification to the connected client."""

    cmd: Literal["notify"] = "notify"


class UpdateCommand(_PayloadCommand):
    """Update the value the daemon returns for reads of a characteristic."""

    cmd: Literal["update"] = "update"


Command = Union[StartCommand, StopCommand, NotifyCommand, UpdateCommand]


def encode_command(command: Command) -> bytes:
    """Serialize a command to one JSON line."""
    return (command.model_dump_json() + "\n").encode("utf-8")


# -----------------------------------------------------------------------------
# Events (daemon -> simulator)
# -----------------------------------------------------------------------------


class ReadyEvent(BaseModel):
    """The daemon is up and its GATT server is registered."""

    event: Literal["ready"]
    version: str = ""


class AdvertisingEvent(BaseModel):
    event: Literal["advertising"]


class ConnectedEvent(BaseModel):
    """A BLE client connected."""

    event: Literal["connected"]
    client: str = ""


class DisconnectedEvent(BaseModel):
    """A BLE client disconnected; the daemon may name which one."""

    event: Literal["disconnected"]
    client: str = ""


class WriteEvent(BaseModel):
    """A client wrote a characteristic."""

    event: Literal["write"]
    char: str
    data: str

    @field_validator("char")
    @classmethod
    def check_char(cls, value: str) -> str:
        return _normalize_char(value)

    @field_validator("data")
    @classmethod
    def check_data(cls, value: str) -> str:
        return _normalize_hex(value)

    @property
    def payload(self) -> bytes:
        """Return the written bytes."""
        return bytes.fromhex(self.data)


class ReadEvent(BaseModel):
    """A client read a characteristic."""

    event: Literal["read"]
    char: str

    @field_validator("char")
    @classmethod
    def check_char(cls, value: str) -> str:
        return _normalize_char(value)


class ErrorEvent(BaseModel):
    """The daemon reported an error."""

    event: Literal["error"]
    code: int
    message: str = ""


Event = Annotated[
    Union[
        ReadyEvent,
        AdvertisingEvent,
        ConnectedEvent,
        DisconnectedEvent,
        WriteEvent,
        ReadEvent,
        ErrorEvent,
    ],
    Field(discriminator="event"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(line: str | bytes) -> Event:
    """Parse one JSON line into an event.

    Args:
        line: A line read from the channel, with or without the newline.

    Returns:
        The typed event.

    Raises:
        MessageError: If the line is empty, is not JSON, names an unknown
            event or has missing or invalid fields.
    """
    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
    text = text.strip()
    if not text:
        raise MessageError("empty line")
    try:
        return _EVENT_ADAPTER.validate_json(text)
    except ValidationError as exc:
        raise MessageError(f"invalid event {text!r}: {exc.error_count()} error(s)") from exc
