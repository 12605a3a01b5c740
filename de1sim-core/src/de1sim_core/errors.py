"""Exception types for de1sim-core.

This module defines the exception hierarchy used throughout the DE1 simulator.
All simulator exceptions inherit from De1SimError, allowing consumers to catch
all simulator-specific errors with a single except clause.

Exception hierarchy:
    De1SimError (base)
    +-- CodecError: Fixed-point conversion failures
    +-- PayloadError: Wrong-size or malformed characteristic payloads
    +-- MessageError: Unparsable or unknown bridge channel lines
    +-- StateError: Illegal machine state / substate combinations
    +-- ConfigError: Invalid configuration files
"""

from __future__ import annotations


class De1SimError(Exception):
    """Base exception for all DE1 simulator errors.

    This is the root of the de1sim exception hierarchy. Catch this to handle
    any simulator-specific error.
    """


class CodecError(De1SimError):
    """Raised when a raw value cannot be decoded.

    Encoding never raises: out-of-range engineering values saturate at the
    representable bound. Decoding raises when the raw input has the wrong
    number of bytes.
    """


class PayloadError(De1SimError):
    """Raised when a characteristic payload has the wrong size or content.

    Attributes:
        characteristic: Name of the characteristic the payload was written to.
        reason: What is wrong with the payload.
    """

    def __init__(self, characteristic: str, reason: str) -> None:
        self.characteristic = characteristic
        self.reason = reason
        super().__init__(f"{characteristic}: {reason}")

    @classmethod
    def wrong_size(cls, characteristic: str, expected: str, actual: int) -> PayloadError:
        """Create an error for a payload of the wrong length."""
        return cls(characteristic, f"invalid payload size {actual} (expected {expected})")


class MessageError(De1SimError):
    """Raised when a bridge channel line cannot be parsed.

    Common causes are invalid JSON, an unknown event type, or a missing or
    mistyped field.
    """


class StateError(De1SimError):
    """Raised for an illegal machine state / substate pair.

    A substate is only meaningful relative to its owning machine state; pairs
    outside the legal table are rejected at construction time.
    """


class ConfigError(De1SimError):
    """Raised when a configuration file is missing required structure."""
