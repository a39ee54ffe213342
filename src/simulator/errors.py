"""
Simulator Errors

Exception hierarchy raised by the simulation engine.
"""

from typing import Optional


class SimulationError(Exception):
    """Base class for all simulator errors."""


class InvalidConfiguration(SimulationError, ValueError):
    """Generator parameters are invalid (e.g. zero nodes requested)."""


class InvalidTransition(SimulationError):
    """An alarm was asked to make a lifecycle change it does not allow."""

    def __init__(self, alarm_id: str, status: str, action: str, reason: Optional[str] = None):
        self.alarm_id = alarm_id
        self.status = status
        self.action = action
        message = f"Cannot {action} alarm {alarm_id} in status '{status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class OutOfRange(SimulationError):
    """A generated value fell outside its declared envelope."""

    def __init__(self, field: str, value, envelope: Optional[tuple] = None):
        self.field = field
        self.value = value
        self.envelope = envelope
        message = f"Generated {field}={value!r} is out of range"
        if envelope is not None:
            message = f"{message} (expected {envelope[0]}..{envelope[1]})"
        super().__init__(message)
