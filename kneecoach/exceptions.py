"""Exception hierarchy for kneecoach.

Transport errors reach the caller (and connection-state subscribers).
Protocol errors are always recovered locally: the offending packet is
dropped and a warning is logged.
"""


class KneeCoachError(Exception):
    """Base class for all kneecoach errors."""


class TransportError(KneeCoachError):
    """Device selection, connection or link failure."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class DeviceNotSelectedError(TransportError):
    """No sensor device was chosen (none found, or selection cancelled)."""


class PermissionDeniedError(TransportError):
    """The Bluetooth adapter refused access."""


class SensorConnectionError(TransportError):
    """Connecting or subscribing to the sensor failed."""


class ProtocolError(KneeCoachError, ValueError):
    """A notification payload could not be decoded into a packet."""


class CalibrationError(KneeCoachError, ValueError):
    """The calibration pose could not be captured."""
