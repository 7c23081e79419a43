"""RAK4630 gateway - bridges a USB serial sensor board to an HTTP telemetry endpoint."""

from .models import (
    Command,
    DeviceIdentity,
    Frame,
    RAK4630_IDENTITY,
    ResponseCode,
    ResponseRecord,
    SensorRecord,
    SerialConfig,
    SessionState,
)
from .errors import GatewayError

__version__ = "0.1.0"

__all__ = [
    "Command",
    "DeviceIdentity",
    "Frame",
    "RAK4630_IDENTITY",
    "ResponseCode",
    "ResponseRecord",
    "SensorRecord",
    "SerialConfig",
    "SessionState",
    "GatewayError",
]
