"""Exception hierarchy for the gateway.

Each layer raises the narrowest error it can and catches the errors that
belong to it:

- OpenError: raised by SerialChannel.open, handled by DeviceSessionManager
- ChannelIOError: raised by SerialChannel read/write, handled by CommandProcessor
- DecodeError: raised by the codec, handled by CommandProcessor
- SinkError: raised by telemetry sinks, handled by CommandProcessor
"""
from __future__ import annotations

from typing import Optional


class GatewayError(RuntimeError):
    """Base class for all gateway errors."""
    pass


# Channel open

class OpenError(GatewayError):
    """Raised when a serial channel cannot be opened."""
    pass


class NoDeviceFound(OpenError):
    """Raised when no port matching the device identity is present."""
    pass


class AlreadyOpen(OpenError):
    """Raised when open() is called on a channel that is already open."""
    pass


class PortOpenFailed(OpenError):
    """Raised when the platform cannot open or configure the chosen port."""
    def __init__(self, message: str, port: Optional[str] = None):
        super().__init__(message)
        self.port = port


# Channel I/O

class ChannelIOError(GatewayError):
    """Raised on serial channel I/O failures."""
    pass


class ReadFailed(ChannelIOError):
    pass


class WriteFailed(ChannelIOError):
    pass


class ChannelClosed(ChannelIOError):
    """Raised when the channel is (or becomes) closed during an operation."""
    pass


# Payload decoding

class DecodeError(GatewayError, ValueError):
    """Raised when a frame payload cannot be decoded."""
    pass


class MalformedPayload(DecodeError):
    """Payload is not a well-formed JSON object."""
    pass


class SchemaMismatch(DecodeError):
    """Payload is JSON but does not match the expected record schema."""
    pass


# Telemetry sink

class SinkError(GatewayError):
    """Raised when the telemetry sink cannot accept a record."""
    pass


class SinkUnavailable(SinkError):
    """Sink could not be reached (network error, timeout)."""
    pass


class SinkRejected(SinkError):
    """Sink answered but refused the record."""
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
