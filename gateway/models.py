"""Immutable data models for the RAK4630 gateway.

All models are frozen dataclasses to ensure immutability and thread-safety.
They are shared between the reader thread, per-frame worker tasks and the
session manager without copying.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict

from .errors import SchemaMismatch

# Frame payload without the line terminator
Frame = bytes

USB_ID_MASK = 0xFFFF


@dataclass(frozen=True)
class DeviceIdentity:
    """USB vendor/product pair identifying the target device class.

    Attributes:
        vendor_id: USB Vendor ID (0..0xFFFF)
        product_id: USB Product ID (0..0xFFFF)
    """
    vendor_id: int
    product_id: int

    def __post_init__(self) -> None:
        for name in ("vendor_id", "product_id"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= USB_ID_MASK:
                raise ValueError(f"{name} must be a 16-bit integer, got {value!r}")

    def matches(self, vendor_id: int, product_id: int) -> bool:
        """Compare against raw ids as reported by the bus or port layer.

        Ids are masked to 16 bits first; some USB stacks report the product
        id as a sign-extended short (0x8029 -> 0xFFFF8029).
        """
        if vendor_id is None or product_id is None:
            return False
        return (
            (vendor_id & USB_ID_MASK) == self.vendor_id
            and (product_id & USB_ID_MASK) == self.product_id
        )

    def __str__(self) -> str:
        return f"{self.vendor_id:04X}:{self.product_id:04X}"


RAK4630_IDENTITY = DeviceIdentity(vendor_id=0x239A, product_id=0x8029)


class SessionState(Enum):
    """Lifecycle state of the single device session."""
    DETACHED = "detached"
    OPENING = "opening"
    ATTACHED = "attached"
    CLOSING = "closing"
    FAULTED = "faulted"


@dataclass(frozen=True)
class SerialConfig:
    """Fixed serial settings for the RAK4630 firmware.

    Attributes:
        baud_rate: Line speed
        data_bits: Bits per character
        stop_bits: Stop bits
        parity: pyserial parity code ('N', 'E', 'O', 'M', 'S')
        read_timeout_ms: Read poll interval; bounds how long close() waits
            for the reader thread
        write_timeout_ms: Write timeout
        warmup_ms: Settling time required after open before the first write
        line_terminator: Frame delimiter
        read_chunk_size: Maximum bytes per read call
        max_buffer_size: Cap on unterminated bytes kept between reads
    """
    baud_rate: int = 9600
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "N"
    read_timeout_ms: int = 100
    write_timeout_ms: int = 100
    warmup_ms: int = 2000
    line_terminator: bytes = b"\r\n"
    read_chunk_size: int = 4096
    max_buffer_size: int = 64 * 1024

    @property
    def read_timeout(self) -> float:
        return self.read_timeout_ms / 1000.0

    @property
    def write_timeout(self) -> float:
        return self.write_timeout_ms / 1000.0

    @property
    def warmup(self) -> float:
        return self.warmup_ms / 1000.0


class Command(IntEnum):
    """Command codes sent by the device firmware."""
    SEND_DATA = 1


class ResponseCode(IntEnum):
    """Status codes written back to the device."""
    CREATED = 201


# Wire name -> (attribute, accepted type)
_SENSOR_FIELDS = (
    ("command", "command", int),
    ("recordId", "record_id", int),
    ("timeRecorded", "time_recorded", int),
    ("temperature", "temperature", float),
    ("pressure", "pressure", float),
    ("humidity", "humidity", float),
    ("gasResistance", "gas_resistance", float),
)


@dataclass(frozen=True)
class SensorRecord:
    """One sensor reading reported by the device.

    Attributes:
        command: Command code (see Command)
        record_id: Device-side record counter
        time_recorded: Device timestamp (int64)
        temperature: Degrees Celsius
        pressure: Barometric pressure
        humidity: Relative humidity in percent
        gas_resistance: Gas sensor resistance
    """
    command: int
    record_id: int
    time_recorded: int
    temperature: float
    pressure: float
    humidity: float
    gas_resistance: float

    @classmethod
    def from_json(cls, json_data: Dict[str, Any]) -> SensorRecord:
        """Build a record from a decoded JSON object.

        All fields are required. Integer fields must be JSON integers,
        measurement fields any JSON number. Unknown keys are rejected.

        Raises:
            SchemaMismatch: if the object does not match the schema
        """
        if not isinstance(json_data, dict):
            raise SchemaMismatch(f"Expected JSON object, got {type(json_data).__name__}")

        known = {wire for wire, _, _ in _SENSOR_FIELDS}
        unknown = sorted(set(json_data) - known)
        if unknown:
            raise SchemaMismatch(f"Unknown fields: {', '.join(unknown)}")

        values = {}
        for wire, attr, kind in _SENSOR_FIELDS:
            if wire not in json_data:
                raise SchemaMismatch(f"Missing field '{wire}'")
            value = json_data[wire]
            # bool is an int subclass but never a valid reading
            if isinstance(value, bool):
                raise SchemaMismatch(f"Field '{wire}' must be a number, got bool")
            if kind is int:
                if not isinstance(value, int):
                    raise SchemaMismatch(f"Field '{wire}' must be an integer, got {value!r}")
            elif isinstance(value, (int, float)):
                value = float(value)
            else:
                raise SchemaMismatch(f"Field '{wire}' must be a number, got {value!r}")
            values[attr] = value

        return cls(**values)

    def to_json(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict using the wire field names."""
        return {wire: getattr(self, attr) for wire, attr, _ in _SENSOR_FIELDS}


@dataclass(frozen=True)
class ResponseRecord:
    """Acknowledgement written back to the device.

    Attributes:
        code: Status code returned by the telemetry sink
    """
    code: int

    @classmethod
    def from_json(cls, json_data: Dict[str, Any]) -> ResponseRecord:
        if not isinstance(json_data, dict) or "code" not in json_data:
            raise SchemaMismatch("Response requires field 'code'")
        code = json_data["code"]
        if isinstance(code, bool) or not isinstance(code, int):
            raise SchemaMismatch(f"Field 'code' must be an integer, got {code!r}")
        return cls(code=code)

    def to_json(self) -> Dict[str, Any]:
        return {"code": self.code}
