"""Wire codec for RAK4630 frames.

Frames are UTF-8 JSON objects. Pure functions with no side effects.
"""
from __future__ import annotations

import json
from typing import Any, Dict

from ..errors import MalformedPayload
from ..models import Frame, ResponseRecord, SensorRecord


def decode_frame(frame: Frame) -> Dict[str, Any]:
    """Decode a frame into a JSON object.

    Args:
        frame: Raw frame bytes (terminator already stripped)

    Returns:
        The decoded JSON object

    Raises:
        MalformedPayload: if the frame is not UTF-8 or not a JSON object
    """
    try:
        text = frame.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise MalformedPayload(f"Frame is not valid UTF-8: {e}") from e

    if not text:
        raise MalformedPayload("Frame is empty")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload(f"Expected JSON object, got {type(data).__name__}")

    return data


def decode_sensor_record(frame: Frame) -> SensorRecord:
    """Decode a frame into a SensorRecord.

    Raises:
        MalformedPayload: if the frame is not a JSON object
        SchemaMismatch: if the object is not a valid sensor record
    """
    return SensorRecord.from_json(decode_frame(frame))


def decode_response(frame: Frame) -> ResponseRecord:
    """Decode a frame into a ResponseRecord (used by device simulators and tests)."""
    return ResponseRecord.from_json(decode_frame(frame))


def encode_response(response: ResponseRecord) -> bytes:
    """Encode a response as compact JSON bytes, without terminator.

    Examples:
        >>> encode_response(ResponseRecord(code=201))
        b'{"code":201}'
    """
    return json.dumps(response.to_json(), separators=(",", ":")).encode("utf-8")


def encode_sensor_record(record: SensorRecord) -> bytes:
    """Encode a sensor record as the device would send it, without terminator."""
    return json.dumps(record.to_json(), separators=(",", ":")).encode("utf-8")


