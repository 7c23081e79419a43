"""Frame processing for the RAK4630 JSON line protocol."""

from .codec import (
    decode_frame,
    decode_response,
    decode_sensor_record,
    encode_response,
    encode_sensor_record,
)
from .dispatcher import FrameDispatcher
from .processor import CommandProcessor

__all__ = [
    "decode_frame",
    "decode_response",
    "decode_sensor_record",
    "encode_response",
    "encode_sensor_record",
    "FrameDispatcher",
    "CommandProcessor",
]
