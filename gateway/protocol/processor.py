"""Command processor for RAK4630 frames.

Decodes one frame, acts on its command code and writes the reply. Runs on a
dispatcher worker thread, one call per frame.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..errors import ChannelIOError, DecodeError, MalformedPayload, SinkError
from ..models import Command, Frame, ResponseRecord, SensorRecord
from .codec import decode_sensor_record, encode_response

if TYPE_CHECKING:
    from ..device.channel import SerialChannel
    from ..sink.base import TelemetrySink

logger = logging.getLogger(__name__)


class CommandProcessor:
    """Request/response handling for decoded sensor frames.

    For each frame:
    1. Decode JSON into a SensorRecord (invalid frames are dropped, no reply)
    2. SEND_DATA: submit the record to the telemetry sink, reply with its
       status code as {"code": <int>}
    3. Any other command: logged and ignored

    Decode, sink and write errors are logged and drop the frame. Nothing is
    retried: each frame is delivered at most once.
    """

    def __init__(self, sink: TelemetrySink):
        """Initialize processor.

        Args:
            sink: Destination for SEND_DATA records
        """
        self._sink = sink

    @property
    def sink(self) -> TelemetrySink:
        return self._sink

    def process(self, frame: Frame, channel: SerialChannel) -> Optional[ResponseRecord]:
        """Handle one frame.

        Args:
            frame: Raw frame bytes without terminator
            channel: Channel the frame arrived on; the reply goes back on it

        Returns:
            The ResponseRecord written to the device, or None if nothing was written
        """
        logger.info(f"Received frame: {frame!r}")

        try:
            record = decode_sensor_record(frame)
        except MalformedPayload as e:
            logger.debug(f"Dropping malformed frame: {e}")
            return None
        except DecodeError as e:
            logger.warning(f"Dropping frame with unexpected schema: {e}")
            return None

        if record.command == Command.SEND_DATA:
            return self._handle_send_data(record, channel)

        logger.info(f"Ignoring unsupported command {record.command} (record {record.record_id})")
        return None

    def _handle_send_data(self, record: SensorRecord, channel: SerialChannel) -> Optional[ResponseRecord]:
        """Forward a record to the sink and acknowledge it to the device."""
        logger.debug(f"SEND_DATA record {record.record_id}: {record}")

        try:
            status = self._sink.submit(record)
        except SinkError as e:
            logger.error(f"Telemetry sink failed for record {record.record_id}: {e}")
            return None

        response = ResponseRecord(code=int(status))
        payload = encode_response(response)

        try:
            channel.write(payload)
        except ChannelIOError as e:
            logger.error(f"Failed to send response for record {record.record_id}: {e}")
            return None

        logger.info(f"Record {record.record_id} acknowledged with code {response.code}")
        return response
