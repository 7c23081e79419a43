"""HTTP telemetry sink.

Posts each sensor record as JSON to the ingestion endpoint and returns the
HTTP status code, which is relayed to the device as the acknowledgement.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..errors import SinkRejected, SinkUnavailable
from ..models import SensorRecord
from .base import TelemetrySink

logger = logging.getLogger(__name__)

DEFAULT_SINK_URL = "http://localhost:8080/api/rak4630/sensordata"
DEFAULT_TIMEOUT = 5.0  # seconds


class HttpTelemetrySink(TelemetrySink):
    """Sink that POSTs records to an HTTP endpoint with httpx."""

    def __init__(self,
                 url: str = DEFAULT_SINK_URL,
                 timeout: float = DEFAULT_TIMEOUT,
                 forward_error_codes: bool = True,
                 client: Optional[httpx.Client] = None):
        """Initialize HTTP sink.

        Args:
            url: Endpoint receiving one JSON record per POST
            timeout: Request timeout in seconds
            forward_error_codes: If True, any HTTP status (including 4xx/5xx)
                is returned so the device learns the outcome. If False,
                non-2xx statuses raise SinkRejected.
            client: Existing httpx.Client, or None to create one. A client
                passed in is not closed by close().
        """
        self._url = url
        self._forward_error_codes = forward_error_codes
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    def submit(self, record: SensorRecord) -> int:
        """POST the record and return the response status code."""
        try:
            response = self._client.post(self._url, json=record.to_json())
        except httpx.TimeoutException as e:
            raise SinkUnavailable(f"Timed out posting to {self._url}: {e}") from e
        except httpx.HTTPError as e:
            raise SinkUnavailable(f"Error posting to {self._url}: {e}") from e

        status = response.status_code
        logger.debug(f"POST {self._url} -> {status}")

        if not response.is_success:
            if not self._forward_error_codes:
                raise SinkRejected(f"Endpoint rejected record {record.record_id} with {status}", status)
            logger.warning(f"Endpoint answered {status} for record {record.record_id}")

        return status

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
