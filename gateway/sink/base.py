"""Abstract base class for telemetry sinks.

A sink is the destination for decoded sensor records. Implementations can
post over HTTP, write to a file, or publish to a broker; the processor only
needs an integer status code back for the device acknowledgement.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import SensorRecord


class TelemetrySink(ABC):
    """Abstract telemetry ingestion endpoint.

    Sinks are called concurrently from frame worker threads and must be
    thread-safe. They should NOT retry; the processor delivers each record
    at most once.
    """

    @abstractmethod
    def submit(self, record: SensorRecord) -> int:
        """Deliver one record.

        Args:
            record: Decoded sensor record

        Returns:
            Status code to acknowledge to the device (e.g. 201)

        Raises:
            SinkUnavailable: if the endpoint cannot be reached
            SinkRejected: if the endpoint refuses the record
        """
        pass

    def close(self) -> None:
        """Release resources (connections, files).

        Should be safe to call multiple times.
        """
        pass

    def __enter__(self) -> TelemetrySink:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
