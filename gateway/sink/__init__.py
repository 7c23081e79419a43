"""Telemetry sinks for decoded sensor records."""

from .base import TelemetrySink
from .http import HttpTelemetrySink

__all__ = ["TelemetrySink", "HttpTelemetrySink"]
