"""Command-line entry point for the RAK4630 gateway.

Runs until interrupted: waits for the board to be plugged in, forwards its
sensor records to the telemetry endpoint and acknowledges them.
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional, Tuple

from . import __version__
from .config import BUS_BACKENDS, GatewayConfig, load_config
from .device.bus import BusMonitor, PollingBusMonitor, UdevBusMonitor
from .device.session import DeviceSessionManager
from .logging_setup import setup_logging
from .protocol.dispatcher import FrameDispatcher
from .protocol.processor import CommandProcessor
from .sink.base import TelemetrySink
from .sink.http import HttpTelemetrySink

logger = logging.getLogger(__name__)


def build_bus_monitor(config: GatewayConfig) -> BusMonitor:
    if config.bus.backend == "poll":
        return PollingBusMonitor(interval=config.bus.poll_interval)
    return UdevBusMonitor()


def build_gateway(config: GatewayConfig) -> Tuple[DeviceSessionManager, TelemetrySink]:
    """Wire sink, processor, dispatcher, bus monitor and session manager.

    Returns:
        (manager, sink); the caller stops the manager and closes the sink.
    """
    sink = HttpTelemetrySink(
        url=config.sink.url,
        timeout=config.sink.timeout,
        forward_error_codes=config.sink.forward_error_codes,
    )
    dispatcher = FrameDispatcher(
        max_workers=config.dispatch.max_workers,
        queue_size=config.dispatch.queue_size,
    )
    manager = DeviceSessionManager(
        processor=CommandProcessor(sink),
        identity=config.device.identity,
        serial_config=config.serial,
        dispatcher=dispatcher,
        bus=build_bus_monitor(config),
    )
    return manager, sink


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rak4630-gateway",
        description="Forward RAK4630 sensor records from USB serial to an HTTP endpoint.",
    )
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE",
                        help="Override a config value, e.g. --set serial.baud_rate=115200 (repeatable)")
    parser.add_argument("--sink-url", help="Telemetry endpoint URL (same as --set sink.url=...)")
    parser.add_argument("--bus", choices=BUS_BACKENDS, help="Hotplug backend (same as --set bus.backend=...)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More logging (-v info, -vv debug); default is info")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    verbosity = 1 if args.quiet else 2 + min(args.verbose, 1)
    setup_logging(verbosity, args.log_file)

    overrides = list(args.overrides)
    if args.sink_url:
        overrides.append(f"sink.url={args.sink_url}")
    if args.bus:
        overrides.append(f"bus.backend={args.bus}")

    try:
        config = load_config(args.config, overrides)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    manager, sink = build_gateway(config)
    stop_event = threading.Event()

    def _request_stop(signum, _frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    logger.info(f"Forwarding {config.device.identity} records to {config.sink.url}")
    if not manager.start():
        sink.close()
        return 1

    try:
        while not stop_event.wait(1.0):
            pass
    finally:
        manager.stop()
        sink.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
