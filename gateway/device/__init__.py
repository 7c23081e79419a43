"""Device layer for the RAK4630 USB CDC sensor board.

This module provides:
- Serial channel with line framing (SerialChannel, FrameBuffer)
- Hotplug event sources (UdevBusMonitor, PollingBusMonitor)
- The single-device session state machine (DeviceSessionManager)
- Port discovery utilities (find_ports, find_first_port)
"""

from .buffer import FrameBuffer
from .bus import BusListener, BusMonitor, PollingBusMonitor, UdevBusMonitor, identity_from_udev
from .channel import SerialChannel
from .port_finder import (
    PortInfo,
    find_first_port,
    find_ports,
    is_device_present,
    is_matching_port,
)
from .session import DeviceSessionManager

__all__ = [
    # Channel
    'SerialChannel',
    'FrameBuffer',

    # Bus
    'BusListener',
    'BusMonitor',
    'PollingBusMonitor',
    'UdevBusMonitor',
    'identity_from_udev',

    # Session
    'DeviceSessionManager',

    # Finder
    'PortInfo',
    'find_first_port',
    'find_ports',
    'is_device_present',
    'is_matching_port',
]
