from .core import (
    PortInfo,
    find_first_port,
    find_ports,
    is_device_present,
    is_matching_port,
    list_all_ports,
)

__all__ = [
    "PortInfo",
    "find_first_port",
    "find_ports",
    "is_device_present",
    "is_matching_port",
    "list_all_ports",
]
