from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from serial.tools import list_ports

from ...errors import NoDeviceFound
from ...models import DeviceIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortInfo:
    """
    Snapshot of one enumerated serial port.

    Attributes:
        device: Path handed to serial.Serial (e.g. '/dev/ttyACM0', 'COM5').
        vid: Raw USB vendor id, None for ports without a USB parent.
        pid: Raw USB product id, None for ports without a USB parent.
        manufacturer: iManufacturer descriptor ('RAKwireless'), may be None.
        product: iProduct descriptor, may be None.
        serial_number: iSerialNumber descriptor, may be None.
        hwid: pyserial hardware id string, logged when ports are ambiguous.
    """
    device: str
    vid: Optional[int]
    pid: Optional[int]
    manufacturer: Optional[str]
    product: Optional[str]
    serial_number: Optional[str]
    hwid: str

    @property
    def identity(self) -> Optional[DeviceIdentity]:
        """USB identity of the port, or None for non-USB ports."""
        if self.vid is None or self.pid is None:
            return None
        return DeviceIdentity(self.vid & 0xFFFF, self.pid & 0xFFFF)


def _port_to_info(port) -> PortInfo:
    """Convert pyserial's ListPortInfo to PortInfo."""
    return PortInfo(
        device=port.device,
        vid=port.vid,
        pid=port.pid,
        manufacturer=port.manufacturer,
        product=port.product,
        serial_number=port.serial_number,
        hwid=port.hwid,
    )


def is_matching_port(info: PortInfo, identity: DeviceIdentity) -> bool:
    """Decide whether a port belongs to the given device class."""
    if info.vid is None or info.pid is None:
        return False
    return identity.matches(info.vid, info.pid)


def list_all_ports() -> List[PortInfo]:
    """Return every serial port currently visible to the OS."""
    return [_port_to_info(port) for port in list_ports.comports()]


def find_ports(
    identity: Optional[DeviceIdentity] = None,
    *,
    matcher: Optional[Callable[[PortInfo], bool]] = None,
) -> List[PortInfo]:
    """
    Find ports belonging to the device class.

    Either pass an identity or a custom `matcher(info) -> bool`; with neither
    every port is returned.

    Returns:
        Matching ports sorted by device name, so repeated calls against the
        same set of attached devices give the same order.
    """
    results: List[PortInfo] = []

    for info in list_all_ports():
        if matcher is not None:
            if matcher(info):
                results.append(info)
        elif identity is None or is_matching_port(info, identity):
            results.append(info)

    results.sort(key=lambda info: info.device)
    return results


def find_first_port(identity: DeviceIdentity) -> PortInfo:
    """
    Find the port to open for the device class.

    Behaviour:
        - 0 matches  -> NoDeviceFound
        - 1 match    -> return it
        - >1 matches -> log a warning and return the first in sorted order
    """
    matches = find_ports(identity)

    if not matches:
        raise NoDeviceFound(f"No serial port matching {identity} found")

    if len(matches) > 1:
        logger.warning(
            "Multiple ports match %s, using %s. Ports: %s",
            identity,
            matches[0].device,
            [info.device for info in matches],
        )

    return matches[0]


def is_device_present(identity: DeviceIdentity) -> bool:
    """Check if a port for the device class is visible to the OS."""
    try:
        return bool(find_ports(identity))
    except Exception as e:
        logger.error(f"Error enumerating serial ports: {e}")
        return False
