"""USB hotplug notifications.

A BusMonitor watches the host for USB devices being attached and detached
and reports each event to its listeners as a DeviceIdentity. Listeners are
called from a single thread at a time, in event order.

Two implementations:
- UdevBusMonitor: Linux netlink events via pyudev
- PollingBusMonitor: periodic pyserial port scan, works everywhere
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import pyudev

from ..models import DeviceIdentity
from .port_finder import list_all_ports

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0  # seconds
STOP_JOIN_TIMEOUT = 2.0  # seconds


class BusListener(ABC):
    """Receiver of attach/detach notifications."""

    @abstractmethod
    def on_attach(self, identity: DeviceIdentity) -> None:
        pass

    @abstractmethod
    def on_detach(self, identity: DeviceIdentity) -> None:
        pass


class BusMonitor(ABC):
    """Base class for hotplug event sources.

    Subclasses detect events and call _notify_attach/_notify_detach.
    Delivery to listeners is serialized by a lock, so listeners never see
    two events at once even if a subclass reports from several threads.
    """

    def __init__(self):
        self._listeners: List[BusListener] = []
        self._listener_lock = threading.Lock()
        self._delivery_lock = threading.Lock()

    def subscribe(self, listener: BusListener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Unsubscribe function (call to remove subscription)
        """
        with self._listener_lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._listener_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @abstractmethod
    def start(self) -> None:
        """Start watching. Devices already present are reported as attached."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop watching. Safe to call multiple times."""
        pass

    def _notify_attach(self, identity: DeviceIdentity) -> None:
        self._notify("on_attach", identity)

    def _notify_detach(self, identity: DeviceIdentity) -> None:
        self._notify("on_detach", identity)

    def _notify(self, method: str, identity: DeviceIdentity) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)

        with self._delivery_lock:
            for listener in listeners:
                try:
                    getattr(listener, method)(identity)
                except Exception as e:
                    logger.error(f"Error in bus listener {method}({identity}): {e}")


def identity_from_udev(device: pyudev.Device) -> Optional[DeviceIdentity]:
    """Extract the USB identity from a udev device's properties.

    Uses ID_VENDOR_ID / ID_MODEL_ID ("239a", "8029") as set by udev's usb_id
    builtin on tty nodes, falling back to the raw PRODUCT uevent
    ("239a/8029/100").

    Returns:
        DeviceIdentity, or None for non-USB devices or malformed ids
    """
    properties = device.properties
    vendor_str = properties.get("ID_VENDOR_ID")
    product_str = properties.get("ID_MODEL_ID")
    product = properties.get("PRODUCT")
    try:
        if vendor_str and product_str:
            vendor_id, product_id = int(vendor_str, 16), int(product_str, 16)
        elif product:
            parts = product.split("/")
            vendor_id, product_id = int(parts[0], 16), int(parts[1], 16)
        else:
            return None
        return DeviceIdentity(vendor_id & 0xFFFF, product_id & 0xFFFF)
    except (ValueError, IndexError):
        logger.debug(f"Unparseable USB ids in udev event: {vendor_str!r}/{product_str!r}/{product!r}")
        return None


class UdevBusMonitor(BusMonitor):
    """Hotplug monitor backed by udev netlink events (Linux only)."""

    def __init__(self, context: Optional[pyudev.Context] = None):
        """Initialize udev monitor.

        Args:
            context: Existing pyudev context, or None to create one on start
        """
        super().__init__()
        self._context = context
        self._observer: Optional[pyudev.MonitorObserver] = None

    def start(self) -> None:
        if self._observer is not None:
            return

        if self._context is None:
            self._context = pyudev.Context()

        # tty add fires only once the CDC ACM port node exists
        monitor = pyudev.Monitor.from_netlink(self._context)
        monitor.filter_by(subsystem="tty")
        # Events from here on queue in the netlink socket until the observer runs
        monitor.start()

        # Devices plugged in before the gateway started
        for device in self._context.list_devices(subsystem="tty"):
            identity = identity_from_udev(device)
            if identity is not None:
                self._notify_attach(identity)

        self._observer = pyudev.MonitorObserver(
            monitor,
            callback=self._on_udev_event,
            name="UdevBusMonitor"
        )
        self._observer.start()
        logger.info("udev bus monitor started")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer = None
        logger.info("udev bus monitor stopped")

    def _on_udev_event(self, device) -> None:
        """Observer thread callback for one udev event."""
        try:
            action = device.action
            if action not in ("add", "remove"):
                return

            identity = identity_from_udev(device)
            if identity is None:
                return

            logger.debug(f"udev {action}: {identity}")
            if action == "add":
                self._notify_attach(identity)
            else:
                self._notify_detach(identity)
        except Exception as e:
            logger.error(f"Error handling udev event: {e}")


class PollingBusMonitor(BusMonitor):
    """Hotplug monitor that diffs the serial port list periodically.

    Each USB serial port that appears is reported as an attach of its
    identity, each one that disappears as a detach.
    """

    def __init__(self, interval: float = DEFAULT_POLL_INTERVAL):
        """Initialize polling monitor.

        Args:
            interval: Seconds between port scans
        """
        super().__init__()
        self._interval = interval
        self._known: Dict[str, DeviceIdentity] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._monitor_loop,
            daemon=True,
            name="BusPoller"
        )
        self._thread.start()
        logger.info(f"Polling bus monitor started (interval={self._interval}s)")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            if self._thread is not threading.current_thread():
                self._thread.join(timeout=STOP_JOIN_TIMEOUT)
        self._thread = None

    def _monitor_loop(self) -> None:
        """Background loop: scan, report, sleep."""
        while not self._stop.is_set():
            try:
                self.scan()
            except Exception as e:
                logger.error(f"Port scan error: {e}")
            self._stop.wait(self._interval)

    def scan(self) -> None:
        """Compare the current port list with the previous one and report changes."""
        current: Dict[str, DeviceIdentity] = {}
        for info in list_all_ports():
            identity = info.identity
            if identity is not None:
                current[info.device] = identity

        previous = self._known
        self._known = current

        for device in sorted(set(previous) - set(current)):
            logger.debug(f"Port {device} disappeared ({previous[device]})")
            self._notify_detach(previous[device])

        for device in sorted(set(current) - set(previous)):
            logger.debug(f"Port {device} appeared ({current[device]})")
            self._notify_attach(current[device])
