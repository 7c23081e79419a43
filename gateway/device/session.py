"""Device session manager.

Owns the single device session: reacts to bus attach/detach events, opens
and closes the serial channel, and wires received frames to the dispatcher
and command processor.
"""
from __future__ import annotations

import functools
import logging
import threading
from typing import Callable, Optional

from ..errors import OpenError, ReadFailed
from ..models import DeviceIdentity, Frame, RAK4630_IDENTITY, SerialConfig, SessionState
from ..protocol.dispatcher import FrameDispatcher
from ..protocol.processor import CommandProcessor
from .bus import BusListener, BusMonitor
from .channel import SerialChannel

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[DeviceIdentity, SerialConfig], SerialChannel]


class DeviceSessionManager(BusListener):
    """State machine tying hotplug events to the serial channel lifetime.

    States:
        DETACHED  --attach-->  OPENING  --open ok-->   ATTACHED
                                        --open fail--> FAULTED
        ATTACHED  --detach-->  CLOSING  --closed-->    DETACHED
        ATTACHED  --read error-->  CLOSING  -->    FAULTED
        FAULTED   --attach-->  OPENING (retry)
        FAULTED   --detach-->  DETACHED

    Only one device is handled. An attach for a second device while a
    session is open is rejected with a warning. Events for other device
    classes are ignored.

    Every collaborator failure is caught and logged here; bus callbacks
    never raise.
    """

    def __init__(self,
                 processor: CommandProcessor,
                 identity: DeviceIdentity = RAK4630_IDENTITY,
                 serial_config: Optional[SerialConfig] = None,
                 dispatcher: Optional[FrameDispatcher] = None,
                 bus: Optional[BusMonitor] = None,
                 channel_factory: ChannelFactory = SerialChannel):
        """Initialize session manager.

        Args:
            processor: Handles each decoded frame
            identity: Device class to manage
            serial_config: Serial settings for the channel
            dispatcher: Runs frame processing off the reader thread
                (default: thread per frame)
            bus: Hotplug event source, subscribed on start()
            channel_factory: Creates the channel for a new session
        """
        self._processor = processor
        self._identity = identity
        self._serial_config = serial_config or SerialConfig()
        self._dispatcher = dispatcher or FrameDispatcher()
        self._bus = bus
        self._channel_factory = channel_factory

        self._state = SessionState.DETACHED
        self._channel: Optional[SerialChannel] = None
        self._unsubscribe_bus: Optional[Callable[[], None]] = None

        # Bus callbacks are serialized already; this guards start/stop too
        self._lock = threading.RLock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def channel(self) -> Optional[SerialChannel]:
        """Channel of the open session, if any."""
        return self._channel

    @property
    def is_attached(self) -> bool:
        return self._state == SessionState.ATTACHED

    @property
    def identity(self) -> DeviceIdentity:
        return self._identity

    # --- Lifecycle ---

    def start(self) -> bool:
        """Subscribe to the bus monitor and start it.

        The monitor reports devices that are already plugged in, so a
        session opens immediately if the board is present.

        Returns:
            True if the bus monitor started (or none is configured).
        """
        with self._lock:
            if self._bus is None:
                logger.warning("No bus monitor configured; call on_attach/on_detach directly")
                return True

            if self._unsubscribe_bus is None:
                self._unsubscribe_bus = self._bus.subscribe(self)

        try:
            self._bus.start()
        except Exception as e:
            logger.error(f"Failed to start bus monitor: {e}")
            return False

        logger.info(f"Waiting for device {self._identity}")
        return True

    def stop(self) -> None:
        """Stop the bus monitor, close any open session, stop the dispatcher."""
        if self._bus is not None:
            try:
                self._bus.stop()
            except Exception as e:
                logger.error(f"Error stopping bus monitor: {e}")

        with self._lock:
            if self._unsubscribe_bus is not None:
                self._unsubscribe_bus()
                self._unsubscribe_bus = None

        self.close()
        self._dispatcher.shutdown()

    def close(self) -> None:
        """Close the open session, if any. No-op while detached."""
        with self._lock:
            if self._state == SessionState.ATTACHED:
                self._close_session()
            elif self._state == SessionState.FAULTED:
                self._set_state(SessionState.DETACHED)
            else:
                logger.debug(f"Close requested in state {self._state.value}, nothing to do")

    # --- Bus events ---

    def on_attach(self, identity: DeviceIdentity) -> None:
        """Handle a device attach notification."""
        if identity != self._identity:
            logger.debug(f"Ignoring attach of unrelated device {identity}")
            return

        with self._lock:
            if self._state == SessionState.ATTACHED and not self._channel_alive():
                # Detach was missed (e.g. replug within one poll interval)
                logger.warning(f"Session channel for {identity} is no longer open, reopening")
                self._close_session(SessionState.FAULTED)

            if self._state in (SessionState.ATTACHED, SessionState.OPENING, SessionState.CLOSING):
                logger.warning(
                    f"Ignoring attach of {identity}: session already {self._state.value} "
                    "(single device only)"
                )
                return

            self._open_session()

    def on_detach(self, identity: DeviceIdentity) -> None:
        """Handle a device detach notification."""
        if identity != self._identity:
            logger.debug(f"Ignoring detach of unrelated device {identity}")
            return

        with self._lock:
            if self._state == SessionState.ATTACHED:
                logger.info(f"Device {identity} unplugged")
                self._close_session()
            elif self._state == SessionState.FAULTED:
                self._set_state(SessionState.DETACHED)
            else:
                logger.debug(f"Ignoring detach of {identity} in state {self._state.value}")

    # Internal methods

    def _open_session(self) -> None:
        """DETACHED/FAULTED -> OPENING -> ATTACHED or FAULTED. Caller holds the lock."""
        self._set_state(SessionState.OPENING)

        try:
            channel = self._channel_factory(self._identity, self._serial_config)
        except Exception as e:
            logger.error(f"Failed to create channel for {self._identity}: {e}")
            self._set_state(SessionState.FAULTED)
            return

        try:
            info = channel.open()
            channel.start_listening(
                functools.partial(self._on_frame, channel),
                on_error=functools.partial(self._on_channel_fault, channel),
            )
        except OpenError as e:
            logger.error(f"Failed to open session for {self._identity}: {e}")
            self._discard(channel)
            self._set_state(SessionState.FAULTED)
            return
        except Exception as e:
            logger.error(f"Unexpected error opening session for {self._identity}: {e}")
            self._discard(channel)
            self._set_state(SessionState.FAULTED)
            return

        self._channel = channel
        logger.info(f"Session open on {info.device}")
        self._set_state(SessionState.ATTACHED)

    def _close_session(self, final_state: SessionState = SessionState.DETACHED) -> None:
        """ATTACHED -> CLOSING -> final_state. Caller holds the lock."""
        self._set_state(SessionState.CLOSING)
        channel, self._channel = self._channel, None
        if channel is not None:
            self._discard(channel)
        self._set_state(final_state)

    def _channel_alive(self) -> bool:
        return self._channel is not None and self._channel.is_open

    def _discard(self, channel: SerialChannel) -> None:
        try:
            channel.close()
        except Exception as e:
            logger.error(f"Error closing channel: {e}")

    def _on_channel_fault(self, channel: SerialChannel, error: ReadFailed) -> None:
        """Reader thread callback after a read error released the port.

        Handled on a separate thread: close() may hold the lock while it
        joins this reader.
        """
        threading.Thread(
            target=self._handle_channel_fault,
            args=(channel, error),
            daemon=True,
            name="SessionFault"
        ).start()

    def _handle_channel_fault(self, channel: SerialChannel, error: ReadFailed) -> None:
        with self._lock:
            if channel is not self._channel or self._state != SessionState.ATTACHED:
                logger.debug(f"Ignoring read error from a stale channel: {error}")
                return
            logger.error(f"Session for {self._identity} lost: {error}")
            self._close_session(SessionState.FAULTED)

    def _on_frame(self, channel: SerialChannel, frame: Frame) -> None:
        """Reader thread callback: hand the frame to a worker task."""
        self._dispatcher.dispatch(frame, functools.partial(self._process, channel))

    def _process(self, channel: SerialChannel, frame: Frame) -> None:
        self._processor.process(frame, channel)

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            logger.info(f"Session state: {self._state.value} -> {state.value}")
        self._state = state
