"""Serial channel to the RAK4630 sensor board.

The board enumerates as a USB CDC serial port (VID=0x239A, PID=0x8029) and
exchanges line-delimited JSON messages with the host:

- device -> host: sensor records, one per line, terminated by CRLF
- host -> device: {"code": <int>} acknowledgements, terminated by CRLF

This module handles:
- Port discovery by VID/PID and serial configuration
- A reader thread that turns the byte stream into frames
- Serialized, warm-up aware writes

Note: This is a FRAMING layer. It does not interpret frame contents.
      Frames are handed to a callback (usually FrameDispatcher.dispatch).
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import serial

from ..errors import AlreadyOpen, ChannelClosed, PortOpenFailed, ReadFailed, WriteFailed
from ..models import DeviceIdentity, Frame, RAK4630_IDENTITY, SerialConfig
from .buffer import FrameBuffer
from .port_finder import PortInfo, find_first_port

logger = logging.getLogger(__name__)

READER_JOIN_TIMEOUT = 1.0  # seconds

FrameCallback = Callable[[Frame], None]
ErrorCallback = Callable[[ReadFailed], None]


class SerialChannel:
    """One open serial connection to one device.

    Responsibilities:
    - Open/close the serial port for the configured device identity
    - Accumulate received bytes and emit one frame per line terminator
    - Write payloads followed by the terminator, one writer at a time
    - Refuse writes before the firmware warm-up interval has elapsed

    Example:
        >>> channel = SerialChannel()
        >>> channel.open()
        PortInfo(device='/dev/ttyACM0', ...)
        >>> channel.start_listening(lambda frame: print(frame))
        >>> channel.write(b'{"code":201}')
        >>> channel.close()
    """

    def __init__(self,
                 identity: DeviceIdentity = RAK4630_IDENTITY,
                 config: Optional[SerialConfig] = None):
        """Initialize serial channel.

        Args:
            identity: USB identity used to pick the port
            config: Serial settings (default: RAK4630 firmware settings)
        """
        self._identity = identity
        self._config = config or SerialConfig()

        # Serial connection
        self._serial: Optional[serial.Serial] = None
        self._port: Optional[PortInfo] = None
        self._opened_at = 0.0

        # Framing
        self._buffer = FrameBuffer(
            terminator=self._config.line_terminator,
            max_size=self._config.max_buffer_size,
        )
        self._on_frame: Optional[FrameCallback] = None
        self._on_error: Optional[ErrorCallback] = None

        # Threading
        self._active = False
        self._reader_thread: Optional[threading.Thread] = None

        # Set while the channel is closed; wakes writers waiting for warm-up
        self._closed = threading.Event()
        self._closed.set()

        # Thread safety
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()

    @property
    def identity(self) -> DeviceIdentity:
        return self._identity

    @property
    def config(self) -> SerialConfig:
        return self._config

    @property
    def port(self) -> Optional[PortInfo]:
        """Port chosen by the last successful open(), if any."""
        return self._port

    @property
    def is_open(self) -> bool:
        return self._serial is not None and not self._closed.is_set()

    def open(self) -> PortInfo:
        """Open the first serial port matching the device identity.

        Returns:
            The PortInfo that was opened

        Raises:
            AlreadyOpen: if this channel is already open
            NoDeviceFound: if no matching port is present
            PortOpenFailed: if the port cannot be opened or configured
        """
        with self._state_lock:
            if self._serial is not None:
                raise AlreadyOpen(f"Channel already open on {self._port.device if self._port else '?'}")

            info = find_first_port(self._identity)
            cfg = self._config

            try:
                ser = serial.Serial(
                    port=info.device,
                    baudrate=cfg.baud_rate,
                    bytesize=cfg.data_bits,
                    stopbits=cfg.stop_bits,
                    parity=cfg.parity,
                    timeout=cfg.read_timeout,
                    write_timeout=cfg.write_timeout,
                )
            except (serial.SerialException, ValueError, OSError) as e:
                raise PortOpenFailed(f"Failed to open {info.device}: {e}", port=info.device) from e

            try:
                # Drop anything the OS buffered before we attached
                ser.reset_input_buffer()
                ser.reset_output_buffer()
            except (serial.SerialException, OSError) as e:
                try:
                    ser.close()
                except (serial.SerialException, OSError):
                    logger.debug("Ignoring close error after failed configure", exc_info=True)
                raise PortOpenFailed(f"Failed to configure {info.device}: {e}", port=info.device) from e

            self._serial = ser
            self._port = info
            self._opened_at = time.monotonic()
            self._buffer.clear()
            self._closed.clear()

            logger.info(
                f"Opened {info.device} for {self._identity} @ {cfg.baud_rate} baud "
                f"({cfg.data_bits}{cfg.parity}{cfg.stop_bits})"
            )
            return info

    def start_listening(self, on_frame: FrameCallback, on_error: Optional[ErrorCallback] = None) -> None:
        """Start the reader thread.

        Args:
            on_frame: Called on the reader thread once per complete frame.
                Must return quickly; hand work off to another thread.
            on_error: Called on the reader thread after a read error has
                released the port. Not called for close().

        Raises:
            ChannelClosed: if the channel is not open
        """
        with self._state_lock:
            if self._serial is None:
                raise ChannelClosed("Cannot listen, channel is not open")

            if self._reader_thread is not None and self._reader_thread.is_alive():
                logger.warning("Channel is already listening")
                return

            self._on_frame = on_frame
            self._on_error = on_error
            self._active = True
            self._reader_thread = threading.Thread(
                target=self._reader_loop,
                args=(self._serial,),
                daemon=True,
                name="ChannelReader"
            )
            self._reader_thread.start()

    def write(self, payload: bytes) -> None:
        """Write one message to the device.

        Blocks until the warm-up interval since open() has elapsed, then
        writes the payload and the line terminator, flushing after each.

        Args:
            payload: Message bytes without terminator

        Raises:
            ChannelClosed: if the channel is closed before or during the write
            WriteFailed: on I/O error or write timeout
        """
        with self._write_lock:
            if self._serial is None or self._closed.is_set():
                raise ChannelClosed("Cannot write, channel is closed")

            remaining = self._opened_at + self._config.warmup - time.monotonic()
            if remaining > 0:
                logger.debug(f"Waiting {remaining:.2f}s for device warm-up")
                if self._closed.wait(remaining):
                    raise ChannelClosed("Channel closed while waiting for warm-up")

            ser = self._serial
            try:
                ser.write(payload)
                ser.flush()
                ser.write(self._config.line_terminator)
                ser.flush()
            except serial.SerialTimeoutException as e:
                raise WriteFailed(f"Write timed out: {e}") from e
            except (serial.SerialException, OSError) as e:
                if self._closed.is_set():
                    raise ChannelClosed(f"Channel closed during write: {e}") from e
                raise WriteFailed(f"Write error: {e}") from e

            logger.debug(f"Wrote {len(payload)} bytes: {payload!r}")

    def close(self) -> None:
        """Release the serial port.

        Safe to call multiple times and from any thread, including the
        reader thread. In-flight writes finish or fail with ChannelClosed.
        """
        with self._state_lock:
            reader = self._reader_thread
            if self._serial is None and (reader is None or not reader.is_alive()):
                logger.debug("Close called on a channel that is not open")
                self._active = False
                return

            self._active = False
            self._closed.set()

            # Wait for reader thread to finish
            if reader is not None and reader.is_alive() and reader is not threading.current_thread():
                reader.join(timeout=max(READER_JOIN_TIMEOUT, self._config.read_timeout * 5))

            with self._write_lock:
                self._release_port()

            self._reader_thread = None
            self._on_frame = None
            self._on_error = None
            self._buffer.clear()

        logger.info(f"Closed serial channel{' on ' + self._port.device if self._port else ''}")

    def __enter__(self) -> SerialChannel:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Internal methods

    def _reader_loop(self, ser: serial.Serial) -> None:
        """Read raw bytes and dispatch complete frames."""
        logger.debug("Reader thread started")

        while self._active:
            try:
                # Returns early with whatever arrived once the read timeout elapses
                chunk = ser.read(self._config.read_chunk_size)
            except (serial.SerialException, OSError) as e:
                if self._active:
                    self._handle_read_error(ReadFailed(f"Serial read error: {e}"))
                break
            except Exception as e:
                if self._active:
                    self._handle_read_error(ReadFailed(f"Reader error: {e}"))
                break

            if not chunk:
                continue

            for frame in self._buffer.feed(chunk):
                if not self._active:
                    break
                self._deliver(frame)

        logger.debug("Reader thread exiting")

    def _deliver(self, frame: Frame) -> None:
        callback = self._on_frame
        if callback is None:
            return
        try:
            callback(frame)
        except Exception as e:
            logger.error(f"Error in frame callback: {e}")

    def _handle_read_error(self, error: ReadFailed) -> None:
        """Release the port after a fatal read error (e.g. device unplugged).

        Runs on the reader thread, so it must not take the state lock or join.
        """
        logger.error(f"{error}; releasing {self._port.device if self._port else 'port'}")
        self._active = False
        self._closed.set()

        with self._write_lock:
            self._release_port()

        callback = self._on_error
        if callback is not None:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error in read error callback: {e}")

    def _release_port(self) -> None:
        """Close the pyserial handle. Caller holds the write lock."""
        if self._serial is None:
            return
        try:
            self._serial.close()
        except Exception as e:
            logger.error(f"Error closing serial port: {e}")
        finally:
            self._serial = None
