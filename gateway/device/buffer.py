"""Frame buffer for the serial channel.

Accumulates raw bytes across reads and splits them into delimiter-terminated
frames. Bytes without a terminator stay in the buffer until a later read
completes them.
"""
from __future__ import annotations

import logging
import threading
from typing import List

from ..models import Frame

logger = logging.getLogger(__name__)

DEFAULT_TERMINATOR = b"\r\n"
DEFAULT_MAX_SIZE = 64 * 1024


class FrameBuffer:
    """Thread-safe byte accumulator with line framing and overflow trimming."""

    def __init__(self, terminator: bytes = DEFAULT_TERMINATOR, max_size: int = DEFAULT_MAX_SIZE):
        """Initialize buffer.

        Args:
            terminator: Frame delimiter (not included in emitted frames).
            max_size: Maximum unterminated bytes kept. A longer line is
                discarded up to and including its terminator.
        """
        if not terminator:
            raise ValueError("terminator must not be empty")
        self._terminator = terminator
        self._max_size = max_size
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._overflow_count = 0
        # Set after an overflow until the rest of the oversized line has passed
        self._discarding = False

    def feed(self, data: bytes) -> List[Frame]:
        """Append data and extract all complete frames.

        Args:
            data: Raw chunk as read from the port.

        Returns:
            Frames in arrival order, one per terminator. May be empty.
        """
        if not data:
            return []

        frames: List[Frame] = []
        with self._lock:
            self._buffer.extend(data)

            if self._discarding and not self._skip_overflowed_line():
                return frames

            # Scan from the buffer start: a terminator may straddle two reads
            start = 0
            while True:
                idx = self._buffer.find(self._terminator, start)
                if idx == -1:
                    break
                frames.append(bytes(self._buffer[start:idx]))
                start = idx + len(self._terminator)

            if start:
                del self._buffer[:start]

            self._trim()

        return frames

    def _skip_overflowed_line(self) -> bool:
        """Drop bytes of an overflowed line. Caller holds the lock.

        Returns:
            True once its terminator has been consumed.
        """
        idx = self._buffer.find(self._terminator)
        if idx == -1:
            self._drop_keeping_tail()
            return False

        del self._buffer[:idx + len(self._terminator)]
        self._discarding = False
        return True

    def _trim(self) -> None:
        """Discard an unterminated line beyond max size. Caller holds the lock."""
        if len(self._buffer) <= self._max_size:
            return

        dropped = self._drop_keeping_tail()
        self._discarding = True
        self._overflow_count += 1
        if self._overflow_count % 100 == 1:  # Log periodically
            logger.warning(f"Frame buffer overflow: discarding line after {dropped} unterminated bytes")

    def _drop_keeping_tail(self) -> int:
        """Empty the buffer except a possible partial terminator at the end."""
        keep = len(self._terminator) - 1
        drop_count = max(0, len(self._buffer) - keep)
        del self._buffer[:drop_count]
        return drop_count

    @property
    def size(self) -> int:
        """Current number of unterminated bytes in buffer."""
        with self._lock:
            return len(self._buffer)

    @property
    def overflow_count(self) -> int:
        with self._lock:
            return self._overflow_count

    def clear(self) -> None:
        """Discard any buffered bytes."""
        with self._lock:
            self._buffer.clear()
            self._discarding = False
