"""Frame dispatcher.

Moves frame processing off the channel's reader thread. The reader must
keep draining the port while earlier frames wait on the telemetry sink.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, List, Optional, Tuple

from ..models import Frame

logger = logging.getLogger(__name__)

FrameHandler = Callable[[Frame], None]

WORKER_JOIN_TIMEOUT = 1.0  # seconds


class FrameDispatcher:
    """Runs one independent task per frame.

    Two modes:
    - max_workers=None: a new daemon thread per frame (unbounded)
    - max_workers=N: frames queue up for a fixed pool of N worker threads

    In both modes dispatch() returns immediately, each non-empty frame is
    handled exactly once, and completion order between frames is not defined.
    Exceptions raised by a handler are logged and end that task only.
    """

    def __init__(self, max_workers: Optional[int] = None, queue_size: int = 0):
        """Initialize dispatcher.

        Args:
            max_workers: Pool size, or None for a thread per frame
            queue_size: Maximum queued frames in pool mode (0 = unbounded).
                When full, dispatch() blocks until a worker frees a slot.
        """
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be a positive integer or None")

        self._max_workers = max_workers
        self._queue: queue.Queue[Optional[Tuple[Frame, FrameHandler]]] = queue.Queue(maxsize=queue_size)
        self._workers: List[threading.Thread] = []
        self._active = True

        # Orders each accepted frame ahead of the shutdown sentinels
        self._dispatch_lock = threading.Lock()
        self._count_lock = threading.Lock()
        self._in_flight = 0
        self._task_counter = 0

        if max_workers is not None:
            self._start_workers(max_workers)

    @property
    def in_flight(self) -> int:
        """Number of frames dispatched but not yet finished."""
        with self._count_lock:
            return self._in_flight

    def dispatch(self, frame: Frame, handler: FrameHandler) -> None:
        """Hand a frame to a new task and return without waiting.

        Args:
            frame: Complete frame from the channel
            handler: Called with the frame on a worker thread
        """
        if not frame:
            logger.debug("Skipping empty frame")
            return

        with self._dispatch_lock:
            if not self._active:
                logger.warning("Dispatcher is shut down, dropping frame")
                return

            with self._count_lock:
                self._in_flight += 1
                self._task_counter += 1
                task_id = self._task_counter

            if self._max_workers is None:
                thread = threading.Thread(
                    target=self._run,
                    args=(frame, handler),
                    daemon=True,
                    name=f"FrameTask-{task_id}"
                )
                thread.start()
            else:
                self._queue.put((frame, handler))

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting frames and stop pool workers.

        Queued frames ahead of the stop sentinels are still processed.
        Per-frame threads are daemons and are never joined.

        Args:
            wait: Join pool workers before returning
        """
        with self._dispatch_lock:
            if not self._active:
                return
            self._active = False

            workers, self._workers = self._workers, []
            for _ in workers:
                self._queue.put(None)

        if wait:
            for worker in workers:
                if worker is not threading.current_thread():
                    worker.join(timeout=WORKER_JOIN_TIMEOUT)

    # Internal methods

    def _start_workers(self, count: int) -> None:
        for index in range(count):
            worker = threading.Thread(
                target=self._worker_loop,
                daemon=True,
                name=f"FrameWorker-{index}"
            )
            worker.start()
            self._workers.append(worker)

    def _worker_loop(self) -> None:
        """Process queued frames until a sentinel arrives."""
        while True:
            item = self._queue.get()
            if item is None:  # Sentinel
                break
            frame, handler = item
            self._run(frame, handler)

    def _run(self, frame: Frame, handler: FrameHandler) -> None:
        """Task boundary: nothing escapes from here."""
        try:
            handler(frame)
        except Exception:
            logger.exception(f"Error while processing frame {frame[:80]!r}")
        finally:
            with self._count_lock:
                self._in_flight -= 1
