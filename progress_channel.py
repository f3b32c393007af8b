import queue
import logging
import threading
from typing import Iterator, Optional


_CLOSED = object()


class ProgressChannel:
    """Unbounded multi-producer, single-consumer stream of progress lines.

    Producers call send() from any thread and never block. The pipeline calls
    close() exactly once when it is done; iteration ends after the last line.
    The consumer may cancel() to tell the pipeline nobody is listening.
    """

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._cancelled = threading.Event()

    def send(self, line: str = '') -> bool:
        """Queue one line. Returns False if the line was dropped."""
        if self._cancelled.is_set():
            return False
        with self._lock:
            if self._closed:
                logging.debug(f"Dropping line sent after close: {line!r}")
                return False
            self._queue.put(line)
        return True

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    def cancel(self):
        self._cancelled.set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next line, or None once the channel is closed and drained.

        Raises queue.Empty if nothing arrives within timeout.
        """
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # keep the sentinel so later calls also see the end
            self._queue.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[str]:
        while True:
            line = self.get()
            if line is None:
                return
            yield line

    def drain(self, timeout: Optional[float] = None) -> list:
        """Collect every remaining line until close."""
        lines = []
        while True:
            line = self.get(timeout=timeout)
            if line is None:
                return lines
            lines.append(line)
