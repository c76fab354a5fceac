"""
The pending-event list shared with the protocol layer's callback thread.

The protocol layer posts event names from its own thread; the foreground
interpreter blocks in `wait` until something arrives or the timeout expires.
"""
import asyncio
import threading
from typing import List, Optional

TIMEOUT = "timeout"


class EventQueue:
    """A short list of pending event names plus a binary signal."""

    def __init__(self, lock: Optional[threading.RLock] = None):
        self._lock = lock if lock is not None else threading.RLock()
        self._pending: List[str] = []
        self._signal = threading.Event()

    def post(self, name: str):
        """Queues an event name and wakes a waiter. Callable from any thread."""
        with self._lock:
            self._pending.append(str(name))
            self._signal.set()

    def reset(self):
        with self._lock:
            self._pending.clear()
            self._signal.clear()

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    def _take(self, clear: bool) -> str:
        with self._lock:
            names = ",".join(self._pending)
            if clear:
                self._pending.clear()
                self._signal.clear()
            return names

    def wait(self, timeout_ms: int, clear: bool = True) -> str:
        """
        Blocks up to timeout_ms for an event.

        Returns TIMEOUT on expiry, else the comma-joined pending names. A zero
        (or negative) timeout polls once without blocking.
        """
        with self._lock:
            if self._pending:
                return self._take(clear)
        if timeout_ms is None or timeout_ms <= 0:
            return TIMEOUT
        if not self._signal.wait(timeout_ms / 1000.0):
            return TIMEOUT
        with self._lock:
            if not self._pending:
                # Reset raced with the signal.
                self._signal.clear()
                return TIMEOUT
            return self._take(clear)

    async def await_events(self, timeout_ms: int, clear: bool = True) -> str:
        """Runs `wait` off the event loop so the loop stays responsive."""
        if timeout_ms is None or timeout_ms <= 0:
            return self.wait(0, clear)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.wait, timeout_ms, clear)


__all__ = ["EventQueue", "TIMEOUT"]
