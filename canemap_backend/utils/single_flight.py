"""
Single-flight guard: at most one in-flight operation per (operation, identifier).
Duplicate requests are rejected immediately, never queued.
"""
from contextlib import contextmanager
import threading

from canemap_backend.utils.errors import AlreadyInFlight


class SingleFlightGuard:
    """Set of in-flight identifiers keyed by operation type"""

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight = {}

    def try_acquire(self, operation, key):
        """Atomically check-and-insert. Returns False if already held."""
        with self._lock:
            keys = self._in_flight.setdefault(operation, set())
            if key in keys:
                return False
            keys.add(key)
            return True

    def release(self, operation, key):
        with self._lock:
            self._in_flight.get(operation, set()).discard(key)

    def is_in_flight(self, operation, key):
        with self._lock:
            return key in self._in_flight.get(operation, set())

    def clear(self):
        with self._lock:
            self._in_flight.clear()

    @contextmanager
    def hold(self, operation, key):
        """
        Hold the guard for the duration of the block; released on every exit path.

        Raises:
            AlreadyInFlight: if another caller holds (operation, key)
        """
        if not self.try_acquire(operation, key):
            raise AlreadyInFlight(
                f"A {operation} request for {key} is already in progress",
                operation=operation,
                key=key,
            )
        try:
            yield
        finally:
            self.release(operation, key)
