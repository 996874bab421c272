"""
Listener registries used by device scopes and the client's connection events.
"""

import threading
from typing import Callable, Optional


class ListenerSet:
    """Thread-safe ordered collection of callbacks."""

    def __init__(self):
        self._callbacks: list[Callable] = []
        self._lock = threading.Lock()

    def add(self, callback: Callable) -> int:
        """
        Append a callback.

        Returns:
            Listener count after the add
        """
        if not callable(callback):
            raise TypeError(f"Listener must be callable, got {type(callback).__name__}")
        with self._lock:
            self._callbacks.append(callback)
            return len(self._callbacks)

    def remove(self, callback: Callable) -> Optional[int]:
        """
        Remove the most recent registration of a callback.

        Returns:
            Listener count after the removal, or None if the callback was not registered
        """
        with self._lock:
            for i in range(len(self._callbacks) - 1, -1, -1):
                if self._callbacks[i] == callback:
                    del self._callbacks[i]
                    return len(self._callbacks)
            return None

    def snapshot(self) -> tuple[Callable, ...]:
        """Callbacks in registration order, safe to iterate while others register."""
        with self._lock:
            return tuple(self._callbacks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def __bool__(self) -> bool:
        return len(self) > 0


class ListenerHandle:
    """Returned by every listener registration; removes the listener when closed."""

    def __init__(self, remove: Callable[[], bool], callback: Callable):
        self._remove = remove
        self._lock = threading.Lock()
        self._active = True
        self.callback = callback

    @property
    def active(self) -> bool:
        return self._active

    def remove(self) -> bool:
        """Unregister the listener. Safe to call more than once."""
        with self._lock:
            if not self._active:
                return False
            self._active = False
        return self._remove()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.remove()
        return False


def emit(listeners: ListenerSet, *args, on_error: Optional[Callable[[Exception], None]] = None) -> int:
    """
    Invoke every listener in registration order.

    A listener that raises does not prevent the remaining listeners from
    running; the exception goes to on_error, or propagates if on_error is None.

    Returns:
        Number of listeners invoked
    """
    count = 0
    for callback in listeners.snapshot():
        count += 1
        try:
            callback(*args)
        except Exception as e:
            if on_error is None:
                raise
            on_error(e)
    return count
