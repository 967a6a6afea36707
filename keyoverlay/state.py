"""Shared state between the input thread and the overlay."""

import threading
from typing import Callable, Optional


SEPARATOR = " + "


class ShutdownSignal:
    """One-way stop flag shared by the main loop and the event source.

    Once set it stays set; there is deliberately no ``clear()``.
    """

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def __bool__(self) -> bool:
        return self._event.is_set()


class ActiveKeySet:
    """Names of the keys and buttons currently held down.

    Every :meth:`apply` mutates the set and hands the resulting
    combination to *display* inside a single lock, so the overlay never
    shows a half-updated set and renders never interleave.

    With *clear_on_release* False (the default) releasing the last key
    leaves the previous combination on screen instead of blanking it.
    """

    def __init__(self, display: Callable[[str], None], clear_on_release: bool = False):
        self._display = display
        self._clear_on_release = clear_on_release
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._keys

    def apply(self, name: str, is_press: bool) -> None:
        """Record a press or release and render the new combination."""
        with self._lock:
            if is_press:
                self._keys.add(name)
            else:
                # Missed or doubled releases are common under fast typing.
                self._keys.discard(name)
            text = self._combination_locked()
            if text or self._clear_on_release:
                self._display(text)

    @property
    def render_lock(self) -> threading.Lock:
        """Held while rendering; take it for any other use of the surface."""
        return self._lock

    def announce(self, text: str) -> None:
        """Render *text* without touching the set (status messages)."""
        with self._lock:
            self._display(text)

    def snapshot(self) -> list[str]:
        with self._lock:
            return sorted(self._keys)

    def combination(self) -> str:
        with self._lock:
            return self._combination_locked()

    def clear(self) -> None:
        """Forget every held key.  Does not render."""
        with self._lock:
            self._keys.clear()

    def _combination_locked(self) -> str:
        return SEPARATOR.join(sorted(self._keys)).upper()
