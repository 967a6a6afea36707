"""Main application logic for keyoverlay: wires all modules together."""

import curses
import logging
import signal
import threading
from typing import Optional

from keyoverlay.config import AppConfig
from keyoverlay.overlay import TerminalOverlay, keep_on_top
from keyoverlay.sources import EventSource, create_event_source
from keyoverlay.state import ActiveKeySet, ShutdownSignal

log = logging.getLogger(__name__)

QUIT_KEYS = (ord("q"), ord("Q"))

CAPTURE_FAILED_TEXT = "INPUT CAPTURE UNAVAILABLE - PRESS Q TO QUIT"

# How long shutdown waits for the input thread after closing its source.
_JOIN_TIMEOUT = 2.0


class KeyOverlayApp:
    """Core application controller.

    Owns the shared state for one run: the active key set, the shutdown
    signal and the background thread running the event source.
    """

    def __init__(self, config: AppConfig, source: Optional[EventSource] = None):
        self.config = config
        self.shutdown = ShutdownSignal()
        self.source = source if source is not None else create_event_source(config.backend)
        self.keys: Optional[ActiveKeySet] = None
        self._thread: Optional[threading.Thread] = None
        self._failure_shown = False

    def run(self) -> int:
        """Run the overlay in the current terminal.  Returns the exit status."""
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, self._on_sigterm)
        if self.config.always_on_top:
            keep_on_top()
        return curses.wrapper(self._run_in_terminal)

    def _run_in_terminal(self, screen) -> int:
        return self.run_with(TerminalOverlay.setup(screen))

    def run_with(self, overlay) -> int:
        """Drive *overlay* until quit; any object with ``display`` and
        ``poll_key`` will do."""
        self.keys = ActiveKeySet(overlay.display, clear_on_release=self.config.clear_on_release)
        self.keys.announce("")
        self._start_source()
        try:
            while not self.shutdown.is_set():
                with self.keys.render_lock:
                    key = overlay.poll_key()
                if key in QUIT_KEYS:
                    log.info("Quit requested")
                    break
                self._check_source()
                self.shutdown.wait(self.config.poll_interval)
        except KeyboardInterrupt:
            log.info("Interrupted")
        finally:
            self.shutdown.set()
            self._stop_source()

        return 1 if self.source.error is not None else 0

    def _start_source(self) -> None:
        self._thread = threading.Thread(
            target=self.source.run,
            args=(self.keys.apply, self.shutdown.is_set),
            name=f"{self.source.name}-input",
            daemon=True,
        )
        self._thread.start()

    def _check_source(self) -> None:
        """Show a message once if the input thread died with an error."""
        if self._failure_shown or self._thread.is_alive():
            return
        if self.source.error is not None:
            self._failure_shown = True
            self.keys.clear()
            self.keys.announce(CAPTURE_FAILED_TEXT)

    def _stop_source(self) -> None:
        self.source.close()
        if self._thread is not None:
            self._thread.join(timeout=_JOIN_TIMEOUT)
            if self._thread.is_alive():
                log.warning("%s input thread did not stop within %.1fs",
                            self.source.name, _JOIN_TIMEOUT)
            self._thread = None
        self.keys.clear()

    def _on_sigterm(self, signum, frame) -> None:
        log.info("signal TERM received")
        self.shutdown.set()
