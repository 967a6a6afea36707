"""Global keyboard and mouse event sources for keyoverlay.

Platform strategies:
  - Linux → evdev (raw device events, works on both X11 and Wayland)
  - macOS / Windows → pynput keyboard and mouse Listeners
    (low-level hooks on Windows)

Every source has the same contract: :meth:`EventSource.run` blocks the
calling thread, feeding ``(name, is_press)`` pairs to a sink until the
stop callback returns True, :meth:`EventSource.close` is called from
another thread, or the OS connection dies.
"""

import logging
import os
import platform
import select
import threading
from enum import Enum
from typing import Callable, Optional

from keyoverlay.config import BACKENDS
from keyoverlay.keys import (
    KeyNameResolver,
    MouseButton,
    PynputSymbols,
    button_names,
    evdev_key_names,
    printable_name,
    pynput_key_names,
    resolve_button,
)

log = logging.getLogger(__name__)

_SYSTEM = platform.system()

# Upper bound on how long a source waits before re-checking the stop flag.
_WAIT_TIMEOUT = 1.0
_LISTENER_POLL = 0.5
_JOIN_TIMEOUT = 2.0

Sink = Callable[[str, bool], None]
ShouldStop = Callable[[], bool]


class EventSourceError(Exception):
    """The platform input facility could not be opened or was lost."""


class SourceState(Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


# ── Linux session detection ───────────────────────────────────

_SESSION_TYPE: Optional[str] = None

if _SYSTEM == "Linux":
    _SESSION_TYPE = os.environ.get("XDG_SESSION_TYPE", "").lower()
    if not _SESSION_TYPE:
        _SESSION_TYPE = "wayland" if os.environ.get("WAYLAND_DISPLAY") else "x11"


# ── Common contract ───────────────────────────────────────────

class EventSource:
    """Base class: owns the state machine and the teardown guarantees.

    Subclasses implement ``_open``, ``_loop``, ``_release`` and
    ``_interrupt``.  ``_release`` runs at most once per :meth:`run` on the
    thread that called :meth:`run`: always after a successful ``_open``,
    and after an ``OSError`` from ``_open`` since it may have opened
    handles already.  An ``EventSourceError`` from ``_open`` means nothing
    was left open.  ``_interrupt`` runs at most once, on whatever thread
    calls :meth:`close`.
    """

    name = "base"

    def __init__(self):
        self.state = SourceState.IDLE
        self.error: Optional[EventSourceError] = None
        self._close_lock = threading.Lock()
        self._close_requested = False

    def run(self, sink: Sink, should_stop: ShouldStop) -> None:
        if self.state is not SourceState.IDLE:
            raise RuntimeError(f"{self.name} event source has already run")

        try:
            self._open(sink)
        except EventSourceError as e:
            log.error("Cannot start %s input capture: %s", self.name, e)
            self.error = e
            self.state = SourceState.CLOSED
            return
        except OSError as e:
            # Something may already be open; release it before giving up.
            log.exception("Cannot start %s input capture", self.name)
            self.error = EventSourceError(str(e))
            try:
                self._release()
            finally:
                self.state = SourceState.CLOSED
            return

        self.state = SourceState.CONNECTED
        log.info("%s input capture started", self.name)
        try:
            self._loop(lambda: self._close_requested or should_stop())
        except EventSourceError as e:
            log.error("%s input capture lost: %s", self.name, e)
            self.error = e
        except OSError as e:
            log.exception("%s input capture failed", self.name)
            self.error = EventSourceError(str(e))
        else:
            self.state = SourceState.SHUTTING_DOWN
        finally:
            try:
                self._release()
            finally:
                self.state = SourceState.CLOSED
                log.info("%s input capture stopped", self.name)

    def close(self) -> None:
        """Force a blocked :meth:`run` to return.  Safe to call repeatedly."""
        with self._close_lock:
            if self._close_requested:
                return
            self._close_requested = True
        if self.state is SourceState.CONNECTED:
            self.state = SourceState.SHUTTING_DOWN
        self._interrupt()

    def _open(self, sink: Sink) -> None:
        raise NotImplementedError

    def _loop(self, should_stop: ShouldStop) -> None:
        raise NotImplementedError

    def _release(self) -> None:
        raise NotImplementedError

    def _interrupt(self) -> None:
        raise NotImplementedError


# ── Linux evdev backend ───────────────────────────────────────

def _is_input_device(caps: dict) -> bool:
    """True for keyboards, mice and anything with a scroll wheel."""
    from evdev import ecodes

    key_caps = caps.get(ecodes.EV_KEY, [])
    if ecodes.KEY_A in key_caps and ecodes.KEY_Z in key_caps:
        return True
    if ecodes.BTN_LEFT in key_caps:
        return True
    return ecodes.REL_WHEEL in caps.get(ecodes.EV_REL, [])


def _evdev_has_devices() -> bool:
    """Check if we can open any keyboard or mouse via evdev."""
    try:
        import evdev
    except ImportError:
        return False

    for path in evdev.list_devices():
        try:
            dev = evdev.InputDevice(path)
        except (PermissionError, OSError):
            continue
        try:
            if _is_input_device(dev.capabilities()):
                return True
        finally:
            dev.close()
    return False


class EvdevEventSource(EventSource):
    """Read raw events from every keyboard and mouse under ``/dev/input``.

    Devices are never grabbed, so other applications keep receiving
    input.  :meth:`close` wakes the ``select`` through a self-pipe.
    """

    name = "evdev"

    def __init__(self, devices: Optional[list] = None):
        super().__init__()
        self._devices: list = list(devices) if devices is not None else []
        self._discover = devices is None
        self._keys: Optional[KeyNameResolver] = None
        self._buttons = button_names()
        self._button_codes: dict[int, int] = {}
        self._sink: Optional[Sink] = None
        self._pipe_lock = threading.Lock()
        self._stop_pipe_r: Optional[int] = None
        self._stop_pipe_w: Optional[int] = None

    def _open(self, sink: Sink) -> None:
        try:
            import evdev
            from evdev import ecodes
        except ImportError as e:
            raise EventSourceError(f"evdev is not available: {e}") from e

        self._sink = sink
        self._keys = evdev_key_names()
        self._button_codes = {
            ecodes.BTN_LEFT: MouseButton.LEFT,
            ecodes.BTN_MIDDLE: MouseButton.MIDDLE,
            ecodes.BTN_RIGHT: MouseButton.RIGHT,
        }

        if self._discover:
            for path in evdev.list_devices():
                try:
                    dev = evdev.InputDevice(path)
                except (PermissionError, OSError) as e:
                    log.debug("Cannot open %s: %s", path, e)
                    continue
                try:
                    caps = dev.capabilities()
                except OSError as e:
                    log.debug("Cannot query %s: %s", path, e)
                    self._close_device(dev)
                    continue
                if _is_input_device(caps):
                    self._devices.append(dev)
                    log.debug("Monitoring input device: %s (%s)", dev.name, dev.path)
                else:
                    dev.close()

        if not self._devices:
            raise EventSourceError(
                "No keyboard or mouse devices found! "
                "Make sure the user is in the 'input' group: "
                "sudo usermod -aG input $USER  (then re-login)"
            )

        with self._pipe_lock:
            self._stop_pipe_r, self._stop_pipe_w = os.pipe()

    def _loop(self, should_stop: ShouldStop) -> None:
        while not should_stop():
            fds = {dev.fd: dev for dev in self._devices}
            if not fds:
                raise EventSourceError("all input devices disconnected")

            readable, _, _ = select.select(
                [*fds, self._stop_pipe_r], [], [], _WAIT_TIMEOUT
            )

            for fd in readable:
                if fd == self._stop_pipe_r:
                    return

                dev = fds[fd]
                try:
                    for event in dev.read():
                        self._dispatch(event)
                except OSError:
                    log.debug("Device %s disconnected", dev.path)
                    self._devices.remove(dev)
                    self._close_device(dev)

                if should_stop():
                    return

    def _dispatch(self, event) -> None:
        from evdev import ecodes

        if event.type == ecodes.EV_KEY:
            if event.value == 2:  # auto-repeat
                return
            is_press = event.value == 1
            code = event.code
            if ecodes.BTN_MOUSE <= code < ecodes.BTN_JOYSTICK:
                name = resolve_button(self._buttons, self._button_codes.get(code, code))
            elif ecodes.BTN_DIGI <= code < ecodes.BTN_WHEEL:
                return  # touchpad contact reports, not buttons
            else:
                name = self._keys.resolve(code)
                if not name:
                    log.debug("No name for key code %s", code)
                    return
            self._sink(name, is_press)

        elif event.type == ecodes.EV_REL and event.code == ecodes.REL_WHEEL and event.value:
            button = MouseButton.SCROLL_UP if event.value > 0 else MouseButton.SCROLL_DOWN
            name = resolve_button(self._buttons, button)
            # A wheel notch has no release of its own.
            self._sink(name, True)
            self._sink(name, False)

    def _release(self) -> None:
        for dev in self._devices:
            self._close_device(dev)
        self._devices = []
        with self._pipe_lock:
            for fd in (self._stop_pipe_r, self._stop_pipe_w):
                if fd is not None:
                    try:
                        os.close(fd)
                    except OSError:
                        pass
            self._stop_pipe_r = None
            self._stop_pipe_w = None

    def _interrupt(self) -> None:
        with self._pipe_lock:
            if self._stop_pipe_w is not None:
                try:
                    os.write(self._stop_pipe_w, b"\x00")
                except OSError:
                    pass

    @staticmethod
    def _close_device(dev) -> None:
        try:
            dev.close()
        except OSError:
            pass


# ── pynput backend (macOS / Windows / X11) ────────────────────

_PYNPUT_BUTTONS = {
    "left": MouseButton.LEFT,
    "middle": MouseButton.MIDDLE,
    "right": MouseButton.RIGHT,
}


def _macos_is_trusted() -> bool:
    """Return False when macOS would refuse us an event tap."""
    try:
        import ctypes
        import ctypes.util

        path = ctypes.util.find_library("ApplicationServices")
        if not path:
            path = (
                "/System/Library/Frameworks"
                "/ApplicationServices.framework/ApplicationServices"
            )
        lib = ctypes.cdll.LoadLibrary(path)
        lib.AXIsProcessTrusted.restype = ctypes.c_bool
        return bool(lib.AXIsProcessTrusted())
    except (OSError, AttributeError):
        return True  # can't check, proceed


class PynputEventSource(EventSource):
    """Capture input through pynput's keyboard and mouse Listeners.

    pynput delivers events on its own two listener threads; the thread
    running :meth:`run` only supervises them and waits for a stop.
    """

    name = "pynput"

    def __init__(self):
        super().__init__()
        self._keyboard_listener = None
        self._mouse_listener = None
        self._keys: Optional[KeyNameResolver] = None
        self._symbols: Optional[PynputSymbols] = None
        self._buttons = button_names()
        self._sink: Optional[Sink] = None
        self._wakeup = threading.Event()

    def _open(self, sink: Sink) -> None:
        # pynput's Quartz backend segfaults when the event tap is refused.
        if _SYSTEM == "Darwin" and not _macos_is_trusted():
            raise EventSourceError(
                "process is not trusted for Accessibility; allow it in "
                "System Settings → Privacy & Security → Accessibility"
            )

        try:
            from pynput import keyboard, mouse
        except ImportError as e:
            # Also raised on X11 when no display can be opened.
            raise EventSourceError(f"pynput is not available: {e}") from e

        self._sink = sink
        if _SYSTEM == "Windows":
            self._keys = pynput_key_names()
        else:
            self._symbols = PynputSymbols()
            self._keys = pynput_key_names(self._symbols)

        self._keyboard_listener = keyboard.Listener(
            on_press=self._on_press,
            on_release=self._on_release,
        )
        self._mouse_listener = mouse.Listener(
            on_click=self._on_click,
            on_scroll=self._on_scroll,
        )
        for listener in (self._keyboard_listener, self._mouse_listener):
            listener.daemon = True
            listener.start()

    def _loop(self, should_stop: ShouldStop) -> None:
        listeners = (self._keyboard_listener, self._mouse_listener)
        while not should_stop():
            if not all(listener.is_alive() for listener in listeners):
                raise EventSourceError("pynput listener stopped unexpectedly")
            self._wakeup.wait(_LISTENER_POLL)

    def _release(self) -> None:
        for listener in (self._keyboard_listener, self._mouse_listener):
            if listener is None:
                continue
            listener.stop()
            listener.join(timeout=_JOIN_TIMEOUT)
        self._keyboard_listener = None
        self._mouse_listener = None

    def _interrupt(self) -> None:
        # Listener.stop() unhooks right away; _release joins them later.
        for listener in (self._keyboard_listener, self._mouse_listener):
            if listener is not None:
                listener.stop()
        self._wakeup.set()

    def _emit(self, name: str, is_press: bool) -> None:
        # Exceptions escaping a callback would stop the pynput listener.
        try:
            self._sink(name, is_press)
        except Exception:
            log.exception("Input event handler failed")

    @staticmethod
    def _vk_of(key) -> Optional[int]:
        value = getattr(key, "value", key)  # Key members wrap a KeyCode
        return getattr(value, "vk", None)

    def _handle_key(self, key, is_press: bool) -> None:
        vk = self._vk_of(key)
        if vk is None:
            # X11 reports keypad digits as bare characters.
            name = printable_name(getattr(key, "char", None))
            if name:
                self._emit(name, is_press)
            else:
                log.debug("Ignoring key without a virtual-key code: %r", key)
            return
        if self._symbols is not None:
            self._symbols.learn(vk, getattr(key, "char", None))
        name = self._keys.resolve(vk)
        if not name:
            log.debug("No name for virtual key %s", vk)
            return
        self._emit(name, is_press)

    def _on_press(self, key, injected=False) -> None:
        self._handle_key(key, True)

    def _on_release(self, key, injected=False) -> None:
        self._handle_key(key, False)

    def _on_click(self, x, y, button, pressed, injected=False) -> None:
        code = _PYNPUT_BUTTONS.get(getattr(button, "name", ""), 0)
        self._emit(resolve_button(self._buttons, code), pressed)

    def _on_scroll(self, x, y, dx, dy, injected=False) -> None:
        if not dy:
            return
        button = MouseButton.SCROLL_UP if dy > 0 else MouseButton.SCROLL_DOWN
        name = resolve_button(self._buttons, button)
        self._emit(name, True)
        self._emit(name, False)


# ── Public facade ─────────────────────────────────────────────

def create_event_source(backend: str = "auto") -> EventSource:
    """Pick the event source for *backend*, auto-detecting the best one."""
    if backend not in BACKENDS:
        raise ValueError(f"Unknown input backend: {backend!r}")
    if backend == "evdev":
        return EvdevEventSource()
    if backend == "pynput":
        return PynputEventSource()

    if _SYSTEM == "Linux":
        if _evdev_has_devices():
            log.info("Using evdev backend for input capture")
            return EvdevEventSource()
        if _SESSION_TYPE == "wayland":
            log.warning(
                "evdev unavailable, using pynput on Wayland, which only sees "
                "input sent to X11 applications. "
                "For full support: sudo usermod -aG input $USER  (then re-login)"
            )
        else:
            log.info("Using pynput backend (X11)")
    else:
        log.info("Using pynput backend for input capture")
    return PynputEventSource()
