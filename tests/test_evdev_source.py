import os
import threading
import time

import pytest

evdev = pytest.importorskip("evdev")

from evdev import InputEvent, ecodes  # noqa: E402

from keyoverlay.keys import UNKNOWN_MOUSE_BUTTON, evdev_key_names  # noqa: E402
from keyoverlay.sources import EvdevEventSource, SourceState  # noqa: E402
from keyoverlay.state import ActiveKeySet  # noqa: E402


class FakeDevice:
    """Device whose fd is a real pipe so ``select`` works on it."""

    path = "/dev/input/event99"
    name = "fake input"

    def __init__(self):
        self._r, self._w = os.pipe()
        self.fd = self._r
        self._batches = []
        self.fail = False
        self.closed = False

    def feed(self, *events):
        self._batches.append(events)
        os.write(self._w, b"x")

    def unplug(self):
        self.fail = True
        os.write(self._w, b"x")

    def read(self):
        os.read(self._r, 1)
        if self.fail:
            raise OSError(19, "No such device")
        return iter(self._batches.pop(0))

    def close(self):
        if not self.closed:
            self.closed = True
            os.close(self._r)
            os.close(self._w)


def key(code, value):
    return InputEvent(0, 0, ecodes.EV_KEY, code, value)


def wheel(value):
    return InputEvent(0, 0, ecodes.EV_REL, ecodes.REL_WHEEL, value)


def _start(source, sink):
    stop = threading.Event()
    thread = threading.Thread(target=source.run, args=(sink, stop.is_set), daemon=True)
    thread.start()
    return thread


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _capture(*batches):
    device = FakeDevice()
    for batch in batches:
        device.feed(*batch)
    source = EvdevEventSource(devices=[device])
    events = []
    thread = _start(source, lambda name, pressed: events.append((name, pressed)))
    assert _wait_for(lambda: not device._batches)
    source.close()
    thread.join(1.0)
    assert not thread.is_alive()
    return events, source, device


def test_key_press_and_release_ignoring_repeat():
    events, source, device = _capture(
        [key(ecodes.KEY_LEFTCTRL, 1), key(ecodes.KEY_LEFTCTRL, 2)],
        [key(ecodes.KEY_LEFTCTRL, 0)],
    )
    assert events == [("LEFTCTRL", True), ("LEFTCTRL", False)]
    assert source.state is SourceState.CLOSED
    assert source.error is None
    assert device.closed


def test_navigation_key_uses_special_name():
    events, _, _ = _capture([key(ecodes.KEY_PAGEUP, 1), key(ecodes.KEY_PAGEUP, 0)])
    assert events == [("PAGE UP", True), ("PAGE UP", False)]


def test_mouse_buttons():
    events, _, _ = _capture([
        key(ecodes.BTN_LEFT, 1),
        key(ecodes.BTN_SIDE, 1),
        key(ecodes.BTN_SIDE, 0),
        key(ecodes.BTN_LEFT, 0),
    ])
    assert events == [
        ("MOUSE LEFT CLICK", True),
        (UNKNOWN_MOUSE_BUTTON, True),
        (UNKNOWN_MOUSE_BUTTON, False),
        ("MOUSE LEFT CLICK", False),
    ]


def test_wheel_is_press_then_release():
    events, _, _ = _capture([wheel(1), wheel(-2)])
    assert events == [
        ("MOUSE SCROLL UP", True),
        ("MOUSE SCROLL UP", False),
        ("MOUSE SCROLL DOWN", True),
        ("MOUSE SCROLL DOWN", False),
    ]


def test_noise_is_dropped():
    events, _, _ = _capture([
        InputEvent(0, 0, ecodes.EV_SYN, ecodes.SYN_REPORT, 0),
        key(ecodes.BTN_TOUCH, 1),
        key(0x2F0, 1),
        InputEvent(0, 0, ecodes.EV_REL, ecodes.REL_X, 5),
    ])
    assert events == []


def test_chord_through_active_key_set():
    rendered = []
    keys = ActiveKeySet(rendered.append)
    device = FakeDevice()
    device.feed(key(ecodes.KEY_LEFTCTRL, 1))
    device.feed(key(ecodes.KEY_LEFTSHIFT, 1))
    device.feed(key(ecodes.KEY_A, 1))
    source = EvdevEventSource(devices=[device])
    thread = _start(source, keys.apply)
    assert _wait_for(lambda: len(rendered) == 3)
    source.close()
    thread.join(1.0)
    assert rendered == ["LEFTCTRL", "LEFTCTRL + LEFTSHIFT", "A + LEFTCTRL + LEFTSHIFT"]


def test_close_interrupts_idle_wait_quickly():
    device = FakeDevice()
    source = EvdevEventSource(devices=[device])
    thread = _start(source, lambda *a: None)
    assert _wait_for(lambda: source.state is SourceState.CONNECTED)

    started = time.monotonic()
    source.close()
    source.close()
    thread.join(1.0)
    assert not thread.is_alive()
    assert time.monotonic() - started < 1.0
    assert source.state is SourceState.CLOSED
    assert device.closed


def test_no_devices_is_an_open_failure():
    source = EvdevEventSource(devices=[])
    source.run(lambda *a: None, lambda: False)
    assert source.state is SourceState.CLOSED
    assert source.error is not None
    assert "input" in str(source.error)


def test_unplugged_last_device_ends_run():
    device = FakeDevice()
    source = EvdevEventSource(devices=[device])
    thread = _start(source, lambda *a: None)
    assert _wait_for(lambda: source.state is SourceState.CONNECTED)
    device.unplug()
    thread.join(2.0)
    assert not thread.is_alive()
    assert source.state is SourceState.CLOSED
    assert "disconnected" in str(source.error)
    assert device.closed


def test_close_before_run_returns_immediately():
    device = FakeDevice()
    device.feed(key(ecodes.KEY_A, 1))
    source = EvdevEventSource(devices=[device])
    source.close()
    events = []
    source.run(lambda name, pressed: events.append(name), lambda: False)
    assert events == []
    assert source.state is SourceState.CLOSED


def test_source_runs_only_once():
    source = EvdevEventSource(devices=[])
    source.run(lambda *a: None, lambda: False)
    with pytest.raises(RuntimeError):
        source.run(lambda *a: None, lambda: False)


def test_evdev_names():
    names = evdev_key_names()
    assert names.resolve(ecodes.KEY_PAGEDOWN) == "PAGE DOWN"
    assert names.resolve(ecodes.KEY_HOME) == "HOME"
    assert names.resolve(ecodes.KEY_END) == "END"
    assert names.resolve(ecodes.KEY_LEFTCTRL) == "LEFTCTRL"
    assert names.resolve(ecodes.KEY_A) == "A"
    assert names.resolve(ecodes.KEY_MUTE) == "MUTE"
    assert names.resolve(0x2F0) is None


def test_open_error_closes_devices_and_is_reported(monkeypatch):
    device = FakeDevice()
    source = EvdevEventSource(devices=[device])

    def no_fds():
        raise OSError(24, "Too many open files")

    monkeypatch.setattr(os, "pipe", no_fds)
    source.run(lambda *a: None, lambda: False)
    assert source.state is SourceState.CLOSED
    assert "Too many open files" in str(source.error)
    assert device.closed


def test_discovery_skips_devices_that_fail_to_report(monkeypatch):
    class BrokenDevice:
        closed = False

        def __init__(self, path):
            self.path = path

        def capabilities(self):
            raise OSError(19, "No such device")

        def close(self):
            self.closed = True

    opened = []

    def open_device(path):
        dev = BrokenDevice(path)
        opened.append(dev)
        return dev

    monkeypatch.setattr(evdev, "list_devices", lambda: ["/dev/input/event7"])
    monkeypatch.setattr(evdev, "InputDevice", open_device)
    source = EvdevEventSource()
    source.run(lambda *a: None, lambda: False)
    assert source.state is SourceState.CLOSED
    assert "input" in str(source.error)
    assert [dev.closed for dev in opened] == [True]
