import threading

from keyoverlay.sources import EventSource, EventSourceError


class ScriptedEventSource(EventSource):
    """Replays a fixed list of events, then blocks with no timeout until
    closed, like a platform wait-for-next-event call."""

    name = "scripted"

    def __init__(self, events=(), fail_open=False):
        super().__init__()
        self.events = list(events)
        self.fail_open = fail_open
        self.replayed = threading.Event()
        self.release_count = 0
        self._unblock = threading.Event()
        self._sink = None

    def _open(self, sink):
        if self.fail_open:
            raise EventSourceError("no display")
        self._sink = sink

    def _loop(self, should_stop):
        for name, is_press in self.events:
            self._sink(name, is_press)
        self.replayed.set()
        self._unblock.wait()

    def _release(self):
        self.release_count += 1

    def _interrupt(self):
        self._unblock.set()


class FakeOverlay:
    def __init__(self, keys=()):
        self.rendered = []
        self._keys = list(keys)

    def display(self, text):
        self.rendered.append(text)

    def poll_key(self):
        return self._keys.pop(0) if self._keys else None


class FakeScreen:
    """Just enough of a curses window for TerminalOverlay."""

    def __init__(self, height=24, width=80, fail_addstr=False):
        self.height = height
        self.width = width
        self.fail_addstr = fail_addstr
        self.writes = []
        self.erased = 0
        self.refreshed = 0
        self.pending = []

    def getmaxyx(self):
        return self.height, self.width

    def erase(self):
        self.erased += 1
        self.writes.clear()

    def addstr(self, y, x, text, attr=0):
        import curses

        if self.fail_addstr:
            raise curses.error("addwstr() returned ERR")
        self.writes.append((y, x, text))

    def refresh(self):
        self.refreshed += 1

    def getch(self):
        return self.pending.pop(0) if self.pending else -1
