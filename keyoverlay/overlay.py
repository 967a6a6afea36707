"""Terminal overlay that shows the current key combination.

Uses curses; on Windows that needs the ``windows-curses`` package.
"""

import curses
import logging
import shutil
import subprocess
import sys
from typing import Optional

log = logging.getLogger(__name__)


class TerminalOverlay:
    """Draw one line of text centered on a curses window.

    The caller is responsible for serialising calls to :meth:`display`
    (``ActiveKeySet`` holds its lock while rendering).
    """

    def __init__(self, screen, attr: int = 0):
        self._screen = screen
        self._attr = attr

    @classmethod
    def setup(cls, screen) -> "TerminalOverlay":
        """Configure a fresh ``curses.wrapper`` screen for the overlay."""
        try:
            curses.curs_set(0)
        except curses.error:
            pass  # terminal can't hide the cursor
        screen.nodelay(True)

        attr = 0
        if curses.has_colors():
            curses.init_pair(1, curses.COLOR_WHITE, curses.COLOR_BLACK)
            attr = curses.color_pair(1)
        screen.bkgd(" ", attr)
        return cls(screen, attr)

    def display(self, text: str) -> None:
        """Clear the screen and write *text* in the middle of it."""
        height, width = self._screen.getmaxyx()
        # Writing into the bottom-right cell makes curses raise.
        text = text[: max(width - 1, 0)]
        y = max(height // 2, 0)
        x = max((width - len(text)) // 2, 0)

        self._screen.erase()
        if text:
            try:
                self._screen.addstr(y, x, text, self._attr)
            except curses.error:
                log.debug("Terminal too small to draw %d characters", len(text))
        self._screen.refresh()

    def poll_key(self) -> Optional[int]:
        """Return the pending key code, or None if nothing was typed."""
        ch = self._screen.getch()
        return None if ch == -1 else ch


# ── Always on top ─────────────────────────────────────────────

_HWND_TOPMOST = -1
_SWP_NOSIZE = 0x0001
_SWP_NOMOVE = 0x0002


def _windows_keep_on_top() -> None:
    import ctypes

    hwnd = ctypes.windll.kernel32.GetConsoleWindow()  # type: ignore[attr-defined]
    if not hwnd:
        log.debug("No console window to raise")
        return
    ctypes.windll.user32.SetWindowPos(  # type: ignore[attr-defined]
        hwnd, _HWND_TOPMOST, 0, 0, 0, 0, _SWP_NOMOVE | _SWP_NOSIZE,
    )


def _linux_keep_on_top() -> None:
    wmctrl = shutil.which("wmctrl")
    if not wmctrl:
        log.info("wmctrl not found, overlay will not stay on top")
        return
    subprocess.run(
        [wmctrl, "-r", ":ACTIVE:", "-b", "add,above"],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=False,
        timeout=2,
    )


def keep_on_top() -> None:
    """Ask the window manager to keep the terminal above other windows.

    Best effort: failures are logged and otherwise ignored.
    """
    try:
        if sys.platform == "win32":
            _windows_keep_on_top()
        elif sys.platform == "linux":
            _linux_keep_on_top()
    except (OSError, subprocess.SubprocessError) as e:
        log.warning("Could not keep the overlay on top: %s", e)
