"""Display names for key codes and mouse buttons.

Each event source owns two resolvers: one for keyboard codes and one for
mouse buttons.  The code spaces are kept apart because platform key codes
and the mouse pseudo-codes below overlap (evdev ``KEY_ESC`` is 1, macOS
virtual key 1 is ``S``).

Platform tables are built lazily so importing this module never pulls in
a backend that is missing on the current OS.
"""

import logging
import platform
from enum import IntEnum
from typing import Callable, Mapping, Optional

log = logging.getLogger(__name__)

_SYSTEM = platform.system()

UNKNOWN_MOUSE_BUTTON = "Unknown Mouse Button"

NativeLookup = Callable[[int], Optional[str]]


class MouseButton(IntEnum):
    """Mouse pseudo-codes, numbered like X11 core buttons."""
    LEFT = 1
    MIDDLE = 2
    RIGHT = 3
    SCROLL_UP = 4
    SCROLL_DOWN = 5


MOUSE_BUTTON_NAMES: dict[int, str] = {
    MouseButton.LEFT: "MOUSE LEFT CLICK",
    MouseButton.MIDDLE: "MOUSE MIDDLE CLICK",
    MouseButton.RIGHT: "MOUSE RIGHT CLICK",
    MouseButton.SCROLL_UP: "MOUSE SCROLL UP",
    MouseButton.SCROLL_DOWN: "MOUSE SCROLL DOWN",
}


class KeyNameResolver:
    """Map a platform code to display text.

    *special* wins over *native*.  Anything the native lookup cannot name
    (``None``, ``""`` or a lookup error) resolves to ``None`` and callers
    drop the event.
    """

    def __init__(self, special: Mapping[int, str], native: Optional[NativeLookup] = None):
        for code, name in special.items():
            if not name:
                raise ValueError(f"Empty display name for code {code!r}")
        self._special = dict(special)
        self._native = native

    def __contains__(self, code: int) -> bool:
        return code in self._special

    def resolve(self, code: int) -> Optional[str]:
        name = self._special.get(code)
        if name:
            return name
        if self._native is None:
            return None
        try:
            name = self._native(code)
        except (KeyError, ValueError, OSError) as e:
            log.debug("Native name lookup failed for code %s: %s", code, e)
            return None
        return name or None


def button_names() -> KeyNameResolver:
    """Resolver for :class:`MouseButton` pseudo-codes (no native fallback)."""
    return KeyNameResolver(MOUSE_BUTTON_NAMES)


def resolve_button(resolver: KeyNameResolver, code: int) -> str:
    """Like ``resolver.resolve`` but never drops a button."""
    return resolver.resolve(code) or UNKNOWN_MOUSE_BUTTON


# ── evdev (Linux) ─────────────────────────────────────────────

def _evdev_symbol(code: int) -> Optional[str]:
    """``KEY_LEFTCTRL`` → ``LEFTCTRL``; shortest alias wins for shared codes."""
    from evdev import ecodes

    name = ecodes.keys.get(code)
    if isinstance(name, (list, tuple)):
        name = min(name, key=len) if name else None
    if not name:
        return None
    for prefix in ("KEY_", "BTN_"):
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


def evdev_key_names() -> KeyNameResolver:
    from evdev import ecodes

    return KeyNameResolver(
        {
            ecodes.KEY_PAGEUP: "PAGE UP",
            ecodes.KEY_PAGEDOWN: "PAGE DOWN",
            ecodes.KEY_HOME: "HOME",
            ecodes.KEY_END: "END",
        },
        _evdev_symbol,
    )


# ── pynput (Windows / macOS / X11) ────────────────────────────

# Virtual keys that GetKeyNameTextW only names correctly with the
# extended-key bit set (otherwise they come back as numpad keys).
_WIN_EXTENDED_VKS = frozenset({
    0x21, 0x22, 0x23, 0x24,        # PRIOR, NEXT, END, HOME
    0x25, 0x26, 0x27, 0x28,        # arrows
    0x2D, 0x2E,                    # INSERT, DELETE
    0x5B, 0x5C, 0x5D,              # LWIN, RWIN, APPS
    0x6F, 0x90,                    # DIVIDE, NUMLOCK
    0xA3, 0xA5,                    # RCONTROL, RMENU
})


def _windows_key_name(vk: int) -> Optional[str]:
    """Ask ``user32`` for the layout name of *vk*, e.g. ``Ctrl`` or ``A``."""
    import ctypes

    user32 = ctypes.windll.user32  # type: ignore[attr-defined]
    scan = user32.MapVirtualKeyW(vk, 0)  # MAPVK_VK_TO_VSC
    if not scan:
        return None
    lparam = scan << 16
    if vk in _WIN_EXTENDED_VKS:
        lparam |= 1 << 24
    buf = ctypes.create_unicode_buffer(64)
    if user32.GetKeyNameTextW(lparam, buf, len(buf)) == 0:
        return None
    return buf.value


def printable_name(char: Optional[str]) -> Optional[str]:
    """Case-folded *char*, or None for control characters and whitespace."""
    if char and char.isprintable() and not char.isspace():
        return char.lower()
    return None


class PynputSymbols:
    """Symbol names for pynput virtual-key codes on macOS and X11.

    Special keys are named after their ``pynput.keyboard.Key`` member
    (``ctrl_l``, ``shift``).  Printable keys are learned from the
    character pynput reports the first time a code is seen, so a key
    keeps one name for its press and its release even if a modifier
    changes the character in between.

    On X11 the code itself is the keysym, which Shift changes (``a`` is
    0x61, ``A`` is 0x41), so learned characters are stored lower-cased
    and both keysyms of a letter share one name.
    """

    def __init__(self, names: Optional[Mapping[int, str]] = None):
        if names is None:
            from pynput import keyboard

            names = {}
            for member in keyboard.Key:
                vk = getattr(member.value, "vk", None)
                if vk is not None:
                    names.setdefault(vk, member.name)
        self._names = dict(names)

    def learn(self, vk: int, char: Optional[str]) -> None:
        name = printable_name(char)
        if name:
            self._names.setdefault(vk, name)

    def __call__(self, vk: int) -> Optional[str]:
        return self._names.get(vk)


def pynput_key_names(native: Optional[NativeLookup] = None) -> KeyNameResolver:
    """Resolver keyed by pynput virtual-key codes.

    *native* defaults to ``GetKeyNameTextW`` on Windows; elsewhere pass a
    :class:`PynputSymbols` so the source can teach it characters.
    """
    from pynput import keyboard

    if native is None and _SYSTEM == "Windows":
        native = _windows_key_name

    special = {}
    for attr, name in (
        ("page_up", "PAGE UP"),
        ("page_down", "PAGE DOWN"),
        ("home", "HOME"),
        ("end", "END"),
    ):
        member = getattr(keyboard.Key, attr, None)
        vk = getattr(getattr(member, "value", None), "vk", None)
        if vk is not None:
            special[vk] = name
    return KeyNameResolver(special, native)
