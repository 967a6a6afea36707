"""Configuration management for keyoverlay.

Settings come from an optional JSON file and are overridden by command
line flags.  keyoverlay only reads the file; it never writes one.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

BACKENDS = ("auto", "evdev", "pynput")


def _config_dir() -> Path:
    """Get platform-appropriate config directory."""
    import platform
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif platform.system() == "Darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "keyoverlay"


CONFIG_FILE = _config_dir() / "config.json"


@dataclass
class AppConfig:
    backend: str = "auto"            # auto | evdev | pynput
    clear_on_release: bool = False   # blank the overlay once every key is up
    always_on_top: bool = True
    poll_interval: float = 0.1       # seconds between quit-key polls

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {', '.join(BACKENDS)}, not {self.backend!r}")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "AppConfig":
        """Load config from disk, or return defaults."""
        path = Path(path) if path is not None else CONFIG_FILE
        if not path.exists():
            return cls()
        try:
            with open(path, "r") as f:
                data = json.load(f)
            # Filter to only known fields
            known = {f.name for f in fields(cls)}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        except (OSError, json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            log.warning("Ignoring unusable config file %s: %s", path, e)
        return cls()

    def with_overrides(self, **overrides) -> "AppConfig":
        """Copy with every non-None override applied (CLI flags)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)
