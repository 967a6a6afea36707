"""Entry point for keyoverlay: python -m keyoverlay"""

import argparse
import logging
import logging.handlers
import sys

from keyoverlay.config import BACKENDS, AppConfig

# Records are held back while curses owns the terminal.
_LOG_BUFFER_CAPACITY = 10000


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="keyoverlay",
        description="Show the keys and mouse buttons you are holding, "
                    "centered in this terminal. Press q to quit.",
    )
    parser.add_argument("--backend", choices=BACKENDS, default=None,
                        help="input capture backend (default: auto)")
    parser.add_argument("--clear-on-release", action="store_true", default=None,
                        help="blank the overlay when every key is released")
    parser.add_argument("--no-on-top", dest="always_on_top", action="store_false",
                        default=None, help="don't ask the window manager to keep "
                                           "the terminal on top")
    parser.add_argument("--config", default=None,
                        help="path to a JSON config file")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="log debug messages")
    return parser.parse_args(argv)


def _setup_logging(verbose: bool) -> logging.handlers.MemoryHandler:
    """Buffer log records until the terminal is ours again."""
    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    buffer = logging.handlers.MemoryHandler(
        _LOG_BUFFER_CAPACITY,
        flushLevel=logging.CRITICAL + 1,
        target=stream,
    )
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.addHandler(buffer)
    return buffer


def main(argv=None):
    args = _parse_args(argv)
    buffer = _setup_logging(args.verbose)
    try:
        config = AppConfig.load(args.config).with_overrides(
            backend=args.backend,
            clear_on_release=args.clear_on_release,
            always_on_top=args.always_on_top,
        )
        from keyoverlay.app import KeyOverlayApp
        app = KeyOverlayApp(config)
        status = app.run()
    finally:
        buffer.flush()
    raise SystemExit(status)


if __name__ == "__main__":
    main()
