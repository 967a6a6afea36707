"""Show the keys and mouse buttons currently held, in a terminal overlay."""

__version__ = "1.0.0"
