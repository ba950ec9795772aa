"""Self-update support for command-line binaries."""

__version__ = "0.1.0"
