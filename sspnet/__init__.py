"""UDP connection, instruction fragmentation and start-up helpers for remote terminal sessions."""

__version__ = "0.1.0"

__all__ = [
    "clientopts",
    "compressor",
    "connection",
    "fragment",
    "packet",
    "serverconfig",
    "serveropts",
    "session",
]