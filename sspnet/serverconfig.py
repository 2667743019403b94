"""Server start-up settings: idle timeouts, window size and announcement lines."""

from __future__ import annotations

import fcntl
import re
import struct
import sys
import termios

DEFAULT_COLUMNS = 80
DEFAULT_ROWS = 24

_LONG_MAX = (1 << 63) - 1
_LONG_MIN = -(1 << 63)
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_WINSIZE = struct.Struct("HHHH")


def _strtol(text: str) -> tuple[int, str]:
    match = _LEADING_INT.match(text)
    if match is None:
        return 0, text
    value = min(max(int(match.group(1)), _LONG_MIN), _LONG_MAX)
    return value, text[match.end():]


def timeout_from_env(value: str | None, name: str) -> int:
    """Seconds of idle timeout from an environment value; 0 means none.

    A value with trailing junk is reported and its leading number kept;
    a negative value is reported and ignored.
    """
    if not value:
        return 0
    seconds, rest = _strtol(value)
    if rest:
        print(f"{name} not a valid integer, ignoring", file=sys.stderr)
    elif seconds < 0:
        print(f"{name} is negative, ignoring", file=sys.stderr)
        seconds = 0
    return seconds


def initial_window_size(fd: int) -> tuple[int, int]:
    """The (columns, rows) of the terminal on ``fd``, or 80x24 when unknown."""
    try:
        packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, bytes(_WINSIZE.size))
    except OSError:
        return DEFAULT_COLUMNS, DEFAULT_ROWS
    rows, cols, _, _ = _WINSIZE.unpack(packed)
    if cols == 0 or rows == 0:
        return DEFAULT_COLUMNS, DEFAULT_ROWS
    return cols, rows


def connect_message(port: str, key: str) -> str:
    """The line that tells the launching script where to connect."""
    return f"SSP CONNECT {port} {key}\n"


def idle_message(milliseconds: int, signaled: bool) -> str:
    """The notice printed when the server shuts down for lack of network traffic."""
    seconds = milliseconds // 1000
    if signaled:
        return f"Network idle for {seconds} seconds when SIGUSR1 received\n"
    return f"Network idle for {seconds} seconds.\n"