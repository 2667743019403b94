"""Preparing the child session: environment, home directory, motd and detached-session notices."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import BinaryIO

DEFAULT_TERM = "xterm"
COLOR_TERM = "xterm-256color"

ENTRY_PREFIX = "ssp "
USER_PROCESS = 7
"""utmp record type of a normal user session."""

_UTMP_ENTRY_LIMIT = 64
_NI_MAXHOST = 1025
_MOTD_CHUNK = 256

_HIGHLIGHT = "\033[37;44m"
_RESET = "\033[m"


def child_environment(environ: Mapping[str, str], colors: int) -> dict[str, str]:
    """The environment for the session's child process, derived from ``environ``.

    TERM is chosen from the colour count, line-drawing characters are
    requested as UTF-8, and STY is cleared so screen sees a top-level session.
    """
    env = dict(environ)
    env["TERM"] = COLOR_TERM if colors == 256 else DEFAULT_TERM
    env["NCURSES_NO_UTF8_ACS"] = "1"
    env.pop("STY", None)
    return env


def _password_home() -> str | None:
    import pwd

    try:
        return pwd.getpwuid(os.getuid()).pw_dir
    except KeyError as exc:
        print(f"getpwuid: {exc}", file=sys.stderr)
        return None


def chdir_homedir(environ: MutableMapping[str, str]) -> str | None:
    """Change to the home directory and record it as PWD in ``environ``.

    Failures are reported and not fatal; returns the home directory used,
    or None when none could be found.
    """
    home = environ.get("HOME")
    if home is None:
        home = _password_home()
        if home is None:
            return None
    try:
        os.chdir(home)
    except OSError as exc:
        print(f"chdir: {exc.strerror}", file=sys.stderr)
    environ["PWD"] = home
    return home


def motd_hushed(directory: str | os.PathLike[str] = ".") -> bool:
    """True when ``directory`` holds a .hushlogin file (of any kind)."""
    try:
        os.lstat(os.path.join(directory, ".hushlogin"))
    except OSError:
        return False
    return True


def print_motd(path: str | os.PathLike[str], out: BinaryIO) -> bool:
    """Copy the file at ``path`` to ``out``; False when it cannot be opened."""
    try:
        motd = open(path, "rb")
    except OSError:
        return False
    with motd:
        while True:
            try:
                chunk = motd.read(_MOTD_CHUNK)
            except OSError:
                break
            if not chunk:
                break
            if not out.write(chunk):
                break
    return True


def _device_exists(line: str) -> bool:
    try:
        os.lstat("/dev/" + line)
    except OSError:
        return False
    return True


def find_unattached_sessions(
    entries: Iterable,
    username: str,
    ignore_entry: str,
    device_exists: Callable[[str], bool] | None = None,
) -> list[str]:
    """Host fields of ``username``'s detached sessions among utmp ``entries``.

    Each entry has ``type``, ``user``, ``host`` and ``line`` attributes.
    The session named ``ignore_entry`` is skipped, as are entries whose
    terminal device no longer exists.
    """
    exists = device_exists or _device_exists
    found = []
    for entry in entries:
        if entry.type != USER_PROCESS or entry.user != username:
            continue
        text = entry.host
        if (
            len(text) >= len(ENTRY_PREFIX)
            and text.startswith(ENTRY_PREFIX)
            and text.endswith("]")
            and text != ignore_entry
            and exists(entry.line)
        ):
            found.append(text)
    return found


def unattached_sessions_message(sessions: list[str]) -> str:
    """The warning about detached sessions, or "" when there are none."""
    if not sessions:
        return ""
    if len(sessions) == 1:
        return (
            f"{_HIGHLIGHT}SSP: You have a detached SSP session on this server "
            f"({sessions[0]}).{_RESET}\n\n"
        )
    listing = "".join(f"        - {name}\n" for name in sessions)
    return (
        f"{_HIGHLIGHT}SSP: You have {len(sessions)} detached SSP sessions on this server, "
        f"with PIDs:\n{listing}{_RESET}\n"
    )


def utmp_entry(pid: int, host: str | None = None) -> str:
    """The utmp host field for a session, detached or attached from ``host``."""
    if host is None:
        return f"{ENTRY_PREFIX}[{pid}]"[: _UTMP_ENTRY_LIMIT - 1]
    text = f"{host} via {ENTRY_PREFIX}[{pid}]"
    return text[: _UTMP_ENTRY_LIMIT + _NI_MAXHOST - 1]