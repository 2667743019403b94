"""Command-line handling for the server side."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from .packet import parse_port_range

DEFAULT_SHELL = "/bin/sh"
_OPTSTRING = "@:i:p:c:svl:"
_IPV6_PREFIX = "::ffff:"


class UsageError(Exception):
    """The command line cannot be used; carries the usage text to show."""

    def __init__(self, message: str, usage: str = "") -> None:
        super().__init__(message)
        self.usage = usage


@dataclass
class ServerOptions:
    """Everything the server learns from its command line and environment."""

    desired_ip: str | None = None
    desired_port: str | None = None
    command_path: str = ""
    command_argv: list[str] = field(default_factory=list)
    colors: int = 0
    verbose: int = 0
    with_motd: bool = False
    locale_vars: list[str] = field(default_factory=list)
    show_help: bool = False
    show_version: bool = False
    warnings: list[str] = field(default_factory=list)


def server_usage(argv0: str) -> str:
    """The usage line for the server."""
    return (
        f"Usage: {argv0} new [-s] [-v] [-i LOCALADDR] [-p PORT[:PORT2]] "
        "[-c COLORS] [-l NAME=VALUE] [-- COMMAND...]\n"
    )


def ssh_interface_ip(ssh_connection: str | None) -> str:
    """The local address from an SSH_CONNECTION value, or "" for any interface."""
    if ssh_connection is None:
        print("Warning: SSH_CONNECTION not found; binding to any interface.", file=sys.stderr)
        return ""
    fields = ssh_connection.split()
    if len(fields) < 3:
        print("Warning: Could not parse SSH_CONNECTION; binding to any interface.", file=sys.stderr)
        return ""
    local = fields[2]
    if len(local) > len(_IPV6_PREFIX) and local[: len(_IPV6_PREFIX)].lower() == _IPV6_PREFIX:
        return local[len(_IPV6_PREFIX):]
    return local


def login_shell_command(shell: str) -> tuple[str, list[str]]:
    """The path and argv that start ``shell`` as a login shell."""
    path = shell or DEFAULT_SHELL
    name = path.rsplit("/", 1)[-1]
    return path, ["-" + name]


def _parse_int(text: str) -> int:
    try:
        return int(text.strip() or "0", 10)
    except ValueError:
        raise ValueError(text) from None


def _getopt(args: Sequence[str]):
    """Yield (option, argument) pairs; unknown or incomplete options give '?'."""
    index = 0
    while index < len(args):
        arg = args[index]
        index += 1
        if arg == "--":
            return
        if not arg.startswith("-") or arg == "-":
            continue
        pos = 1
        while pos < len(arg):
            letter = arg[pos]
            pos += 1
            spot = _OPTSTRING.find(letter)
            if letter == ":" or spot < 0:
                yield "?", letter
                continue
            if spot + 1 < len(_OPTSTRING) and _OPTSTRING[spot + 1] == ":":
                if pos < len(arg):
                    yield letter, arg[pos:]
                elif index < len(args):
                    yield letter, args[index]
                    index += 1
                else:
                    yield "?", letter
                break
            yield letter, None


def _default_shell(environ: Mapping[str, str]) -> str:
    shell = environ.get("SHELL")
    if shell is None:
        import pwd

        shell = pwd.getpwuid(os.getuid()).pw_shell
    return shell


def parse_server_args(argv: Sequence[str], environ: Mapping[str, str]) -> ServerOptions:
    """Interpret the server's argv (including argv[0]) and environment."""
    if not argv:
        raise UsageError("empty argument list")
    argv0 = argv[0]
    usage = server_usage(argv0)
    opts = ServerOptions()

    args = list(argv)
    command_argv: list[str] | None = None
    for i, arg in enumerate(args[1:], start=1):
        if arg in ("--help", "-h"):
            opts.show_help = True
            return opts
        if arg == "--version":
            opts.show_version = True
            return opts
        if arg == "--":
            if i != len(args) - 1:
                command_argv = args[i + 1:]
            args = args[:i]
            break

    if len(args) >= 2 and args[1] == "new":
        for letter, value in _getopt(args[2:]):
            if letter == "@":
                continue
            if letter == "i":
                opts.desired_ip = value
            elif letter == "p":
                opts.desired_port = value
            elif letter == "s":
                local = ssh_interface_ip(environ.get("SSH_CONNECTION"))
                opts.desired_ip = local or None
            elif letter == "c":
                try:
                    opts.colors = _parse_int(value)
                except ValueError:
                    raise UsageError(f"{argv0}: Bad number of colors ({value})", usage) from None
            elif letter == "v":
                opts.verbose += 1
            elif letter == "l":
                opts.locale_vars.append(value)
            else:
                opts.warnings.append(usage)
    elif len(args) == 1:
        pass
    elif len(args) == 2:
        opts.desired_ip = args[1]
    elif len(args) == 3:
        opts.desired_ip = args[1]
        opts.desired_port = args[2]
    else:
        raise UsageError(usage.rstrip("\n"), usage)

    if opts.desired_port is not None:
        try:
            parse_port_range(opts.desired_port)
        except ValueError as exc:
            raise UsageError(f"{argv0}: Bad UDP port range ({opts.desired_port})", usage) from exc

    if command_argv is None:
        opts.command_path, opts.command_argv = login_shell_command(_default_shell(environ))
        opts.with_motd = True
    else:
        opts.command_argv = command_argv
        opts.command_path = command_argv[0]

    return opts