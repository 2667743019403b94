"""Command-line handling for the client side."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass

from .serveropts import UsageError

KEY_VARIABLE = "SSP_KEY"
PREDICTION_DISPLAY_VARIABLE = "SSP_PREDICTION_DISPLAY"
PREDICTION_OVERWRITE_VARIABLE = "SSP_PREDICTION_OVERWRITE"

VERSION_TEXT = (
    "sspnet-client\n"
    "This is free software: you are free to change and redistribute it.\n"
    "There is NO WARRANTY, to the extent permitted by law.\n"
)

_OPTSTRING = "#:cv"


@dataclass
class ClientOptions:
    """What the client learns from its command line and environment."""

    ip: str = ""
    port: str = ""
    key: str = ""
    predict_mode: str | None = None
    predict_overwrite: str | None = None
    verbose: int = 0
    show_help: bool = False
    show_version: bool = False
    show_colors: bool = False


def client_usage(argv0: str) -> str:
    """Version text followed by the usage lines for the client."""
    return VERSION_TEXT + f"\nUsage: {argv0} [-# 'ARGS'] IP PORT\n       {argv0} -c\n"


def _scan(args: Sequence[str]) -> tuple[list[tuple[str, str | None]], list[str]]:
    """Split args into options, in order, and operands, as a permuting getopt does."""
    options: list[tuple[str, str | None]] = []
    operands: list[str] = []
    index = 0
    while index < len(args):
        arg = args[index]
        index += 1
        if arg == "--":
            operands.extend(args[index:])
            break
        if not arg.startswith("-") or arg == "-":
            operands.append(arg)
            continue
        pos = 1
        while pos < len(arg):
            letter = arg[pos]
            pos += 1
            spot = _OPTSTRING.find(letter)
            if letter == ":" or spot < 0:
                options.append(("?", f"invalid option -- '{letter}'"))
                continue
            if spot + 1 < len(_OPTSTRING) and _OPTSTRING[spot + 1] == ":":
                if pos < len(arg):
                    options.append((letter, arg[pos:]))
                elif index < len(args):
                    options.append((letter, args[index]))
                    index += 1
                else:
                    options.append(("?", f"option requires an argument -- '{letter}'"))
                break
            options.append((letter, None))
    return options, operands


def parse_client_args(argv: Sequence[str], environ: Mapping[str, str]) -> ClientOptions:
    """Interpret the client's argv (including argv[0]) and environment.

    The key variable is removed from ``environ`` when it can be modified.
    """
    if not argv:
        raise UsageError("empty argument list")
    argv0 = argv[0]
    usage = client_usage(argv0)
    opts = ClientOptions()

    for arg in argv[1:]:
        if arg == "--help":
            opts.show_help = True
            return opts
        if arg == "--version":
            opts.show_version = True
            return opts

    options, operands = _scan(argv[1:])
    for letter, value in options:
        if letter == "#":
            continue
        if letter == "c":
            opts.show_colors = True
            return opts
        if letter == "v":
            opts.verbose += 1
        else:
            raise UsageError(f"{argv0}: {value}", usage)

    if len(operands) != 2:
        raise UsageError(usage.rstrip("\n"), usage)
    opts.ip, opts.port = operands

    if any(ch not in "0123456789" for ch in opts.port):
        raise UsageError(f"{argv0}: Bad UDP port ({opts.port})", usage)

    key = environ.get(KEY_VARIABLE)
    if key is None:
        raise UsageError(f"{KEY_VARIABLE} environment variable not found.")
    opts.key = key

    opts.predict_mode = environ.get(PREDICTION_DISPLAY_VARIABLE)
    opts.predict_overwrite = environ.get(PREDICTION_OVERWRITE_VARIABLE)

    if isinstance(environ, MutableMapping):
        environ.pop(KEY_VARIABLE, None)

    return opts