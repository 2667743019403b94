"""Datagram packets, millisecond timestamps and port-range parsing."""

from __future__ import annotations

import itertools
import os
import re
import struct
import time
from dataclasses import dataclass, field
from enum import IntEnum

DIRECTION_MASK = 1 << 63
SEQUENCE_MASK = ((1 << 64) - 1) ^ DIRECTION_MASK
UINT16_MAX = (1 << 16) - 1

_TIMESTAMPS = struct.Struct(">HH")
_sequence = itertools.count()
_frozen: int | None = None


class NetworkError(Exception):
    """A failure in the network layer, naming the failed call and its errno."""

    def __init__(self, function: str = "<none>", errno: int = 0) -> None:
        self.function = function
        self.errno = errno
        super().__init__(f"{function}: {os.strerror(errno)}")


class Direction(IntEnum):
    """Which way a packet travels."""

    TO_SERVER = 0
    TO_CLIENT = 1


def _next_seq() -> int:
    return next(_sequence)


@dataclass
class Packet:
    """A sequenced datagram carrying two 16-bit timestamps and a payload."""

    direction: Direction
    timestamp: int
    timestamp_reply: int
    payload: bytes
    seq: int = field(default_factory=_next_seq)

    def to_message(self) -> tuple[int, bytes]:
        """Return the nonce and the plaintext body for this packet."""
        nonce = (int(self.direction == Direction.TO_CLIENT) << 63) | (self.seq & SEQUENCE_MASK)
        text = _TIMESTAMPS.pack(self.timestamp & UINT16_MAX, self.timestamp_reply & UINT16_MAX)
        return nonce, text + bytes(self.payload)

    @classmethod
    def from_message(cls, nonce: int, text: bytes) -> Packet:
        """Rebuild a packet from a nonce and the body made by to_message()."""
        text = bytes(text)
        if len(text) < _TIMESTAMPS.size:
            raise ValueError("packet too short")
        ts, ts_reply = _TIMESTAMPS.unpack_from(text)
        direction = Direction.TO_CLIENT if nonce & DIRECTION_MASK else Direction.TO_SERVER
        return cls(direction, ts, ts_reply, text[_TIMESTAMPS.size:], seq=nonce & SEQUENCE_MASK)


def freeze_timestamp() -> int:
    """Take a fresh reading of the millisecond clock and keep it."""
    global _frozen
    _frozen = int(time.monotonic() * 1000)
    return _frozen


def timestamp() -> int:
    """The last frozen millisecond clock reading, taking one if none exists."""
    if _frozen is None:
        return freeze_timestamp()
    return _frozen


def timestamp16() -> int:
    """The clock modulo 65536, never equal to the reserved value 0xFFFF."""
    ts = timestamp() % 65536
    if ts == UINT16_MAX:
        ts = 0
    return ts


def timestamp_diff(tsnew: int, tsold: int) -> int:
    """Difference between two 16-bit timestamps, allowing for wrap-around."""
    return (tsnew - tsold) % 65536


_STRTOL = re.compile(r"\s*([+-]?\d+)")


def _strtol(text: str) -> tuple[int, str]:
    match = _STRTOL.match(text)
    if match is None:
        return 0, text
    return int(match.group(1)), text[match.end():]


def parse_port_range(spec: str) -> tuple[int, int]:
    """Parse "PORT" or "LOW:HIGH" into a (low, high) pair."""
    value, rest = _strtol(spec)
    if abs(value) > (1 << 63) - 1 or (rest and not rest.startswith(":")):
        raise ValueError(f"Invalid (low) port number ({spec})")
    if not 0 <= value <= 65535:
        raise ValueError(f"(Low) port number {value} outside valid range [0..65535]")
    low = value
    if not rest:
        return low, low

    high_text = rest[1:]
    value, rest = _strtol(high_text)
    if abs(value) > (1 << 63) - 1 or rest:
        raise ValueError(f"Invalid high port number ({high_text})")
    if not 0 <= value <= 65535:
        raise ValueError(f"High port number {value} outside valid range [0..65535]")
    high = value
    if low > high:
        raise ValueError(f"Low port {low} greater than high port {high}")
    if low == 0:
        raise ValueError("Low port 0 incompatible with port ranges")
    return low, high