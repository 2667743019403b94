import errno
import os

import pytest

from sspnet.packet import (
    Direction,
    NetworkError,
    Packet,
    freeze_timestamp,
    parse_port_range,
    timestamp,
    timestamp16,
    timestamp_diff,
)


def test_to_message_wire_format():
    nonce, text = Packet(Direction.TO_CLIENT, 1, 2, b"hi", seq=5).to_message()
    assert nonce == (1 << 63) | 5
    assert text == b"\x00\x01\x00\x02hi"


def test_to_server_has_clear_direction_bit():
    nonce, _ = Packet(Direction.TO_SERVER, 0, 0, b"", seq=7).to_message()
    assert nonce == 7


def test_round_trip():
    original = Packet(Direction.TO_CLIENT, 1234, 65535, b"payload", seq=99)
    rebuilt = Packet.from_message(*original.to_message())
    assert rebuilt == original


def test_round_trip_to_server():
    original = Packet(Direction.TO_SERVER, 10, 20, b"", seq=3)
    rebuilt = Packet.from_message(*original.to_message())
    assert rebuilt.direction is Direction.TO_SERVER
    assert rebuilt.payload == b""
    assert rebuilt.seq == 3


def test_short_message_rejected():
    with pytest.raises(ValueError):
        Packet.from_message(0, b"\x00\x01\x02")


def test_sequence_numbers_increase():
    first = Packet(Direction.TO_SERVER, 0, 0, b"")
    second = Packet(Direction.TO_SERVER, 0, 0, b"")
    assert second.seq > first.seq


def test_network_error_message():
    exc = NetworkError("recvmsg", errno.EAGAIN)
    assert str(exc) == "recvmsg: " + os.strerror(errno.EAGAIN)
    assert exc.errno == errno.EAGAIN
    assert exc.function == "recvmsg"


def test_timestamp_is_frozen_until_refreshed():
    first = freeze_timestamp()
    assert timestamp() == first
    assert timestamp() == first
    assert freeze_timestamp() >= first


def test_timestamp16_in_range():
    freeze_timestamp()
    ts = timestamp16()
    assert 0 <= ts < 65535
    assert ts == timestamp() % 65536 or timestamp() % 65536 == 65535


@pytest.mark.parametrize("new,old", [(10, 3), (5, 65535), (0, 0), (65534, 1)])
def test_timestamp_diff_inverts_addition(new, old):
    diff = timestamp_diff(new, old)
    assert 0 <= diff <= 65535
    assert (old + diff) % 65536 == new


def test_single_port():
    assert parse_port_range("60001") == (60001, 60001)


def test_port_range():
    assert parse_port_range("60001:60010") == (60001, 60010)


@pytest.mark.parametrize(
    "spec", ["abc", "70000", "10:5", "0:5", "5:x", "-1", "5:70000", "12a"]
)
def test_bad_port_specs(spec):
    with pytest.raises(ValueError):
        parse_port_range(spec)


def test_low_greater_than_high_message():
    with pytest.raises(ValueError, match="Low port 10 greater than high port 5"):
        parse_port_range("10:5")