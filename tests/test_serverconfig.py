import fcntl
import os
import struct
import termios

import pytest

from sspnet.serverconfig import (
    connect_message,
    idle_message,
    initial_window_size,
    timeout_from_env,
)

NAME = "SSP_SERVER_NETWORK_TMOUT"


@pytest.mark.parametrize("value", [None, ""])
def test_timeout_unset(value):
    assert timeout_from_env(value, NAME) == 0


def test_timeout_valid():
    assert timeout_from_env("30", NAME) == 30


def test_timeout_negative_is_ignored(capsys):
    assert timeout_from_env("-5", NAME) == 0
    assert f"{NAME} is negative, ignoring" in capsys.readouterr().err


def test_timeout_not_a_number(capsys):
    assert timeout_from_env("abc", NAME) == 0
    assert f"{NAME} not a valid integer, ignoring" in capsys.readouterr().err


def test_timeout_trailing_junk_reported(capsys):
    assert timeout_from_env("12s", NAME) == 12
    assert "not a valid integer" in capsys.readouterr().err


def test_window_size_of_pipe_defaults():
    read_fd, write_fd = os.pipe()
    try:
        assert initial_window_size(read_fd) == (80, 24)
    finally:
        os.close(read_fd)
        os.close(write_fd)


def test_window_size_of_pty():
    master, slave = os.openpty()
    try:
        fcntl.ioctl(slave, termios.TIOCSWINSZ, struct.pack("HHHH", 30, 100, 0, 0))
        assert initial_window_size(slave) == (100, 30)
    finally:
        os.close(master)
        os.close(slave)


def test_window_size_zero_defaults():
    master, slave = os.openpty()
    try:
        fcntl.ioctl(slave, termios.TIOCSWINSZ, struct.pack("HHHH", 0, 0, 0, 0))
        assert initial_window_size(slave) == (80, 24)
    finally:
        os.close(master)
        os.close(slave)


def test_connect_message():
    assert connect_message("60001", "placeholder") == "SSP CONNECT 60001 placeholder\n"


def test_idle_message():
    assert idle_message(65000, False) == "Network idle for 65 seconds.\n"
    assert idle_message(65999, True) == "Network idle for 65 seconds when SIGUSR1 received\n"