import pytest

from sspnet.serveropts import (
    ServerOptions,
    UsageError,
    login_shell_command,
    parse_server_args,
    server_usage,
    ssh_interface_ip,
)

ENV = {"SHELL": "/usr/bin/zsh"}


def test_help_flag():
    opts = parse_server_args(["mosh-server", "new", "-h"], ENV)
    assert opts.show_help is True
    assert opts.show_version is False


def test_version_flag():
    opts = parse_server_args(["mosh-server", "--version"], ENV)
    assert opts.show_version is True


def test_help_after_double_dash_is_command():
    opts = parse_server_args(["mosh-server", "new", "--", "prog", "--help"], ENV)
    assert opts.show_help is False
    assert opts.command_argv == ["prog", "--help"]


def test_new_syntax_full():
    opts = parse_server_args(
        ["mosh-server", "new", "-i", "192.0.2.1", "-p", "60001", "-c", "256",
         "-v", "-v", "-l", "LANG=C", "--", "cmd", "arg"],
        ENV,
    )
    assert opts.desired_ip == "192.0.2.1"
    assert opts.desired_port == "60001"
    assert opts.colors == 256
    assert opts.verbose == 2
    assert opts.locale_vars == ["LANG=C"]
    assert opts.command_argv == ["cmd", "arg"]
    assert opts.command_path == "cmd"
    assert opts.with_motd is False


def test_clustered_options_and_attached_argument():
    opts = parse_server_args(["mosh-server", "new", "-vv", "-p60005"], ENV)
    assert opts.verbose == 2
    assert opts.desired_port == "60005"


def test_at_option_eats_argument():
    opts = parse_server_args(["mosh-server", "new", "-v", "-@", "new", "-c", "256"], ENV)
    assert opts.verbose == 1
    assert opts.colors == 256


def test_unknown_option_warns_but_continues():
    opts = parse_server_args(["mosh-server", "new", "-x", "-v"], ENV)
    assert opts.verbose == 1
    assert opts.warnings == [server_usage("mosh-server")]


def test_legacy_ip_and_port():
    opts = parse_server_args(["mosh-server", "192.0.2.1", "60001"], ENV)
    assert opts.desired_ip == "192.0.2.1"
    assert opts.desired_port == "60001"


def test_legacy_no_arguments():
    opts = parse_server_args(["mosh-server"], ENV)
    assert opts.desired_ip is None
    assert opts.desired_port is None


def test_legacy_too_many_arguments():
    with pytest.raises(UsageError) as info:
        parse_server_args(["mosh-server", "a", "b", "c"], ENV)
    assert info.value.usage == server_usage("mosh-server")


def test_bad_colors():
    with pytest.raises(UsageError, match="Bad number of colors"):
        parse_server_args(["mosh-server", "new", "-c", "lots"], ENV)


def test_bad_port_range():
    with pytest.raises(UsageError, match=r"Bad UDP port range \(10:5\)"):
        parse_server_args(["mosh-server", "new", "-p", "10:5"], ENV)


def test_default_shell_from_environment():
    opts = parse_server_args(["mosh-server", "new"], ENV)
    assert opts.command_path == "/usr/bin/zsh"
    assert opts.command_argv == ["-zsh"]
    assert opts.with_motd is True


def test_trailing_double_dash_uses_shell():
    opts = parse_server_args(["mosh-server", "new", "--"], ENV)
    assert opts.command_argv == ["-zsh"]


def test_empty_shell_means_bourne_shell():
    assert login_shell_command("") == ("/bin/sh", ["-sh"])


def test_shell_without_slash():
    assert login_shell_command("bash") == ("bash", ["-bash"])


def test_ssh_ip_strips_mapped_prefix():
    assert ssh_interface_ip("198.51.100.7 5555 ::FFFF:192.0.2.9 22") == "192.0.2.9"


def test_ssh_ip_plain():
    assert ssh_interface_ip("198.51.100.7 5555 192.0.2.9 22") == "192.0.2.9"


def test_ssh_ip_missing(capsys):
    assert ssh_interface_ip(None) == ""
    assert "SSH_CONNECTION not found" in capsys.readouterr().err


def test_ssh_ip_unparseable(capsys):
    assert ssh_interface_ip("only two") == ""
    assert "Could not parse" in capsys.readouterr().err


def test_s_option_uses_ssh_connection():
    env = dict(ENV, SSH_CONNECTION="198.51.100.7 5555 192.0.2.9 22")
    opts = parse_server_args(["mosh-server", "new", "-s"], env)
    assert opts.desired_ip == "192.0.2.9"


def test_s_option_without_ssh_connection_binds_any():
    opts = parse_server_args(["mosh-server", "new", "-i", "192.0.2.1", "-s"], ENV)
    assert opts.desired_ip is None


def test_usage_names_program():
    assert server_usage("srv").startswith("Usage: srv new ")


def test_defaults_match_dataclass():
    opts = parse_server_args(["mosh-server", "new"], ENV)
    assert opts.colors == ServerOptions().colors
    assert opts.locale_vars == []