# sspnet

`sspnet` holds the building blocks of a remote terminal link over UDP:
a datagram connection that tracks round-trip time and lets the client
roam, a way to split an encoded instruction into MTU-sized fragments
and put it back together, and the command-line and start-up helpers a
server and a client need. It runs on POSIX systems and uses only the
standard library.

## Modules

| Module | Contents |
| --- | --- |
| `sspnet.compressor` | `compress`, `uncompress`: zlib with a 4 MiB limit on either side |
| `sspnet.fragment` | `Instruction`, `Fragment`, `Fragmenter`, `FragmentAssembly` |
| `sspnet.packet` | `Packet`, `Direction`, `NetworkError`, `timestamp`, `freeze_timestamp`, `timestamp16`, `timestamp_diff`, `parse_port_range` |
| `sspnet.connection` | `Connection`, the abstract `Session` and `PlainSession` |
| `sspnet.serveropts` | `parse_server_args`, `ServerOptions`, `UsageError`, `ssh_interface_ip`, `login_shell_command`, `server_usage` |
| `sspnet.clientopts` | `parse_client_args`, `ClientOptions`, `client_usage` |
| `sspnet.serverconfig` | `timeout_from_env`, `initial_window_size`, `connect_message`, `idle_message` |
| `sspnet.session` | `child_environment`, `chdir_homedir`, `motd_hushed`, `print_motd`, `find_unattached_sessions`, `unattached_sessions_message`, `utmp_entry` |

## Compression

```python
from sspnet.compressor import compress, uncompress

blob = compress(b"hello, terminal")
assert uncompress(blob) == b"hello, terminal"
```

`uncompress` raises `ValueError` for damaged or truncated input and for
output larger than `BUFFER_SIZE` bytes.

## Instructions and fragments

An `Instruction` says "go from state `old_num` to state `new_num` by
applying `diff`", and also carries an acknowledgement number, the
oldest state the receiver still needs (`throwaway_num`), a protocol
version and some chaff. `Fragmenter.make_fragments` compresses an
instruction and cuts it into fragments that fit a given payload size;
each fragment carries a 64-bit instruction id, its number and a flag on
the last one. A `FragmentAssembly` collects fragments and says when an
instruction is complete.

```python
from sspnet.fragment import Fragment, FragmentAssembly, Fragmenter, Instruction

inst = Instruction(protocol_version=2, old_num=0, new_num=1, diff=b"typed text")
fragments = Fragmenter().make_fragments(inst, 1200)

assembly = FragmentAssembly()
for frag in fragments:
    complete = assembly.add_fragment(Fragment.from_bytes(frag.to_bytes()))
assert complete
assert assembly.get_assembly() == inst
```

A `Fragmenter` gives a new id whenever the instruction (other than its
diff) or the payload size changes; sending the same state numbers with
a different diff raises `ValueError`. `Fragmenter.last_ack_sent()`
returns the ack number of the last instruction it fragmented.

## Packets and time

`Packet.to_message()` returns a nonce (direction in the top bit,
sequence number below) and a body of two big-endian 16-bit timestamps
followed by the payload; `Packet.from_message(nonce, text)` reverses it.
Sequence numbers come from a process-wide counter.

`timestamp()` returns a millisecond clock reading that stays fixed
until `freeze_timestamp()` takes a new one. `timestamp16()` is that
reading modulo 65536, never 0xFFFF (which marks "no timestamp"), and
`timestamp_diff(new, old)` subtracts two such values across wrap-around.

`parse_port_range` accepts `"PORT"` or `"LOW:HIGH"`:

```python
from sspnet.packet import parse_port_range

assert parse_port_range("60001:60999") == (60001, 60999)
assert parse_port_range("4000") == (4000, 4000)
```

Ports must lie in 0..65535, the low port must not exceed the high one,
and a range may not start at 0; otherwise `ValueError` is raised.

## Connections

`Connection.server(desired_ip, desired_port, session)` binds to the
first free port of the range (60001–60999 by default), trying
`desired_ip` first and then every interface. `Connection.client(ip,
port, session)` takes a numeric address and port. Both sockets are
non-blocking: wait on `fds()` and then call `recv()`, which returns the
payload of the first waiting datagram or raises `NetworkError`.

```python
import select

from sspnet.connection import Connection, PlainSession

with Connection.server("127.0.0.1", "60001:60999", PlainSession()) as server:
    with Connection.client("127.0.0.1", server.port(), PlainSession()) as client:
        client.send(b"hello")
        select.select(server.fds(), [], [], 1.0)
        assert server.recv() == b"hello"
```

The server learns its peer from the datagrams it receives and follows
the client when its address changes; if it hears nothing for 40 seconds
it stops sending. A client that has had no round trip for 10 seconds
(reported with `set_last_roundtrip_success`) opens a fresh socket on
its next send, keeping at most ten old ones for a while. Round-trip
samples from echoed timestamps feed a smoothed estimate, and
`timeout()` gives the retransmission timeout from it, between 50 and
1000 ms. Send failures are kept in `send_error` rather than raised.

## Command lines

`parse_server_args(argv, environ)` reads `new [-s] [-v] [-i LOCALADDR]
[-p PORT[:PORT2]] [-c COLORS] [-l NAME=VALUE] [-- COMMAND...]` as well
as the older `[IP [PORT]]` form. Without a command after `--` it starts
the user's shell (`SHELL`, or the password database) as a login shell.

```python
from sspnet.serveropts import parse_server_args

opts = parse_server_args(["server", "new", "-c", "256", "-p", "60001"], {"SHELL": "/bin/zsh"})
assert (opts.colors, opts.desired_port) == (256, "60001")
assert (opts.command_path, opts.command_argv, opts.with_motd) == ("/bin/zsh", ["-zsh"], True)
```

`parse_client_args(argv, environ)` reads `[-# 'ARGS'] [-v] IP PORT` or
`-c`, takes the key from `SSP_KEY` (and removes it from a mutable
mapping), and the prediction settings from `SSP_PREDICTION_DISPLAY` and
`SSP_PREDICTION_OVERWRITE`. Both functions raise `UsageError`, whose
`usage` attribute holds the text to show; `--help` and `--version` only
set `show_help` or `show_version`.

## Server start-up helpers

`timeout_from_env` turns an idle-timeout variable into seconds,
`initial_window_size(fd)` reads the terminal size (80×24 when unknown),
`connect_message(port, key)` builds the `SSP CONNECT` line and
`idle_message` the idle shutdown notice. In `sspnet.session`,
`child_environment` sets `TERM` and `NCURSES_NO_UTF8_ACS` and drops
`STY`; `chdir_homedir`, `motd_hushed` and `print_motd` handle the
login greeting; `find_unattached_sessions`, `unattached_sessions_message`
and `utmp_entry` deal with utmp records of detached sessions.

## What this package does not do

- It has no sender or receiver that keeps two states in step: nothing
  here decides when to send a diff or an acknowledgement, keeps the
  history of numbered states, or runs an orderly shutdown. It has no
  terminal emulator or state objects to synchronise either.
- It installs no programs. The option parsers and start-up helpers
  return values; detaching, forking a pseudo-terminal, starting the
  child and running an event loop are left to the caller.
- `PlainSession` does not encrypt or authenticate; it only prefixes
  each datagram with its nonce. Real sealing needs a `Session`
  subclass.
- The encoding of `Instruction` is this package's own binary layout.