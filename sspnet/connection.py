"""Datagram connection with roaming, client port hopping and RTT tracking."""

from __future__ import annotations

import errno
import math
import os
import socket
import struct
import sys
from abc import ABC, abstractmethod
from collections import deque

from .packet import (
    Direction,
    NetworkError,
    Packet,
    parse_port_range,
    timestamp,
    timestamp16,
    timestamp_diff,
)

UINT64_MASK = (1 << 64) - 1
UINT16_MAX = 0xFFFF

_NONCE = struct.Struct(">Q")
_TOS_TYPES = {socket.IP_TOS}
if hasattr(socket, "IP_RECVTOS"):
    _TOS_TYPES.add(socket.IP_RECVTOS)

_NAMEINFO_FLAGS = socket.NI_DGRAM | socket.NI_NUMERICHOST | socket.NI_NUMERICSERV


def _elapsed(now: int, then: int) -> int:
    """Unsigned 64-bit difference, so that a 'never' of -1 wraps like the clock does."""
    return (now - then) & UINT64_MASK


class Session(ABC):
    """Seals and opens datagrams; the nonce carries direction and sequence number."""

    ADDED_BYTES = 0
    RECEIVE_MTU = 2048

    @abstractmethod
    def encrypt(self, nonce: int, plaintext: bytes) -> bytes:
        """Seal ``plaintext`` under ``nonce`` into a datagram."""

    @abstractmethod
    def decrypt(self, data: bytes) -> tuple[int, bytes]:
        """Open a datagram, returning its nonce and plaintext."""

    @abstractmethod
    def printable_key(self) -> str:
        """The session key in the form handed to the peer."""


class PlainSession(Session):
    """A session that frames datagrams with their nonce but does not encrypt."""

    ADDED_BYTES = _NONCE.size

    def __init__(self, key: str = "") -> None:
        self._key = key

    def encrypt(self, nonce: int, plaintext: bytes) -> bytes:
        """Prefix the plaintext with its 64-bit big-endian nonce."""
        return _NONCE.pack(nonce & UINT64_MASK) + bytes(plaintext)

    def decrypt(self, data: bytes) -> tuple[int, bytes]:
        """Split a datagram made by encrypt() back into nonce and plaintext."""
        data = bytes(data)
        if len(data) < _NONCE.size:
            raise ValueError("datagram too short")
        (nonce,) = _NONCE.unpack_from(data)
        return nonce, data[_NONCE.size:]

    def printable_key(self) -> str:
        """The key this session was made with."""
        return self._key


def _open_socket(family: int) -> socket.socket:
    try:
        sock = socket.socket(family, socket.SOCK_DGRAM)
    except OSError as exc:
        raise NetworkError("socket", exc.errno or 0) from exc
    sock.setblocking(False)

    mtu_discover = getattr(socket, "IP_MTU_DISCOVER", None)
    if mtu_discover is not None:
        try:
            sock.setsockopt(socket.IPPROTO_IP, mtu_discover, getattr(socket, "IP_PMTUDISC_DONT", 0))
        except OSError as exc:
            sock.close()
            raise NetworkError("setsockopt", exc.errno or 0) from exc

    try:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_TOS, 0x02)  # ECN-capable transport
    except OSError:
        pass

    recv_tos = getattr(socket, "IP_RECVTOS", None)
    if recv_tos is not None:
        try:
            sock.setsockopt(socket.IPPROTO_IP, recv_tos, 1)
        except OSError:
            pass
    return sock


def _resolve(node: str | None, service: str, flags: int) -> tuple[int, tuple]:
    try:
        infos = socket.getaddrinfo(node, service, socket.AF_UNSPEC, socket.SOCK_DGRAM, 0, flags)
    except (socket.gaierror, UnicodeError) as exc:
        shown = node if node is not None else "(null)"
        reason = getattr(exc, "strerror", None) or str(exc)
        raise NetworkError(f"Bad IP address ({shown}): {reason}", 0) from exc
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


def _is_ipv6_any(host: str) -> bool:
    try:
        return socket.inet_pton(socket.AF_INET6, host.split("%", 1)[0]) == bytes(16)
    except OSError:
        return False


class Connection:
    """One end of a datagram association; the server follows a roaming client."""

    IPV4_HEADER_LEN = 20 + 8
    IPV6_HEADER_LEN = 40 + 16 + 8
    DEFAULT_SEND_MTU = 500
    DEFAULT_IPV4_MTU = 1280
    DEFAULT_IPV6_MTU = 1280

    MIN_RTO = 50
    MAX_RTO = 1000

    PORT_RANGE_LOW = 60001
    PORT_RANGE_HIGH = 60999

    SERVER_ASSOCIATION_TIMEOUT = 40000
    PORT_HOP_INTERVAL = 10000

    MAX_PORTS_OPEN = 10
    MAX_OLD_SOCKET_AGE = 60000

    CONGESTION_TIMESTAMP_PENALTY = 500

    ADDED_BYTES = 8 + 4
    """Transport overhead: sequence number/nonce and two timestamps."""

    def __init__(self, session: Session, *, is_server: bool) -> None:
        self.session = session
        self.is_server = is_server
        self._socks: deque[socket.socket] = deque()
        self.has_remote_addr = False
        self.remote_addr: tuple | None = None
        self._remote_family = socket.AF_INET
        self.mtu = self.DEFAULT_SEND_MTU
        self.direction = Direction.TO_CLIENT if is_server else Direction.TO_SERVER
        self.saved_timestamp = UINT16_MAX
        self.saved_timestamp_received_at = 0
        self.expected_receiver_seq = 0
        self.last_heard = UINT64_MASK
        self.last_port_choice = UINT64_MASK
        self.last_roundtrip_success = UINT64_MASK
        self.rtt_hit = False
        self.srtt = 1000.0
        self.rttvar = 500.0
        self.send_error = ""
        self._setup()

    # construction

    @classmethod
    def server(cls, desired_ip: str | None, desired_port: str | None, session: Session) -> Connection:
        """Bind a server socket, preferring ``desired_ip`` and limited to ``desired_port``."""
        conn = cls(session, is_server=True)
        low = high = -1
        if desired_port is not None:
            try:
                low, high = parse_port_range(desired_port)
            except ValueError as exc:
                print(exc, file=sys.stderr)
                raise NetworkError("Invalid port range", 0) from exc

        if desired_ip is not None:
            try:
                if conn._try_bind(desired_ip, low, high):
                    return conn
            except NetworkError as exc:
                print(f"Error binding to IP {desired_ip}: {exc}", file=sys.stderr)

        try:
            if conn._try_bind(None, low, high):
                return conn
        except NetworkError as exc:
            print(f"Error binding to any interface: {exc}", file=sys.stderr)
            conn.close()
            raise

        conn.close()
        raise NetworkError("Could not bind", 0)

    @classmethod
    def client(cls, ip: str, port: str, session: Session) -> Connection:
        """Open a client socket aimed at the numeric ``ip`` and ``port``."""
        conn = cls(session, is_server=False)
        family, sockaddr = _resolve(ip, str(port), socket.AI_NUMERICHOST | socket.AI_NUMERICSERV)
        conn.remote_addr = sockaddr
        conn._remote_family = family
        conn.has_remote_addr = True
        conn._socks.append(_open_socket(family))
        conn._set_mtu(family)
        return conn

    def _setup(self) -> None:
        self.last_port_choice = timestamp()

    def _set_mtu(self, family: int) -> None:
        if family == socket.AF_INET:
            self.mtu = self.DEFAULT_IPV4_MTU - self.IPV4_HEADER_LEN
        elif family == socket.AF_INET6:
            self.mtu = self.DEFAULT_IPV6_MTU - self.IPV6_HEADER_LEN
        else:
            raise NetworkError("Unknown address family", 0)

    def _try_bind(self, addr: str | None, port_low: int, port_high: int) -> bool:
        flags = socket.AI_PASSIVE | socket.AI_NUMERICHOST | socket.AI_NUMERICSERV
        family, sockaddr = _resolve(addr, "0", flags)
        if family not in (socket.AF_INET, socket.AF_INET6):
            raise NetworkError("Unknown address family", 0)

        search_low = port_low if port_low != -1 else self.PORT_RANGE_LOW
        search_high = port_high if port_high != -1 else self.PORT_RANGE_HIGH

        sock = _open_socket(family)
        self._socks.append(sock)
        local = sockaddr
        saved_errno = 0
        for port in range(search_low, search_high + 1):
            local = (sockaddr[0], port) + tuple(sockaddr[2:])
            if family == socket.AF_INET6 and _is_ipv6_any(sockaddr[0]):
                try:
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
                except OSError as exc:
                    print(f"setsockopt( IPV6_V6ONLY, off ): {exc.strerror}", file=sys.stderr)
            try:
                sock.bind(local)
            except OSError as exc:
                saved_errno = exc.errno or 0
                continue
            self._set_mtu(family)
            return True

        self._socks.pop().close()
        try:
            host, serv = socket.getnameinfo(local, _NAMEINFO_FLAGS)
        except (socket.gaierror, OSError) as exc:
            raise NetworkError(f"bind: getnameinfo: {exc.strerror}", 0) from exc
        print(f"Failed binding to {host}:{serv}", file=sys.stderr)
        raise NetworkError("bind", saved_errno)

    # sockets

    def _sock(self) -> socket.socket:
        if not self._socks:
            raise NetworkError("socket", errno.EBADF)
        return self._socks[-1]

    def _hop_port(self) -> None:
        if self.is_server:
            raise RuntimeError("servers do not hop ports")
        self._setup()
        self._socks.append(_open_socket(self._remote_family))
        self._prune_sockets()

    def _prune_sockets(self) -> None:
        if len(self._socks) <= 1:
            return
        if _elapsed(timestamp(), self.last_port_choice) > self.MAX_OLD_SOCKET_AGE:
            while len(self._socks) > 1:
                self._socks.popleft().close()
        while len(self._socks) > self.MAX_PORTS_OPEN:
            self._socks.popleft().close()

    def fds(self) -> list[int]:
        """File descriptors of every open socket, oldest first."""
        return [sock.fileno() for sock in self._socks]

    def close(self) -> None:
        """Close every socket."""
        while self._socks:
            self._socks.popleft().close()

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # sending

    def _new_packet(self, payload: bytes) -> Packet:
        reply = UINT16_MAX
        now = timestamp()
        held = _elapsed(now, self.saved_timestamp_received_at)
        if held < 1000:
            reply = (self.saved_timestamp + held) & UINT16_MAX
            self.saved_timestamp = UINT16_MAX
            self.saved_timestamp_received_at = 0
        return Packet(self.direction, timestamp16(), reply, bytes(payload))

    def send(self, payload: bytes) -> None:
        """Send one payload to the remote address, if one is known."""
        if not self.has_remote_addr:
            return

        nonce, text = self._new_packet(payload).to_message()
        data = self.session.encrypt(nonce, text)
        try:
            sent = self._sock().sendto(data, self.remote_addr)
        except OSError as exc:
            code = exc.errno or 0
            self.send_error = f"sendto: {os.strerror(code)}"
            if code == errno.EMSGSIZE:
                self.mtu = self.DEFAULT_SEND_MTU
        else:
            if sent != len(data):
                self.send_error = "sendto: short write"

        now = timestamp()
        if self.is_server:
            if _elapsed(now, self.last_heard) > self.SERVER_ASSOCIATION_TIMEOUT:
                self.has_remote_addr = False
                print("Server now detached from client.", file=sys.stderr)
        elif (
            _elapsed(now, self.last_port_choice) > self.PORT_HOP_INTERVAL
            and _elapsed(now, self.last_roundtrip_success) > self.PORT_HOP_INTERVAL
        ):
            self._hop_port()

    # receiving

    def recv(self) -> bytes:
        """Return the payload of the first datagram waiting on any socket."""
        for sock in list(self._socks):
            try:
                payload = self._recv_one(sock)
            except NetworkError as exc:
                if exc.errno in (errno.EAGAIN, errno.EWOULDBLOCK):
                    continue
                raise
            self._prune_sockets()
            return payload
        raise NetworkError("No packet received")

    def _recv_one(self, sock: socket.socket) -> bytes:
        size = self.session.RECEIVE_MTU
        try:
            data, ancdata, msg_flags, address = sock.recvmsg(size, size)
        except OSError as exc:
            raise NetworkError("recvmsg", exc.errno or 0) from exc

        if msg_flags & socket.MSG_TRUNC:
            raise NetworkError("Received oversize datagram", 0)

        congestion_experienced = False
        if ancdata:
            level, kind, cdata = ancdata[0]
            if level == socket.IPPROTO_IP and kind in _TOS_TYPES and cdata:
                congestion_experienced = (cdata[0] & 0x03) == 0x03

        nonce, text = self.session.decrypt(data)
        packet = Packet.from_message(nonce, text)

        expected = Direction.TO_SERVER if self.is_server else Direction.TO_CLIENT
        if packet.direction != expected:
            raise ValueError("packet direction mismatch")

        if packet.seq < self.expected_receiver_seq:
            return packet.payload
        self.expected_receiver_seq = packet.seq + 1

        if packet.timestamp != UINT16_MAX:
            self.saved_timestamp = packet.timestamp
            self.saved_timestamp_received_at = timestamp()
            if congestion_experienced:
                self.saved_timestamp = (self.saved_timestamp - self.CONGESTION_TIMESTAMP_PENALTY) & UINT16_MAX
                if self.is_server:
                    print("Received explicit congestion notification.", file=sys.stderr)

        if packet.timestamp_reply != UINT16_MAX:
            rtt = float(timestamp_diff(timestamp16(), packet.timestamp_reply))
            if rtt < 5000:
                if not self.rtt_hit:
                    self.srtt = rtt
                    self.rttvar = rtt / 2
                    self.rtt_hit = True
                else:
                    alpha = 1.0 / 8.0
                    beta = 1.0 / 4.0
                    self.rttvar = (1 - beta) * self.rttvar + beta * abs(self.srtt - rtt)
                    self.srtt = (1 - alpha) * self.srtt + alpha * rtt

        self.has_remote_addr = True
        self.last_heard = timestamp()

        if self.is_server and address != self.remote_addr:
            self.remote_addr = address
            self._remote_family = socket.AF_INET6 if len(address) == 4 else socket.AF_INET
            try:
                host, serv = socket.getnameinfo(address, _NAMEINFO_FLAGS)
            except (socket.gaierror, OSError) as exc:
                raise NetworkError(f"recv_one: getnameinfo: {exc.strerror}", 0) from exc
            print(f"Server now attached to client at {host}:{serv}", file=sys.stderr)

        return packet.payload

    # queries

    def port(self) -> str:
        """The local port number of the current socket, as text."""
        try:
            name = self._sock().getsockname()
        except OSError as exc:
            raise NetworkError("getsockname", exc.errno or 0) from exc
        return str(name[1])

    def timeout(self) -> int:
        """Retransmission timeout in ms from the smoothed round-trip estimate."""
        rto = math.ceil(self.srtt + 4 * self.rttvar)
        return min(max(rto, self.MIN_RTO), self.MAX_RTO)

    def get_key(self) -> str:
        """The printable session key."""
        return self.session.printable_key()

    def set_last_roundtrip_success(self, ts: int) -> None:
        """Record when the transport last saw an end-to-end round trip."""
        self.last_roundtrip_success = ts