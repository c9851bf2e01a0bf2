"""Datagram sockets bound to local ports and sent through a UDP layer."""

from __future__ import annotations

import errno
import os
import socket as _socket
from dataclasses import dataclass
from typing import Any, Callable, NoReturn, Sequence

MAX_SOCKETS = 64

UdpSend = Callable[[Any, int, int, int, bytes], Any]


def _fail(code: int) -> NoReturn:
    raise OSError(code, os.strerror(code))


@dataclass(frozen=True)
class SocketAddress:
    """An IPv4 address and port, both as carried on the wire."""

    port: int
    addr: int


@dataclass(eq=False)
class Socket:
    """State of one socket."""

    domain: int
    type: int
    protocol: int
    bound: bool = False
    local_port: int = 0


class SocketTable:
    """Socket descriptors for IPv4 datagram sockets.

    ``udp_send`` is called as ``udp_send(iface, src_port, dst_port, dst_addr,
    data)``; datagrams go out on the first of ``interfaces``.
    """

    def __init__(self, udp_send: UdpSend, interfaces: Sequence[Any]) -> None:
        self._udp_send = udp_send
        self._interfaces = interfaces
        self._sockets: list[Socket | None] = [None] * MAX_SOCKETS

    def _get(self, sockfd: int) -> Socket:
        if not 0 <= sockfd < MAX_SOCKETS:
            _fail(errno.EBADF)
        sock = self._sockets[sockfd]
        if sock is None:
            _fail(errno.EBADF)
        return sock

    def socket(self, domain: int, sock_type: int, protocol: int = 0) -> int:
        """Create a socket; only ``AF_INET`` with ``SOCK_DGRAM`` is supported."""
        if domain != _socket.AF_INET:
            _fail(errno.EAFNOSUPPORT)
        if sock_type != _socket.SOCK_DGRAM:
            _fail(errno.EPROTOTYPE)
        for sockfd, entry in enumerate(self._sockets):
            if entry is None:
                self._sockets[sockfd] = Socket(domain, sock_type, protocol)
                return sockfd
        _fail(errno.EMFILE)

    def bind(self, sockfd: int, addr: SocketAddress) -> None:
        """Bind the socket to the local port in ``addr``."""
        sock = self._get(sockfd)
        if addr is None:
            _fail(errno.EINVAL)
        sock.local_port = addr.port
        sock.bound = True

    def sendto(self, sockfd: int, data: bytes, flags: int, dest_addr: SocketAddress) -> int:
        """Send ``data`` to ``dest_addr`` from a bound socket; return its length."""
        sock = self._get(sockfd)
        if dest_addr is None:
            _fail(errno.EINVAL)
        if not sock.bound:
            _fail(errno.EINVAL)
        if not self._interfaces:
            _fail(errno.ENETUNREACH)
        data = bytes(data)
        self._udp_send(self._interfaces[0], sock.local_port, dest_addr.port, dest_addr.addr, data)
        return len(data)

    def recvfrom(self, sockfd: int, size: int, flags: int = 0) -> tuple[bytes, SocketAddress]:
        """Receive a datagram; no datagrams are ever queued, so this always fails."""
        self._get(sockfd)
        _fail(errno.EAGAIN)