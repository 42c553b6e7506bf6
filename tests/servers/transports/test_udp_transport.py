"""
Brief: Tests for dnsblocker.servers.transports.udp.udp_query.

Inputs:
  - None

Outputs:
  - None
"""

import socket
import threading

import pytest

from dnsblocker.servers.transports import udp as udp_mod
from dnsblocker.servers.transports.udp import UDPError, udp_query


def test_udp_query_roundtrip_against_local_echo():
    """
    Brief: udp_query sends bytes and returns the peer's reply.

    Inputs:
      - Loopback echo socket

    Outputs:
      - None: Asserts reply bytes
    """
    srv = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    srv.bind(("127.0.0.1", 0))
    port = srv.getsockname()[1]

    def echo():
        data, addr = srv.recvfrom(4096)
        srv.sendto(b"reply:" + data, addr)

    t = threading.Thread(target=echo, daemon=True)
    t.start()
    try:
        assert udp_query("127.0.0.1", port, b"ping", timeout_ms=2000) == b"reply:ping"
    finally:
        t.join(timeout=2)
        srv.close()


def test_udp_query_timeout_raises_udp_error():
    """
    Brief: A silent peer produces UDPError once the timeout elapses.

    Inputs:
      - Bound socket that never answers

    Outputs:
      - None: Asserts UDPError
    """
    silent = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    silent.bind(("127.0.0.1", 0))
    try:
        with pytest.raises(UDPError):
            udp_query("127.0.0.1", silent.getsockname()[1], b"x", timeout_ms=100)
    finally:
        silent.close()


def test_udp_query_socket_error_wrapped(monkeypatch):
    """
    Brief: OSError from socket creation is surfaced as UDPError.

    Inputs:
      - monkeypatch: replaces socket.socket

    Outputs:
      - None: Asserts UDPError chained from OSError
    """

    def boom(*a, **kw):
        raise OSError("no sockets for you")

    monkeypatch.setattr(udp_mod.socket, "socket", boom)
    with pytest.raises(UDPError) as excinfo:
        udp_query("192.0.2.1", 53, b"x")
    assert isinstance(excinfo.value.__cause__, OSError)


def test_family_for_picks_ipv6_for_v6_literals():
    """
    Brief: IPv6 literals select AF_INET6, everything else AF_INET.

    Inputs:
      - None

    Outputs:
      - None: Asserts address families
    """
    assert udp_mod._family_for("::1") == socket.AF_INET6
    assert udp_mod._family_for("127.0.0.1") == socket.AF_INET
    assert udp_mod._family_for("dns.example") == socket.AF_INET


def test_udp_query_accepts_only_documented_keywords():
    """
    Brief: udp_query takes timeout_ms as its only keyword option.

    Inputs:
      - None

    Outputs:
      - None: Asserts unknown keywords are rejected before any I/O
    """
    with pytest.raises(TypeError):
        udp_query("127.0.0.1", 53, b"x", source_ip="127.0.0.1")
