"""
Brief: Tests for dnsblocker.servers.upstream.UpstreamResolver.

Inputs:
  - None

Outputs:
  - None
"""

import dns.message
import dns.rcode
import dns.rrset
import pytest

from dnsblocker.errors import UpstreamUnavailable
from dnsblocker.servers.transports import udp as udp_transport
from dnsblocker.servers.upstream import UpstreamResolver


def _answer_for(query, ip="192.0.2.10"):
    resp = dns.message.make_response(query)
    resp.answer.append(
        dns.rrset.from_text(query.question[0].name, 60, "IN", "A", ip)
    )
    return resp


def test_exchange_returns_parsed_reply(monkeypatch):
    """
    Brief: A matching reply is decoded and returned.

    Inputs:
      - monkeypatch: stubs udp_query

    Outputs:
      - None: Asserts reply id and answer
    """
    q = dns.message.make_query("example.com", "A")
    seen = {}

    def fake_udp_query(host, port, wire, *, timeout_ms=2000):
        seen.update(host=host, port=port, timeout_ms=timeout_ms)
        return _answer_for(dns.message.from_wire(wire)).to_wire()

    monkeypatch.setattr(udp_transport, "udp_query", fake_udp_query)
    r = UpstreamResolver("192.0.2.53", 5353, timeout_ms=750).exchange(q)
    assert r.id == q.id
    assert r.rcode() == dns.rcode.NOERROR
    assert r.answer[0][0].address == "192.0.2.10"
    assert seen == {"host": "192.0.2.53", "port": 5353, "timeout_ms": 750}


def test_exchange_transport_error_is_upstream_unavailable(monkeypatch):
    """
    Brief: Transport failures become UpstreamUnavailable.

    Inputs:
      - monkeypatch: udp_query raising UDPError

    Outputs:
      - None: Asserts UpstreamUnavailable
    """

    def failing(*a, **kw):
        raise udp_transport.UDPError("timed out")

    monkeypatch.setattr(udp_transport, "udp_query", failing)
    with pytest.raises(UpstreamUnavailable):
        UpstreamResolver("192.0.2.53").exchange(dns.message.make_query("a.test", "A"))


def test_exchange_malformed_reply_is_upstream_unavailable(monkeypatch):
    """
    Brief: Undecodable reply bytes become UpstreamUnavailable.

    Inputs:
      - monkeypatch: udp_query returning garbage

    Outputs:
      - None: Asserts UpstreamUnavailable
    """
    monkeypatch.setattr(udp_transport, "udp_query", lambda *a, **kw: b"\x00\x01")
    with pytest.raises(UpstreamUnavailable):
        UpstreamResolver("192.0.2.53").exchange(dns.message.make_query("a.test", "A"))


def test_exchange_mismatched_id_is_upstream_unavailable(monkeypatch):
    """
    Brief: A reply for a different transaction is rejected.

    Inputs:
      - monkeypatch: udp_query returning a reply with another id

    Outputs:
      - None: Asserts UpstreamUnavailable
    """
    q = dns.message.make_query("a.test", "A")

    def other_id(host, port, wire, **kw):
        reply = _answer_for(dns.message.from_wire(wire))
        reply.id = (q.id + 1) & 0xFFFF
        return reply.to_wire()

    monkeypatch.setattr(udp_transport, "udp_query", other_id)
    with pytest.raises(UpstreamUnavailable):
        UpstreamResolver("192.0.2.53").exchange(q)


def test_address_formats_ipv6_with_brackets():
    """
    Brief: address property brackets IPv6 hosts.

    Inputs:
      - None

    Outputs:
      - None: Asserts formatted strings
    """
    assert UpstreamResolver("::1", 53).address == "[::1]:53"
    assert UpstreamResolver("10.0.0.1", 5300).address == "10.0.0.1:5300"
