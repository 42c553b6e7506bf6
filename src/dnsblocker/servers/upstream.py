from __future__ import annotations

import logging

import dns.message

from ..errors import UpstreamUnavailable
from .transports import udp as udp_transport

logger = logging.getLogger("dnsblocker.upstream")


class UpstreamResolver:
    """Single-attempt synchronous exchange with one upstream DNS server.

    Inputs:
        host: Upstream resolver address.
        port: Upstream UDP port.
        timeout_ms: Socket timeout per exchange in milliseconds.

    Outputs:
        UpstreamResolver instance

    Notes:
        There is no retry or failover. The socket timeout is the only bound
        on how long an exchange blocks the calling thread.

    Example use:
        >>> resolver = UpstreamResolver("192.0.2.53", 53, timeout_ms=500)
        >>> resolver.address
        '192.0.2.53:53'
    """

    def __init__(self, host: str, port: int = 53, timeout_ms: int = 2000) -> None:
        self.host = str(host)
        self.port = int(port)
        self.timeout_ms = max(1, int(timeout_ms))

    @property
    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def exchange(self, query: dns.message.Message) -> dns.message.Message:
        """
        Send query upstream and return the parsed reply.

        Args:
            query: The DNS query message to forward.

        Returns:
            The upstream's response message.

        Raises:
            UpstreamUnavailable: On I/O error, timeout, an undecodable reply,
                or a reply that does not answer this query.
        """
        try:
            wire = query.to_wire()
        except Exception as e:
            raise UpstreamUnavailable(f"cannot encode query for upstream: {e}") from e

        logger.debug("Forwarding query id=%d to %s", query.id, self.address)
        try:
            reply_wire = udp_transport.udp_query(
                self.host, self.port, wire, timeout_ms=self.timeout_ms
            )
        except udp_transport.UDPError as e:
            raise UpstreamUnavailable(f"{self.address}: {e}") from e

        try:
            reply = dns.message.from_wire(reply_wire)
        except Exception as e:
            raise UpstreamUnavailable(
                f"{self.address}: malformed reply ({e})"
            ) from e

        if not query.is_response(reply):
            raise UpstreamUnavailable(
                f"{self.address}: reply id={reply.id} does not match query id={query.id}"
            )
        return reply
