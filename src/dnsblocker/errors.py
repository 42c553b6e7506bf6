"""Error taxonomy for the dnsblocker resolution pipeline.

Brief:
  Validation and policy outcomes (FormatError, Blocked) become synthetic DNS
  responses. Upstream and cache-read faults are downgraded to SERVFAIL by the
  query handler. Only ConfigError and startup I/O errors are fatal.
"""

from __future__ import annotations


class DNSBlockerError(Exception):
    """Base class for all dnsblocker errors."""


class FormatError(DNSBlockerError):
    """
    Brief: Query shape the proxy does not serve (question count != 1).

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


class Blocked(DNSBlockerError):
    """
    Brief: Policy outcome raised when a query name matches the blocklist.

    Inputs:
    - qname: canonical name that was refused

    Outputs:
    - Exception instance with ``qname`` attribute
    """

    def __init__(self, qname: str) -> None:
        super().__init__(f"{qname} is blocked")
        self.qname = qname


class UpstreamUnavailable(DNSBlockerError):
    """
    Brief: The upstream resolver could not produce a usable answer.

    Inputs:
    - message: description (I/O error, timeout, malformed or mismatched reply)

    Outputs:
    - Exception instance
    """

    pass


class DecodeError(DNSBlockerError):
    """Incoming wire bytes could not be decoded as a DNS message."""


class EncodeError(DNSBlockerError):
    """A DNS message could not be packed to wire format."""


class CacheCorruption(DNSBlockerError):
    """A cached payload failed to deserialize; callers treat it as a miss."""


class ConfigError(DNSBlockerError, ValueError):
    """Invalid configuration supplied at startup."""
