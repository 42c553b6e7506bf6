"""Per-query orchestration: validate, classify, cache lookup, forward.

Brief:
  QueryHandler owns the block/cache/forward decision and the response code
  produced in each case. The listener calls ``handle(bytes)`` once per
  datagram, possibly from many threads at once; the only shared mutable state
  it touches is the ResponseCache, which synchronizes internally.

Outcomes and rcodes:
  - format_error: question count != 1            -> FORMERR
  - blocked:      name on the blocklist           -> REFUSED
  - cache_hit:    live cached answer              -> cached rcode + records
  - forwarded:    fresh upstream answer           -> upstream rcode + records
  - upstream_error / cache_error                  -> SERVFAIL
"""

from __future__ import annotations

import logging
from typing import Callable, NamedTuple, Optional

import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype

from ..blocklist import BlocklistMatcher, canonical_name
from ..cache import ResponseCache
from ..errors import (
    Blocked,
    CacheCorruption,
    DecodeError,
    EncodeError,
    FormatError,
    UpstreamUnavailable,
)
from .upstream import UpstreamResolver

logger = logging.getLogger("dnsblocker.handler")

EVENT_FORMAT_ERROR = "format_error"
EVENT_BLOCKED = "blocked"
EVENT_CACHE_HIT = "cache_hit"
EVENT_CACHE_MISS = "cache_miss"
EVENT_CACHE_CORRUPTION = "cache_corruption"
EVENT_CACHE_ERROR = "cache_error"
EVENT_UPSTREAM_ERROR = "upstream_error"
OUTCOME_FORWARDED = "forwarded"

EventSink = Callable[[str, str], None]


class Resolution(NamedTuple):
    """Result of resolving one request.

    Inputs:
      - None (constructed by QueryHandler.resolve).
    Outputs:
      - response: Response message to send back.
      - outcome: One of the EVENT_*/OUTCOME_* names.
    """

    response: dns.message.Message
    outcome: str


def cache_key(message: dns.message.Message) -> str:
    """
    Build the cache key for every question of message, in order.

    Inputs:
        message: Parsed DNS query.

    Outputs:
        str like ``"example.com. IN AAAA"``; multiple questions are joined
        with ",". Names are case-folded so 0x20-randomized queries share
        entries, while class and type keep A and AAAA answers apart.
    """
    return ",".join(
        "%s %s %s"
        % (
            canonical_name(q.name.to_text()),
            dns.rdataclass.to_text(q.rdclass),
            dns.rdatatype.to_text(q.rdtype),
        )
        for q in message.question
    )


def decode_message(data: bytes) -> dns.message.Message:
    """Parse wire bytes, raising DecodeError on any failure."""
    try:
        return dns.message.from_wire(data)
    except Exception as e:
        raise DecodeError(str(e) or e.__class__.__name__) from e


def encode_message(message: dns.message.Message) -> bytes:
    """Pack a message, raising EncodeError on any failure."""
    try:
        return message.to_wire()
    except Exception as e:
        raise EncodeError(str(e) or e.__class__.__name__) from e


def make_rcode_response(
    request: dns.message.Message, rcode: dns.rcode.Rcode
) -> dns.message.Message:
    """Synthetic reply echoing the request's questions, carrying only rcode."""
    r = dns.message.make_response(request, recursion_available=True)
    r.set_rcode(rcode)
    return r


def rewrite_for_request(
    answer: dns.message.Message, request: dns.message.Message
) -> dns.message.Message:
    """
    Make a stored answer look like a reply to request.

    Inputs:
        answer: Previously obtained upstream response (mutated in place).
        request: Incoming query.

    Outputs:
        answer, with id, QR, opcode, RD, CD and the question section taken
        from request. Rcode, records and the remaining flags are untouched.
    """
    copied = int(dns.flags.RD | dns.flags.CD)
    answer.id = request.id
    flags = (int(answer.flags) & ~copied) | (int(request.flags) & copied)
    answer.flags = dns.flags.Flag(flags | int(dns.flags.QR))
    answer.set_opcode(request.opcode())
    answer.question = list(request.question)
    return answer


class QueryHandler:
    """
    Validate, classify, look up and forward DNS queries.

    Inputs:
        blocklist: BlocklistMatcher consulted for every single-question query.
        cache: Shared ResponseCache instance.
        upstream: UpstreamResolver used on cache misses.
        cache_ttl: Seconds a successful upstream answer stays cacheable.
        on_event: Optional callable ``(event, qname)`` receiving named events
            (blocked, cache_hit, cache_miss, upstream_error, ...).

    Outputs:
        QueryHandler instance

    Example use:
        >>> handler = QueryHandler(
        ...     BlocklistMatcher(["ads.example.com"]),
        ...     ResponseCache(1024 * 1024),
        ...     UpstreamResolver("192.0.2.53", 53),
        ...     cache_ttl=300,
        ... )
        >>> q = dns.message.make_query("x.ads.example.com", "A")
        >>> handler.resolve(q).outcome
        'blocked'
    """

    def __init__(
        self,
        blocklist: BlocklistMatcher,
        cache: ResponseCache,
        upstream: UpstreamResolver,
        *,
        cache_ttl: int,
        on_event: Optional[EventSink] = None,
    ) -> None:
        self.blocklist = blocklist
        self.cache = cache
        self.upstream = upstream
        self.cache_ttl = max(0, int(cache_ttl))
        self.on_event = on_event

    def _emit(self, event: str, qname: str) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event, qname)
        except Exception:  # pragma: no cover - sink errors are logged only
            logger.warning("Event sink failed for %s %s", event, qname, exc_info=True)

    def handle(self, data: bytes) -> Optional[bytes]:
        """
        Resolve one wire-format query and return the wire-format reply.

        Inputs:
            data: Raw datagram payload.

        Outputs:
            Reply bytes, or None when the datagram should be dropped
            (undecodable without an identifiable question, or not a query).
        """
        try:
            request = decode_message(data)
        except DecodeError as e:
            logger.debug("Cannot decode %d byte message: %s", len(data), e)
            return self._reject_undecodable(data)

        if request.flags & dns.flags.QR:
            logger.debug("Dropping message id=%d with QR set", request.id)
            return None

        resolution = self.resolve(request)
        try:
            return encode_message(resolution.response)
        except EncodeError as e:
            logger.error("Cannot encode %s response: %s", resolution.outcome, e)
        try:
            return encode_message(make_rcode_response(request, dns.rcode.SERVFAIL))
        except EncodeError as e:
            logger.error("Cannot encode SERVFAIL response: %s", e)
            return None

    def _reject_undecodable(self, data: bytes) -> Optional[bytes]:
        """FORMERR when the header and question still parse, else drop."""
        try:
            partial = dns.message.from_wire(data, question_only=True)
        except Exception:
            logger.debug("Dropping undecodable message")
            return None
        if partial.flags & dns.flags.QR or not partial.question:
            logger.debug("Dropping undecodable message with no answerable question")
            return None
        self._emit(
            EVENT_FORMAT_ERROR, canonical_name(partial.question[0].name.to_text())
        )
        try:
            return encode_message(make_rcode_response(partial, dns.rcode.FORMERR))
        except (EncodeError, dns.exception.DNSException) as e:
            logger.debug("Cannot answer undecodable message: %s", e)
            return None

    def resolve(self, request: dns.message.Message) -> Resolution:
        """
        Run the validate -> classify -> cache -> forward state machine.

        Inputs:
            request: Parsed DNS query.

        Outputs:
            Resolution with exactly one response message.
        """
        try:
            qname = self._validate(request)
            self._classify(qname)
        except FormatError as e:
            logger.warning("Can not process message id=%d: %s", request.id, e)
            first = request.question[0].name.to_text() if request.question else ""
            self._emit(EVENT_FORMAT_ERROR, canonical_name(first) if first else "")
            return Resolution(
                make_rcode_response(request, dns.rcode.FORMERR), EVENT_FORMAT_ERROR
            )
        except Blocked as e:
            logger.info("Block name: %s", e.qname)
            self._emit(EVENT_BLOCKED, e.qname)
            return Resolution(
                make_rcode_response(request, dns.rcode.REFUSED), EVENT_BLOCKED
            )

        key = cache_key(request)
        try:
            cached = self._fetch_cached(key)
        except CacheCorruption as e:
            logger.error("Discarding corrupt cache entry %s: %s", key, e)
            self.cache.delete(key)
            self._emit(EVENT_CACHE_CORRUPTION, qname)
            cached = None
        except Exception:
            logger.exception("Cache read failed for %s", key)
            self._emit(EVENT_CACHE_ERROR, qname)
            return Resolution(
                make_rcode_response(request, dns.rcode.SERVFAIL), EVENT_CACHE_ERROR
            )

        if cached is not None:
            logger.debug("Message for key %s found in cache", key)
            self._emit(EVENT_CACHE_HIT, qname)
            return Resolution(rewrite_for_request(cached, request), EVENT_CACHE_HIT)

        logger.debug("Message for key %s not found in cache", key)
        self._emit(EVENT_CACHE_MISS, qname)
        return self._forward(request, key, qname)

    def _validate(self, request: dns.message.Message) -> str:
        count = len(request.question)
        if count != 1:
            raise FormatError(f"expected exactly one question, got {count}")
        return canonical_name(request.question[0].name.to_text())

    def _classify(self, qname: str) -> None:
        logger.info("Request name: %s", qname)
        if self.blocklist.contains(qname):
            raise Blocked(qname)

    def _fetch_cached(self, key: str) -> Optional[dns.message.Message]:
        value, found = self.cache.get(key)
        if not found:
            return None
        try:
            return dns.message.from_wire(value)
        except Exception as e:
            raise CacheCorruption(str(e) or e.__class__.__name__) from e

    def _forward(
        self, request: dns.message.Message, key: str, qname: str
    ) -> Resolution:
        logger.info("Request name %s is proxied to %s", qname, self.upstream.address)
        try:
            answer = self.upstream.exchange(request)
        except UpstreamUnavailable as e:
            logger.error("Exchange error for key %s: %s", key, e)
            self._emit(EVENT_UPSTREAM_ERROR, qname)
            return Resolution(
                make_rcode_response(request, dns.rcode.SERVFAIL), EVENT_UPSTREAM_ERROR
            )

        if answer.rcode() == dns.rcode.SERVFAIL:
            logger.debug("Not caching %s (SERVFAIL responses are never cached)", key)
            return Resolution(answer, OUTCOME_FORWARDED)

        try:
            wire = encode_message(answer)
        except EncodeError as e:
            logger.warning("Not caching %s: %s", key, e)
            return Resolution(answer, OUTCOME_FORWARDED)

        try:
            stored = self.cache.set(key, wire, self.cache_ttl)
        except Exception:
            logger.exception("Cache write failed for %s", key)
            self._emit(EVENT_CACHE_ERROR, qname)
            return Resolution(
                make_rcode_response(request, dns.rcode.SERVFAIL), EVENT_CACHE_ERROR
            )
        if stored:
            logger.debug("Write cache for key %s with TTL %ds", key, self.cache_ttl)
        return Resolution(answer, OUTCOME_FORWARDED)
