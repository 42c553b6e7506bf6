"""Blocklist loading and subdomain-inclusive matching.

Brief:
  ``load_blocklist`` turns a newline-delimited hosts file into an ordered list
  of canonical names. ``BlocklistMatcher`` answers "is this name, or one of
  its parents, on the list?" by walking the queried name's suffixes against a
  hash set, so lookups cost one probe per label regardless of list size.
"""

from __future__ import annotations

import functools
import ipaddress
import logging
from typing import Iterable, Iterator, List, Tuple

import dns.exception
import dns.name

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=4096)
def _parse_name(name: str) -> dns.name.Name:
    return dns.name.from_text(str(name).strip()).canonicalize()


def canonical_name(name: str) -> str:
    """
    Normalize a domain name to lower-case, dot-terminated FQDN form.

    Inputs:
        name: Raw domain name in DNS text form (any case, with or without
            trailing dot; ``\\.`` is a literal dot inside a label)

    Outputs:
        Canonical FQDN string; empty input maps to the root "."

    Raises:
        dns.exception.DNSException: When name is not a valid domain name.

    Example:
        >>> canonical_name("Ads.Example.COM")
        'ads.example.com.'
        >>> canonical_name("")
        '.'
    """
    return _parse_name(name).to_text()


def _suffixes(name: str) -> Iterator[str]:
    """Yield name and each parent, label by label, down to the root."""
    current = _parse_name(name)
    yield current.to_text()
    while current != dns.name.root:
        current = current.parent()
        yield current.to_text()


class BlocklistMatcher:
    """Immutable set of blocked names with subdomain-inclusive lookup.

    Inputs:
        rules: Iterable of domain names. Each rule blocks itself and every
            name below it (``ads.example.com`` blocks ``x.ads.example.com``
            but not ``example.com`` or ``badads.example.com``).

    Outputs:
        BlocklistMatcher instance

    Notes:
        Read-only after construction, so concurrent lookups need no lock.

    Example use:
        >>> m = BlocklistMatcher(["ads.example.com"])
        >>> m.contains("x.ads.example.com.")
        True
        >>> m.contains("example.com.")
        False
    """

    def __init__(self, rules: Iterable[str] = ()) -> None:
        ordered: List[str] = []
        seen = set()
        for rule in rules:
            name = canonical_name(rule)
            if name in seen:
                continue
            seen.add(name)
            ordered.append(name)
        self._rules: Tuple[str, ...] = tuple(ordered)
        self._names = frozenset(seen)

    @property
    def rules(self) -> Tuple[str, ...]:
        """Canonical rules in load order, duplicates removed."""
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.contains(name)

    def contains(self, name: str) -> bool:
        """
        Return True when name equals a rule or is a subdomain of one.

        Inputs:
            name: Queried domain name (case-insensitive, trailing dot optional)

        Outputs:
            bool
        """
        if not self._names:
            return False
        return any(s in self._names for s in _suffixes(name))

    def match(self, name: str) -> str | None:
        """Return the most specific rule covering name, or None."""
        if not self._names:
            return None
        for suffix in _suffixes(name):
            if suffix in self._names:
                return suffix
        return None


def _is_address(token: str) -> bool:
    try:
        ipaddress.ip_address(token)
    except ValueError:
        return False
    return True


def _iter_noncomment_lines(path: str) -> Iterator[Tuple[int, str]]:
    """
    Yield non-empty, non-comment lines from a file with line numbers.

    Args:
        path: File path to read.

    Returns:
        Iterator of (line_number, text) with inline '#' comments removed.

    Notes:
        Lines starting with '#' or '!' are comments so that hosts files and
        Adblock-style lists both parse.
    """
    with open(path, "r", encoding="utf-8") as fh:
        for idx, raw in enumerate(fh, start=1):
            line = raw.split("#", 1)[0].strip()
            if not line or line.startswith("!"):
                continue
            yield idx, line


def load_blocklist(path: str) -> List[str]:
    """
    Load blocked domain names from a newline-delimited file.

    Inputs:
        path: Path to the blocklist file.

    Outputs:
        List of canonical names in file order.

    Raises:
        OSError: When the file cannot be opened or read. Callers at startup
            treat this as fatal.

    Supported line formats:
      - Plain text: one domain per line.
      - Hosts format: ``0.0.0.0 ads.example.com [more.names ...]``; every
        name after the leading address is loaded.
    """
    names: List[str] = []
    for ln, text in _iter_noncomment_lines(path):
        tokens = text.split()
        if len(tokens) > 1 and _is_address(tokens[0]):
            tokens = tokens[1:]
        elif len(tokens) > 1:
            logger.warning(
                "Ignoring extra tokens in %s:%d: %s", path, ln, " ".join(tokens[1:])
            )
            tokens = tokens[:1]
        elif _is_address(tokens[0]):
            logger.warning("Address without hostname in %s:%d", path, ln)
            continue
        for token in tokens:
            try:
                names.append(canonical_name(token))
            except dns.exception.DNSException as e:
                logger.warning("Invalid name %r in %s:%d: %s", token, path, ln, e)
    logger.info("Loaded %d domains from %s", len(names), path)
    return names
