"""Configuration parsing and normalization helpers for dnsblocker.

Brief:
  This module contains the configuration-parsing utilities used by the CLI
  entrypoint. It centralizes:
    - reading the optional YAML config file
    - parsing ``host:port`` flag values (service names allowed)
    - merging CLI overrides over file values
    - pydantic validation into a DNSBlockerConfig

Inputs:
  - YAML config paths and argparse-style override mappings

Outputs:
  - Validated DNSBlockerConfig instances
"""

from __future__ import annotations

import copy
import socket
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .config_schema import DNSBlockerConfig

_WELL_KNOWN_SERVICES = {"domain": 53}


def _parse_port(text: str, default_port: int) -> int:
    """Brief: Parse a numeric port or a service name.

    Inputs:
      - text: Port string such as "53" or "domain"; empty uses default_port.
      - default_port: Port used when text is empty.

    Outputs:
      - int port in 0..65535.

    Raises:
      - ConfigError: For unknown service names or out-of-range numbers.
    """

    text = text.strip()
    if not text:
        return int(default_port)
    if text.isdigit():
        port = int(text)
    elif text.lower() in _WELL_KNOWN_SERVICES:
        port = _WELL_KNOWN_SERVICES[text.lower()]
    else:
        try:
            port = socket.getservbyname(text, "udp")
        except OSError as e:
            raise ConfigError(f"Unknown port or service name: {text!r}") from e
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range: {port}")
    return port


def parse_hostport(
    text: str, *, default_host: str = "", default_port: int = 53
) -> Tuple[str, int]:
    """Brief: Split a ``host:port`` value.

    Inputs:
      - text: One of ``host:port``, ``:port``, ``host``, ``[v6addr]:port`` or a
        bare IPv6 address. The port may be a service name such as ``domain``.
      - default_host: Host used when text omits it (``:53``).
      - default_port: Port used when text omits it.

    Outputs:
      - (host, port)

    Example:
      >>> parse_hostport("192.168.1.1:domain")
      ('192.168.1.1', 53)
      >>> parse_hostport(":5353", default_host="0.0.0.0")
      ('0.0.0.0', 5353)
      >>> parse_hostport("[::1]:53")
      ('::1', 53)
    """

    raw = str(text).strip()
    if not raw:
        raise ConfigError("Empty address")
    if raw.startswith("["):
        end = raw.find("]")
        if end == -1:
            raise ConfigError(f"Unterminated IPv6 address in {raw!r}")
        host = raw[1:end]
        rest = raw[end + 1 :]
        if rest and not rest.startswith(":"):
            raise ConfigError(f"Invalid address {raw!r}")
        return host, _parse_port(rest[1:], default_port)
    if raw.count(":") > 1:
        # Bare IPv6 literal without a port.
        return raw, int(default_port)
    host, sep, port = raw.partition(":")
    host = host.strip() or default_host
    if not host:
        raise ConfigError(f"Missing host in {raw!r}")
    return host, _parse_port(port if sep else "", default_port)


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed mapping (empty file yields {}).

    Raises:
      - OSError: When the file cannot be read.
      - ConfigError: When the YAML is invalid or the root is not a mapping.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping")
    return cfg


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def cli_overrides(args: Any) -> Dict[str, Any]:
    """Brief: Translate argparse flags into a nested override mapping.

    Inputs:
      - args: Namespace with optional dns_server, listen, hosts_path,
        log_level, cache_size and cache_duration attributes (None = unset).

    Outputs:
      - dict shaped like the YAML config, containing only the flags given.
    """

    out: Dict[str, Any] = {}
    dns_server = getattr(args, "dns_server", None)
    if dns_server:
        host, port = parse_hostport(dns_server)
        out.setdefault("upstream", {}).update({"host": host, "port": port})
    listen = getattr(args, "listen", None)
    if listen:
        host, port = parse_hostport(listen, default_host="0.0.0.0")
        out.setdefault("listen", {}).update({"host": host, "port": port})
    hosts_path = getattr(args, "hosts_path", None)
    if hosts_path:
        out.setdefault("blocklist", {})["path"] = hosts_path
    log_level = getattr(args, "log_level", None)
    if log_level:
        out.setdefault("logging", {})["level"] = str(log_level).lower()
    cache_size = getattr(args, "cache_size", None)
    if cache_size is not None:
        out.setdefault("cache", {})["size_bytes"] = cache_size
    cache_duration = getattr(args, "cache_duration", None)
    if cache_duration is not None:
        out.setdefault("cache", {})["ttl"] = cache_duration
    return out


def build_config(
    file_data: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> DNSBlockerConfig:
    """Brief: Merge overrides over file data and validate.

    Inputs:
      - file_data: Mapping loaded from YAML (or None).
      - overrides: Mapping from cli_overrides() (or None).

    Outputs:
      - DNSBlockerConfig.

    Raises:
      - ConfigError: When validation fails.

    Example:
      >>> build_config({"cache": {"ttl": 10}}, {"cache": {"size_bytes": 0}}).cache
      CacheConfig(size_bytes=0, ttl=10)
    """

    merged = _deep_merge(dict(file_data or {}), overrides or {})
    try:
        return DNSBlockerConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
