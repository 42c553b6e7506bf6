"""Typed configuration models for dnsblocker.

Brief:
  The proxy consumes a handful of values: where to listen, which upstream to
  forward to, where the blocklist lives, and how large and how long-lived the
  response cache is. These pydantic models validate them once at startup; the
  resulting objects are passed explicitly into the components.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOG_LEVELS = ("debug", "info", "warn", "warning", "error", "crit", "critical")


class ListenConfig(BaseModel):
    """Brief: UDP listen address.

    Inputs:
      - host: Bind address (default all IPv4 interfaces).
      - port: Bind port (default 53).
    """

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="0.0.0.0", min_length=1)
    port: int = Field(default=53, ge=0, le=65535)


class UpstreamConfig(BaseModel):
    """Brief: The single upstream resolver queries are forwarded to.

    Inputs:
      - host: Upstream address.
      - port: Upstream UDP port.
      - timeout_ms: Per-exchange socket timeout in milliseconds.
    """

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="192.168.1.1", min_length=1)
    port: int = Field(default=53, ge=1, le=65535)
    timeout_ms: int = Field(default=2000, gt=0)


class BlocklistConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(default="hosts", min_length=1)


class CacheConfig(BaseModel):
    """Brief: Response cache sizing.

    Inputs:
      - size_bytes: Capacity in bytes; 0 disables caching.
      - ttl: Seconds a cached answer may be served.
    """

    model_config = ConfigDict(extra="forbid")

    size_bytes: int = Field(default=1024 * 1024, ge=0)
    ttl: int = Field(default=5 * 60, ge=0)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="info")
    stderr: bool = Field(default=True)
    file: Optional[str] = None
    syslog: Union[bool, Dict[str, Any]] = Field(default=False)

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = str(value).strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}; expected one of {LOG_LEVELS}")
        return level


class StatisticsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False)
    interval_seconds: float = Field(default=60, gt=0)
    reset_on_log: bool = Field(default=False)
    top_n: int = Field(default=10, ge=1)


class DNSBlockerConfig(BaseModel):
    """Brief: Root configuration model.

    Outputs:
      - DNSBlockerConfig with every section populated from defaults when
        omitted.

    Example:
      >>> cfg = DNSBlockerConfig.model_validate({"cache": {"ttl": 60}})
      >>> cfg.cache.ttl, cfg.upstream.port
      (60, 53)
    """

    model_config = ConfigDict(extra="forbid")

    listen: ListenConfig = Field(default_factory=ListenConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    blocklist: BlocklistConfig = Field(default_factory=BlocklistConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
