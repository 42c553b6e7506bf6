from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List, Optional

from .blocklist import BlocklistMatcher, load_blocklist
from .cache import ResponseCache
from .config.config_parser import build_config, cli_overrides, load_config_file
from .config.config_schema import DNSBlockerConfig
from .config.logging_config import init_logging
from .errors import ConfigError
from .servers.handler import QueryHandler
from .servers.udp_server import DNSServer
from .servers.upstream import UpstreamResolver
from .stats import StatsCollector, StatsReporter


def build_parser() -> argparse.ArgumentParser:
    """Brief: Build the CLI parser; every flag defaults to None (= not given)."""

    parser = argparse.ArgumentParser(
        prog="dnsblocker",
        description="DNS proxy that refuses blocklisted names and caches upstream answers",
    )
    parser.add_argument("--config", help="Path to optional YAML config")
    parser.add_argument(
        "--dns-server",
        help="DNS server for proxying non-blocked queries, host:port (default 192.168.1.1:domain)",
    )
    parser.add_argument("--listen", help="Listen address, ip:port (default :domain)")
    parser.add_argument("--hosts-path", help="Path to blocklist file (default hosts)")
    parser.add_argument("--log-level", help="Minimum log level (default info)")
    parser.add_argument(
        "--cache-size", type=int, help="Cache size in bytes (default 1048576)"
    )
    parser.add_argument(
        "--cache-duration", type=int, help="Cache duration in seconds (default 300)"
    )
    return parser


def load_settings(argv: Optional[List[str]] = None) -> DNSBlockerConfig:
    """Brief: Parse flags and the optional config file into a DNSBlockerConfig.

    Inputs:
      - argv: Command-line arguments (without program name).

    Outputs:
      - DNSBlockerConfig.

    Raises:
      - ConfigError / OSError: For invalid values or an unreadable config file.
    """

    args = build_parser().parse_args(argv)
    file_data = load_config_file(args.config) if args.config else {}
    return build_config(file_data, cli_overrides(args))


def build_handler(
    cfg: DNSBlockerConfig,
    cache: ResponseCache,
    stats: Optional[StatsCollector] = None,
) -> QueryHandler:
    """Brief: Load the blocklist and wire matcher, cache and upstream together.

    Raises:
      - OSError: When the blocklist cannot be read.
    """

    matcher = BlocklistMatcher(load_blocklist(cfg.blocklist.path))
    return QueryHandler(
        matcher,
        cache,
        UpstreamResolver(
            cfg.upstream.host, cfg.upstream.port, timeout_ms=cfg.upstream.timeout_ms
        ),
        cache_ttl=cfg.cache.ttl,
        on_event=stats.record_event if stats is not None else None,
    )


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the DNS proxy.
    Parses arguments, loads configuration and the blocklist, and serves until
    SIGINT/SIGTERM.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code (0 on clean shutdown, 1 on startup failure).

    Example use:
        CLI:
            dnsblocker --dns-server 1.1.1.1:53 --listen 127.0.0.1:5353 --hosts-path hosts
    """
    try:
        cfg = load_settings(argv)
    except (ConfigError, OSError) as exc:
        print(f"dnsblocker: {exc}")
        return 1

    init_logging(cfg.logging)
    logger = logging.getLogger("dnsblocker.main")
    logger.info("Start listen on: %s:%d", cfg.listen.host, cfg.listen.port)
    logger.info("DNS source: %s:%d", cfg.upstream.host, cfg.upstream.port)
    logger.info("Hosts file: %s", cfg.blocklist.path)
    logger.info("Log level: %s", cfg.logging.level)
    logger.info("Cache size: %d", cfg.cache.size_bytes)
    logger.info("Cache duration: %d", cfg.cache.ttl)

    cache = ResponseCache(cfg.cache.size_bytes)
    stats: Optional[StatsCollector] = None
    if cfg.statistics.enabled:
        stats = StatsCollector(
            top_n=cfg.statistics.top_n, cache_snapshot=cache.snapshot
        )

    try:
        handler = build_handler(cfg, cache, stats)
    except OSError as exc:
        logger.error("Cannot load blocklist %s: %s", cfg.blocklist.path, exc)
        return 1

    try:
        server = DNSServer(cfg.listen.host, cfg.listen.port, handler)
    except OSError as exc:
        logger.error(
            "Cannot bind %s:%d: %s", cfg.listen.host, cfg.listen.port, exc
        )
        return 1

    reporter: Optional[StatsReporter] = None
    if stats is not None:
        reporter = StatsReporter(
            stats,
            interval_seconds=cfg.statistics.interval_seconds,
            reset_on_log=cfg.statistics.reset_on_log,
        )
        reporter.start()

    stop_event = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("Received signal %d, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    serve_thread = threading.Thread(
        target=server.serve_forever, name="DNSServer", daemon=True
    )
    serve_thread.start()
    logger.info("Serving on %s:%d", *server.server_address)
    try:
        while not stop_event.wait(1.0):
            if not serve_thread.is_alive():
                logger.error("UDP server loop exited unexpectedly")
                break
    finally:
        server.stop()
        if reporter is not None:
            reporter.stop()
    return 0
