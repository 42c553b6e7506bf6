"""
Thread-safe statistics collection for the dnsblocker proxy.

This module consumes the named events emitted by QueryHandler (blocked,
cache_hit, cache_miss, upstream_error, ...) and periodically logs a JSON
summary. It holds no presentation logic of its own beyond that log line.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TopK:
    """
    Approximate top-K counter with bounded memory.

    Inputs (constructor):
        capacity: Number of keys reported by export()
        prune_factor: Keep up to capacity * prune_factor keys before pruning

    Outputs:
        TopK instance

    Example:
        >>> t = TopK(capacity=2)
        >>> for k in ["a", "b", "a"]:
        ...     t.add(k)
        >>> t.export(1)
        [('a', 2)]
    """

    def __init__(self, capacity: int = 10, prune_factor: int = 4) -> None:
        self.capacity = max(1, int(capacity))
        self._limit = self.capacity * max(2, int(prune_factor))
        self.counts: Dict[str, int] = {}

    def add(self, key: str) -> None:
        self.counts[key] = self.counts.get(key, 0) + 1
        if len(self.counts) > self._limit:
            self._prune()

    def export(self, n: int) -> List[Tuple[str, int]]:
        items = sorted(self.counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return items[: max(0, int(n))]

    def _prune(self) -> None:
        keep = self.export(self.capacity * 2)
        self.counts = dict(keep)


@dataclass
class StatsSnapshot:
    """Point-in-time copy of collector state, safe to format without locks."""

    created_at: float
    totals: Dict[str, int] = field(default_factory=dict)
    top_blocked: List[Tuple[str, int]] = field(default_factory=list)
    cache: Optional[Dict[str, Any]] = None


class StatsCollector:
    """
    Thread-safe aggregator for handler events.

    Inputs (constructor):
        top_n: Number of blocked names reported in snapshots (default 10)
        cache_snapshot: Optional callable returning cache occupancy counters

    Outputs:
        StatsCollector instance; pass ``collector.record_event`` as the
        QueryHandler ``on_event`` sink.

    Example:
        >>> collector = StatsCollector()
        >>> collector.record_event("blocked", "ads.example.com.")
        >>> collector.snapshot().totals["blocked"]
        1
    """

    def __init__(
        self,
        top_n: int = 10,
        cache_snapshot: Optional[Callable[[], Dict[str, Any]]] = None,
    ) -> None:
        self._lock = threading.RLock()
        self.top_n = max(1, int(top_n))
        self._cache_snapshot = cache_snapshot
        self._totals: Dict[str, int] = defaultdict(int)
        self._top_blocked = TopK(capacity=self.top_n)

    def record_event(self, event: str, qname: str) -> None:
        """Record one named event for qname."""
        with self._lock:
            self._totals[event] += 1
            self._totals["events_total"] += 1
            if event == "blocked" and qname:
                self._top_blocked.add(qname.rstrip(".").lower())

    def snapshot(self, reset: bool = False) -> StatsSnapshot:
        """
        Copy current counters.

        Inputs:
            reset: Zero counters after copying

        Outputs:
            StatsSnapshot
        """
        with self._lock:
            snap = StatsSnapshot(
                created_at=time.time(),
                totals=dict(self._totals),
                top_blocked=self._top_blocked.export(self.top_n),
            )
            if reset:
                self._totals = defaultdict(int)
                self._top_blocked = TopK(capacity=self.top_n)
        if self._cache_snapshot is not None:
            try:
                snap.cache = dict(self._cache_snapshot())
            except Exception:  # pragma: no cover
                logger.debug("Cache snapshot failed", exc_info=True)
        return snap


def format_snapshot_json(snapshot: StatsSnapshot) -> str:
    """
    Render a snapshot as a single compact JSON line.

    Example:
        >>> format_snapshot_json(StatsSnapshot(created_at=0.0))
        '{"created_at": 0.0, "totals": {}, "top_blocked": [], "cache": null}'
    """
    return json.dumps(asdict(snapshot), sort_keys=False)


class StatsReporter(threading.Thread):
    """
    Background daemon thread for periodic statistics logging.

    Inputs (constructor):
        collector: StatsCollector instance to snapshot
        interval_seconds: Seconds between log emissions (default 60)
        reset_on_log: Reset counters after each log (default False)
        logger_name: Logger name to use (default "dnsblocker.stats")

    Outputs:
        StatsReporter thread instance (call start() to begin)

    Example:
        >>> reporter = StatsReporter(StatsCollector(), interval_seconds=10)
        >>> reporter.start()
        >>> reporter.stop()
    """

    def __init__(
        self,
        collector: StatsCollector,
        interval_seconds: float = 60,
        reset_on_log: bool = False,
        logger_name: str = "dnsblocker.stats",
    ) -> None:
        super().__init__(daemon=True, name="StatsReporter")
        self.collector = collector
        self.interval_seconds = max(0.01, float(interval_seconds))
        self.reset_on_log = reset_on_log
        self.logger = logging.getLogger(logger_name)
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                snapshot = self.collector.snapshot(reset=self.reset_on_log)
                self.logger.info(format_snapshot_json(snapshot))
            except Exception as e:  # pragma: no cover
                self.logger.error("StatsReporter error: %s", e, exc_info=True)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal reporter to stop and wait for thread to exit."""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)
