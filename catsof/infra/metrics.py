# catsof/infra/metrics.py
from __future__ import annotations
from collections import defaultdict
from threading import Lock
from typing import Dict
from catsof.infra.logging_config import get_logger

logger = get_logger(__name__)


class MetricsCollector:
    """
    In-process counters for the submission pipeline.
    Values live per process and reset on restart.
    """

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        """Increment a counter metric"""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += amount

    def get_counter(self, name: str, **labels) -> int:
        with self._lock:
            return self._counters.get(self._make_key(name, labels or None), 0)

    def get_metrics(self) -> dict:
        """Snapshot of all counters"""
        with self._lock:
            return {"counters": dict(self._counters)}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        """Create a metric key from name and labels"""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    """Increment a counter metric"""
    _metrics.inc_counter(name, amount, labels or None)


class IngestionMetrics:
    """Named counters for the ingestion pipeline"""

    @staticmethod
    def submission(outcome: str) -> None:
        inc_counter("submissions_total", outcome=outcome)

    @staticmethod
    def host_rejected(reason: str) -> None:
        inc_counter("unsafe_hosts_total", reason=reason)

    @staticmethod
    def redirect_followed() -> None:
        inc_counter("fetch_redirects_total")

    @staticmethod
    def bytes_fetched(amount: int) -> None:
        inc_counter("fetch_bytes_total", amount)

    @staticmethod
    def upload(outcome: str) -> None:
        inc_counter("uploads_total", outcome=outcome)
