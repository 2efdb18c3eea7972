"""Metrics service for tracking engine performance.

Singleton service to track recommendation requests, strategy failures and
similarity recomputations.
"""

import threading
from collections import Counter
from typing import Dict


class MetricsService:
    """Singleton service for tracking engine metrics.

    Thread-safe counters and latency tracking for recommendation requests.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize metrics counters."""
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._reset_counters()
        self._initialized = True

    def _reset_counters(self) -> None:
        self._request_count = 0
        self._total_latency_ms = 0.0
        self._min_latency_ms = float("inf")
        self._max_latency_ms = 0.0
        self._fallback_count = 0
        self._strategy_failures: Counter = Counter()
        self._strategy_timeouts: Counter = Counter()
        self._recompute_count = 0
        self._last_recompute_edges: Dict[str, int] = {}

    def record_request(self, latency_ms: float) -> None:
        """Record a recommendation request with its latency.

        Args:
            latency_ms: Latency in milliseconds
        """
        with self._lock:
            self._request_count += 1
            self._total_latency_ms += latency_ms

            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms

            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms

    def record_fallback(self) -> None:
        """Record a request that was answered by the fallback ladder."""
        with self._lock:
            self._fallback_count += 1

    def record_strategy_failure(self, strategy: str, timed_out: bool = False) -> None:
        """Record a strategy that degraded to an empty contribution.

        Args:
            strategy: Strategy name, e.g. "user_cf"
            timed_out: True if the strategy exceeded its time limit
        """
        with self._lock:
            if timed_out:
                self._strategy_timeouts[strategy] += 1
            else:
                self._strategy_failures[strategy] += 1

    def record_recompute(self, edge_counts: Dict[str, int]) -> None:
        """Record a finished similarity recomputation.

        Args:
            edge_counts: Number of edges written per recommendation type
        """
        with self._lock:
            self._recompute_count += 1
            self._last_recompute_edges = dict(edge_counts)

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - request_count: Total number of recommendation requests
            - average_latency_ms / min_latency_ms / max_latency_ms
            - fallback_count: Requests answered by the fallback ladder
            - strategy_failures / strategy_timeouts: Counts per strategy
            - recompute_count / last_recompute_edges
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._request_count
                if self._request_count > 0
                else 0.0
            )

            return {
                "request_count": self._request_count,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(self._min_latency_ms, 2) if self._min_latency_ms != float("inf") else 0.0,
                "max_latency_ms": round(self._max_latency_ms, 2),
                "fallback_count": self._fallback_count,
                "strategy_failures": dict(self._strategy_failures),
                "strategy_timeouts": dict(self._strategy_timeouts),
                "recompute_count": self._recompute_count,
                "last_recompute_edges": dict(self._last_recompute_edges),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._reset_counters()


# Global singleton instance
metrics_service = MetricsService()
