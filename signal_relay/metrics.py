import uuid
from datetime import datetime


class GateMetrics:
    """Process-lifetime counters for the gate, reported by the status endpoint."""

    def __init__(self):
        self.run_id = str(uuid.uuid4())[:8]
        self.started_at = datetime.now().astimezone().isoformat()

        self.stats = {
            "fresh_count": 0,
            "cache_hit_count": 0,
            "fallback_count": 0,
            "rate_limited_count": 0,
            "generation_error_count": 0,
            "quota_block_count": 0,
            "avg_latency_ms": 0.0,
        }

        self._latencies = []

    # -----------------------------
    # Counters
    # -----------------------------

    def inc(self, key, value=1):
        if key in self.stats:
            self.stats[key] += value

    def record_latency(self, elapsed_sec):
        self._latencies.append(elapsed_sec)
        # keep the window bounded for a long-lived process
        if len(self._latencies) > 500:
            self._latencies = self._latencies[-500:]

    # -----------------------------
    # Report
    # -----------------------------

    def snapshot(self):
        stats = dict(self.stats)
        if self._latencies:
            avg = sum(self._latencies) / len(self._latencies)
            stats["avg_latency_ms"] = round(avg * 1000, 2)
        stats["run_id"] = self.run_id
        stats["started_at"] = self.started_at
        return stats
