"""
Simple in-memory metrics for Prometheus exposition.
Thread-safe counters.
"""
import threading
from typing import Dict

# name -> help text, in exposition order
COUNTERS = {
    "requests_total": "Total HTTP requests",
    "requests_2xx": "HTTP requests with 2xx status",
    "requests_4xx": "HTTP requests with 4xx status",
    "requests_5xx": "HTTP requests with 5xx status",
    "builds_started_total": "Build attempts started",
    "builds_succeeded_total": "Build attempts that published successfully",
    "builds_failed_total": "Build attempts that failed",
    "builds_rejected_total": "Build triggers rejected because a build was in flight",
    "objects_uploaded_total": "Objects uploaded to the artifact store",
    "objects_deleted_total": "Objects deleted from the artifact store",
    "publish_hits_total": "Published artifacts served",
    "publish_misses_total": "Publish requests answered with 404",
    "webhooks_received_total": "Push notifications received",
    "webhooks_unregistered_total": "Push notifications for unregistered repositories",
}


class Metrics:
    """Thread-safe metrics collection."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = 0
            self._counters[name] += value

    def get(self, name: str) -> int:
        """Get a counter value."""
        with self._lock:
            return self._counters.get(name, 0)

    def get_all(self) -> Dict[str, int]:
        """Get all counter values."""
        with self._lock:
            return self._counters.copy()

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        for name, value in self.get_all().items():
            metric = f"platform_{name}"
            lines.append(f"# HELP {metric} {COUNTERS.get(name, name)}")
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {value}")
        return "\n".join(lines) + "\n"


# Global metrics instance
metrics = Metrics()
