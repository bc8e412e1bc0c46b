"""
Observability Metrics
Counters for discount lifecycle events and best-effort remote failures.
"""
from typing import Dict, Any, Optional
import logging
import threading
import time
from collections import defaultdict

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects in-process counters; exposed on /api/health"""

    def __init__(self):
        self.counters: Dict[str, int] = {
            "bundles_created": 0,
            "bundles_updated": 0,
            "bundles_deleted": 0,
            "codes_issued": 0,
            "codes_reused": 0,
            "codes_revoked": 0,
            "issue_failures": 0,
            "cart_matches": 0,
            "cart_misses": 0,
            "snapshot_syncs": 0,
        }
        # "<operation>:<error kind>" -> count, for failures that were logged and swallowed
        self.remote_failures: Dict[str, int] = defaultdict(int)
        self.last_sync_at: Optional[float] = None
        self.last_sync_ok: Optional[bool] = None
        self._lock = threading.Lock()

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + amount

    def record_remote_failure(self, operation: str, kind: str) -> None:
        with self._lock:
            self.remote_failures[f"{operation}:{kind}"] += 1

    def record_sync(self, ok: bool) -> None:
        with self._lock:
            self.last_sync_at = time.time()
            self.last_sync_ok = ok
            if ok:
                self.counters["snapshot_syncs"] += 1
        if not ok:
            self.record_remote_failure("metafield_sync", "failed")

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self.counters),
                "remote_failures": dict(self.remote_failures),
                "last_sync_at": self.last_sync_at,
                "last_sync_ok": self.last_sync_ok,
            }

    def reset(self) -> None:
        with self._lock:
            for key in self.counters:
                self.counters[key] = 0
            self.remote_failures.clear()
            self.last_sync_at = None
            self.last_sync_ok = None


# Global metrics collector instance
metrics_collector = MetricsCollector()
