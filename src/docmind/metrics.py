"""
Performance metrics collector for the knowledge-base service.

Tracks: per-operation latency, throughput, memory usage, error counts by kind.
Logs one structured line per operation to METRICS_DIR/metrics.jsonl.
"""
from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path

import psutil

from .config import METRICS_DIR


class _OperationStats:
    __slots__ = ("count", "errors", "total_ms", "min_ms", "max_ms")

    def __init__(self):
        self.count = 0
        self.errors = 0
        self.total_ms = 0.0
        self.min_ms = float("inf")
        self.max_ms = 0.0

    def snapshot(self) -> dict:
        return {
            "count": self.count,
            "errors": self.errors,
            "avg_ms": round(self.total_ms / self.count, 2) if self.count else 0.0,
            "min_ms": round(self.min_ms, 2) if self.count else 0.0,
            "max_ms": round(self.max_ms, 2),
        }


class MetricsCollector:
    """Thread-safe operation metrics tracker with JSONL file logging."""

    def __init__(self, log_dir: str | Path = METRICS_DIR):
        self._lock = threading.Lock()
        self._start_time: float = time.time()

        self._operations: dict[str, _OperationStats] = {}
        self._errors_by_kind: dict[str, int] = {}

        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self._log_dir / "metrics.jsonl"

        # Process handle for memory tracking.
        self._process = psutil.Process(os.getpid())

    @property
    def log_path(self) -> Path:
        return self._log_path

    def record_operation(
        self,
        operation: str,
        latency_ms: float,
        success: bool,
        error_kind: str | None = None,
        document_id: str | None = None,
    ) -> None:
        """Records a single operation's outcome and appends to JSONL log."""
        entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "operation": operation,
            "latency_ms": round(latency_ms, 2),
            "success": success,
            "error_kind": error_kind,
            "document_id": document_id,
        }

        with self._lock:
            stats = self._operations.setdefault(operation, _OperationStats())
            stats.count += 1
            stats.total_ms += latency_ms
            stats.min_ms = min(stats.min_ms, latency_ms)
            stats.max_ms = max(stats.max_ms, latency_ms)
            if not success:
                stats.errors += 1
                kind = error_kind or "unknown"
                self._errors_by_kind[kind] = self._errors_by_kind.get(kind, 0) + 1

        # Append to JSONL file outside the lock.
        try:
            with open(self._log_path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, ensure_ascii=True) + "\n")
        except OSError:
            pass

    def get_summary(self) -> dict:
        """Returns comprehensive metrics snapshot."""
        with self._lock:
            operations = {name: stats.snapshot() for name, stats in sorted(self._operations.items())}
            errors_by_kind = dict(sorted(self._errors_by_kind.items()))

        total = sum(op["count"] for op in operations.values())
        errors = sum(op["errors"] for op in operations.values())
        uptime_s = time.time() - self._start_time
        throughput_rps = (total / uptime_s) if uptime_s > 0 else 0.0

        mem_info = self._process.memory_info()
        return {
            "operations": operations,
            "throughput": {
                "total_operations": total,
                "operations_per_second": round(throughput_rps, 4),
                "uptime_seconds": round(uptime_s, 1),
            },
            "memory": {
                "rss_mb": round(mem_info.rss / (1024 * 1024), 1),
                "vms_mb": round(mem_info.vms / (1024 * 1024), 1),
            },
            "errors": {
                "count": errors,
                "by_kind": errors_by_kind,
                "rate_percent": round((errors / total * 100) if total > 0 else 0.0, 2),
            },
        }
