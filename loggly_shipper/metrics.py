"""Metrics collector — thread-safe counters for record intake and delivery."""

import threading
import time
from collections import deque

FLUSH_TRIGGERS = ("size", "age", "manual", "close")

# Latency stats cover the most recent requests only.
SEND_TIME_WINDOW = 1000


class MetricsCollector:
    """Collects counters and latency samples for one shipper."""

    def __init__(self, send_time_window: int = SEND_TIME_WINDOW) -> None:
        self._lock = threading.Lock()
        self._records_submitted: int = 0
        self._records_filtered: int = 0
        self._records_dropped: int = 0
        self._batches_sent: int = 0
        self._batches_failed: int = 0
        self._documents_delivered: int = 0
        self._bytes_delivered: int = 0
        self._send_times: deque[float] = deque(maxlen=send_time_window)
        self._flush_triggers: dict = {trigger: 0 for trigger in FLUSH_TRIGGERS}
        self._start_time = time.monotonic()

    def record_submitted(self) -> None:
        with self._lock:
            self._records_submitted += 1

    def record_filtered(self) -> None:
        with self._lock:
            self._records_filtered += 1

    def record_dropped(self, count: int = 1) -> None:
        with self._lock:
            self._records_dropped += count

    def record_flush(self, trigger: str) -> None:
        with self._lock:
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    def record_batch(
        self,
        record_count: int,
        bytes_sent: int,
        send_time_ms: float,
        success: bool,
    ) -> None:
        """Record the outcome of one bulk request.

        Args:
            record_count: Number of documents in the request.
            bytes_sent: Request body size in bytes (0 when it failed).
            send_time_ms: Wall time including retries, in milliseconds.
            success: Whether Loggly accepted the request.
        """
        with self._lock:
            self._send_times.append(send_time_ms)
            if success:
                self._batches_sent += 1
                self._documents_delivered += record_count
                self._bytes_delivered += bytes_sent
            else:
                self._batches_failed += 1
                self._records_dropped += record_count

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all collected metrics."""
        with self._lock:
            send_times = list(self._send_times)
            avg_send = sum(send_times) / len(send_times) if send_times else 0.0

            return {
                "records_submitted": self._records_submitted,
                "records_filtered": self._records_filtered,
                "records_dropped": self._records_dropped,
                "batches_sent": self._batches_sent,
                "batches_failed": self._batches_failed,
                "documents_delivered": self._documents_delivered,
                "bytes_delivered": self._bytes_delivered,
                "avg_send_time_ms": avg_send,
                "p95_send_time_ms": self._percentile(send_times, 95),
                "flush_triggers": dict(self._flush_triggers),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Compute an interpolated percentile from a list of numeric values.

        Args:
            data: List of numeric values (will be sorted internally).
            pct: Desired percentile (0-100).

        Returns:
            Interpolated value at the given percentile, or 0.0 if data is empty.
        """
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)

        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        fraction = idx - lower

        if upper >= n:
            return float(sorted_data[-1])

        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
