"""
Metrics collection and reporting for clouddisk-py
"""

import time
import threading
from typing import Dict, Any
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class Metrics:
    """Application metrics container"""

    # Request metrics
    total_requests: int = 0
    active_requests: int = 0
    requests_by_method: Dict[str, int] = field(default_factory=dict)
    requests_by_status: Dict[int, int] = field(default_factory=dict)

    # Transfer metrics
    total_upload_bytes: int = 0
    total_download_bytes: int = 0
    uploads: int = 0
    downloads: int = 0
    partial_responses: int = 0
    aborted_streams: int = 0

    # Error metrics
    total_errors: int = 0
    auth_failures: int = 0
    range_rejections: int = 0

    # Performance metrics
    avg_response_time: float = 0.0
    total_response_time: float = 0.0

    # Startup time
    startup_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary"""
        uptime = time.time() - self.startup_time

        return {
            "uptime_seconds": uptime,
            "requests": {
                "total": self.total_requests,
                "active": self.active_requests,
                "by_method": self.requests_by_method.copy(),
                "by_status": self.requests_by_status.copy(),
                "avg_response_time": self.avg_response_time,
            },
            "transfer": {
                "upload_bytes": self.total_upload_bytes,
                "download_bytes": self.total_download_bytes,
                "uploads": self.uploads,
                "downloads": self.downloads,
                "partial_responses": self.partial_responses,
                "aborted_streams": self.aborted_streams,
            },
            "errors": {
                "total": self.total_errors,
                "auth_failures": self.auth_failures,
                "range_rejections": self.range_rejections,
            },
        }


class MetricsManager:
    """Thread-safe metrics manager"""

    def __init__(self):
        self.metrics = Metrics()
        self._lock = threading.Lock()

    def increment_requests(self, method: str = "GET"):
        """Increment request counter"""
        with self._lock:
            self.metrics.total_requests += 1
            self.metrics.requests_by_method[method] = self.metrics.requests_by_method.get(method, 0) + 1

    def increment_active_requests(self):
        with self._lock:
            self.metrics.active_requests += 1

    def decrement_active_requests(self):
        with self._lock:
            self.metrics.active_requests = max(0, self.metrics.active_requests - 1)

    def record_response(self, status_code: int, response_time: float):
        """Record response metrics"""
        with self._lock:
            self.metrics.requests_by_status[status_code] = self.metrics.requests_by_status.get(status_code, 0) + 1
            if status_code >= 500:
                self.metrics.total_errors += 1
            elif status_code == 401:
                self.metrics.auth_failures += 1
            elif status_code == 416:
                self.metrics.range_rejections += 1

            # Update average response time
            total_requests = self.metrics.total_requests
            if total_requests > 0:
                self.metrics.total_response_time += response_time
                self.metrics.avg_response_time = self.metrics.total_response_time / total_requests

    def record_upload(self, bytes_count: int):
        """Count one stored upload"""
        with self._lock:
            self.metrics.uploads += 1
            self.metrics.total_upload_bytes += bytes_count

    def record_download(self, status_code: int, bytes_count: int, complete: bool = True):
        """Count one finished (or aborted) file response"""
        with self._lock:
            self.metrics.downloads += 1
            self.metrics.total_download_bytes += bytes_count
            if status_code == 206:
                self.metrics.partial_responses += 1
            if not complete:
                self.metrics.aborted_streams += 1

    @contextmanager
    def request_context(self, method: str = "GET"):
        """Context manager for request metrics"""
        self.increment_requests(method)
        self.increment_active_requests()
        try:
            yield
        finally:
            self.decrement_active_requests()

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics snapshot"""
        with self._lock:
            return self.metrics.to_dict()

    def reset_metrics(self):
        """Reset all metrics (for testing)"""
        with self._lock:
            self.metrics = Metrics()


# Global metrics manager instance
metrics_manager = MetricsManager()


def record_upload(bytes_count: int):
    metrics_manager.record_upload(bytes_count)


def record_download(status_code: int, bytes_count: int, complete: bool = True):
    metrics_manager.record_download(status_code, bytes_count, complete)
