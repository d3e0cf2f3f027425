"""
Tests for the system status cache and request metrics
"""

import asyncio

import psutil

from clouddisk import metrics as metrics_module
from clouddisk import status as status_module
from clouddisk.metrics import MetricsManager
from clouddisk.status import StatusSnapshot, SystemStatusCache


class TestSystemStatusCache:
    """Test sampling and failure handling"""

    def test_initial_snapshot(self):
        cache = SystemStatusCache()
        data = cache.snapshot.to_dict()
        assert data == {"cpu": 0, "memory": 0, "last_updated": None}

    def test_refresh(self, monkeypatch):
        monkeypatch.setattr(status_module, "_sample_cpu", lambda: 12)
        monkeypatch.setattr(status_module, "_sample_memory", lambda: 34)

        cache = SystemStatusCache()
        snapshot = asyncio.run(cache.refresh())

        assert (snapshot.cpu, snapshot.memory) == (12, 34)
        assert snapshot.last_updated is not None
        assert cache.snapshot is snapshot

    def test_failed_metric_keeps_previous_value(self, monkeypatch):
        cache = SystemStatusCache()
        cache._snapshot = StatusSnapshot(cpu=50, memory=60)

        def broken():
            raise psutil.AccessDenied()

        monkeypatch.setattr(status_module, "_sample_cpu", broken)
        monkeypatch.setattr(status_module, "_sample_memory", lambda: 70)

        snapshot = asyncio.run(cache.refresh())
        assert snapshot.cpu == 50
        assert snapshot.memory == 70

    def test_start_and_stop(self, monkeypatch):
        monkeypatch.setattr(status_module, "_sample_cpu", lambda: 1)
        monkeypatch.setattr(status_module, "_sample_memory", lambda: 2)

        async def _run():
            cache = SystemStatusCache(refresh_interval=0.01)
            await cache.start()
            assert cache.snapshot.last_updated is not None
            await asyncio.sleep(0.05)
            await cache.stop()
            await cache.stop()
            return cache

        cache = asyncio.run(_run())
        assert cache._task is None


class TestMetricsManager:
    """Test counters"""

    def setup_method(self):
        self.manager = MetricsManager()

    def test_response_classification(self):
        for code in (200, 206, 401, 416, 500):
            with self.manager.request_context("GET"):
                self.manager.record_response(code, 0.01)

        data = self.manager.get_metrics()
        assert data["requests"]["total"] == 5
        assert data["requests"]["active"] == 0
        assert data["requests"]["by_method"] == {"GET": 5}
        assert data["errors"] == {"total": 1, "auth_failures": 1, "range_rejections": 1}

    def test_transfers(self):
        self.manager.record_upload(100)
        self.manager.record_download(206, 10, complete=True)
        self.manager.record_download(200, 5, complete=False)

        transfer = self.manager.get_metrics()["transfer"]
        assert transfer["uploads"] == 1
        assert transfer["upload_bytes"] == 100
        assert transfer["downloads"] == 2
        assert transfer["download_bytes"] == 15
        assert transfer["partial_responses"] == 1
        assert transfer["aborted_streams"] == 1

    def test_module_recorders_use_global_manager(self):
        metrics_module.metrics_manager.reset_metrics()
        metrics_module.record_upload(7)
        metrics_module.record_download(200, 3)

        transfer = metrics_module.metrics_manager.get_metrics()["transfer"]
        assert (transfer["uploads"], transfer["upload_bytes"]) == (1, 7)
        assert (transfer["downloads"], transfer["download_bytes"]) == (1, 3)
        metrics_module.metrics_manager.reset_metrics()

    def test_reset(self):
        self.manager.record_upload(1)
        self.manager.reset_metrics()
        assert self.manager.get_metrics()["transfer"]["uploads"] == 0
