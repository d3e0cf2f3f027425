"""
Process-wide system status cache for clouddisk-py

Request handlers only ever read the last snapshot; sampling happens on a
background task started with the application.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusSnapshot:
    """CPU and memory usage in whole percent"""
    cpu: int = 0
    memory: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu": self.cpu,
            "memory": self.memory,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


def _sample_cpu() -> int:
    return round(psutil.cpu_percent(interval=None))


def _sample_memory() -> int:
    return round(psutil.virtual_memory().percent)


class SystemStatusCache:
    """Holds the latest CPU/memory sample and refreshes it on an interval"""

    def __init__(self, refresh_interval: float = 5.0):
        self.refresh_interval = refresh_interval
        self._snapshot = StatusSnapshot()
        self._task: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> StatusSnapshot:
        return self._snapshot

    async def refresh(self) -> StatusSnapshot:
        """Take a new sample; a metric that fails keeps its previous value"""
        previous = self._snapshot

        try:
            cpu = await asyncio.to_thread(_sample_cpu)
        except (psutil.Error, OSError) as e:
            logger.error(f"Failed to sample CPU usage: {e}")
            cpu = previous.cpu

        try:
            memory = await asyncio.to_thread(_sample_memory)
        except (psutil.Error, OSError) as e:
            logger.error(f"Failed to sample memory usage: {e}")
            memory = previous.memory

        self._snapshot = StatusSnapshot(
            cpu=cpu,
            memory=memory,
            last_updated=datetime.now(timezone.utc),
        )
        return self._snapshot

    async def start(self) -> None:
        """Fill the cache once, then keep refreshing in the background"""
        if self._task is not None:
            return

        # Prime psutil so the first interval-less cpu_percent is meaningful
        await asyncio.to_thread(psutil.cpu_percent, None)
        await self.refresh()
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(f"System status refresh started (every {self.refresh_interval}s)")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self.refresh()

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("System status refresh stopped")
