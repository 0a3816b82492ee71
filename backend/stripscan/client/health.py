"""
StripScan Client — Health Monitor
====================================

What:  Polls GET /health on a fixed interval and replays the offline queue
       whenever the server answers.
Why:   Replay must only run once the server is known to be reachable. Polling
       also continues while the server is down, so recovery is noticed within
       one interval without any user action.

State:
    reachable = None   never polled yet (unknown, no replay)
    reachable = True   last poll succeeded
    reachable = False  last poll failed

Lifecycle:
    monitor = HealthMonitor(client, queue)
    monitor.start()       # background task: poll, sleep(interval), repeat
    ...
    await monitor.stop()
"""

import asyncio
import logging
from typing import Callable, Optional

from stripscan.client.api import StripScanClient
from stripscan.client.queue import OfflineQueue
from stripscan.exceptions import StripScanError

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Args:
        client:    API client used for health checks and replays
        queue:     Offline queue replayed after each successful poll
        interval:  Seconds between polls (defaults to the client's setting)
        on_change: Called with the new reachability whenever it flips
    """

    def __init__(
        self,
        client: StripScanClient,
        queue: OfflineQueue,
        interval: Optional[float] = None,
        on_change: Optional[Callable[[bool], None]] = None,
    ):
        self.client = client
        self.queue = queue
        self.interval = interval if interval is not None else client.config.health_poll_interval
        self.on_change = on_change
        self.reachable: Optional[bool] = None
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    def _set_reachable(self, reachable: bool) -> None:
        changed = self.reachable is not reachable
        self.reachable = reachable
        if not changed:
            return
        if reachable:
            logger.info("Backend reachable")
        else:
            logger.warning("Backend unreachable: %s", self.last_error)
        if self.on_change is not None:
            self.on_change(reachable)

    async def poll_once(self) -> bool:
        """One health check; replays the queue if the server is reachable."""
        try:
            await self.client.check_health()
        except StripScanError as e:
            self.last_error = e.message
            self._set_reachable(False)
            return False

        self.last_error = None
        self._set_reachable(True)
        if len(self.queue):
            await self.queue.replay_all(self.client.upload)
        return True

    async def run(self) -> None:
        """Poll forever; errors in one cycle never stop the next."""
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Health poll cycle failed")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="stripscan-health-monitor")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
