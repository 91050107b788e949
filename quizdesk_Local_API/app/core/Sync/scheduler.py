# quizdesk_Local_API/app/core/Sync/scheduler.py
# Periodic background trigger for the sync engine

import asyncio
from typing import Optional

from loguru import logger

from .core import SyncEngine
from .exceptions import SyncInProgressError
from .models import SyncResult, SyncTrigger


class SyncScheduler:
    """Issues a scheduled sync every `interval_seconds` until stopped. Failures are logged, never raised."""

    def __init__(self, engine: SyncEngine, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.running = False
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    def start(self):
        if self._task is not None and not self._task.done():
            logger.debug("Sync scheduler already running")
            return
        self.running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Sync scheduler started (every {self.interval_seconds}s)")

    async def stop(self):
        self.running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync scheduler stopped")

    async def run_once(self) -> Optional[SyncResult]:
        try:
            result = await self.engine.run_sync(SyncTrigger.SCHEDULED)
        except SyncInProgressError:
            logger.debug("Scheduled sync skipped: a pass is already running")
            return None
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")
            return None
        finally:
            self.runs += 1
        return result

    async def _loop(self):
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            if not self.running:
                break
            await self.run_once()
