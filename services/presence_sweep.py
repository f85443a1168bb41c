"""
Background presence sweep: drivers that stop sending heartbeats are
marked offline so they drop out of assignment.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional
import asyncio
import traceback
import logging

from sqlalchemy.orm import Session

from models.log import LogCategory
from services.driver_service import DriverService
from services.geo_index import GeoIndex
from utils.logger import DatabaseLogger, log_info

logger = logging.getLogger(__name__)

class PresenceSweeper:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        geo_index: GeoIndex,
        interval_seconds: float = 30,
        stale_after_seconds: float = 60
    ):
        self.session_factory = session_factory
        self.geo_index = geo_index
        self.interval_seconds = interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self._task: Optional[asyncio.Task] = None

    def sweep_once(self, now: Optional[datetime] = None) -> int:
        """Run one sweep; returns how many drivers went offline. Never raises."""
        cutoff = (now or datetime.utcnow()) - timedelta(seconds=self.stale_after_seconds)
        db = self.session_factory()
        try:
            flipped = DriverService(db, self.geo_index).mark_stale_offline(cutoff)
            if flipped:
                logger.info(f"Presence sweep marked {len(flipped)} drivers offline: {flipped}")
                log_info(
                    f"Marked {len(flipped)} stale drivers offline",
                    category=LogCategory.PRESENCE,
                    details={"driver_ids": flipped, "cutoff": cutoff.isoformat()},
                    db=db,
                )
            return len(flipped)
        except Exception as e:
            logger.error(f"Presence sweep failed: {e}", exc_info=True)
            db.rollback()
            DatabaseLogger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                stack_trace=traceback.format_exc(),
                source="presence_sweep",
                db=db,
            )
            return 0
        finally:
            db.close()

    async def run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            await asyncio.to_thread(self.sweep_once)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
            logger.info(f"Presence sweep started (every {self.interval_seconds}s, stale after {self.stale_after_seconds}s)")
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Presence sweep stopped")
