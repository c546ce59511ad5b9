# scheduler.py
# Description: Background auto-sync loop driven by the persisted sync settings
#
# Imports
import asyncio
from typing import Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import DEFAULT_SYNC_INTERVAL_MINUTES
from ..DB.Local_Records_DB import LocalRecordsDBError
from ..DB.Sync_State_DB import SyncSettings
from .sync_schemas import SyncResult
from .sync_service import SyncService
#
#######################################################################################################################
#
# Functions:

class AutoSyncScheduler:
    """
    Runs `sync_all` on startup (when enabled) and then every
    `sync_interval_minutes` while `auto_sync` is on.

    Settings are re-read on every tick, so changes apply without a restart.
    `seconds_per_minute` exists so tests can shrink the interval.
    """

    def __init__(self, service: SyncService, seconds_per_minute: float = 60.0):
        self.service = service
        self.seconds_per_minute = seconds_per_minute
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        self._task = asyncio.create_task(self._run_loop(), name="auto-sync")
        logger.info("Auto-sync scheduler started")
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
        logger.info("Auto-sync scheduler stopped")

    async def run_once(self) -> Optional[SyncResult]:
        """One scheduled tick: sync when auto-sync is on, otherwise do nothing."""
        if not self.service.get_settings().auto_sync:
            return None
        return await self._sync("interval")

    async def _sync(self, reason: str) -> SyncResult:
        logger.debug(f"Auto-sync triggered ({reason})")
        result = await self.service.sync_all()
        if not result.success:
            logger.warning(f"Auto-sync ({reason}) finished with errors: {result.errors}")
        return result

    def _load_settings(self) -> Optional[SyncSettings]:
        try:
            return self.service.get_settings()
        except LocalRecordsDBError as e:
            logger.exception(f"Auto-sync could not read sync settings, retrying on the next tick: {e}")
            return None

    async def _run_loop(self) -> None:
        settings = self._load_settings()
        if settings and settings.sync_on_startup:
            await self._sync("startup")
        while True:
            interval = settings.sync_interval_minutes if settings else DEFAULT_SYNC_INTERVAL_MINUTES
            await asyncio.sleep(interval * self.seconds_per_minute)
            settings = self._load_settings()
            if settings and settings.auto_sync:
                await self._sync("interval")

#
# End of scheduler.py
#######################################################################################################################
