# test_scheduler.py
#
#
# Imports
import asyncio
#
# Third-Party Imports
import pytest
#
# Local Imports
from mfg_capture.DB.Local_Records_DB import LocalRecordsDBError
from mfg_capture.Sync.scheduler import AutoSyncScheduler
#
#######################################################################################################################
#
# Functions:

pytestmark = pytest.mark.asyncio


async def _wait_for_history(service, count, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(service.get_sync_history()) < count:
        if loop.time() > deadline:
            raise AssertionError(f"expected {count} sync runs, saw {len(service.get_sync_history())}")
        await asyncio.sleep(0.01)


async def test_tick_does_nothing_while_auto_sync_is_off(service):
    scheduler = AutoSyncScheduler(service)
    assert await scheduler.run_once() is None
    assert service.get_sync_history() == []


async def test_tick_runs_full_sync_when_enabled(service, db_instance):
    service.update_settings(auto_sync=True)
    db_instance.create_record("finishearlier", {"metadata": {"production_order": "PO-1"}})

    result = await AutoSyncScheduler(service).run_once()

    assert result.success
    assert result.uploaded == 1
    assert service.get_sync_history()[0].sync_type == "all"


async def test_startup_sync_then_interval_ticks(service):
    service.update_settings(auto_sync=True, sync_interval_minutes=1, sync_on_startup=True)
    scheduler = AutoSyncScheduler(service, seconds_per_minute=0.01)

    scheduler.start()
    assert scheduler.is_running
    try:
        await _wait_for_history(service, 3)
    finally:
        await scheduler.stop()

    assert not scheduler.is_running
    assert {entry.sync_type for entry in service.get_sync_history()} == {"all"}


async def test_no_sync_when_startup_and_auto_sync_are_off(service):
    service.update_settings(auto_sync=False, sync_on_startup=False, sync_interval_minutes=1)
    scheduler = AutoSyncScheduler(service, seconds_per_minute=0.01)

    scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert service.get_sync_history() == []


async def test_start_is_idempotent_and_stop_without_start_is_safe(service):
    scheduler = AutoSyncScheduler(service, seconds_per_minute=0.01)
    await scheduler.stop()
    service.update_settings(sync_on_startup=False)

    first = scheduler.start()
    assert scheduler.start() is first
    await scheduler.stop()


async def test_unreadable_settings_do_not_kill_the_loop(service, monkeypatch):
    service.update_settings(auto_sync=True, sync_interval_minutes=1, sync_on_startup=True)
    real_get_settings = service.get_settings
    failures = {"left": 2}

    def flaky_get_settings():
        if failures["left"]:
            failures["left"] -= 1
            raise LocalRecordsDBError("database is locked")
        return real_get_settings()

    monkeypatch.setattr(service, "get_settings", flaky_get_settings)
    scheduler = AutoSyncScheduler(service, seconds_per_minute=0.001)

    scheduler.start()
    try:
        await _wait_for_history(service, 1)
        assert scheduler.is_running
    finally:
        await scheduler.stop()

    assert failures["left"] == 0
    assert service.get_sync_history()[0].sync_type == "all"

#
# End of test_scheduler.py
#######################################################################################################################
