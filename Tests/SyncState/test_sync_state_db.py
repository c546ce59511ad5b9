# test_sync_state_db.py
#
#
# Imports
#
# Third-Party Imports
import pytest
from hypothesis import given
from hypothesis import strategies as st
#
# Local Imports
from mfg_capture.DB.Local_Records_DB import LocalRecordsDB
from mfg_capture.DB.Sync_State_DB import (
    ConflictStore,
    SyncHistoryLog,
    SyncSettings,
    SyncSettingsStore,
    history_status_for,
)
#
#######################################################################################################################
#
# Functions:


@pytest.fixture
def db_instance(tmp_path):
    db = LocalRecordsDB(tmp_path / "sync_state.db")
    yield db
    db.close_connection()


# --- Settings ---
class TestSyncSettings:
    def test_defaults(self, db_instance):
        current = SyncSettingsStore(db_instance).get_settings()
        assert current.server_url == ""
        assert current.auth_token == ""
        assert current.auto_sync is False
        assert current.sync_interval_minutes == 30
        assert current.sync_on_startup is True
        assert current.sync_tension_records is True
        assert current.sync_stock_take_records is True
        assert current.sync_finish_earlier_records is True
        assert not current.is_configured

    def test_update_persists_immediately(self, db_instance, tmp_path):
        store = SyncSettingsStore(db_instance)
        result = store.update_settings({"server_url": "https://mes.example.com", "auth_token": "tok",
                                        "auto_sync": True, "sync_interval_minutes": 5})
        assert result.success

        reopened = LocalRecordsDB(tmp_path / "sync_state.db")
        try:
            current = SyncSettingsStore(reopened).get_settings()
        finally:
            reopened.close_connection()
        assert current.server_url == "https://mes.example.com"
        assert current.auto_sync is True
        assert current.sync_interval_minutes == 5
        assert current.sync_on_startup is True
        assert current.is_configured
        assert current.updated_at is not None

    def test_unknown_keys_are_rejected(self, db_instance):
        store = SyncSettingsStore(db_instance)
        result = store.update_settings({"auto_synk": True})
        assert not result.success
        assert result.error == "Unknown sync settings: auto_synk"
        assert store.get_settings().auto_sync is False

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_interval_is_rejected(self, db_instance, interval):
        store = SyncSettingsStore(db_instance)
        result = store.update_settings({"sync_interval_minutes": interval})
        assert not result.success
        assert result.error.startswith("Invalid sync settings:")
        assert store.get_settings().sync_interval_minutes == 30

    def test_whitespace_credentials_are_not_configured(self):
        assert not SyncSettings(server_url="  ", auth_token="tok").is_configured
        assert not SyncSettings(server_url="http://x", auth_token="").is_configured


# --- History ---
@pytest.mark.parametrize("error_count, expected", [(0, "success"), (1, "partial"), (2, "partial"),
                                                    (3, "failed"), (10, "failed")])
def test_history_status_thresholds(error_count, expected):
    assert history_status_for(error_count) == expected


@given(st.integers(min_value=0, max_value=1000))
def test_history_status_is_monotonic(error_count):
    order = {"success": 0, "partial": 1, "failed": 2}
    assert order[history_status_for(error_count)] <= order[history_status_for(error_count + 1)]


class TestSyncHistory:
    def test_entries_are_newest_first(self, db_instance):
        log = SyncHistoryLog(db_instance)
        log.add_entry("push", 1, 0, 0, [], "2025-01-01T10:00:00.000Z")
        log.add_entry("pull", 0, 2, 0, ["x"], "2025-01-01T10:01:00.000Z")
        log.add_entry("all", 3, 3, 1, ["a", "b", "c"], "2025-01-01T10:02:00.000Z")

        entries = log.list_entries()
        assert [e.sync_type for e in entries] == ["all", "pull", "push"]
        assert [e.status for e in entries] == ["failed", "partial", "success"]
        assert entries[0].errors == ["a", "b", "c"]
        assert entries[0].conflicts == 1
        assert log.latest().sync_type == "all"

    def test_limit(self, db_instance):
        log = SyncHistoryLog(db_instance)
        for _ in range(5):
            log.add_entry("all", 0, 0, 0, [], "2025-01-01T10:00:00.000Z")
        assert len(log.list_entries(limit=2)) == 2

    def test_explicit_status_overrides_threshold(self, db_instance):
        log = SyncHistoryLog(db_instance)
        log.add_entry("all", 0, 0, 0, ["Server URL or auth token not configured"],
                      "2025-01-01T10:00:00.000Z", status="failed")
        assert log.latest().status == "failed"

    def test_empty_log(self, db_instance):
        assert SyncHistoryLog(db_instance).latest() is None


# --- Conflicts ---
class TestConflictStore:
    def test_upsert_replaces_entry_for_same_row(self, db_instance):
        store = ConflictStore(db_instance)
        store.upsert_conflict("tension-1", "tension_records", 1, {"csv_data": "l1"}, {"csv_data": "r1"})
        store.upsert_conflict("tension-1", "tension_records", 1, {"csv_data": "l2"}, {"csv_data": "r2"})

        assert store.count() == 1
        conflict = store.get_conflict("tension-1")
        assert conflict.local_data == {"csv_data": "l2"}
        assert conflict.remote_data == {"csv_data": "r2"}
        assert conflict.table_name == "tension_records"
        assert conflict.record_id == 1

    def test_list_and_remove(self, db_instance):
        store = ConflictStore(db_instance)
        store.upsert_conflict("tension-1", "tension_records", 1, {}, {})
        store.upsert_conflict("stocktake-2", "stock_taking_records", 2, {}, {})
        assert {c.id for c in store.list_conflicts()} == {"tension-1", "stocktake-2"}

        assert store.remove_conflict("tension-1").success
        assert store.get_conflict("tension-1") is None
        assert not store.remove_conflict("tension-1").success
        assert store.count() == 1

#
# End of test_sync_state_db.py
#######################################################################################################################
