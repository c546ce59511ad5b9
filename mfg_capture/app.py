# app.py
# Description: Terminal UI showing sync status, open conflicts and sync history
#
# Imports
from typing import Any, Awaitable, Callable, Dict, Optional
#
# 3rd-Party Libraries
from loguru import logger
from rich.text import Text
from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Button, DataTable, Footer, Header, Label, RichLog, Static
#
# Local Imports
from .config import get_cli_setting, get_local_db_path, get_sync_defaults, load_settings
from .Constants import RESOLUTION_LOCAL, RESOLUTION_REMOTE, css_content
from .DB.Local_Records_DB import LocalRecordsDB
from .Logging_Config import RichLogHandler, configure_logging
from .Sync.scheduler import AutoSyncScheduler
from .Sync.sync_schemas import SyncProgress, SyncResult, SyncStatus
from .Sync.sync_service import SyncService
#
########################################################################################################################
#
# Functions:

STATUS_REFRESH_SECONDS = 30


def format_status_line(status: SyncStatus) -> Text:
    line = Text()
    if status.is_connected:
        line.append("● Connected", style="bold green")
    else:
        line.append("● Not connected", style="bold red")
    line.append(f"   Pending uploads: {status.pending_uploads}")
    line.append("   Conflicts: ")
    line.append(str(status.conflicts), style="bold yellow" if status.conflicts else "")
    line.append(f"   Last sync: {status.last_sync_time or 'never'}")
    if status.is_syncing:
        line.append("   Syncing...", style="italic cyan")
    return line


def format_progress(progress: SyncProgress) -> Text:
    text = Text(f"{progress.phase}: ", style="bold")
    text.append(progress.message)
    if progress.total:
        text.append(f" ({progress.current}/{progress.total})", style="dim")
    return text


class SyncStatusApp(App[None]):
    """A thin status console over `SyncService`. Record editing lives elsewhere."""

    CSS = css_content
    TITLE = "mfg_capture sync"
    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit App", show=True),
        Binding("ctrl+s", "sync_all", "Sync all", show=True),
    ]

    def __init__(self, service: SyncService, app_config: Optional[Dict[str, Any]] = None,
                 start_scheduler: bool = True, scheduler: Optional[AutoSyncScheduler] = None):
        super().__init__()
        self.service = service
        self.app_config = app_config
        self.start_scheduler = start_scheduler
        self.scheduler = scheduler or AutoSyncScheduler(service)
        self._rich_log_handler: Optional[RichLogHandler] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static(id="status-bar")
        yield Label("", id="sync-progress")
        with Horizontal(id="actions"):
            yield Button("Sync all", id="sync-all-button", variant="primary")
            yield Button("Push", id="push-button")
            yield Button("Pull", id="pull-button")
            yield Button("Keep local", id="resolve-local-button", variant="warning")
            yield Button("Keep remote", id="resolve-remote-button", variant="warning")
        with Horizontal(id="tables"):
            yield DataTable(id="conflicts-table", cursor_type="row")
            yield DataTable(id="history-table", cursor_type="row")
        yield RichLog(id="app-log-display", wrap=True)
        yield Footer()

    async def on_mount(self) -> None:
        if self.app_config is not None:
            self._rich_log_handler = configure_logging(
                self.app_config, app_instance=self, rich_log_widget=self.query_one("#app-log-display", RichLog))
            if self._rich_log_handler:
                self._rich_log_handler.start_processor()

        self.query_one("#conflicts-table", DataTable).add_columns("Conflict", "Table", "Local id", "Detected")
        self.query_one("#history-table", DataTable).add_columns(
            "Type", "Status", "Up", "Down", "Conflicts", "Errors", "Completed")
        self._unsubscribe = self.service.subscribe(self._on_progress)
        await self.refresh_views()
        self.set_interval(STATUS_REFRESH_SECONDS, self.refresh_views)
        if self.start_scheduler:
            self.scheduler.start()

    async def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
        await self.scheduler.stop()
        if self._rich_log_handler:
            await self._rich_log_handler.stop_processor()

    # --- Views ---
    async def refresh_views(self) -> None:
        status = await self.service.get_sync_status()
        self.query_one("#status-bar", Static).update(format_status_line(status))

        conflicts_table = self.query_one("#conflicts-table", DataTable)
        conflicts_table.clear()
        for conflict in self.service.get_conflicts():
            conflicts_table.add_row(conflict.id, conflict.table_name, str(conflict.record_id),
                                    conflict.created_at, key=conflict.id)

        history_table = self.query_one("#history-table", DataTable)
        history_table.clear()
        for entry in self.service.get_sync_history():
            history_table.add_row(entry.sync_type, entry.status, str(entry.uploaded), str(entry.downloaded),
                                  str(entry.conflicts), str(len(entry.errors)), entry.completed_at)

    def _on_progress(self, progress: SyncProgress) -> None:
        self.query_one("#sync-progress", Label).update(format_progress(progress))

    def _selected_conflict_id(self) -> Optional[str]:
        table = self.query_one("#conflicts-table", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return row_key.value

    # --- Actions ---
    async def _run_sync(self, operation: Callable[[], Awaitable[SyncResult]], label: str) -> None:
        result = await operation()
        if result.success:
            self.notify(f"{label}: {result.uploaded} up, {result.downloaded} down, {result.conflicts} conflicts")
        else:
            self.notify(f"{label} failed: {'; '.join(result.errors[:3])}", severity="error")
        await self.refresh_views()

    def action_sync_all(self) -> None:
        self.run_worker(self._run_sync(self.service.sync_all, "Sync"), group="sync")

    @on(Button.Pressed, "#sync-all-button")
    def handle_sync_all(self) -> None:
        self.action_sync_all()

    @on(Button.Pressed, "#push-button")
    def handle_push(self) -> None:
        self.run_worker(self._run_sync(self.service.push_to_remote, "Push"), group="sync")

    @on(Button.Pressed, "#pull-button")
    def handle_pull(self) -> None:
        self.run_worker(self._run_sync(self.service.pull_from_remote, "Pull"), group="sync")

    async def _resolve_selected(self, resolution: str) -> None:
        conflict_id = self._selected_conflict_id()
        if conflict_id is None:
            self.notify("No conflict selected", severity="warning")
            return
        outcome = self.service.resolve_conflict(conflict_id, resolution)
        if outcome.success:
            logger.info(f"Conflict {conflict_id} resolved ({resolution})")
            self.notify(f"Resolved {conflict_id}")
        else:
            self.notify(f"Could not resolve {conflict_id}: {outcome.error}", severity="error")
        await self.refresh_views()

    @on(Button.Pressed, "#resolve-local-button")
    async def handle_resolve_local(self) -> None:
        await self._resolve_selected(RESOLUTION_LOCAL)

    @on(Button.Pressed, "#resolve-remote-button")
    async def handle_resolve_remote(self) -> None:
        await self._resolve_selected(RESOLUTION_REMOTE)


def build_service() -> SyncService:
    """Opens the local store from config and seeds the server URL on first run."""
    db = LocalRecordsDB(get_local_db_path())
    service = SyncService(db, **get_sync_defaults())
    default_server_url = get_cli_setting("sync", "default_server_url", "")
    if default_server_url and not service.get_settings().server_url:
        service.update_settings(server_url=default_server_url)
    return service


def main() -> None:
    app_config = load_settings()
    service = build_service()
    try:
        SyncStatusApp(service, app_config=app_config).run()
    finally:
        service.db.close_connection()

#
# End of app.py
########################################################################################################################
