# sync_service.py
# Description: Service layer reconciling the local record store with the remote API
#
"""
sync_service.py
---------------

`SyncService` pushes pending local rows to the server, pulls remote rows
into the local store, and queues true conflicts for a manual decision.

Reconciliation is last-write-wins on `updated_at`, with one exception: a
local row that is still `pending` is never overwritten by a newer remote
copy. That case becomes a conflict entry, and the local row is marked
`conflict` with its content left as the user wrote it.

Rows that fail to push stay `pending`, so the next run retries them.
"""
# Imports
from typing import Any, Callable, Dict, Iterable, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import (
    ALL_COLLECTIONS,
    DEFAULT_API_PREFIX,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_REMOTE_PAGE_SIZE,
    HISTORY_STATUS_FAILED,
    MSG_CONFLICT_NOT_FOUND,
    MSG_INVALID_TOKEN,
    MSG_NOT_CONFIGURED,
    MSG_SYNC_IN_PROGRESS,
    PHASE_COMPLETE,
    PHASE_DOWNLOAD_SUFFIX,
    PHASE_UPLOAD_SUFFIX,
    RESOLUTION_LOCAL,
    RESOLUTION_REMOTE,
    SYNC_STATUS_CONFLICT,
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCED,
    SYNC_TYPE_ALL,
    SYNC_TYPE_PULL,
    SYNC_TYPE_PUSH,
    COLLECTION_FINISH_EARLIER,
    COLLECTION_TENSION,
)
from ..DB.Local_Records_DB import LocalRecordsDB, LocalRecordsDBError, StoreResult
from ..DB.Record_Collections import COLLECTIONS, CollectionSpec, get_collection, get_collection_by_table
from ..DB.Sync_State_DB import (
    ConflictStore,
    SyncConflict,
    SyncHistoryEntry,
    SyncHistoryLog,
    SyncSettings,
    SyncSettingsStore,
)
from ..remote_api.client import RemoteAPIClient
from ..remote_api.exceptions import (
    APIConnectionError,
    APIRequestError,
    APIResponseError,
    AuthenticationError,
    RemoteAPIError,
)
from ..Utils.Timestamps import is_strictly_newer, utc_now_iso
from .sync_schemas import ActionResult, SyncProgress, SyncResult, SyncStatus
#
#######################################################################################################################
#
# Functions:

ProgressListener = Callable[[SyncProgress], None]
ClientFactory = Callable[[str, str], RemoteAPIClient]


class SyncService:
    def __init__(self,
                 db: LocalRecordsDB,
                 client_factory: Optional[ClientFactory] = None,
                 api_prefix: str = DEFAULT_API_PREFIX,
                 request_timeout: float = 30.0,
                 remote_page_size: int = DEFAULT_REMOTE_PAGE_SIZE):
        self.db = db
        self.settings_store = SyncSettingsStore(db)
        self.history_log = SyncHistoryLog(db)
        self.conflict_store = ConflictStore(db)
        self.api_prefix = api_prefix
        self.request_timeout = request_timeout
        self.remote_page_size = remote_page_size
        self._client_factory = client_factory or self._default_client_factory
        self._listeners: List[ProgressListener] = []
        self._is_syncing = False

    def _default_client_factory(self, server_url: str, auth_token: str) -> RemoteAPIClient:
        return RemoteAPIClient(server_url, token=auth_token, timeout=self.request_timeout,
                               api_prefix=self.api_prefix)

    # --- Progress listeners ---
    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Registers a progress listener and returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, phase: str, current: int, total: int, message: str) -> None:
        progress = SyncProgress(phase=phase, current=current, total=total, message=message)
        for listener in list(self._listeners):
            try:
                listener(progress)
            except Exception as e:
                logger.exception(f"Sync progress listener failed on phase '{phase}': {e}")

    def is_syncing(self) -> bool:
        return self._is_syncing

    # --- Settings, history & conflicts ---
    def get_settings(self) -> SyncSettings:
        return self.settings_store.get_settings()

    def update_settings(self, **changes: Any) -> StoreResult:
        return self.settings_store.update_settings(changes)

    def get_sync_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[SyncHistoryEntry]:
        return self.history_log.list_entries(limit=limit)

    def get_conflicts(self) -> List[SyncConflict]:
        return self.conflict_store.list_conflicts()

    @staticmethod
    def _enabled_collections(settings: SyncSettings) -> Iterable[CollectionSpec]:
        return [COLLECTIONS[key] for key in ALL_COLLECTIONS if getattr(settings, COLLECTIONS[key].settings_flag)]

    def _record_history(self, sync_type: str, result: SyncResult, started_at: str,
                        status: Optional[str] = None) -> None:
        self.history_log.add_entry(sync_type, result.uploaded, result.downloaded, result.conflicts,
                                   result.errors, started_at, status=status)

    # --- Entry points ---
    async def sync_all(self) -> SyncResult:
        """
        Push then pull every enabled collection, in fixed order.

        Returns immediately with a failure if another full sync is running.
        Never raises; always appends one history entry for a run that started.
        """
        if self._is_syncing:
            logger.warning("Sync requested while another sync is running; ignoring.")
            return SyncResult(success=False, errors=[MSG_SYNC_IN_PROGRESS])
        self._is_syncing = True
        try:
            return await self._run(SYNC_TYPE_ALL, push=True, pull=True)
        finally:
            self._is_syncing = False

    async def push_to_remote(self) -> SyncResult:
        return await self._run(SYNC_TYPE_PUSH, push=True, pull=False)

    async def pull_from_remote(self) -> SyncResult:
        return await self._run(SYNC_TYPE_PULL, push=False, pull=True)

    async def sync_collection(self, collection: str) -> SyncResult:
        """Both phases for a single collection, regardless of its enable flag."""
        try:
            spec = get_collection(collection)
        except KeyError as e:
            return SyncResult(success=False, errors=[e.args[0]])
        return await self._run(spec.key, push=True, pull=True, only=spec)

    async def _run(self, sync_type: str, push: bool, pull: bool,
                   only: Optional[CollectionSpec] = None) -> SyncResult:
        started_at = utc_now_iso()
        result = SyncResult()
        status = None
        logger.info(f"Sync '{sync_type}' started (push={push}, pull={pull})")
        try:
            settings = self.get_settings()
            collections = [only] if only else self._enabled_collections(settings)
            if not settings.is_configured:
                result.errors.append(MSG_NOT_CONFIGURED)
                status = HISTORY_STATUS_FAILED
            else:
                async with self._client_factory(settings.server_url, settings.auth_token) as client:
                    for spec in collections:
                        self._emit(spec.key, 0, 100, f"Syncing {spec.label}s...")
                        if push:
                            await self._push_collection(client, spec, result)
                        if pull:
                            await self._pull_collection(client, spec, result)
        except Exception as e:
            logger.exception(f"Sync '{sync_type}' aborted: {e}")
            result.errors.append(f"Sync failed: {e}")
            status = HISTORY_STATUS_FAILED
        result.success = not result.errors
        try:
            self._record_history(sync_type, result, started_at, status=status)
        except LocalRecordsDBError as e:
            logger.error(f"Could not write sync history for '{sync_type}': {e}")
        self._emit(PHASE_COMPLETE, 100, 100, "Sync complete!" if result.success else "Sync finished with errors")
        return result

    # --- Push ---
    async def _push_collection(self, client: RemoteAPIClient, spec: CollectionSpec, result: SyncResult) -> None:
        try:
            pending = self.db.list_pending_records(spec.key)
        except LocalRecordsDBError as e:
            result.errors.append(f"Failed to read pending {spec.label}s: {e}")
            return
        total = len(pending)
        logger.debug(f"Pushing {total} pending {spec.label}(s)")
        for index, record in enumerate(pending, start=1):
            self._emit(f"{spec.key}{PHASE_UPLOAD_SUFFIX}", index, total, f"Uploading {spec.label} {index}/{total}")
            try:
                await self._push_record(client, spec, record, result)
            except RemoteAPIError as e:
                logger.warning(f"Failed to upload {spec.label} {record['id']}: {e}")
                result.errors.append(f"Failed to upload {spec.label} {record['id']}: {e}")
            except Exception as e:
                logger.exception(f"Error syncing {spec.label} {record['id']}: {e}")
                result.errors.append(f"Error syncing {spec.label} {record['id']}: {e}")

    async def _push_record(self, client: RemoteAPIClient, spec: CollectionSpec,
                           record: Dict[str, Any], result: SyncResult) -> None:
        local_id = record['id']
        remote_id = record.get('remote_id')

        if record.get('deleted_at'):
            if remote_id:
                await client.delete_record(spec, remote_id)
                result.uploaded += 1
            self._mark_synced(spec, local_id, result)
            return

        if remote_id:
            remote_record = await client.get_record(spec, remote_id)
            if remote_record and is_strictly_newer(remote_record.get('updated_at'), record.get('updated_at')):
                self._raise_conflict(spec, record, remote_record, result)
                return
            if spec.key == COLLECTION_FINISH_EARLIER:
                # Entries are appended by production order, so a vanished session must not be guessed at.
                if remote_record is None:
                    raise APIResponseError(404, f"{spec.label} remote {remote_id} not found on server")
                await self._append_missing_entries(client, record, remote_record)
            else:
                await client.update_record(spec, remote_id, spec.push_payload(record))
            if self._mark_synced(spec, local_id, result):
                result.uploaded += 1
            return

        if spec.key == COLLECTION_FINISH_EARLIER:
            new_remote_id = await self._create_finish_earlier(client, spec, record)
        else:
            new_remote_id = await client.create_record(spec, spec.push_payload(record))
        logger.info(f"Uploaded {spec.label} {local_id} as remote {new_remote_id}")
        if self._mark_synced(spec, local_id, result, remote_id=new_remote_id):
            result.uploaded += 1

    async def _create_finish_earlier(self, client: RemoteAPIClient, spec: CollectionSpec,
                                     record: Dict[str, Any]) -> int:
        """
        Starts a remote session, links it locally, then adds each entry.

        The link is stored before the entries go out, so if an entry fails the
        row stays pending and the next push appends only what is missing.
        """
        metadata = record.get('metadata') or {}
        new_remote_id = await client.start_finish_earlier_session(metadata)
        link = self.db.update_record(spec.key, record['id'], {'remote_id': new_remote_id})
        if not link.success:
            raise LocalRecordsDBError(f"Could not link {spec.label} {record['id']} to remote {new_remote_id}: "
                                      f"{link.error}")
        await self._append_missing_entries(client, record, None)
        return new_remote_id

    @staticmethod
    async def _append_missing_entries(client: RemoteAPIClient, record: Dict[str, Any],
                                      remote_record: Optional[Dict[str, Any]]) -> None:
        entries = record.get('entries') or []
        already_remote = len((remote_record or {}).get('entries') or [])
        missing = entries[already_remote:]
        if not missing:
            return
        production_order = (record.get('metadata') or {}).get('production_order')
        if not production_order:
            raise APIRequestError(f"finish earlier record {record['id']} has no production order")
        for entry in missing:
            await client.add_finish_earlier_entry(production_order, entry)

    def _mark_synced(self, spec: CollectionSpec, local_id: int, result: SyncResult,
                     remote_id: Optional[int] = None) -> bool:
        update = {'sync_status': SYNC_STATUS_SYNCED, 'last_synced_at': utc_now_iso()}
        if remote_id is not None:
            update['remote_id'] = remote_id
        store_result = self.db.update_record(spec.key, local_id, update)
        if not store_result.success:
            result.errors.append(f"Error syncing {spec.label} {local_id}: {store_result.error}")
            return False
        self._clear_conflict(spec, local_id, result)
        return True

    def _clear_conflict(self, spec: CollectionSpec, local_id: int, result: SyncResult) -> None:
        """Drops a queued conflict for a row that has just been settled as synced."""
        conflict_id = spec.conflict_id(local_id)
        if self.conflict_store.get_conflict(conflict_id) is None:
            return
        removed = self.conflict_store.remove_conflict(conflict_id)
        if removed.success:
            logger.info(f"Dropped conflict {conflict_id}; {spec.label} {local_id} is synced again")
        else:
            result.errors.append(f"Error syncing {spec.label} {local_id}: {removed.error}")

    def _raise_conflict(self, spec: CollectionSpec, local_record: Dict[str, Any],
                        remote_record: Dict[str, Any], result: SyncResult) -> None:
        local_id = local_record['id']
        stored = self.conflict_store.upsert_conflict(spec.conflict_id(local_id), spec.table, local_id,
                                                     local_record, remote_record)
        if not stored.success:
            result.errors.append(f"Error syncing {spec.label} {local_id}: {stored.error}")
            return
        marked = self.db.update_record(spec.key, local_id, {'sync_status': SYNC_STATUS_CONFLICT})
        if not marked.success:
            result.errors.append(f"Error syncing {spec.label} {local_id}: {marked.error}")
        result.conflicts += 1

    # --- Pull ---
    async def _pull_collection(self, client: RemoteAPIClient, spec: CollectionSpec, result: SyncResult) -> None:
        phase = f"{spec.key}{PHASE_DOWNLOAD_SUFFIX}"
        page = 1
        while True:
            self._emit(phase, page, page, f"Downloading {spec.label}s (page {page})...")
            try:
                remote_page = await client.list_records(spec, page=page, per_page=self.remote_page_size)
            except RemoteAPIError as e:
                logger.warning(f"Failed to fetch {spec.label}s page {page}: {e}")
                result.errors.append(f"Failed to fetch {spec.label}s from server: {e}")
                return
            for remote_record in remote_page.data:
                try:
                    self._apply_remote_record(spec, remote_record, result)
                except LocalRecordsDBError as e:
                    result.errors.append(f"Error syncing {spec.label} remote {remote_record.get('id')}: {e}")
            if not remote_page.has_more or not remote_page.data:
                return
            page += 1

    def _apply_remote_record(self, spec: CollectionSpec, remote_record: Dict[str, Any], result: SyncResult) -> None:
        remote_id = remote_record.get('id')
        if remote_id is None:
            result.errors.append(f"Skipped {spec.label} from server without an id")
            return

        existing = self.db.get_record_by_remote_id(spec.key, remote_id, include_deleted=True)
        if existing is None:
            mirror = spec.content_from(remote_record)
            mirror.update(remote_id=remote_id, sync_status=SYNC_STATUS_SYNCED, last_synced_at=utc_now_iso())
            created = self.db.create_record(spec.key, mirror)
            if created.success:
                result.downloaded += 1
            else:
                result.errors.append(f"Error syncing {spec.label} remote {remote_id}: {created.error}")
            return

        if not is_strictly_newer(remote_record.get('updated_at'), existing.get('updated_at')):
            return
        if existing.get('sync_status') in (SYNC_STATUS_PENDING, SYNC_STATUS_CONFLICT):
            self._raise_conflict(spec, existing, remote_record, result)
            return
        overwrite = spec.content_from(remote_record)
        overwrite.update(sync_status=SYNC_STATUS_SYNCED, last_synced_at=utc_now_iso())
        updated = self.db.update_record(spec.key, existing['id'], overwrite)
        if updated.success:
            result.downloaded += 1
            self._clear_conflict(spec, existing['id'], result)
        else:
            result.errors.append(f"Error syncing {spec.label} {existing['id']}: {updated.error}")

    # --- Conflict resolution ---
    def resolve_conflict(self, conflict_id: str, resolution: str) -> ActionResult:
        """
        Applies a manual decision to a queued conflict.

        `local` marks the row pending so the next push overwrites the server.
        `remote` replaces the row's content with the stored server snapshot.
        Either way the conflict entry is removed once the row is updated.
        """
        if resolution not in (RESOLUTION_LOCAL, RESOLUTION_REMOTE):
            return ActionResult(success=False, error=f"Invalid resolution '{resolution}'")
        conflict = self.conflict_store.get_conflict(conflict_id)
        if conflict is None:
            return ActionResult(success=False, error=MSG_CONFLICT_NOT_FOUND)
        spec = get_collection_by_table(conflict.table_name)
        if spec is None:
            return ActionResult(success=False, error=f"Unknown table '{conflict.table_name}' in conflict")

        if resolution == RESOLUTION_LOCAL:
            update = {'sync_status': SYNC_STATUS_PENDING}
        else:
            update = spec.content_from(conflict.remote_data)
            update.update(sync_status=SYNC_STATUS_SYNCED, last_synced_at=utc_now_iso())
        store_result = self.db.update_record(spec.key, conflict.record_id, update)
        if not store_result.success:
            return ActionResult(success=False, error=store_result.error)
        removed = self.conflict_store.remove_conflict(conflict_id)
        if not removed.success:
            return ActionResult(success=False, error=removed.error)
        logger.info(f"Resolved conflict {conflict_id} in favour of {resolution}")
        return ActionResult(success=True)

    # --- Connectivity & status ---
    async def test_connection(self, server_url: str, auth_token: str) -> ActionResult:
        """Probes the tension listing with the given credentials without persisting them."""
        if not server_url or not auth_token:
            return ActionResult(success=False, error=MSG_NOT_CONFIGURED)
        try:
            async with self._client_factory(server_url, auth_token) as client:
                await client.list_records(COLLECTIONS[COLLECTION_TENSION], page=1, per_page=1)
        except AuthenticationError:
            return ActionResult(success=False, error=MSG_INVALID_TOKEN)
        except APIResponseError as e:
            return ActionResult(success=False, error=f"Server returned status {e.status_code}")
        except APIConnectionError as e:
            return ActionResult(success=False, error=f"Connection failed: {e}")
        except RemoteAPIError as e:
            return ActionResult(success=False, error=str(e))
        return ActionResult(success=True)

    async def check_connection(self) -> bool:
        settings = self.get_settings()
        if not settings.is_configured:
            return False
        outcome = await self.test_connection(settings.server_url, settings.auth_token)
        return outcome.success

    async def get_sync_status(self) -> SyncStatus:
        latest = self.history_log.latest()
        return SyncStatus(
            is_connected=await self.check_connection(),
            last_sync_time=latest.completed_at if latest else None,
            pending_uploads=sum(self.db.get_pending_counts().values()),
            pending_downloads=0,
            conflicts=self.conflict_store.count(),
            is_syncing=self._is_syncing,
        )

#
# End of sync_service.py
#######################################################################################################################
