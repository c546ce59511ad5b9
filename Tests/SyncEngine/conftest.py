# conftest.py
# Description: In-memory stand-in for the server's mobile record API, served through httpx.MockTransport.
#
# Imports
import asyncio
import json
import math
#
# Third-Party Imports
import httpx
import pytest
#
# Local Imports
from mfg_capture.DB.Local_Records_DB import LocalRecordsDB
from mfg_capture.remote_api.client import RemoteAPIClient
from mfg_capture.Sync.sync_service import SyncService
from mfg_capture.Utils.Timestamps import utc_now_iso
#
#######################################################################################################################
#
# Functions:

SERVER_URL = "https://mes.test"
AUTH_TOKEN = "secret-token"
API_PREFIX = "/api/mobile"
COLLECTION_PATHS = ("tension-records", "stock-take-records", "finish-earlier")


class FakeRecordServer:
    """Keeps records per collection path and answers like the real API (paginated, server-assigned ids)."""

    def __init__(self, token=AUTH_TOKEN, first_id=1):
        self.token = token
        self.records = {path: {} for path in COLLECTION_PATHS}
        self.next_id = first_id
        self.requests = []
        self.failing = set()
        self.offline = False

    # --- Test helpers ---
    def seed(self, path, record_id, updated_at, **content):
        record = {"id": record_id, "created_at": updated_at, "updated_at": updated_at, **content}
        self.records[path][record_id] = record
        self.next_id = max(self.next_id, record_id + 1)
        return record

    def fail(self, method, route):
        self.failing.add((method, f"{API_PREFIX}{route}"))

    def calls(self, method=None):
        return [path for m, path in self.requests if method is None or m == method]

    def _new_id(self):
        record_id = self.next_id
        self.next_id += 1
        return record_id

    # --- Transport ---
    async def handler(self, request: httpx.Request) -> httpx.Response:
        # Yield once so concurrent callers interleave the way real network I/O would.
        await asyncio.sleep(0)
        path = request.url.path
        self.requests.append((request.method, path))
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"message": "Unauthenticated."})
        if (request.method, path) in self.failing:
            return httpx.Response(500, json={"message": "boom"})
        if not path.startswith(API_PREFIX + "/"):
            return httpx.Response(404, json={"message": "Not Found"})

        parts = path[len(API_PREFIX) + 1:].split("/")
        collection = parts[0]
        if collection not in self.records:
            return httpx.Response(404, json={"message": "Not Found"})
        body = json.loads(request.content) if request.content else None

        if collection == "finish-earlier" and parts[1:] == ["start-session"] and request.method == "POST":
            return self._start_session(body)
        if collection == "finish-earlier" and len(parts) == 3 and parts[2] == "add-entry":
            return self._add_entry(parts[1], body)
        if len(parts) == 1:
            if request.method == "GET":
                return self._list(collection, request.url.params)
            if request.method == "POST":
                return self._create(collection, body)
        if len(parts) == 2 and parts[1].isdigit():
            return self._item(request.method, collection, int(parts[1]), body)
        return httpx.Response(405, json={"message": "Method Not Allowed"})

    def _list(self, collection, params):
        page = int(params.get("page", 1))
        per_page = int(params.get("per_page", 50))
        rows = [self.records[collection][key] for key in sorted(self.records[collection])]
        start = (page - 1) * per_page
        return httpx.Response(200, json={
            "data": rows[start:start + per_page],
            "current_page": page,
            "last_page": max(1, math.ceil(len(rows) / per_page)),
            "per_page": per_page,
            "total": len(rows),
        })

    def _create(self, collection, body):
        now = utc_now_iso()
        record_id = self._new_id()
        self.records[collection][record_id] = {**(body or {}), "id": record_id, "created_at": now, "updated_at": now}
        return httpx.Response(201, json={"status": "success", "data": {"id": record_id}})

    def _item(self, method, collection, record_id, body):
        record = self.records[collection].get(record_id)
        if record is None:
            return httpx.Response(404, json={"message": "Record not found"})
        if method == "GET":
            return httpx.Response(200, json={"data": record})
        if method == "PUT":
            record.update(body or {})
            record["updated_at"] = utc_now_iso()
            return httpx.Response(200, json={"data": record})
        if method == "DELETE":
            del self.records[collection][record_id]
            return httpx.Response(204)
        return httpx.Response(405, json={"message": "Method Not Allowed"})

    def _start_session(self, body):
        now = utc_now_iso()
        record_id = self._new_id()
        self.records["finish-earlier"][record_id] = {
            "id": record_id, "metadata": body or {}, "entries": [], "created_at": now, "updated_at": now,
        }
        return httpx.Response(201, json={"success": True, "id": record_id})

    def _add_entry(self, production_order, body):
        for record in self.records["finish-earlier"].values():
            if record["metadata"].get("production_order") == production_order:
                record["entries"].append(body)
                record["updated_at"] = utc_now_iso()
                return httpx.Response(200, json={"success": True})
        return httpx.Response(404, json={"message": f"No session for {production_order}"})


@pytest.fixture
def fake_server():
    return FakeRecordServer()


@pytest.fixture
def client_factory(fake_server):
    transport = httpx.MockTransport(fake_server.handler)
    return lambda server_url, auth_token: RemoteAPIClient(server_url, token=auth_token, transport=transport)


@pytest.fixture
def db_instance(tmp_path):
    db = LocalRecordsDB(tmp_path / "sync_engine.db")
    yield db
    db.close_connection()


@pytest.fixture
def unconfigured_service(db_instance, client_factory):
    return SyncService(db_instance, client_factory=client_factory)


@pytest.fixture
def service(unconfigured_service):
    assert unconfigured_service.update_settings(server_url=SERVER_URL, auth_token=AUTH_TOKEN).success
    return unconfigured_service

#
# End of conftest.py
#######################################################################################################################
