# mfg_capture/remote_api/client.py
#
#
# Imports
import json
from typing import Optional, Dict, Any
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from .schemas import FinishEarlierSessionRequest, RemoteCreateResponse, RemoteRecordPage
from .exceptions import APIConnectionError, APIRequestError, APIResponseError, AuthenticationError
from ..Constants import DEFAULT_API_PREFIX, DEFAULT_REMOTE_PAGE_SIZE, MSG_INVALID_TOKEN
from ..DB.Record_Collections import CollectionSpec, FINISH_EARLIER_RECORDS
#
########################################################################################################################
#
# Functions:

class RemoteAPIClient:
    """
    Async client for the server's mobile record API.

    All paths are relative to `{base_url}{api_prefix}`. Errors surface as the
    `RemoteAPIError` hierarchy; callers decide whether a failure is per-record
    or fatal for the phase.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0,
                 api_prefix: str = DEFAULT_API_PREFIX, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.api_prefix = '/' + api_prefix.strip('/') if api_prefix.strip('/') else ''
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}{self.api_prefix}",
                headers=headers,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> 'RemoteAPIClient':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{self.api_prefix}{endpoint}"
        response = None
        try:
            response = await client.request(method, endpoint, params=params, json=json_body)
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()
        except httpx.HTTPStatusError as e:
            error_detail = str(e)
            response_data = None
            try:
                response_data = e.response.json()
                if isinstance(response_data, dict):
                    if isinstance(response_data.get("message"), str):
                        error_detail = response_data["message"]
                    elif isinstance(response_data.get("detail"), str):
                        error_detail = response_data["detail"]
            except ValueError:
                pass

            if e.response.status_code == 401:
                raise AuthenticationError(MSG_INVALID_TOKEN)
            elif e.response.status_code == 422:
                raise APIRequestError(f"Validation Error: {error_detail}", response_data=response_data)
            raise APIResponseError(e.response.status_code, error_detail, response_data=response_data)
        except httpx.RequestError as e:  # ConnectError, TimeoutException, ...
            raise APIConnectionError(f"Connection error to {url}: {e}")
        except json.JSONDecodeError:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text})

    # --- Collection CRUD ---
    async def list_records(self, spec: CollectionSpec, page: int = 1,
                           per_page: int = DEFAULT_REMOTE_PAGE_SIZE) -> RemoteRecordPage:
        response_dict = await self._request("GET", spec.remote_path, params={"page": page, "per_page": per_page})
        if not isinstance(response_dict, dict):
            raise APIResponseError(200, f"Unexpected listing payload for {spec.remote_path}")
        try:
            return RemoteRecordPage(**response_dict)
        except ValidationError as e:
            raise APIResponseError(200, f"Malformed listing for {spec.remote_path}: {e}", response_data=response_dict)

    async def get_record(self, spec: CollectionSpec, remote_id: int) -> Optional[Dict[str, Any]]:
        """Fetches one record; None when the server no longer has it (404)."""
        try:
            response_dict = await self._request("GET", f"{spec.remote_path}/{remote_id}")
        except APIResponseError as e:
            if e.status_code == 404:
                logger.debug(f"Remote {spec.label} {remote_id} not found")
                return None
            raise
        if isinstance(response_dict, dict) and isinstance(response_dict.get("data"), dict):
            return response_dict["data"]
        return response_dict

    async def create_record(self, spec: CollectionSpec, payload: Dict[str, Any]) -> int:
        """Creates a record and returns the server-assigned id."""
        response_dict = await self._request("POST", spec.remote_path, json_body=payload)
        return self._acknowledged_id(response_dict, f"Failed to create {spec.label}")

    async def update_record(self, spec: CollectionSpec, remote_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"{spec.remote_path}/{remote_id}", json_body=payload)

    async def delete_record(self, spec: CollectionSpec, remote_id: int) -> None:
        await self._request("DELETE", f"{spec.remote_path}/{remote_id}")

    # --- Finish earlier sessions ---
    async def start_finish_earlier_session(self, metadata: Optional[Dict[str, Any]]) -> int:
        request_data = FinishEarlierSessionRequest.from_metadata(metadata)
        response_dict = await self._request("POST", f"{FINISH_EARLIER_RECORDS.remote_path}/start-session",
                                            json_body=request_data.model_dump())
        return self._acknowledged_id(response_dict, "Failed to start finish earlier session")

    async def add_finish_earlier_entry(self, production_order: str, entry: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"{FINISH_EARLIER_RECORDS.remote_path}/{production_order}/add-entry",
                                   json_body=entry)

    @staticmethod
    def _acknowledged_id(response_dict: Any, fallback_message: str) -> int:
        if not isinstance(response_dict, dict):
            raise APIRequestError(fallback_message, response_data={"raw": response_dict})
        try:
            ack = RemoteCreateResponse(**response_dict)
        except ValidationError as e:
            raise APIRequestError(f"{fallback_message}: {e}", response_data=response_dict)
        if not ack.acknowledged:
            raise APIRequestError(ack.message or fallback_message, response_data=response_dict)
        return ack.remote_id

#
# End of mfg_capture/remote_api/client.py
########################################################################################################################
