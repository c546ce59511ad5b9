# mfg_capture/remote_api/__init__.py
from .client import RemoteAPIClient
from .exceptions import (
    RemoteAPIError, APIConnectionError, APIRequestError,
    APIResponseError, AuthenticationError
)
from .schemas import (
    RemoteRecordPage, RemoteCreateResponse, FinishEarlierSessionRequest
)

__all__ = [
    "RemoteAPIClient",
    "RemoteAPIError", "APIConnectionError", "APIRequestError",
    "APIResponseError", "AuthenticationError",
    "RemoteRecordPage", "RemoteCreateResponse", "FinishEarlierSessionRequest",
]
