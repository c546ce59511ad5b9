# mfg_capture/remote_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class RemoteAPIError(Exception):
    """Base exception for remote record API errors."""
    pass

class APIConnectionError(RemoteAPIError):
    """Raised for network or connection issues, including timeouts."""
    pass

class APIRequestError(RemoteAPIError):
    """Raised when the server rejects the request content (validation) or a create is not acknowledged."""
    def __init__(self, message: str, response_data: dict = None):
        super().__init__(message)
        self.response_data = response_data or {}

class APIResponseError(RemoteAPIError):
    """Raised for non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class AuthenticationError(RemoteAPIError):
    """Raised when the server refuses the bearer token."""
    pass

#
# End of mfg_capture/remote_api/exceptions.py
########################################################################################################################
