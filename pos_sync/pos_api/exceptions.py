# pos_sync/pos_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class POSAPIError(Exception):
    """Base exception for pos_api errors."""
    pass

class APIConnectionError(POSAPIError):
    """Raised for network or connection issues, including timeouts."""
    pass

class APIRequestError(POSAPIError):
    """Raised when the server rejects the request content (400/404/409/422)."""
    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}

class APIResponseError(POSAPIError):
    """Raised for other non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class AuthenticationError(POSAPIError):
    """Raised for authentication failures (401/403)."""
    pass

#
# End of pos_sync/pos_api/exceptions.py
########################################################################################################################
