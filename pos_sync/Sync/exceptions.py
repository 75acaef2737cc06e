# pos_sync/Sync/exceptions.py
# Description: Error taxonomy of the sync engine.
#
#
#######################################################################################################################
#
# Functions:

class SyncError(Exception):
    """Base exception for sync engine errors."""
    pass

class Offline(SyncError):
    """Raised when work requiring the network is attempted while offline."""
    pass

class TransportFailure(SyncError):
    """Raised for timeouts, dropped connections, 5xx responses and undecodable bodies."""
    pass

class RemoteRejected(SyncError):
    """Raised when the server rejects a batch as invalid (4xx other than auth)."""
    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}

class Unauthorized(SyncError):
    """Raised when there is no valid session or the server refuses the credentials."""
    pass

class StorageFailure(SyncError):
    """Raised when the local store cannot be read or written. Fatal for the current pass."""
    pass

#
# End of pos_sync/Sync/exceptions.py
########################################################################################################################
