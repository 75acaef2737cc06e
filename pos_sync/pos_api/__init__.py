# pos_sync/pos_api/__init__.py
from .client import POSAPIClient
from .exceptions import (
    POSAPIError, APIConnectionError, APIRequestError,
    APIResponseError, AuthenticationError
)
from .schemas import (
    SyncOperationPayload, SyncBatchRequest, SyncResponse,
    CategorySnapshot, ItemSnapshot, BillSnapshot, BillLineItem,
    SNAPSHOT_MODELS, OperationName
)

__all__ = [
    "POSAPIClient",
    "POSAPIError", "APIConnectionError", "APIRequestError",
    "APIResponseError", "AuthenticationError",
    "SyncOperationPayload", "SyncBatchRequest", "SyncResponse",
    "CategorySnapshot", "ItemSnapshot", "BillSnapshot", "BillLineItem",
    "SNAPSHOT_MODELS", "OperationName"
]
