# pos_sync/pos_api/client.py
#
#
# Imports
import json
from typing import Any, Dict, List, Optional, Union
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from .schemas import SNAPSHOT_MODELS, SyncBatchRequest, SyncOperationPayload, SyncResponse
from .exceptions import APIConnectionError, APIRequestError, APIResponseError, AuthenticationError
#
########################################################################################################################
#
# Functions:

_PLURALS = {"category": "categories", "item": "items", "bill": "bills"}
_REJECTION_STATUSES = (400, 404, 409, 422)


class POSAPIClient:
    """
    Async client for the POS backend's sync endpoints.

    Args:
        base_url: Server root, e.g. "https://pos.example.com".
        token: Session token sent as a Bearer header. None means no session.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def has_session(self) -> bool:
        return bool(self.token)

    def set_token(self, token: Optional[str]):
        """Replaces the session token; the next request opens a client with the new header."""
        self.token = token
        if self._client is not None and not self._client.is_closed:
            if token:
                self._client.headers["Authorization"] = f"Bearer {token}"
            else:
                self._client.headers.pop("Authorization", None)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
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

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Union[Dict[str, Any], List[Any]]:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"

        try:
            response = await client.request(method, endpoint, json=json_body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            error_detail = str(e)
            response_data = None
            try:
                response_data = e.response.json()
                if isinstance(response_data, dict):
                    detail = response_data.get("detail") or response_data.get("error") or response_data.get("message")
                    if isinstance(detail, list) and detail:
                        error_detail = f"Validation Error: {detail[0].get('msg', '')} for field '{'.'.join(map(str, detail[0].get('loc', [])))}'"
                    elif isinstance(detail, str):
                        error_detail = detail
            except ValueError:
                pass  # Body is not JSON; keep the status line.

            status = e.response.status_code
            if status in (401, 403):
                raise AuthenticationError(f"Authentication failed: {error_detail}") from e
            if status in _REJECTION_STATUSES:
                raise APIRequestError(f"Request rejected ({status}): {error_detail}", status_code=status,
                                      response_data=response_data) from e
            raise APIResponseError(status, error_detail, response_data=response_data) from e
        except httpx.RequestError as e:  # Covers ConnectError, TimeoutException, etc.
            raise APIConnectionError(f"Connection error to {url}: {e}") from e
        except json.JSONDecodeError as e:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text}) from e

    async def sync_batch(self, kind: str, operations: List[Dict[str, Any]], device_id: str) -> SyncResponse:
        """
        Uploads one ordered batch of operations for a single entity kind.

        Args:
            kind: "category", "item" or "bill".
            operations: Entries of the form {"operation", "id", "timestamp", "data"?}.
            device_id: Identifier of this device.

        Returns:
            SyncResponse: Counts plus the server's snapshots of the affected entities.

        Raises:
            AuthenticationError: 401/403.
            APIRequestError: The server rejected the batch as invalid.
            APIResponseError: Other non-2xx status or an unparseable body.
            APIConnectionError: Network failure or timeout.
        """
        request = SyncBatchRequest(
            device_id=device_id,
            operations=[SyncOperationPayload(**op) for op in operations],
        )
        endpoint = f"/api/{_PLURALS[kind]}/sync/"
        logger.debug(f"POST {endpoint} with {len(request.operations)} operation(s)")
        response_dict = await self._request("POST", endpoint, json_body=request.model_dump(exclude_none=True))
        if not isinstance(response_dict, dict):
            raise APIResponseError(200, f"Unexpected sync response type: {type(response_dict).__name__}")
        try:
            return SyncResponse(**response_dict)
        except ValidationError as e:
            raise APIResponseError(200, f"Invalid sync response: {e}", response_data=response_dict) from e

    async def fetch_all(self, kind: str) -> list:
        """
        Downloads every entity of a kind. Accepts a bare list or a paginated `{"results": [...]}` body.
        """
        endpoint = f"/api/{_PLURALS[kind]}/"
        model = SNAPSHOT_MODELS[kind]
        snapshots = []
        while endpoint:
            body = await self._request("GET", endpoint)
            if isinstance(body, dict):
                records = body.get("results", [])
                next_url = body.get("next")
            elif isinstance(body, list):
                records, next_url = body, None
            else:
                raise APIResponseError(200, f"Unexpected {kind} list response type: {type(body).__name__}")
            try:
                snapshots.extend(model(**record) for record in records)
            except ValidationError as e:
                raise APIResponseError(200, f"Invalid {kind} record: {e}") from e
            endpoint = next_url[len(self.base_url):] if next_url and next_url.startswith(self.base_url) else next_url
        logger.debug(f"Fetched {len(snapshots)} {_PLURALS[kind]}")
        return snapshots

#
# End of pos_sync/pos_api/client.py
########################################################################################################################
