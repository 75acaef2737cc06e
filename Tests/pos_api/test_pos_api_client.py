# test_pos_api_client.py
#
#
# Imports
import json
#
# Third-Party Imports
import httpx
import pytest
#
# Local Imports
from pos_sync.pos_api import (APIConnectionError, APIRequestError, APIResponseError, AuthenticationError,
                              CategorySnapshot, ItemSnapshot, POSAPIClient)
#
#######################################################################################################################
#
# Functions:

BASE_URL = "http://pos.test"


def make_client(handler, token="secret") -> POSAPIClient:
    return POSAPIClient(BASE_URL, token=token, timeout=5.0, transport=httpx.MockTransport(handler))


class TestSyncBatch:
    async def test_posts_batch_and_parses_snapshots(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "synced": 2, "created": 1, "updated": 0, "deleted": 1,
                "items": [{"id": "item-1", "price": "4.20", "last_updated": "2024-05-01T10:00:00Z",
                           "image_url": "https://cdn.test/1.png", "vendor_name": "Corner shop"}],
            })

        client = make_client(handler)
        operations = [
            {"operation": "create", "id": "item-1", "timestamp": "2024-05-01T09:00:00Z", "data": {"name": "Tea"}},
            {"operation": "delete", "id": "item-2", "timestamp": "2024-05-01T09:01:00Z"},
        ]
        response = await client.sync_batch("item", operations, "device-1")
        await client.close()

        assert seen["method"] == "POST"
        assert seen["path"] == "/api/items/sync/"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["device_id"] == "device-1"
        assert seen["body"]["operations"][0]["data"] == {"name": "Tea"}
        assert "data" not in seen["body"]["operations"][1]
        assert response.synced == 2
        (snapshot,) = response.snapshots_for("item")
        assert isinstance(snapshot, ItemSnapshot)
        assert snapshot.price == 4.2
        assert snapshot.server_fields() == {"server_updated_at": "2024-05-01T10:00:00Z",
                                            "image_url": "https://cdn.test/1.png"}

    async def test_missing_snapshot_key_yields_empty_list(self):
        client = make_client(lambda request: httpx.Response(200, json={"synced": 1}))
        response = await client.sync_batch("bill", [{"operation": "create", "id": "b", "timestamp": "t",
                                                     "data": {}}], "device-1")
        assert response.snapshots_for("bill") == []

    @pytest.mark.parametrize("status, exc_type", [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (400, APIRequestError),
        (422, APIRequestError),
        (500, APIResponseError),
        (503, APIResponseError),
    ])
    async def test_status_codes_map_to_exceptions(self, status, exc_type):
        client = make_client(lambda request: httpx.Response(status, json={"detail": "nope"}))
        with pytest.raises(exc_type):
            await client.sync_batch("category", [], "device-1")

    async def test_rejection_keeps_status_and_body(self):
        client = make_client(lambda request: httpx.Response(422, json={"detail": [{"msg": "field required", "loc": ["body", "name"]}]}))
        with pytest.raises(APIRequestError) as exc_info:
            await client.sync_batch("category", [], "device-1")
        assert exc_info.value.status_code == 422
        assert "field required" in str(exc_info.value)

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("no route to host", request=request)

        with pytest.raises(APIConnectionError):
            await make_client(handler).sync_batch("bill", [], "device-1")

    async def test_timeout_is_connection_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(APIConnectionError):
            await make_client(handler).sync_batch("bill", [], "device-1")

    async def test_non_json_body_is_response_error(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(APIResponseError):
            await client.sync_batch("bill", [], "device-1")


class TestFetchAll:
    async def test_plain_list(self):
        def handler(request):
            assert request.url.path == "/api/categories/"
            return httpx.Response(200, json=[{"id": 1, "name": "Drinks", "updated_at": "2024-01-01T00:00:00Z"}])

        snapshots = await make_client(handler).fetch_all("category")
        assert snapshots == [CategorySnapshot(id="1", name="Drinks", updated_at="2024-01-01T00:00:00Z")]

    async def test_follows_pagination(self):
        pages = {
            "/api/items/": {"results": [{"id": "a", "name": "A"}], "next": f"{BASE_URL}/api/items/?page=2"},
            "/api/items/?page=2": {"results": [{"id": "b", "name": "B", "category_ids": None}], "next": None},
        }

        def handler(request):
            key = request.url.path + (f"?{request.url.query.decode()}" if request.url.query else "")
            return httpx.Response(200, json=pages[key])

        snapshots = await make_client(handler).fetch_all("item")
        assert [s.id for s in snapshots] == ["a", "b"]
        assert snapshots[1].category_ids == []


class TestSession:
    async def test_no_token_sends_no_auth_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json=[])

        client = make_client(handler, token=None)
        assert not client.has_session
        await client.fetch_all("category")
        assert seen["auth"] is None

    async def test_set_token_updates_open_client(self):
        seen = []
        client = make_client(lambda request: seen.append(request.headers.get("Authorization")) or httpx.Response(200, json=[]),
                             token="old")
        await client.fetch_all("category")
        client.set_token("new")
        await client.fetch_all("category")
        assert seen == ["Bearer old", "Bearer new"]

#
# End of test_pos_api_client.py
########################################################################################################################
