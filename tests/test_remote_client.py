"""Tests for the remote backend client."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from timestitch.errors import RemoteRejectedError, RemoteUnavailableError
from timestitch.remote import RemoteClient
from timestitch.sync import EntityType

BASE_URL = "https://abc.supabase.co"


def _client(handler, **kwargs):
    """Create a RemoteClient whose HTTP calls go to handler."""
    client = RemoteClient(BASE_URL, anon_key="anon", **kwargs)
    client._client = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(handler)
    )
    return client


class TestRemoteClient:
    """Tests for requests and responses."""

    def test_client_initialization(self):
        """Test that a trailing slash is stripped from the URL."""
        client = RemoteClient(f"{BASE_URL}/")
        assert client.base_url == BASE_URL
        assert client.public_url("u/m/x.jpg") == (
            f"{BASE_URL}/storage/v1/object/public/memories/u/m/x.jpg"
        )

    @pytest.mark.asyncio
    async def test_health_check_success(self):
        """Test health check returns True when the backend answers."""
        client = RemoteClient(BASE_URL)

        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_response = MagicMock()
            mock_response.status_code = 200
            mock_http.get = AsyncMock(return_value=mock_response)
            mock_get.return_value = mock_http

            assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        """Test health check returns False when the backend is down."""
        client = RemoteClient(BASE_URL)

        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.get = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))
            mock_get.return_value = mock_http

            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_create_entity(self):
        """Test that creates post to the table and return the stored row."""
        seen = {}

        def handler(request):
            seen["request"] = request
            body = json.loads(request.content)
            return httpx.Response(201, json=[{**body, "id": "p1"}])

        client = _client(handler)
        client.user_id = "user-1"

        row = await client.create_entity(
            EntityType.PROJECT, {"name": "Trips", "memory_count": 4}
        )
        await client.close()

        request = seen["request"]
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/projects"
        assert request.headers["Prefer"] == "return=representation"
        assert request.headers["apikey"] == "anon"
        assert row == {"name": "Trips", "user_id": "user-1", "id": "p1"}

    @pytest.mark.asyncio
    async def test_update_entity_filters_by_id(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json=[{"id": "m1", "is_favorite": True}])

        client = _client(handler)
        row = await client.update_entity(EntityType.MEMORY, "m1", {"is_favorite": True})
        await client.close()

        assert seen["request"].method == "PATCH"
        assert seen["request"].url.params["id"] == "eq.m1"
        assert row["is_favorite"] is True

    @pytest.mark.asyncio
    async def test_update_missing_row_is_rejected(self):
        client = _client(lambda request: httpx.Response(200, json=[]))

        with pytest.raises(RemoteRejectedError) as exc_info:
            await client.update_entity(EntityType.MEMORY, "m1", {"title": "x"})
        await client.close()

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_upload_file_returns_public_url(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"Key": "memories/u/m/x.jpg"})

        client = _client(handler)
        url = await client.upload_file("u/m/x.jpg", b"jpeg-bytes", "image/jpeg")
        await client.close()

        assert seen["request"].url.path == "/storage/v1/object/memories/u/m/x.jpg"
        assert seen["request"].content == b"jpeg-bytes"
        assert url.endswith("/storage/v1/object/public/memories/u/m/x.jpg")

    @pytest.mark.asyncio
    async def test_authenticate_keeps_token(self):
        def handler(request):
            return httpx.Response(
                200, json={"access_token": "tok", "user": {"id": "user-1", "email": "a@b.c"}}
            )

        client = _client(handler)
        user = await client.authenticate("a@b.c", "secret")
        await client.close()

        assert user["id"] == "user-1"
        assert client.access_token == "tok"
        assert client._headers()["Authorization"] == "Bearer tok"


class TestErrorMapping:
    """Tests for mapping HTTP failures onto the error types."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [500, 502, 503, 408, 429])
    async def test_retryable_status_is_unavailable(self, status):
        client = _client(lambda request: httpx.Response(status, text="busy"))

        with pytest.raises(RemoteUnavailableError):
            await client.delete_entity(EntityType.MEMORY, "m1")
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    async def test_client_errors_are_rejections(self, status):
        client = _client(lambda request: httpx.Response(status, text="no"))

        with pytest.raises(RemoteRejectedError) as exc_info:
            await client.delete_entity(EntityType.MEMORY, "m1")
        await client.close()

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        client = _client(handler)

        with pytest.raises(RemoteUnavailableError):
            await client.list_entities(EntityType.PROJECT)
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler)

        with pytest.raises(RemoteUnavailableError):
            await client.list_entities(EntityType.PROJECT)
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_body_is_unavailable(self):
        client = _client(lambda request: httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(RemoteUnavailableError):
            await client.list_entities(EntityType.PROJECT)
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_create_response_is_unavailable(self):
        client = _client(lambda request: httpx.Response(201, text="not json"))

        with pytest.raises(RemoteUnavailableError):
            await client.create_entity(EntityType.MEMORY, {"title": "Beach"})
        await client.close()
