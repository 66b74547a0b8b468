"""Client for the hosted backend (Supabase REST, storage and auth APIs)."""

import logging
from typing import Any

import httpx

from ..errors import RemoteRejectedError, RemoteUnavailableError
from ..sync.change_log import EntityType

logger = logging.getLogger(__name__)

# Remote table backing each entity type
TABLES = {
    EntityType.PROJECT: "projects",
    EntityType.MEMORY: "memories",
}

# Status codes worth retrying later rather than reporting as a rejection
RETRYABLE_STATUS = {408, 425, 429}


class RemoteClient:
    """Thin async wrapper over the backend's REST endpoints.

    Every failure is mapped to one of two errors: RemoteUnavailableError
    when the request should be retried later (network errors, timeouts,
    5xx), RemoteRejectedError when the backend refused it (other 4xx).
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str = "",
        access_token: str | None = None,
        bucket: str = "memories",
        timeout: float = 10.0,
    ):
        """Initialize the client.

        Args:
            base_url: Project URL (e.g., "https://abc.supabase.co").
            anon_key: Public API key sent with every request.
            access_token: User session token, if already signed in.
            bucket: Storage bucket for memory images.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.access_token = access_token
        self.bucket = bucket
        self.timeout = timeout
        self.user_id: str | None = None
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"apikey": self.anon_key}
        token = self.access_token or self.anon_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request and map failures onto the error taxonomy."""
        client = await self._get_client()
        try:
            response = await client.request(
                method,
                path,
                params=params,
                json=json_data,
                content=content,
                headers=self._headers(headers),
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out")
            raise RemoteUnavailableError(f"Request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise RemoteUnavailableError(f"Connection failed: {e}") from e

        status = response.status_code
        if status >= 500 or status in RETRYABLE_STATUS:
            logger.warning(f"{method} {path} returned {status}")
            raise RemoteUnavailableError(f"HTTP {status}: {response.text}")
        if status >= 400:
            raise RemoteRejectedError(f"HTTP {status}: {response.text}", status_code=status)

        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Decode a response body; a garbled body counts as unavailability."""
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"Malformed response body from {response.request.url}")
            raise RemoteUnavailableError(f"Malformed response body: {e}") from e

    @staticmethod
    def _table(entity_type: EntityType) -> str:
        return TABLES[EntityType(entity_type)]

    # ==================== Auth ====================

    async def authenticate(self, email: str, password: str) -> dict[str, Any]:
        """Sign in with email and password and keep the session token.

        Returns:
            The user record.
        """
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json_data={"email": email, "password": password},
        )
        data = self._json(response)
        self.access_token = data.get("access_token")
        user = data.get("user") or {}
        self.user_id = user.get("id")
        logger.info(f"Authenticated as {user.get('email', email)}")
        return user

    async def current_user(self) -> dict[str, Any] | None:
        """Return the signed-in user, or None without a session."""
        if not self.access_token:
            return None
        response = await self._request("GET", "/auth/v1/user")
        user = self._json(response)
        self.user_id = user.get("id")
        return user

    async def health_check(self) -> bool:
        """Check whether the backend is reachable.

        Returns:
            True if the backend answered, False otherwise.
        """
        try:
            client = await self._get_client()
            response = await client.get("/auth/v1/health", headers=self._headers())
            return response.status_code < 500
        except Exception as e:
            logger.debug(f"Health check failed: {e}")
            return False

    # ==================== Tables ====================

    async def create_entity(
        self, entity_type: EntityType, row: dict[str, Any]
    ) -> dict[str, Any]:
        """Insert a row and return it as stored by the backend."""
        payload = dict(row)
        payload.pop("memory_count", None)
        if self.user_id and "user_id" not in payload:
            payload["user_id"] = self.user_id

        response = await self._request(
            "POST",
            f"/rest/v1/{self._table(entity_type)}",
            json_data=payload,
            headers={"Prefer": "return=representation"},
        )
        rows = self._json(response)
        logger.debug(f"Created {EntityType(entity_type).value} {rows[0].get('id') if rows else '?'}")
        return rows[0] if rows else payload

    async def update_entity(
        self, entity_type: EntityType, entity_id: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a partial update and return the updated row."""
        response = await self._request(
            "PATCH",
            f"/rest/v1/{self._table(entity_type)}",
            params={"id": f"eq.{entity_id}"},
            json_data=patch,
            headers={"Prefer": "return=representation"},
        )
        rows = self._json(response)
        if not rows:
            raise RemoteRejectedError(
                f"{EntityType(entity_type).value} {entity_id} not found", status_code=404
            )
        return rows[0]

    async def delete_entity(self, entity_type: EntityType, entity_id: str) -> None:
        """Delete a row. Deleting a missing row succeeds."""
        await self._request(
            "DELETE",
            f"/rest/v1/{self._table(entity_type)}",
            params={"id": f"eq.{entity_id}"},
        )

    async def list_entities(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """Fetch all rows visible to the current user, newest first."""
        params = {"select": "*", "order": "created_at.desc"}
        if self.user_id:
            params["user_id"] = f"eq.{self.user_id}"
        response = await self._request(
            "GET", f"/rest/v1/{self._table(entity_type)}", params=params
        )
        return self._json(response)

    # ==================== Storage ====================

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    async def upload_file(
        self, path: str, data: bytes, content_type: str = "image/jpeg"
    ) -> str:
        """Upload a file to the bucket.

        Returns:
            Public URL of the uploaded file.
        """
        await self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{path}",
            content=data,
            headers={
                "Content-Type": content_type,
                "Cache-Control": "3600",
                "x-upsert": "false",
            },
        )
        logger.debug(f"Uploaded {len(data)} bytes to {self.bucket}/{path}")
        return self.public_url(path)

    async def delete_files(self, paths: list[str]) -> None:
        """Remove files from the bucket."""
        if not paths:
            return
        await self._request(
            "DELETE",
            f"/storage/v1/object/{self.bucket}",
            json_data={"prefixes": paths},
        )
