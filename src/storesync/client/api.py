"""HTTP gateway to the relational backend.

This module provides:
- RemoteGateway: Protocol the sync engine depends on
- HTTPGateway: PostgREST-style implementation over httpx
- Exception classes for gateway failures

The gateway is a stateless facade: no caching, no retries. Any exception
means "state unchanged, try again later".
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from storesync.core.config import BackendConfig
from storesync.core.tables import TableGroup, get_table

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class APIError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Table or resource not found."""


class GatewayUnavailableError(APIError):
    """Backend could not be reached."""


class RemoteGateway(Protocol):
    """Narrow contract between the sync engine and the backend.

    Every call is scoped to one tenant. Upserts are idempotent by id.
    """

    async def fetch(self, table: str, tenant_id: str) -> list[Row]:
        """Fetch every row of a table for a tenant."""
        ...

    async def upsert(self, table: str, tenant_id: str, rows: Sequence[Row]) -> None:
        """Insert or update rows by id."""
        ...

    async def delete_by_ids(
        self, table: str, tenant_id: str, ids: Sequence[str]
    ) -> None:
        """Delete the rows with the given ids."""
        ...


class HTTPGateway:
    """HTTP client for the backend's table API."""

    DATA_COLUMNS = "id,data,business_id"

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            config: Backend configuration (URL, token, timeout, SSL).
            transport: Optional httpx transport, used by tests.
        """
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.rest_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
            headers={
                "apikey": config.token,
                "Authorization": f"Bearer {config.token}",
            },
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HTTPGateway:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.aclose()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code in (401, 403):
            raise AuthenticationError("Invalid or expired token", response.status_code)
        if response.status_code == 404:
            raise NotFoundError("Table not found", 404)
        if response.status_code >= 400:
            raise APIError(self._error_detail(response), response.status_code)
        return response

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or "Unknown error"
        if isinstance(body, dict):
            return str(body.get("message") or body.get("detail") or "Unknown error")
        return "Unknown error"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise GatewayUnavailableError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    # === Table operations ===

    async def fetch(self, table: str, tenant_id: str) -> list[Row]:
        """Fetch all rows of a table for a tenant.

        Data tables return ``{id, data, business_id}`` rows; settings tables
        return their full rows, which the caller adapts.

        Args:
            table: Backend table name.
            tenant_id: Tenant scope.

        Returns:
            List of raw rows.
        """
        spec = get_table(table)
        columns = self.DATA_COLUMNS if spec.group is TableGroup.DATA else "*"
        response = await self._request(
            "GET",
            f"/{table}",
            params={"select": columns, "business_id": f"eq.{tenant_id}"},
        )
        rows: list[Row] = response.json() or []
        logger.debug("Fetched %d rows from %s", len(rows), table)
        return rows

    async def upsert(self, table: str, tenant_id: str, rows: Sequence[Row]) -> None:
        """Insert or update rows, keyed by (id, business_id).

        Args:
            table: Backend table name.
            tenant_id: Tenant scope, stamped on every row.
            rows: Rows carrying at least an ``id``.
        """
        if not rows:
            return
        timestamp = datetime.now(UTC).isoformat()
        payload = [
            {**row, "business_id": tenant_id, "updated_at": timestamp} for row in rows
        ]
        await self._request(
            "POST",
            f"/{table}",
            params={"on_conflict": "id,business_id"},
            json=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug("Upserted %d rows into %s", len(payload), table)

    async def delete_by_ids(
        self, table: str, tenant_id: str, ids: Sequence[str]
    ) -> None:
        """Delete rows by id.

        Args:
            table: Backend table name.
            tenant_id: Tenant scope.
            ids: Row ids to delete.
        """
        if not ids:
            return
        id_list = ",".join(_quote(record_id) for record_id in ids)
        await self._request(
            "DELETE",
            f"/{table}",
            params={"business_id": f"eq.{tenant_id}", "id": f"in.({id_list})"},
        )
        logger.debug("Deleted %d rows from %s", len(ids), table)


def _quote(value: str) -> str:
    """Quote a value for an ``in.(...)`` filter, escaping quotes and backslashes."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
