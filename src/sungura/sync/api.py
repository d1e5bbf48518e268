"""
Farm REST API client.

Thin async client over the farm backend. Every response is expected in the
``{success, data, message?}`` envelope; entity payloads are validated on
the way in so that nothing malformed reaches a snapshot.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import httpx
import orjson

from sungura.config import Settings, get_settings
from sungura.exceptions import ConfigurationError, RemoteAPIError, ResponseValidationError
from sungura.logging import get_logger
from sungura.types import (
    ApiEnvelope,
    EarningsRecord,
    Entity,
    EntityKind,
    Hutch,
    Rabbit,
    RemovalRecord,
    parse_entities,
    parse_entity,
    utc_now,
)

logger = get_logger(__name__)

# Collections listed and created at /{kind}/{farm}
_FARM_SCOPED_KINDS = (
    EntityKind.RABBITS,
    EntityKind.HUTCHES,
    EntityKind.ROWS,
    EntityKind.BREEDS,
    EntityKind.EARNINGS,
)


def is_retryable_status(status_code: int) -> bool:
    """Server errors and rate limiting are worth retrying."""
    return status_code >= 500 or status_code == 429


class FarmApiClient:
    """Client for the farm REST API.

    Sends ``Authorization: Bearer <API_TOKEN>`` on every call when a token
    is configured.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            settings: Application settings (defaults to get_settings()).
            client: Pre-built HTTP client, e.g. one mounted on an
                OfflineTransport or a MockTransport in tests.
        """
        self.settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with proper headers."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _url(self, path: str) -> str:
        return f"{self.settings.API_BASE_URL}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        token = self.settings.API_TOKEN
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ApiEnvelope:
        """Send a request and decode the response envelope.

        Raises:
            RemoteAPIError: On a failed request, HTTP error status, or an
                envelope with ``success: false``.
            ResponseValidationError: If a successful response is malformed.
            ConfigurationError: If a write is attempted without an API token.
        """
        if method != "GET" and not self.settings.API_TOKEN:
            raise ConfigurationError(
                "API_TOKEN is required for write requests",
                context={"method": method, "path": path},
            )

        client = await self._get_client()
        url = self._url(path)

        try:
            response = await client.request(
                method, url, json=json, params=params, headers=self._headers()
            )
        except httpx.RequestError as e:
            raise RemoteAPIError(
                f"Network error calling {method} {path}",
                retryable=True,
                context={"method": method, "path": path, "error": str(e)},
            ) from e

        try:
            body = orjson.loads(response.content) if response.content else None
        except orjson.JSONDecodeError:
            body = None

        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            raise RemoteAPIError(
                message or f"HTTP {response.status_code} from {method} {path}",
                status_code=response.status_code,
                retryable=is_retryable_status(response.status_code),
                context={"method": method, "path": path},
            )

        envelope = ApiEnvelope.from_dict(body)
        if not envelope.success:
            raise RemoteAPIError(
                envelope.message or f"{method} {path} was rejected",
                status_code=response.status_code,
                context={"method": method, "path": path},
            )

        logger.debug("API call succeeded", method=method, path=path, status=response.status_code)
        return envelope

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(self, farm_id: str, kind: EntityKind) -> list[Any]:
        """Fetch the authoritative collection of one entity kind.

        Args:
            farm_id: Farm ID.
            kind: Entity kind. REMOVALS is not listable farm-wide; use
                hutch_history() instead.

        Returns:
            Validated entities.
        """
        if kind not in _FARM_SCOPED_KINDS:
            raise ValueError(f"{kind.value} cannot be fetched for a whole farm")
        envelope = await self._request("GET", f"/{kind.value}/{farm_id}")
        return parse_entities(kind, envelope.data)

    async def list_rabbits(self, farm_id: str) -> list[Rabbit]:
        return await self.fetch(farm_id, EntityKind.RABBITS)

    async def list_hutches(self, farm_id: str) -> list[Hutch]:
        return await self.fetch(farm_id, EntityKind.HUTCHES)

    async def list_rows(self, farm_id: str) -> list[Any]:
        return await self.fetch(farm_id, EntityKind.ROWS)

    async def list_earnings(self, farm_id: str) -> list[EarningsRecord]:
        return await self.fetch(farm_id, EntityKind.EARNINGS)

    async def list_breeds(self, farm_id: str, doe_id: str | None = None) -> list[Any]:
        """Breeding records of a farm, optionally for one doe."""
        params = {"doe_id": doe_id} if doe_id else None
        envelope = await self._request("GET", f"/breeds/{farm_id}", params=params)
        return parse_entities(EntityKind.BREEDS, envelope.data)

    async def hutch_history(self, farm_id: str, hutch_id: str) -> list[RemovalRecord]:
        """Removal records of rabbits that lived in a hutch."""
        envelope = await self._request("GET", f"/hutches/{farm_id}/{hutch_id}/history")
        return parse_entities(EntityKind.REMOVALS, envelope.data)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, farm_id: str, kind: EntityKind, payload: dict[str, Any]) -> Any:
        """Create an entity and return the server-confirmed version.

        Earnings are posted to ``/earnings`` with the farm in the body; all
        other kinds to ``/{kind}/{farm}``.
        """
        if kind not in _FARM_SCOPED_KINDS:
            raise ValueError(f"{kind.value} cannot be created directly")

        if kind is EntityKind.EARNINGS:
            envelope = await self._request("POST", "/earnings", json={**payload, "farm_id": farm_id})
        else:
            envelope = await self._request("POST", f"/{kind.value}/{farm_id}", json=payload)
        return self._confirmed_entity(kind, envelope, payload)

    async def update_rabbit(
        self, farm_id: str, rabbit_id: str, changes: dict[str, Any]
    ) -> Rabbit:
        """Update a rabbit and return the server-confirmed version."""
        envelope = await self._request("PUT", f"/rabbits/{farm_id}/{rabbit_id}", json=changes)
        return self._confirmed_entity(EntityKind.RABBITS, envelope, changes)

    async def remove_rabbit(
        self,
        farm_id: str,
        rabbit_id: str,
        reason: str,
        notes: str = "",
        removal_date: date | None = None,
        sale_amount: float | None = None,
    ) -> RemovalRecord:
        """Record a rabbit's removal (death, sale, cull, ...).

        Returns:
            The confirmed removal record; built from the request when the
            server does not echo one back.
        """
        payload: dict[str, Any] = {
            "reason": reason,
            "notes": notes,
            "date": (removal_date or utc_now().date()).isoformat(),
        }
        if sale_amount is not None:
            payload["sale_amount"] = sale_amount

        envelope = await self._request(
            "POST", f"/rabbits/rabbit_removals/{farm_id}/{rabbit_id}", json=payload
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return RemovalRecord.from_dict(
            {
                **payload,
                "rabbit_id": rabbit_id,
                "removed_at": utc_now().isoformat(),
                **data,
            }
        )

    async def delete_hutch(self, farm_id: str, hutch_id: str) -> None:
        await self._request("DELETE", f"/hutches/{farm_id}/{hutch_id}")

    async def delete_row(self, farm_id: str, row_name: str) -> None:
        await self._request("DELETE", f"/rows/{farm_id}/{row_name}")

    @staticmethod
    def _confirmed_entity(kind: EntityKind, envelope: ApiEnvelope, sent: dict[str, Any]) -> Entity:
        data = envelope.data
        if not isinstance(data, dict):
            raise ResponseValidationError(
                f"{kind.value} write did not return the saved entity",
                context={"entity": kind.value, "errors": ["data missing"]},
            )
        return parse_entity(kind, {**sent, **data})
