"""Remote storage tier.

``RemoteStore`` is the boundary Storage Sync talks to: keyed get/put/delete of
persisted project records, a list-by-owner query, and per-owner settings.
Implementations raise on any failure; ``StorageSync`` is the only place that
catches and downgrades those errors.

``RestRemoteStore`` speaks a PostgREST-style API (``/rest/v1/<table>``) such
as the one Supabase exposes, using ``httpx.AsyncClient``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from gencoach.config import RemoteStoreConfig
from gencoach.errors import CoachError
from gencoach.utils import utc_now


class RemoteStoreError(CoachError):
    """The remote store answered, but not with something we can use."""


class RemoteStore(ABC):
    """Abstract remote persistence for project and settings records."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether remote calls should be attempted at all."""

    @abstractmethod
    async def get(self, project_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def put(self, record: dict[str, Any]) -> None: ...

    @abstractmethod
    async def delete(self, project_id: str) -> None: ...

    @abstractmethod
    async def list_by_owner(self, owner: str) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def get_settings(self, owner: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def put_settings(self, owner: str, record: dict[str, Any]) -> None: ...


class RestRemoteStore(RemoteStore):
    """Remote store backed by a PostgREST-compatible HTTP API.

    Project rows use the persisted record's own keys as columns so a row read
    back is structurally identical to what the local tier holds. Settings
    rows are ``{owner, settings, updated_at}``.
    """

    def __init__(self, config: RemoteStoreConfig) -> None:
        self.config = config
        self.base_url = config.url.rstrip("/")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` carrying the API key headers."""
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            timeout=httpx.Timeout(self.config.timeout, connect=10.0),
            headers={
                "apikey": self.config.api_key,
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
        )

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict[str, Any]]:
        data = response.json()
        if not isinstance(data, list):
            raise RemoteStoreError(f"expected a list of rows, got {type(data).__name__}")
        return [row for row in data if isinstance(row, dict)]

    # ------------------------------------------------------------------
    # RemoteStore API
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return self.config.enabled

    async def get(self, project_id: str) -> dict[str, Any] | None:
        async with self._client() as client:
            response = await client.get(
                f"/{self.config.projects_table}",
                params={"id": f"eq.{project_id}", "select": "*"},
            )
            response.raise_for_status()
            rows = self._rows(response)
        return rows[0] if rows else None

    async def put(self, record: dict[str, Any]) -> None:
        async with self._client() as client:
            response = await client.post(
                f"/{self.config.projects_table}",
                json=record,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )
            response.raise_for_status()

    async def delete(self, project_id: str) -> None:
        async with self._client() as client:
            response = await client.delete(
                f"/{self.config.projects_table}",
                params={"id": f"eq.{project_id}"},
            )
            response.raise_for_status()

    async def list_by_owner(self, owner: str) -> list[dict[str, Any]]:
        async with self._client() as client:
            response = await client.get(
                f"/{self.config.projects_table}",
                params={"owner": f"eq.{owner}", "select": "*", "order": "updated_at.desc"},
            )
            response.raise_for_status()
            return self._rows(response)

    async def get_settings(self, owner: str) -> dict[str, Any] | None:
        async with self._client() as client:
            response = await client.get(
                f"/{self.config.settings_table}",
                params={"owner": f"eq.{owner}", "select": "*"},
            )
            response.raise_for_status()
            rows = self._rows(response)
        if not rows:
            return None
        settings = rows[0].get("settings")
        return settings if isinstance(settings, dict) else None

    async def put_settings(self, owner: str, record: dict[str, Any]) -> None:
        async with self._client() as client:
            response = await client.post(
                f"/{self.config.settings_table}",
                json={
                    "owner": owner,
                    "settings": record,
                    "updated_at": utc_now().isoformat(),
                },
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )
            response.raise_for_status()
