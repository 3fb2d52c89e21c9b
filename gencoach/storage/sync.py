"""Storage Sync: one read/write API over the local and remote tiers.

Semantics are *at-least-locally-durable, best-effort-remote*:

* writes always land locally; a remote write is attempted afterwards and a
  remote failure never undoes or fails the local write;
* reads prefer the remote tier when it is enabled, bound to an owner, and
  produced a record, and fall back to the local tier otherwise.

Remote failures are downgraded to ``SyncDegraded`` warnings: printed, kept on
``StorageSync.warnings``, and returned from ``save``. Concurrent saves of the
same project are last-writer-wins in each tier independently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from gencoach.config import Config
from gencoach.errors import SyncDegraded
from gencoach.models import Project, Settings
from gencoach.storage.local import LocalStore
from gencoach.storage.remote import RemoteStore, RestRemoteStore
from gencoach.storage.results import (
    Err,
    Ok,
    TierResult,
    Unavailable,
    resolve_listing,
    resolve_record,
)
from gencoach.utils import print_warning

T = TypeVar("T")


class StorageCapabilities(BaseModel):
    """Which storage tiers this process may use.

    Decided once at construction from configuration rather than probed from
    the collaborators at call time.
    """
    model_config = ConfigDict(frozen=True)

    remote_enabled: bool = False

    @classmethod
    def local_only(cls) -> "StorageCapabilities":
        return cls(remote_enabled=False)

    @classmethod
    def with_remote(cls) -> "StorageCapabilities":
        return cls(remote_enabled=True)


@dataclass
class SaveOutcome:
    """What a ``save`` achieved in each tier."""

    remote_synced: bool = False
    warnings: list[SyncDegraded] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class StorageSync:
    """Façade reconciling a remote and a local persistence tier.

    Attributes:
        local: The always-available local tier.
        remote: The optional networked tier.
        capabilities: Which tiers are enabled.
        warnings: Every ``SyncDegraded`` recorded by this instance, oldest first.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore | None = None,
        capabilities: StorageCapabilities | None = None,
        owner: str | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self.capabilities = capabilities or StorageCapabilities(
            remote_enabled=remote is not None
        )
        self._owner = owner or None
        self.warnings: list[SyncDegraded] = []

    @classmethod
    def from_config(cls, config: Config) -> "StorageSync":
        """Local file keyspaces, plus the REST remote when it is configured."""
        remote = RestRemoteStore(config.remote) if config.remote.enabled else None
        return cls(
            local=LocalStore.from_config(config),
            remote=remote,
            capabilities=StorageCapabilities(remote_enabled=remote is not None),
        )

    # ------------------------------------------------------------------
    # Owner binding
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str | None:
        return self._owner

    def bind_owner(self, owner: str | None) -> None:
        """Associate remote operations with *owner*; ``None``/``""`` disables them.

        Local data is never touched, so signing out keeps local work visible.
        """
        self._owner = owner or None

    def _remote_ready(self) -> bool:
        return (
            self.capabilities.remote_enabled
            and self.remote is not None
            and self._owner is not None
            and self.remote.is_available()
        )

    # ------------------------------------------------------------------
    # Tier accessors
    # ------------------------------------------------------------------

    async def _remote_call(
        self,
        operation: str,
        call: Callable[[RemoteStore], Awaitable[T]],
        warnings: list[SyncDegraded] | None = None,
    ) -> TierResult[T]:
        if not self._remote_ready():
            return Unavailable()
        assert self.remote is not None  # guaranteed by _remote_ready
        try:
            return Ok(await call(self.remote))
        except Exception as exc:  # noqa: BLE001
            degraded = SyncDegraded(operation, f"{exc.__class__.__name__}: {exc}")
            self.warnings.append(degraded)
            if warnings is not None:
                warnings.append(degraded)
            print_warning(f"  {degraded} -- continuing with local data.")
            return Err(str(exc))

    @staticmethod
    def _local_project(record: dict[str, Any] | None) -> Project | None:
        if record is None:
            return None
        try:
            return Project.from_record(record)
        except ValidationError as exc:
            print_warning(f"  Ignoring unreadable local project record: {exc.error_count()} error(s)")
            return None

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def save(self, project: Project) -> SaveOutcome:
        """Write locally, then best-effort remotely."""
        record = project.to_record()
        self.local.put_project(record)

        outcome = SaveOutcome()
        result = await self._remote_call(
            "save", lambda remote: remote.put(record), outcome.warnings
        )
        outcome.remote_synced = isinstance(result, Ok)
        return outcome

    async def load(self, project_id: str) -> Project | None:
        """Remote record if there is one, otherwise the local record."""

        async def _fetch(remote: RemoteStore) -> Project | None:
            row = await remote.get(project_id)
            return Project.from_record(row) if row is not None else None

        remote_result = await self._remote_call("load", _fetch)
        local_result: TierResult[Project | None] = Ok(
            self._local_project(self.local.get_project(project_id))
        )
        return resolve_record(remote_result, local_result)

    async def load_all(self, owner: str | None = None) -> list[Project]:
        """All projects for *owner* (defaults to the bound owner)."""
        owner = owner or self._owner

        async def _fetch(remote: RemoteStore) -> list[Project]:
            rows = await remote.list_by_owner(owner or "")
            return [Project.from_record(row) for row in rows]

        remote_result: TierResult[list[Project]] = (
            await self._remote_call("load_all", _fetch) if owner else Unavailable()
        )
        local_projects = [
            project
            for project in (
                self._local_project(r) for r in self.local.list_projects(owner)
            )
            if project is not None
        ]
        return resolve_listing(remote_result, Ok(local_projects))

    async def claim_unowned(self, owner: str) -> list[Project]:
        """Give local projects created while signed out to *owner* and save them.

        Each claimed project goes through ``save``, so it also reaches the
        remote tier when that is available.
        """
        claimed: list[Project] = []
        for record in self.local.list_projects(""):
            project = self._local_project(record)
            if project is None:
                continue
            project = project.model_copy(update={"owner": owner})
            await self.save(project)
            claimed.append(project)
        return claimed

    async def delete(self, project_id: str) -> None:
        """Delete locally, then best-effort remotely."""
        self.local.delete_project(project_id)
        await self._remote_call("delete", lambda remote: remote.delete(project_id))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def save_settings(self, owner: str, settings: Settings) -> SaveOutcome:
        record = settings.model_dump(mode="json")
        self.local.put_settings(owner, record)

        outcome = SaveOutcome()
        result = await self._remote_call(
            "save_settings",
            lambda remote: remote.put_settings(owner, record),
            outcome.warnings,
        )
        outcome.remote_synced = isinstance(result, Ok)
        return outcome

    async def load_settings(self, owner: str) -> Settings | None:
        async def _fetch(remote: RemoteStore) -> Settings | None:
            row = await remote.get_settings(owner)
            return Settings.model_validate(row) if row is not None else None

        remote_result = await self._remote_call("load_settings", _fetch)
        local_row = self.local.get_settings(owner)
        local_result: TierResult[Settings | None] = Err("invalid local settings")
        try:
            local_result = Ok(Settings.model_validate(local_row) if local_row else None)
        except ValidationError:
            print_warning("  Ignoring unreadable local settings record.")
        return resolve_record(remote_result, local_result)

    # ------------------------------------------------------------------
    # Session (local only)
    # ------------------------------------------------------------------

    def save_session(self, key: str, data: Any) -> None:
        self.local.save_session(key, data)

    def get_session(self, key: str) -> Any | None:
        return self.local.get_session(key)

    def clear_session(self) -> None:
        self.local.clear_session()
