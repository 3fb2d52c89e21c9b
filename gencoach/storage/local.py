"""Local storage tier.

Three independent keyspaces -- authentication/session, projects, settings --
each a flat mapping from a namespaced key (``project:<id>``,
``settings:<owner>``, ``session:<key>``) to a JSON-serialisable record.
File-backed keyspaces re-read their file on every access, so a file cleared or
deleted by something else simply reads as "no record".
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from gencoach.config import Config
from gencoach.utils import load_json, write_json

PROJECT_PREFIX = "project:"
SETTINGS_PREFIX = "settings:"
SESSION_PREFIX = "session:"


class Keyspace:
    """A namespaced key/value mapping persisted as a single JSON object.

    With ``path=None`` the keyspace lives in memory for the lifetime of the
    object, which is what tests and throwaway sessions use.
    """

    def __init__(self, name: str, path: Path | None = None) -> None:
        self.name = name
        self.path = path
        self._memory: dict[str, Any] = {}

    def _read(self) -> dict[str, Any]:
        if self.path is None:
            return dict(self._memory)
        return load_json(self.path)

    def _write(self, data: dict[str, Any]) -> None:
        if self.path is None:
            self._memory = data
        else:
            write_json(data, self.path)

    def get(self, key: str) -> Any | None:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def items(self, prefix: str = "") -> list[tuple[str, Any]]:
        return [(k, v) for k, v in self._read().items() if k.startswith(prefix)]

    def clear(self, prefix: str) -> None:
        self._write({k: v for k, v in self._read().items() if not k.startswith(prefix)})


class LocalStore:
    """Synchronous local persistence for projects, settings and the session."""

    def __init__(self, auth: Keyspace, projects: Keyspace, settings: Keyspace) -> None:
        self.auth = auth
        self.projects = projects
        self.settings = settings

    @classmethod
    def from_config(cls, config: Config) -> "LocalStore":
        return cls(
            auth=Keyspace("auth-storage", config.auth_path),
            projects=Keyspace("project-storage", config.projects_path),
            settings=Keyspace("settings-storage", config.settings_path),
        )

    @classmethod
    def in_memory(cls) -> "LocalStore":
        return cls(
            auth=Keyspace("auth-storage"),
            projects=Keyspace("project-storage"),
            settings=Keyspace("settings-storage"),
        )

    # -- projects -----------------------------------------------------------

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        return self.projects.get(f"{PROJECT_PREFIX}{project_id}")

    def put_project(self, record: dict[str, Any]) -> None:
        self.projects.set(f"{PROJECT_PREFIX}{record['id']}", record)

    def delete_project(self, project_id: str) -> None:
        self.projects.delete(f"{PROJECT_PREFIX}{project_id}")

    def list_projects(self, owner: str | None = None) -> list[dict[str, Any]]:
        """All stored project records, newest first, optionally for one owner."""
        records = [
            record
            for _, record in self.projects.items(PROJECT_PREFIX)
            if isinstance(record, dict) and (owner is None or record.get("owner") == owner)
        ]
        return sorted(records, key=lambda r: str(r.get("updated_at", "")), reverse=True)

    # -- settings -----------------------------------------------------------

    def get_settings(self, owner: str) -> dict[str, Any] | None:
        return self.settings.get(f"{SETTINGS_PREFIX}{owner}")

    def put_settings(self, owner: str, record: dict[str, Any]) -> None:
        self.settings.set(f"{SETTINGS_PREFIX}{owner}", record)

    # -- session ------------------------------------------------------------

    def save_session(self, key: str, data: Any) -> None:
        self.auth.set(f"{SESSION_PREFIX}{key}", data)

    def get_session(self, key: str) -> Any | None:
        return self.auth.get(f"{SESSION_PREFIX}{key}")

    def clear_session(self) -> None:
        self.auth.clear(SESSION_PREFIX)
