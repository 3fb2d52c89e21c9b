"""Shared pytest fixtures for the GenCoach test suite.

Provides reusable fixtures for:
- In-memory local stores and fake remote stores (working, failing, offline)
- Sample projects and stage records
- A mocked Claude client and canned Claude replies
- Mocked ``httpx.AsyncClient`` instances
"""

from __future__ import annotations

import textwrap
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from gencoach.aggregate import new_project, with_stage_data
from gencoach.claude_client import ClaudeResponse, ConnectionStatus, TokenUsage
from gencoach.config import Config
from gencoach.models import Project
from gencoach.storage import LocalStore, RemoteStore, RemoteStoreError, StorageSync


# ---------------------------------------------------------------------------
# Fake remote store
# ---------------------------------------------------------------------------


class FakeRemoteStore(RemoteStore):
    """Dict-backed remote store that can be switched to fail or go offline."""

    def __init__(self, *, fail: bool = False, available: bool = True) -> None:
        self.fail = fail
        self.available = available
        self.records: dict[str, dict[str, Any]] = {}
        self.settings: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail:
            raise RemoteStoreError(f"{operation} refused")

    def is_available(self) -> bool:
        return self.available

    async def get(self, project_id: str) -> dict[str, Any] | None:
        self._check("get")
        return self.records.get(project_id)

    async def put(self, record: dict[str, Any]) -> None:
        self._check("put")
        self.records[record["id"]] = record

    async def delete(self, project_id: str) -> None:
        self._check("delete")
        self.records.pop(project_id, None)

    async def list_by_owner(self, owner: str) -> list[dict[str, Any]]:
        self._check("list_by_owner")
        return [r for r in self.records.values() if r.get("owner") == owner]

    async def get_settings(self, owner: str) -> dict[str, Any] | None:
        self._check("get_settings")
        return self.settings.get(owner)

    async def put_settings(self, owner: str, record: dict[str, Any]) -> None:
        self._check("put_settings")
        self.settings[owner] = record


@pytest.fixture
def local_store() -> LocalStore:
    return LocalStore.in_memory()


@pytest.fixture
def working_remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def failing_remote() -> FakeRemoteStore:
    return FakeRemoteStore(fail=True)


@pytest.fixture
def make_sync(local_store: LocalStore) -> Callable[..., StorageSync]:
    """Factory: ``make_sync(remote, owner="user-1")`` over the shared local store."""

    def _make(remote: RemoteStore | None = None, owner: str | None = "user-1") -> StorageSync:
        return StorageSync(local=local_store, remote=remote, owner=owner)

    return _make


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


@pytest.fixture
def stage1_data() -> dict[str, str]:
    return {"concept": "X", "target_user": "Y", "problem": "Z"}


@pytest.fixture
def sample_project() -> Project:
    return new_project("Habit Tracker", "Track daily habits", owner="user-1")


@pytest.fixture
def project_with_spec(sample_project: Project, stage1_data: dict[str, str]) -> Project:
    """A project with stage 1 and stage 3 records in place."""
    project = with_stage_data(sample_project, 1, stage1_data)
    return with_stage_data(
        project,
        3,
        {
            "features": [
                {"id": "1", "name": "Streaks", "description": "Count streaks", "priority": "Must"},
                {"id": "2", "name": "Reminders", "description": "Daily nudges", "priority": "Should"},
                {"id": "3", "name": "Themes", "description": "Dark mode", "priority": "Could"},
            ],
            "user_stories": [
                {"id": "1", "title": "Log a habit", "acceptance_criteria": ["Saved"]},
                {"id": "2", "title": "See my streak"},
            ],
            "ui_requirements": "Mobile first",
            "stack": {"frontend": "React", "backend": "FastAPI"},
        },
    )


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(data_dir=tmp_path / ".gencoach")


# ---------------------------------------------------------------------------
# Canned Claude replies
# ---------------------------------------------------------------------------


@pytest.fixture
def poc_reply() -> str:
    return textwrap.dedent("""\
        The concept is feasible.

        ```javascript
        console.log("hello");
        ```

        Proceed with a small pilot.""")


@pytest.fixture
def code_generation_reply() -> str:
    return textwrap.dedent("""\
        ###FILE_START###
        path: src/App.tsx
        language: typescript
        ###CONTENT_START###
        export const App = () => null;
        ###CONTENT_END###
        ###FILE_END###
        ###FILE_START###
        path: README.md
        language: markdown
        ###CONTENT_START###
        # Habit Tracker
        ###CONTENT_END###
        ###FILE_END###
        ###TEST_PLAN_START###
        # QA/UAT Test Plan
        Check everything.
        ###TEST_PLAN_END###
        ###QA_CHECKLIST_START###
        [{"id": 1, "description": "App loads", "status": "pending"}]
        ###QA_CHECKLIST_END###""")


@pytest.fixture
def documentation_reply() -> str:
    return textwrap.dedent("""\
        ###README_START###
        # Habit Tracker

        Track daily habits.
        ###README_END###
        ###WORKFLOW_START###
        {"name": "Habit Tracker - Automation Workflow", "active": false, "nodes": [], "connections": {}, "settings": {}}
        ###WORKFLOW_END###""")


# ---------------------------------------------------------------------------
# Mock Claude
# ---------------------------------------------------------------------------


def claude_reply(content: str, success: bool = True, error: str | None = None) -> ClaudeResponse:
    return ClaudeResponse(
        content=content,
        model="claude-test",
        stop_reason="end_turn",
        usage=TokenUsage(input_tokens=10, output_tokens=20),
        success=success,
        error=error,
    )


@pytest.fixture
def mock_claude() -> MagicMock:
    """A ``ClaudeClient`` stand-in; set ``send_request.return_value`` per test."""
    client = MagicMock()
    client.is_configured.return_value = True
    client.send_request = AsyncMock(return_value=claude_reply("ok"))
    client.test_connection = AsyncMock(return_value=ConnectionStatus(connected=True))
    return client


@pytest.fixture
def mock_http_client() -> Callable[..., AsyncMock]:
    """Factory for an ``httpx.AsyncClient`` replacement usable as ``async with``.

    Usage::

        client = mock_http_client(post=response)
        with patch("httpx.AsyncClient", return_value=client):
            ...
    """

    def _make(**methods: Any) -> AsyncMock:
        client = AsyncMock()
        for name, value in methods.items():
            if isinstance(value, BaseException) or (
                isinstance(value, type) and issubclass(value, BaseException)
            ):
                setattr(client, name, AsyncMock(side_effect=value))
            else:
                setattr(client, name, AsyncMock(return_value=value))
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)
        return client

    return _make


def json_response(payload: Any, status_code: int = 200) -> MagicMock:
    """A ``MagicMock`` shaped like a successful ``httpx.Response``."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


@pytest.fixture
def make_reply() -> Callable[..., ClaudeResponse]:
    return claude_reply


@pytest.fixture
def make_response() -> Callable[..., MagicMock]:
    return json_response


@pytest.fixture
def make_remote() -> type[FakeRemoteStore]:
    return FakeRemoteStore
