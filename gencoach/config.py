"""GenCoach configuration.

Centralised, typed configuration for the pipeline, the Claude client, and the
storage tiers. All settings use Pydantic v2 models so they are validated at
construction time and serialise to/from JSON or environment variables without
boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_CLAUDE_MODEL = "claude-3-5-sonnet-latest"


class ClaudeConfig(BaseModel):
    """Connection settings for the Anthropic Messages API."""

    api_key: str = Field(default="", description="Anthropic API key; empty means unset")
    base_url: str = Field(default="https://api.anthropic.com/v1")
    model: str = Field(default=DEFAULT_CLAUDE_MODEL)
    anthropic_version: str = Field(default="2023-06-01")
    timeout: int = Field(default=120, ge=10, description="Per-request timeout in seconds")


class GenerationBudget(BaseModel):
    """Token and sampling budget for one stage's generation request."""

    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)


def _default_budgets() -> dict[int, GenerationBudget]:
    return {
        1: GenerationBudget(max_tokens=4096),
        2: GenerationBudget(max_tokens=6000),
        3: GenerationBudget(max_tokens=6000),
        4: GenerationBudget(max_tokens=2048),
        5: GenerationBudget(max_tokens=8000),
        6: GenerationBudget(max_tokens=6000),
    }


class RemoteStoreConfig(BaseModel):
    """Settings for the PostgREST-style remote project store.

    The remote tier is enabled only when both ``url`` and ``api_key`` are set.
    """

    url: str = Field(default="")
    api_key: str = Field(default="")
    projects_table: str = Field(default="projects")
    settings_table: str = Field(default="user_settings")
    timeout: int = Field(default=30, ge=1, description="Per-request timeout in seconds")

    @property
    def enabled(self) -> bool:
        """``True`` when enough is configured to attempt remote calls."""
        return bool(self.url and self.api_key)


class Config(BaseModel):
    """Global GenCoach configuration.

    Instances are typically created once by the CLI entry point (or by
    ``CoachPipeline.from_config``) and passed through the rest of the system.
    """

    data_dir: Path = Field(default=Path("./.gencoach"))
    app_id: str = Field(default="gencoach-default")
    claude: ClaudeConfig = Field(default_factory=ClaudeConfig)
    remote: RemoteStoreConfig = Field(default_factory=RemoteStoreConfig)
    generation: dict[int, GenerationBudget] = Field(default_factory=_default_budgets)

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def auth_path(self) -> Path:
        """Keyspace file for the authentication/session record."""
        return self.data_dir / "auth-storage.json"

    @property
    def projects_path(self) -> Path:
        """Keyspace file for project-by-id records."""
        return self.data_dir / "project-storage.json"

    @property
    def settings_path(self) -> Path:
        """Keyspace file for per-user settings."""
        return self.data_dir / "settings-storage.json"

    def budget_for(self, stage_id: int) -> GenerationBudget:
        """Generation budget for *stage_id*, falling back to the defaults."""
        return self.generation.get(stage_id, GenerationBudget())

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Defaults to ``<data_dir>/config.json``.

        Returns:
            The resolved path where the file was written.
        """
        target = path or (self.data_dir / "config.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            GENCOACH_DATA_DIR, GENCOACH_APP_ID,
            ANTHROPIC_API_KEY, GENCOACH_CLAUDE_MODEL, GENCOACH_CLAUDE_BASE_URL,
            GENCOACH_CLAUDE_TIMEOUT,
            GENCOACH_REMOTE_URL, GENCOACH_REMOTE_API_KEY, GENCOACH_REMOTE_TIMEOUT.
        """
        claude_kwargs: dict[str, Any] = {}
        if os.environ.get("ANTHROPIC_API_KEY"):
            claude_kwargs["api_key"] = os.environ["ANTHROPIC_API_KEY"]
        if os.environ.get("GENCOACH_CLAUDE_MODEL"):
            claude_kwargs["model"] = os.environ["GENCOACH_CLAUDE_MODEL"]
        if os.environ.get("GENCOACH_CLAUDE_BASE_URL"):
            claude_kwargs["base_url"] = os.environ["GENCOACH_CLAUDE_BASE_URL"]
        if os.environ.get("GENCOACH_CLAUDE_TIMEOUT"):
            claude_kwargs["timeout"] = int(os.environ["GENCOACH_CLAUDE_TIMEOUT"])

        remote_kwargs: dict[str, Any] = {}
        if os.environ.get("GENCOACH_REMOTE_URL"):
            remote_kwargs["url"] = os.environ["GENCOACH_REMOTE_URL"]
        if os.environ.get("GENCOACH_REMOTE_API_KEY"):
            remote_kwargs["api_key"] = os.environ["GENCOACH_REMOTE_API_KEY"]
        if os.environ.get("GENCOACH_REMOTE_TIMEOUT"):
            remote_kwargs["timeout"] = int(os.environ["GENCOACH_REMOTE_TIMEOUT"])

        return cls(
            data_dir=Path(os.environ.get("GENCOACH_DATA_DIR", "./.gencoach")),
            app_id=os.environ.get("GENCOACH_APP_ID", "gencoach-default"),
            claude=ClaudeConfig(**claude_kwargs),
            remote=RemoteStoreConfig(**remote_kwargs),
        )

    def ensure_directories(self) -> None:
        """Create the local data directory if it does not exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
