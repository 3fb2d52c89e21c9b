"""Pydantic v2 models for projects, stage records, and user settings.

Every model is frozen: a "mutation" always produces a new value through the
functions in ``gencoach.aggregate``. Records accept both camelCase keys (as
Claude is asked to emit them) and snake_case keys (as they are persisted), and
always dump as snake_case so both storage tiers hold the same shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from gencoach.utils import generate_id, utc_now


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Shared value types
# ---------------------------------------------------------------------------

Priority = Literal["Must", "Should", "Could", "Won't"]

Complexity = Literal["low", "medium", "high"]
COMPLEXITY_LEVELS: tuple[str, ...] = get_args(Complexity)

QAStatus = Literal["pending", "pass", "fail"]
QA_STATUSES: tuple[str, ...] = get_args(QAStatus)

_PRIORITY_PREFIXES: dict[str, Priority] = {
    "must": "Must",
    "should": "Should",
    "could": "Could",
    "won": "Won't",
}


class Feature(_Record):
    """A feature prioritised with the MoSCoW method."""
    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    priority: Priority = "Should"

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, value: Any) -> Any:
        # Claude often answers "Must have" / "SHOULD" / "Won't have".
        if isinstance(value, str):
            lowered = value.strip().lower()
            for prefix, priority in _PRIORITY_PREFIXES.items():
                if lowered.startswith(prefix):
                    return priority
        return value


class UserStory(_Record):
    id: str = Field(default_factory=generate_id)
    title: str
    description: str = ""
    acceptance_criteria: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class TechStack(_Record):
    frontend: str = ""
    backend: Optional[str] = None
    database: Optional[str] = None
    other: list[str] = Field(default_factory=list)


class ClaudeParameters(_Record):
    """Generation parameters chosen in stage 4."""
    complexity: Complexity = "medium"
    language: str = "TypeScript"
    model: Optional[str] = None


class GeneratedFile(_Record):
    path: str
    content: str
    language: str = "plaintext"


class QAChecklistItem(_Record):
    id: str
    description: str
    status: QAStatus = "pending"

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


# ---------------------------------------------------------------------------
# n8n workflow descriptors
# ---------------------------------------------------------------------------

class N8nConnection(_Record):
    node: str
    type: str = "main"
    index: int = 0


class N8nNode(_Record):
    id: str = Field(default_factory=generate_id)
    name: str
    type: str
    type_version: Union[int, float] = 1
    position: tuple[int, int] = (250, 300)
    parameters: dict[str, Any] = Field(default_factory=dict)


class N8nWorkflow(_Record):
    """An n8n workflow as accepted by the n8n REST API."""
    id: Optional[str] = None
    name: str
    active: bool = False
    nodes: list[N8nNode] = Field(default_factory=list)
    connections: dict[str, dict[str, list[N8nConnection]]] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Stage records
# ---------------------------------------------------------------------------

class Stage1Data(_Record):
    """Idea management: the concept as entered, plus Claude's analysis."""
    concept: str
    target_user: str
    problem: str
    market_analysis: Optional[str] = None
    business_objectives: Optional[str] = None


class Stage2Data(_Record):
    """Concept validation: feasibility report and proof-of-concept code."""
    feasibility_report: Optional[str] = None
    poc_code: Optional[str] = None
    viability_confirmed: bool = False


class Stage3Data(_Record):
    """Feature specification."""
    features: list[Feature] = Field(default_factory=list)
    ui_requirements: str = ""
    stack: TechStack = Field(default_factory=TechStack)
    user_stories: list[UserStory] = Field(default_factory=list)
    specification_report: Optional[str] = None


class Stage4Data(_Record):
    """Claude credentials and generation parameters."""
    claude_api_key: str = ""
    connection_status: Literal["connected", "disconnected", "testing"] = "disconnected"
    parameters: ClaudeParameters = Field(default_factory=ClaudeParameters)
    recommendations: Optional[str] = None


class Stage5Data(_Record):
    """Generated code files and QA material."""
    generated_code: list[GeneratedFile] = Field(default_factory=list)
    test_plan: Optional[str] = None
    qa_checklist: list[QAChecklistItem] = Field(default_factory=list)
    defects_resolved: bool = False


class Stage6Data(_Record):
    """Automation workflows and generated documentation."""
    workflow_id: Optional[str] = None
    workflow_json: Optional[str] = None
    workflow_status: Literal["inactive", "active"] = "inactive"
    readme: Optional[str] = None
    workflows: list[N8nWorkflow] = Field(default_factory=list)
    downloaded_at: Optional[datetime] = None


STAGE_RECORD_TYPES: dict[int, type[_Record]] = {
    1: Stage1Data,
    2: Stage2Data,
    3: Stage3Data,
    4: Stage4Data,
    5: Stage5Data,
    6: Stage6Data,
}


class StageData(_Record):
    """Per-stage records; a stage's slot is ``None`` until that stage has run."""
    stage1: Optional[Stage1Data] = None
    stage2: Optional[Stage2Data] = None
    stage3: Optional[Stage3Data] = None
    stage4: Optional[Stage4Data] = None
    stage5: Optional[Stage5Data] = None
    stage6: Optional[Stage6Data] = None

    def get(self, stage_id: int) -> Optional[_Record]:
        """Return the record for *stage_id* or ``None`` if absent or unknown."""
        if stage_id not in STAGE_RECORD_TYPES:
            return None
        return getattr(self, f"stage{stage_id}")

    def present(self) -> list[int]:
        """Stage ids that currently hold a record."""
        return [sid for sid in STAGE_RECORD_TYPES if self.get(sid) is not None]


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------

class ProjectMetadata(_Record):
    model_config = ConfigDict(extra="allow")

    version: str = "1.0.0"
    tags: list[str] = Field(default_factory=list)
    collaborators: Optional[list[str]] = None


class Project(_Record):
    """The per-project aggregate holding all stage outputs and metadata."""
    id: str = Field(default_factory=lambda: generate_id())
    owner: str = ""
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    current_stage: int = Field(default=1, ge=1, le=6)
    completed_stages: list[int] = Field(default_factory=list)
    stages: StageData = Field(default_factory=StageData)
    metadata: ProjectMetadata = Field(default_factory=ProjectMetadata)

    def to_record(self) -> dict[str, Any]:
        """The persisted representation, identical in both storage tiers."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Project":
        return cls.model_validate(record)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class Settings(_Record):
    """Per-user preferences and credentials."""
    theme: Literal["dark", "light"] = "dark"
    claude_api_key: Optional[str] = None
    n8n_api_key: Optional[str] = None
    n8n_base_url: Optional[str] = None
    notifications: bool = True
    save_progress: bool = True

    def with_updates(self, **changes: Any) -> "Settings":
        """Return a validated copy with *changes* applied."""
        return Settings.model_validate({**self.model_dump(), **changes})

    def clear_api_keys(self) -> "Settings":
        return self.with_updates(claude_api_key=None, n8n_api_key=None, n8n_base_url=None)
