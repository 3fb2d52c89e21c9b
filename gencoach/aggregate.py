"""Pure transformations over the ``Project`` aggregate.

Each function takes a project and returns a new one; the input value is never
modified and the result never aliases mutable state from it. ``updated_at``
is refreshed on every transformation. Cross-stage data flow happens only when
the prompt builder reads earlier records, never here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel

from gencoach.errors import UnknownStage
from gencoach.models import STAGE_RECORD_TYPES, Project, ProjectMetadata
from gencoach.utils import utc_now

# Keys of a metadata patch that address the project's own descriptive fields.
_DESCRIPTIVE_KEYS = ("name", "description")


def _as_patch(
    patch: Mapping[str, Any] | BaseModel,
    record_type: type[BaseModel],
) -> dict[str, Any]:
    """Normalise *patch* to field names so camelCase keys merge over snake_case ones."""
    if isinstance(patch, BaseModel):
        return patch.model_dump(exclude_unset=True)
    by_alias = {
        info.alias: name
        for name, info in record_type.model_fields.items()
        if info.alias
    }
    return {by_alias.get(key, key): value for key, value in patch.items()}


def new_project(
    name: str,
    description: str = "",
    owner: str = "",
    *,
    now: datetime | None = None,
) -> Project:
    """Create an empty project positioned at stage 1."""
    timestamp = now or utc_now()
    return Project(
        name=name,
        description=description,
        owner=owner,
        created_at=timestamp,
        updated_at=timestamp,
    )


def with_stage_data(
    project: Project,
    stage_id: int,
    patch: Mapping[str, Any] | BaseModel,
    *,
    now: datetime | None = None,
) -> Project:
    """Shallow-merge *patch* into the record for *stage_id*.

    Fields absent from *patch* keep their previous values. The merged record
    is validated against the stage's record type, so a first write must carry
    that type's required fields.

    Raises:
        UnknownStage: If *stage_id* is not 1..6.
        pydantic.ValidationError: If the merged record is invalid.
    """
    record_type = STAGE_RECORD_TYPES.get(stage_id)
    if record_type is None:
        raise UnknownStage(stage_id, "with_stage_data")

    existing = project.stages.get(stage_id)
    base = existing.model_dump() if existing is not None else {}
    merged = record_type.model_validate({**base, **_as_patch(patch, record_type)})

    stages = project.stages.model_copy(update={f"stage{stage_id}": merged}, deep=True)
    return project.model_copy(
        update={"stages": stages, "updated_at": now or utc_now()},
        deep=True,
    )


def with_metadata(
    project: Project,
    patch: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> Project:
    """Merge *patch* into the project's metadata.

    ``name`` and ``description`` update the project's own fields; every other
    key merges into ``ProjectMetadata``. Values are not validated for content:
    an empty name is accepted as-is.
    """
    changes = dict(patch)
    update: dict[str, Any] = {
        key: changes.pop(key) for key in _DESCRIPTIVE_KEYS if key in changes
    }
    if changes:
        update["metadata"] = ProjectMetadata.model_validate(
            {**project.metadata.model_dump(), **changes}
        )
    update["updated_at"] = now or utc_now()
    return project.model_copy(update=update, deep=True)


def with_current_stage(
    project: Project,
    stage_id: int,
    *,
    now: datetime | None = None,
) -> Project:
    """Record which stage the project is positioned at."""
    if stage_id not in STAGE_RECORD_TYPES:
        raise UnknownStage(stage_id, "with_current_stage")
    return project.model_copy(
        update={"current_stage": stage_id, "updated_at": now or utc_now()},
        deep=True,
    )


def with_completed_stage(
    project: Project,
    stage_id: int,
    *,
    now: datetime | None = None,
) -> Project:
    """Add *stage_id* to the project's completed stages (idempotent)."""
    if stage_id not in STAGE_RECORD_TYPES:
        raise UnknownStage(stage_id, "with_completed_stage")
    completed = sorted(set(project.completed_stages) | {stage_id})
    return project.model_copy(
        update={"completed_stages": completed, "updated_at": now or utc_now()},
        deep=True,
    )
