"""Error taxonomy for the GenCoach core.

Structural errors (``InvalidTransition``, ``UnknownStage``,
``MissingPrerequisite``) always propagate to the caller. ``GenerationFailed``
wraps a Claude transport or provider failure. ``SyncDegraded`` is never
raised out of the storage layer; it is recorded as a warning alongside a
working local result.
"""

from __future__ import annotations

from gencoach.utils import STAGE_NAMES


def _stage_label(stage_id: int) -> str:
    return f"Stage {stage_id} ({STAGE_NAMES.get(stage_id, '?')})"


class CoachError(Exception):
    """Base class for every error raised by the GenCoach core."""


class InvalidTransition(CoachError):
    """Raised when the stage graph is asked for a transition it does not allow."""

    def __init__(self, stage_id: int, operation: str, message: str) -> None:
        self.stage_id = stage_id
        self.operation = operation
        super().__init__(f"{operation}: {_stage_label(stage_id)}: {message}")


class UnknownStage(CoachError):
    """Raised when a stage identity outside 1..6 reaches the project aggregate."""

    def __init__(self, stage_id: int, operation: str) -> None:
        self.stage_id = stage_id
        self.operation = operation
        super().__init__(f"{operation}: unknown stage {stage_id!r} (expected 1-6)")


class MissingPrerequisite(CoachError):
    """Raised when a prompt is built before the data it depends on exists."""

    def __init__(self, stage_id: int, requirement: str) -> None:
        self.stage_id = stage_id
        self.requirement = requirement
        super().__init__(
            f"build_prompt: {_stage_label(stage_id)} requires {requirement}"
        )


class GenerationFailed(CoachError):
    """Raised when a generation request for a stage cannot produce usable output."""

    def __init__(self, stage_id: int, reason: str) -> None:
        self.stage_id = stage_id
        self.reason = reason
        super().__init__(f"run_stage: {_stage_label(stage_id)}: {reason}")


class SyncDegraded(CoachError):
    """A remote storage tier failed while the local tier stayed intact."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation}: remote store unavailable: {reason}")


class NoProjectOpen(CoachError):
    """Raised when a project-scoped operation runs without a current project."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation}: no project is open")


class ProjectNotFound(CoachError):
    """Raised when neither storage tier holds the requested project."""

    def __init__(self, project_id: str, operation: str = "open_project") -> None:
        self.project_id = project_id
        self.operation = operation
        super().__init__(f"{operation}: project {project_id!r} not found")
