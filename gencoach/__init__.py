"""GenCoach -- guided six-stage product development pipeline.

Walks a project from idea to automation through six gated stages. Each stage
assembles a prompt from the outputs of earlier stages, sends it to Claude, and
persists the parsed result to a local store with best-effort remote sync.

Usage::

    from gencoach import Config, CoachPipeline, SessionState

    pipeline = CoachPipeline.from_config(Config.from_env())
    state = await pipeline.new_project(SessionState.initial(), "Habit Tracker")
    state = await pipeline.run_stage(state, 1, {"concept": "...", ...})
"""

from gencoach.config import Config
from gencoach.errors import (
    CoachError,
    GenerationFailed,
    InvalidTransition,
    MissingPrerequisite,
    SyncDegraded,
    UnknownStage,
)
from gencoach.models import Project, Settings
from gencoach.pipeline import CoachPipeline, SessionState
from gencoach.stages import StageGraph

__version__ = "1.0.0"

__all__ = [
    "Config",
    "CoachPipeline",
    "SessionState",
    "StageGraph",
    "Project",
    "Settings",
    # Errors
    "CoachError",
    "InvalidTransition",
    "UnknownStage",
    "MissingPrerequisite",
    "GenerationFailed",
    "SyncDegraded",
]
