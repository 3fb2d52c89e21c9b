"""Stage prompt assembly.

``PromptBuilder.build`` turns a project's accumulated stage data plus the
user's inputs for the stage being run into a ``PromptPair``. Required prior
stages and inputs are checked up front: a prompt is never sent with an empty
string where a required value belongs.

Prerequisites::

    stage 2 <- stage 1
    stage 3 <- stage 1
    stage 5 <- stages 1 and 3
    stage 6 <- stage 5

Stages 1 and 4 are built from user inputs alone.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ConfigDict

from gencoach.errors import MissingPrerequisite, UnknownStage
from gencoach.models import (
    COMPLEXITY_LEVELS,
    Project,
    Stage1Data,
    Stage3Data,
    Stage4Data,
    Stage5Data,
)
from gencoach.prompts.templates import STAGE_PROMPTS
from gencoach.utils import STAGE_NAMES, sanitize_name

DEFAULT_STACK = "React with TypeScript"
DEFAULT_PARAMETERS = "Standard configuration"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class PromptPair(BaseModel):
    """System and user prompt for one generation request."""
    model_config = ConfigDict(frozen=True)

    stage_id: int
    system_prompt: str
    user_prompt: str

    @property
    def combined(self) -> str:
        """Both prompts as a single message, for transports without a system slot."""
        return f"{self.system_prompt}\n\n{self.user_prompt}"


def render(template: str, variables: Mapping[str, str]) -> str:
    """Substitute ``{name}`` placeholders in a single pass.

    Placeholders without a variable are left untouched, and substituted
    values are never re-scanned.
    """
    return _PLACEHOLDER.sub(
        lambda m: variables.get(m.group(1), m.group(0)),
        template,
    )


def _text(inputs: Mapping[str, Any], key: str) -> str:
    value = inputs.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _dump(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    elif isinstance(value, list):
        value = [
            v.model_dump(mode="json", by_alias=True) if isinstance(v, BaseModel) else v
            for v in value
        ]
    return json.dumps(value, indent=2)


class PromptBuilder:
    """Builds stage prompts from a project and per-stage user inputs."""

    def __init__(self) -> None:
        self._variables: dict[int, Callable[[Project, Mapping[str, Any]], dict[str, str]]] = {
            1: self._stage1,
            2: self._stage2,
            3: self._stage3,
            4: self._stage4,
            5: self._stage5,
            6: self._stage6,
        }

    # ------------------------------------------------------------------
    # Prerequisite helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_stage(project: Project, stage_id: int, needed: int) -> Any:
        record = project.stages.get(needed)
        if record is None:
            raise MissingPrerequisite(
                stage_id, f"Stage {needed} ({STAGE_NAMES[needed]}) data"
            )
        return record

    @staticmethod
    def _require_input(inputs: Mapping[str, Any], stage_id: int, key: str) -> str:
        value = _text(inputs, key)
        if not value:
            raise MissingPrerequisite(stage_id, f"input {key!r}")
        return value

    # ------------------------------------------------------------------
    # Per-stage variables
    # ------------------------------------------------------------------

    def _stage1(self, project: Project, inputs: Mapping[str, Any]) -> dict[str, str]:
        return {
            key: self._require_input(inputs, 1, key)
            for key in ("concept", "target_user", "problem")
        }

    def _stage2(self, project: Project, inputs: Mapping[str, Any]) -> dict[str, str]:
        stage1: Stage1Data = self._require_stage(project, 2, 1)
        return {
            "concept": stage1.concept,
            "features": _text(inputs, "features") or stage1.problem,
            "stack": _text(inputs, "stack") or DEFAULT_STACK,
        }

    def _stage3(self, project: Project, inputs: Mapping[str, Any]) -> dict[str, str]:
        stage1: Stage1Data = self._require_stage(project, 3, 1)
        return {
            "project_name": project.name,
            "concept": stage1.concept,
            "target_features": _text(inputs, "target_features") or stage1.problem,
        }

    def _stage4(self, project: Project, inputs: Mapping[str, Any]) -> dict[str, str]:
        existing: Stage4Data | None = project.stages.get(4)
        defaults = existing.parameters if existing is not None else None
        variables = {
            "project_type": _text(inputs, "project_type") or project.name,
        }
        for key in ("complexity", "language"):
            value = _text(inputs, key)
            if not value and defaults is not None:
                value = getattr(defaults, key)
            if not value:
                raise MissingPrerequisite(4, f"input {key!r}")
            variables[key] = value
        if variables["complexity"] not in COMPLEXITY_LEVELS:
            raise MissingPrerequisite(
                4,
                f"input 'complexity' to be one of {', '.join(COMPLEXITY_LEVELS)}"
                f" (got {variables['complexity']!r})",
            )
        return variables

    def _stage5(self, project: Project, inputs: Mapping[str, Any]) -> dict[str, str]:
        stage1: Stage1Data = self._require_stage(project, 5, 1)
        stage3: Stage3Data = self._require_stage(project, 5, 3)
        stage4: Stage4Data | None = project.stages.get(4)

        specifications = {
            "concept": stage1.concept,
            "targetUser": stage1.target_user,
            "problem": stage1.problem,
            "features": stage3.features,
            "userStories": stage3.user_stories,
            "uiRequirements": stage3.ui_requirements,
            "stack": stage3.stack,
        }
        features = "\n".join(
            f"- {f.name}: {f.description}"
            for f in stage3.features
            if f.priority in ("Must", "Should")
        )
        return {
            "specifications": json.dumps(
                {k: json.loads(_dump(v)) for k, v in specifications.items()},
                indent=2,
            ),
            "features": features or "No Must or Should features listed.",
            "stack": stage3.stack.frontend or DEFAULT_STACK,
            "parameters": (
                _dump(stage4.parameters) if stage4 is not None else DEFAULT_PARAMETERS
            ),
        }

    def _stage6(self, project: Project, inputs: Mapping[str, Any]) -> dict[str, str]:
        stage5: Stage5Data = self._require_stage(project, 6, 5)
        stage1: Stage1Data | None = project.stages.get(1)
        stage3: Stage3Data | None = project.stages.get(3)

        if stage3 is not None and stage3.features:
            features = "\n".join(f"{f.name}: {f.description}" for f in stage3.features)
        else:
            features = "No feature list recorded."
        return {
            "project_name": project.name,
            "project_slug": sanitize_name(project.name) or "project",
            "concept": stage1.concept if stage1 is not None else project.description,
            "code_structure": ", ".join(f.path for f in stage5.generated_code)
            or "No files generated.",
            "features": features,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(
        self,
        stage_id: int,
        project: Project,
        inputs: Mapping[str, Any] | None = None,
    ) -> PromptPair:
        """Assemble the prompt for *stage_id*.

        Args:
            stage_id: Stage to build for (1..6).
            project: The project whose earlier stage data feeds the prompt.
            inputs: User-supplied values for this stage (see module docstring).

        Raises:
            UnknownStage: If *stage_id* is not 1..6.
            MissingPrerequisite: If a required stage record or input is absent.
        """
        if stage_id not in self._variables:
            raise UnknownStage(stage_id, "build_prompt")
        inputs = inputs or {}
        template = STAGE_PROMPTS[stage_id]
        variables = self._variables[stage_id](project, inputs)

        user = render(template.user, variables)
        if stage_id == 2 and _text(inputs, "technical_concerns"):
            user += (
                "\n\nAdditional technical concerns to address:\n"
                + _text(inputs, "technical_concerns")
            )
        if template.output_format:
            user += "\n\n" + render(template.output_format, variables)

        return PromptPair(
            stage_id=stage_id,
            system_prompt=template.system,
            user_prompt=user,
        )
