"""GenCoach stage pipeline.

Drives a project through the six gated stages:

Stage 1: IDEA MANAGEMENT    -- concept, target user, problem; market analysis.
Stage 2: CONCEPT VALIDATION -- feasibility report and proof-of-concept code.
Stage 3: SPECIFICATION      -- MoSCoW features, user stories, UI, stack.
Stage 4: CLI CONFIGURATION  -- Claude parameters and recommendations.
Stage 5: CODE GENERATION    -- generated files, test plan, QA checklist.
Stage 6: AUTOMATION         -- README and n8n workflows.

Session state is an immutable ``SessionState`` value. Every ``CoachPipeline``
operation takes the current state and returns a new one; the new state only
exists once the reply has been parsed, merged and saved, so abandoning an
in-flight ``run_stage`` leaves the caller's state as it was.

Usage::

    python -m gencoach.pipeline new "Habit Tracker"
    python -m gencoach.pipeline run 1 -i concept="..." -i target_user="..." -i problem="..."
    python -m gencoach.pipeline complete 1
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from rich.panel import Panel

from gencoach.aggregate import (
    new_project,
    with_completed_stage,
    with_current_stage,
    with_metadata,
    with_stage_data,
)
from gencoach.claude_client import ClaudeClient, ClaudeRequest
from gencoach.config import Config
from gencoach.errors import (
    CoachError,
    GenerationFailed,
    InvalidTransition,
    NoProjectOpen,
    ProjectNotFound,
    UnknownStage,
)
from gencoach.models import (
    QA_STATUSES,
    ClaudeParameters,
    Project,
    Settings,
    Stage3Data,
    Stage4Data,
    Stage5Data,
)
from gencoach.prompts import (
    PromptBuilder,
    parse_code_generation,
    parse_documentation,
    parse_response,
    parse_specification,
)
from gencoach.stages import STAGE_DEFINITIONS, STAGE_IDS, StageGraph
from gencoach.storage import StorageSync
from gencoach.utils import (
    STAGE_NAMES,
    console,
    format_duration,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
    sanitize_name,
)
from gencoach.workflows import (
    generate_basic_workflow,
    generate_deployment_workflow,
    parse_workflow,
    workflow_to_json,
)

CURRENT_PROJECT_KEY = "current_project"
OWNER_KEY = "owner"
REPO_URL_TEMPLATE = "https://github.com/yourusername/{slug}"


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


class SessionState(BaseModel):
    """Everything one user session knows, as a single immutable value.

    Attributes:
        owner: Signed-in user id, or ``None`` when working locally only.
        project: The current project, if one is open.
        graph: Stage progress for the current project.
        settings: The owner's settings.
    """
    model_config = ConfigDict(frozen=True)

    owner: Optional[str] = None
    project: Optional[Project] = None
    graph: StageGraph = Field(default_factory=StageGraph.initial)
    settings: Settings = Field(default_factory=Settings)

    @classmethod
    def initial(cls, owner: Optional[str] = None) -> "SessionState":
        return cls(owner=owner or None)

    def require_project(self, operation: str) -> Project:
        if self.project is None:
            raise NoProjectOpen(operation)
        return self.project

    def with_project(self, project: Project, graph: Optional[StageGraph] = None) -> "SessionState":
        update: dict[str, Any] = {"project": project}
        if graph is not None:
            update["graph"] = graph
        return self.model_copy(update=update)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class CoachPipeline:
    """Runs stages and records their results.

    Attributes:
        config: Global configuration.
        storage: Local/remote project storage.
        client: Claude transport.
        builder: Stage prompt builder.
    """

    def __init__(
        self,
        config: Config,
        storage: StorageSync,
        client: ClaudeClient,
        builder: Optional[PromptBuilder] = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.client = client
        self.builder = builder or PromptBuilder()

    @classmethod
    def from_config(cls, config: Config) -> "CoachPipeline":
        config.ensure_directories()
        return cls(
            config=config,
            storage=StorageSync.from_config(config),
            client=ClaudeClient(config.claude),
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def sign_in(self, state: SessionState, owner: str) -> SessionState:
        """Bind *owner* to storage, claim signed-out work and load their settings."""
        self.storage.bind_owner(owner)
        self.storage.save_session(OWNER_KEY, owner)
        claimed = {project.id: project for project in await self.storage.claim_unowned(owner)}
        if claimed:
            print_success(f"  Moved {len(claimed)} local project(s) to {owner}.")
        settings = await self.storage.load_settings(owner) or Settings()
        if settings.claude_api_key and not self.client.is_configured():
            self.client.set_api_key(settings.claude_api_key)
        update: dict[str, Any] = {"owner": owner, "settings": settings}
        if state.project is not None and state.project.id in claimed:
            update["project"] = claimed[state.project.id]
        return state.model_copy(update=update)

    def sign_out(self, state: SessionState) -> SessionState:
        """Drop the owner binding and in-memory credentials; local data stays."""
        self.storage.bind_owner(None)
        self.storage.clear_session()
        self.client.set_api_key("")
        return SessionState.initial()

    async def update_settings(self, state: SessionState, **changes: Any) -> SessionState:
        settings = state.settings.with_updates(**changes)
        if state.owner:
            await self.storage.save_settings(state.owner, settings)
        if "claude_api_key" in changes:
            self.client.set_api_key(settings.claude_api_key or "")
        return state.model_copy(update={"settings": settings})

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def new_project(
        self,
        state: SessionState,
        name: str,
        description: str = "",
    ) -> SessionState:
        """Create, save and open an empty project."""
        project = new_project(name, description, owner=state.owner or "")
        await self.storage.save(project)
        self.storage.save_session(CURRENT_PROJECT_KEY, project.id)
        return state.with_project(project, StageGraph.initial())

    async def open_project(self, state: SessionState, project_id: str) -> SessionState:
        """Load a project and rebuild its stage graph from its completions."""
        project = await self.storage.load(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        graph = StageGraph.from_completed(project.completed_stages, project.current_stage)
        self.storage.save_session(CURRENT_PROJECT_KEY, project.id)
        return state.with_project(project, graph)

    async def list_projects(self, state: SessionState) -> list[Project]:
        return await self.storage.load_all(state.owner)

    async def delete_project(self, state: SessionState, project_id: str) -> SessionState:
        await self.storage.delete(project_id)
        if state.project is not None and state.project.id == project_id:
            self.storage.save_session(CURRENT_PROJECT_KEY, None)
            return state.model_copy(update={"project": None, "graph": StageGraph.initial()})
        return state

    async def update_metadata(self, state: SessionState, patch: Mapping[str, Any]) -> SessionState:
        project = with_metadata(state.require_project("update_metadata"), patch)
        await self.storage.save(project)
        return state.with_project(project)

    # ------------------------------------------------------------------
    # Stage runs
    # ------------------------------------------------------------------

    async def run_stage(
        self,
        state: SessionState,
        stage_id: int,
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> SessionState:
        """Build, send, parse, merge and save one stage.

        Raises:
            UnknownStage: *stage_id* is not 1..6.
            InvalidTransition: The stage is locked.
            MissingPrerequisite: Required earlier data or inputs are absent.
            GenerationFailed: Claude failed or the reply was unusable.
        """
        project = state.require_project("run_stage")
        if stage_id not in STAGE_IDS:
            raise UnknownStage(stage_id, "run_stage")
        if not state.graph.can_enter(stage_id):
            raise InvalidTransition(stage_id, "run_stage", "stage is locked")

        inputs = dict(inputs or {})
        pair = self.builder.build(stage_id, project, inputs)

        if stage_id == 4 and inputs.get("claude_api_key"):
            self.client.set_api_key(str(inputs["claude_api_key"]))
            status = await self.client.test_connection()
            if not status.connected:
                raise GenerationFailed(4, f"API key check failed: {status.error}")
        elif not self.client.is_configured() and state.settings.claude_api_key:
            self.client.set_api_key(state.settings.claude_api_key)

        budget = self.config.budget_for(stage_id)
        started = time.monotonic()
        response = await self.client.send_request(
            ClaudeRequest(
                prompt=pair.user_prompt,
                system=pair.system_prompt,
                max_tokens=budget.max_tokens,
                temperature=budget.temperature,
            )
        )
        if not response.success:
            raise GenerationFailed(stage_id, response.error or "unknown Claude error")

        patch = self._interpret(stage_id, project, inputs, response.content)
        updated = with_current_stage(with_stage_data(project, stage_id, patch), stage_id)
        outcome = await self.storage.save(updated)

        print_success(
            f"  {STAGE_NAMES[stage_id]} generated in "
            f"{format_duration(time.monotonic() - started)} "
            f"({response.usage.input_tokens}/{response.usage.output_tokens} tokens)"
        )
        if outcome.degraded:
            print_warning("  Saved locally only; remote sync will be retried on the next save.")
        return state.with_project(updated, state.graph.set_current(stage_id))

    def _interpret(
        self,
        stage_id: int,
        project: Project,
        inputs: Mapping[str, Any],
        content: str,
    ) -> dict[str, Any]:
        """Turn a successful reply into the patch for *stage_id*'s record."""
        if stage_id == 1:
            return {
                "concept": str(inputs["concept"]).strip(),
                "target_user": str(inputs["target_user"]).strip(),
                "problem": str(inputs["problem"]).strip(),
                "market_analysis": content.strip(),
            }

        if stage_id == 2:
            parsed = parse_response(content)
            return {
                "feasibility_report": parsed.report,
                "poc_code": parsed.code,
                "viability_confirmed": False,
            }

        if stage_id == 3:
            spec = parse_specification(content)
            patch: dict[str, Any] = {"specification_report": spec.report}
            if spec.structured:
                patch["features"] = spec.features
                patch["user_stories"] = spec.user_stories
                if spec.ui_requirements is not None:
                    patch["ui_requirements"] = spec.ui_requirements
                if spec.stack is not None:
                    patch["stack"] = spec.stack
            return patch

        if stage_id == 4:
            existing: Optional[Stage4Data] = project.stages.get(4)
            current = existing.parameters if existing is not None else ClaudeParameters()
            parameters = current.model_copy(
                update={
                    key: str(inputs[key]).strip()
                    for key in ("complexity", "language", "model")
                    if inputs.get(key)
                }
            )
            return {
                "parameters": ClaudeParameters.model_validate(parameters.model_dump()),
                "recommendations": content.strip(),
                "connection_status": "connected",
            }

        if stage_id == 5:
            stage3: Optional[Stage3Data] = project.stages.get(3)
            result = parse_code_generation(
                content, stage3.user_stories if stage3 is not None else ()
            )
            if not result.files:
                raise GenerationFailed(5, "response contained no generated files")
            return {
                "generated_code": result.files,
                "test_plan": result.test_plan,
                "qa_checklist": result.qa_checklist,
                "defects_resolved": False,
            }

        docs = parse_documentation(content)
        workflow = parse_workflow(docs.workflow_json)
        if workflow is None:
            workflow = generate_basic_workflow(project.name)
        repo_url = REPO_URL_TEMPLATE.format(slug=sanitize_name(project.name) or "project")
        return {
            "readme": docs.readme,
            "workflow_json": docs.workflow_json or workflow_to_json(workflow),
            "workflows": [workflow, generate_deployment_workflow(project.name, repo_url)],
        }

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    async def confirm_viability(self, state: SessionState, confirmed: bool = True) -> SessionState:
        """Record the user's verdict on the stage 2 proof of concept."""
        project = state.require_project("confirm_viability")
        if project.stages.get(2) is None:
            raise InvalidTransition(2, "confirm_viability", "stage has not been run yet")
        updated = with_stage_data(project, 2, {"viability_confirmed": confirmed})
        await self.storage.save(updated)
        return state.with_project(updated)

    async def update_qa_status(self, state: SessionState, item_id: str, status: str) -> SessionState:
        """Set one stage 5 checklist item to pending, pass or fail.

        A failing item reopens the defects, so ``defects_resolved`` drops back
        to False.
        """
        project = state.require_project("update_qa_status")
        stage5: Optional[Stage5Data] = project.stages.get(5)
        if stage5 is None:
            raise InvalidTransition(5, "update_qa_status", "stage has not been run yet")
        if status not in QA_STATUSES:
            raise InvalidTransition(
                5, "update_qa_status", f"status must be one of {', '.join(QA_STATUSES)}, got {status!r}"
            )
        if not any(item.id == item_id for item in stage5.qa_checklist):
            raise InvalidTransition(5, "update_qa_status", f"no checklist item {item_id!r}")

        checklist = [
            item.model_copy(update={"status": status}) if item.id == item_id else item
            for item in stage5.qa_checklist
        ]
        patch: dict[str, Any] = {"qa_checklist": checklist}
        if status == "fail":
            patch["defects_resolved"] = False
        updated = with_stage_data(project, 5, patch)
        await self.storage.save(updated)
        return state.with_project(updated)

    async def confirm_defects_resolved(self, state: SessionState) -> SessionState:
        """Record that every QA defect found in stage 5 has been dealt with."""
        project = state.require_project("confirm_defects_resolved")
        stage5: Optional[Stage5Data] = project.stages.get(5)
        if stage5 is None:
            raise InvalidTransition(5, "confirm_defects_resolved", "stage has not been run yet")
        failing = [item.id for item in stage5.qa_checklist if item.status == "fail"]
        if failing:
            raise InvalidTransition(
                5, "confirm_defects_resolved", f"checklist items still failing: {', '.join(failing)}"
            )
        updated = with_stage_data(project, 5, {"defects_resolved": True})
        await self.storage.save(updated)
        return state.with_project(updated)

    async def complete_stage(self, state: SessionState, stage_id: int) -> SessionState:
        """Mark *stage_id* completed, unlock and move to the next stage.

        Stage 2 needs a confirmed proof of concept and stage 5 needs its
        defects marked resolved.
        """
        project = state.require_project("complete_stage")
        graph = state.graph.complete(stage_id)
        record = project.stages.get(stage_id)
        if record is None:
            raise InvalidTransition(stage_id, "complete_stage", "stage has no results yet")
        if stage_id == 2 and not record.viability_confirmed:
            raise InvalidTransition(2, "complete_stage", "proof of concept has not been confirmed")
        if stage_id == 5 and not record.defects_resolved:
            raise InvalidTransition(5, "complete_stage", "QA defects have not been marked resolved")

        updated = with_completed_stage(project, stage_id)
        if stage_id < len(STAGE_IDS):
            graph = graph.set_current(stage_id + 1)
            updated = with_current_stage(updated, stage_id + 1)
        await self.storage.save(updated)
        return state.with_project(updated, graph)

    async def go_to_stage(self, state: SessionState, stage_id: int) -> SessionState:
        project = state.require_project("go_to_stage")
        graph = state.graph.set_current(stage_id)
        updated = with_current_stage(project, stage_id)
        await self.storage.save(updated)
        return state.with_project(updated, graph)

    async def reset_progress(self, state: SessionState) -> SessionState:
        """Clear all completions; stage records are kept."""
        project = state.require_project("reset_progress")
        updated = project.model_copy(update={"completed_stages": []})
        updated = with_current_stage(updated, 1)
        await self.storage.save(updated)
        return state.with_project(updated, state.graph.reset())


# ---------------------------------------------------------------------------
# CLI helpers
# ---------------------------------------------------------------------------


def _parse_inputs(pairs: list[str]) -> dict[str, str]:
    inputs: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"expected key=value, got {pair!r}")
        inputs[key.strip()] = value
    return inputs


def _print_status(state: SessionState) -> None:
    project = state.require_project("status")
    rows = {
        f"{d.id}. {d.name}": state.graph.status(d.id).value
        + (" (current)" if d.id == state.graph.current_stage else "")
        for d in STAGE_DEFINITIONS
    }
    print_summary_table(rows, title=f"{project.name} [{project.id}]")


def _print_stage_result(state: SessionState, stage_id: int) -> None:
    project = state.require_project("run_stage")
    record = project.stages.get(stage_id)
    if record is None:
        return
    lines = [
        f"[bold]{key}[/bold]: {str(value)[:200]}"
        for key, value in record.model_dump(exclude_none=True).items()
    ]
    console.print(Panel("\n".join(lines), title=STAGE_NAMES[stage_id], border_style="cyan"))


async def _run_cli(args: Any) -> None:
    config = Config.from_env()
    if args.data_dir:
        config = config.model_copy(update={"data_dir": Path(args.data_dir)})
    pipeline = CoachPipeline.from_config(config)

    state = SessionState.initial()
    owner = args.owner or pipeline.storage.get_session(OWNER_KEY)
    if owner:
        state = await pipeline.sign_in(state, owner)

    if args.command == "new":
        state = await pipeline.new_project(state, args.name, args.description)
        print_success(f"Created project {args.name!r} ({state.project.id})")
        return

    if args.command == "list":
        projects = await pipeline.list_projects(state)
        if not projects:
            print_warning("No projects yet.")
            return
        print_summary_table(
            {
                p.id: f"{p.name} -- stage {p.current_stage}, "
                f"completed {p.completed_stages or 'none'}"
                for p in projects
            },
            title="Projects",
        )
        return

    project_id = getattr(args, "project", None) or pipeline.storage.get_session(CURRENT_PROJECT_KEY)
    if not project_id:
        raise NoProjectOpen(args.command)
    state = await pipeline.open_project(state, project_id)

    if args.command == "open":
        _print_status(state)
    elif args.command == "status":
        _print_status(state)
    elif args.command == "run":
        print_stage_header(args.stage)
        state = await pipeline.run_stage(state, args.stage, _parse_inputs(args.input))
        _print_stage_result(state, args.stage)
    elif args.command == "confirm":
        state = await pipeline.confirm_viability(state, not args.reject)
        print_success("Viability recorded.")
    elif args.command == "qa":
        state = await pipeline.update_qa_status(state, args.item, args.status)
        print_success(f"Checklist item {args.item} marked {args.status}.")
    elif args.command == "resolve":
        state = await pipeline.confirm_defects_resolved(state)
        print_success("Defects marked resolved.")
    elif args.command == "complete":
        state = await pipeline.complete_stage(state, args.stage)
        print_success(f"Stage {args.stage} completed.")
        _print_status(state)
    elif args.command == "reset":
        state = await pipeline.reset_progress(state)
        print_success("Progress reset.")


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """CLI entry point for ``gencoach`` / ``python -m gencoach.pipeline``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="GenCoach -- guided six-stage product development pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            '  gencoach new "Habit Tracker"\n'
            "  gencoach run 1 -i concept=... -i target_user=... -i problem=...\n"
            "  gencoach complete 1\n"
            "  gencoach qa 1 pass\n"
        ),
    )
    parser.add_argument("--owner", default=None, help="User id for remote sync")
    parser.add_argument("--data-dir", default=None, help="Local data directory")

    sub = parser.add_subparsers(dest="command", required=True)

    new_p = sub.add_parser("new", help="Create and open a project")
    new_p.add_argument("name")
    new_p.add_argument("--description", "-d", default="")

    sub.add_parser("list", help="List projects")

    open_p = sub.add_parser("open", help="Open a project")
    open_p.add_argument("project")

    status_p = sub.add_parser("status", help="Show stage progress")
    status_p.add_argument("--project", default=None)

    run_p = sub.add_parser("run", help="Run a stage")
    run_p.add_argument("stage", type=int)
    run_p.add_argument("--input", "-i", action="append", default=[], help="key=value")
    run_p.add_argument("--project", default=None)

    confirm_p = sub.add_parser("confirm", help="Confirm stage 2 viability")
    confirm_p.add_argument("--reject", action="store_true")
    confirm_p.add_argument("--project", default=None)

    qa_p = sub.add_parser("qa", help="Set a stage 5 QA checklist item status")
    qa_p.add_argument("item")
    qa_p.add_argument("status", choices=QA_STATUSES)
    qa_p.add_argument("--project", default=None)

    resolve_p = sub.add_parser("resolve", help="Mark stage 5 defects resolved")
    resolve_p.add_argument("--project", default=None)

    complete_p = sub.add_parser("complete", help="Mark a stage completed")
    complete_p.add_argument("stage", type=int)
    complete_p.add_argument("--project", default=None)

    reset_p = sub.add_parser("reset", help="Reset stage progress")
    reset_p.add_argument("--project", default=None)

    args = parser.parse_args()

    try:
        asyncio.run(_run_cli(args))
    except (CoachError, ValueError) as exc:
        print_error(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
