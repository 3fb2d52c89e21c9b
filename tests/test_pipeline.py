"""Unit tests for the stage pipeline (gencoach.pipeline).

Claude is replaced by the ``mock_claude`` fixture and storage runs against
an in-memory local store, optionally with a fake remote.

Tests cover:
- Project lifecycle: new, open, list, delete, metadata
- run_stage for each stage, including failures and cancellation
- Stage transitions: confirm_viability, complete_stage, go_to_stage, reset
- Completion gates: confirmed proof of concept, QA status and resolved defects
- Session: sign_in (claiming signed-out work), sign_out, update_settings
- CLI input parsing
"""

from __future__ import annotations

import asyncio

import pytest

from gencoach.aggregate import with_stage_data
from gencoach.claude_client import ConnectionStatus
from gencoach.errors import (
    GenerationFailed,
    InvalidTransition,
    MissingPrerequisite,
    NoProjectOpen,
    ProjectNotFound,
    UnknownStage,
)
from gencoach.models import Settings, Stage2Data
from gencoach.pipeline import CURRENT_PROJECT_KEY, CoachPipeline, SessionState, _parse_inputs
from gencoach.prompts.parser import CODE_BLOCK_PLACEHOLDER
from gencoach.prompts.templates import STAGE_PROMPTS
from gencoach.stages import StageGraph, StageStatus
from gencoach.workflows import generate_basic_workflow, workflow_to_json


@pytest.fixture
def pipeline(config, make_sync, mock_claude) -> CoachPipeline:
    return CoachPipeline(config=config, storage=make_sync(None), client=mock_claude)


@pytest.fixture
def opened(sample_project) -> SessionState:
    return SessionState.initial("user-1").with_project(sample_project, StageGraph.initial())


def _state_at(project, completed: list[int]) -> SessionState:
    return SessionState.initial("user-1").with_project(
        project, StageGraph.from_completed(completed)
    )


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


class TestSessionState:
    @pytest.mark.unit
    def test_initial(self):
        state = SessionState.initial("")
        assert state.owner is None
        assert state.project is None
        assert state.graph == StageGraph.initial()

    @pytest.mark.unit
    def test_require_project(self):
        with pytest.raises(NoProjectOpen) as exc_info:
            SessionState.initial().require_project("run_stage")
        assert "run_stage" in str(exc_info.value)

    @pytest.mark.unit
    def test_with_project_keeps_graph(self, sample_project):
        graph = StageGraph.initial().complete(1)
        state = SessionState(graph=graph).with_project(sample_project)
        assert state.graph == graph


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class TestProjects:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_new_project_saved_and_opened(self, pipeline):
        state = await pipeline.new_project(SessionState.initial("user-1"), "App", "desc")
        assert state.project.name == "App"
        assert state.project.owner == "user-1"
        assert await pipeline.storage.load(state.project.id) == state.project
        assert pipeline.storage.get_session(CURRENT_PROJECT_KEY) == state.project.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_missing_project(self, pipeline):
        with pytest.raises(ProjectNotFound) as exc_info:
            await pipeline.open_project(SessionState.initial(), "nope")
        assert exc_info.value.project_id == "nope"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_projects(self, pipeline):
        state = SessionState.initial("user-1")
        await pipeline.new_project(state, "A")
        await pipeline.new_project(state, "B")
        names = sorted(p.name for p in await pipeline.list_projects(state))
        assert names == ["A", "B"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_current_project(self, pipeline):
        state = await pipeline.new_project(SessionState.initial("user-1"), "A")
        project_id = state.project.id
        state = await pipeline.delete_project(state, project_id)
        assert state.project is None
        assert await pipeline.storage.load(project_id) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_other_project_keeps_state(self, pipeline, opened):
        assert await pipeline.delete_project(opened, "other") is opened

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_metadata(self, pipeline, opened):
        state = await pipeline.update_metadata(opened, {"name": "Renamed", "tags": ["x"]})
        assert state.project.name == "Renamed"
        stored = await pipeline.storage.load(state.project.id)
        assert stored.metadata.tags == ["x"]


# ---------------------------------------------------------------------------
# run_stage
# ---------------------------------------------------------------------------


class TestRunStageGuards:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_project(self, pipeline):
        with pytest.raises(NoProjectOpen):
            await pipeline.run_stage(SessionState.initial(), 1, {})

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_stage(self, pipeline, opened):
        with pytest.raises(UnknownStage):
            await pipeline.run_stage(opened, 7)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_locked_stage(self, pipeline, opened, mock_claude):
        with pytest.raises(InvalidTransition):
            await pipeline.run_stage(opened, 3)
        mock_claude.send_request.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_prerequisite_sends_nothing(self, pipeline, sample_project, mock_claude):
        state = _state_at(sample_project, [1])
        with pytest.raises(MissingPrerequisite):
            await pipeline.run_stage(state, 2)
        mock_claude.send_request.assert_not_called()


class TestRunStageOne:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_records_inputs_and_analysis(self, pipeline, opened, stage1_data, mock_claude, make_reply):
        mock_claude.send_request.return_value = make_reply("  Market looks good.  ")
        state = await pipeline.run_stage(opened, 1, stage1_data)

        stage1 = state.project.stages.stage1
        assert (stage1.concept, stage1.target_user, stage1.problem) == ("X", "Y", "Z")
        assert stage1.market_analysis == "Market looks good."
        assert state.graph.current_stage == 1
        assert await pipeline.storage.load(state.project.id) == state.project

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_request_uses_stage_budget(self, pipeline, opened, stage1_data, mock_claude, config):
        await pipeline.run_stage(opened, 1, stage1_data)
        request = mock_claude.send_request.call_args.args[0]
        assert request.system == STAGE_PROMPTS[1].system
        assert "Concept: X" in request.prompt
        assert request.max_tokens == config.budget_for(1).max_tokens

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generation_failure_leaves_state(self, pipeline, opened, stage1_data, mock_claude, make_reply):
        mock_claude.send_request.return_value = make_reply("", success=False, error="HTTP 529")
        with pytest.raises(GenerationFailed) as exc_info:
            await pipeline.run_stage(opened, 1, stage1_data)
        assert exc_info.value.reason == "HTTP 529"
        assert opened.project.stages.stage1 is None
        assert await pipeline.storage.load(opened.project.id) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_request_changes_nothing(self, pipeline, opened, stage1_data, mock_claude):
        await pipeline.storage.save(opened.project)
        mock_claude.send_request.side_effect = asyncio.CancelledError()
        with pytest.raises(asyncio.CancelledError):
            await pipeline.run_stage(opened, 1, stage1_data)
        assert await pipeline.storage.load(opened.project.id) == opened.project

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remote_failure_still_returns_state(
        self, config, make_sync, failing_remote, mock_claude, opened, stage1_data
    ):
        pipeline = CoachPipeline(config, make_sync(failing_remote), mock_claude)
        state = await pipeline.run_stage(opened, 1, stage1_data)
        assert state.project.stages.stage1 is not None
        assert pipeline.storage.warnings
        assert await pipeline.storage.load(state.project.id) == state.project


class TestRunStageTwo:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_report_and_code_split(self, pipeline, opened, stage1_data, mock_claude, make_reply, poc_reply):
        state = await pipeline.run_stage(opened, 1, stage1_data)
        state = await pipeline.complete_stage(state, 1)

        mock_claude.send_request.return_value = make_reply(poc_reply)
        state = await pipeline.run_stage(state, 2)

        assert state.project.stages.stage2 == Stage2Data(
            feasibility_report=(
                f"The concept is feasible.\n\n{CODE_BLOCK_PLACEHOLDER}\n\n"
                "Proceed with a small pilot."
            ),
            poc_code='```javascript\nconsole.log("hello");\n```',
            viability_confirmed=False,
        )
        assert state.graph.current_stage == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_confirm_viability(self, pipeline, sample_project, stage1_data):
        project = with_stage_data(sample_project, 1, stage1_data)
        state = _state_at(project, [1])
        with pytest.raises(InvalidTransition):
            await pipeline.confirm_viability(state)

        state = state.with_project(with_stage_data(project, 2, {"poc_code": "x"}))
        state = await pipeline.confirm_viability(state)
        assert state.project.stages.stage2.viability_confirmed is True
        assert state.project.stages.stage2.poc_code == "x"


class TestRunStageThree:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_structured_spec(self, pipeline, sample_project, stage1_data, mock_claude, make_reply):
        project = with_stage_data(sample_project, 1, stage1_data)
        mock_claude.send_request.return_value = make_reply(
            '{"features": [{"name": "Streaks", "priority": "MUST"}], '
            '"userStories": [{"title": "Log"}], "stack": "Svelte"}'
        )
        state = await pipeline.run_stage(_state_at(project, [1, 2]), 3)
        stage3 = state.project.stages.stage3
        assert stage3.features[0].priority == "Must"
        assert stage3.user_stories[0].title == "Log"
        assert stage3.stack.frontend == "Svelte"
        assert stage3.specification_report is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_prose_reply_keeps_report_only(self, pipeline, sample_project, stage1_data, mock_claude, make_reply):
        project = with_stage_data(sample_project, 1, stage1_data)
        mock_claude.send_request.return_value = make_reply("Only prose.")
        state = await pipeline.run_stage(_state_at(project, [1, 2]), 3)
        assert state.project.stages.stage3.features == []
        assert state.project.stages.stage3.specification_report == "Only prose."


class TestRunStageFour:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_parameters_and_key(self, pipeline, project_with_spec, mock_claude, make_reply):
        mock_claude.send_request.return_value = make_reply("Use a low temperature.")
        state = await pipeline.run_stage(
            _state_at(project_with_spec, [1, 2, 3]),
            4,
            {"complexity": "high", "language": "Go", "claude_api_key": "sk-user"},
        )
        stage4 = state.project.stages.stage4
        assert stage4.parameters.complexity == "high"
        assert stage4.parameters.language == "Go"
        assert stage4.recommendations == "Use a low temperature."
        assert stage4.connection_status == "connected"
        assert stage4.claude_api_key == ""
        mock_claude.set_api_key.assert_called_with("sk-user")
        mock_claude.test_connection.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_key_stops_before_generation(self, pipeline, project_with_spec, mock_claude):
        mock_claude.test_connection.return_value = ConnectionStatus(
            connected=False, error="Claude API returned HTTP 401: invalid x-api-key"
        )
        with pytest.raises(GenerationFailed) as exc_info:
            await pipeline.run_stage(
                _state_at(project_with_spec, [1, 2, 3]),
                4,
                {"complexity": "low", "language": "Go", "claude_api_key": "sk-bad"},
            )
        assert exc_info.value.stage_id == 4
        assert "invalid x-api-key" in str(exc_info.value)
        mock_claude.send_request.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_new_key_skips_check(self, pipeline, project_with_spec, mock_claude):
        await pipeline.run_stage(
            _state_at(project_with_spec, [1, 2, 3]), 4, {"complexity": "low", "language": "Go"}
        )
        mock_claude.test_connection.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_complexity_rejected(self, pipeline, project_with_spec, mock_claude):
        with pytest.raises(MissingPrerequisite) as exc_info:
            await pipeline.run_stage(
                _state_at(project_with_spec, [1, 2, 3]),
                4,
                {"complexity": "extreme", "language": "Go"},
            )
        assert "Stage 4" in str(exc_info.value)
        mock_claude.send_request.assert_not_called()


class TestRunStageFive:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_files_and_qa(self, pipeline, project_with_spec, mock_claude, make_reply, code_generation_reply):
        mock_claude.send_request.return_value = make_reply(code_generation_reply)
        state = await pipeline.run_stage(_state_at(project_with_spec, [1, 2, 3, 4]), 5)
        stage5 = state.project.stages.stage5
        assert [f.path for f in stage5.generated_code] == ["src/App.tsx", "README.md"]
        assert stage5.test_plan.startswith("# QA/UAT Test Plan")
        assert stage5.qa_checklist[0].description == "App loads"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_files_is_a_failure(self, pipeline, project_with_spec, mock_claude, make_reply):
        mock_claude.send_request.return_value = make_reply("Sorry, no code today.")
        with pytest.raises(GenerationFailed) as exc_info:
            await pipeline.run_stage(_state_at(project_with_spec, [1, 2, 3, 4]), 5)
        assert exc_info.value.stage_id == 5


class TestRunStageSix:
    @pytest.fixture
    def generated(self, project_with_spec):
        return with_stage_data(
            project_with_spec,
            5,
            {"generated_code": [{"path": "src/App.tsx", "content": "x"}]},
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_readme_and_workflow(self, pipeline, generated, mock_claude, make_reply, documentation_reply):
        mock_claude.send_request.return_value = make_reply(documentation_reply)
        state = await pipeline.run_stage(_state_at(generated, [1, 2, 3, 4, 5]), 6)
        stage6 = state.project.stages.stage6
        assert stage6.readme.startswith("# Habit Tracker")
        assert stage6.workflows[0].name == "Habit Tracker - Automation Workflow"
        deployment = stage6.workflows[1]
        assert deployment.name == "Habit Tracker - Deployment Workflow"
        assert deployment.nodes[0].parameters["repository"] == (
            "https://github.com/yourusername/habit-tracker"
        )
        assert len(stage6.workflows) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_falls_back_to_basic_workflow(self, pipeline, generated, mock_claude, make_reply):
        mock_claude.send_request.return_value = make_reply("No markers here.")
        state = await pipeline.run_stage(_state_at(generated, [1, 2, 3, 4, 5]), 6)
        stage6 = state.project.stages.stage6
        basic = generate_basic_workflow("Habit Tracker")
        assert stage6.workflows[0].name == basic.name
        assert [w.name for w in stage6.workflows] == [
            basic.name,
            "Habit Tracker - Deployment Workflow",
        ]
        assert stage6.workflow_json == workflow_to_json(stage6.workflows[0])


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_complete_requires_results(self, pipeline, opened):
        with pytest.raises(InvalidTransition):
            await pipeline.complete_stage(opened, 1)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_complete_locked_stage(self, pipeline, project_with_spec):
        with pytest.raises(InvalidTransition):
            await pipeline.complete_stage(_state_at(project_with_spec, []), 3)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_complete_then_reopen(self, pipeline, opened, stage1_data):
        state = await pipeline.run_stage(opened, 1, stage1_data)
        state = await pipeline.complete_stage(state, 1)
        assert state.project.completed_stages == [1]
        assert state.project.current_stage == 2
        assert state.graph.status(2) is StageStatus.UNLOCKED

        reopened = await pipeline.open_project(SessionState.initial("user-1"), state.project.id)
        assert reopened.graph == state.graph
        assert reopened.project == state.project

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_complete_last_stage_stays_put(self, pipeline, project_with_spec):
        project = with_stage_data(project_with_spec, 6, {"readme": "# R"})
        state = await pipeline.complete_stage(_state_at(project, [1, 2, 3, 4, 5]), 6)
        assert state.graph.is_terminal is True
        assert state.project.completed_stages == [6]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_go_to_stage(self, pipeline, project_with_spec):
        state = await pipeline.go_to_stage(_state_at(project_with_spec, [1, 2]), 2)
        assert state.graph.current_stage == 2
        assert state.project.current_stage == 2
        with pytest.raises(InvalidTransition):
            await pipeline.go_to_stage(state, 5)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reset_progress_keeps_data(self, pipeline, project_with_spec):
        project = project_with_spec.model_copy(update={"completed_stages": [1, 2, 3]})
        state = await pipeline.reset_progress(_state_at(project, [1, 2, 3]))
        assert state.project.completed_stages == []
        assert state.project.current_stage == 1
        assert state.project.stages.stage3 is not None
        assert state.graph == StageGraph.initial()


class TestCompletionGates:
    @pytest.fixture
    def validated(self, sample_project, stage1_data):
        project = with_stage_data(sample_project, 1, stage1_data)
        return with_stage_data(project, 2, {"feasibility_report": "ok", "poc_code": "x"})

    @pytest.fixture
    def coded(self, project_with_spec):
        return with_stage_data(
            project_with_spec,
            5,
            {
                "generated_code": [{"path": "src/App.tsx", "content": "x"}],
                "qa_checklist": [
                    {"id": "1", "description": "App loads"},
                    {"id": "2", "description": "Habits persist"},
                ],
            },
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stage2_needs_confirmed_poc(self, pipeline, validated):
        state = _state_at(validated, [1])
        with pytest.raises(InvalidTransition) as exc_info:
            await pipeline.complete_stage(state, 2)
        assert exc_info.value.stage_id == 2

        state = await pipeline.confirm_viability(state, confirmed=False)
        with pytest.raises(InvalidTransition):
            await pipeline.complete_stage(state, 2)

        state = await pipeline.confirm_viability(state)
        state = await pipeline.complete_stage(state, 2)
        assert 2 in state.project.completed_stages
        assert state.graph.current_stage == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stage5_needs_resolved_defects(self, pipeline, coded):
        state = _state_at(coded, [1, 2, 3, 4])
        with pytest.raises(InvalidTransition) as exc_info:
            await pipeline.complete_stage(state, 5)
        assert exc_info.value.stage_id == 5

        state = await pipeline.confirm_defects_resolved(state)
        state = await pipeline.complete_stage(state, 5)
        assert 5 in state.project.completed_stages
        assert state.graph.current_stage == 6

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_qa_status(self, pipeline, coded):
        state = await pipeline.update_qa_status(_state_at(coded, [1, 2, 3, 4]), "2", "pass")
        assert [i.status for i in state.project.stages.stage5.qa_checklist] == ["pending", "pass"]
        saved = await pipeline.storage.load(coded.id)
        assert saved.stages.stage5.qa_checklist[1].status == "pass"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_item_blocks_resolution(self, pipeline, coded):
        state = await pipeline.confirm_defects_resolved(_state_at(coded, [1, 2, 3, 4]))
        assert state.project.stages.stage5.defects_resolved is True

        state = await pipeline.update_qa_status(state, "1", "fail")
        assert state.project.stages.stage5.defects_resolved is False
        with pytest.raises(InvalidTransition) as exc_info:
            await pipeline.confirm_defects_resolved(state)
        assert "1" in str(exc_info.value)
        with pytest.raises(InvalidTransition):
            await pipeline.complete_stage(state, 5)

        state = await pipeline.update_qa_status(state, "1", "pass")
        state = await pipeline.confirm_defects_resolved(state)
        assert state.project.stages.stage5.defects_resolved is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("item_id, status", [("9", "pass"), ("1", "skipped")])
    async def test_update_qa_status_rejects_bad_input(self, pipeline, coded, item_id, status):
        with pytest.raises(InvalidTransition):
            await pipeline.update_qa_status(_state_at(coded, [1, 2, 3, 4]), item_id, status)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_qa_operations_need_stage5(self, pipeline, project_with_spec):
        state = _state_at(project_with_spec, [1, 2, 3, 4])
        with pytest.raises(InvalidTransition):
            await pipeline.update_qa_status(state, "1", "pass")
        with pytest.raises(InvalidTransition):
            await pipeline.confirm_defects_resolved(state)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestSession:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sign_in_loads_settings_and_key(self, pipeline, mock_claude):
        await pipeline.storage.save_settings("user-2", Settings(claude_api_key="sk-saved"))
        mock_claude.is_configured.return_value = False

        state = await pipeline.sign_in(SessionState.initial(), "user-2")
        assert state.owner == "user-2"
        assert state.settings.claude_api_key == "sk-saved"
        assert pipeline.storage.owner == "user-2"
        mock_claude.set_api_key.assert_called_with("sk-saved")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sign_in_without_settings(self, pipeline):
        state = await pipeline.sign_in(SessionState.initial(), "user-3")
        assert state.settings == Settings()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_signed_out_work_survives_sign_in(self, pipeline):
        pipeline.storage.bind_owner(None)
        state = await pipeline.new_project(SessionState.initial(), "Offline Draft")
        assert state.project.owner == ""

        state = await pipeline.sign_in(state, "user-9")
        assert state.project.owner == "user-9"
        projects = await pipeline.list_projects(state)
        assert [p.name for p in projects] == ["Offline Draft"]
        assert projects[0].owner == "user-9"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sign_out(self, pipeline, opened, mock_claude):
        state = pipeline.sign_out(opened)
        assert state == SessionState.initial()
        assert pipeline.storage.owner is None
        mock_claude.set_api_key.assert_called_with("")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_settings_persists(self, pipeline, mock_claude):
        state = await pipeline.update_settings(
            SessionState.initial("user-1"), theme="light", claude_api_key="sk-new"
        )
        assert state.settings.theme == "light"
        assert (await pipeline.storage.load_settings("user-1")).theme == "light"
        mock_claude.set_api_key.assert_called_with("sk-new")


# ---------------------------------------------------------------------------
# CLI helpers
# ---------------------------------------------------------------------------


class TestParseInputs:
    @pytest.mark.unit
    def test_pairs(self):
        assert _parse_inputs(["concept=A habit app", "problem=x=y"]) == {
            "concept": "A habit app",
            "problem": "x=y",
        }

    @pytest.mark.unit
    @pytest.mark.parametrize("bad", ["novalue", "=value"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(ValueError):
            _parse_inputs([bad])
