"""Response parsing for Claude replies.

``parse_response`` splits any reply into a narrative report and the fenced
code blocks it contains. The stage-specific extractors pull structured data
out of the replies to the stage 3, 5 and 6 prompts. Uses regex and JSON only;
nothing here ever raises on malformed model output.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from gencoach.models import (
    Feature,
    GeneratedFile,
    QAChecklistItem,
    TechStack,
    UserStory,
)
from gencoach.prompts.templates import (
    CONTENT_END,
    CONTENT_START,
    FILE_END,
    FILE_START,
    QA_CHECKLIST_END,
    QA_CHECKLIST_START,
    README_END,
    README_START,
    TEST_PLAN_END,
    TEST_PLAN_START,
    WORKFLOW_END,
    WORKFLOW_START,
)

M = TypeVar("M", bound=BaseModel)

CODE_BLOCK_PLACEHOLDER = "[CODE_BLOCK_REMOVED]"
NO_CODE_PLACEHOLDER = "No code snippets generated."
NO_TEST_PLAN = "No test plan generated"
NO_README = "# README\n\nNo README generated."

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# ``` + optional info string (anything but a backtick) + newline ... closing ```
_CODE_BLOCK_PATTERN = re.compile(r"```[^\n`]*\r?\n[\s\S]*?```")
_OUTER_FENCE_PATTERN = re.compile(r"^```[^\n`]*\r?\n([\s\S]*?)\r?\n?```$")
_JSON_BLOCK_PATTERN = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FILE_PATTERN = re.compile(
    re.escape(FILE_START)
    + r"\s*path:\s*(.+?)\s*language:\s*(.+?)\s*"
    + re.escape(CONTENT_START)
    + r"([\s\S]*?)"
    + re.escape(CONTENT_END)
    + r"\s*"
    + re.escape(FILE_END)
)


def _section(raw: str, start: str, end: str) -> Optional[str]:
    match = re.search(re.escape(start) + r"([\s\S]*?)" + re.escape(end), raw)
    return match.group(1).strip() if match else None


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------

class ParsedResponse(BaseModel):
    """A reply split into prose and code."""

    report: str = ""
    code_fragments: list[str] = Field(default_factory=lambda: [NO_CODE_PLACEHOLDER])

    @property
    def has_code(self) -> bool:
        return self.code_fragments != [NO_CODE_PLACEHOLDER]

    @property
    def code(self) -> str:
        """All fragments joined by a blank line."""
        return "\n\n".join(self.code_fragments)


class SpecificationResult(BaseModel):
    """Structured data extracted from a stage 3 reply."""

    features: list[Feature] = Field(default_factory=list)
    user_stories: list[UserStory] = Field(default_factory=list)
    ui_requirements: Optional[str] = None
    stack: Optional[TechStack] = None
    report: str = ""
    structured: bool = Field(default=False, description="Whether a JSON payload was decoded")


class CodeGenerationResult(BaseModel):
    """Files, test plan and QA checklist extracted from a stage 5 reply."""

    files: list[GeneratedFile] = Field(default_factory=list)
    test_plan: str = NO_TEST_PLAN
    qa_checklist: list[QAChecklistItem] = Field(default_factory=list)


class DocumentationResult(BaseModel):
    """README and workflow JSON extracted from a stage 6 reply."""

    readme: str = NO_README
    workflow_json: str = ""


# ---------------------------------------------------------------------------
# Generic parsing
# ---------------------------------------------------------------------------

def parse_response(raw: str) -> ParsedResponse:
    """Split *raw* into a report and its fenced code blocks.

    Blocks are returned in order with their fences retained, and each is
    replaced by ``[CODE_BLOCK_REMOVED]`` in the report. An unterminated
    fence is not a block, so such input comes back as report-only.
    """
    blocks = _CODE_BLOCK_PATTERN.findall(raw)
    report = _CODE_BLOCK_PATTERN.sub(CODE_BLOCK_PLACEHOLDER, raw).strip()
    return ParsedResponse(
        report=report,
        code_fragments=blocks or [NO_CODE_PLACEHOLDER],
    )


def strip_outer_fence(raw: str) -> str:
    """Remove one layer of fencing that wraps the whole response, if any."""
    stripped = raw.strip()
    match = _OUTER_FENCE_PATTERN.match(stripped)
    return match.group(1) if match else stripped


def _first_span(text: str, opener: str, closer: str) -> Optional[str]:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def parse_json_payload(raw: str) -> Any | None:
    """Best-effort decode of the JSON value in *raw*.

    Replies sometimes wrap JSON in a markdown fence or surround it with
    prose; the outer fence is stripped first, then the first ``{...}`` or
    ``[...]`` span is tried. Returns ``None`` when nothing decodes.
    """
    cleaned = strip_outer_fence(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    candidates = [
        span
        for span in (_first_span(cleaned, "{", "}"), _first_span(cleaned, "[", "]"))
        if span is not None
    ]
    # Try whichever bracket opens first.
    candidates.sort(key=cleaned.find)
    for span in candidates:
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            continue
    return None


def _validate_items(items: Any, model: type[M]) -> list[M]:
    """Validate each mapping in *items*, skipping ones that do not fit."""
    if not isinstance(items, list):
        return []
    valid: list[M] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            valid.append(model.model_validate(item))
        except ValidationError:
            continue
    return valid


# ---------------------------------------------------------------------------
# Stage-specific extractors
# ---------------------------------------------------------------------------

def parse_specification(raw: str) -> SpecificationResult:
    """Extract features, user stories, UI requirements and stack (stage 3).

    Falls back to a report-only result when no JSON object can be decoded.
    """
    report = raw.strip()
    data = parse_json_payload(raw)
    if not isinstance(data, dict):
        return SpecificationResult(report=report)

    stories = data.get("userStories", data.get("user_stories"))
    ui = data.get("uiRequirements", data.get("ui_requirements"))
    if isinstance(ui, list):
        ui = "\n".join(f"- {line}" for line in ui)

    stack_raw = data.get("stack")
    stack: Optional[TechStack] = None
    if isinstance(stack_raw, str):
        stack = TechStack(frontend=stack_raw)
    elif isinstance(stack_raw, dict):
        try:
            stack = TechStack.model_validate(stack_raw)
        except ValidationError:
            stack = None

    return SpecificationResult(
        features=_validate_items(data.get("features"), Feature),
        user_stories=_validate_items(stories, UserStory),
        ui_requirements=ui if isinstance(ui, str) else None,
        stack=stack,
        report=report,
        structured=True,
    )


def fallback_checklist(user_stories: Iterable[UserStory] = ()) -> list[QAChecklistItem]:
    """One pending item per user story, or a generic three-item checklist."""
    stories = list(user_stories)
    if not stories:
        return [
            QAChecklistItem(id="1", description="Application loads without errors"),
            QAChecklistItem(id="2", description="All core features are functional"),
            QAChecklistItem(id="3", description="UI is responsive and accessible"),
        ]
    return [
        QAChecklistItem(id=str(index), description=story.title)
        for index, story in enumerate(stories, start=1)
    ]


def parse_code_generation(
    raw: str,
    user_stories: Iterable[UserStory] = (),
) -> CodeGenerationResult:
    """Extract generated files, the test plan and the QA checklist (stage 5)."""
    files = [
        GeneratedFile(
            path=path.strip(),
            language=language.strip(),
            content=content.strip(),
        )
        for path, language, content in _FILE_PATTERN.findall(raw)
    ]

    test_plan = _section(raw, TEST_PLAN_START, TEST_PLAN_END) or NO_TEST_PLAN

    checklist: list[QAChecklistItem] = []
    qa_raw = _section(raw, QA_CHECKLIST_START, QA_CHECKLIST_END)
    if qa_raw is not None:
        checklist = _validate_items(parse_json_payload(qa_raw), QAChecklistItem)
    if not checklist:
        checklist = fallback_checklist(user_stories)

    return CodeGenerationResult(files=files, test_plan=test_plan, qa_checklist=checklist)


def parse_documentation(raw: str) -> DocumentationResult:
    """Extract the README and the n8n workflow JSON (stage 6).

    Without workflow markers, the first ```json block is used instead.
    """
    readme = _section(raw, README_START, README_END) or NO_README
    workflow = _section(raw, WORKFLOW_START, WORKFLOW_END) or ""
    if not workflow:
        match = _JSON_BLOCK_PATTERN.search(raw)
        if match:
            workflow = match.group(1).strip()
    return DocumentationResult(readme=readme, workflow_json=workflow)
