"""GenCoach prompt pipeline.

Builds stage-specific prompts from accumulated project data and parses the
replies back into report text, code fragments and structured stage records.

Usage::

    from gencoach.prompts import PromptBuilder, parse_response

    pair = PromptBuilder().build(2, project, {"stack": "Vue"})
    parsed = parse_response(reply_text)
    print(parsed.report, parsed.code_fragments)
"""

from gencoach.prompts.builder import PromptBuilder, PromptPair, render
from gencoach.prompts.parser import (
    CODE_BLOCK_PLACEHOLDER,
    NO_CODE_PLACEHOLDER,
    CodeGenerationResult,
    DocumentationResult,
    ParsedResponse,
    SpecificationResult,
    fallback_checklist,
    parse_code_generation,
    parse_documentation,
    parse_json_payload,
    parse_response,
    parse_specification,
    strip_outer_fence,
)
from gencoach.prompts.templates import STAGE_PROMPTS, StageTemplate

__all__ = [
    "PromptBuilder",
    "PromptPair",
    "render",
    "ParsedResponse",
    "SpecificationResult",
    "CodeGenerationResult",
    "DocumentationResult",
    "parse_response",
    "strip_outer_fence",
    "parse_json_payload",
    "parse_specification",
    "parse_code_generation",
    "parse_documentation",
    "fallback_checklist",
    "CODE_BLOCK_PLACEHOLDER",
    "NO_CODE_PLACEHOLDER",
    "STAGE_PROMPTS",
    "StageTemplate",
]
