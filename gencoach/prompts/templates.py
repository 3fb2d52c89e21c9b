"""Per-stage prompt templates.

Each stage has a system prompt and a user prompt with named ``{placeholder}``
slots. Stages that need machine-readable output also carry an output-format
section that is appended to the user prompt; the markers it introduces are
the ones ``gencoach.prompts.parser`` looks for.
"""

import textwrap

from pydantic import BaseModel, ConfigDict


class StageTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    system: str
    user: str
    output_format: str = ""


# ---------------------------------------------------------------------------
# Structured output markers
# ---------------------------------------------------------------------------

FILE_START = "###FILE_START###"
FILE_END = "###FILE_END###"
CONTENT_START = "###CONTENT_START###"
CONTENT_END = "###CONTENT_END###"
TEST_PLAN_START = "###TEST_PLAN_START###"
TEST_PLAN_END = "###TEST_PLAN_END###"
QA_CHECKLIST_START = "###QA_CHECKLIST_START###"
QA_CHECKLIST_END = "###QA_CHECKLIST_END###"
README_START = "###README_START###"
README_END = "###README_END###"
WORKFLOW_START = "###WORKFLOW_START###"
WORKFLOW_END = "###WORKFLOW_END###"


_SPECIFICATION_FORMAT = textwrap.dedent("""\
    OUTPUT FORMAT:
    Respond with a single JSON object and nothing else, shaped like this:
    {
      "features": [
        {"id": "1", "name": "...", "description": "...", "priority": "Must"}
      ],
      "userStories": [
        {"id": "1", "title": "...", "description": "...", "acceptanceCriteria": ["..."]}
      ],
      "uiRequirements": "...",
      "stack": {"frontend": "...", "backend": "...", "database": "...", "other": []}
    }
    Priorities must be one of Must, Should, Could, Won't.""")

_CODE_GENERATION_FORMAT = textwrap.dedent(f"""\
    CRITICAL OUTPUT FORMAT:
    You must structure your response exactly as follows:

    1. Start with file outputs in this exact format:
    {FILE_START}
    path: src/App.tsx
    language: typescript
    {CONTENT_START}
    [file content here]
    {CONTENT_END}
    {FILE_END}

    Repeat the above block for each file. Generate ALL necessary files including:
    - Main application files
    - Component, type and utility modules
    - Styling and configuration files
    - README.md with setup instructions
    - .env.example for environment variables

    2. After all files, provide:
    {TEST_PLAN_START}
    # QA/UAT Test Plan

    ## Overview
    [Brief overview of testing strategy]

    ## Test Scenarios
    [Test ID, description, expected behavior, steps and acceptance criteria
    for every user story]

    ## Manual Testing Checklist
    [Step-by-step manual testing guide]

    ## Known Issues & Edge Cases
    [Known limitations or edge cases to watch for]
    {TEST_PLAN_END}

    3. Finally, provide:
    {QA_CHECKLIST_START}
    [
      {{"id": "1", "description": "User can successfully sign in", "status": "pending"}},
      {{"id": "2", "description": "All navigation links work correctly", "status": "pending"}}
    ]
    {QA_CHECKLIST_END}

    Ensure the generated code is production-ready, documented, typed where
    the language allows it, and fully testable.""")

_DOCUMENTATION_FORMAT = textwrap.dedent(f"""\
    CRITICAL OUTPUT FORMAT:
    You must structure your response exactly as follows:

    1. Start with README content:
    {README_START}
    # {{project_name}}

    {{concept}}

    ## Overview
    ## Features
    ## Tech Stack
    ## Installation

    ```bash
    git clone https://github.com/yourusername/{{project_slug}}.git
    cd {{project_slug}}
    npm install
    cp .env.example .env
    npm run dev
    ```

    ## Project Structure
    ## Environment Variables
    ## Usage
    ## Testing
    ## Deployment
    ## License
    MIT
    {README_END}

    2. After the README, provide the n8n workflow JSON:
    {WORKFLOW_START}
    {{
      "name": "{{project_name}} - Automation Workflow",
      "active": false,
      "nodes": [],
      "connections": {{}},
      "settings": {{}}
    }}
    {WORKFLOW_END}

    Generate professional, production-ready documentation.""")


STAGE_PROMPTS: dict[int, StageTemplate] = {
    1: StageTemplate(
        system=(
            "You are an expert product strategist and market analyst. Your role is to help "
            "users refine their product ideas, identify target users, validate market fit, "
            "and analyze competition. Provide structured, actionable insights."
        ),
        user=textwrap.dedent("""\
            Analyze the following product idea and provide comprehensive feedback:

            Concept: {concept}
            Target User: {target_user}
            Problem: {problem}

            Please provide:
            1. Refined product concept
            2. Market analysis and competitive landscape
            3. Business objectives and success metrics
            4. Validation recommendations"""),
    ),
    2: StageTemplate(
        system=(
            "You are a technical architect specializing in rapid prototyping. Generate "
            "proof-of-concept code and technical feasibility reports. Focus on minimal "
            "viable implementations that demonstrate core functionality."
        ),
        user=textwrap.dedent("""\
            Create a proof of concept for:

            Concept: {concept}
            Key Features: {features}
            Tech Stack: {stack}

            Generate:
            1. Technical feasibility assessment
            2. Basic PoC code snippets
            3. Viability confirmation with recommendations"""),
    ),
    3: StageTemplate(
        system=(
            "You are a product manager and technical specifications writer. Help users "
            "define features using the MoSCoW method, create user stories, and specify "
            "technical requirements in a structured format."
        ),
        user=textwrap.dedent("""\
            Based on the validated concept, create detailed specifications:

            Project: {project_name}
            Concept: {concept}
            Target Features: {target_features}

            Provide:
            1. Prioritized feature list (MoSCoW method) in JSON format
            2. User stories with acceptance criteria
            3. UI/UX requirements
            4. Technical architecture recommendations"""),
        output_format=_SPECIFICATION_FORMAT,
    ),
    4: StageTemplate(
        system=(
            "You are a Claude configuration expert. Guide users through optimal parameter "
            "selection for code generation based on project complexity and requirements."
        ),
        user=textwrap.dedent("""\
            Configure Claude for optimal code generation:

            Project Type: {project_type}
            Complexity: {complexity}
            Language: {language}

            Recommend:
            1. Optimal model selection
            2. Temperature and token settings
            3. Prompt engineering strategies
            4. Quality assurance approaches"""),
    ),
    5: StageTemplate(
        system=(
            "You are a senior software engineer and code reviewer. Generate production-ready "
            "code based on specifications, including comprehensive test plans and QA "
            "checklists. Follow best practices and coding standards."
        ),
        user=textwrap.dedent("""\
            Generate complete, production-ready code for:

            Specifications: {specifications}
            Features: {features}
            Stack: {stack}
            Parameters: {parameters}

            Deliver:
            1. Fully functional code files with proper structure
            2. Comprehensive QA/UAT test plan
            3. Known issues and risk assessment
            4. Implementation notes"""),
        output_format=_CODE_GENERATION_FORMAT,
    ),
    6: StageTemplate(
        system=(
            "You are a workflow automation expert and technical documentation specialist. "
            "Create n8n workflow JSON configurations and comprehensive README documentation "
            "for project deployment and maintenance."
        ),
        user=textwrap.dedent("""\
            Create automation and documentation for:

            Project: {project_name}
            Generated Code: {code_structure}
            Features: {features}

            Generate:
            1. n8n workflow JSON for common automation tasks
            2. Comprehensive README.md with setup instructions
            3. Project summary and license information
            4. Deployment preparation checklist"""),
        output_format=_DOCUMENTATION_FORMAT,
    ),
}
