"""n8n workflow templates for the automation stage.

Provides two ready-made workflows (a webhook echo and a push-to-deploy
chain) and parsing of workflow JSON returned by Claude. Workflows are
``N8nWorkflow`` models; ``workflow_to_json`` renders the camelCase shape
the n8n REST API accepts.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from pydantic import ValidationError

from gencoach.models import N8nConnection, N8nNode, N8nWorkflow
from gencoach.prompts.parser import parse_json_payload
from gencoach.utils import sanitize_name

_JSON_BLOCK_PATTERN = re.compile(r"```json\s*([\s\S]*?)\s*```")

DEFAULT_WORKFLOW_SETTINGS: dict[str, Any] = {
    "saveDataErrorExecution": "all",
    "saveDataSuccessExecution": "all",
    "saveManualExecutions": True,
    "timezone": "America/New_York",
}


def _link(target: str) -> dict[str, list[N8nConnection]]:
    return {"main": [N8nConnection(node=target)]}


def generate_basic_workflow(project_name: str) -> N8nWorkflow:
    """A webhook-triggered workflow that answers with a JSON success body."""
    slug = sanitize_name(project_name) or "project"
    return N8nWorkflow(
        name=f"{project_name} - Basic Workflow",
        nodes=[
            N8nNode(
                name="Webhook",
                type="n8n-nodes-base.webhook",
                position=(250, 300),
                parameters={
                    "path": f"{slug}/webhook",
                    "responseMode": "responseNode",
                    "httpMethod": "POST",
                },
            ),
            N8nNode(
                name="Respond to Webhook",
                type="n8n-nodes-base.respondToWebhook",
                position=(650, 300),
                parameters={
                    "respondWith": "json",
                    "responseBody": (
                        '={{ { "success": true, '
                        '"message": "Workflow executed successfully" } }}'
                    ),
                },
            ),
        ],
        connections={"Webhook": _link("Respond to Webhook")},
        settings=dict(DEFAULT_WORKFLOW_SETTINGS),
    )


def generate_deployment_workflow(project_name: str, repo_url: str = "") -> N8nWorkflow:
    """GitHub push -> build -> deploy."""
    return N8nWorkflow(
        name=f"{project_name} - Deployment Workflow",
        nodes=[
            N8nNode(
                name="GitHub Trigger",
                type="n8n-nodes-base.githubTrigger",
                position=(250, 300),
                parameters={"repository": repo_url, "events": ["push"]},
            ),
            N8nNode(
                name="Build Project",
                type="n8n-nodes-base.executeCommand",
                position=(450, 300),
                parameters={"command": "npm run build"},
            ),
            N8nNode(
                name="Deploy",
                type="n8n-nodes-base.httpRequest",
                position=(650, 300),
                parameters={
                    "method": "POST",
                    "url": "https://your-deployment-service.com/deploy",
                },
            ),
        ],
        connections={
            "GitHub Trigger": _link("Build Project"),
            "Build Project": _link("Deploy"),
        },
    )


def parse_workflow(raw: str) -> Optional[N8nWorkflow]:
    """Parse workflow JSON out of a reply; ``None`` if it is not a workflow.

    A ```json block is preferred over the reply as a whole.
    """
    if not raw or not raw.strip():
        return None
    match = _JSON_BLOCK_PATTERN.search(raw)
    data = parse_json_payload(match.group(1) if match else raw)
    if not isinstance(data, dict):
        return None
    try:
        return N8nWorkflow.model_validate(data)
    except ValidationError:
        return None


def workflow_to_json(workflow: N8nWorkflow, indent: int = 2) -> str:
    return json.dumps(
        workflow.model_dump(mode="json", by_alias=True, exclude_none=True),
        indent=indent,
    )
