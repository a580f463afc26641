"""Node template registry.

Maps a node type id to the defaults a new node of that type starts from:
parameters, type version, and credential requirements. The registry is built
once (built-in catalog plus an optional JSON file of extra templates) and is
read-only afterwards.
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wfgen.core.exceptions import UnknownNodeTypeError

logger = logging.getLogger(__name__)

TRIGGER_CATEGORY = "trigger"

MANUAL_TRIGGER = "n8n-nodes-base.manualTrigger"
SCHEDULE_TRIGGER = "n8n-nodes-base.scheduleTrigger"
WEBHOOK_TRIGGER = "n8n-nodes-base.webhook"
HTTP_REQUEST = "n8n-nodes-base.httpRequest"
SET_NODE = "n8n-nodes-base.set"
IF_NODE = "n8n-nodes-base.if"
NOOP_NODE = "n8n-nodes-base.noOp"
WRITE_FILE = "n8n-nodes-base.writeBinaryFile"
EMAIL_SEND = "n8n-nodes-base.emailSend"
POSTGRES = "n8n-nodes-base.postgres"


class NodeTemplate(BaseModel):
    """Defaults for one node type."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(min_length=1)
    category: str
    version: float = 1
    description: str = ""
    default_parameters: dict[str, Any] = Field(default_factory=dict)
    requires_credentials: bool = False
    default_credentials: Optional[dict[str, Any]] = None
    required_fields: tuple[str, ...] = ()
    branching: bool = False
    webhook: bool = False
    heavy: bool = False

    @property
    def is_trigger(self) -> bool:
        return self.category == TRIGGER_CATEGORY

    @property
    def type_version(self) -> Union[int, float]:
        """Version as it appears in documents (``1`` rather than ``1.0``)."""
        return int(self.version) if float(self.version).is_integer() else self.version


DEFAULT_TEMPLATES: tuple[NodeTemplate, ...] = (
    # Triggers
    NodeTemplate(
        type=MANUAL_TRIGGER,
        category=TRIGGER_CATEGORY,
        description="Starts the workflow when run by hand",
    ),
    NodeTemplate(
        type="n8n-nodes-base.start",
        category=TRIGGER_CATEGORY,
        description="Legacy start node for manual execution",
    ),
    NodeTemplate(
        type=WEBHOOK_TRIGGER,
        category=TRIGGER_CATEGORY,
        description="Starts the workflow on an incoming HTTP request",
        default_parameters={"path": "webhook", "httpMethod": "POST", "responseMode": "onReceived"},
        required_fields=("path", "httpMethod"),
        webhook=True,
    ),
    NodeTemplate(
        type=SCHEDULE_TRIGGER,
        category=TRIGGER_CATEGORY,
        version=1.2,
        description="Starts the workflow on a fixed interval",
        default_parameters={"rule": {"interval": [{"field": "hours", "hoursInterval": 1}]}},
        required_fields=("rule",),
    ),
    NodeTemplate(
        type="n8n-nodes-base.cron",
        category=TRIGGER_CATEGORY,
        description="Legacy schedule trigger",
        default_parameters={"triggerTimes": {"item": [{"mode": "everyMinute"}]}},
        required_fields=("triggerTimes",),
    ),
    # Communication
    NodeTemplate(
        type=HTTP_REQUEST,
        category="communication",
        version=4.1,
        description="Calls an HTTP API",
        default_parameters={
            "url": "",
            "method": "GET",
            "sendHeaders": False,
            "headerParameters": {"parameters": []},
            "sendQuery": False,
            "queryParameters": {"parameters": []},
            "sendBody": False,
            "bodyParameters": {"parameters": []},
            "options": {},
        },
        required_fields=("url",),
        heavy=True,
    ),
    NodeTemplate(
        type="n8n-nodes-base.respondToWebhook",
        category="communication",
        description="Sends the response for a webhook-triggered run",
        default_parameters={"options": {}},
    ),
    # Logic
    NodeTemplate(
        type="n8n-nodes-base.code",
        category="logic",
        version=2,
        description="Runs custom JavaScript",
        default_parameters={
            "mode": "runOnceForAllItems",
            "jsCode": "// Add your JavaScript code here\nreturn $input.all();",
        },
        required_fields=("jsCode",),
        heavy=True,
    ),
    NodeTemplate(
        type="n8n-nodes-base.function",
        category="logic",
        description="Runs a legacy JavaScript function",
        default_parameters={"functionCode": "// Add your code here\nreturn items;"},
        required_fields=("functionCode",),
        heavy=True,
    ),
    # Data processing
    NodeTemplate(
        type=SET_NODE,
        category="data-processing",
        version=3.3,
        description="Sets, renames or reshapes fields",
        default_parameters={
            "mode": "manual",
            "duplicateItem": False,
            "assignments": {"assignments": []},
            "options": {},
        },
    ),
    NodeTemplate(
        type="n8n-nodes-base.itemLists",
        category="data-processing",
        version=3,
        description="Splits, sorts or aggregates item lists",
        default_parameters={"operation": "splitOutItems", "fieldToSplitOut": "", "options": {}},
    ),
    NodeTemplate(
        type="n8n-nodes-base.htmlExtract",
        category="data-processing",
        description="Extracts content from HTML",
        default_parameters={"operation": "extractHtmlContent", "options": {}},
    ),
    # Control flow
    NodeTemplate(
        type=IF_NODE,
        category="control-flow",
        version=2,
        description="Routes items to a true or a false branch",
        default_parameters={
            "conditions": {
                "options": {"caseSensitive": True, "leftValue": "", "typeValidation": "strict"},
                "conditions": [
                    {
                        "id": "condition-1",
                        "leftValue": "",
                        "rightValue": "",
                        "operator": {"type": "string", "operation": "equals"},
                    }
                ],
                "combinator": "and",
            },
            "options": {},
        },
        required_fields=("conditions",),
        branching=True,
    ),
    NodeTemplate(
        type="n8n-nodes-base.splitInBatches",
        category="control-flow",
        version=3,
        description="Processes items in batches",
        default_parameters={"batchSize": 10, "options": {}},
    ),
    # Utility
    NodeTemplate(
        type="n8n-nodes-base.merge",
        category="utility",
        version=2.1,
        description="Combines two input streams",
        default_parameters={"mode": "append", "options": {}},
    ),
    NodeTemplate(
        type="n8n-nodes-base.wait",
        category="utility",
        description="Pauses before continuing",
        default_parameters={"unit": "seconds", "amount": 1},
    ),
    NodeTemplate(
        type=NOOP_NODE,
        category="utility",
        description="Does nothing; marks a point in the flow",
    ),
    # Storage
    NodeTemplate(
        type="n8n-nodes-base.readBinaryFile",
        category="storage",
        description="Reads a file from disk",
        default_parameters={"filePath": ""},
        required_fields=("filePath",),
    ),
    NodeTemplate(
        type=WRITE_FILE,
        category="storage",
        description="Writes data to a file on disk",
        default_parameters={"fileName": "data.json", "dataPropertyName": "data"},
        required_fields=("fileName",),
    ),
    NodeTemplate(
        type=POSTGRES,
        category="storage",
        version=2.4,
        description="Runs a PostgreSQL query",
        default_parameters={"operation": "executeQuery", "query": "", "options": {}},
        requires_credentials=True,
        default_credentials={"postgres": {"id": "", "name": "PostgreSQL account"}},
        required_fields=("query",),
    ),
    # Notification
    NodeTemplate(
        type=EMAIL_SEND,
        category="notification",
        version=2,
        description="Sends an email over SMTP",
        default_parameters={"fromEmail": "", "toEmail": "", "subject": "", "message": "", "options": {}},
        requires_credentials=True,
        default_credentials={"smtp": {"id": "", "name": "SMTP account"}},
        required_fields=("fromEmail", "toEmail"),
    ),
)


class TemplateRegistry:
    """Read-only catalog of node templates keyed by type id."""

    def __init__(self, templates: Optional[Iterable[NodeTemplate]] = None):
        """Build the registry.

        Args:
            templates: Templates to register; the built-in catalog when None.
                Later entries replace earlier ones with the same type id.
        """
        self._templates: dict[str, NodeTemplate] = {}
        for template in DEFAULT_TEMPLATES if templates is None else templates:
            self._templates[template.type] = template

    @classmethod
    def with_extra_templates(cls, path: Optional[Path]) -> "TemplateRegistry":
        """Built-in catalog extended (or overridden) by a JSON file of templates.

        The file holds either a list of templates or ``{"templates": [...]}``.
        An unreadable or malformed file is logged and ignored.
        """
        templates = list(DEFAULT_TEMPLATES)
        if path is not None:
            templates.extend(load_templates_file(Path(path)))
        return cls(templates)

    def get(self, node_type: str) -> Optional[NodeTemplate]:
        return self._templates.get(node_type)

    def require(self, node_type: str, node_name: Optional[str] = None) -> NodeTemplate:
        """Return the template for ``node_type``.

        Raises:
            UnknownNodeTypeError: If the type is not registered
        """
        template = self._templates.get(node_type)
        if template is None:
            raise UnknownNodeTypeError(node_type, node_name)
        return template

    def is_trigger(self, node_type: str) -> bool:
        template = self._templates.get(node_type)
        return template is not None and template.is_trigger

    def types(self) -> list[str]:
        return list(self._templates)

    def categories(self) -> list[str]:
        return sorted({t.category for t in self._templates.values()})

    def by_category(self, category: str) -> list[NodeTemplate]:
        return [t for t in self._templates.values() if t.category == category]

    def describe(self) -> str:
        """Human-readable catalog grouped by category, used in planning prompts."""
        lines: list[str] = []
        for category in self.categories():
            lines.append(f"{category}:")
            for template in self.by_category(category):
                suffix = " (requires credentials)" if template.requires_credentials else ""
                lines.append(f"- {template.type}: {template.description}{suffix}")
        return "\n".join(lines)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._templates

    def __len__(self) -> int:
        return len(self._templates)


def load_templates_file(path: Path) -> list[NodeTemplate]:
    """Load extra templates from JSON; returns an empty list on any error."""
    if not path.exists():
        logger.debug(f"Template file not found at {path}")
        return []

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read template file {path}: {e}")
        return []

    entries = data.get("templates", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        logger.warning(f"Template file {path} must contain a list of templates")
        return []

    templates: list[NodeTemplate] = []
    for i, entry in enumerate(entries):
        try:
            templates.append(NodeTemplate.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping invalid template #{i} in {path}: {e}")
    return templates
