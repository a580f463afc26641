"""JSON Schema definition and validation for workflow documents.

The document shape is fixed by the external execution engine: nodes carry
``typeVersion`` and an ``[x, y]`` position, and connections are keyed by the
source node's *name*, then by output port class, then by output slot, each slot
holding a list of ``{node, type, index}`` targets.

Example:
    >>> from wfgen.core.workflow_schema import validate_workflow_document
    >>> validate_workflow_document({
    ...     "name": "Example",
    ...     "nodes": [{"id": "1", "name": "Start", "type": "n8n-nodes-base.manualTrigger",
    ...                "typeVersion": 1, "position": [100, 300], "parameters": {}}],
    ...     "connections": {},
    ... })
"""

import json
import logging
from typing import Any, Union

import jsonschema
from jsonschema import Draft7Validator
from jsonschema import ValidationError as JsonSchemaValidationError

from wfgen.core.exceptions import WorkflowDocumentError

logger = logging.getLogger(__name__)

CONNECTION_TARGET_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "node": {"type": "string", "minLength": 1},
        "type": {"type": "string", "minLength": 1},
        "index": {"type": "integer", "minimum": 0},
    },
    "required": ["node", "type", "index"],
}

NODE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "type": {"type": "string", "minLength": 1},
        "typeVersion": {"type": "number"},
        "position": {
            "type": "array",
            "items": {"type": "number"},
            "minItems": 2,
            "maxItems": 2,
        },
        "parameters": {"type": "object"},
        "credentials": {"type": "object"},
        "webhookId": {"type": "string"},
        "retryOnFail": {"type": "boolean"},
        "maxTries": {"type": "integer", "minimum": 1},
        "continueOnFail": {"type": "boolean"},
        "notes": {"type": "string"},
    },
    "required": ["id", "name", "type", "typeVersion", "position", "parameters"],
}

WORKFLOW_DOCUMENT_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "nodes": {"type": "array", "items": NODE_SCHEMA},
        "connections": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "additionalProperties": {
                    "type": "array",
                    "items": {"type": "array", "items": CONNECTION_TARGET_SCHEMA},
                },
            },
        },
        "active": {"type": "boolean"},
        "settings": {"type": "object"},
        "id": {"type": "string"},
        "meta": {"type": "object"},
        "tags": {"type": "array"},
        "createdAt": {"type": "string"},
        "updatedAt": {"type": "string"},
    },
    "required": ["name", "nodes", "connections"],
}


def _format_path(path: list) -> str:
    """Format a jsonschema path into a readable string like "nodes[0].position"."""
    formatted = ""
    for i, component in enumerate(path):
        if isinstance(component, int):
            formatted += f"[{component}]"
        else:
            if i > 0:
                formatted += "."
            formatted += str(component)
    return formatted or "root"


def _get_suggestion(error: JsonSchemaValidationError) -> str:
    """Get a helpful suggestion based on the validation error."""
    path = list(error.absolute_path)

    if error.validator == "required":
        match = error.message.split("'")
        if len(match) >= 2:
            return f"Add the required field '{match[1]}'"
        return "Add the missing required field"
    if path and path[-1] == "position":
        return "Positions are two numbers: [x, y]"
    if path and path[0] == "connections":
        return (
            "Connections are keyed by source node name, then port class, then output slot, e.g. "
            '{"Start": {"main": [[{"node": "HTTP Request", "type": "main", "index": 0}]]}}'
        )
    if error.validator == "type":
        return f"Change type from '{type(error.instance).__name__}' to '{error.validator_value}'"
    return ""


def validate_workflow_document(data: Union[dict[str, Any], str]) -> None:
    """Validate a workflow document against the document schema.

    Args:
        data: The document (dict or JSON string)

    Raises:
        WorkflowDocumentError: If the document is invalid, with path and suggestion
        ValueError: If JSON parsing fails
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e

    validator = Draft7Validator(WORKFLOW_DOCUMENT_SCHEMA)

    try:
        validator.check_schema(WORKFLOW_DOCUMENT_SCHEMA)
    except jsonschema.SchemaError as e:
        raise RuntimeError(f"Schema definition error: {e}") from e

    errors = list(validator.iter_errors(data))
    if not errors:
        return

    error = errors[0]
    path = _format_path(list(error.absolute_path))
    logger.debug(f"Workflow document failed validation at {path}", extra={"errors": len(errors)})
    raise WorkflowDocumentError(message=error.message, path=path, suggestion=_get_suggestion(error))


def document_errors(data: dict[str, Any]) -> list[WorkflowDocumentError]:
    """Return every schema violation instead of raising on the first one."""
    validator = Draft7Validator(WORKFLOW_DOCUMENT_SCHEMA)
    return [
        WorkflowDocumentError(
            message=error.message,
            path=_format_path(list(error.absolute_path)),
            suggestion=_get_suggestion(error),
        )
        for error in validator.iter_errors(data)
    ]
