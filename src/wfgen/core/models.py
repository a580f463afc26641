"""Pydantic data model shared by the generation pipeline.

Models that mirror model output or the external workflow document use the
camelCase keys of those formats as aliases; Python code uses snake_case.
"""

import math
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# source name -> port class -> output slot -> targets ({"node", "type", "index"})
ConnectionMap = dict[str, dict[str, list[list[dict[str, Any]]]]]

RequirementType = Literal[
    "automation",
    "data-processing",
    "api-integration",
    "notification",
    "monitoring",
    "template",
    "enhancement",
]
InputType = Literal["webhook", "schedule", "manual", "file", "api"]
OutputType = Literal["file", "api", "email", "webhook", "database"]
WorkflowShape = Literal["linear", "parallel", "conditional", "event-driven", "complex"]
SuggestionType = Literal["simplify-parameters", "merge-nodes", "remove-node"]
EnhancementType = Literal["add-error-handling", "add-node", "add-connection"]

DEFAULT_WORKFLOW_NAME = "Generated Workflow"


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision (``2024-01-01T00:00:00.000Z``)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def default_node_name(node_type: str) -> str:
    """Derive a display name from a type id: ``n8n-nodes-base.httpRequest`` -> ``Http Request``."""
    tail = node_type.rsplit(".", 1)[-1] or node_type
    words = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", tail).replace("-", " ").replace("_", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words) or "Node"


def clamp_complexity(value: Any) -> int:
    """Coerce a model-provided complexity estimate into the 1-10 range."""
    if isinstance(value, bool):
        raise ValueError("complexity must be a number")
    if isinstance(value, str):
        value = float(value.strip())
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError("complexity must be a finite number")
    return max(1, min(10, round(value)))


class _AliasedModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================
# Requirements
# ============================================================


class WorkflowInput(BaseModel):
    name: str
    type: InputType
    description: str = ""


class WorkflowOutput(BaseModel):
    name: str
    type: OutputType
    description: str = ""


class WorkflowConstraints(_AliasedModel):
    """Optional limits a caller puts on the generated graph."""

    max_nodes: Optional[int] = Field(default=None, alias="maxNodes", ge=1)
    max_complexity: Optional[int] = Field(default=None, alias="maxComplexity", ge=1, le=10)
    required_node_types: list[str] = Field(default_factory=list, alias="requiredNodeTypes")
    forbidden_node_types: list[str] = Field(default_factory=list, alias="forbiddenNodeTypes")


class WorkflowRequirements(_AliasedModel):
    """A free-text automation request plus structured hints."""

    description: str
    type: RequirementType = "automation"
    name: Optional[str] = None
    inputs: list[WorkflowInput] = Field(default_factory=list)
    outputs: list[WorkflowOutput] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    constraints: WorkflowConstraints = Field(default_factory=WorkflowConstraints)
    tags: list[str] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be empty")
        return v


# ============================================================
# Analysis and planning (model output)
# ============================================================


class RequirementAnalysis(_AliasedModel):
    """Classified view of a request, produced by the requirement analyzer."""

    workflow_type: WorkflowShape = Field(alias="workflowType")
    estimated_complexity: int = Field(alias="estimatedComplexity")
    key_components: list[str] = Field(default_factory=list, alias="keyComponents")
    suggested_node_types: list[str] = Field(default_factory=list, alias="suggestedNodeTypes")
    data_flow: str = Field(default="", alias="dataFlow")
    potential_challenges: list[str] = Field(default_factory=list, alias="potentialChallenges")
    recommendations: list[str] = Field(default_factory=list)
    summary: str = ""

    @field_validator("workflow_type", mode="before")
    @classmethod
    def normalize_shape(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower().replace("_", "-").replace(" ", "-")
        return v

    @field_validator("estimated_complexity", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> int:
        return clamp_complexity(v)


class NodeSpecification(_AliasedModel):
    """One node of a plan, before it is materialized from a template."""

    id: Optional[str] = None
    name: str = ""
    type: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None
    position: Optional[list[Union[int, float]]] = None

    @model_validator(mode="after")
    def fill_name(self) -> "NodeSpecification":
        if not self.name.strip():
            self.name = default_node_name(self.type)
        else:
            self.name = self.name.strip()
        return self


class FlowConnection(_AliasedModel):
    """Abstract edge of a plan; endpoints are node ids or names."""

    from_node: str = Field(alias="from", min_length=1)
    to_node: str = Field(alias="to", min_length=1)
    type: str = "main"
    condition: Optional[str] = None
    index: int = Field(default=0, ge=0)

    @field_validator("condition", mode="before")
    @classmethod
    def normalize_condition(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, str):
            return v.strip().lower() or None
        return v


class WorkflowPlan(_AliasedModel):
    nodes: list[NodeSpecification] = Field(min_length=1)
    flow: list[FlowConnection] = Field(default_factory=list)
    estimated_complexity: int = Field(default=3, alias="estimatedComplexity")
    rationale: str = ""

    @field_validator("estimated_complexity", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> int:
        return clamp_complexity(v)


class SimplificationSuggestion(_AliasedModel):
    type: SuggestionType
    node_id: str = Field(alias="nodeId", min_length=1)
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class WorkflowEnhancement(_AliasedModel):
    """A post-generation edit of a graph.

    ``target`` names the node (id or name) the edit applies to; ``node`` is the
    specification for ``add-node``; ``connection`` the edge for ``add-connection``.
    """

    type: EnhancementType
    target: Optional[str] = None
    node: Optional[NodeSpecification] = None
    connection: Optional[FlowConnection] = None


# ============================================================
# Graph
# ============================================================


class GraphNode(_AliasedModel):
    """A concrete node of a workflow graph, in the external document's shape."""

    id: str
    name: str
    type: str
    type_version: Union[int, float] = Field(alias="typeVersion")
    position: list[Union[int, float]] = Field(default_factory=lambda: [0, 0])
    parameters: dict[str, Any] = Field(default_factory=dict)
    credentials: Optional[dict[str, Any]] = None
    webhook_id: Optional[str] = Field(default=None, alias="webhookId")
    retry_on_fail: Optional[bool] = Field(default=None, alias="retryOnFail")
    max_tries: Optional[int] = Field(default=None, alias="maxTries")
    continue_on_fail: Optional[bool] = Field(default=None, alias="continueOnFail")
    notes: Optional[str] = None

    @field_validator("position")
    @classmethod
    def two_dimensional(cls, v: list[Union[int, float]]) -> list[Union[int, float]]:
        if len(v) != 2:
            raise ValueError("position must be [x, y]")
        return v

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _default_settings() -> dict[str, Any]:
    return {
        "executionOrder": "v1",
        "saveManualExecutions": True,
        "saveDataErrorExecution": "all",
        "saveDataSuccessExecution": "all",
    }


class WorkflowGraph(_AliasedModel):
    """A complete workflow document.

    Field order matches the document layout the execution engine exports.
    """

    name: str = DEFAULT_WORKFLOW_NAME
    nodes: list[GraphNode] = Field(default_factory=list)
    connections: ConnectionMap = Field(default_factory=dict)
    active: bool = False
    settings: dict[str, Any] = Field(default_factory=_default_settings)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    meta: dict[str, Any] = Field(default_factory=lambda: {"templateCredsSetupCompleted": False})
    tags: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_timestamp, alias="createdAt")
    updated_at: str = Field(default_factory=utc_timestamp, alias="updatedAt")

    def node_by_name(self, name: str) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def node_by_id(self, node_id: str) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def touch(self) -> None:
        self.updated_at = utc_timestamp()

    def to_document(self) -> dict[str, Any]:
        """Serialize to the external workflow document shape."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "WorkflowGraph":
        """Parse a workflow document, validating its shape first.

        Raises:
            WorkflowDocumentError: If the document does not match the schema
        """
        from wfgen.core.workflow_schema import validate_workflow_document

        validate_workflow_document(data)
        return cls.model_validate(data)


# ============================================================
# Results
# ============================================================

class ValidationIssue(BaseModel):
    category: str
    message: str
    node: Optional[str] = None

    def __str__(self) -> str:
        prefix = f"[{self.category}]"
        if self.node:
            prefix = f"{prefix} {self.node}:"
        return f"{prefix} {self.message}"


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)


class WorkflowMetadata(BaseModel):
    node_count: int
    connection_count: int
    node_types: list[str]
    has_loops: bool
    max_depth: int
    complexity: int


class GenerationResult(BaseModel):
    """Everything one ``generate()`` call produced.

    ``validation`` may carry errors: a graph that is still invalid after the
    simplification pass is returned rather than discarded.
    """

    workflow: WorkflowGraph
    metadata: WorkflowMetadata
    validation: ValidationResult
    analysis: RequirementAnalysis
    plan: WorkflowPlan
    simplification_passes: int = 0
    fallbacks: list[dict[str, str]] = Field(default_factory=list)
    timings: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow.to_document(),
            "metadata": self.metadata.model_dump(),
            "validation": self.validation.model_dump(exclude_none=True),
            "analysis": self.analysis.model_dump(by_alias=True),
            "plan": self.plan.model_dump(by_alias=True, exclude_none=True),
            "simplification_passes": self.simplification_passes,
            "fallbacks": list(self.fallbacks),
            "timings": dict(self.timings),
        }
