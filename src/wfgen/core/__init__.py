"""Core wfgen modules: data model, settings, errors and document schema."""

from .exceptions import (
    GenerationCancelledError,
    GenerationUnavailableError,
    PlanIntegrityError,
    SettingsError,
    UnknownNodeTypeError,
    WfgenError,
    WorkflowDocumentError,
)
from .models import (
    GenerationResult,
    GraphNode,
    RequirementAnalysis,
    ValidationIssue,
    ValidationResult,
    WorkflowEnhancement,
    WorkflowGraph,
    WorkflowMetadata,
    WorkflowPlan,
    WorkflowRequirements,
)
from .workflow_schema import WORKFLOW_DOCUMENT_SCHEMA, validate_workflow_document

__all__ = [
    "WORKFLOW_DOCUMENT_SCHEMA",
    "GenerationCancelledError",
    "GenerationResult",
    "GenerationUnavailableError",
    "GraphNode",
    "PlanIntegrityError",
    "RequirementAnalysis",
    "SettingsError",
    "UnknownNodeTypeError",
    "ValidationIssue",
    "ValidationResult",
    "WfgenError",
    "WorkflowDocumentError",
    "WorkflowEnhancement",
    "WorkflowGraph",
    "WorkflowMetadata",
    "WorkflowPlan",
    "WorkflowRequirements",
    "validate_workflow_document",
]
