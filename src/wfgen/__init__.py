"""wfgen: generate and validate automation workflow graphs from plain-language requests."""

from wfgen.core.exceptions import (
    GenerationCancelledError,
    GenerationUnavailableError,
    PlanIntegrityError,
    UnknownNodeTypeError,
    WfgenError,
    WorkflowDocumentError,
)
from wfgen.core.models import GenerationResult, WorkflowGraph, WorkflowRequirements
from wfgen.generation.generator import WorkflowGenerator

__all__ = [
    "GenerationCancelledError",
    "GenerationResult",
    "GenerationUnavailableError",
    "PlanIntegrityError",
    "UnknownNodeTypeError",
    "WfgenError",
    "WorkflowDocumentError",
    "WorkflowGenerator",
    "WorkflowGraph",
    "WorkflowRequirements",
]
