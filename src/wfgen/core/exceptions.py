"""Custom exceptions for wfgen."""

from typing import Optional


class WfgenError(Exception):
    """Base exception for all wfgen errors."""

    pass


class SettingsError(WfgenError):
    """Raised when settings cannot be loaded or saved."""

    pass


class GenerationUnavailableError(WfgenError):
    """Raised by the AI request client when the generation service cannot answer.

    Covers network failures, timeouts, non-2xx responses and malformed stream
    frames. The client never retries; callers decide whether to retry or fall back.
    """

    def __init__(
        self,
        reason: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.reason = reason
        self.status_code = status_code
        self.original_error = original_error

        message = f"Generation service unavailable: {reason}"
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        if original_error:
            message = f"{message}\nOriginal error: {original_error!s}"

        super().__init__(message)


class GenerationCancelledError(GenerationUnavailableError):
    """Raised when a request is cancelled through its cancellation token."""

    def __init__(self, reason: str = "request cancelled"):
        super().__init__(reason)


class PlanIntegrityError(WfgenError):
    """Base class for terminal errors caused by an invalid plan.

    No safe fallback graph exists for these, so they propagate out of the
    generation pipeline unchanged.
    """

    pass


class UnknownNodeTypeError(PlanIntegrityError):
    """Raised when a node specification names a type the template registry does not know."""

    def __init__(self, node_type: str, node_name: Optional[str] = None):
        self.node_type = node_type
        self.node_name = node_name

        message = f"Unknown node type '{node_type}'"
        if node_name:
            message = f"{message} for node '{node_name}'"

        super().__init__(message)


class WorkflowDocumentError(WfgenError):
    """Raised when a workflow document does not match the expected document shape.

    Attributes:
        message: The validation error message
        path: Dotted path to the invalid field (e.g., "nodes[0].position")
        suggestion: Optional suggestion for fixing the error
    """

    def __init__(self, message: str, path: str = "", suggestion: str = ""):
        self.message = message
        self.path = path
        self.suggestion = suggestion

        full_message = "Invalid workflow document"
        if path:
            full_message += f" at {path}"
        full_message += f": {message}"
        if suggestion:
            full_message += f"\n{suggestion}"

        super().__init__(full_message)
