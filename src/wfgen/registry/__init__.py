"""Node template registry."""

from .templates import NodeTemplate, TemplateRegistry

__all__ = ["NodeTemplate", "TemplateRegistry"]
