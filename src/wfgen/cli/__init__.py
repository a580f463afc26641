"""wfgen CLI module."""

from .main import cli

__all__ = ["cli"]
