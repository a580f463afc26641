"""Shared fixtures for CLI tests."""

import json

import pytest
from click.testing import CliRunner


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def write_document(tmp_path):
    """Write a workflow document (or raw text) to a file and return its path."""

    def _write(document, filename: str = "workflow.json") -> str:
        path = tmp_path / filename
        path.write_text(document if isinstance(document, str) else json.dumps(document))
        return str(path)

    return _write
