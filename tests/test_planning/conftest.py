"""Test fixtures for planning module."""

import pytest

from wfgen.core.models import RequirementAnalysis
from wfgen.planning.analyzer import RequirementAnalyzer
from wfgen.planning.planner import WorkflowPlanner


@pytest.fixture
def offline_analyzer(offline_client, registry):
    return RequirementAnalyzer(offline_client, registry)


@pytest.fixture
def offline_planner(offline_client, registry):
    return WorkflowPlanner(offline_client, registry)


@pytest.fixture
def scheduled_api_analysis():
    """Analysis of a request to poll an API on a schedule and email the result."""
    return RequirementAnalysis(
        workflow_type="linear",
        estimated_complexity=4,
        key_components=["schedule", "HTTP", "email"],
        suggested_node_types=[],
        summary="Fetch https://api.example.com/orders every hour and email the team",
    )
