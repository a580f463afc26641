"""Requirement analysis and workflow planning.

Both stages ask the generation service first and fall back to deterministic
heuristics when it cannot give a usable answer.
"""

from wfgen.planning.analyzer import RequirementAnalyzer
from wfgen.planning.planner import WorkflowPlanner

__all__ = ["RequirementAnalyzer", "WorkflowPlanner"]
