"""Flow orchestration for workflow generation.

AnalyzeRequirements → PlanWorkflow → CreateNodes → BuildConnections → Layout →
Validate, then either Finalize ("done") or Simplify ("simplify") and back to
Validate. ValidateNode bounds the number of simplification passes.
"""

import logging

from pocketflow import AsyncFlow

from wfgen.core.settings import GenerationSettings
from wfgen.generation.analysis import WorkflowAnalyzer
from wfgen.generation.connections import ConnectionBuilder
from wfgen.generation.layout import PositionCalculator
from wfgen.generation.node_factory import NodeFactory
from wfgen.generation.nodes import (
    AnalyzeRequirementsNode,
    BuildConnectionsNode,
    CreateNodesNode,
    FinalizeNode,
    LayoutNode,
    PlanWorkflowNode,
    SimplifyNode,
    ValidateNode,
)
from wfgen.planning.analyzer import RequirementAnalyzer
from wfgen.planning.planner import WorkflowPlanner

logger = logging.getLogger(__name__)


def create_generation_flow(
    requirement_analyzer: RequirementAnalyzer,
    planner: WorkflowPlanner,
    factory: NodeFactory,
    calculator: PositionCalculator,
    workflow_analyzer: WorkflowAnalyzer,
    settings: GenerationSettings,
) -> AsyncFlow:
    """Create the generation pipeline.

    Args:
        requirement_analyzer: Produces the RequirementAnalysis
        planner: Produces the plan and simplification suggestions
        factory: Materializes plan nodes
        calculator: Assigns positions
        workflow_analyzer: Metadata and validation
        settings: Retry, threshold and simplification-pass configuration

    Returns:
        A flow to run with ``await flow.run_async(shared)`` where ``shared``
        holds at least ``requirements``; the outcome lands in ``shared["result"]``
    """
    analyze = AnalyzeRequirementsNode(requirement_analyzer, max_retries=settings.ai_retries, wait=settings.retry_wait)
    plan = PlanWorkflowNode(planner, max_retries=settings.ai_retries, wait=settings.retry_wait)
    create_nodes = CreateNodesNode(factory)
    build_connections = BuildConnectionsNode(ConnectionBuilder(factory.registry))
    layout = LayoutNode(calculator)
    validate = ValidateNode(
        workflow_analyzer,
        complexity_threshold=settings.complexity_threshold,
        max_passes=settings.max_simplification_passes,
    )
    simplify = SimplifyNode(planner, workflow_analyzer, calculator, max_complex_nodes=settings.max_complex_nodes)
    finalize = FinalizeNode()

    analyze >> plan >> create_nodes >> build_connections >> layout >> validate
    validate - "simplify" >> simplify
    simplify >> validate
    validate - "done" >> finalize

    logger.debug("Created generation flow with 8 stages")
    return AsyncFlow(start=analyze)
