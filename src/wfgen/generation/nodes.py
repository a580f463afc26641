"""PocketFlow stages of the generation pipeline.

Each stage reads its inputs from the per-request ``shared`` store and writes
its outputs back. Stage configuration (collaborators, thresholds) lives on the
node instance; nothing request-specific is stored on a node.

AI-backed stages retry through PocketFlow (``max_retries``/``wait``) and fall
back to their deterministic path in ``exec_fallback_async``; every fallback
is recorded in ``shared["fallbacks"]``.
"""

import logging
import time
from typing import Any, Optional

from pocketflow import AsyncNode

from wfgen.core.models import GenerationResult, WorkflowGraph
from wfgen.generation.analysis import WorkflowAnalyzer
from wfgen.generation.connections import ConnectionBuilder
from wfgen.generation.layout import PositionCalculator
from wfgen.generation.node_factory import NodeFactory
from wfgen.generation.simplify import apply_simplifications
from wfgen.planning.analyzer import ANALYSIS_STAGE, RequirementAnalyzer
from wfgen.planning.error_handler import classify_error
from wfgen.planning.planner import PLANNING_STAGE, WorkflowPlanner

logger = logging.getLogger(__name__)


class GenerationStage(AsyncNode):
    """Base stage: records its wall time in ``shared["timings"]``."""

    name = "stage"

    async def _run_async(self, shared: dict[str, Any]) -> Any:
        start = time.perf_counter()
        try:
            return await super()._run_async(shared)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            timings = shared.get("timings")
            if timings is not None:
                timings.record_stage(self.name, duration_ms)
            logger.debug(f"Stage {self.name} took {duration_ms:.1f}ms", extra={"stage": self.name})

    def _record_fallback(self, shared: dict[str, Any], reason: Optional[dict[str, Any]]) -> None:
        if reason is not None:
            shared.setdefault("fallbacks", []).append(reason)


class AnalyzeRequirementsNode(GenerationStage):
    """Requirement analysis with heuristic fallback.

    Interface:
    - Reads: requirements (WorkflowRequirements)
    - Writes: analysis (RequirementAnalysis), fallbacks (appended on fallback)
    """

    name = "analyze-requirements"

    def __init__(self, analyzer: RequirementAnalyzer, max_retries: int = 2, wait: float = 1.0) -> None:
        super().__init__(max_retries=max_retries, wait=wait)
        self.analyzer = analyzer

    async def prep_async(self, shared: dict[str, Any]) -> Any:
        return shared["requirements"]

    async def exec_async(self, prep_res: Any) -> tuple[Any, None]:
        return await self.analyzer.request_analysis(prep_res), None

    async def exec_fallback_async(self, prep_res: Any, exc: Exception) -> tuple[Any, dict[str, Any]]:
        reason = classify_error(exc, ANALYSIS_STAGE)
        logger.warning(
            f"Requirement analysis fell back to heuristics: {reason.message}",
            extra={"stage": self.name, "category": reason.category.value},
        )
        return self.analyzer.fallback_analysis(prep_res), reason.to_dict()

    async def post_async(self, shared: dict[str, Any], prep_res: Any, exec_res: tuple) -> str:
        analysis, reason = exec_res
        shared["analysis"] = analysis
        self._record_fallback(shared, reason)
        return "default"


class PlanWorkflowNode(GenerationStage):
    """Workflow planning with a sequential fallback plan.

    Interface:
    - Reads: analysis, requirements (for constraints)
    - Writes: plan (WorkflowPlan), fallbacks (appended on fallback)
    """

    name = "plan-workflow"

    def __init__(self, planner: WorkflowPlanner, max_retries: int = 2, wait: float = 1.0) -> None:
        super().__init__(max_retries=max_retries, wait=wait)
        self.planner = planner

    async def prep_async(self, shared: dict[str, Any]) -> tuple:
        return shared["analysis"], shared["requirements"].constraints

    async def exec_async(self, prep_res: tuple) -> tuple[Any, None]:
        analysis, constraints = prep_res
        return await self.planner.request_plan(analysis, constraints), None

    async def exec_fallback_async(self, prep_res: tuple, exc: Exception) -> tuple[Any, dict[str, Any]]:
        analysis, constraints = prep_res
        reason = classify_error(exc, PLANNING_STAGE)
        logger.warning(
            f"Workflow planning fell back to the sequential plan: {reason.message}",
            extra={"stage": self.name, "category": reason.category.value},
        )
        return self.planner.fallback_plan(analysis, constraints), reason.to_dict()

    async def post_async(self, shared: dict[str, Any], prep_res: tuple, exec_res: tuple) -> str:
        plan, reason = exec_res
        shared["plan"] = plan
        self._record_fallback(shared, reason)
        return "default"


class CreateNodesNode(GenerationStage):
    """Materialize plan nodes. UnknownNodeTypeError propagates and ends the run.

    Interface:
    - Reads: plan, analysis
    - Writes: nodes (list[GraphNode])
    """

    name = "create-nodes"

    def __init__(self, factory: NodeFactory) -> None:
        super().__init__()
        self.factory = factory

    async def prep_async(self, shared: dict[str, Any]) -> tuple:
        return shared["plan"], shared["analysis"]

    async def exec_async(self, prep_res: tuple) -> list:
        plan, analysis = prep_res
        specs = self.factory.ensure_trigger(list(plan.nodes), analysis)
        return self.factory.create_nodes(specs)

    async def post_async(self, shared: dict[str, Any], prep_res: tuple, exec_res: list) -> str:
        shared["nodes"] = exec_res
        return "default"


class BuildConnectionsNode(GenerationStage):
    """Resolve the plan's flow into a connection map.

    Interface:
    - Reads: nodes, plan
    - Writes: connections (ConnectionMap), build_warnings (skipped connections)
    """

    name = "build-connections"

    def __init__(self, builder: ConnectionBuilder) -> None:
        super().__init__()
        self.builder = builder

    async def prep_async(self, shared: dict[str, Any]) -> tuple:
        return shared["nodes"], shared["plan"].flow

    async def exec_async(self, prep_res: tuple) -> tuple:
        nodes, flow = prep_res
        # Fresh builder per run: ``skipped`` is per-build state
        builder = ConnectionBuilder(self.builder.registry)
        return builder.build(nodes, flow), list(builder.skipped)

    async def post_async(self, shared: dict[str, Any], prep_res: tuple, exec_res: tuple) -> str:
        connections, skipped = exec_res
        shared["connections"] = connections
        shared.setdefault("build_warnings", []).extend(skipped)
        return "default"


class LayoutNode(GenerationStage):
    """Assign positions and assemble the WorkflowGraph.

    Interface:
    - Reads: nodes, connections, requirements (name, tags)
    - Writes: graph (WorkflowGraph)
    """

    name = "layout"

    def __init__(self, calculator: PositionCalculator) -> None:
        super().__init__()
        self.calculator = calculator

    async def prep_async(self, shared: dict[str, Any]) -> tuple:
        return shared["nodes"], shared["connections"], shared["requirements"]

    async def exec_async(self, prep_res: tuple) -> WorkflowGraph:
        nodes, connections, requirements = prep_res
        graph = WorkflowGraph(nodes=self.calculator.layout(nodes, connections), connections=connections)
        if requirements.name:
            graph.name = requirements.name
        graph.tags = list(requirements.tags)
        return graph

    async def post_async(self, shared: dict[str, Any], prep_res: tuple, exec_res: WorkflowGraph) -> str:
        shared["graph"] = exec_res
        return "default"


class ValidateNode(GenerationStage):
    """Compute metadata and validation; decide whether to simplify.

    Interface:
    - Reads: graph, requirements, build_warnings, simplification_passes
    - Writes: metadata, validation
    - Actions: simplify (invalid or too complex, passes left), done
    """

    name = "validate"

    def __init__(self, analyzer: WorkflowAnalyzer, complexity_threshold: int = 7, max_passes: int = 1) -> None:
        super().__init__()
        self.analyzer = analyzer
        self.complexity_threshold = complexity_threshold
        self.max_passes = max_passes

    async def prep_async(self, shared: dict[str, Any]) -> tuple:
        return shared["graph"], shared["requirements"].constraints, list(shared.get("build_warnings", []))

    async def exec_async(self, prep_res: tuple) -> tuple:
        graph, constraints, warnings = prep_res
        return self.analyzer.evaluate(graph, constraints, warnings)

    async def post_async(self, shared: dict[str, Any], prep_res: tuple, exec_res: tuple) -> str:
        metadata, validation = exec_res
        shared["metadata"] = metadata
        shared["validation"] = validation

        constraints = prep_res[1]
        threshold = constraints.max_complexity or self.complexity_threshold
        too_complex = metadata.complexity > threshold
        passes = shared.get("simplification_passes", 0)

        if (not validation.is_valid or too_complex) and passes < self.max_passes:
            logger.info(
                f"Simplifying workflow (valid={validation.is_valid}, complexity={metadata.complexity}/{threshold})",
                extra={"stage": self.name},
            )
            return "simplify"
        return "done"


class SimplifyNode(GenerationStage):
    """One simplification pass over the most complex nodes.

    Suggestion requests never raise; AI failures yield heuristic suggestions.

    Interface:
    - Reads: graph, metadata, validation, analysis
    - Writes: graph (replaced), simplification_passes (+1), simplifications (appended)
    """

    name = "simplify"

    def __init__(
        self,
        planner: WorkflowPlanner,
        analyzer: WorkflowAnalyzer,
        calculator: PositionCalculator,
        max_complex_nodes: int = 3,
    ) -> None:
        super().__init__()
        self.planner = planner
        self.analyzer = analyzer
        self.calculator = calculator
        self.max_complex_nodes = max_complex_nodes

    async def prep_async(self, shared: dict[str, Any]) -> dict[str, Any]:
        return {
            "graph": shared["graph"],
            "metadata": shared["metadata"],
            "validation": shared["validation"],
            "summary": shared["analysis"].summary,
        }

    async def exec_async(self, prep_res: dict[str, Any]) -> tuple:
        graph = prep_res["graph"]
        complex_nodes = self.analyzer.complex_nodes(graph, self.max_complex_nodes)
        suggestions = await self.planner.suggest_simplifications(
            graph,
            complex_nodes,
            validation=prep_res["validation"],
            complexity=prep_res["metadata"].complexity,
            summary=prep_res["summary"],
        )
        simplified, applied = apply_simplifications(graph, suggestions, self.analyzer.registry)
        simplified.nodes = self.calculator.layout(simplified.nodes, simplified.connections)
        return simplified, applied

    async def post_async(self, shared: dict[str, Any], prep_res: dict[str, Any], exec_res: tuple) -> str:
        graph, applied = exec_res
        shared["graph"] = graph
        shared["simplification_passes"] = shared.get("simplification_passes", 0) + 1
        shared.setdefault("simplifications", []).extend(applied)
        logger.debug(f"Applied {len(applied)} simplifications", extra={"stage": self.name})
        return "default"


class FinalizeNode(GenerationStage):
    """Package the request's outputs.

    Interface:
    - Reads: graph, metadata, validation, analysis, plan, fallbacks, timings
    - Writes: result (GenerationResult)
    """

    name = "finalize"

    async def prep_async(self, shared: dict[str, Any]) -> dict[str, Any]:
        return shared

    async def exec_async(self, prep_res: dict[str, Any]) -> GenerationResult:
        timings = prep_res.get("timings")
        return GenerationResult(
            workflow=prep_res["graph"],
            metadata=prep_res["metadata"],
            validation=prep_res["validation"],
            analysis=prep_res["analysis"],
            plan=prep_res["plan"],
            simplification_passes=prep_res.get("simplification_passes", 0),
            fallbacks=list(prep_res.get("fallbacks", [])),
            timings=timings.get_summary() if timings is not None else {},
        )

    async def post_async(self, shared: dict[str, Any], prep_res: dict[str, Any], exec_res: GenerationResult) -> None:
        shared["result"] = exec_res
