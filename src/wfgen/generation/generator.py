"""Public entry point: requirements in, validated workflow graph out."""

import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from wfgen.ai.cache import PromptCache
from wfgen.ai.client import AIRequestClient
from wfgen.core.metrics import StageTimings
from wfgen.core.models import (
    GenerationResult,
    ValidationResult,
    WorkflowConstraints,
    WorkflowEnhancement,
    WorkflowGraph,
    WorkflowMetadata,
    WorkflowRequirements,
)
from wfgen.core.settings import WfgenSettings
from wfgen.generation.analysis import WorkflowAnalyzer
from wfgen.generation.flow import create_generation_flow
from wfgen.generation.layout import PositionCalculator
from wfgen.generation.node_factory import NodeFactory
from wfgen.generation.simplify import enhance_workflow
from wfgen.planning.analyzer import RequirementAnalyzer
from wfgen.planning.planner import WorkflowPlanner
from wfgen.registry.templates import TemplateRegistry

logger = logging.getLogger(__name__)


class WorkflowGenerator:
    """Runs the generation pipeline.

    The generator owns the AI client (and its connection pool) unless one is
    passed in. Concurrent ``generate()`` calls share only the client and the
    cache; each call gets its own shared store and flow.

    Example:
        >>> async with WorkflowGenerator() as generator:  # doctest: +SKIP
        ...     result = await generator.generate({"description": "Fetch an API every hour"})
    """

    def __init__(
        self,
        settings: Optional[WfgenSettings] = None,
        client: Optional[Any] = None,
        cache: Optional[PromptCache] = None,
        registry: Optional[TemplateRegistry] = None,
    ):
        self.settings = settings or WfgenSettings()
        templates_path = Path(self.settings.templates_path) if self.settings.templates_path else None
        self.registry = registry or TemplateRegistry.with_extra_templates(templates_path)

        if cache is None and self.settings.cache.enabled:
            cache = PromptCache(
                max_entries=self.settings.cache.max_entries,
                default_ttl=self.settings.cache.ttl_seconds,
            )
        self.cache = cache

        self._owns_client = client is None
        self.client = client or AIRequestClient(
            self.settings.ai,
            cache=self.cache,
            cache_ttl=self.settings.cache.ttl_seconds,
        )

        self.requirement_analyzer = RequirementAnalyzer(self.client, self.registry)
        self.planner = WorkflowPlanner(self.client, self.registry)
        self.node_factory = NodeFactory(self.registry)
        self.position_calculator = PositionCalculator(self.registry)
        self.workflow_analyzer = WorkflowAnalyzer(self.registry)

    async def __aenter__(self) -> "WorkflowGenerator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def generate(self, requirements: Union[WorkflowRequirements, dict[str, Any]]) -> GenerationResult:
        """Generate a workflow.

        AI-layer failures never escape: each AI stage falls back to its
        deterministic path and the fallback is listed in ``result.fallbacks``.
        A graph that is still invalid after simplification is returned with
        its validation errors.

        Raises:
            pydantic.ValidationError: If a requirements dict is malformed
            UnknownNodeTypeError: If the plan names an unregistered node type
        """
        if not isinstance(requirements, WorkflowRequirements):
            requirements = WorkflowRequirements.model_validate(requirements)

        timings = StageTimings()
        shared: dict[str, Any] = {
            "requirements": requirements,
            "timings": timings,
            "fallbacks": [],
            "build_warnings": [],
            "simplification_passes": 0,
        }
        flow = create_generation_flow(
            self.requirement_analyzer,
            self.planner,
            self.node_factory,
            self.position_calculator,
            self.workflow_analyzer,
            self.settings.generation,
        )

        logger.info(
            f"Generating workflow for: {requirements.description[:80]}",
            extra={"phase": "generate", "requirement_type": requirements.type},
        )
        await flow.run_async(shared)
        timings.finish()

        result: GenerationResult = shared["result"]
        logger.info(
            f"Generated '{result.workflow.name}' with {result.metadata.node_count} nodes "
            f"(valid={result.validation.is_valid}, fallbacks={len(result.fallbacks)})",
            extra={"phase": "generate"},
        )
        return result

    def analyze(
        self,
        graph: WorkflowGraph,
        constraints: Optional[WorkflowConstraints] = None,
    ) -> tuple[WorkflowMetadata, ValidationResult]:
        """Metadata and validation for an existing graph."""
        return self.workflow_analyzer.evaluate(graph, constraints)

    def enhance(
        self,
        graph: Union[WorkflowGraph, dict[str, Any]],
        enhancements: Iterable[Union[WorkflowEnhancement, dict[str, Any]]],
    ) -> tuple[WorkflowGraph, WorkflowMetadata, ValidationResult]:
        """Apply enhancements to a copy of ``graph``, then re-layout and re-validate.

        Raises:
            WorkflowDocumentError: If a document dict does not match the schema
            UnknownNodeTypeError: If an added node has an unregistered type
        """
        if not isinstance(graph, WorkflowGraph):
            graph = WorkflowGraph.from_document(graph)
        parsed = [
            e if isinstance(e, WorkflowEnhancement) else WorkflowEnhancement.model_validate(e) for e in enhancements
        ]

        enhanced, applied = enhance_workflow(graph, parsed, self.node_factory)
        enhanced.nodes = self.position_calculator.layout(enhanced.nodes, enhanced.connections)
        metadata, validation = self.workflow_analyzer.evaluate(enhanced)
        logger.info(f"Applied {len(applied)} of {len(parsed)} enhancements", extra={"phase": "enhance"})
        return enhanced, metadata, validation

    def get_cache_stats(self) -> Optional[dict[str, Any]]:
        return self.cache.stats() if self.cache is not None else None

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def get_metrics(self) -> dict[str, Any]:
        getter = getattr(self.client, "get_metrics", None)
        return getter() if callable(getter) else {}
