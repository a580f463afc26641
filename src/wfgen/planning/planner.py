"""Workflow planning: RequirementAnalysis -> WorkflowPlan.

Same discipline as the analyzer: ask the model, shape-check the answer, and
fall back to a deterministic plan when anything goes wrong. The planner also
owns the simplification-suggestion prompt used by the orchestrator's
re-optimization pass.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from wfgen.core.exceptions import GenerationUnavailableError
from wfgen.core.models import (
    FlowConnection,
    GraphNode,
    NodeSpecification,
    RequirementAnalysis,
    SimplificationSuggestion,
    ValidationResult,
    WorkflowConstraints,
    WorkflowGraph,
    WorkflowPlan,
)
from wfgen.planning.analyzer import (
    COMPONENT_ORDER,
    DATA_PROCESSING,
    DATABASE,
    EMAIL,
    FILE_PROCESSING,
    HTTP,
    SCHEDULE,
    URL_PATTERN,
    WEBHOOK,
)
from wfgen.planning.error_handler import classify_error
from wfgen.planning.llm_helpers import ResponseParseError, format_items, format_json, parse_structured_response
from wfgen.planning.prompts.loader import render_prompt
from wfgen.registry.templates import (
    EMAIL_SEND,
    HTTP_REQUEST,
    MANUAL_TRIGGER,
    POSTGRES,
    SCHEDULE_TRIGGER,
    SET_NODE,
    WEBHOOK_TRIGGER,
    WRITE_FILE,
    TemplateRegistry,
)

logger = logging.getLogger(__name__)

PLANNING_STAGE = "planning"
SIMPLIFICATION_STAGE = "simplification"

DEFAULT_API_URL = "https://api.example.com"

# Loose matching of free-text components (model analyses phrase them freely)
_COMPONENT_HINTS = (
    (WEBHOOK, ("webhook",)),
    (SCHEDULE, ("schedul", "cron", "interval", "timer")),
    (HTTP, ("http", "api", "request", "fetch")),
    (DATA_PROCESSING, ("data-processing", "data processing", "transform", "process")),
    (FILE_PROCESSING, ("file",)),
    (EMAIL, ("email", "mail")),
    (DATABASE, ("database", "postgres", "sql")),
)

_TYPE_COMPONENTS = {
    WEBHOOK_TRIGGER: WEBHOOK,
    SCHEDULE_TRIGGER: SCHEDULE,
    HTTP_REQUEST: HTTP,
    SET_NODE: DATA_PROCESSING,
    WRITE_FILE: FILE_PROCESSING,
    EMAIL_SEND: EMAIL,
    POSTGRES: DATABASE,
}


class SimplificationResponse(BaseModel):
    suggestions: list[SimplificationSuggestion] = Field(default_factory=list)


class WorkflowPlanner:
    """Produces workflow plans and simplification suggestions."""

    def __init__(self, client, registry: Optional[TemplateRegistry] = None, options=None):
        self.client = client
        self.registry = registry or TemplateRegistry()
        self.options = options

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def plan(
        self,
        analysis: RequirementAnalysis,
        constraints: Optional[WorkflowConstraints] = None,
    ) -> WorkflowPlan:
        """Plan a workflow, falling back to a deterministic plan on any AI failure."""
        try:
            return await self.request_plan(analysis, constraints)
        except (GenerationUnavailableError, ValueError) as e:
            reason = classify_error(e, PLANNING_STAGE)
            logger.info(
                f"Workflow planning fell back to heuristics: {reason.message}",
                extra={"phase": PLANNING_STAGE, "category": reason.category.value},
            )
            return self.fallback_plan(analysis, constraints)

    def build_prompt(self, analysis: RequirementAnalysis, constraints: Optional[WorkflowConstraints] = None) -> str:
        constraint_data = constraints.model_dump(by_alias=True, exclude_none=True) if constraints else {}
        return render_prompt(
            "planning",
            summary=analysis.summary or "Not provided",
            workflow_type=analysis.workflow_type,
            complexity=analysis.estimated_complexity,
            key_components=format_items(analysis.key_components),
            suggested_node_types=format_items(analysis.suggested_node_types),
            data_flow=analysis.data_flow or "Not described",
            constraints=format_json(constraint_data),
            node_catalog=self.registry.describe(),
        )

    async def request_plan(
        self,
        analysis: RequirementAnalysis,
        constraints: Optional[WorkflowConstraints] = None,
    ) -> WorkflowPlan:
        """Ask the model for a plan.

        Node types are deliberately not checked against the registry here: a
        plan naming an unknown type is a plan-integrity failure raised later
        by the node factory.

        Raises:
            GenerationUnavailableError: If the service cannot answer
            ResponseParseError: If the answer has no usable plan object
        """
        prompt = self.build_prompt(analysis, constraints)
        logger.debug("Requesting workflow plan", extra={"phase": PLANNING_STAGE})
        text = await self.client.send(prompt, self.options)
        try:
            plan = parse_structured_response(text, WorkflowPlan, required_keys=("nodes",))
            self.check_plan(plan, constraints)
        except ValueError:
            self.client.invalidate(prompt, self.options)
            raise
        return plan

    @staticmethod
    def check_plan(plan: WorkflowPlan, constraints: Optional[WorkflowConstraints] = None) -> None:
        """Reject plans that break caller constraints.

        Raises:
            ResponseParseError: If the plan uses a forbidden node type
        """
        if constraints is None:
            return
        forbidden = set(constraints.forbidden_node_types)
        used = sorted({spec.type for spec in plan.nodes} & forbidden)
        if used:
            raise ResponseParseError(f"plan uses forbidden node types: {used}")

    def fallback_plan(
        self,
        analysis: RequirementAnalysis,
        constraints: Optional[WorkflowConstraints] = None,
    ) -> WorkflowPlan:
        """Deterministic plan: one trigger, then one node per known component, in sequence.

        Total for any analysis: the result always holds at least one node.
        """
        forbidden = set(constraints.forbidden_node_types) if constraints else set()
        components = components_of(analysis)

        specs = [self._trigger_spec(components, forbidden)]

        steps = (
            (HTTP, lambda: self._http_spec(analysis)),
            (DATA_PROCESSING, lambda: NodeSpecification(id="process-data", name="Process Data", type=SET_NODE)),
            (
                FILE_PROCESSING,
                lambda: NodeSpecification(
                    id="write-file", name="Write File", type=WRITE_FILE, parameters={"fileName": "output.json"}
                ),
            ),
            (EMAIL, self._email_spec),
            (DATABASE, self._database_spec),
        )
        for component, build in steps:
            if component not in components:
                continue
            spec = build()
            if spec.type in forbidden or spec.type not in self.registry:
                continue
            specs.append(spec)

        if constraints is not None:
            present = {spec.type for spec in specs}
            for i, node_type in enumerate(constraints.required_node_types, start=1):
                if node_type in present or node_type in forbidden or node_type not in self.registry:
                    continue
                specs.append(NodeSpecification(id=f"required-{i}", type=node_type))
                present.add(node_type)

            if constraints.max_nodes is not None:
                specs = specs[: max(1, constraints.max_nodes)]

        flow = [
            FlowConnection(from_node=source.id, to_node=target.id)  # type: ignore[arg-type]
            for source, target in zip(specs, specs[1:])
        ]

        return WorkflowPlan(
            nodes=specs,
            flow=flow,
            estimated_complexity=analysis.estimated_complexity,
            rationale="Sequential fallback plan derived from the key components: "
            + format_items(components, empty="none"),
        )

    def _trigger_spec(self, components: list[str], forbidden: set[str]) -> NodeSpecification:
        candidates = []
        if WEBHOOK in components:
            candidates.append((WEBHOOK_TRIGGER, "Webhook"))
        if SCHEDULE in components:
            candidates.append((SCHEDULE_TRIGGER, "Schedule Trigger"))
        candidates.append((MANUAL_TRIGGER, "Manual Trigger"))
        candidates.extend((t, None) for t in self.registry.types() if self.registry.is_trigger(t))

        for node_type, name in candidates:
            if node_type in self.registry and node_type not in forbidden:
                return NodeSpecification(id="trigger", name=name or "", type=node_type)

        # Every trigger is forbidden; a plan still needs an entry point
        return NodeSpecification(id="trigger", name="Manual Trigger", type=MANUAL_TRIGGER)

    @staticmethod
    def _http_spec(analysis: RequirementAnalysis) -> NodeSpecification:
        match = URL_PATTERN.search(analysis.summary or "")
        url = match.group(0).rstrip(".,;:!?") if match else DEFAULT_API_URL
        return NodeSpecification(
            id="http-request",
            name="HTTP Request",
            type=HTTP_REQUEST,
            parameters={"url": url, "method": "GET"},
            description="Call the API",
        )

    @staticmethod
    def _email_spec() -> NodeSpecification:
        return NodeSpecification(
            id="send-email",
            name="Send Email",
            type=EMAIL_SEND,
            parameters={
                "fromEmail": "workflow@example.com",
                "toEmail": "team@example.com",
                "subject": "Workflow notification",
                "message": "={{ JSON.stringify($json) }}",
            },
        )

    @staticmethod
    def _database_spec() -> NodeSpecification:
        return NodeSpecification(
            id="store-data",
            name="Store Data",
            type=POSTGRES,
            parameters={"query": "INSERT INTO workflow_results (payload) VALUES ('{{ JSON.stringify($json) }}');"},
        )

    # ------------------------------------------------------------------
    # Simplification
    # ------------------------------------------------------------------

    async def suggest_simplifications(
        self,
        graph: WorkflowGraph,
        complex_nodes: list[GraphNode],
        validation: Optional[ValidationResult] = None,
        complexity: Optional[int] = None,
        summary: str = "",
    ) -> list[SimplificationSuggestion]:
        """Suggest simplifications for the given nodes; never raises for AI failures."""
        if not complex_nodes:
            return []
        try:
            return await self.request_simplifications(graph, complex_nodes, validation, complexity, summary)
        except (GenerationUnavailableError, ValueError) as e:
            reason = classify_error(e, SIMPLIFICATION_STAGE)
            logger.info(
                f"Simplification suggestions fell back to heuristics: {reason.message}",
                extra={"phase": SIMPLIFICATION_STAGE, "category": reason.category.value},
            )
            return self.fallback_simplifications(complex_nodes)

    def build_simplification_prompt(
        self,
        graph: WorkflowGraph,
        complex_nodes: list[GraphNode],
        validation: Optional[ValidationResult] = None,
        complexity: Optional[int] = None,
        summary: str = "",
    ) -> str:
        node_lines = "\n".join(
            f"- {node.name} [id {node.id}] ({node.type}): {len(node.parameters)} parameters" for node in complex_nodes
        )
        errors = "\n".join(f"- {issue}" for issue in validation.errors) if validation and validation.errors else "None"
        return render_prompt(
            "simplification",
            workflow_name=graph.name,
            node_count=len(graph.nodes),
            complexity=complexity if complexity is not None else "unknown",
            errors=errors,
            complex_nodes=node_lines,
            summary=summary or "Not provided",
        )

    async def request_simplifications(
        self,
        graph: WorkflowGraph,
        complex_nodes: list[GraphNode],
        validation: Optional[ValidationResult] = None,
        complexity: Optional[int] = None,
        summary: str = "",
    ) -> list[SimplificationSuggestion]:
        prompt = self.build_simplification_prompt(graph, complex_nodes, validation, complexity, summary)
        text = await self.client.send(prompt, self.options)
        try:
            response = parse_structured_response(text, SimplificationResponse, required_keys=("suggestions",))
        except ValueError:
            self.client.invalidate(prompt, self.options)
            raise

        known = {node.id for node in graph.nodes} | {node.name for node in graph.nodes}
        suggestions = [s for s in response.suggestions if s.node_id in known]
        dropped = len(response.suggestions) - len(suggestions)
        if dropped:
            logger.debug(f"Dropped {dropped} suggestions for unknown nodes", extra={"phase": SIMPLIFICATION_STAGE})
        return suggestions

    @staticmethod
    def fallback_simplifications(complex_nodes: list[GraphNode]) -> list[SimplificationSuggestion]:
        return [
            SimplificationSuggestion(
                type="simplify-parameters",
                node_id=node.id,
                description=f"Simplify parameters for {node.name}",
            )
            for node in complex_nodes
        ]


def components_of(analysis: RequirementAnalysis) -> list[str]:
    """Known components named by an analysis, matched loosely, in layout order."""
    exact = {canonical.lower(): canonical for canonical in COMPONENT_ORDER}
    found: set[str] = set()
    for component in analysis.key_components:
        text = component.strip().lower()
        if text.replace(" ", "-") in exact:
            found.add(exact[text.replace(" ", "-")])
            continue
        for canonical, hints in _COMPONENT_HINTS:
            if any(hint in text for hint in hints):
                found.add(canonical)
    for node_type in analysis.suggested_node_types:
        if node_type in _TYPE_COMPONENTS:
            found.add(_TYPE_COMPONENTS[node_type])
    return [canonical for canonical in COMPONENT_ORDER if canonical in found]
