"""Requirement analysis: free-text request -> RequirementAnalysis.

The model is asked first; when it cannot answer usefully the analysis is
derived from keyword and input/output heuristics instead. ``analyze()`` never
raises for AI-layer failures.
"""

import logging
import re
from typing import Optional

from wfgen.core.exceptions import GenerationUnavailableError
from wfgen.core.models import RequirementAnalysis, WorkflowRequirements
from wfgen.planning.error_handler import classify_error
from wfgen.planning.llm_helpers import format_items, format_json, parse_structured_response
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

# Key components, in the order nodes for them are laid out by fallback planning
WEBHOOK = "webhook"
SCHEDULE = "schedule"
HTTP = "HTTP"
DATA_PROCESSING = "data-processing"
FILE_PROCESSING = "file-processing"
EMAIL = "email"
DATABASE = "database"

COMPONENT_ORDER = (WEBHOOK, SCHEDULE, HTTP, DATA_PROCESSING, FILE_PROCESSING, EMAIL, DATABASE)

COMPONENT_NODE_TYPES = {
    WEBHOOK: WEBHOOK_TRIGGER,
    SCHEDULE: SCHEDULE_TRIGGER,
    HTTP: HTTP_REQUEST,
    DATA_PROCESSING: SET_NODE,
    FILE_PROCESSING: WRITE_FILE,
    EMAIL: EMAIL_SEND,
    DATABASE: POSTGRES,
}

URL_PATTERN = re.compile(r"https?://[^\s'\"<>)]+")

_KEYWORDS = {
    WEBHOOK: re.compile(r"\bwebhooks?\b|\bincoming requests?\b"),
    SCHEDULE: re.compile(r"\bevery\b|\bhourly\b|\bdaily\b|\bweekly\b|\bmonthly\b|\bschedul\w*|\bcron\b|\binterval\b"),
    HTTP: re.compile(r"\bfetch\w*|\bapis?\b|\bhttps?\b|\brequests?\b|\bendpoints?\b|\bdownload\w*"),
    DATA_PROCESSING: re.compile(r"\btransform\w*|\bprocess\w*|\bparse\w*|\bfilter\w*|\bformat\w*|\baggregat\w*"),
    FILE_PROCESSING: re.compile(r"\bfiles?\b|\bcsv\b|\bspreadsheet\b"),
    EMAIL: re.compile(r"\be-?mails?\b|\bmail\b"),
    DATABASE: re.compile(r"\bdatabase\b|\bpostgres\w*|\bsql\b"),
}
_CONDITIONAL = re.compile(r"\bif\b|\bconditions?\b|\bconditional\w*|\botherwise\b|\belse\b")

ANALYSIS_STAGE = "analysis"


class RequirementAnalyzer:
    """Turns WorkflowRequirements into a RequirementAnalysis."""

    def __init__(self, client, registry: Optional[TemplateRegistry] = None, options=None):
        """
        Args:
            client: Anything with the AIRequestClient ``send``/``invalidate`` API
            registry: Template registry used to filter suggested node types
            options: Sampling options forwarded to the client
        """
        self.client = client
        self.registry = registry or TemplateRegistry()
        self.options = options

    async def analyze(self, requirements: WorkflowRequirements) -> RequirementAnalysis:
        """Analyze requirements, falling back to heuristics on any AI failure."""
        try:
            return await self.request_analysis(requirements)
        except (GenerationUnavailableError, ValueError) as e:
            reason = classify_error(e, ANALYSIS_STAGE)
            logger.info(
                f"Requirement analysis fell back to heuristics: {reason.message}",
                extra={"phase": ANALYSIS_STAGE, "category": reason.category.value},
            )
            return self.fallback_analysis(requirements)

    def build_prompt(self, requirements: WorkflowRequirements) -> str:
        return render_prompt(
            "analysis",
            description=requirements.description,
            requirement_type=requirements.type,
            inputs=format_items(f"{i.name} ({i.type}): {i.description}" for i in requirements.inputs),
            outputs=format_items(f"{o.name} ({o.type}): {o.description}" for o in requirements.outputs),
            steps=format_items(requirements.steps),
            constraints=format_json(requirements.constraints.model_dump(by_alias=True, exclude_none=True)),
        )

    async def request_analysis(self, requirements: WorkflowRequirements) -> RequirementAnalysis:
        """Ask the model for an analysis.

        Raises:
            GenerationUnavailableError: If the service cannot answer
            ResponseParseError: If the answer has no usable analysis object
        """
        prompt = self.build_prompt(requirements)
        logger.debug("Requesting requirement analysis", extra={"phase": ANALYSIS_STAGE})
        text = await self.client.send(prompt, self.options)
        try:
            analysis = parse_structured_response(
                text, RequirementAnalysis, required_keys=("workflowType", "estimatedComplexity")
            )
        except ValueError:
            # Don't let a retry read the same unusable answer from the cache
            self.client.invalidate(prompt, self.options)
            raise
        return analysis.model_copy(update={"summary": requirements.description})

    def fallback_analysis(self, requirements: WorkflowRequirements) -> RequirementAnalysis:
        """Deterministic rule-based analysis; always returns a valid result."""
        text = " ".join([requirements.description, *requirements.steps]).lower()
        components = detect_components(requirements, text)

        suggested = [COMPONENT_NODE_TYPES[c] for c in components if COMPONENT_NODE_TYPES[c] in self.registry]
        if not any(self.registry.is_trigger(t) for t in suggested) and MANUAL_TRIGGER in self.registry:
            suggested.insert(0, MANUAL_TRIGGER)

        challenges = []
        recommendations = []
        if HTTP in components:
            challenges.append("External API availability and rate limits")
            recommendations.append("Add error handling around HTTP requests")
        if EMAIL in components or DATABASE in components:
            recommendations.append("Configure credentials before activating the workflow")

        return RequirementAnalysis(
            workflow_type=determine_shape(requirements, text),
            estimated_complexity=estimate_complexity(requirements),
            key_components=components,
            suggested_node_types=suggested,
            data_flow=describe_data_flow(components),
            potential_challenges=challenges,
            recommendations=recommendations,
            summary=requirements.description,
        )


def detect_components(requirements: WorkflowRequirements, text: Optional[str] = None) -> list[str]:
    """Key components implied by declared inputs/outputs and description keywords."""
    if text is None:
        text = " ".join([requirements.description, *requirements.steps]).lower()
    found: set[str] = set()

    input_types = {i.type for i in requirements.inputs}
    output_types = {o.type for o in requirements.outputs}

    if "webhook" in input_types:
        found.add(WEBHOOK)
    if "schedule" in input_types:
        found.add(SCHEDULE)
    if "api" in input_types or URL_PATTERN.search(text):
        found.add(HTTP)
    if requirements.type == "data-processing":
        found.add(DATA_PROCESSING)
    if "file" in output_types:
        found.add(FILE_PROCESSING)
    if "email" in output_types:
        found.add(EMAIL)
    if "database" in output_types:
        found.add(DATABASE)

    for component, pattern in _KEYWORDS.items():
        if pattern.search(text):
            found.add(component)

    return [c for c in COMPONENT_ORDER if c in found]


def determine_shape(requirements: WorkflowRequirements, text: str) -> str:
    if any(i.type == "webhook" for i in requirements.inputs):
        return "event-driven"
    if _CONDITIONAL.search(text):
        return "conditional"
    if requirements.type == "data-processing":
        return "parallel"
    return "linear"


def estimate_complexity(requirements: WorkflowRequirements) -> int:
    """Base 3, raised by many inputs, outputs, steps or a large node budget."""
    complexity = 3
    if len(requirements.inputs) > 2:
        complexity += 1
    if len(requirements.outputs) > 2:
        complexity += 1
    if len(requirements.steps) > 5:
        complexity += 2
    max_nodes = requirements.constraints.max_nodes
    if max_nodes is not None and max_nodes > 10:
        complexity += 2
    return max(1, min(10, complexity))


def describe_data_flow(components: list[str]) -> str:
    if not components:
        return "Data flows from the trigger to the processing steps in order"
    return "Data flows sequentially: trigger -> " + " -> ".join(components)
