"""Materialize plan node specifications into concrete graph nodes.

Every node starts from its template's defaults; the plan's parameters are
deep-merged on top. Unknown types are a plan integrity failure, never
silently dropped.
"""

import copy
import logging
import uuid
from typing import Any, Callable, Iterable, Optional

from wfgen.core.models import GraphNode, NodeSpecification, RequirementAnalysis
from wfgen.registry.templates import MANUAL_TRIGGER, SCHEDULE_TRIGGER, WEBHOOK_TRIGGER, TemplateRegistry

logger = logging.getLogger(__name__)


def deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge ``overrides`` into a copy of ``base``.

    Nested dicts merge key by key; any other value (lists included) replaces
    the base value. Neither input is modified.

    >>> deep_merge({"a": {"x": 1, "y": 2}, "b": [1]}, {"a": {"y": 3}, "b": [2]})
    {'a': {'x': 1, 'y': 3}, 'b': [2]}
    """
    result = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def unique_name(name: str, taken: set[str]) -> str:
    """``name``, or ``name 2``, ``name 3``... whichever is free first."""
    if name not in taken:
        return name
    suffix = 2
    while f"{name} {suffix}" in taken:
        suffix += 1
    return f"{name} {suffix}"


def _new_id() -> str:
    return str(uuid.uuid4())


class NodeFactory:
    """Builds GraphNodes from NodeSpecifications using the template registry."""

    def __init__(self, registry: Optional[TemplateRegistry] = None, id_factory: Callable[[], str] = _new_id):
        self.registry = registry or TemplateRegistry()
        self.id_factory = id_factory

    def create_node(self, spec: NodeSpecification) -> GraphNode:
        """Create one node.

        Raises:
            UnknownNodeTypeError: If ``spec.type`` has no template
        """
        template = self.registry.require(spec.type, spec.name)

        node = GraphNode(
            id=spec.id or self.id_factory(),
            name=spec.name,
            type=spec.type,
            type_version=template.type_version,
            position=list(spec.position) if spec.position and len(spec.position) == 2 else [0, 0],
            parameters=deep_merge(template.default_parameters, spec.parameters),
            notes=spec.description or None,
        )
        if template.requires_credentials:
            node.credentials = copy.deepcopy(template.default_credentials or {})
        if template.webhook:
            node.webhook_id = self.id_factory()
        return node

    def create_nodes(self, specs: Iterable[NodeSpecification]) -> list[GraphNode]:
        """Create nodes for a whole plan, keeping names and ids unique.

        A repeated name gets a numeric suffix; a repeated id is replaced by a
        fresh one. Plan connections that use the repeated name or id resolve to
        the first node that carried it.

        Raises:
            UnknownNodeTypeError: If any spec has an unregistered type
        """
        specs = list(specs)
        # Fail before building anything
        for spec in specs:
            self.registry.require(spec.type, spec.name)

        nodes: list[GraphNode] = []
        names: set[str] = set()
        ids: set[str] = set()
        for spec in specs:
            node = self.create_node(spec)
            if node.name in names:
                renamed = unique_name(node.name, names)
                logger.debug(f"Renamed duplicate node '{node.name}' to '{renamed}'")
                node.name = renamed
            if node.id in ids:
                node.id = self.id_factory()
            names.add(node.name)
            ids.add(node.id)
            nodes.append(node)
        return nodes

    def ensure_trigger(
        self,
        specs: list[NodeSpecification],
        analysis: Optional[RequirementAnalysis] = None,
    ) -> list[NodeSpecification]:
        """Return ``specs`` with a trigger prepended when none of them is one.

        The trigger type follows the analysis: webhook for event-driven
        requests, schedule when a schedule component was found, manual
        otherwise.
        """
        if any(self.registry.is_trigger(spec.type) for spec in specs):
            return specs

        node_type, name = MANUAL_TRIGGER, "Manual Trigger"
        if analysis is not None:
            components = {c.strip().lower() for c in analysis.key_components}
            suggested = set(analysis.suggested_node_types)
            if analysis.workflow_type == "event-driven" or "webhook" in components or WEBHOOK_TRIGGER in suggested:
                node_type, name = WEBHOOK_TRIGGER, "Webhook"
            elif "schedule" in components or SCHEDULE_TRIGGER in suggested:
                node_type, name = SCHEDULE_TRIGGER, "Schedule Trigger"
        if node_type not in self.registry:
            node_type, name = MANUAL_TRIGGER, "Manual Trigger"

        logger.info(f"Plan has no trigger; adding '{name}'", extra={"phase": "create_nodes"})
        return [NodeSpecification(name=name, type=node_type), *specs]
