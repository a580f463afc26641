"""Structural metadata and validation of workflow graphs.

Validation never raises: problems are collected as categorized errors
(``structure``, ``node``, ``connection``, ``parameter``) and warnings
(``performance``, ``compatibility``, ``best-practice``).
"""

import logging
from collections import Counter
from typing import Any, Iterable, Optional

from wfgen.core.models import (
    ConnectionMap,
    GraphNode,
    ValidationIssue,
    ValidationResult,
    WorkflowConstraints,
    WorkflowGraph,
    WorkflowMetadata,
)
from wfgen.core.workflow_schema import document_errors
from wfgen.generation.connections import connection_count, iter_edges, successors_map
from wfgen.registry.templates import HTTP_REQUEST, TemplateRegistry

logger = logging.getLogger(__name__)

LARGE_WORKFLOW_NODES = 20
COMPLEX_NODE_PARAMETERS = 5

# Heavy types outside the registry (e.g. from a hand-edited document)
HEAVY_NODE_TYPES = frozenset({"n8n-nodes-base.code", "n8n-nodes-base.function", HTTP_REQUEST})


def has_cycle(adjacency: dict[str, list[str]], order: Iterable[str]) -> bool:
    """Iterative DFS with an explicit recursion stack.

    Each node is expanded at most once, so this is O(nodes + edges) and
    terminates on fully cyclic graphs.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    for root in order:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(adjacency[root]))]
        while stack:
            name, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                on_stack.discard(name)
                continue
            if child in on_stack:
                return True
            if child not in visited:
                visited.add(child)
                on_stack.add(child)
                stack.append((child, iter(adjacency[child])))
    return False


def max_depth(adjacency: dict[str, list[str]], order: list[str]) -> int:
    """Longest path (in nodes) from any root; from the first node when there is no root.

    Back edges of a cycle contribute nothing. A node is memoized only when no
    back edge below it reached one of its ancestors, since its depth was then
    cut short by the current path and another root may see a longer one.
    """
    if not order:
        return 0
    indegree = Counter(target for targets in adjacency.values() for target in targets)
    roots = [name for name in order if indegree[name] == 0] or order[:1]

    memo: dict[str, int] = {}
    for root in roots:
        if root in memo:
            continue
        partial = {root: 1}
        # stack position of each on-path node; lowest ancestor position reached by a back edge
        position = {root: 0}
        low = {root: 0}
        stack = [(root, iter(adjacency[root]))]
        while stack:
            name, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                depth = partial.pop(name)
                reached = low.pop(name)
                if reached >= position.pop(name):
                    memo[name] = depth
                if stack:
                    parent = stack[-1][0]
                    partial[parent] = max(partial[parent], 1 + depth)
                    low[parent] = min(low[parent], reached)
                continue
            if child in position:
                low[name] = min(low[name], position[child])
                continue
            if child in memo:
                partial[name] = max(partial[name], 1 + memo[child])
                continue
            position[child] = len(stack)
            low[child] = len(stack)
            partial[child] = 1
            stack.append((child, iter(adjacency[child])))

    return max(memo[root] for root in roots)


def complexity_score(
    node_count: int,
    edge_count: int,
    loops: bool,
    depth: int,
    heavy_nodes: int,
) -> int:
    """Heuristic 1-10 score from size, density, cycles, depth and heavy nodes."""
    score = 1
    if node_count <= 5:
        score += 1
    elif node_count <= 10:
        score += 2
    elif node_count <= 20:
        score += 3
    else:
        score += 4

    average = edge_count / node_count if node_count else 0
    if average > 2:
        score += 1
    if average > 3:
        score += 1

    if loops:
        score += 2

    if depth > 5:
        score += 1
    if depth > 10:
        score += 1

    score += min(2, heavy_nodes)
    return max(1, min(10, score))


class WorkflowAnalyzer:
    """Computes metadata and validation results for a WorkflowGraph."""

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self.registry = registry or TemplateRegistry()

    def is_heavy(self, node: GraphNode) -> bool:
        template = self.registry.get(node.type)
        if template is not None:
            return template.heavy
        return node.type in HEAVY_NODE_TYPES

    def metadata(self, graph: WorkflowGraph) -> WorkflowMetadata:
        names = [node.name for node in graph.nodes]
        adjacency = successors_map(names, graph.connections)
        order = list(adjacency)
        loops = has_cycle(adjacency, order)
        depth = max_depth(adjacency, order)
        edges = connection_count(graph.connections)
        heavy = sum(1 for node in graph.nodes if self.is_heavy(node))

        return WorkflowMetadata(
            node_count=len(graph.nodes),
            connection_count=edges,
            node_types=sorted({node.type for node in graph.nodes}),
            has_loops=loops,
            max_depth=depth,
            complexity=complexity_score(len(graph.nodes), edges, loops, depth, heavy),
        )

    def validate(
        self,
        graph: WorkflowGraph,
        constraints: Optional[WorkflowConstraints] = None,
        extra_warnings: Iterable[str] = (),
        metadata: Optional[WorkflowMetadata] = None,
    ) -> ValidationResult:
        """Run every validation pass; never raises.

        Args:
            graph: Graph to check
            constraints: Caller constraints to check the graph against
            extra_warnings: Messages from earlier stages (e.g. skipped
                connections), reported as compatibility warnings
            metadata: Precomputed metadata, to avoid a second traversal
        """
        if metadata is None:
            metadata = self.metadata(graph)

        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        errors.extend(self._validate_structure(graph))
        if not errors:
            errors.extend(self._validate_document(graph))

        node_errors, node_warnings = self._validate_nodes(graph)
        errors.extend(node_errors)
        warnings.extend(node_warnings)

        errors.extend(self._validate_connections(graph.nodes, graph.connections))
        errors.extend(self._validate_reachability(graph))
        errors.extend(self._validate_parameters(graph))

        warnings.extend(self._performance_warnings(metadata))
        warnings.extend(self._best_practice_warnings(graph))

        if constraints is not None:
            constraint_errors, constraint_warnings = self._validate_constraints(graph, constraints)
            errors.extend(constraint_errors)
            warnings.extend(constraint_warnings)

        warnings.extend(ValidationIssue(category="compatibility", message=message) for message in extra_warnings)

        logger.debug(
            f"Validated '{graph.name}': {len(errors)} errors, {len(warnings)} warnings",
            extra={"phase": "validate"},
        )
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def evaluate(
        self,
        graph: WorkflowGraph,
        constraints: Optional[WorkflowConstraints] = None,
        extra_warnings: Iterable[str] = (),
    ) -> tuple[WorkflowMetadata, ValidationResult]:
        """Metadata and validation in one pass over the graph."""
        metadata = self.metadata(graph)
        return metadata, self.validate(graph, constraints, extra_warnings, metadata=metadata)

    def complex_nodes(self, graph: WorkflowGraph, limit: int = 3) -> list[GraphNode]:
        """Heavy nodes or nodes with many parameters, largest parameter bags first."""
        ranked = [
            (index, node)
            for index, node in enumerate(graph.nodes)
            if self.is_heavy(node) or len(node.parameters) > COMPLEX_NODE_PARAMETERS
        ]
        ranked.sort(key=lambda item: (-len(item[1].parameters), item[0]))
        return [node for _, node in ranked[: max(0, limit)]]

    # ------------------------------------------------------------------
    # Validation passes
    # ------------------------------------------------------------------

    def _validate_structure(self, graph: WorkflowGraph) -> list[ValidationIssue]:
        if not graph.nodes:
            return [ValidationIssue(category="structure", message="Workflow has no nodes")]

        errors = []
        for name, count in Counter(node.name for node in graph.nodes).items():
            if count > 1:
                errors.append(ValidationIssue(category="structure", message=f"Duplicate node name ({count}x)", node=name))
        for node_id, count in Counter(node.id for node in graph.nodes).items():
            if count > 1:
                errors.append(ValidationIssue(category="structure", message=f"Duplicate node id '{node_id}' ({count}x)"))
        if not any(self.registry.is_trigger(node.type) for node in graph.nodes):
            errors.append(ValidationIssue(category="structure", message="Workflow has no trigger node"))
        return errors

    @staticmethod
    def _validate_document(graph: WorkflowGraph) -> list[ValidationIssue]:
        issues = []
        for error in document_errors(graph.to_document()):
            message = error.message if not error.path else f"{error.path}: {error.message}"
            issues.append(ValidationIssue(category="structure", message=message))
        return issues

    def _validate_nodes(self, graph: WorkflowGraph) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
        errors = []
        warnings = []
        for node in graph.nodes:
            template = self.registry.get(node.type)
            if template is None:
                errors.append(ValidationIssue(category="node", message=f"Unknown node type '{node.type}'", node=node.name))
                continue
            if template.requires_credentials and not node.credentials:
                warnings.append(
                    ValidationIssue(category="compatibility", message="Node requires credentials", node=node.name)
                )
        return errors, warnings

    @staticmethod
    def _validate_connections(nodes: list[GraphNode], connections: ConnectionMap) -> list[ValidationIssue]:
        names = {node.name for node in nodes}
        errors = []
        for source in connections:
            if source not in names:
                errors.append(
                    ValidationIssue(category="connection", message=f"Connection from unknown node '{source}'")
                )
        for source, port, slot, target in iter_edges(connections):
            if source not in names:
                continue
            target_name = target.get("node")
            if target_name not in names:
                errors.append(
                    ValidationIssue(
                        category="connection",
                        message=f"Connection to unknown node '{target_name}' ({port} output {slot})",
                        node=source,
                    )
                )
            index = target.get("index", 0)
            if not isinstance(index, int) or index < 0:
                errors.append(
                    ValidationIssue(
                        category="connection",
                        message=f"Invalid input index {index!r} on connection to '{target_name}'",
                        node=source,
                    )
                )
        return errors

    def _validate_reachability(self, graph: WorkflowGraph) -> list[ValidationIssue]:
        triggers = [node.name for node in graph.nodes if self.registry.is_trigger(node.type)]
        if not triggers:
            return []
        adjacency = successors_map([node.name for node in graph.nodes], graph.connections)
        reached: set[str] = set()
        stack = list(triggers)
        while stack:
            name = stack.pop()
            if name in reached:
                continue
            reached.add(name)
            stack.extend(adjacency.get(name, []))

        return [
            ValidationIssue(category="connection", message="Node is not reachable from any trigger", node=node.name)
            for node in graph.nodes
            if node.name not in reached and not self.registry.is_trigger(node.type)
        ]

    def _validate_parameters(self, graph: WorkflowGraph) -> list[ValidationIssue]:
        errors = []
        for node in graph.nodes:
            template = self.registry.get(node.type)
            if template is None:
                continue
            for field in template.required_fields:
                if _is_empty(node.parameters.get(field)):
                    errors.append(
                        ValidationIssue(
                            category="parameter", message=f"Missing required parameter '{field}'", node=node.name
                        )
                    )
        return errors

    @staticmethod
    def _performance_warnings(metadata: WorkflowMetadata) -> list[ValidationIssue]:
        warnings = []
        if metadata.has_loops:
            warnings.append(ValidationIssue(category="performance", message="Workflow contains a cycle"))
        if metadata.node_count > LARGE_WORKFLOW_NODES:
            warnings.append(
                ValidationIssue(
                    category="performance",
                    message=f"Workflow has {metadata.node_count} nodes; consider splitting it",
                )
            )
        return warnings

    def _best_practice_warnings(self, graph: WorkflowGraph) -> list[ValidationIssue]:
        adjacency = successors_map([node.name for node in graph.nodes], graph.connections)
        warnings = []
        for node in graph.nodes:
            if node.type != HTTP_REQUEST or node.continue_on_fail or node.retry_on_fail:
                continue
            checked = False
            for successor in adjacency.get(node.name, []):
                target = graph.node_by_name(successor)
                template = self.registry.get(target.type) if target else None
                if template is not None and template.branching:
                    checked = True
                    break
            if not checked:
                warnings.append(
                    ValidationIssue(category="best-practice", message="HTTP request has no error handling", node=node.name)
                )
        return warnings

    @staticmethod
    def _validate_constraints(
        graph: WorkflowGraph, constraints: WorkflowConstraints
    ) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
        errors = []
        warnings = []
        present = {node.type for node in graph.nodes}

        if constraints.max_nodes is not None and len(graph.nodes) > constraints.max_nodes:
            warnings.append(
                ValidationIssue(
                    category="performance",
                    message=f"Workflow has {len(graph.nodes)} nodes, more than the limit of {constraints.max_nodes}",
                )
            )
        for node_type in constraints.required_node_types:
            if node_type not in present:
                warnings.append(
                    ValidationIssue(category="compatibility", message=f"Required node type '{node_type}' is missing")
                )
        forbidden = set(constraints.forbidden_node_types)
        for node in graph.nodes:
            if node.type in forbidden:
                errors.append(
                    ValidationIssue(category="node", message=f"Node type '{node.type}' is forbidden", node=node.name)
                )
        return errors, warnings


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)):
        return len(value) == 0 if not isinstance(value, str) else not value.strip()
    return False
