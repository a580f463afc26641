"""Graph edits: applying simplification suggestions and enhancements.

Both entry points work on a deep copy and return the edited graph; the input
graph is never modified. Edits that cannot be applied (unknown node, type
mismatch) are skipped with a debug log.
"""

import logging
from typing import Iterable, Optional

from wfgen.core.models import (
    GraphNode,
    NodeSpecification,
    SimplificationSuggestion,
    WorkflowEnhancement,
    WorkflowGraph,
)
from wfgen.generation.connections import (
    MAIN,
    ConnectionBuilder,
    connect,
    iter_edges,
    prune_dangling,
    remove_node_references,
)
from wfgen.generation.node_factory import NodeFactory, deep_merge, unique_name
from wfgen.registry.templates import IF_NODE, NOOP_NODE, TemplateRegistry

logger = logging.getLogger(__name__)

ERROR_CHECK_CONDITIONS = {
    "conditions": {
        "conditions": [
            {
                "id": "error-check",
                "leftValue": "={{ $json.error }}",
                "rightValue": "",
                "operator": {"type": "string", "operation": "notExists", "singleValue": True},
            }
        ],
    }
}


def find_node(graph: WorkflowGraph, reference: Optional[str]) -> Optional[GraphNode]:
    """Look a node up by id, then by name."""
    if not reference:
        return None
    return graph.node_by_id(reference) or graph.node_by_name(reference)


def apply_simplifications(
    graph: WorkflowGraph,
    suggestions: Iterable[SimplificationSuggestion],
    registry: TemplateRegistry,
) -> tuple[WorkflowGraph, list[str]]:
    """Apply suggestions in order.

    Returns:
        The edited copy and a description of every suggestion that was applied
    """
    result = graph.model_copy(deep=True)
    builder = ConnectionBuilder(registry)
    applied = []

    for suggestion in suggestions:
        node = find_node(result, suggestion.node_id)
        if node is None:
            logger.debug(f"Skipping {suggestion.type} for unknown node '{suggestion.node_id}'")
            continue

        if suggestion.type == "simplify-parameters":
            done = _simplify_parameters(node, suggestion, registry)
        elif suggestion.type == "merge-nodes":
            done = _merge_nodes(result, node, suggestion)
        else:
            done = _remove_node(result, node, registry)

        if done:
            applied.append(f"{suggestion.type}: {node.name}")

    prune_dangling(result.connections, [node.name for node in result.nodes])
    builder.ensure_trigger_connections(result.nodes, result.connections)
    if applied:
        result.touch()
    return result, applied


def _simplify_parameters(node: GraphNode, suggestion: SimplificationSuggestion, registry: TemplateRegistry) -> bool:
    """Reset to template defaults, keeping required fields and the suggested values."""
    template = registry.get(node.type)
    if template is None:
        return False
    kept = {field: node.parameters[field] for field in template.required_fields if field in node.parameters}
    node.parameters = deep_merge(deep_merge(template.default_parameters, kept), suggestion.parameters)
    return True


def _merge_nodes(graph: WorkflowGraph, node: GraphNode, suggestion: SimplificationSuggestion) -> bool:
    """Fold ``parameters.mergeWith`` into ``node``; both must share a type."""
    other = find_node(graph, suggestion.parameters.get("mergeWith"))
    if other is None or other is node or other.type != node.type:
        logger.debug(f"Cannot merge '{node.name}' with {suggestion.parameters.get('mergeWith')!r}")
        return False

    extra = {k: v for k, v in suggestion.parameters.items() if k != "mergeWith"}
    node.parameters = deep_merge(deep_merge(other.parameters, node.parameters), extra)

    for source, port, slot, target in list(iter_edges(graph.connections)):
        if source == other.name and target["node"] != node.name:
            connect(graph.connections, node.name, target["node"], port, slot, target.get("index", 0))
        elif target["node"] == other.name and source != node.name:
            connect(graph.connections, source, node.name, port, slot, target.get("index", 0))

    remove_node_references(graph.connections, other.name)
    graph.nodes = [n for n in graph.nodes if n is not other]
    return True


def _remove_node(graph: WorkflowGraph, node: GraphNode, registry: TemplateRegistry) -> bool:
    """Drop a node, connecting its predecessors straight to its successors."""
    if registry.is_trigger(node.type):
        logger.debug(f"Not removing trigger '{node.name}'")
        return False

    edges = list(iter_edges(graph.connections))
    incoming = [(source, port, slot) for source, port, slot, target in edges if target["node"] == node.name]
    outgoing = [target for source, _port, _slot, target in edges if source == node.name]

    remove_node_references(graph.connections, node.name)
    for source, port, slot in incoming:
        if source == node.name:
            continue
        for target in outgoing:
            if target["node"] != node.name:
                connect(graph.connections, source, target["node"], port, slot, target.get("index", 0))

    graph.nodes = [n for n in graph.nodes if n is not node]
    return True


def enhance_workflow(
    graph: WorkflowGraph,
    enhancements: Iterable[WorkflowEnhancement],
    factory: NodeFactory,
) -> tuple[WorkflowGraph, list[str]]:
    """Apply enhancements in order to a copy of ``graph``.

    Returns:
        The edited copy and a description of every enhancement that was applied

    Raises:
        UnknownNodeTypeError: If an ``add-node`` enhancement names an unknown type
    """
    result = graph.model_copy(deep=True)
    builder = ConnectionBuilder(factory.registry)
    applied = []

    for enhancement in enhancements:
        if enhancement.type == "add-error-handling":
            target = find_node(result, enhancement.target)
            if target is None:
                logger.debug(f"No node '{enhancement.target}' to add error handling to")
                continue
            _add_error_handling(result, target, factory)
            applied.append(f"add-error-handling: {target.name}")

        elif enhancement.type == "add-node":
            if enhancement.node is None:
                continue
            node = _add_node(result, enhancement.node, factory)
            after = find_node(result, enhancement.target)
            if after is not None and after is not node:
                connect(result.connections, after.name, node.name)
            applied.append(f"add-node: {node.name}")

        elif enhancement.type == "add-connection":
            if enhancement.connection is None:
                continue
            source = find_node(result, enhancement.connection.from_node)
            target = find_node(result, enhancement.connection.to_node)
            if source is None or target is None:
                logger.debug(
                    f"Cannot connect {enhancement.connection.from_node} -> {enhancement.connection.to_node}"
                )
                continue
            edge = enhancement.connection
            if connect(result.connections, source.name, target.name, slot=builder.output_slot(source, edge), index=edge.index):
                applied.append(f"add-connection: {source.name} -> {target.name}")

    if applied:
        result.touch()
    return result, applied


def _add_node(graph: WorkflowGraph, spec: NodeSpecification, factory: NodeFactory) -> GraphNode:
    node = factory.create_node(spec)
    node.name = unique_name(node.name, {n.name for n in graph.nodes})
    if graph.node_by_id(node.id) is not None:
        node.id = factory.id_factory()
    graph.nodes.append(node)
    return node


def _add_error_handling(graph: WorkflowGraph, target: GraphNode, factory: NodeFactory) -> None:
    """Route ``target``'s main output through an ``if`` check with an error branch.

    target -> Check (true: former successors, false: Error noOp)
    """
    check = _add_node(
        graph,
        NodeSpecification(name=f"Check {target.name} Success", type=IF_NODE, parameters=ERROR_CHECK_CONDITIONS),
        factory,
    )
    error = _add_node(graph, NodeSpecification(name=f"Error in {target.name}", type=NOOP_NODE), factory)

    slots = graph.connections.get(target.name, {}).get(MAIN, [])
    former = [t for slot in slots for t in slot]
    if slots:
        graph.connections[target.name][MAIN] = []

    connect(graph.connections, target.name, check.name)
    for successor in former:
        connect(graph.connections, check.name, successor["node"], slot=0, index=successor.get("index", 0))
    connect(graph.connections, check.name, error.name, slot=1)

    target.continue_on_fail = True
