"""Connection map construction and editing.

A connection map is ``source name -> port class -> output slot -> targets``
where each target is ``{"node": name, "type": port class, "index": input}``.
Nodes are addressed by name, as in the exported document.
"""

import logging
from typing import Any, Iterable, Iterator, Optional

from wfgen.core.models import ConnectionMap, FlowConnection, GraphNode
from wfgen.registry.templates import TemplateRegistry

logger = logging.getLogger(__name__)

MAIN = "main"

# Port classes kept as-is; every other connection type collapses to main
PRESERVED_PORT_CLASSES = frozenset(
    {
        "ai_agent",
        "ai_chain",
        "ai_document",
        "ai_embedding",
        "ai_languageModel",
        "ai_memory",
        "ai_outputParser",
        "ai_retriever",
        "ai_textSplitter",
        "ai_tool",
        "ai_vectorStore",
    }
)


def port_class_for(connection_type: Optional[str]) -> str:
    """Map a plan connection type (success, data, error...) to a port class."""
    if connection_type in PRESERVED_PORT_CLASSES:
        return connection_type  # type: ignore[return-value]
    return MAIN


def connect(
    connections: ConnectionMap,
    source: str,
    target: str,
    port: str = MAIN,
    slot: int = 0,
    index: int = 0,
) -> bool:
    """Add one edge; returns False when the identical edge already exists.

    Missing slots below ``slot`` are padded with empty lists.
    """
    slots = connections.setdefault(source, {}).setdefault(port, [])
    while len(slots) <= slot:
        slots.append([])
    descriptor = {"node": target, "type": port, "index": index}
    if descriptor in slots[slot]:
        return False
    slots[slot].append(descriptor)
    return True


def iter_edges(connections: ConnectionMap) -> Iterator[tuple[str, str, int, dict[str, Any]]]:
    """Yield ``(source, port, slot, target)`` for every edge in declaration order."""
    for source, ports in connections.items():
        for port, slots in ports.items():
            for slot, targets in enumerate(slots):
                for target in targets:
                    yield source, port, slot, target


def connection_count(connections: ConnectionMap) -> int:
    return sum(1 for _ in iter_edges(connections))


def successors_map(names: Iterable[str], connections: ConnectionMap) -> dict[str, list[str]]:
    """Adjacency over known names, all port classes and slots, first-seen order."""
    adjacency: dict[str, list[str]] = {name: [] for name in names}
    for source, _port, _slot, target in iter_edges(connections):
        name = target.get("node")
        if source in adjacency and name in adjacency and name not in adjacency[source]:
            adjacency[source].append(name)
    return adjacency


def has_outgoing(connections: ConnectionMap, source: str, port: str = MAIN) -> bool:
    return any(slot for slot in connections.get(source, {}).get(port, []))


def remove_target(connections: ConnectionMap, source: str, target: str) -> int:
    """Drop every edge from ``source`` to ``target``; returns how many went."""
    removed = 0
    for slots in connections.get(source, {}).values():
        for i, targets in enumerate(slots):
            kept = [t for t in targets if t.get("node") != target]
            removed += len(targets) - len(kept)
            slots[i] = kept
    return removed


def remove_node_references(connections: ConnectionMap, name: str) -> None:
    """Remove ``name`` as a source and as a target everywhere."""
    connections.pop(name, None)
    for source in list(connections):
        remove_target(connections, source, name)


def prune_dangling(connections: ConnectionMap, names: Iterable[str]) -> list[str]:
    """Remove edges whose source or target is not a known node name.

    Returns a description of each removed edge.
    """
    known = set(names)
    removed = []
    for source in list(connections):
        if source not in known:
            removed.append(f"connection from unknown node '{source}'")
            del connections[source]
            continue
        for port, slots in connections[source].items():
            for i, targets in enumerate(slots):
                kept = []
                for target in targets:
                    if target.get("node") in known:
                        kept.append(target)
                    else:
                        removed.append(f"connection from '{source}' to unknown node '{target.get('node')}'")
                slots[i] = kept
    return removed


class ConnectionBuilder:
    """Turns a plan's abstract flow into a connection map over concrete nodes.

    Connections that cannot be resolved are skipped and described in
    ``skipped`` (reset on every ``build``).
    """

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self.registry = registry or TemplateRegistry()
        self.skipped: list[str] = []

    def build(self, nodes: list[GraphNode], flow: list[FlowConnection]) -> ConnectionMap:
        """Connect nodes along ``flow``.

        Without a flow, the non-trigger nodes are chained in declaration order
        and every trigger feeds the head of that chain. Every trigger leaves
        with at least one main output whenever a non-trigger node exists.
        """
        self.skipped = []
        connections: ConnectionMap = {}

        if not flow:
            if any(self.registry.is_trigger(node.type) for node in nodes):
                self._chain([n for n in nodes if not self.registry.is_trigger(n.type)], connections)
                self.ensure_trigger_connections(nodes, connections)
            return connections

        by_id: dict[str, GraphNode] = {}
        by_name: dict[str, GraphNode] = {}
        for node in nodes:
            by_id.setdefault(node.id, node)
            by_name.setdefault(node.name, node)

        for edge in flow:
            source = by_id.get(edge.from_node) or by_name.get(edge.from_node)
            target = by_id.get(edge.to_node) or by_name.get(edge.to_node)
            if source is None or target is None:
                missing = edge.from_node if source is None else edge.to_node
                message = f"Skipped connection {edge.from_node} -> {edge.to_node}: unknown node '{missing}'"
                logger.warning(message, extra={"phase": "connections"})
                self.skipped.append(message)
                continue
            connect(
                connections,
                source.name,
                target.name,
                port=port_class_for(edge.type),
                slot=self.output_slot(source, edge),
                index=edge.index,
            )

        self.ensure_trigger_connections(nodes, connections)
        return connections

    def output_slot(self, source: GraphNode, edge: FlowConnection) -> int:
        """Branching nodes send the false branch to slot 1; everything else uses slot 0."""
        template = self.registry.get(source.type)
        if template is not None and template.branching and edge.condition == "false":
            return 1
        return 0

    def ensure_trigger_connections(self, nodes: list[GraphNode], connections: ConnectionMap) -> int:
        """Connect each trigger without a main output to the first non-trigger node.

        Returns the number of edges added.
        """
        first = next((n for n in nodes if not self.registry.is_trigger(n.type)), None)
        if first is None:
            return 0
        added = 0
        for node in nodes:
            if self.registry.is_trigger(node.type) and not has_outgoing(connections, node.name):
                if connect(connections, node.name, first.name):
                    logger.debug(f"Connected trigger '{node.name}' to '{first.name}'")
                    added += 1
        return added

    @staticmethod
    def _chain(nodes: list[GraphNode], connections: ConnectionMap) -> None:
        for source, target in zip(nodes, nodes[1:]):
            connect(connections, source.name, target.name)
