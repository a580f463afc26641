"""Deterministic canvas positions for graph nodes.

The topology decides the layout:

- linear: one row
- parallel: longest-path layers, each layer centered on the start row
- conditional: layers as above, true branch above false branch
- complex (cycles, or no root): a square grid in declaration order

Columns advance by HORIZONTAL_SPACING; rows by VERTICAL_SPACING.
"""

import logging
import math
from collections import deque
from enum import Enum
from typing import Optional

from wfgen.core.models import ConnectionMap, GraphNode
from wfgen.generation.connections import MAIN, successors_map
from wfgen.registry.templates import TemplateRegistry

logger = logging.getLogger(__name__)

HORIZONTAL_SPACING = 300
VERTICAL_SPACING = 150
START_X = 100
START_Y = 300
BRANCH_OFFSET = 100


class Topology(Enum):
    LINEAR = "linear"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"
    COMPLEX = "complex"


class PositionCalculator:
    """Assigns positions; pure, returns new node objects."""

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self.registry = registry or TemplateRegistry()

    def layout(self, nodes: list[GraphNode], connections: ConnectionMap) -> list[GraphNode]:
        names = [node.name for node in nodes]
        if len(set(names)) != len(names):
            topology = Topology.COMPLEX
        else:
            topology = self.classify(nodes, connections)

        if topology is Topology.COMPLEX:
            positions = _grid_positions(len(nodes))
        else:
            adjacency = successors_map(names, connections)
            layers = _longest_path_layers(names, adjacency)
            if topology is Topology.LINEAR:
                by_name = {name: (START_X + layers[name] * HORIZONTAL_SPACING, START_Y) for name in names}
            else:
                lanes = self._branch_lanes(nodes, connections, adjacency) if topology is Topology.CONDITIONAL else {}
                by_name = _layered_positions(names, layers, lanes)
            positions = [by_name[name] for name in names]

        logger.debug(f"Laid out {len(nodes)} nodes as {topology.value}")
        return [
            node.model_copy(update={"position": [x, y]}, deep=True) for node, (x, y) in zip(nodes, positions)
        ]

    def classify(self, nodes: list[GraphNode], connections: ConnectionMap) -> Topology:
        names = [node.name for node in nodes]
        adjacency = successors_map(names, connections)
        indegree = {name: 0 for name in names}
        for targets in adjacency.values():
            for target in targets:
                indegree[target] += 1

        roots = [name for name in names if indegree[name] == 0]
        if not roots or len(_topological_order(names, adjacency)) < len(names):
            return Topology.COMPLEX

        if len(roots) == 1 and all(len(adjacency[n]) <= 1 and indegree[n] <= 1 for n in names):
            return Topology.LINEAR

        for node in nodes:
            template = self.registry.get(node.type)
            if template is None or not template.branching:
                continue
            used_slots = [slot for slot in connections.get(node.name, {}).get(MAIN, []) if slot]
            if len(used_slots) >= 2:
                return Topology.CONDITIONAL

        return Topology.PARALLEL

    def _branch_lanes(
        self,
        nodes: list[GraphNode],
        connections: ConnectionMap,
        adjacency: dict[str, list[str]],
    ) -> dict[str, int]:
        """-1 for nodes only on a true branch, +1 for nodes only on a false branch.

        The first branching node that reaches a node decides its lane.
        """
        lanes: dict[str, int] = {}
        for node in nodes:
            template = self.registry.get(node.type)
            if template is None or not template.branching:
                continue
            slots = connections.get(node.name, {}).get(MAIN, [])
            if len(slots) < 2:
                continue
            true_side = _reachable([t["node"] for t in slots[0]], adjacency)
            false_side = _reachable([t["node"] for t in slots[1]], adjacency)
            for name in true_side ^ false_side:
                if name != node.name and name not in lanes:
                    lanes[name] = -1 if name in true_side else 1
        return lanes


def _topological_order(names: list[str], adjacency: dict[str, list[str]]) -> list[str]:
    indegree = {name: 0 for name in names}
    for targets in adjacency.values():
        for target in targets:
            indegree[target] += 1
    queue = deque(name for name in names if indegree[name] == 0)
    order = []
    while queue:
        name = queue.popleft()
        order.append(name)
        for target in adjacency[name]:
            indegree[target] -= 1
            if indegree[target] == 0:
                queue.append(target)
    return order


def _longest_path_layers(names: list[str], adjacency: dict[str, list[str]]) -> dict[str, int]:
    layers = {name: 0 for name in names}
    for name in _topological_order(names, adjacency):
        for target in adjacency[name]:
            layers[target] = max(layers[target], layers[name] + 1)
    return layers


def _reachable(starts: list[str], adjacency: dict[str, list[str]]) -> set[str]:
    seen: set[str] = set()
    stack = [name for name in starts if name in adjacency]
    while stack:
        name = stack.pop()
        if name in seen:
            continue
        seen.add(name)
        stack.extend(adjacency[name])
    return seen


def _layered_positions(
    names: list[str],
    layers: dict[str, int],
    lanes: dict[str, int],
) -> dict[str, tuple[int, int]]:
    columns: dict[int, list[str]] = {}
    for index, name in enumerate(names):
        columns.setdefault(layers[name], []).append(name)

    order = {name: index for index, name in enumerate(names)}
    positions = {}
    for layer, members in columns.items():
        x = START_X + layer * HORIZONTAL_SPACING
        if len(members) == 1:
            positions[members[0]] = (x, START_Y + lanes.get(members[0], 0) * BRANCH_OFFSET)
            continue
        members.sort(key=lambda n: (lanes.get(n, 0), order[n]))
        top = START_Y - (len(members) - 1) * VERTICAL_SPACING // 2
        for row, name in enumerate(members):
            positions[name] = (x, top + row * VERTICAL_SPACING)
    return positions


def _grid_positions(count: int) -> list[tuple[int, int]]:
    if count == 0:
        return []
    columns = math.ceil(math.sqrt(count))
    return [
        (START_X + (i % columns) * HORIZONTAL_SPACING, START_Y + (i // columns) * VERTICAL_SPACING)
        for i in range(count)
    ]
