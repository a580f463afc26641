"""Tests for PositionCalculator topology detection and placement."""

import pytest

from tests.shared.graphs import build_graph, graph_node, linear_graph
from wfgen.generation.layout import PositionCalculator, Topology
from wfgen.registry.templates import IF_NODE, MANUAL_TRIGGER


@pytest.fixture
def calculator(registry):
    return PositionCalculator(registry)


def _positions(calculator, graph) -> dict[str, list]:
    return {node.name: node.position for node in calculator.layout(graph.nodes, graph.connections)}


def _diamond():
    nodes = [graph_node("Start", MANUAL_TRIGGER), graph_node("A"), graph_node("B"), graph_node("Join")]
    return build_graph(nodes, [("Start", "A"), ("Start", "B"), ("A", "Join"), ("B", "Join")])


def _branch():
    nodes = [
        graph_node("Start", MANUAL_TRIGGER),
        graph_node("Check", IF_NODE),
        graph_node("Yes"),
        graph_node("No"),
        graph_node("Yes Done"),
    ]
    return build_graph(nodes, [("Start", "Check"), ("Check", "Yes", 0), ("Check", "No", 1), ("Yes", "Yes Done")])


class TestClassify:
    def test_chain_is_linear(self, calculator):
        graph = linear_graph("Start", "A", "B")

        assert calculator.classify(graph.nodes, graph.connections) is Topology.LINEAR

    def test_fan_out_is_parallel(self, calculator):
        graph = _diamond()

        assert calculator.classify(graph.nodes, graph.connections) is Topology.PARALLEL

    def test_two_branches_of_if_is_conditional(self, calculator):
        graph = _branch()

        assert calculator.classify(graph.nodes, graph.connections) is Topology.CONDITIONAL

    def test_cycle_is_complex(self, calculator):
        graph = build_graph(
            [graph_node("Start", MANUAL_TRIGGER), graph_node("A"), graph_node("B")],
            [("Start", "A"), ("A", "B"), ("B", "A")],
        )

        assert calculator.classify(graph.nodes, graph.connections) is Topology.COMPLEX


class TestLayout:
    def test_linear_row(self, calculator):
        assert _positions(calculator, linear_graph("Start", "A", "B")) == {
            "Start": [100, 300],
            "A": [400, 300],
            "B": [700, 300],
        }

    def test_parallel_layers_are_centered(self, calculator):
        assert _positions(calculator, _diamond()) == {
            "Start": [100, 300],
            "A": [400, 225],
            "B": [400, 375],
            "Join": [700, 300],
        }

    def test_true_branch_above_false_branch(self, calculator):
        positions = _positions(calculator, _branch())

        assert positions["Check"] == [400, 300]
        assert positions["Yes"] == [700, 225]
        assert positions["No"] == [700, 375]
        assert positions["Yes Done"] == [1000, 200]

    def test_cycle_uses_grid(self, calculator):
        graph = build_graph(
            [graph_node("Start", MANUAL_TRIGGER), graph_node("A"), graph_node("B")],
            [("Start", "A"), ("A", "B"), ("B", "A")],
        )

        assert list(_positions(calculator, graph).values()) == [[100, 300], [400, 300], [100, 450]]

    def test_duplicate_names_use_grid(self, calculator):
        nodes = [graph_node("Same", MANUAL_TRIGGER, node_id="1"), graph_node("Same", node_id="2")]

        laid_out = calculator.layout(nodes, {})

        assert [n.position for n in laid_out] == [[100, 300], [400, 300]]

    def test_layout_is_pure_and_deterministic(self, calculator):
        graph = _branch()
        before = [node.position for node in graph.nodes]

        first = calculator.layout(graph.nodes, graph.connections)
        second = calculator.layout(graph.nodes, graph.connections)

        assert first == second
        assert [node.position for node in graph.nodes] == before
        assert first[0] is not graph.nodes[0]

    def test_empty_graph(self, calculator):
        assert calculator.layout([], {}) == []
