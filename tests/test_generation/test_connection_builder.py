"""Tests for ConnectionBuilder and the connection map helpers."""

from tests.shared.graphs import graph_node
from wfgen.core.models import FlowConnection
from wfgen.generation.connections import (
    ConnectionBuilder,
    connect,
    connection_count,
    port_class_for,
    prune_dangling,
    remove_node_references,
    successors_map,
)
from wfgen.registry.templates import HTTP_REQUEST, IF_NODE, MANUAL_TRIGGER, SCHEDULE_TRIGGER


def _edge(source: str, target: str, **fields) -> FlowConnection:
    return FlowConnection(from_node=source, to_node=target, **fields)


class TestConnectionMap:
    def test_connect_pads_slots_and_dedupes(self):
        connections: dict = {}

        assert connect(connections, "If", "B", slot=1) is True
        assert connect(connections, "If", "B", slot=1) is False

        assert connections == {"If": {"main": [[], [{"node": "B", "type": "main", "index": 0}]]}}
        assert connection_count(connections) == 1

    def test_successors_map_ignores_unknown_names(self):
        connections: dict = {}
        connect(connections, "A", "B")
        connect(connections, "A", "Ghost")
        connect(connections, "Ghost", "B")

        assert successors_map(["A", "B"], connections) == {"A": ["B"], "B": []}

    def test_prune_dangling_reports_removed_edges(self):
        connections: dict = {}
        connect(connections, "A", "B")
        connect(connections, "A", "Ghost")
        connect(connections, "Ghost", "A")

        removed = prune_dangling(connections, ["A", "B"])

        assert len(removed) == 2
        assert connections == {"A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}}

    def test_remove_node_references(self):
        connections: dict = {}
        connect(connections, "A", "B")
        connect(connections, "B", "C")

        remove_node_references(connections, "B")

        assert connection_count(connections) == 0
        assert "B" not in connections

    def test_port_classes(self):
        assert port_class_for("ai_tool") == "ai_tool"
        assert port_class_for("error") == "main"
        assert port_class_for(None) == "main"


class TestBuild:
    def test_flow_resolves_ids_then_names(self, registry):
        nodes = [
            graph_node("Start", MANUAL_TRIGGER, node_id="t"),
            graph_node("Fetch", HTTP_REQUEST, node_id="h"),
            graph_node("Shape", node_id="s"),
        ]
        builder = ConnectionBuilder(registry)

        connections = builder.build(nodes, [_edge("t", "h"), _edge("Fetch", "Shape")])

        assert successors_map(["Start", "Fetch", "Shape"], connections) == {
            "Start": ["Fetch"],
            "Fetch": ["Shape"],
            "Shape": [],
        }
        assert builder.skipped == []

    def test_unknown_endpoints_are_skipped(self, registry, caplog):
        nodes = [graph_node("Start", MANUAL_TRIGGER), graph_node("Shape")]
        builder = ConnectionBuilder(registry)

        connections = builder.build(nodes, [_edge("start", "shape"), _edge("shape", "nowhere")])

        assert builder.skipped == ["Skipped connection shape -> nowhere: unknown node 'nowhere'"]
        assert "unknown node 'nowhere'" in caplog.text
        assert connection_count(connections) == 1

    def test_false_branch_uses_second_slot(self, registry):
        nodes = [
            graph_node("Start", MANUAL_TRIGGER),
            graph_node("Check", IF_NODE),
            graph_node("Yes"),
            graph_node("No"),
        ]
        flow = [
            _edge("Start", "Check"),
            _edge("Check", "Yes", condition="true"),
            _edge("Check", "No", condition=False),
        ]

        connections = ConnectionBuilder(registry).build(nodes, flow)

        slots = connections["Check"]["main"]
        assert [t["node"] for t in slots[0]] == ["Yes"]
        assert [t["node"] for t in slots[1]] == ["No"]

    def test_condition_on_non_branching_node_is_ignored(self, registry):
        nodes = [graph_node("Start", MANUAL_TRIGGER), graph_node("A"), graph_node("B")]
        flow = [_edge("Start", "A"), _edge("A", "B", condition="false")]

        connections = ConnectionBuilder(registry).build(nodes, flow)

        assert len(connections["A"]["main"]) == 1

    def test_input_index_and_ai_port_are_kept(self, registry):
        nodes = [graph_node("Start", MANUAL_TRIGGER), graph_node("A"), graph_node("B")]
        flow = [_edge("Start", "A"), _edge("A", "B", type="ai_tool", index=1)]

        connections = ConnectionBuilder(registry).build(nodes, flow)

        assert connections["A"] == {"ai_tool": [[{"node": "B", "type": "ai_tool", "index": 1}]]}

    def test_unconnected_trigger_is_wired_to_first_node(self, registry):
        nodes = [
            graph_node("Start", MANUAL_TRIGGER),
            graph_node("Every Hour", SCHEDULE_TRIGGER),
            graph_node("A"),
            graph_node("B"),
        ]

        connections = ConnectionBuilder(registry).build(nodes, [_edge("Start", "B"), _edge("A", "B")])

        assert [t["node"] for t in connections["Every Hour"]["main"][0]] == ["A"]
        assert [t["node"] for t in connections["Start"]["main"][0]] == ["B"]

    def test_empty_flow_chains_nodes_when_a_trigger_exists(self, registry):
        nodes = [graph_node("Start", MANUAL_TRIGGER), graph_node("A"), graph_node("B")]

        connections = ConnectionBuilder(registry).build(nodes, [])

        assert successors_map(["Start", "A", "B"], connections) == {"Start": ["A"], "A": ["B"], "B": []}

    def test_empty_flow_without_trigger_adds_nothing(self, registry):
        assert ConnectionBuilder(registry).build([graph_node("A"), graph_node("B")], []) == {}

    def test_every_trigger_has_main_output(self, registry):
        nodes = [graph_node("T1", MANUAL_TRIGGER), graph_node("T2", SCHEDULE_TRIGGER), graph_node("A")]

        connections = ConnectionBuilder(registry).build(nodes, [_edge("A", "A")])

        for trigger in ("T1", "T2"):
            assert connections[trigger]["main"][0]

    def test_empty_flow_with_trigger_last_keeps_edges_out_of_trigger(self, registry):
        nodes = [graph_node("A"), graph_node("B"), graph_node("Start", MANUAL_TRIGGER)]

        connections = ConnectionBuilder(registry).build(nodes, [])

        assert successors_map(["A", "B", "Start"], connections) == {"A": ["B"], "B": [], "Start": ["A"]}

    def test_empty_flow_with_triggers_in_the_middle(self, registry):
        nodes = [
            graph_node("A"),
            graph_node("Start", MANUAL_TRIGGER),
            graph_node("Every Hour", SCHEDULE_TRIGGER),
            graph_node("B"),
        ]

        connections = ConnectionBuilder(registry).build(nodes, [])

        adjacency = successors_map([n.name for n in nodes], connections)
        assert adjacency == {"A": ["B"], "Start": ["A"], "Every Hour": ["A"], "B": []}
        assert all(target not in ("Start", "Every Hour") for targets in adjacency.values() for target in targets)
