"""Tests for WorkflowPlanner: model plans, fallback plans and simplification suggestions."""

import pytest

from tests.shared.ai_mock import PLANNING, SIMPLIFICATION, ScriptedClient
from wfgen.core.models import (
    GraphNode,
    RequirementAnalysis,
    WorkflowConstraints,
    WorkflowGraph,
    WorkflowPlan,
)
from wfgen.planning.analyzer import DATABASE, EMAIL, HTTP, SCHEDULE
from wfgen.planning.llm_helpers import ResponseParseError
from wfgen.planning.planner import DEFAULT_API_URL, WorkflowPlanner, components_of
from wfgen.registry.templates import (
    EMAIL_SEND,
    HTTP_REQUEST,
    MANUAL_TRIGGER,
    POSTGRES,
    SCHEDULE_TRIGGER,
    SET_NODE,
    WEBHOOK_TRIGGER,
)

MODEL_PLAN = {
    "nodes": [
        {"id": "hook", "name": "Incoming Order", "type": WEBHOOK_TRIGGER, "parameters": {"path": "orders"}},
        {"id": "shape", "name": "Shape Order", "type": SET_NODE},
    ],
    "flow": [{"from": "hook", "to": "shape"}],
    "estimatedComplexity": 2,
    "rationale": "Receive, then reshape",
}


def _graph() -> WorkflowGraph:
    return WorkflowGraph(
        name="Orders",
        nodes=[
            GraphNode(id="n1", name="Start", type=MANUAL_TRIGGER, type_version=1),
            GraphNode(id="n2", name="HTTP Request", type=HTTP_REQUEST, type_version=4.1, parameters={"url": "x"}),
        ],
    )


class TestModelPlan:
    async def test_model_plan_is_used(self, registry, scheduled_api_analysis):
        client = ScriptedClient({PLANNING: MODEL_PLAN})

        plan = await WorkflowPlanner(client, registry).plan(scheduled_api_analysis)

        assert [spec.name for spec in plan.nodes] == ["Incoming Order", "Shape Order"]
        assert plan.flow[0].from_node == "hook"
        assert plan.rationale == "Receive, then reshape"

    async def test_prompt_lists_the_catalog(self, registry, scheduled_api_analysis):
        client = ScriptedClient({PLANNING: MODEL_PLAN})

        await WorkflowPlanner(client, registry).plan(scheduled_api_analysis)

        prompt = client.calls_with(PLANNING)[0]
        assert f"- {HTTP_REQUEST}: Calls an HTTP API" in prompt
        assert scheduled_api_analysis.summary in prompt

    async def test_unknown_types_are_left_for_the_factory(self, registry, scheduled_api_analysis):
        plan_data = {"nodes": [{"id": "x", "type": "n8n-nodes-base.teleport"}]}
        client = ScriptedClient({PLANNING: plan_data})

        plan = await WorkflowPlanner(client, registry).plan(scheduled_api_analysis)

        assert plan.nodes[0].type == "n8n-nodes-base.teleport"

    async def test_forbidden_type_in_model_plan_falls_back(self, registry, scheduled_api_analysis):
        client = ScriptedClient({PLANNING: MODEL_PLAN})
        constraints = WorkflowConstraints(forbidden_node_types=[SET_NODE])

        plan = await WorkflowPlanner(client, registry).plan(scheduled_api_analysis, constraints)

        assert SET_NODE not in {spec.type for spec in plan.nodes}
        assert plan.nodes[0].type == SCHEDULE_TRIGGER
        assert client.invalidated == client.calls_with(PLANNING)

    @pytest.mark.parametrize("answer", ['{"nodes": []}', '{"nodes": [{"id": "x"}]}', "no plan today"])
    async def test_unusable_plan_falls_back(self, registry, scheduled_api_analysis, answer):
        client = ScriptedClient({PLANNING: answer})

        plan = await WorkflowPlanner(client, registry).plan(scheduled_api_analysis)

        assert plan.rationale.startswith("Sequential fallback plan")

    def test_check_plan_rejects_forbidden_types(self):
        plan = WorkflowPlan.model_validate(MODEL_PLAN)

        with pytest.raises(ResponseParseError, match="forbidden"):
            WorkflowPlanner.check_plan(plan, WorkflowConstraints(forbidden_node_types=[WEBHOOK_TRIGGER]))

        WorkflowPlanner.check_plan(plan, None)


class TestFallbackPlan:
    async def test_scheduled_api_plan(self, offline_planner, scheduled_api_analysis):
        plan = await offline_planner.plan(scheduled_api_analysis)

        assert [spec.type for spec in plan.nodes] == [SCHEDULE_TRIGGER, HTTP_REQUEST, EMAIL_SEND]
        assert plan.nodes[1].parameters["url"] == "https://api.example.com/orders"
        assert [(edge.from_node, edge.to_node) for edge in plan.flow] == [
            ("trigger", "http-request"),
            ("http-request", "send-email"),
        ]
        assert plan.estimated_complexity == 4

    def test_url_defaults_when_summary_has_none(self, offline_planner):
        analysis = RequirementAnalysis(workflow_type="linear", estimated_complexity=2, key_components=["HTTP"])

        plan = offline_planner.fallback_plan(analysis)

        assert plan.nodes[0].type == MANUAL_TRIGGER
        assert plan.nodes[1].parameters["url"] == DEFAULT_API_URL

    def test_trailing_punctuation_is_not_part_of_url(self, offline_planner):
        analysis = RequirementAnalysis(
            workflow_type="linear",
            estimated_complexity=2,
            key_components=["HTTP"],
            summary="Poll https://status.example.com/health.",
        )

        plan = offline_planner.fallback_plan(analysis)

        assert plan.nodes[1].parameters["url"] == "https://status.example.com/health"

    def test_empty_analysis_still_yields_a_trigger(self, offline_planner):
        analysis = RequirementAnalysis(workflow_type="linear", estimated_complexity=1)

        plan = offline_planner.fallback_plan(analysis)

        assert [spec.type for spec in plan.nodes] == [MANUAL_TRIGGER]
        assert plan.flow == []

    def test_forbidden_types_are_skipped(self, offline_planner, scheduled_api_analysis):
        constraints = WorkflowConstraints(forbidden_node_types=[EMAIL_SEND, SCHEDULE_TRIGGER])

        plan = offline_planner.fallback_plan(scheduled_api_analysis, constraints)

        assert [spec.type for spec in plan.nodes] == [MANUAL_TRIGGER, HTTP_REQUEST]

    def test_required_types_are_appended_and_max_nodes_truncates(self, offline_planner, scheduled_api_analysis):
        constraints = WorkflowConstraints(required_node_types=[POSTGRES, "n8n-nodes-base.teleport"])

        plan = offline_planner.fallback_plan(scheduled_api_analysis, constraints)
        assert plan.nodes[-1].type == POSTGRES

        constraints.max_nodes = 2
        plan = offline_planner.fallback_plan(scheduled_api_analysis, constraints)
        assert len(plan.nodes) == 2
        assert len(plan.flow) == 1


class TestComponentsOf:
    def test_loose_matching_and_node_types(self):
        analysis = RequirementAnalysis(
            workflow_type="linear",
            estimated_complexity=3,
            key_components=["HTTP API calls", "Email notifications", "Cron schedule"],
            suggested_node_types=[POSTGRES],
        )

        assert components_of(analysis) == [SCHEDULE, HTTP, EMAIL, DATABASE]

    def test_unrelated_components_are_ignored(self):
        analysis = RequirementAnalysis(workflow_type="linear", estimated_complexity=3, key_components=["magic"])

        assert components_of(analysis) == []


class TestSimplificationSuggestions:
    async def test_no_complex_nodes_means_no_request(self, offline_planner, offline_client):
        assert await offline_planner.suggest_simplifications(_graph(), []) == []
        assert offline_client.calls == []

    async def test_suggestions_for_unknown_nodes_are_dropped(self, registry):
        client = ScriptedClient(
            {
                SIMPLIFICATION: {
                    "suggestions": [
                        {"type": "remove-node", "nodeId": "n2", "description": "not needed"},
                        {"type": "remove-node", "nodeId": "ghost"},
                        {"type": "simplify-parameters", "nodeId": "HTTP Request"},
                    ]
                }
            }
        )
        graph = _graph()

        suggestions = await WorkflowPlanner(client, registry).suggest_simplifications(
            graph, [graph.nodes[1]], complexity=8
        )

        assert [(s.type, s.node_id) for s in suggestions] == [
            ("remove-node", "n2"),
            ("simplify-parameters", "HTTP Request"),
        ]
        prompt = client.calls_with(SIMPLIFICATION)[0]
        assert "HTTP Request [id n2]" in prompt
        assert "8/10" in prompt

    async def test_fallback_simplifies_each_complex_node(self, offline_planner):
        graph = _graph()

        suggestions = await offline_planner.suggest_simplifications(graph, graph.nodes)

        assert [(s.type, s.node_id) for s in suggestions] == [
            ("simplify-parameters", "n1"),
            ("simplify-parameters", "n2"),
        ]

    async def test_unparseable_suggestions_fall_back(self, registry):
        client = ScriptedClient({SIMPLIFICATION: '{"suggestions": [{"type": "explode", "nodeId": "n2"}]}'})
        graph = _graph()

        suggestions = await WorkflowPlanner(client, registry).suggest_simplifications(graph, [graph.nodes[1]])

        assert [s.type for s in suggestions] == ["simplify-parameters"]
        assert client.invalidated
