"""Tests for the node template registry."""

import json

import pytest
from pydantic import ValidationError

from wfgen.core.exceptions import UnknownNodeTypeError
from wfgen.registry.templates import (
    HTTP_REQUEST,
    IF_NODE,
    MANUAL_TRIGGER,
    SCHEDULE_TRIGGER,
    NodeTemplate,
    TemplateRegistry,
    load_templates_file,
)


class TestBuiltInCatalog:
    def test_triggers_are_identified_by_category(self, registry):
        assert registry.is_trigger(MANUAL_TRIGGER)
        assert registry.is_trigger(SCHEDULE_TRIGGER)
        assert not registry.is_trigger(HTTP_REQUEST)
        assert not registry.is_trigger("n8n-nodes-base.unknown")

    def test_type_version_drops_trailing_zero(self, registry):
        assert registry.require(MANUAL_TRIGGER).type_version == 1
        assert isinstance(registry.require(MANUAL_TRIGGER).type_version, int)
        assert registry.require(HTTP_REQUEST).type_version == 4.1

    def test_if_node_is_branching(self, registry):
        assert registry.require(IF_NODE).branching is True

    def test_credentialed_templates_carry_default_credentials(self, registry):
        for template in registry.by_category("storage") + registry.by_category("notification"):
            if template.requires_credentials:
                assert template.default_credentials

    def test_unknown_type_raises(self, registry):
        with pytest.raises(UnknownNodeTypeError) as exc_info:
            registry.require("n8n-nodes-base.teleport", node_name="Beam Me Up")

        assert exc_info.value.node_type == "n8n-nodes-base.teleport"
        assert "Beam Me Up" in str(exc_info.value)

    def test_describe_groups_by_category(self, registry):
        text = registry.describe()

        assert "trigger:" in text
        assert f"- {HTTP_REQUEST}: Calls an HTTP API" in text
        assert "(requires credentials)" in text

    def test_templates_are_immutable(self, registry):
        with pytest.raises(ValidationError):
            registry.require(HTTP_REQUEST).category = "other"


class TestExtraTemplates:
    def test_file_adds_and_overrides_templates(self, tmp_path):
        path = tmp_path / "templates.json"
        path.write_text(
            json.dumps(
                {
                    "templates": [
                        {"type": "acme.crm", "category": "communication", "description": "ACME CRM"},
                        {"type": HTTP_REQUEST, "category": "communication", "version": 5},
                    ]
                }
            )
        )

        registry = TemplateRegistry.with_extra_templates(path)

        assert "acme.crm" in registry
        assert registry.require(HTTP_REQUEST).type_version == 5
        assert len(registry) == len(TemplateRegistry()) + 1

    def test_invalid_entries_are_skipped(self, tmp_path, caplog):
        path = tmp_path / "templates.json"
        path.write_text(json.dumps([{"type": "ok.node", "category": "utility"}, {"category": "no type"}]))

        templates = load_templates_file(path)

        assert [t.type for t in templates] == ["ok.node"]
        assert "Skipping invalid template #1" in caplog.text

    def test_unreadable_file_is_ignored(self, tmp_path, caplog):
        path = tmp_path / "templates.json"
        path.write_text("{broken")

        assert load_templates_file(path) == []
        assert "Failed to read template file" in caplog.text

    def test_missing_file_is_ignored(self, tmp_path):
        assert load_templates_file(tmp_path / "nope.json") == []

    def test_custom_catalog(self):
        registry = TemplateRegistry([NodeTemplate(type="x.only", category="utility")])

        assert registry.types() == ["x.only"]
        assert registry.categories() == ["utility"]
