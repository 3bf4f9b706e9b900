"""Tests for YAML rule loading, validation and hot reload."""

import json

import pytest
from pydantic import ValidationError

from src.core import RuleLoadException
from src.escalation.application import ActionDTO, ConditionDTO, EscalationRuleSetDTO
from src.escalation.infrastructure import YAMLRuleManager, YAMLRuleRepository

RULES_YAML = """
rules:
  - id: stale-open
    name: Stale open tickets
    priority: 5
    conditions:
      - type: status
        operator: equals
        value: Open
      - type: time_since_created
        operator: greater_than
        value: 24
        unit: hours
    actions:
      - type: priority_change
        config:
          priority: High
      - type: webhook
  - id: unanswered
    name: No reply from support
    priority: 10
    conditions:
      - type: no_response
        operator: equals
        value: true
    actions:
      - type: email
        config:
          recipients: [lead@example.com]
  - id: disabled
    name: Disabled rule
    active: false
"""


class TestRuleDocumentValidation:
    def test_field_condition_rejects_time_operator(self):
        with pytest.raises(ValidationError):
            ConditionDTO(type="status", operator="greater_than", value="Open")

    def test_membership_requires_list(self):
        with pytest.raises(ValidationError):
            ConditionDTO(type="priority", operator="in", value="High")

    def test_time_condition_requires_number(self):
        with pytest.raises(ValidationError):
            ConditionDTO(type="time_since_updated", operator="greater_than", value="2", unit="hours")

    def test_unknown_condition_type_allowed(self):
        assert ConditionDTO(type="sentiment", operator="equals", value="angry").type == "sentiment"

    def test_assign_requires_assignee(self):
        with pytest.raises(ValidationError):
            ActionDTO(type="assign", config={})

    def test_email_recipients_must_be_list(self):
        with pytest.raises(ValidationError):
            ActionDTO(type="email", config={"recipients": "lead@example.com"})

    def test_unknown_action_type_kept(self):
        assert ActionDTO(type="page_oncall").to_domain().type == "page_oncall"

    def test_duplicate_rule_ids_rejected(self):
        with pytest.raises(ValidationError):
            EscalationRuleSetDTO.model_validate({"rules": [
                {"id": "r", "name": "one"},
                {"id": "r", "name": "two"},
            ]})


class TestYAMLRuleManager:
    def test_load_rules(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)
        manager = YAMLRuleManager()

        rules = manager.load(path)

        assert [r.id for r in rules] == ["stale-open", "unanswered", "disabled"]
        stale = rules[0]
        assert stale.priority == 5
        assert stale.conditions[1].unit == "hours"
        assert stale.actions[0].config == {"priority": "High"}
        assert stale.actions[1].config == {}

    def test_yaml_dates_become_strings(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - id: holiday\n"
            "    name: Holiday cover\n"
            "    conditions:\n"
            "      - type: business_calendar\n"
            "        operator: equals\n"
            "        value: 2024-01-01\n"
            "    actions:\n"
            "      - type: webhook\n"
            "        config:\n"
            "          starts: 2024-12-24\n"
            "          windows: [2024-12-25]\n"
        )

        [rule] = YAMLRuleManager().load(path)

        assert rule.conditions[0].value == "2024-01-01"
        assert rule.actions[0].config == {"starts": "2024-12-24", "windows": ["2024-12-25"]}
        json.dumps([c.to_dict() for c in rule.conditions] + [a.to_dict() for a in rule.actions])

    def test_bare_list_document(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("- id: only\n  name: Only rule\n")

        assert [r.id for r in YAMLRuleManager().load(path)] == ["only"]

    def test_missing_file_means_no_rules(self, tmp_path):
        assert YAMLRuleManager().load(tmp_path / "absent.yaml") == []

    def test_invalid_file_raises(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - id: x\n    name: y\n    conditions:\n      - type: status\n        operator: bogus\n")

        with pytest.raises(RuleLoadException):
            YAMLRuleManager().load(path)

    def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules: [unclosed")

        with pytest.raises(RuleLoadException):
            YAMLRuleManager().load(path)

    def test_reload_keeps_previous_rules_on_failure(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)
        manager = YAMLRuleManager()
        manager.load(path)

        path.write_text("rules: [unclosed")

        assert manager.reload() is False
        assert len(manager.rules) == 3

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)
        manager = YAMLRuleManager()
        manager.load(path)

        path.write_text("rules:\n  - id: new\n    name: New rule\n")

        assert manager.reload() is True
        assert [r.id for r in manager.rules] == ["new"]

    def test_watching_requires_load(self):
        with pytest.raises(RuntimeError):
            YAMLRuleManager().start_watching()


class TestYAMLRuleRepository:
    @pytest.mark.asyncio
    async def test_active_rules_sorted_by_priority(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)
        manager = YAMLRuleManager()
        manager.load(path)

        rules = await YAMLRuleRepository(manager).get_active_rules()

        assert [r.id for r in rules] == ["unanswered", "stale-open"]
