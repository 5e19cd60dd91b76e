"""
Partner Hub
Tests: escalation rule store.
"""

import pytest

from partnerhub.core.exceptions import NotFoundError, ValidationError
from partnerhub.models import db
from partnerhub.models.escalation import EscalationLog, EscalationRule
from partnerhub.services.escalation_rule_service import DEFAULT_RULES, EscalationRuleService


class TestCreateAndValidate:

    def test_create_rule(self):
        rule = EscalationRuleService.create_rule({
            "name": "  Late  ", "trigger_type": "days_after_due", "trigger_value": 2,
            "action": "notify_stakeholders",
        })
        assert rule.id is not None
        assert rule.name == "Late"
        assert rule.status == "active"

    def test_missing_fields(self):
        with pytest.raises(ValidationError) as exc:
            EscalationRuleService.create_rule({"name": "x"})
        assert set(exc.value.details) >= {"trigger_type", "trigger_value", "action"}

    @pytest.mark.parametrize("value", [0, -1, "3", 2.5, True])
    def test_trigger_value_must_be_positive_int(self, value):
        with pytest.raises(ValidationError) as exc:
            EscalationRuleService.create_rule({
                "name": "x", "trigger_type": "days_after_due", "trigger_value": value,
                "action": "notify_owner",
            })
        assert "trigger_value" in exc.value.details

    def test_unknown_trigger_and_action(self):
        with pytest.raises(ValidationError) as exc:
            EscalationRuleService.create_rule({
                "name": "x", "trigger_type": "weekly", "trigger_value": 1, "action": "page_ceo",
            })
        assert {"trigger_type", "action"} <= set(exc.value.details)

    def test_unknown_project(self):
        with pytest.raises(ValidationError):
            EscalationRuleService.create_rule({
                "name": "x", "trigger_type": "days_after_due", "trigger_value": 1,
                "action": "notify_owner", "project_id": 999,
            })


class TestQueries:

    def test_list_ordered_by_priority_then_id(self, make_rule):
        c = make_rule(priority=2, name="c")
        a = make_rule(priority=0, name="a")
        b = make_rule(priority=2, name="b")
        assert [r.id for r in EscalationRuleService.list_rules()] == [a.id, c.id, b.id]

    def test_active_rules_skip_inactive(self, make_rule):
        make_rule(name="on")
        make_rule(name="off", status="inactive")
        assert [r.name for r in EscalationRuleService.active_rules()] == ["on"]

    def test_project_filter(self, make_rule, project):
        glob = make_rule(name="global")
        bound = make_rule(name="bound", project_id=project.id)
        ids = {r.id for r in EscalationRuleService.list_rules(project_id=project.id)}
        assert ids == {glob.id, bound.id}
        only = EscalationRuleService.list_rules(project_id=project.id, include_global=False)
        assert [r.id for r in only] == [bound.id]

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            EscalationRuleService.get_rule(404)


class TestMutations:

    def test_partial_update(self, make_rule):
        rule = make_rule(trigger_value=1)
        EscalationRuleService.update_rule(rule.id, {"trigger_value": 4})
        refreshed = EscalationRuleService.get_rule(rule.id)
        assert refreshed.trigger_value == 4
        assert refreshed.action == "notify_owner"

    def test_toggle(self, make_rule):
        rule = make_rule()
        assert EscalationRuleService.toggle_status(rule.id).status == "inactive"
        assert EscalationRuleService.toggle_status(rule.id).status == "active"

    def test_delete_keeps_log_snapshot(self, make_rule, make_task):
        rule = make_rule(name="doomed")
        task = make_task()
        db.session.add(EscalationLog(
            rule_id=rule.id, rule_name=rule.name, task_id=task.id, action=rule.action,
            status="executed", occurrence_key="k", claim_key="k",
        ))
        db.session.commit()

        EscalationRuleService.delete_rule(rule.id)

        assert db.session.get(EscalationRule, rule.id) is None
        log = EscalationLog.query.one()
        assert log.rule_id is None
        assert log.rule_name == "doomed"


class TestSeed:

    def test_seed_defaults_once(self):
        created = EscalationRuleService.seed_default_rules()
        assert len(created) == len(DEFAULT_RULES) == 7
        assert EscalationRuleService.seed_default_rules() == []
        assert EscalationRule.query.count() == 7

    def test_seed_order(self):
        EscalationRuleService.seed_default_rules()
        priorities = [r.priority for r in EscalationRuleService.active_rules()]
        assert priorities == sorted(priorities)
