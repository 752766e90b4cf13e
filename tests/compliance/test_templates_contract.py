"""Template rendering contract: every default rule renders for sparse records."""

import pytest
from jinja2 import UndefinedError

from agents.compliance.catalog import TriggerCatalog
from agents.compliance.dto import EntityType
from agents.compliance.errors import CatalogError
from agents.compliance.policies import ConditionEvaluator
from agents.compliance.templates import TemplateEngine, agent_display_name
from tests.compliance.factories import days_from_today, make_agent


def _rule(**overrides):
    data = {
        "id": "task_overdue",
        "entity_type": "task",
        "date_field": "due_date",
        "direction": "after",
        "thresholds": [{"days": 1, "severity": "warning"}],
        "message_template": "Task {{ entity.id }} overdue {{ days_delta }} days",
    }
    data.update(overrides)
    return data


# Minimal records: id, date field and nothing else
SPARSE_RECORDS = {
    EntityType.LICENSE: {"id": "x", "expiration_date": days_from_today(-3)},
    EntityType.CARRIER_APPOINTMENT: {"id": "x", "expiration_date": days_from_today(5)},
    EntityType.CLIENT: {"id": "x", "last_contact_date": days_from_today(-100)},
    EntityType.CLIENT_ONBOARDING_TASK: {"id": "x", "due_date": days_from_today(-2)},
    EntityType.AGENT: {"id": "x", "certification_expiration_date": days_from_today(0)},
    EntityType.TASK: {"id": "x", "due_date": days_from_today(-9)},
}


class TestDefaultTemplates:
    @pytest.mark.parametrize("entity_type", list(SPARSE_RECORDS))
    def test_sparse_records_render(self, catalog, config, now, entity_type):
        engine = TemplateEngine(catalog)
        evaluator = ConditionEvaluator(config)

        for rule in catalog.rules_for(entity_type):
            issue = evaluator.evaluate(SPARSE_RECORDS[entity_type], rule, now)
            title, message = engine.render(issue, rule)

            assert title
            assert message
            assert "\n" not in title

    def test_expired_license_wording(self, catalog, config, now):
        engine = TemplateEngine(catalog)
        rule = catalog.get("license_expiration")
        issue = ConditionEvaluator(config).evaluate(
            {"id": "lic", "state": "TX", "expiration_date": days_from_today(-3)}, rule, now
        )

        title, message = engine.render(issue, rule)

        assert title == "TX license expired 3 days ago - Unassigned agent"
        assert "expired on 2026-10-15" in message


class TestTemplateErrors:
    def test_syntax_error_is_catalog_error(self):
        catalog = TriggerCatalog.from_dict({"rules": [_rule(message_template="{% if %}")]})

        with pytest.raises(CatalogError):
            TemplateEngine(catalog)

    def test_undefined_variable_fails_loudly(self, config, now):
        catalog = TriggerCatalog.from_dict(
            {"rules": [_rule(message_template="Owner: {{ owner_name }}")]}
        )
        engine = TemplateEngine(catalog)
        rule = catalog.get("task_overdue")
        issue = ConditionEvaluator(config).evaluate(
            {"id": "t", "due_date": days_from_today(-2)}, rule, now
        )

        with pytest.raises(UndefinedError):
            engine.render(issue, rule)

    def test_default_title(self, config, now):
        catalog = TriggerCatalog.from_dict({"rules": [_rule()]})
        engine = TemplateEngine(catalog)
        rule = catalog.get("task_overdue")
        issue = ConditionEvaluator(config).evaluate(
            {"id": "t", "due_date": days_from_today(-2)}, rule, now
        )

        assert engine.render(issue, rule) == ("task_overdue", "Task t overdue 2 days")


class TestAgentDisplayName:
    @pytest.mark.parametrize(
        "agent,expected",
        [
            (make_agent(full_name="Jane Doe"), "Jane Doe"),
            ({"id": "a", "first_name": "Sam", "last_name": "Lee"}, "Sam Lee"),
            ({"id": "a", "email": "sam@agency.example"}, "sam@agency.example"),
            ({"id": "a"}, "Unassigned agent"),
            (None, "Unassigned agent"),
        ],
    )
    def test_fallbacks(self, agent, expected):
        assert agent_display_name(agent) == expected
