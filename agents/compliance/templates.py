"""Jinja2 rendering of alert titles, messages and task descriptions."""

from __future__ import annotations

import logging
from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateError

from .catalog import TriggerCatalog
from .dto import Issue, TriggerRule
from .errors import CatalogError
from .policies import field_value

UNASSIGNED_AGENT = "Unassigned agent"


class TemplateEngine:
    """Renders rule templates for Issues.

    Templates are compiled once per catalog; rendering uses StrictUndefined so
    a template referencing a missing variable fails loudly instead of
    producing partial text.
    """

    def __init__(self, catalog: TriggerCatalog):
        """Initialize and compile every rule template.

        Args:
            catalog: Trigger catalog

        Raises:
            CatalogError: If a template does not compile
        """
        self.logger = logging.getLogger(__name__)
        self.env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["datefmt"] = self._datefmt_filter

        self._titles: dict[str, Template] = {}
        self._messages: dict[str, Template] = {}
        for rule in catalog:
            try:
                self._titles[rule.id] = self.env.from_string(
                    rule.title_template or "{{ rule.alert_type }}"
                )
                self._messages[rule.id] = self.env.from_string(rule.message_template)
            except TemplateError as e:
                raise CatalogError(f"Invalid template in rule {rule.id}: {e}") from e

    def render(self, issue: Issue, rule: TriggerRule) -> tuple[str, str]:
        """Render (title, message) for an Issue.

        Raises:
            jinja2.TemplateError: If rendering fails
        """
        context = self.build_context(issue, rule)
        title = self._squash(self._titles[rule.id].render(**context))
        message = self._squash(self._messages[rule.id].render(**context))
        return title, message

    @staticmethod
    def build_context(issue: Issue, rule: TriggerRule) -> dict[str, Any]:
        entity = issue.entity if issue.entity is not None else {}
        return {
            "entity": entity,
            "agent": issue.agent,
            "agent_name": agent_display_name(issue.agent),
            "rule": rule,
            "severity": issue.severity.value,
            "bucket": issue.bucket,
            "days_delta": issue.days_delta,
            "date_value": issue.date_value.isoformat(),
            "category": issue.category,
        }

    @staticmethod
    def _squash(text: str) -> str:
        return " ".join(text.split())

    @staticmethod
    def _datefmt_filter(date_obj, format_str: str = "%Y-%m-%d") -> str:
        if hasattr(date_obj, "strftime"):
            return date_obj.strftime(format_str)
        return str(date_obj)


def agent_display_name(agent: Any) -> str:
    """Human-readable agent name, tolerant of partial agent records."""
    if agent is None:
        return UNASSIGNED_AGENT
    full_name = field_value(agent, "full_name")
    if full_name:
        return str(full_name)
    parts = [field_value(agent, "first_name"), field_value(agent, "last_name")]
    name = " ".join(str(p) for p in parts if p)
    return name or str(field_value(agent, "email") or UNASSIGNED_AGENT)
