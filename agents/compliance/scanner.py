"""Scan orchestration: entity collections x applicable rules -> ordered Issues."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from backend.core.observability.metrics import increment_evaluation_errors, increment_issues_found

from .catalog import TriggerCatalog
from .dto import EntityType, Issue, Severity
from .errors import EvaluationError
from .policies import ConditionEvaluator, field_value


@dataclass
class ScanReport:
    """Result of one scan, before any ledger or dispatch decisions."""

    issues: list[Issue] = field(default_factory=list)
    issues_by_category: dict[str, int] = field(default_factory=dict)
    issues_by_severity: dict[str, int] = field(default_factory=dict)
    evaluation_errors: int = 0
    entities_scanned: int = 0
    # (entity_id, rule_id) pairs evaluated without error
    evaluated_pairs: set[tuple[str, str]] = field(default_factory=set)

    @property
    def flagged_pairs(self) -> set[tuple[str, str]]:
        return {(issue.entity_id, issue.rule_id) for issue in self.issues}

    @property
    def cleared_pairs(self) -> set[tuple[str, str]]:
        """Pairs whose condition is currently absent."""
        return self.evaluated_pairs - self.flagged_pairs


class ComplianceScanner:
    """Runs every applicable rule over every entity and orders the results.

    Rules are indexed by entity type once per scan, so work is linear in
    entities x rules-for-that-type.
    """

    def __init__(self, catalog: TriggerCatalog, evaluator: ConditionEvaluator):
        self.catalog = catalog
        self.evaluator = evaluator
        self.logger = logging.getLogger(__name__)

    def scan(
        self, collections: Mapping[EntityType, Iterable[Any]], now: datetime
    ) -> ScanReport:
        """Evaluate all collections against the catalog.

        Args:
            collections: Records per entity type
            now: Reference timestamp shared by every evaluation

        Returns:
            Scan report with issues sorted by (severity desc, urgency asc, entity id)
        """
        report = ScanReport(
            issues_by_category={category: 0 for category in self.catalog.categories},
            issues_by_severity={severity.value: 0 for severity in Severity},
        )
        agents = self._index_agents(collections.get(EntityType.AGENT, ()))

        for entity_type in self.catalog.entity_types:
            rules = self.catalog.rules_for(entity_type)
            for entity in collections.get(entity_type, ()):
                report.entities_scanned += 1
                for rule in rules:
                    try:
                        issue = self.evaluator.evaluate(entity, rule, now)
                    except EvaluationError as e:
                        report.evaluation_errors += 1
                        increment_evaluation_errors(rule.id)
                        self.logger.warning(
                            "Skipping unevaluable entity",
                            extra={
                                "rule_id": rule.id,
                                "entity_id": e.entity_id,
                                "error": e.detail,
                            },
                        )
                        continue

                    report.evaluated_pairs.add((str(field_value(entity, "id")), rule.id))
                    if issue is None:
                        continue

                    if issue.agent_id is not None:
                        issue = replace(issue, agent=agents.get(issue.agent_id))
                    report.issues.append(issue)
                    report.issues_by_category[issue.category] = (
                        report.issues_by_category.get(issue.category, 0) + 1
                    )
                    report.issues_by_severity[issue.severity.value] += 1

        report.issues.sort(key=lambda issue: issue.sort_key)

        for category, count in report.issues_by_category.items():
            if count:
                increment_issues_found(category, count)

        self.logger.info(
            "Scan completed",
            extra={
                "entities_scanned": report.entities_scanned,
                "issues_found": len(report.issues),
                "evaluation_errors": report.evaluation_errors,
            },
        )
        return report

    @staticmethod
    def _index_agents(agents: Iterable[Any]) -> dict[str, Any]:
        index = {}
        for agent in agents:
            agent_id = field_value(agent, "id")
            if agent_id is not None:
                index[str(agent_id)] = agent
        return index
