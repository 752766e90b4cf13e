"""Optional narrative enrichment layered on top of a finished run.

Enrichers only ever add human-readable insight lines to a summary. They run
after dispatch, and their failures are logged without touching any counter.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Protocol

from .dto import RunSummary, Severity

logger = logging.getLogger(__name__)


class NarrativeEnricher(Protocol):
    def enrich(self, summary: RunSummary) -> list[str]:
        ...


class RuleBasedEnricher:
    """Deterministic insights derived from the ordered issue list."""

    def __init__(self, max_insights: int = 5):
        self.max_insights = max_insights

    def enrich(self, summary: RunSummary) -> list[str]:
        insights: list[str] = []
        if not summary.issues:
            return insights

        critical = [i for i in summary.issues if i.severity is Severity.CRITICAL]
        if critical:
            agents = {i.agent_id for i in critical if i.agent_id}
            insights.append(
                f"{len(critical)} critical issues affect {len(agents)} agents"
            )

        by_category = Counter(issue.category for issue in summary.issues)
        category, count = by_category.most_common(1)[0]
        insights.append(f"Most affected area: {category} ({count} issues)")

        by_agent = Counter(issue.agent_id for issue in summary.issues if issue.agent_id)
        if by_agent:
            agent_id, count = by_agent.most_common(1)[0]
            if count > 1:
                insights.append(f"Agent {agent_id} has {count} open compliance issues")

        if summary.deferred:
            insights.append(f"{summary.deferred} issues deferred to a later run by per-run caps")

        return insights[: self.max_insights]


def apply_enrichment(enricher: NarrativeEnricher | None, summary: RunSummary) -> None:
    """Attach enricher output to the summary, never failing the run."""
    if enricher is None:
        return
    try:
        summary.insights.extend(enricher.enrich(summary))
    except Exception as e:
        logger.warning(
            "Narrative enrichment failed",
            extra={"run_id": summary.run_id, "error": str(e)},
        )
