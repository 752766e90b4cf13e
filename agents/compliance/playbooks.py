"""Compliance automation playbook and run entry point.

A run reads every tracked collection, scans it against the trigger catalog,
reviews each Issue against the deduplication ledger and dispatches the
approved ones. ``run_automation_scan`` is the single callable used by the UI
action, the HTTP API and the cron CLI.
"""

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, Callable, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from backend.core.config import settings
from backend.core.observability.logging import set_run_id
from backend.core.observability.metrics import increment_scan_runs, record_scan_duration

from .catalog import TriggerCatalog, load_catalog
from .clients import EntitySource, ReadApiClient
from .config import AutomationConfig
from .dispatcher import ActionDispatcher, AlertStore, TaskStore
from .dto import EntityType, Issue, LedgerDecision, RunSummary
from .enrichment import NarrativeEnricher, RuleBasedEnricher, apply_enrichment
from .errors import CollectionReadError
from .ledger import DeduplicationLedger, InMemoryLedger, SqlLedger
from .notifiers import Notifier, get_notifier
from .policies import ConditionEvaluator
from .scanner import ComplianceScanner
from .stores import InMemoryAlertStore, InMemoryTaskStore, SqlAlertStore, SqlTaskStore
from .templates import TemplateEngine


@lru_cache(maxsize=1)
def _get_engine() -> Engine:
    """Create (and cache) the SQLAlchemy engine for ledger and stores."""
    return sa.create_engine(settings.database_url, future=True)


@dataclass
class ScanOptions:
    """Per-run options."""

    dry_run: bool = False
    include_issues: bool = False
    now: Optional[datetime] = None
    time_budget_seconds: Optional[float] = None
    run_id: Optional[str] = None


@dataclass
class AutomationContext:
    """Collaborators for automation runs."""

    config: Optional[AutomationConfig] = None
    catalog: Optional[TriggerCatalog] = None
    source: Optional[EntitySource] = None
    ledger: Optional[DeduplicationLedger] = None
    alert_store: Optional[AlertStore] = None
    task_store: Optional[TaskStore] = None
    notifier: Optional[Notifier] = None
    enricher: Optional[NarrativeEnricher] = None
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self):
        """Initialize dependencies after creation."""
        if self.config is None:
            self.config = AutomationConfig.from_env()

        if self.catalog is None:
            self.catalog = load_catalog(self.config.catalog_path)

        if self.source is None:
            self.source = ReadApiClient(self.config)

        if self.ledger is None or self.alert_store is None or self.task_store is None:
            self._init_state_backend()

        if self.notifier is None:
            self.notifier = get_notifier()

        if self.enricher is None:
            self.enricher = RuleBasedEnricher()

        self.evaluator = ConditionEvaluator(self.config)
        self.scanner = ComplianceScanner(self.catalog, self.evaluator)
        self.dispatcher = ActionDispatcher(
            config=self.config,
            catalog=self.catalog,
            ledger=self.ledger,
            alert_store=self.alert_store,
            task_store=self.task_store,
            notifier=self.notifier,
            template_engine=TemplateEngine(self.catalog),
            clock=self.clock,
        )

    def _init_state_backend(self) -> None:
        if settings.AUTOMATION_STORE_BACKEND == "sql":
            engine = _get_engine()
            self.ledger = self.ledger or SqlLedger(engine)
            self.alert_store = self.alert_store or SqlAlertStore(engine)
            self.task_store = self.task_store or SqlTaskStore(engine)
        else:
            self.ledger = self.ledger or InMemoryLedger()
            self.alert_store = self.alert_store or InMemoryAlertStore()
            self.task_store = self.task_store or InMemoryTaskStore()


class AutomationPlaybook:
    """Scan -> dedup -> dispatch orchestrator."""

    def __init__(self, context: AutomationContext):
        """Initialize playbook.

        Args:
            context: Automation context
        """
        self.context = context
        self.config = context.config
        self.logger = logging.getLogger(__name__)

    def run_once(self, options: ScanOptions | None = None) -> RunSummary:
        """Run one automation pass.

        Args:
            options: Run options

        Returns:
            Run summary; partial failures are counted, never raised

        Raises:
            CollectionReadError: If an entity collection cannot be read
        """
        options = options or ScanOptions()
        ctx = self.context
        started = ctx.clock()
        now = options.now or datetime.now(UTC)
        today = ctx.evaluator.local_date(now)

        summary = RunSummary(
            run_id=options.run_id or str(uuid4()),
            timestamp=now,
            dry_run=options.dry_run,
        )
        set_run_id(summary.run_id)
        increment_scan_runs(options.dry_run)

        budget = (
            options.time_budget_seconds
            if options.time_budget_seconds is not None
            else self.config.time_budget_seconds
        )
        deadline = started + budget if budget and budget > 0 else None

        try:
            collections = self._read_collections(summary)
            report = ctx.scanner.scan(collections, now)

            summary.issues_by_category = dict(report.issues_by_category)
            summary.issues_by_severity = dict(report.issues_by_severity)
            summary.evaluation_errors = report.evaluation_errors
            summary.issues = report.issues[: self.config.max_display_issues]

            reviewed = self._review(report.issues, summary)
            summary.approved = sum(1 for _, decision in reviewed if decision.approved)

            if options.dry_run:
                summary.already_handled = len(reviewed) - summary.approved
                summary.notification_due = ctx.dispatcher.notification_due(summary)
            else:
                ctx.dispatcher.dispatch(reviewed, summary, now, today, deadline)
                self._resolve_cleared(report.cleared_pairs, summary, now)

            apply_enrichment(ctx.enricher, summary)
        finally:
            summary.processing_time_seconds = ctx.clock() - started
            record_scan_duration(summary.processing_time_seconds * 1000.0)
            set_run_id(None)

        if not options.include_issues:
            summary.issues = []

        self.logger.info(
            "Automation run finished",
            extra={
                "run_id": summary.run_id,
                "dry_run": summary.dry_run,
                "issues_found": summary.issues_found,
                "alerts_created": summary.alerts_created,
                "tasks_created": summary.tasks_created,
                "errors_count": summary.errors_count,
                "timed_out": summary.timed_out,
            },
        )
        return summary

    def _read_collections(self, summary: RunSummary) -> dict[EntityType, list[Any]]:
        """Read every collection the catalog needs plus agents for lookups."""
        needed = set(self.context.catalog.entity_types) | {EntityType.AGENT}
        collections: dict[EntityType, list[Any]] = {}
        for entity_type in EntityType:
            if entity_type not in needed:
                continue
            try:
                collections[entity_type] = list(self.context.source.list_entities(entity_type))
            except CollectionReadError:
                self.logger.error(
                    "Aborting run, collection unreadable",
                    extra={"run_id": summary.run_id, "entity_type": entity_type.value},
                )
                raise
            except Exception as e:
                self.logger.error(
                    "Aborting run, collection unreadable",
                    extra={"run_id": summary.run_id, "entity_type": entity_type.value},
                )
                raise CollectionReadError(entity_type.value, e) from e
        return collections

    def _review(
        self, issues: list[Issue], summary: RunSummary
    ) -> list[tuple[Issue, LedgerDecision]]:
        reviewed = []
        for issue in issues:
            try:
                decision = self.context.ledger.review(issue)
            except Exception as e:
                summary.record_error(f"ledger review failed for {issue.key}: {e}")
                self.logger.error(
                    "Ledger review failed", extra={"key": str(issue.key), "error": str(e)}
                )
                continue
            reviewed.append((issue, decision))
        return reviewed

    def _resolve_cleared(self, pairs, summary: RunSummary, now: datetime) -> None:
        try:
            summary.cleared = self.context.ledger.resolve_cleared(pairs, now)
        except Exception as e:
            summary.record_error(f"ledger resolve failed: {e}")
            self.logger.error("Ledger resolve failed", extra={"error": str(e)})


def run_automation_scan(
    options: ScanOptions | None = None, context: AutomationContext | None = None
) -> RunSummary:
    """Run one compliance automation scan.

    Args:
        options: Run options (dry_run skips dispatch and ledger writes)
        context: Collaborators; built from environment settings if omitted

    Returns:
        Run summary
    """
    return AutomationPlaybook(context or AutomationContext()).run_once(options)
