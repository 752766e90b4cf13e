"""Action dispatch: approved Issues -> Alerts, Tasks and one admin notification."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable, Protocol, Sequence

from backend.core.observability.metrics import (
    increment_alerts_created,
    increment_dispatch_failures,
    increment_ledger_conflicts,
    increment_notifications_sent,
    increment_tasks_created,
)

from .catalog import TriggerCatalog
from .config import AutomationConfig
from .dto import Alert, Direction, Issue, LedgerDecision, RunSummary, Task, TriggerRule
from .errors import DispatchError, LedgerConflictError
from .ledger import DeduplicationLedger
from .notifiers import Notifier
from .templates import TemplateEngine


class AlertStore(Protocol):
    def create(self, alert: Alert) -> Alert:
        ...

    def list(self, include_resolved: bool = True) -> list[Alert]:
        ...


class TaskStore(Protocol):
    def create(self, task: Task) -> Task:
        ...

    def list(self) -> list[Task]:
        ...


class ActionDispatcher:
    """Turns ledger-approved Issues into persisted side effects.

    Issues are handled strictly in the order given (the scan's urgency
    order), so per-run caps always keep the most urgent conditions. Every
    collaborator call is isolated: a failure is logged and counted and the
    remaining dispatches continue.
    """

    def __init__(
        self,
        config: AutomationConfig,
        catalog: TriggerCatalog,
        ledger: DeduplicationLedger,
        alert_store: AlertStore,
        task_store: TaskStore,
        notifier: Notifier,
        template_engine: TemplateEngine | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.catalog = catalog
        self.ledger = ledger
        self.alert_store = alert_store
        self.task_store = task_store
        self.notifier = notifier
        self.templates = template_engine or TemplateEngine(catalog)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def dispatch(
        self,
        reviewed: Sequence[tuple[Issue, LedgerDecision]],
        summary: RunSummary,
        now: datetime,
        today: date,
        deadline: float | None = None,
    ) -> RunSummary:
        """Dispatch reviewed Issues and fill the summary.

        Args:
            reviewed: Issues in urgency order with their ledger decisions
            summary: Summary of the current run (scan counts already set)
            now: Run timestamp
            today: Run calendar date in the configured timezone
            deadline: Clock value after which no further dispatch starts

        Returns:
            The filled summary
        """
        for index, (issue, decision) in enumerate(reviewed):
            if deadline is not None and self.clock() >= deadline:
                self._stop_on_deadline(reviewed[index:], summary)
                break

            if not decision.approved:
                summary.already_handled += 1
                continue

            self._dispatch_issue(issue, decision, summary, now, today)

        self._notify_if_due(summary)
        return summary

    def notification_due(self, summary: RunSummary) -> bool:
        """Whether the run's issue counts cross a fleet-wide threshold."""
        critical = summary.issues_by_severity.get("critical", 0)
        warning = summary.issues_by_severity.get("warning", 0)
        return (
            critical >= self.config.critical_notification_threshold
            or warning >= self.config.warning_notification_threshold
        )

    def _stop_on_deadline(
        self, remaining: Sequence[tuple[Issue, LedgerDecision]], summary: RunSummary
    ) -> None:
        pending = sum(1 for _, decision in remaining if decision.approved)
        summary.deferred += pending
        summary.already_handled += len(remaining) - pending
        summary.timed_out = True
        self.logger.warning(
            "Time budget exhausted, deferring remaining dispatches",
            extra={"run_id": summary.run_id, "deferred": pending},
        )

    def _dispatch_issue(
        self,
        issue: Issue,
        decision: LedgerDecision,
        summary: RunSummary,
        now: datetime,
        today: date,
    ) -> None:
        rule = self.catalog.get(issue.rule_id)
        category_count = summary.alerts_created_by_category.get(issue.category, 0)
        wants_alert = category_count < self.config.max_alerts_per_category
        wants_task = (
            rule.create_task
            and decision is not LedgerDecision.ALERT_PENDING
            and summary.tasks_created < self.config.max_tasks_per_run
        )

        if not (wants_alert or wants_task):
            summary.deferred += 1
            return

        try:
            entry = self.ledger.claim(issue, run_id=summary.run_id, now=now)
        except LedgerConflictError:
            increment_ledger_conflicts()
            summary.already_handled += 1
            self.logger.info("Ledger claim lost, already handled", extra={"key": str(issue.key)})
            return
        except Exception as e:
            self._record_failure("ledger", issue, e, summary)
            return

        # Re-claimed bucket whose Task an earlier run already created
        if entry.task_id:
            wants_task = False

        try:
            title, message = self.templates.render(issue, rule)
        except Exception as e:
            self._record_failure("render", issue, e, summary)
            self._release(issue, summary, task_id=entry.task_id)
            return

        alert = self._create_alert(issue, rule, title, message, summary, today) if wants_alert else None
        task = self._create_task(issue, title, message, summary, today) if wants_task else None
        task_id = task.id if task else entry.task_id

        if alert is None and task_id is None:
            self._release(issue, summary)
            return

        if decision is LedgerDecision.ESCALATED:
            summary.escalations += 1

        try:
            if alert is None:
                # Alert capped or failed: a later run re-claims this bucket for it
                self.ledger.mark_alert_owed(entry.key, task_id=task_id)
            else:
                self.ledger.attach(entry.key, alert_id=alert.id, task_id=task_id)
        except Exception as e:
            self._record_failure("ledger", issue, e, summary)

    def _create_alert(
        self,
        issue: Issue,
        rule: TriggerRule,
        title: str,
        message: str,
        summary: RunSummary,
        today: date,
    ) -> Alert | None:
        if issue.direction is Direction.BEFORE:
            due_date = issue.date_value
        else:
            due_date = today + timedelta(days=self.config.get_lead_days(issue.severity.value))

        alert = Alert(
            related_entity_type=issue.entity_type.value,
            related_entity_id=issue.entity_id,
            alert_type=rule.alert_type,
            category=issue.category,
            severity=issue.severity.value,
            title=title,
            message=message,
            due_date=due_date,
            agent_id=issue.agent_id,
            rule_id=issue.rule_id,
            bucket=issue.bucket,
        )
        try:
            created = self.alert_store.create(alert)
        except Exception as e:
            self._record_failure("alert", issue, e, summary)
            return None

        summary.alerts_created_by_category[issue.category] = (
            summary.alerts_created_by_category.get(issue.category, 0) + 1
        )
        increment_alerts_created(issue.category)
        return created or alert

    def _create_task(
        self, issue: Issue, title: str, message: str, summary: RunSummary, today: date
    ) -> Task | None:
        severity = issue.severity.value
        task = Task(
            title=title,
            description=message,
            priority=self.config.get_priority(severity),
            due_date=today + timedelta(days=self.config.get_lead_days(severity)),
            related_entity_id=issue.entity_id,
            related_entity_type=issue.entity_type.value,
            auto_generated=True,
            status="pending",
            agent_id=issue.agent_id,
            rule_id=issue.rule_id,
        )
        try:
            created = self.task_store.create(task)
        except Exception as e:
            self._record_failure("task", issue, e, summary)
            return None

        summary.tasks_created += 1
        increment_tasks_created()
        return created or task

    def _notify_if_due(self, summary: RunSummary) -> None:
        if summary.critical_notification_sent or not self.notification_due(summary):
            return

        summary.notification_due = True
        try:
            self.notifier.send_admin_notification(summary)
        except Exception as e:
            error = DispatchError("notify", f"run {summary.run_id}", e)
            increment_dispatch_failures("notify")
            summary.record_error(str(error))
            self.logger.error(str(error), extra={"run_id": summary.run_id})
            return

        summary.critical_notification_sent = True
        increment_notifications_sent()

    def _release(
        self, issue: Issue, summary: RunSummary, task_id: str | None = None
    ) -> None:
        """Free the claim, or keep it as alert-owed when a Task already exists."""
        try:
            if task_id:
                self.ledger.mark_alert_owed(issue.key, task_id=task_id)
            else:
                self.ledger.release(issue.key)
        except Exception as e:
            self._record_failure("ledger", issue, e, summary)

    def _record_failure(
        self, kind: str, issue: Issue, cause: Any, summary: RunSummary
    ) -> None:
        error = DispatchError(kind, str(issue.key), cause)
        increment_dispatch_failures(kind)
        summary.record_error(str(error))
        self.logger.error(
            str(error),
            extra={
                "run_id": summary.run_id,
                "entity_id": issue.entity_id,
                "rule_id": issue.rule_id,
                "bucket": issue.bucket,
                "dispatch_kind": kind,
            },
        )
