"""Append-only alert and task stores."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from .dto import Alert, Task
from .schema import ALERTS, TASKS


class InMemoryAlertStore:
    """Alert store kept in process memory."""

    def __init__(self):
        self._alerts: dict[str, Alert] = {}
        self._lock = threading.Lock()

    def create(self, alert: Alert) -> Alert:
        with self._lock:
            if alert.id in self._alerts:
                raise ValueError(f"Alert {alert.id} already exists")
            self._alerts[alert.id] = alert
        return alert

    def resolve(self, alert_id: str, now: datetime | None = None) -> None:
        """Mark an alert resolved (human acknowledgement)."""
        with self._lock:
            self._alerts[alert_id].resolved_at = now or datetime.now(UTC)

    def list(self, include_resolved: bool = True) -> list[Alert]:
        with self._lock:
            return [a for a in self._alerts.values() if include_resolved or not a.is_resolved]


class InMemoryTaskStore:
    """Task store kept in process memory."""

    def __init__(self):
        self._tasks: dict[str, Task] = {}
        self._lock = threading.Lock()

    def create(self, task: Task) -> Task:
        with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"Task {task.id} already exists")
            self._tasks[task.id] = task
        return task

    def list(self) -> list[Task]:
        with self._lock:
            return list(self._tasks.values())


class SqlAlertStore:
    """Alert store persisted through SQLAlchemy Core."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, alert: Alert) -> Alert:
        with self.engine.begin() as conn:
            conn.execute(
                insert(ALERTS).values(
                    id=alert.id,
                    related_entity_type=alert.related_entity_type,
                    related_entity_id=alert.related_entity_id,
                    alert_type=alert.alert_type,
                    category=alert.category,
                    severity=alert.severity,
                    title=alert.title,
                    message=alert.message,
                    due_date=alert.due_date,
                    agent_id=alert.agent_id,
                    rule_id=alert.rule_id,
                    bucket=alert.bucket,
                    created_at=alert.created_at,
                    resolved_at=alert.resolved_at,
                )
            )
        return alert

    def resolve(self, alert_id: str, now: datetime | None = None) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(ALERTS)
                .where(ALERTS.c.id == alert_id)
                .values(resolved_at=now or datetime.now(UTC))
            )

    def list(self, include_resolved: bool = True) -> list[Alert]:
        query = select(ALERTS).order_by(ALERTS.c.created_at)
        if not include_resolved:
            query = query.where(ALERTS.c.resolved_at.is_(None))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            Alert(
                id=row.id,
                related_entity_type=row.related_entity_type,
                related_entity_id=row.related_entity_id,
                alert_type=row.alert_type,
                category=row.category,
                severity=row.severity,
                title=row.title,
                message=row.message,
                due_date=row.due_date,
                agent_id=row.agent_id,
                rule_id=row.rule_id,
                bucket=row.bucket,
                created_at=row.created_at,
                resolved_at=row.resolved_at,
            )
            for row in rows
        ]


class SqlTaskStore:
    """Task store persisted through SQLAlchemy Core."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, task: Task) -> Task:
        with self.engine.begin() as conn:
            conn.execute(
                insert(TASKS).values(
                    id=task.id,
                    title=task.title,
                    description=task.description,
                    priority=task.priority,
                    due_date=task.due_date,
                    related_entity_type=task.related_entity_type,
                    related_entity_id=task.related_entity_id,
                    auto_generated=task.auto_generated,
                    status=task.status,
                    agent_id=task.agent_id,
                    rule_id=task.rule_id,
                    created_at=task.created_at,
                )
            )
        return task

    def list(self) -> list[Task]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(TASKS).order_by(TASKS.c.created_at)).fetchall()
        return [
            Task(
                id=row.id,
                title=row.title,
                description=row.description,
                priority=row.priority,
                due_date=row.due_date,
                related_entity_type=row.related_entity_type,
                related_entity_id=row.related_entity_id,
                auto_generated=row.auto_generated,
                status=row.status,
                agent_id=row.agent_id,
                rule_id=row.rule_id,
                created_at=row.created_at,
            )
            for row in rows
        ]
