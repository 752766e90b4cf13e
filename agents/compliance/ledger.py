"""Deduplication ledger for compliance dispatches.

The ledger tracks which ``(entity_id, rule_id, bucket)`` combinations already
produced a persisted Alert. Claims are atomic per key, which is what makes
overlapping runs safe without any run-level lock.

An entry whose follow-up Task exists but whose Alert could not be created
(alert cap reached or store failure) is kept with ``alert_owed`` set. It
blocks a duplicate Task, but the next run may re-claim it for the Alert.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import UTC, datetime
from typing import Iterable
from uuid import uuid4

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from .dto import Issue, LedgerDecision, LedgerEntry, LedgerKey
from .errors import LedgerConflictError
from .schema import LEDGER


class DeduplicationLedger(ABC):
    """Ledger interface plus the review logic shared by backends."""

    def review(self, issue: Issue) -> LedgerDecision:
        """Classify an Issue without modifying the ledger.

        Args:
            issue: Issue produced by the current scan

        Returns:
            ALREADY_HANDLED if an active entry with an Alert (or an in-flight
            claim) holds the exact key, ALERT_PENDING if the exact key only
            has its Task, ESCALATED if only less urgent active entries exist
            for the same entity/rule, NEW otherwise
        """
        entries = self.active_entries_for(issue.entity_id, issue.rule_id)
        for entry in entries:
            if entry.key.bucket == issue.bucket:
                if entry.alert_owed:
                    return LedgerDecision.ALERT_PENDING
                return LedgerDecision.ALREADY_HANDLED
        if any(entry.bucket_rank > issue.bucket_rank for entry in entries):
            return LedgerDecision.ESCALATED
        return LedgerDecision.NEW

    @abstractmethod
    def claim(
        self, issue: Issue, run_id: str | None = None, now: datetime | None = None
    ) -> LedgerEntry:
        """Atomically take the Issue's key for this run.

        A fresh key is inserted; an entry with ``alert_owed`` is taken over
        and returned with its existing ``task_id``.

        Raises:
            LedgerConflictError: If another active claim holds the key
        """

    @abstractmethod
    def attach(
        self, key: LedgerKey, alert_id: str | None = None, task_id: str | None = None
    ) -> None:
        """Record the ids of the Alert and/or Task created for a claim."""

    @abstractmethod
    def mark_alert_owed(self, key: LedgerKey, task_id: str | None = None) -> None:
        """Keep a claim whose Task exists but whose Alert was not created."""

    @abstractmethod
    def release(self, key: LedgerKey) -> None:
        """Drop an active claim that produced no dispatch."""

    @abstractmethod
    def resolve_cleared(
        self, pairs: Iterable[tuple[str, str]], now: datetime | None = None
    ) -> int:
        """Resolve active entries whose condition is no longer present.

        Args:
            pairs: (entity_id, rule_id) pairs evaluated without an Issue
            now: Resolution timestamp

        Returns:
            Number of entries resolved
        """

    @abstractmethod
    def get(self, key: LedgerKey) -> LedgerEntry | None:
        ...

    @abstractmethod
    def active_entries_for(self, entity_id: str, rule_id: str) -> list[LedgerEntry]:
        ...

    @abstractmethod
    def active_entries(self) -> list[LedgerEntry]:
        ...


class InMemoryLedger(DeduplicationLedger):
    """Single-instance ledger: a dict guarded by one mutex."""

    def __init__(self):
        self._entries: dict[LedgerKey, LedgerEntry] = {}
        self._lock = threading.Lock()

    def claim(
        self, issue: Issue, run_id: str | None = None, now: datetime | None = None
    ) -> LedgerEntry:
        key = issue.key
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None and existing.active:
                if not existing.alert_owed:
                    raise LedgerConflictError(key)
                existing.alert_owed = False
                existing.run_id = run_id
                return replace(existing)
            entry = LedgerEntry(
                key=key,
                entity_type=issue.entity_type.value,
                bucket_rank=issue.bucket_rank,
                run_id=run_id,
                created_at=now or datetime.now(UTC),
            )
            self._entries[key] = entry
            return replace(entry)

    def attach(
        self, key: LedgerKey, alert_id: str | None = None, task_id: str | None = None
    ) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                raise KeyError(f"No ledger entry for {key}")
            entry.alert_id = alert_id or entry.alert_id
            entry.task_id = task_id or entry.task_id

    def mark_alert_owed(self, key: LedgerKey, task_id: str | None = None) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                raise KeyError(f"No ledger entry for {key}")
            entry.task_id = task_id or entry.task_id
            entry.alert_owed = True

    def release(self, key: LedgerKey) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.active:
                del self._entries[key]

    def resolve_cleared(
        self, pairs: Iterable[tuple[str, str]], now: datetime | None = None
    ) -> int:
        cleared = set(pairs)
        resolved_at = now or datetime.now(UTC)
        resolved = 0
        with self._lock:
            for key, entry in self._entries.items():
                if entry.active and (key.entity_id, key.rule_id) in cleared:
                    entry.resolved_at = resolved_at
                    resolved += 1
        return resolved

    def get(self, key: LedgerKey) -> LedgerEntry | None:
        with self._lock:
            return self._entries.get(key)

    def active_entries_for(self, entity_id: str, rule_id: str) -> list[LedgerEntry]:
        with self._lock:
            return [
                entry
                for key, entry in self._entries.items()
                if entry.active and key.entity_id == entity_id and key.rule_id == rule_id
            ]

    def active_entries(self) -> list[LedgerEntry]:
        with self._lock:
            return [entry for entry in self._entries.values() if entry.active]


class SqlLedger(DeduplicationLedger):
    """Ledger backed by a table with a unique constraint on the key.

    A claim is an INSERT; losing the unique-constraint race surfaces as
    ``LedgerConflictError``. Resolved rows and rows with an owed Alert are
    re-claimed with a conditional UPDATE so that exactly one concurrent run
    can take them.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.logger = logging.getLogger(__name__)

    def claim(
        self, issue: Issue, run_id: str | None = None, now: datetime | None = None
    ) -> LedgerEntry:
        key = issue.key
        created_at = now or datetime.now(UTC)
        entry = LedgerEntry(
            key=key,
            entity_type=issue.entity_type.value,
            bucket_rank=issue.bucket_rank,
            run_id=run_id,
            created_at=created_at,
        )

        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(LEDGER).values(
                        id=str(uuid4()),
                        entity_type=entry.entity_type,
                        entity_id=key.entity_id,
                        rule_id=key.rule_id,
                        bucket=key.bucket,
                        bucket_rank=entry.bucket_rank,
                        run_id=run_id,
                        created_at=created_at,
                    )
                )
            return entry
        except IntegrityError:
            self.logger.debug("Ledger key exists, trying re-claim", extra={"key": str(key)})

        with self.engine.begin() as conn:
            upd = conn.execute(
                update(LEDGER)
                .where(self._key_clause(key))
                .where(LEDGER.c.resolved_at.is_not(None))
                .values(
                    resolved_at=None,
                    alert_id=None,
                    task_id=None,
                    alert_owed=False,
                    bucket_rank=entry.bucket_rank,
                    run_id=run_id,
                    created_at=created_at,
                )
            )
            if upd.rowcount == 1:
                return entry

            upd = conn.execute(
                update(LEDGER)
                .where(self._key_clause(key))
                .where(LEDGER.c.resolved_at.is_(None))
                .where(LEDGER.c.alert_owed.is_(True))
                .values(alert_owed=False, run_id=run_id)
            )
            if upd.rowcount == 0:
                raise LedgerConflictError(key)
            row = conn.execute(select(LEDGER).where(self._key_clause(key))).first()
        return self._row_to_entry(row)

    def attach(
        self, key: LedgerKey, alert_id: str | None = None, task_id: str | None = None
    ) -> None:
        values = {}
        if alert_id:
            values["alert_id"] = alert_id
        if task_id:
            values["task_id"] = task_id
        if not values:
            return
        self._update_entry(key, values)

    def mark_alert_owed(self, key: LedgerKey, task_id: str | None = None) -> None:
        values = {"alert_owed": True}
        if task_id:
            values["task_id"] = task_id
        self._update_entry(key, values)

    def _update_entry(self, key: LedgerKey, values: dict) -> None:
        with self.engine.begin() as conn:
            upd = conn.execute(update(LEDGER).where(self._key_clause(key)).values(**values))
            if upd.rowcount == 0:
                raise KeyError(f"No ledger entry for {key}")

    def release(self, key: LedgerKey) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                delete(LEDGER)
                .where(self._key_clause(key))
                .where(LEDGER.c.resolved_at.is_(None))
            )

    def resolve_cleared(
        self, pairs: Iterable[tuple[str, str]], now: datetime | None = None
    ) -> int:
        cleared = set(pairs)
        if not cleared:
            return 0
        resolved_at = now or datetime.now(UTC)
        resolved = 0
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(LEDGER.c.id, LEDGER.c.entity_id, LEDGER.c.rule_id).where(
                    LEDGER.c.resolved_at.is_(None)
                )
            ).fetchall()
            for row in rows:
                if (row.entity_id, row.rule_id) not in cleared:
                    continue
                upd = conn.execute(
                    update(LEDGER)
                    .where(LEDGER.c.id == row.id)
                    .where(LEDGER.c.resolved_at.is_(None))
                    .values(resolved_at=resolved_at)
                )
                resolved += upd.rowcount
        return resolved

    def get(self, key: LedgerKey) -> LedgerEntry | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(LEDGER).where(self._key_clause(key))).first()
        return self._row_to_entry(row) if row else None

    def active_entries_for(self, entity_id: str, rule_id: str) -> list[LedgerEntry]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(LEDGER)
                .where(LEDGER.c.entity_id == entity_id)
                .where(LEDGER.c.rule_id == rule_id)
                .where(LEDGER.c.resolved_at.is_(None))
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def active_entries(self) -> list[LedgerEntry]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(LEDGER).where(LEDGER.c.resolved_at.is_(None)).order_by(LEDGER.c.created_at)
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _key_clause(key: LedgerKey):
        return (
            (LEDGER.c.entity_id == key.entity_id)
            & (LEDGER.c.rule_id == key.rule_id)
            & (LEDGER.c.bucket == key.bucket)
        )

    @staticmethod
    def _row_to_entry(row) -> LedgerEntry:
        return LedgerEntry(
            key=LedgerKey(row.entity_id, row.rule_id, row.bucket),
            entity_type=row.entity_type,
            bucket_rank=row.bucket_rank,
            alert_id=row.alert_id,
            task_id=row.task_id,
            alert_owed=bool(row.alert_owed),
            run_id=row.run_id,
            created_at=row.created_at,
            resolved_at=row.resolved_at,
        )
