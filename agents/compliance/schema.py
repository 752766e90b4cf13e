"""SQLAlchemy Core table definitions for compliance automation state."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import MetaData, Table
from sqlalchemy.engine import Engine

_METADATA = MetaData()


def get_ledger_table(metadata: MetaData) -> Table:
    """Return the dedup ledger table definition for the given metadata."""
    return sa.Table(
        "compliance_ledger",
        metadata,
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(128), nullable=False),
        sa.Column("rule_id", sa.String(128), nullable=False),
        sa.Column("bucket", sa.String(16), nullable=False),
        sa.Column("bucket_rank", sa.Integer(), nullable=False),
        sa.Column("alert_id", sa.String(36)),
        sa.Column("task_id", sa.String(36)),
        sa.Column("alert_owed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("run_id", sa.String(36)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("entity_id", "rule_id", "bucket", name="uq_compliance_ledger_key"),
        sa.Index("ix_compliance_ledger_entity_rule", "entity_id", "rule_id"),
        extend_existing=True,
    )


def get_alerts_table(metadata: MetaData) -> Table:
    """Return the alerts table definition for the given metadata."""
    return sa.Table(
        "compliance_alerts",
        metadata,
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("related_entity_type", sa.String(64), nullable=False),
        sa.Column("related_entity_id", sa.String(128), nullable=False),
        sa.Column("alert_type", sa.String(64), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("due_date", sa.Date()),
        sa.Column("agent_id", sa.String(128)),
        sa.Column("rule_id", sa.String(128)),
        sa.Column("bucket", sa.String(16)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Index("ix_compliance_alerts_entity", "related_entity_type", "related_entity_id"),
        extend_existing=True,
    )


def get_tasks_table(metadata: MetaData) -> Table:
    """Return the tasks table definition for the given metadata."""
    return sa.Table(
        "compliance_tasks",
        metadata,
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("priority", sa.String(16), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("related_entity_type", sa.String(64)),
        sa.Column("related_entity_id", sa.String(128), nullable=False),
        sa.Column("auto_generated", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("agent_id", sa.String(128)),
        sa.Column("rule_id", sa.String(128)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        extend_existing=True,
    )


LEDGER = get_ledger_table(_METADATA)
ALERTS = get_alerts_table(_METADATA)
TASKS = get_tasks_table(_METADATA)


def create_schema(engine: Engine) -> None:
    """Create all compliance tables (local/dev databases and tests)."""
    _METADATA.create_all(engine)
