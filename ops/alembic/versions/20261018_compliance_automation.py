"""Create compliance ledger, alerts and tasks tables

Revision ID: 20261018_compliance_automation
Revises:
Create Date: 2026-10-18 09:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261018_compliance_automation"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "compliance_ledger",
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
    )
    op.create_index(
        "ix_compliance_ledger_entity_rule",
        "compliance_ledger",
        ["entity_id", "rule_id"],
    )

    op.create_table(
        "compliance_alerts",
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
    )
    op.create_index(
        "ix_compliance_alerts_entity",
        "compliance_alerts",
        ["related_entity_type", "related_entity_id"],
    )

    op.create_table(
        "compliance_tasks",
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
    )


def downgrade() -> None:
    op.drop_table("compliance_tasks")
    op.drop_index("ix_compliance_alerts_entity", table_name="compliance_alerts")
    op.drop_table("compliance_alerts")
    op.drop_index("ix_compliance_ledger_entity_rule", table_name="compliance_ledger")
    op.drop_table("compliance_ledger")
