"""Compliance Automation Agent - trigger-and-action engine for agency operations.

Scans agency records (licenses, carrier appointments, client activity,
onboarding checklists, agent certifications, open tasks) for time-threshold
conditions and turns them into alerts, tasks and an admin notification,
exactly once per condition occurrence.

Key Components:
- Catalog: Declarative trigger rules loaded from YAML
- Policies: Pure condition evaluation
- Scanner: Collections x rules -> urgency-ordered Issues
- Ledger: Atomic deduplication per (entity, rule, bucket)
- Dispatcher: Capped, fault-isolated creation of alerts/tasks/notification
- Playbooks: Run orchestration and the run_automation_scan entry point
"""

__version__ = "1.0.0"

from .catalog import TriggerCatalog, load_catalog
from .config import AutomationConfig
from .dispatcher import ActionDispatcher
from .dto import (
    Alert,
    Direction,
    EntityType,
    Issue,
    LedgerDecision,
    LedgerEntry,
    LedgerKey,
    RunSummary,
    Severity,
    Task,
    Threshold,
    TriggerRule,
)
from .errors import (
    AutomationError,
    CollectionReadError,
    DispatchError,
    EvaluationError,
    LedgerConflictError,
    MissingFieldError,
)
from .ledger import DeduplicationLedger, InMemoryLedger, SqlLedger
from .playbooks import AutomationContext, AutomationPlaybook, ScanOptions, run_automation_scan
from .policies import ConditionEvaluator
from .scanner import ComplianceScanner, ScanReport

__all__ = [
    "AutomationConfig",
    "TriggerCatalog",
    "load_catalog",
    "TriggerRule",
    "Threshold",
    "Severity",
    "Direction",
    "EntityType",
    "Issue",
    "Alert",
    "Task",
    "LedgerKey",
    "LedgerEntry",
    "LedgerDecision",
    "RunSummary",
    "ConditionEvaluator",
    "ComplianceScanner",
    "ScanReport",
    "DeduplicationLedger",
    "InMemoryLedger",
    "SqlLedger",
    "ActionDispatcher",
    "AutomationContext",
    "AutomationPlaybook",
    "ScanOptions",
    "run_automation_scan",
    "AutomationError",
    "MissingFieldError",
    "EvaluationError",
    "DispatchError",
    "LedgerConflictError",
    "CollectionReadError",
]
