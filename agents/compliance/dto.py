"""Data Transfer Objects for the compliance automation engine.

Provides the rule shape, the ephemeral Issue produced by a scan, the
persisted Alert/Task/LedgerEntry records and the RunSummary returned to
callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4


class Severity(Enum):
    """Issue severity, ordered info < warning < critical."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {Severity.INFO: 1, Severity.WARNING: 2, Severity.CRITICAL: 3}


class Direction(Enum):
    """Whether a rule counts days until a date or days since a date."""

    BEFORE = "before"
    AFTER = "after"


class EntityType(Enum):
    """Entity collections tracked by the engine."""

    AGENT = "agent"
    LICENSE = "license"
    CARRIER_APPOINTMENT = "carrier_appointment"
    CLIENT = "client"
    CLIENT_ONBOARDING_TASK = "client_onboarding_task"
    TASK = "task"


class LedgerDecision(Enum):
    """Outcome of a ledger review for one Issue."""

    NEW = "new"
    ESCALATED = "escalated"
    # Task exists for the bucket, its Alert is still owed
    ALERT_PENDING = "alert_pending"
    ALREADY_HANDLED = "already_handled"

    @property
    def approved(self) -> bool:
        return self is not LedgerDecision.ALREADY_HANDLED


@dataclass(frozen=True)
class Threshold:
    """One severity tier of a rule."""

    days: int
    severity: Severity

    @property
    def bucket(self) -> str:
        """Bucket label, e.g. "30" for the 30-day tier."""
        return str(self.days)


@dataclass
class TriggerRule:
    """Declarative rule correlating an entity date field with severity tiers.

    Thresholds are normalised on construction so that they are ordered most
    urgent first: ascending days for ``before`` rules, descending days for
    ``after`` rules.
    """

    id: str
    entity_type: EntityType
    date_field: str
    thresholds: tuple[Threshold, ...]
    direction: Direction
    message_template: str
    category: str = ""
    alert_type: str = ""
    title_template: str = ""
    exclude_when: Dict[str, tuple[str, ...]] = field(default_factory=dict)
    create_task: bool = True
    enabled: bool = True
    description: str = ""

    def __post_init__(self):
        if not self.thresholds:
            raise ValueError(f"Rule {self.id} has no thresholds")

        days = [t.days for t in self.thresholds]
        if len(set(days)) != len(days):
            raise ValueError(f"Rule {self.id} has duplicate threshold days: {days}")

        self.thresholds = tuple(
            sorted(
                self.thresholds,
                key=lambda t: t.days,
                reverse=self.direction is Direction.AFTER,
            )
        )
        self.category = self.category or self.entity_type.value
        self.alert_type = self.alert_type or self.id

    @property
    def buckets(self) -> list[str]:
        return [t.bucket for t in self.thresholds]

    def bucket_rank(self, bucket: str) -> int:
        """Rank of a bucket; 0 is the most urgent tier.

        Raises:
            ValueError: If the bucket does not belong to this rule
        """
        try:
            return self.buckets.index(bucket)
        except ValueError:
            raise ValueError(f"Unknown bucket '{bucket}' for rule {self.id}") from None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerRule":
        """Create from a catalog entry."""
        exclude_when = {
            key: tuple(str(v).lower() for v in (values if isinstance(values, list) else [values]))
            for key, values in (data.get("exclude_when") or {}).items()
        }
        return cls(
            id=data["id"],
            entity_type=EntityType(data["entity_type"]),
            date_field=data["date_field"],
            thresholds=tuple(
                Threshold(days=int(t["days"]), severity=Severity(t["severity"]))
                for t in data["thresholds"]
            ),
            direction=Direction(data["direction"]),
            message_template=data["message_template"],
            category=data.get("category", ""),
            alert_type=data.get("alert_type", ""),
            title_template=data.get("title_template", ""),
            exclude_when=exclude_when,
            create_task=data.get("create_task", True),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "date_field": self.date_field,
            "thresholds": [
                {"days": t.days, "severity": t.severity.value} for t in self.thresholds
            ],
            "direction": self.direction.value,
            "message_template": self.message_template,
            "category": self.category,
            "alert_type": self.alert_type,
            "title_template": self.title_template,
            "exclude_when": {k: list(v) for k, v in self.exclude_when.items()},
            "create_task": self.create_task,
            "enabled": self.enabled,
            "description": self.description,
        }


@dataclass(frozen=True)
class LedgerKey:
    """Unique idempotency key of one condition occurrence."""

    entity_id: str
    rule_id: str
    bucket: str

    def __str__(self) -> str:
        return f"{self.entity_id}:{self.rule_id}:{self.bucket}"


@dataclass(frozen=True)
class Issue:
    """Ephemeral result of evaluating one rule against one entity."""

    entity_type: EntityType
    entity_id: str
    rule_id: str
    days_delta: int
    severity: Severity
    bucket: str
    computed_at: datetime
    bucket_rank: int
    direction: Direction
    category: str
    date_value: date
    agent_id: Optional[str] = None
    entity: Mapping[str, Any] | Any = field(default=None, compare=False, repr=False)
    agent: Mapping[str, Any] | Any = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.entity_id, self.rule_id, self.bucket)

    @property
    def urgency(self) -> int:
        """Days remaining; smaller is more urgent for both directions."""
        if self.direction is Direction.BEFORE:
            return self.days_delta
        return -self.days_delta

    @property
    def sort_key(self) -> tuple[int, int, str, str]:
        return (-self.severity.rank, self.urgency, self.entity_id, self.rule_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "rule_id": self.rule_id,
            "days_delta": self.days_delta,
            "severity": self.severity.value,
            "bucket": self.bucket,
            "computed_at": self.computed_at.isoformat(),
            "direction": self.direction.value,
            "category": self.category,
            "date_value": self.date_value.isoformat(),
            "agent_id": self.agent_id,
        }


@dataclass
class Alert:
    """Persisted alert raised for an Issue."""

    related_entity_type: str
    related_entity_id: str
    alert_type: str
    severity: str
    title: str
    message: str
    due_date: Optional[date] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    resolved_at: Optional[datetime] = None
    category: str = ""
    agent_id: Optional[str] = None
    rule_id: Optional[str] = None
    bucket: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "category": self.category,
            "agent_id": self.agent_id,
            "rule_id": self.rule_id,
            "bucket": self.bucket,
        }


@dataclass
class Task:
    """Persisted follow-up task created for an Issue."""

    title: str
    description: str
    priority: str
    due_date: date
    related_entity_id: str
    related_entity_type: str = ""
    auto_generated: bool = True
    status: str = "pending"
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    agent_id: Optional[str] = None
    rule_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "due_date": self.due_date.isoformat(),
            "related_entity_id": self.related_entity_id,
            "related_entity_type": self.related_entity_type,
            "auto_generated": self.auto_generated,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "agent_id": self.agent_id,
            "rule_id": self.rule_id,
        }


@dataclass
class LedgerEntry:
    """Ledger record of a dispatched condition bucket."""

    key: LedgerKey
    entity_type: str
    bucket_rank: int
    alert_id: Optional[str] = None
    task_id: Optional[str] = None
    # Task exists, Alert still to be created in this bucket
    alert_owed: bool = False
    run_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    resolved_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.resolved_at is None


@dataclass
class RunSummary:
    """Aggregated result of one automation run."""

    run_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    dry_run: bool = False
    issues_by_category: Dict[str, int] = field(default_factory=dict)
    issues_by_severity: Dict[str, int] = field(default_factory=dict)
    alerts_created_by_category: Dict[str, int] = field(default_factory=dict)
    tasks_created: int = 0
    critical_notification_sent: bool = False
    notification_due: bool = False
    errors_count: int = 0
    errors: List[str] = field(default_factory=list)
    approved: int = 0
    already_handled: int = 0
    escalations: int = 0
    deferred: int = 0
    evaluation_errors: int = 0
    cleared: int = 0
    timed_out: bool = False
    processing_time_seconds: float = 0.0
    insights: List[str] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)

    @property
    def issues_found(self) -> int:
        return sum(self.issues_by_category.values())

    @property
    def alerts_created(self) -> int:
        return sum(self.alerts_created_by_category.values())

    @property
    def success(self) -> bool:
        """A run with any failure or an expired time budget is never a full success."""
        return self.errors_count == 0 and not self.timed_out

    def record_error(self, message: str) -> None:
        self.errors_count += 1
        self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
            "dry_run": self.dry_run,
            "success": self.success,
            "issues_found": self.issues_found,
            "issues_by_category": dict(self.issues_by_category),
            "issues_by_severity": dict(self.issues_by_severity),
            "alerts_created": self.alerts_created,
            "alerts_created_by_category": dict(self.alerts_created_by_category),
            "tasks_created": self.tasks_created,
            "critical_notification_sent": self.critical_notification_sent,
            "notification_due": self.notification_due,
            "errors_count": self.errors_count,
            "errors": list(self.errors),
            "approved": self.approved,
            "already_handled": self.already_handled,
            "escalations": self.escalations,
            "deferred": self.deferred,
            "evaluation_errors": self.evaluation_errors,
            "cleared": self.cleared,
            "timed_out": self.timed_out,
            "processing_time_seconds": self.processing_time_seconds,
            "insights": list(self.insights),
            "issues": [issue.to_dict() for issue in self.issues],
        }
