"""Condition evaluation policies for compliance triggers.

Implements deterministic, functional evaluation of a trigger rule against a
single entity record at a reference time.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from .config import AutomationConfig
from .dto import Direction, EntityType, Issue, Threshold, TriggerRule
from .errors import EvaluationError, MissingFieldError


def field_value(entity: Any, name: str) -> Any:
    """Read a field from a mapping record or an attribute-style object."""
    if isinstance(entity, Mapping):
        return entity.get(name)
    return getattr(entity, name, None)


class ConditionEvaluator:
    """Evaluates trigger rules against entity records.

    All methods are pure functions: identical inputs always produce identical
    output and nothing performs I/O.
    """

    def __init__(self, config: AutomationConfig | None = None):
        """Initialize with configuration.

        Args:
            config: Automation configuration (timezone for calendar days)
        """
        self.config = config or AutomationConfig()
        self._tz = self.config.tz

    def evaluate(self, entity: Any, rule: TriggerRule, now: datetime) -> Issue | None:
        """Evaluate one rule against one entity.

        Args:
            entity: Entity record (mapping or object)
            rule: Trigger rule applicable to the entity's type
            now: Reference timestamp

        Returns:
            Issue if a threshold is met, otherwise None

        Raises:
            EvaluationError: If the entity has no id or an unparseable date
        """
        entity_id = self._entity_id(entity, rule)

        if self.is_excluded(entity, rule):
            return None

        try:
            date_value = self.resolve_date(entity, rule, entity_id)
        except MissingFieldError:
            return None

        days_delta = self.days_delta(date_value, now, rule.direction)
        threshold = self.match_threshold(rule, days_delta)
        if threshold is None:
            return None

        return Issue(
            entity_type=rule.entity_type,
            entity_id=entity_id,
            rule_id=rule.id,
            days_delta=days_delta,
            severity=threshold.severity,
            bucket=threshold.bucket,
            computed_at=now,
            bucket_rank=rule.bucket_rank(threshold.bucket),
            direction=rule.direction,
            category=rule.category,
            date_value=date_value,
            agent_id=self._agent_id(entity, rule, entity_id),
            entity=entity,
        )

    def resolve_date(self, entity: Any, rule: TriggerRule, entity_id: str | None = None) -> date:
        """Read and parse the rule's date field.

        Raises:
            MissingFieldError: If the field is absent, null or blank
            EvaluationError: If the value cannot be parsed as a date
        """
        raw = field_value(entity, rule.date_field)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raise MissingFieldError(entity_id, rule.date_field)

        try:
            return self.parse_date(raw)
        except (TypeError, ValueError) as e:
            raise EvaluationError(entity_id, rule.id, f"{rule.date_field}={raw!r}: {e}") from e

    def parse_date(self, value: Any) -> date:
        """Convert a date, datetime or ISO-8601 string to a calendar date."""
        if isinstance(value, datetime):
            return self.local_date(value)
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return self.local_date(parsed)
        raise TypeError(f"unsupported date type {type(value).__name__}")

    def days_delta(self, date_value: date, now: datetime, direction: Direction) -> int:
        """Signed whole days between the date and today.

        ``before``: days until the date (negative once passed).
        ``after``: days since the date.
        """
        today = self.local_date(now)
        if direction is Direction.BEFORE:
            return (date_value - today).days
        return (today - date_value).days

    @staticmethod
    def match_threshold(rule: TriggerRule, days_delta: int) -> Threshold | None:
        """Return the most urgent threshold satisfied by days_delta.

        Boundaries are inclusive on the tighter side: with thresholds
        [90, 60, 30, 14, 0] a value of exactly 30 resolves to the "30" tier.
        """
        for threshold in rule.thresholds:
            if rule.direction is Direction.BEFORE and days_delta <= threshold.days:
                return threshold
            if rule.direction is Direction.AFTER and days_delta >= threshold.days:
                return threshold
        return None

    @staticmethod
    def is_excluded(entity: Any, rule: TriggerRule) -> bool:
        """Check the rule's exclusion filters (e.g. completed tasks)."""
        for field_name, values in rule.exclude_when.items():
            value = field_value(entity, field_name)
            if value is not None and str(value).lower() in values:
                return True
        return False

    @staticmethod
    def is_more_urgent(rule: TriggerRule, bucket: str, other: str) -> bool:
        """True if ``bucket`` is a strictly more urgent tier than ``other``."""
        return rule.bucket_rank(bucket) < rule.bucket_rank(other)

    def local_date(self, value: datetime) -> date:
        """Calendar date of a timestamp in the configured timezone."""
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(self._tz).date()

    @staticmethod
    def _entity_id(entity: Any, rule: TriggerRule) -> str:
        entity_id = field_value(entity, "id")
        if entity_id is None or entity_id == "":
            raise EvaluationError(None, rule.id, "entity has no id")
        return str(entity_id)

    @staticmethod
    def _agent_id(entity: Any, rule: TriggerRule, entity_id: str) -> str | None:
        if rule.entity_type is EntityType.AGENT:
            return entity_id
        agent_id = field_value(entity, "agent_id")
        return str(agent_id) if agent_id is not None else None
