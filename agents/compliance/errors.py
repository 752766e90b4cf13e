"""Error taxonomy for the compliance automation engine.

Only ``CollectionReadError`` is allowed to abort a run. Every other error is
absorbed at the item level and reflected in the run summary.
"""

from __future__ import annotations

from typing import Any


class AutomationError(Exception):
    """Base class for compliance automation errors."""


class MissingFieldError(AutomationError):
    """A rule's date field is absent or null on an entity."""

    def __init__(self, entity_id: str | None, field_name: str):
        super().__init__(f"Entity {entity_id} has no value for '{field_name}'")
        self.entity_id = entity_id
        self.field_name = field_name


class EvaluationError(AutomationError):
    """An entity carries a value that cannot be evaluated (e.g. a malformed date)."""

    def __init__(self, entity_id: str | None, rule_id: str, detail: str):
        super().__init__(f"Cannot evaluate rule {rule_id} for entity {entity_id}: {detail}")
        self.entity_id = entity_id
        self.rule_id = rule_id
        self.detail = detail


class DispatchError(AutomationError):
    """A write to the alert store, task store or notifier failed."""

    def __init__(self, kind: str, target: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{kind} dispatch failed for {target}{detail}")
        self.kind = kind
        self.target = target
        self.cause = cause


class LedgerConflictError(AutomationError):
    """An atomic ledger claim lost the race for its key."""

    def __init__(self, key: Any):
        super().__init__(f"Ledger key already claimed: {key}")
        self.key = key


class CollectionReadError(AutomationError):
    """A whole entity collection could not be read; the run cannot proceed."""

    def __init__(self, entity_type: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to read '{entity_type}' collection{detail}")
        self.entity_type = entity_type
        self.cause = cause


class CatalogError(AutomationError):
    """The trigger catalog is malformed."""
