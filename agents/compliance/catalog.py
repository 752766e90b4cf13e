"""Trigger catalog: the static, declarative set of rules a scan evaluates."""

from __future__ import annotations

import logging
from collections import defaultdict
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml

from .config import DEFAULT_CATALOG_PATH
from .dto import EntityType, TriggerRule
from .errors import CatalogError

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("id", "entity_type", "date_field", "thresholds", "direction", "message_template")


class TriggerCatalog:
    """Immutable collection of trigger rules indexed by entity type."""

    def __init__(self, rules: Iterable[TriggerRule]):
        self._rules: dict[str, TriggerRule] = {}
        self._by_type: dict[EntityType, list[TriggerRule]] = defaultdict(list)

        for rule in rules:
            if rule.id in self._rules:
                raise CatalogError(f"Duplicate rule id: {rule.id}")
            self._rules[rule.id] = rule
            if rule.enabled:
                self._by_type[rule.entity_type].append(rule)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriggerCatalog":
        """Build a catalog from a parsed catalog document.

        Args:
            data: Mapping with a ``rules`` list

        Returns:
            Catalog instance

        Raises:
            CatalogError: If the document or a rule is malformed
        """
        if not isinstance(data, dict) or not isinstance(data.get("rules"), list):
            raise CatalogError("Catalog document must contain a 'rules' list")

        rules = []
        for index, entry in enumerate(data["rules"]):
            if not isinstance(entry, dict):
                raise CatalogError(f"Rule #{index} is not a mapping")
            missing = [key for key in _REQUIRED_KEYS if key not in entry]
            if missing:
                raise CatalogError(f"Rule #{index} ({entry.get('id')}) missing keys: {missing}")
            try:
                rules.append(TriggerRule.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                raise CatalogError(f"Invalid rule {entry.get('id')}: {e}") from e

        return cls(rules)

    @classmethod
    def load(cls, path: Path | str) -> "TriggerCatalog":
        """Load a catalog from a YAML file."""
        catalog_file = Path(path)
        try:
            with open(catalog_file, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise CatalogError(f"Cannot read catalog {catalog_file}: {e}") from e
        except yaml.YAMLError as e:
            raise CatalogError(f"Invalid YAML in catalog {catalog_file}: {e}") from e

        catalog = cls.from_dict(data)
        logger.info(
            "Loaded trigger catalog",
            extra={"catalog_path": str(catalog_file), "rule_count": len(catalog)},
        )
        return catalog

    def get(self, rule_id: str) -> TriggerRule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise KeyError(f"Unknown rule: {rule_id}") from None

    def rules_for(self, entity_type: EntityType) -> list[TriggerRule]:
        """Enabled rules applicable to an entity type."""
        return list(self._by_type.get(entity_type, ()))

    @property
    def entity_types(self) -> list[EntityType]:
        """Entity types that at least one enabled rule applies to."""
        return [t for t in EntityType if self._by_type.get(t)]

    @property
    def categories(self) -> list[str]:
        return sorted({rule.category for rule in self._rules.values() if rule.enabled})

    def __iter__(self) -> Iterator[TriggerRule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)


@lru_cache(maxsize=8)
def load_catalog(path: str = str(DEFAULT_CATALOG_PATH)) -> TriggerCatalog:
    """Load (and cache) a catalog so that rules are parsed once per process."""
    return TriggerCatalog.load(path)
