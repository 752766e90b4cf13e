"""Entity source implementations for compliance scans.

Provides the Read-API client that bulk-lists entity collections and an
in-memory source for local runs and tests.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

import requests

from backend.core.config import settings

from ..shared.http_client import ApiClient
from .config import AutomationConfig
from .dto import EntityType
from .errors import CollectionReadError

COLLECTION_PATHS: dict[EntityType, str] = {
    EntityType.AGENT: "agents",
    EntityType.LICENSE: "licenses",
    EntityType.CARRIER_APPOINTMENT: "carrier-appointments",
    EntityType.CLIENT: "clients",
    EntityType.CLIENT_ONBOARDING_TASK: "client-onboarding-tasks",
    EntityType.TASK: "tasks",
}


class EntitySource(Protocol):
    """Read collaborator: bulk list of one entity collection."""

    def list_entities(self, entity_type: EntityType) -> list[Any]:
        ...


@dataclass
class CursorPagination:
    """Cursor-based pagination parameters."""

    cursor: str | None = None
    limit: int = 500

    def to_dict(self) -> dict[str, Any]:
        """Convert to query parameters."""
        params: dict[str, Any] = {"limit": self.limit}
        if self.cursor:
            params["cursor"] = self.cursor
        return params


@dataclass
class EntityPage:
    """One page of an entity collection."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "EntityPage":
        """Create from API response; a bare list is a single complete page."""
        if isinstance(data, list):
            return cls(items=data)
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise ValueError("response has no 'items' list")
        return cls(
            items=data["items"],
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more", False)),
        )


class ReadApiClient:
    """Client for listing entity collections from the agency Read-API."""

    def __init__(
        self,
        config: AutomationConfig,
        api_client: ApiClient | None = None,
        page_size: int = 500,
        max_pages: int = 200,
    ):
        """Initialize Read-API client.

        Args:
            config: Automation configuration
            api_client: Preconfigured HTTP client (built from config if omitted)
            page_size: Items requested per page
            max_pages: Upper bound on pages fetched per collection
        """
        self.config = config
        self.client = api_client or ApiClient(
            base_url=config.read_api_base_url,
            timeout=config.read_api_timeout,
            max_retries=settings.READ_API_MAX_RETRIES,
        )
        self.page_size = page_size
        self.max_pages = max_pages
        self.logger = logging.getLogger(__name__)

    def list_entities(
        self, entity_type: EntityType, correlation_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Fetch every record of one collection.

        Args:
            entity_type: Collection to list
            correlation_id: Optional correlation ID

        Returns:
            All records of the collection

        Raises:
            CollectionReadError: If any page cannot be read
        """
        endpoint = f"/api/v1/{COLLECTION_PATHS[entity_type]}"
        pagination = CursorPagination(limit=self.page_size)
        items: list[dict[str, Any]] = []

        for _ in range(self.max_pages):
            try:
                response = self.client.get(
                    endpoint=endpoint,
                    params=pagination.to_dict(),
                    correlation_id=correlation_id,
                )
            except requests.RequestException as e:
                raise CollectionReadError(entity_type.value, e) from e

            if not response.is_success:
                self.logger.error(
                    "Failed to list entities",
                    extra={
                        "entity_type": entity_type.value,
                        "status_code": response.status_code,
                        "correlation_id": correlation_id,
                    },
                )
                raise CollectionReadError(
                    entity_type.value, RuntimeError(f"API error {response.status_code}")
                )

            try:
                page = EntityPage.from_dict(response.data)
            except ValueError as e:
                raise CollectionReadError(entity_type.value, e) from e

            items.extend(page.items)
            if not page.has_more or not page.next_cursor:
                return items
            pagination.cursor = page.next_cursor

        raise CollectionReadError(
            entity_type.value, RuntimeError(f"more than {self.max_pages} pages")
        )


class InMemoryEntitySource:
    """Entity source over in-process collections."""

    def __init__(self, collections: Mapping[EntityType, Iterable[Any]] | None = None):
        self.collections: dict[EntityType, list[Any]] = {
            entity_type: list(records) for entity_type, records in (collections or {}).items()
        }

    def list_entities(self, entity_type: EntityType) -> list[Any]:
        return list(self.collections.get(entity_type, []))

    def put(self, entity_type: EntityType, record: Any) -> None:
        """Insert or replace a record by id."""
        records = self.collections.setdefault(entity_type, [])
        record_id = record.get("id") if isinstance(record, Mapping) else getattr(record, "id", None)
        for index, existing in enumerate(records):
            existing_id = (
                existing.get("id") if isinstance(existing, Mapping) else getattr(existing, "id", None)
            )
            if existing_id == record_id:
                records[index] = record
                return
        records.append(record)
