"""Run one compliance automation scan (cron / manual trigger).

Prints the run summary as JSON. Exit codes: 0 success, 1 run finished with
errors or timeout, 2 run aborted because a collection could not be read.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from agents.compliance.catalog import TriggerCatalog
from agents.compliance.clients import InMemoryEntitySource
from agents.compliance.config import default_config
from agents.compliance.dto import EntityType
from agents.compliance.errors import CollectionReadError
from agents.compliance.ledger import InMemoryLedger
from agents.compliance.notifiers import LogNotifier
from agents.compliance.playbooks import AutomationContext, ScanOptions, run_automation_scan
from agents.compliance.stores import InMemoryAlertStore, InMemoryTaskStore
from backend.core.observability import init_observability, set_trace_id


def load_fixture_source(path: Path) -> InMemoryEntitySource:
    """Load entity collections from a JSON file keyed by entity type."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object keyed by entity type")
    return InMemoryEntitySource({EntityType(key): records for key, records in data.items()})


def parse_reference_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def build_context(args: argparse.Namespace) -> AutomationContext:
    overrides: dict[str, Any] = {}
    if args.max_tasks is not None:
        overrides["max_tasks_per_run"] = args.max_tasks
    if args.max_alerts is not None:
        overrides["max_alerts_per_category"] = args.max_alerts
    config = default_config(overrides)

    kwargs: dict[str, Any] = {"config": config}
    if args.catalog:
        kwargs["catalog"] = TriggerCatalog.load(args.catalog)
    if args.fixtures:
        # Offline run: local records, in-memory state, stdout notification
        kwargs["source"] = load_fixture_source(Path(args.fixtures))
        kwargs["ledger"] = InMemoryLedger()
        kwargs["alert_store"] = InMemoryAlertStore()
        kwargs["task_store"] = InMemoryTaskStore()
        kwargs["notifier"] = LogNotifier()
    return AutomationContext(**kwargs)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a compliance automation scan")
    parser.add_argument("--dry-run", action="store_true", help="Scan and dedup only, no dispatch")
    parser.add_argument("--include-issues", action="store_true", help="Include ordered issues in output")
    parser.add_argument("--time-budget", type=float, help="Run time budget in seconds")
    parser.add_argument("--now", help="Reference timestamp (ISO-8601), defaults to current time")
    parser.add_argument("--catalog", help="Path to a trigger catalog YAML")
    parser.add_argument("--fixtures", help="JSON file with entity collections for an offline run")
    parser.add_argument("--max-tasks", type=int, help="Override task cap per run")
    parser.add_argument("--max-alerts", type=int, help="Override alert cap per category")
    parser.add_argument("--trace-id", help="Trace identifier for correlation")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    try:
        args = parse_args(argv)
        init_observability()
        set_trace_id(args.trace_id)
        options = ScanOptions(
            dry_run=args.dry_run,
            include_issues=args.include_issues,
            now=parse_reference_time(args.now),
            time_budget_seconds=args.time_budget,
        )
        try:
            summary = run_automation_scan(options, build_context(args))
        except CollectionReadError as e:
            print(json.dumps({"error": "collection_unreadable", "detail": str(e)}))
            return 2

        print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
        return 0 if summary.success else 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
