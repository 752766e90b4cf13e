"""In-process metrics counters and histograms."""

import time
from collections import defaultdict
from typing import Any

from backend.core.config import settings

# Global metrics storage
_metrics = defaultdict(lambda: {"count": 0, "sum": 0.0, "values": [], "buckets": defaultdict(int)})


def init_metrics() -> None:
    """Initialize metrics if enabled."""
    if not settings.enable_metrics:
        return


def _key(name: str, labels: dict[str, str] | None) -> str:
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in sorted(labels.items())) + "}"


def increment_counter(name: str, labels: dict[str, str] = None, value: float = 1.0) -> None:
    """Increment a counter metric."""
    if not settings.enable_metrics:
        return

    _metrics[_key(name, labels)]["count"] += value


def record_histogram(name: str, value: float, labels: dict[str, str] = None) -> None:
    """Record a histogram measurement."""
    if not settings.enable_metrics:
        return

    metrics = _metrics[_key(name, labels)]
    metrics["count"] += 1
    metrics["sum"] += value
    metrics["values"].append(value)

    if value < 0.1:
        metrics["buckets"]["<0.1"] += 1
    elif value < 1:
        metrics["buckets"]["0.1-1.0"] += 1
    elif value < 10:
        metrics["buckets"]["1.0-10.0"] += 1
    elif value < 100:
        metrics["buckets"]["10.0-100.0"] += 1
    elif value < 1000:
        metrics["buckets"]["100.0-1000.0"] += 1
    else:
        metrics["buckets"][">=1000.0"] += 1


def observe_duration(start_time: float, name: str, labels: dict[str, str] = None) -> None:
    """Observe a duration measurement."""
    duration_ms = (time.time() - start_time) * 1000
    record_histogram(name, duration_ms, labels)


def get_metrics() -> dict[str, Any]:
    """Get current metrics snapshot."""
    if not settings.enable_metrics:
        return {"note": "metrics disabled"}

    result = {}
    for key, data in _metrics.items():
        metric_result = {"count": data["count"], "sum": data["sum"]}

        if data["values"]:
            values = data["values"]
            metric_result.update(
                {
                    "min": min(values),
                    "max": max(values),
                    "avg": data["sum"] / len(values),
                    "buckets": dict(data["buckets"]),
                }
            )

        result[key] = metric_result

    return result


def reset_metrics() -> None:
    """Reset all metrics (useful for testing)."""
    _metrics.clear()


# Compliance automation metrics
def increment_scan_runs(dry_run: bool) -> None:
    increment_counter("compliance_scan_runs_total", labels={"dry_run": str(dry_run).lower()})


def increment_issues_found(category: str, n: float = 1.0) -> None:
    increment_counter("compliance_issues_total", labels={"category": category}, value=n)


def increment_evaluation_errors(rule_id: str) -> None:
    increment_counter("compliance_evaluation_errors_total", labels={"rule_id": rule_id})


def increment_alerts_created(category: str) -> None:
    increment_counter("compliance_alerts_created_total", labels={"category": category})


def increment_tasks_created() -> None:
    increment_counter("compliance_tasks_created_total")


def increment_dispatch_failures(kind: str) -> None:
    """Count a failed alert/task/notify call."""
    increment_counter("compliance_dispatch_failures_total", labels={"kind": kind})


def increment_ledger_conflicts() -> None:
    increment_counter("compliance_ledger_conflicts_total")


def increment_notifications_sent() -> None:
    increment_counter("compliance_admin_notifications_total")


def record_scan_duration(duration_ms: float) -> None:
    record_histogram("compliance_scan_duration_ms", duration_ms)
