import time
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from agents.compliance.errors import CollectionReadError
from agents.compliance.playbooks import AutomationContext, ScanOptions, run_automation_scan
from backend.core.observability import set_trace_id
from backend.core.observability.logging import logger
from backend.core.observability.metrics import get_metrics, record_histogram

router = APIRouter(prefix="/api/v1/compliance")


def _error(status_code: int, code: str, detail: str):
    raise HTTPException(status_code=status_code, detail={"error": code, "detail": detail})


@lru_cache(maxsize=1)
def get_automation_context() -> AutomationContext:
    """Process-wide automation context built from environment settings."""
    return AutomationContext()


@router.post("/scan", response_model=dict[str, Any])
def trigger_scan(
    dry_run: bool = Query(False),
    include_issues: bool = Query(True),
    trace_header: str | None = Header(None, alias="X-Trace-ID"),
    context: AutomationContext = Depends(get_automation_context),
):
    start = time.time()
    trace_id = set_trace_id(trace_header)
    try:
        summary = run_automation_scan(
            ScanOptions(dry_run=dry_run, include_issues=include_issues), context
        )
    except CollectionReadError as e:
        logger.error("scan_aborted", extra={"trace_id": trace_id, "error": str(e)})
        _error(status.HTTP_503_SERVICE_UNAVAILABLE, "collection_unreadable", str(e))

    record_histogram("compliance_api_scan_duration_ms", (time.time() - start) * 1000.0)
    logger.info(
        "scan_triggered",
        extra={"trace_id": trace_id, "run_id": summary.run_id, "dry_run": dry_run},
    )
    payload = summary.to_dict()
    payload["trace_id"] = trace_id
    return payload


@router.get("/rules", response_model=dict[str, Any])
def list_rules(context: AutomationContext = Depends(get_automation_context)):
    return {"items": [rule.to_dict() for rule in context.catalog]}


@router.get("/metrics", response_model=dict[str, Any])
def compliance_metrics():
    snapshot = get_metrics()
    return {key: value for key, value in snapshot.items() if key.startswith("compliance_")}


@router.get("/alerts", response_model=dict[str, Any])
def list_alerts(
    include_resolved: bool = Query(False),
    context: AutomationContext = Depends(get_automation_context),
):
    alerts = context.alert_store.list(include_resolved=include_resolved)
    return {"items": [alert.to_dict() for alert in alerts], "count": len(alerts)}


@router.get("/tasks", response_model=dict[str, Any])
def list_tasks(context: AutomationContext = Depends(get_automation_context)):
    tasks = context.task_store.list()
    return {"items": [task.to_dict() for task in tasks], "count": len(tasks)}
