"""Admin notification channels for fleet-wide compliance escalations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Protocol
from urllib.parse import urlparse

import httpx

from backend.core.config import settings

from .dto import RunSummary

logger = logging.getLogger(__name__)


class NotificationFailed(RuntimeError):
    """A notification channel rejected or could not deliver the payload."""


@dataclass
class NotificationPayload:
    """Structured notification payload used across channels."""

    title: str
    message: str
    details: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "details": self.details,
        }


class Notifier(Protocol):
    def send_admin_notification(self, summary: RunSummary) -> None:
        ...


def build_admin_payload(summary: RunSummary) -> NotificationPayload:
    """Summarise a run for agency administrators."""
    critical = summary.issues_by_severity.get("critical", 0)
    warning = summary.issues_by_severity.get("warning", 0)
    top = [
        f"[{issue.severity.value}] {issue.rule_id} {issue.entity_id} ({issue.days_delta}d)"
        for issue in summary.issues[:10]
    ]
    message = (
        f"Compliance scan found {critical} critical and {warning} warning issues "
        f"across {summary.issues_found} total."
    )
    return NotificationPayload(
        title="Critical compliance issues require attention",
        message=message,
        details={
            "run_id": summary.run_id,
            "timestamp": summary.timestamp.isoformat(),
            "issues_by_category": dict(summary.issues_by_category),
            "issues_by_severity": dict(summary.issues_by_severity),
            "alerts_created_by_category": dict(summary.alerts_created_by_category),
            "tasks_created": summary.tasks_created,
            "top_issues": top,
        },
    )


class LogNotifier:
    """Emit the notification as a JSON line and a log record."""

    name = "log"

    def __init__(self, echo: bool = True):
        self.echo = echo
        self.sent: list[NotificationPayload] = []

    def send_admin_notification(self, summary: RunSummary) -> None:
        payload = build_admin_payload(summary)
        self.sent.append(payload)
        if self.echo:
            print(json.dumps(payload.to_dict(), ensure_ascii=False))
        logger.warning(payload.message, extra={"run_id": summary.run_id, "notifier": self.name})


class WebhookNotifier:
    """POST the notification to an allow-listed HTTPS webhook."""

    name = "webhook"

    def __init__(self, url: str | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self.url = url if url is not None else settings.WEBHOOK_URL
        self.timeout = httpx.Timeout(
            connect=settings.WEBHOOK_TIMEOUT_MS / 1000.0,
            read=settings.WEBHOOK_TIMEOUT_MS / 1000.0,
            write=settings.WEBHOOK_TIMEOUT_MS / 1000.0,
            pool=settings.WEBHOOK_TIMEOUT_MS / 1000.0,
        )
        self.success_codes = self._parse_success_codes(settings.WEBHOOK_SUCCESS_CODES)
        self.headers = self._sanitize_headers(self._parse_headers(settings.WEBHOOK_HEADERS_ALLOWLIST))
        self.headers.setdefault("Content-Type", "application/json")
        self.domain_allow = [
            d.strip().lower() for d in (settings.WEBHOOK_DOMAIN_ALLOWLIST or "").split(",") if d.strip()
        ]
        self.client = httpx.Client(
            timeout=self.timeout, verify=True, follow_redirects=False, transport=transport
        )

    @staticmethod
    def _parse_success_codes(spec: str) -> set[int]:
        result: set[int] = set()
        for token in (spec or "").split(","):
            token = token.strip()
            if not token:
                continue
            try:
                if "-" in token:
                    a, b = token.split("-", 1)
                    result.update(range(int(a), int(b) + 1))
                else:
                    result.add(int(token))
            except ValueError:
                continue
        return result or set(range(200, 300))

    @staticmethod
    def _parse_headers(csv: str) -> Dict[str, str]:
        hdrs: Dict[str, str] = {}
        for pair in (csv or "").split(","):
            pair = pair.strip()
            if "=" in pair:
                k, v = pair.split("=", 1)
                hdrs[k.strip()] = v.strip()
        return hdrs

    @staticmethod
    def _sanitize_headers(h: Dict[str, str]) -> Dict[str, str]:
        forbidden = {"authorization", "cookie", "set-cookie"}
        return {k: v for k, v in h.items() if k.lower() not in forbidden}

    def _host_allowed(self, host: str) -> bool:
        if not self.domain_allow:
            return True
        host_l = (host or "").lower()
        return any(host_l == d or host_l.endswith("." + d) for d in self.domain_allow)

    def send_admin_notification(self, summary: RunSummary) -> None:
        """Deliver the payload.

        Raises:
            NotificationFailed: On policy violation, timeout or non-success status
        """
        p = urlparse(self.url or "")
        if p.scheme.lower() != "https":
            raise NotificationFailed("unsupported_scheme")
        if not self._host_allowed(p.hostname or ""):
            raise NotificationFailed("forbidden_address")

        body = json.dumps(build_admin_payload(summary).to_dict(), ensure_ascii=False)
        try:
            resp = self.client.post(self.url, headers=self.headers, content=body.encode("utf-8"))
        except httpx.TimeoutException as e:
            raise NotificationFailed("timeout") from e
        except httpx.HTTPError as e:
            raise NotificationFailed(str(e)) from e

        if resp.status_code not in self.success_codes:
            raise NotificationFailed(f"http_{resp.status_code}")
        logger.info(
            "Admin notification delivered",
            extra={"run_id": summary.run_id, "notifier": self.name, "status_code": resp.status_code},
        )

    def close(self) -> None:
        self.client.close()


def get_notifier() -> Notifier:
    if settings.NOTIFY_TRANSPORT == "webhook":
        return WebhookNotifier()
    return LogNotifier()
