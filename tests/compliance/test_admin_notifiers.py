import json

import httpx
import pytest

from agents.compliance.dto import RunSummary
from agents.compliance.notifiers import (
    LogNotifier,
    NotificationFailed,
    WebhookNotifier,
    build_admin_payload,
    get_notifier,
)
from backend.core.config import settings


@pytest.fixture
def summary(now):
    return RunSummary(
        run_id="run-42",
        timestamp=now,
        issues_by_category={"license": 6, "task": 0},
        issues_by_severity={"info": 0, "warning": 1, "critical": 5},
        alerts_created_by_category={"license": 3},
        tasks_created=5,
    )


@pytest.fixture
def webhook_settings(monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_URL", "https://hooks.agency.example/compliance")
    monkeypatch.setattr(settings, "WEBHOOK_DOMAIN_ALLOWLIST", "agency.example")
    monkeypatch.setattr(settings, "WEBHOOK_HEADERS_ALLOWLIST", "X-Source=compliance,Authorization=nope")
    monkeypatch.setattr(settings, "WEBHOOK_SUCCESS_CODES", "200-299")


def _transport(status_code, captured=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured["url"] = str(request.url)
            captured["headers"] = dict(request.headers)
            captured["body"] = json.loads(request.content)
        return httpx.Response(status_code, json={"ok": status_code < 300})

    return httpx.MockTransport(handler)


class TestPayload:
    def test_counts(self, summary):
        payload = build_admin_payload(summary)

        assert payload.message.startswith("Compliance scan found 5 critical and 1 warning")
        assert payload.details["run_id"] == "run-42"
        assert payload.details["alerts_created_by_category"] == {"license": 3}
        assert payload.details["top_issues"] == []


class TestLogNotifier:
    def test_records_and_prints(self, summary, capsys):
        notifier = LogNotifier()

        notifier.send_admin_notification(summary)

        assert len(notifier.sent) == 1
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]
        printed = [line for line in lines if "details" in line]
        assert printed[0]["details"]["tasks_created"] == 5

    def test_default_transport(self):
        assert isinstance(get_notifier(), LogNotifier)


class TestWebhookNotifier:
    def test_posts_payload(self, webhook_settings, summary):
        captured = {}
        notifier = WebhookNotifier(transport=_transport(202, captured))

        notifier.send_admin_notification(summary)

        assert captured["url"] == "https://hooks.agency.example/compliance"
        assert captured["headers"]["x-source"] == "compliance"
        assert "authorization" not in captured["headers"]
        assert captured["body"]["details"]["run_id"] == "run-42"

    def test_non_success_status(self, webhook_settings, summary):
        notifier = WebhookNotifier(transport=_transport(500))

        with pytest.raises(NotificationFailed, match="http_500"):
            notifier.send_admin_notification(summary)

    def test_plain_http_rejected(self, webhook_settings, summary):
        notifier = WebhookNotifier(url="http://hooks.agency.example/x", transport=_transport(200))

        with pytest.raises(NotificationFailed, match="unsupported_scheme"):
            notifier.send_admin_notification(summary)

    def test_domain_not_allowlisted(self, webhook_settings, summary):
        notifier = WebhookNotifier(url="https://evil.example/x", transport=_transport(200))

        with pytest.raises(NotificationFailed, match="forbidden_address"):
            notifier.send_admin_notification(summary)

    def test_timeout(self, webhook_settings, summary):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

        with pytest.raises(NotificationFailed, match="timeout"):
            notifier.send_admin_notification(summary)

    def test_selected_by_settings(self, webhook_settings, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFY_TRANSPORT", "webhook")

        notifier = get_notifier()

        assert isinstance(notifier, WebhookNotifier)
        notifier.close()

    @pytest.mark.parametrize(
        "spec,expected",
        [("200-202", {200, 201, 202}), ("204, 299", {204, 299}), ("", set(range(200, 300)))],
    )
    def test_success_code_parsing(self, spec, expected):
        assert WebhookNotifier._parse_success_codes(spec) == expected
