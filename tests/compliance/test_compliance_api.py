from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from agents.compliance.dto import EntityType
from agents.compliance.errors import CollectionReadError
from backend.core.config import settings
from tests.compliance.factories import make_license


def license_expiring_in(days):
    """The API scans at wall-clock time, so dates are relative to the real today."""
    expires = datetime.now(UTC).date() + timedelta(days=days)
    return make_license(expiration_date=expires.isoformat())


class UnreadableSource:
    def list_entities(self, entity_type):
        raise CollectionReadError(entity_type.value, RuntimeError("read api down"))


@pytest.fixture
def app(preserve_root_logging, context):
    from backend.app import create_app
    from backend.apps.compliance.api import get_automation_context

    application = create_app()
    application.dependency_overrides[get_automation_context] = lambda: context
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


class TestScanEndpoint:
    def test_scan_creates_alerts(self, client, context, source):
        source.put(EntityType.LICENSE, license_expiring_in(10))

        resp = client.post("/api/v1/compliance/scan", headers={"X-Trace-ID": "trace-123"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["trace_id"] == "trace-123"
        assert body["success"] is True
        assert body["alerts_created"] == 1
        assert body["issues"][0]["rule_id"] == "license_expiration"
        assert len(context.alert_store.list()) == 1

    def test_dry_run(self, client, context, source):
        source.put(EntityType.LICENSE, license_expiring_in(10))

        resp = client.post("/api/v1/compliance/scan", params={"dry_run": "true"})

        body = resp.json()
        assert body["dry_run"] is True
        assert body["approved"] == 1
        assert body["alerts_created"] == 0
        assert context.alert_store.list() == []

    def test_issues_can_be_omitted(self, client, source):
        source.put(EntityType.LICENSE, license_expiring_in(10))

        resp = client.post("/api/v1/compliance/scan", params={"include_issues": "false"})

        body = resp.json()
        assert body["issues"] == []
        assert body["issues_found"] == 1

    def test_unreadable_collection(self, client, context):
        context.source = UnreadableSource()

        resp = client.post("/api/v1/compliance/scan")

        assert resp.status_code == 503
        assert resp.json()["detail"]["error"] == "collection_unreadable"


class TestReadEndpoints:
    def test_rules(self, client):
        resp = client.get("/api/v1/compliance/rules")

        assert resp.status_code == 200
        ids = {rule["id"] for rule in resp.json()["items"]}
        assert "license_expiration" in ids
        assert "task_overdue" in ids

    def test_metrics(self, client, source):
        source.put(EntityType.LICENSE, license_expiring_in(10))
        client.post("/api/v1/compliance/scan")

        resp = client.get("/api/v1/compliance/metrics")

        metrics = resp.json()
        assert metrics["compliance_scan_runs_total{dry_run=false}"]["count"] == 1
        assert all(key.startswith("compliance_") for key in metrics)


class TestHealth:
    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "OK"}

    def test_ready(self, client, monkeypatch, tmp_path):
        monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'health.db'}")

        body = client.get("/health/ready").json()

        assert body["status"] == "OK"
        assert body["db"] == "OK"


class TestRecordEndpoints:
    def test_alerts_and_tasks_after_scan(self, client, source):
        source.put(EntityType.LICENSE, license_expiring_in(10))
        client.post("/api/v1/compliance/scan")

        alerts = client.get("/api/v1/compliance/alerts").json()
        tasks = client.get("/api/v1/compliance/tasks").json()

        assert alerts["count"] == 1
        assert alerts["items"][0]["alert_type"] == "license_expiration"
        assert alerts["items"][0]["resolved_at"] is None
        assert tasks["count"] == 1
        assert tasks["items"][0]["priority"] == "urgent"
        assert tasks["items"][0]["related_entity_id"] == alerts["items"][0]["related_entity_id"]

    def test_resolved_alerts_hidden_by_default(self, client, context, source):
        source.put(EntityType.LICENSE, license_expiring_in(10))
        client.post("/api/v1/compliance/scan")
        context.alert_store.resolve(context.alert_store.list()[0].id)

        assert client.get("/api/v1/compliance/alerts").json()["count"] == 0
        resp = client.get("/api/v1/compliance/alerts", params={"include_resolved": "true"})
        assert resp.json()["count"] == 1
