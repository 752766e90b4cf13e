"""Tests for the deduplication ledger (in-memory and SQL backends)."""

import threading

import pytest
import sqlalchemy as sa

from agents.compliance.dto import LedgerDecision
from agents.compliance.errors import LedgerConflictError
from agents.compliance.ledger import DeduplicationLedger, InMemoryLedger, SqlLedger
from agents.compliance.policies import ConditionEvaluator
from agents.compliance.schema import create_schema
from tests.compliance.factories import make_license


@pytest.fixture(params=["memory", "sql"])
def ledger(request, tmp_path):
    if request.param == "memory":
        yield InMemoryLedger()
        return
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'ledger.db'}", future=True)
    create_schema(engine)
    yield SqlLedger(engine)
    engine.dispose()


@pytest.fixture
def issue_for(catalog, config, now):
    evaluator = ConditionEvaluator(config)
    rule = catalog.get("license_expiration")

    def _issue(expires_in, license_id="lic-1"):
        return evaluator.evaluate(make_license(license_id, expires_in=expires_in), rule, now)

    return _issue


class TestReview:
    def test_new_issue(self, ledger, issue_for):
        assert ledger.review(issue_for(45)) is LedgerDecision.NEW

    def test_same_bucket_is_already_handled(self, ledger, issue_for, now):
        ledger.claim(issue_for(45), run_id="run-1", now=now)

        # 50 days falls in the same "60" bucket
        assert ledger.review(issue_for(50)) is LedgerDecision.ALREADY_HANDLED

    def test_more_urgent_bucket_is_escalation(self, ledger, issue_for, now):
        ledger.claim(issue_for(45), now=now)

        assert ledger.review(issue_for(25)) is LedgerDecision.ESCALATED

    def test_less_urgent_bucket_is_new(self, ledger, issue_for, now):
        """A date pushed further out is a fresh occurrence, not an escalation."""
        ledger.claim(issue_for(25), now=now)

        assert ledger.review(issue_for(45)) is LedgerDecision.NEW

    def test_review_does_not_write(self, ledger, issue_for):
        ledger.review(issue_for(45))

        assert ledger.active_entries() == []

    def test_other_entities_are_independent(self, ledger, issue_for, now):
        ledger.claim(issue_for(45, "lic-1"), now=now)

        assert ledger.review(issue_for(45, "lic-2")) is LedgerDecision.NEW


class TestClaim:
    def test_claim_creates_active_entry(self, ledger, issue_for, now):
        issue = issue_for(10)

        entry = ledger.claim(issue, run_id="run-1", now=now)

        assert entry.key == issue.key
        stored = ledger.get(issue.key)
        assert stored.active
        assert stored.run_id == "run-1"
        assert stored.bucket_rank == 1

    def test_second_claim_conflicts(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, now=now)

        with pytest.raises(LedgerConflictError):
            ledger.claim(issue, now=now)

    def test_attach_records_dispatch_ids(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, now=now)

        ledger.attach(issue.key, alert_id="alert-1")
        ledger.attach(issue.key, task_id="task-1")

        stored = ledger.get(issue.key)
        assert stored.alert_id == "alert-1"
        assert stored.task_id == "task-1"

    def test_attach_unknown_key(self, ledger, issue_for):
        with pytest.raises(KeyError):
            ledger.attach(issue_for(10).key, alert_id="alert-1")

    def test_release_frees_key(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, now=now)

        ledger.release(issue.key)

        assert ledger.get(issue.key) is None
        ledger.claim(issue, now=now)

    def test_release_keeps_resolved_history(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, now=now)
        ledger.resolve_cleared([(issue.entity_id, issue.rule_id)], now)

        ledger.release(issue.key)

        assert ledger.get(issue.key).resolved_at is not None


class TestAlertOwed:
    def test_owed_entry_is_pending(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, now=now)

        ledger.mark_alert_owed(issue.key, task_id="task-1")

        assert ledger.review(issue) is LedgerDecision.ALERT_PENDING
        assert ledger.get(issue.key).alert_owed

    def test_in_flight_claim_is_handled(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, now=now)

        assert ledger.review(issue) is LedgerDecision.ALREADY_HANDLED

    def test_reclaim_returns_existing_task(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, run_id="run-1", now=now)
        ledger.mark_alert_owed(issue.key, task_id="task-1")

        entry = ledger.claim(issue, run_id="run-2", now=now)

        assert entry.task_id == "task-1"
        assert not entry.alert_owed
        assert ledger.get(issue.key).run_id == "run-2"
        with pytest.raises(LedgerConflictError):
            ledger.claim(issue, run_id="run-3", now=now)

    def test_attached_alert_settles_entry(self, ledger, issue_for, now):
        issue = issue_for(10)
        ledger.claim(issue, now=now)
        ledger.mark_alert_owed(issue.key, task_id="task-1")
        ledger.claim(issue, now=now)

        ledger.attach(issue.key, alert_id="alert-1")

        stored = ledger.get(issue.key)
        assert stored.alert_id == "alert-1"
        assert stored.task_id == "task-1"
        assert ledger.review(issue) is LedgerDecision.ALREADY_HANDLED

    def test_mark_unknown_key(self, ledger, issue_for):
        with pytest.raises(KeyError):
            ledger.mark_alert_owed(issue_for(10).key, task_id="task-1")


class TestResolveCleared:
    def test_resolves_all_buckets_of_pair(self, ledger, issue_for, now):
        ledger.claim(issue_for(45), now=now)
        ledger.claim(issue_for(25), now=now)
        ledger.claim(issue_for(25, "lic-2"), now=now)

        resolved = ledger.resolve_cleared([("lic-1", "license_expiration")], now)

        assert resolved == 2
        assert [e.key.entity_id for e in ledger.active_entries()] == ["lic-2"]

    def test_no_pairs(self, ledger, issue_for, now):
        ledger.claim(issue_for(25), now=now)

        assert ledger.resolve_cleared([], now) == 0
        assert len(ledger.active_entries()) == 1

    def test_recurrence_after_clear_is_new(self, ledger, issue_for, now):
        issue = issue_for(25)
        ledger.claim(issue, now=now)
        ledger.resolve_cleared([(issue.entity_id, issue.rule_id)], now)

        assert ledger.review(issue) is LedgerDecision.NEW
        entry = ledger.claim(issue, run_id="run-2", now=now)

        assert entry.active
        assert ledger.get(issue.key).run_id == "run-2"
        assert ledger.get(issue.key).resolved_at is None

    def test_resolved_entry_reclaimed_once(self, ledger, issue_for, now):
        issue = issue_for(25)
        ledger.claim(issue, now=now)
        ledger.resolve_cleared([(issue.entity_id, issue.rule_id)], now)

        ledger.claim(issue, now=now)
        with pytest.raises(LedgerConflictError):
            ledger.claim(issue, now=now)


class TestConcurrentClaims:
    def test_exactly_one_winner(self, issue_for, now):
        ledger = InMemoryLedger()
        issue = issue_for(10)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                ledger.claim(issue, now=now)
                results.append("won")
            except LedgerConflictError:
                results.append("lost")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("won") == 1
        assert results.count("lost") == 7

    def test_sql_ledgers_share_constraint(self, tmp_path, issue_for, now):
        """Two ledger instances over one database model two app instances."""
        engine = sa.create_engine(f"sqlite:///{tmp_path / 'shared.db'}", future=True)
        create_schema(engine)
        first, second = SqlLedger(engine), SqlLedger(engine)
        issue = issue_for(10)

        first.claim(issue, run_id="run-a", now=now)
        with pytest.raises(LedgerConflictError):
            second.claim(issue, run_id="run-b", now=now)

        assert second.get(issue.key).run_id == "run-a"
        engine.dispose()


def test_ledger_interface_is_abstract():
    with pytest.raises(TypeError):
        DeduplicationLedger()
