"""
Tests for the report ledger and behavior counters.
"""
from unittest.mock import MagicMock

import pytest

from standing.engine.reports import ReportStatus
from standing.errors import ConflictError, NotFoundError, PolicyViolationError, ValidationError
from standing.services.ledger import SYSTEM_REPORTER, ReportLedger

from conftest import T0


@pytest.fixture
def ledger(services):
    return services.ledger


class TestFiling:

    def test_file_report_stores_pending(self, ledger):
        report_id = ledger.file_report("client-1", "client", "supplier-1", "supplier",
                                       "noShow", "Never arrived", booking_id="bk-1")
        report = ledger.get_report(report_id)
        assert report.status == ReportStatus.PENDING
        assert report.booking_id == "bk-1"
        assert report.created_at == T0

    def test_unknown_reported_user(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.file_report("client-1", "client", "nobody", "supplier", "spam", "spam")

    def test_validation_happens_before_write(self, ledger, store):
        with pytest.raises(ValidationError):
            ledger.file_report("client-1", "client", "client-1", "client", "spam", "me")
        assert list(store.query("reports")) == []

    def test_missing_report(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get_report("rpt_missing")


class TestViolations:

    def test_violation_filed_by_system(self, ledger):
        report_id = ledger.record_violation("supplier-1", "contactSharing", "Phone number in chat")
        report = ledger.get_report(report_id)
        assert report.reporter_id == SYSTEM_REPORTER
        assert report.reporter_role.value == "system"
        assert report.category.value == "inappropriate"
        assert report.reported_role.value == "supplier"

    def test_violation_types_map_to_categories(self, ledger):
        expected = {"spam": "spam", "inappropriate": "inappropriate", "noShow": "noShow"}
        for violation, category in expected.items():
            report = ledger.get_report(ledger.record_violation("client-2", violation, "detected"))
            assert report.category.value == category

    def test_unknown_violation(self, ledger):
        with pytest.raises(ValidationError):
            ledger.record_violation("supplier-1", "scraping", "bot traffic")


class TestLifecycle:

    def test_resolution_triggers_recompute(self, store, clock):
        callback = MagicMock()
        ledger = ReportLedger(store, on_standing_change=callback, clock=clock)
        store.put("users", "supplier-1", {"user_id": "supplier-1", "role": "supplier"})

        report_id = ledger.file_report("client-1", "client", "supplier-1", "supplier", "spam", "ads")
        callback.assert_not_called()

        ledger.start_investigation(report_id, "admin-1")
        callback.assert_not_called()

        ledger.resolve(report_id, "resolved", "Warned the supplier", actions=["warning"], admin_id="admin-1")
        callback.assert_called_once_with("supplier-1")

    def test_severity_override_triggers_recompute(self, store, clock):
        callback = MagicMock()
        ledger = ReportLedger(store, on_standing_change=callback, clock=clock)
        store.put("users", "supplier-1", {"user_id": "supplier-1", "role": "supplier"})

        report_id = ledger.file_report("client-1", "client", "supplier-1", "supplier", "spam", "ads")
        updated = ledger.override_severity(report_id, "critical", "admin-1")
        assert updated.effective_severity.value == "critical"
        callback.assert_called_once_with("supplier-1")

    def test_resolve_requires_note_and_known_outcome(self, ledger):
        report_id = ledger.file_report("client-1", "client", "supplier-1", "supplier", "spam", "ads")
        ledger.start_investigation(report_id, "admin-1")
        with pytest.raises(ValidationError):
            ledger.resolve(report_id, "resolved", "")
        with pytest.raises(ValidationError):
            ledger.resolve(report_id, "pending", "back to the queue")

    def test_actions_accumulate(self, ledger):
        report_id = ledger.file_report("client-1", "client", "supplier-1", "supplier", "fraud", "fake invoice")
        ledger.start_investigation(report_id, "admin-1")
        ledger.resolve(report_id, "escalated", "Needs legal", actions=["refund"])
        report = ledger.resolve(report_id, "resolved", "Settled", actions=["ban_listing"])
        assert report.actions_taken == ("refund", "ban_listing")

    def test_pending_dismissal_allowed_resolution_not(self, ledger):
        report_id = ledger.file_report("client-1", "client", "supplier-1", "supplier", "spam", "ads")
        with pytest.raises(PolicyViolationError):
            ledger.resolve(report_id, "resolved", "skip ahead")
        assert ledger.resolve(report_id, "dismissed", "No evidence").status == ReportStatus.DISMISSED

    def test_stale_write_loses(self, ledger, store):
        report_id = ledger.file_report("client-1", "client", "supplier-1", "supplier", "spam", "ads")
        doc = store.get("reports", report_id)
        ledger.start_investigation(report_id, "admin-1")
        with pytest.raises(ConflictError):
            store.put("reports", report_id, doc, expected_version=doc["_version"])


class TestQueries:

    def test_list_filters(self, ledger):
        first = ledger.file_report("client-1", "client", "supplier-1", "supplier", "spam", "ads")
        ledger.file_report("client-2", "client", "supplier-2", "supplier", "spam", "ads")
        ledger.start_investigation(first, "admin-1")

        assert [r.report_id for r in ledger.list_reports(status="investigating")] == [first]
        assert len(ledger.list_reports(reported_id="supplier-2")) == 1
        assert len(ledger.list_reports()) == 2

    def test_list_unknown_status(self, ledger):
        with pytest.raises(ValidationError):
            ledger.list_reports(status="archived")

    def test_aggregates_are_recounted(self, ledger):
        ledger.file_report("client-1", "client", "supplier-1", "supplier", "violence", "hit")
        ledger.file_report("client-2", "client", "supplier-1", "supplier", "spam", "ads")
        agg = ledger.aggregates("supplier-1")
        assert agg.total_reports == 2
        assert agg.critical_reports == 1
        assert agg.open_critical_reports == 1


class TestBehaviorCounters:

    def test_booking_outcomes(self, services):
        services.metrics.record_booking("supplier-1", "completed", start_delay_minutes=10)
        services.metrics.record_booking("supplier-1", "completed", start_delay_minutes=40)
        counters = services.metrics.record_booking("supplier-1", "cancelled")
        assert counters.total_bookings == 3
        assert counters.completed_bookings == 2
        assert counters.on_time_bookings == 1
        assert counters.cancelled_bookings == 1

    def test_review_range(self, services):
        with pytest.raises(ValidationError):
            services.metrics.record_review("supplier-1", 6)
        counters = services.metrics.record_review("supplier-1", 4)
        assert counters.overall_rating == 4.0

    def test_response_rate_blends_answered_and_quick(self, services):
        services.metrics.record_message("supplier-1", responded=True, response_minutes=5)
        services.metrics.record_message("supplier-1", responded=True, response_minutes=300)
        counters = services.metrics.record_message("supplier-1", responded=False)
        # 2/3 answered, 1/2 of those quick
        assert counters.response_rate == round((2 / 3) * 0.7 + 0.5 * 0.3, 4)

    def test_unknown_user(self, services):
        with pytest.raises(NotFoundError):
            services.metrics.record_review("ghost", 5)
