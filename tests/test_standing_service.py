"""
Tests for StandingService: recompute, admin actions and the side effects that
follow a standing change.
"""
from unittest.mock import MagicMock

import pytest

from standing.config import SafetyPolicy
from standing.engine.onboarding import SupplierAccountStatus, SuspendedBy
from standing.engine.safety import SafetyStatus, StatusReason
from standing.errors import ConflictError, NotFoundError, PolicyViolationError, ValidationError
from standing.services import build_services
from standing.services.notifications import EventKind
from standing.services.users import STANDINGS, register_user

from conftest import drive_below_floor, seed_counters


def event_kinds(dispatcher):
    return [c.args[0].kind for c in dispatcher.dispatch.call_args_list]


class TestRecompute:

    def test_first_read_computes_snapshot(self, services):
        snapshot = services.standing.get_standing("client-1")
        assert snapshot.safety_status == SafetyStatus.SAFE
        assert snapshot.safety_score == 100.0
        assert snapshot.version == 1

    def test_unknown_user(self, services):
        with pytest.raises(NotFoundError):
            services.standing.recompute("ghost")

    def test_recompute_is_idempotent(self, services, store, clock):
        """Nothing changed in between: same snapshot, same version, no write."""
        drive_below_floor(services, "supplier-1")
        first = services.standing.recompute("supplier-1")
        stored_version = store.get(STANDINGS, "supplier-1")["_version"]

        clock.advance(hours=3)
        second = services.standing.recompute("supplier-1")
        assert second == first
        assert second.version == first.version
        assert store.get(STANDINGS, "supplier-1")["_version"] == stored_version

    def test_suspension_stamps(self, services, clock):
        drive_below_floor(services, "supplier-1")
        now = clock.advance(minutes=5)
        snapshot = services.standing.recompute("supplier-1")

        assert snapshot.safety_status == SafetyStatus.SUSPENDED
        assert snapshot.safety_score == 22.0
        assert snapshot.suspension_start_date == now
        assert snapshot.suspension_end_date is None
        assert snapshot.suspension_episode_id.startswith("susp_")
        assert snapshot.metrics.active_reports_count == 2
        assert StatusReason.LOW_SCORE in snapshot.status_reasons

    def test_resolution_recomputes_reported_user(self, services):
        """The ledger callback issued the first warning while reports were filed."""
        drive_below_floor(services, "supplier-1")
        stored = services.standing.get_standing("supplier-1")
        assert stored.safety_status == SafetyStatus.WARNING
        assert stored.warning_count == 1

    def test_suspension_is_sticky(self, services, store, clock):
        critical, high, _ = drive_below_floor(services, "supplier-1")
        services.standing.recompute("supplier-1")

        for report_id in (critical, high):
            services.ledger.start_investigation(report_id, "admin-1")
            services.ledger.resolve(report_id, "dismissed", "Not substantiated", admin_id="admin-1")
        seed_counters(store, "supplier-1", total_reviews=90, rating_sum=450.0,
                      total_bookings=90, completed_bookings=90, on_time_bookings=90)
        clock.advance(days=2)

        snapshot = services.standing.recompute("supplier-1")
        assert snapshot.safety_status == SafetyStatus.SUSPENDED
        assert snapshot.safety_score > 80

    def test_time_boxed_suspension_runs_out(self, store, clock):
        services = build_services(store, policy=SafetyPolicy(automatic_suspension_days=7), clock=clock)
        for user_id, role in (("client-1", "client"), ("client-2", "client"),
                              ("client-3", "client"), ("supplier-1", "supplier")):
            register_user(store, user_id, role)
        drive_below_floor(services, "supplier-1")
        suspended = services.standing.recompute("supplier-1")
        assert suspended.suspension_end_date is not None

        clock.advance(days=8)
        lifted = services.standing.recompute("supplier-1")
        assert lifted.safety_status == SafetyStatus.PROBATION
        assert lifted.reinstated_at == clock.now
        assert lifted.suspension_episode_id is None

    def test_conflict_retries_exhausted(self, services, store):
        store.put = MagicMock(side_effect=ConflictError("lost"))
        with pytest.raises(ConflictError):
            services.standing.recompute("client-1")
        assert store.put.call_count == 5


class TestSupplierAccountSync:

    def test_suspension_suspends_account_and_reinstatement_restores(self, services, active_supplier):
        drive_below_floor(services, active_supplier)
        services.standing.recompute(active_supplier)
        record = services.onboarding.get(active_supplier)
        assert record.account_status == SupplierAccountStatus.SUSPENDED
        assert record.suspended_by == SuspendedBy.SAFETY_ENGINE
        assert not services.onboarding.eligibility(active_supplier).eligible

        services.standing.reinstate(active_supplier, "admin-1", "Reviewed footage")
        assert services.onboarding.get(active_supplier).account_status == SupplierAccountStatus.ACTIVE

    def test_appeal_approval_keeps_admin_account_suspension(self, services, active_supplier):
        services.onboarding.suspend(active_supplier, "admin-1", "Forged business licence")
        drive_below_floor(services, active_supplier)
        services.standing.recompute(active_supplier)
        services.appeals.submit_appeal(active_supplier, "The reports were retaliatory")
        services.appeals.resolve_appeal(active_supplier, True, "admin-2")

        assert services.standing.get_standing(active_supplier).safety_status == SafetyStatus.PROBATION
        record = services.onboarding.get(active_supplier)
        assert record.account_status == SupplierAccountStatus.SUSPENDED
        assert record.suspended_by == SuspendedBy.ADMIN
        assert not services.onboarding.eligibility(active_supplier).eligible

    def test_admin_takeover_of_safety_suspension_sticks(self, services, active_supplier):
        drive_below_floor(services, active_supplier)
        services.standing.recompute(active_supplier)
        services.onboarding.suspend(active_supplier, "admin-1", "Licence expired")

        services.standing.reinstate(active_supplier, "admin-1", "Reviewed footage")
        record = services.onboarding.get(active_supplier)
        assert record.account_status == SupplierAccountStatus.SUSPENDED
        assert record.suspended_by == SuspendedBy.ADMIN

    def test_supplier_without_record_is_fine(self, services):
        drive_below_floor(services, "supplier-2")
        assert services.standing.recompute("supplier-2").safety_status == SafetyStatus.SUSPENDED


class TestAdminActions:

    def test_force_suspend(self, services, clock):
        snapshot = services.standing.force_suspend("client-1", "admin-1", "Threats in chat", duration_days=14)
        assert snapshot.safety_status == SafetyStatus.SUSPENDED
        assert snapshot.status_reasons == (StatusReason.ADMIN_ACTION,)
        assert snapshot.suspension_source.value == "admin"
        assert (snapshot.suspension_end_date - clock.now).days == 14

    def test_force_suspend_requires_reason(self, services):
        with pytest.raises(ValidationError):
            services.standing.force_suspend("client-1", "admin-1", "")

    def test_force_suspend_rejects_non_positive_duration(self, services):
        for days in (0, -3):
            with pytest.raises(ValidationError):
                services.standing.force_suspend("client-1", "admin-1", "Threats in chat", duration_days=days)
        assert services.standing.get_standing("client-1").safety_status == SafetyStatus.SAFE

    def test_forced_suspension_survives_recompute(self, services, clock):
        services.standing.force_suspend("client-1", "admin-1", "Threats in chat")
        clock.advance(days=1)
        assert services.standing.recompute("client-1").safety_status == SafetyStatus.SUSPENDED

    def test_reinstate_requires_suspension(self, services):
        with pytest.raises(PolicyViolationError):
            services.standing.reinstate("client-1", "admin-1", "nothing to lift")

    def test_reinstated_user_capped_at_probation(self, services, clock):
        drive_below_floor(services, "supplier-1")
        suspended = services.standing.recompute("supplier-1")
        reinstated = services.standing.reinstate("supplier-1", "admin-1", "Second chance")
        assert reinstated.safety_status == SafetyStatus.PROBATION
        assert reinstated.reports_at_reinstatement == 3

        clock.advance(hours=1)
        assert services.standing.recompute("supplier-1").safety_status == SafetyStatus.PROBATION

        services.ledger.file_report("client-1", "client", "supplier-1", "supplier", "fraud", "again")
        clock.advance(hours=1)
        again = services.standing.recompute("supplier-1")
        assert again.safety_status == SafetyStatus.SUSPENDED
        assert again.suspension_episode_id != suspended.suspension_episode_id

    def test_clean_user_reinstated_to_safe(self, services):
        services.standing.force_suspend("client-1", "admin-1", "Mistaken identity")
        assert services.standing.reinstate("client-1", "admin-1", "Cleared").safety_status == SafetyStatus.SAFE

    def test_reset_warnings(self, services):
        drive_below_floor(services, "supplier-1")
        snapshot = services.standing.reset_warnings("supplier-1", "admin-1")
        assert snapshot.warning_count == 0
        assert snapshot.last_warning_date is None


class TestSideEffects:

    @pytest.fixture
    def wired(self, store, clock):
        history = MagicMock()
        dispatcher = MagicMock()
        svc = build_services(store, history=history, dispatcher=dispatcher, clock=clock)
        for user_id, role in (("client-1", "client"), ("client-2", "client"),
                              ("client-3", "client"), ("supplier-1", "supplier")):
            register_user(store, user_id, role)
        return svc, history, dispatcher

    def test_events_for_warning_and_suspension(self, wired):
        svc, _, dispatcher = wired
        drive_below_floor(svc, "supplier-1")
        svc.standing.recompute("supplier-1")
        assert event_kinds(dispatcher) == [EventKind.WARNING_ISSUED, EventKind.ACCOUNT_SUSPENDED]

    def test_reinstatement_event(self, wired):
        svc, _, dispatcher = wired
        svc.standing.force_suspend("client-1", "admin-1", "Threats")
        svc.standing.reinstate("client-1", "admin-1", "Cleared")
        assert event_kinds(dispatcher)[-1] == EventKind.ACCOUNT_REINSTATED

    def test_dispatch_failure_does_not_undo_write(self, wired, store):
        svc, _, dispatcher = wired
        dispatcher.dispatch.side_effect = RuntimeError("webhook down")
        snapshot = svc.standing.force_suspend("client-1", "admin-1", "Threats")
        assert store.get(STANDINGS, "client-1")["safety_status"] == "suspended"
        assert snapshot.safety_status == SafetyStatus.SUSPENDED

    def test_history_gets_snapshots_and_transitions(self, wired):
        svc, history, _ = wired
        svc.standing.force_suspend("client-1", "admin-1", "Threats")

        assert history.save_snapshot.call_count == 2
        transition = history.record_transition.call_args.kwargs
        assert transition["kind"] == "safety_status"
        assert transition["from_state"] == "safe"
        assert transition["to_state"] == "suspended"
        assert transition["actor"] == "admin-1"

    def test_unchanged_recompute_writes_no_history(self, wired):
        svc, history, _ = wired
        svc.standing.recompute("client-1")
        svc.standing.recompute("client-1")
        assert history.save_snapshot.call_count == 1
