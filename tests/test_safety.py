"""
Tests for the safety score, the status ladder and snapshot transitions.
All pure: no store, no services.
"""
from datetime import timedelta

import pytest

from standing.config import SafetyPolicy
from standing.engine.metrics import BehaviorCounters, StandingMetrics
from standing.engine.reports import ReportAggregates
from standing.engine.safety import (
    SafetyStatus,
    StandingSnapshot,
    StatusReason,
    SuspensionSource,
    UserType,
    WarningLevel,
    compute_safety_score,
    derive_snapshot,
    force_suspension,
    lift_suspension,
    reset_warnings,
    status_from_metrics,
)
from standing.errors import ValidationError

from conftest import T0

# Good behavior across 20 bookings; individual tests override one signal at a time.
GOOD = dict(
    overall_rating=5.0, total_reviews=20, total_bookings=20, completed_bookings=20,
    completion_rate=1.0, cancellation_rate=0.0, response_rate=0.95, on_time_rate=1.0,
)


def metrics(**overrides):
    values = dict(GOOD)
    values.update(overrides)
    return StandingMetrics(**values)


def derive(previous, m, now=T0, policy=None):
    return derive_snapshot(previous, "supplier-1", UserType.SUPPLIER, m, (), now, policy)


class TestScore:

    def test_clean_record_scores_100(self):
        assert compute_safety_score(metrics()) == 100.0
        assert compute_safety_score(StandingMetrics()) == 100.0

    def test_rating_penalty_needs_five_reviews(self):
        assert compute_safety_score(metrics(overall_rating=4.0, total_reviews=10)) == 94.0
        assert compute_safety_score(metrics(overall_rating=1.0, total_reviews=4)) == 100.0

    def test_report_penalty_is_capped(self):
        assert compute_safety_score(metrics(total_reports=2, critical_reports=1, high_reports=1)) == 70.0
        assert compute_safety_score(metrics(total_reports=3, critical_reports=3)) == 60.0

    def test_cancellation_penalty(self):
        assert compute_safety_score(metrics(cancellation_rate=0.2)) == 90.0
        assert compute_safety_score(metrics(cancellation_rate=0.9)) == 85.0

    def test_rate_penalties_need_five_bookings(self):
        few = metrics(total_bookings=4, completed_bookings=0, completion_rate=0.0,
                      on_time_rate=0.0, response_rate=0.1, cancellation_rate=1.0)
        assert compute_safety_score(few) == 100.0

    def test_response_and_on_time_penalties(self):
        assert compute_safety_score(metrics(response_rate=0.7)) == 95.0
        assert compute_safety_score(metrics(on_time_rate=0.0)) == 90.0

    def test_score_never_negative(self):
        worst = metrics(overall_rating=1.0, total_reports=10, critical_reports=10,
                        cancellation_rate=1.0, completion_rate=0.0, response_rate=0.0,
                        on_time_rate=0.0)
        assert compute_safety_score(worst) == 0.0


class TestScoreMonotonicity:

    def test_more_critical_reports_never_raise_the_score(self):
        scores = [
            compute_safety_score(metrics(total_reports=n, critical_reports=n))
            for n in range(0, 6)
        ]
        assert scores == sorted(scores, reverse=True)

    def test_more_high_reports_never_raise_the_score(self):
        scores = [
            compute_safety_score(metrics(total_reports=n + 1, critical_reports=1, high_reports=n))
            for n in range(0, 6)
        ]
        assert scores == sorted(scores, reverse=True)

    def test_higher_cancellation_never_raises_the_score(self):
        rates = [i / 20 for i in range(21)]
        scores = [compute_safety_score(metrics(cancellation_rate=r)) for r in rates]
        assert scores == sorted(scores, reverse=True)

    def test_higher_completion_never_lowers_the_score(self):
        rates = [i / 20 for i in range(21)]
        scores = [compute_safety_score(metrics(completion_rate=r)) for r in rates]
        assert scores == sorted(scores)

    def test_higher_response_and_on_time_never_lower_the_score(self):
        rates = [i / 20 for i in range(21)]
        response = [compute_safety_score(metrics(response_rate=r)) for r in rates]
        on_time = [compute_safety_score(metrics(on_time_rate=r)) for r in rates]
        assert response == sorted(response)
        assert on_time == sorted(on_time)


class TestMetricsValidation:

    def test_resolved_plus_dismissed_cannot_exceed_total(self):
        with pytest.raises(ValidationError):
            StandingMetrics(total_reports=2, resolved_reports=2, dismissed_reports=1)

    def test_percent_rates_rejected(self):
        with pytest.raises(ValidationError):
            StandingMetrics(completion_rate=95.0)

    def test_rating_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            StandingMetrics(overall_rating=5.5)

    def test_build_from_counters_and_aggregates(self):
        counters = BehaviorCounters(
            total_bookings=10, completed_bookings=8, cancelled_bookings=2, on_time_bookings=6,
            total_reviews=4, rating_sum=18.0,
            messages_received=10, messages_responded=10, quick_responses=5,
        )
        aggregates = ReportAggregates(total_reports=3, resolved_reports=1, critical_reports=1)
        m = StandingMetrics.build(counters, aggregates)
        assert m.overall_rating == 4.5
        assert m.completion_rate == 0.8
        assert m.cancellation_rate == 0.2
        assert m.on_time_rate == 0.75
        assert m.response_rate == 0.85
        assert m.active_reports_count == 2

    def test_response_rate_defaults_without_messages(self):
        assert BehaviorCounters().response_rate == 0.85

    def test_high_severity_share(self):
        m = StandingMetrics(total_reports=4, critical_reports=1, high_reports=1)
        assert m.high_severity_report_percentage == 50.0
        assert StandingMetrics().high_severity_report_percentage == 0.0


class TestStatusLadder:

    def test_safe(self):
        assert status_from_metrics(metrics(), 100.0) == (SafetyStatus.SAFE, ())

    def test_low_score_warning(self):
        status, reasons = status_from_metrics(metrics(), 79.99)
        assert status == SafetyStatus.WARNING
        assert reasons == (StatusReason.LOW_SCORE,)

    def test_report_volume_thresholds(self):
        assert status_from_metrics(metrics(total_reports=3), 100.0)[0] == SafetyStatus.WARNING
        assert status_from_metrics(metrics(total_reports=5), 100.0)[0] == SafetyStatus.PROBATION
        assert status_from_metrics(metrics(total_reports=10), 100.0)[0] == SafetyStatus.SUSPENDED

    def test_resolved_reports_are_not_active(self):
        m = metrics(total_reports=10, resolved_reports=6, dismissed_reports=2)
        assert status_from_metrics(m, 100.0)[0] == SafetyStatus.SAFE

    def test_open_critical_report_triggers_warning(self):
        m = metrics(total_reports=1, critical_reports=1, open_critical_reports=1)
        status, reasons = status_from_metrics(m, 80.0)
        assert status == SafetyStatus.WARNING
        assert StatusReason.CRITICAL_REPORTS in reasons

    def test_score_bands(self):
        assert status_from_metrics(metrics(), 64.0)[0] == SafetyStatus.PROBATION
        assert status_from_metrics(metrics(), 49.0)[0] == SafetyStatus.SUSPENDED
        assert status_from_metrics(metrics(), 50.0)[0] == SafetyStatus.PROBATION

    def test_repeated_warnings_escalate_to_probation(self):
        status, reasons = status_from_metrics(metrics(), 75.0, warning_count=3)
        assert status == SafetyStatus.PROBATION
        assert StatusReason.REPEATED_WARNINGS in reasons

    def test_custom_policy(self):
        strict = SafetyPolicy(warning_threshold=95.0)
        assert status_from_metrics(metrics(), 90.0, policy=strict)[0] == SafetyStatus.WARNING


class TestTransitions:

    def test_first_snapshot_is_safe(self):
        snapshot = derive(None, metrics())
        assert snapshot.safety_status == SafetyStatus.SAFE
        assert snapshot.safety_score == 100.0
        assert snapshot.warning_count == 0
        assert snapshot.calculated_at == T0

    def test_entering_warning_counts_once(self):
        warned = derive(None, metrics(total_reports=3))
        assert warned.safety_status == SafetyStatus.WARNING
        assert warned.warning_count == 1
        assert warned.last_warning_date == T0

        still = derive(warned, metrics(total_reports=4), now=T0 + timedelta(hours=1))
        assert still.warning_count == 1
        assert still.last_warning_date == T0

    def test_warning_count_never_decreases(self):
        warned = derive(None, metrics(total_reports=3))
        cleared = derive(warned, metrics(total_reports=3, resolved_reports=3))
        assert cleared.safety_status == SafetyStatus.SAFE
        assert cleared.warning_count == 1
        assert cleared.last_warning_date == T0

        again = derive(cleared, metrics(total_reports=6, resolved_reports=3), now=T0 + timedelta(days=1))
        assert again.warning_count == 2

    def test_third_warning_goes_straight_to_probation(self):
        safe = StandingSnapshot(
            user_id="supplier-1", user_type=UserType.SUPPLIER, safety_score=100.0,
            safety_status=SafetyStatus.SAFE, metrics=metrics(), warning_count=2,
        )
        first = derive(safe, metrics(total_reports=3))
        assert first.safety_status == SafetyStatus.PROBATION
        assert first.warning_count == 3
        assert first.last_warning_date == T0
        assert first.probation_start_date == T0
        assert first.status_reasons == (StatusReason.REPORT_VOLUME, StatusReason.REPEATED_WARNINGS)

        second = derive(first, metrics(total_reports=3), now=T0 + timedelta(hours=1))
        assert second == first
        assert second.probation_start_date == T0

    def test_probation_start_kept_while_on_probation(self):
        probation = derive(None, metrics(total_reports=5))
        assert probation.probation_start_date == T0
        later = derive(probation, metrics(total_reports=6), now=T0 + timedelta(days=3))
        assert later.probation_start_date == T0

    def test_leaving_probation_clears_stamp(self):
        probation = derive(None, metrics(total_reports=5))
        safe = derive(probation, metrics(total_reports=5, resolved_reports=5))
        assert safe.safety_status == SafetyStatus.SAFE
        assert safe.probation_start_date is None

    def test_entering_suspension_mints_episode(self):
        suspended = derive(None, metrics(total_reports=10))
        assert suspended.safety_status == SafetyStatus.SUSPENDED
        assert suspended.suspension_start_date == T0
        assert suspended.suspension_end_date is None
        assert suspended.suspension_episode_id.startswith("susp_")
        assert suspended.suspension_source == SuspensionSource.AUTOMATIC
        assert suspended.warning_level == WarningLevel.CRITICAL

    def test_suspension_is_sticky(self):
        suspended = derive(None, metrics(total_reports=10))
        clean = metrics(total_reports=10, resolved_reports=10)
        again = derive(suspended, clean, now=T0 + timedelta(days=30))
        assert again.safety_status == SafetyStatus.SUSPENDED
        assert again.suspension_episode_id == suspended.suspension_episode_id
        assert again.safety_score == 100.0

    def test_time_boxed_suspension_expires(self):
        policy = SafetyPolicy(automatic_suspension_days=7)
        suspended = derive(None, metrics(total_reports=10), policy=policy)
        assert suspended.suspension_end_date == T0 + timedelta(days=7)

        later = T0 + timedelta(days=8)
        assert not suspended.is_suspended(later)
        lifted = derive(suspended, metrics(total_reports=10, resolved_reports=10), now=later, policy=policy)
        assert lifted.safety_status == SafetyStatus.SAFE
        assert lifted.suspension_episode_id is None
        assert lifted.reinstated_at == later

    def test_same_inputs_give_equal_snapshots(self):
        first = derive(None, metrics(total_reports=3))
        second = derive(first, metrics(total_reports=3), now=T0 + timedelta(hours=2))
        assert second == first
        assert second.calculated_at != first.calculated_at

    def test_snapshot_dict_round_trip(self):
        suspended = derive(None, metrics(total_reports=10))
        restored = StandingSnapshot.from_dict({**suspended.to_dict(), "_version": 4})
        assert restored == suspended
        assert restored.version == 4


class TestReinstatement:

    def test_lift_caps_at_probation_without_new_reports(self):
        suspended = derive(None, metrics(total_reports=10))
        lifted = lift_suspension(suspended, T0 + timedelta(days=1))
        assert lifted.safety_status == SafetyStatus.PROBATION
        assert lifted.suspension_episode_id is None
        assert lifted.suspension_start_date is None
        assert lifted.reports_at_reinstatement == 10

        recomputed = derive(lifted, metrics(total_reports=10), now=T0 + timedelta(days=2))
        assert recomputed.safety_status == SafetyStatus.PROBATION

    def test_new_reports_allow_resuspension(self):
        suspended = derive(None, metrics(total_reports=10))
        lifted = lift_suspension(suspended, T0 + timedelta(days=1))
        again = derive(lifted, metrics(total_reports=11), now=T0 + timedelta(days=2))
        assert again.safety_status == SafetyStatus.SUSPENDED
        assert again.suspension_episode_id != suspended.suspension_episode_id

    def test_lift_with_clean_metrics_is_safe(self):
        suspended = force_suspension(derive(None, metrics()), T0)
        lifted = lift_suspension(suspended, T0 + timedelta(hours=1))
        assert lifted.safety_status == SafetyStatus.SAFE


class TestAdminTransitions:

    def test_force_suspension_with_duration(self):
        suspended = force_suspension(derive(None, metrics()), T0, duration_days=14)
        assert suspended.safety_status == SafetyStatus.SUSPENDED
        assert suspended.suspension_source == SuspensionSource.ADMIN
        assert suspended.suspension_end_date == T0 + timedelta(days=14)
        assert suspended.status_reasons == (StatusReason.ADMIN_ACTION,)

    def test_force_over_automatic_opens_new_episode(self):
        automatic = derive(None, metrics(total_reports=10))
        forced = force_suspension(automatic, T0 + timedelta(hours=1))
        assert forced.suspension_episode_id != automatic.suspension_episode_id
        assert forced.suspension_source == SuspensionSource.ADMIN

    def test_reset_warnings(self):
        warned = derive(None, metrics(total_reports=3))
        reset = reset_warnings(warned, T0)
        assert reset.warning_count == 0
        assert reset.last_warning_date is None


class TestWarningLevel:

    def _snapshot(self, status, warning_count):
        return StandingSnapshot(
            user_id="u", user_type=UserType.CLIENT, safety_score=90.0,
            safety_status=status, metrics=StandingMetrics(), warning_count=warning_count,
        )

    def test_levels(self):
        assert self._snapshot(SafetyStatus.SAFE, 0).warning_level == WarningLevel.NONE
        assert self._snapshot(SafetyStatus.SAFE, 1).warning_level == WarningLevel.LOW
        assert self._snapshot(SafetyStatus.SAFE, 3).warning_level == WarningLevel.MEDIUM
        assert self._snapshot(SafetyStatus.WARNING, 1).warning_level == WarningLevel.MEDIUM
        assert self._snapshot(SafetyStatus.SAFE, 5).warning_level == WarningLevel.HIGH
        assert self._snapshot(SafetyStatus.PROBATION, 0).warning_level == WarningLevel.HIGH
        assert self._snapshot(SafetyStatus.SUSPENDED, 0).warning_level == WarningLevel.CRITICAL
