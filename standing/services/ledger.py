"""
Standing Engine — Report Ledger

Files reports, moves them through their lifecycle, and derives the per-user
aggregates that feed the safety score. Aggregates are always recounted from
the report documents themselves, never kept as running totals.

Any change that can affect the reported user's standing (resolution,
severity override) triggers a recompute of that user's standing.
"""
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from standing.engine.common import require_text, utcnow
from standing.engine.reports import (
    RESOLUTION_OUTCOMES,
    VIOLATION_CATEGORY,
    Report,
    ReportAggregates,
    ReportStatus,
    ReporterRole,
    ViolationType,
    aggregate_reports,
)
from standing.errors import NotFoundError, ValidationError
from standing.services.users import REPORTS, get_user
from standing.store.documents import DocumentStore
from standing.store.history import StandingHistory

logger = structlog.get_logger()

SYSTEM_REPORTER = "system"


def load_reports(store: DocumentStore, reported_id: str) -> List[Report]:
    return [Report.from_dict(d) for d in store.query(REPORTS, reported_id=reported_id)]


def report_aggregates(store: DocumentStore, reported_id: str) -> ReportAggregates:
    return aggregate_reports(load_reports(store, reported_id))


class ReportLedger:

    def __init__(
        self,
        store: DocumentStore,
        on_standing_change: Optional[Callable[[str], object]] = None,
        history: Optional[StandingHistory] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._on_standing_change = on_standing_change
        self._history = history
        self._clock = clock

    # =============================================
    # FILING
    # =============================================

    def file_report(
        self,
        reporter_id: str,
        reporter_role: str,
        reported_id: str,
        reported_role: str,
        category: str,
        reason: str,
        evidence: Optional[List[str]] = None,
        description: Optional[str] = None,
        booking_id: Optional[str] = None,
        review_id: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> str:
        """Validate and store a pending report. Returns the report id."""
        report = Report.new(
            reporter_id=reporter_id,
            reporter_role=reporter_role,
            reported_id=reported_id,
            reported_role=reported_role,
            category=category,
            reason=reason,
            now=self._clock(),
            evidence=evidence,
            description=description,
            booking_id=booking_id,
            review_id=review_id,
            chat_id=chat_id,
        )
        get_user(self._store, report.reported_id)
        self._store.create(REPORTS, report.report_id, report.to_dict())
        logger.info("report_filed",
                    report_id=report.report_id,
                    reported_id=report.reported_id,
                    category=report.category.value,
                    severity=report.suggested_severity.value)
        return report.report_id

    def record_violation(self, user_id: str, violation_type: str, description: str) -> str:
        """File a report on behalf of automated detection."""
        try:
            violation = ViolationType(violation_type)
        except ValueError as e:
            raise ValidationError(f"Unknown violation type: {violation_type!r}") from e
        user = get_user(self._store, user_id)
        role = user.get("role") if user.get("role") in ("client", "supplier") else "client"
        report_id = self.file_report(
            reporter_id=SYSTEM_REPORTER,
            reporter_role=ReporterRole.SYSTEM.value,
            reported_id=user_id,
            reported_role=role,
            category=VIOLATION_CATEGORY[violation].value,
            reason=f"Automated detection: {violation.value}",
            description=require_text("description", description),
        )
        logger.info("violation_recorded", user_id=user_id, violation=violation.value,
                    report_id=report_id)
        return report_id

    # =============================================
    # LIFECYCLE
    # =============================================

    def get_report(self, report_id: str) -> Report:
        return self._load(report_id)[0]

    def _save(self, before: Report, after: Report, version: int, actor: Optional[str]) -> Report:
        self._store.put(REPORTS, after.report_id, after.to_dict(), expected_version=version)
        if self._history is not None and before.status != after.status:
            self._history.record_transition(
                user_id=after.reported_id,
                kind="report_status",
                from_state=before.status.value,
                to_state=after.status.value,
                actor=actor,
                reason=after.resolution,
                details={"report_id": after.report_id},
                occurred_at=after.updated_at,
            )
        return after

    def _load(self, report_id: str):
        doc = self._store.get(REPORTS, report_id)
        if doc is None:
            raise NotFoundError("report", report_id)
        return Report.from_dict(doc), doc.get("_version", 0)

    def start_investigation(self, report_id: str, admin_id: str) -> Report:
        report, version = self._load(report_id)
        updated = report.transition(ReportStatus.INVESTIGATING, self._clock(), assigned_to=admin_id)
        logger.info("report_investigating", report_id=report_id, admin_id=admin_id)
        return self._save(report, updated, version, admin_id)

    def resolve(
        self,
        report_id: str,
        outcome: str,
        resolution_note: str,
        actions: Optional[List[str]] = None,
        admin_id: Optional[str] = None,
    ) -> Report:
        try:
            target = ReportStatus(outcome)
        except ValueError as e:
            raise ValidationError(f"Unknown outcome: {outcome!r}") from e
        if target not in RESOLUTION_OUTCOMES:
            raise ValidationError(f"Outcome must be resolved, dismissed or escalated, got {outcome!r}")
        note = require_text("resolution_note", resolution_note)

        report, version = self._load(report_id)
        updated = report.transition(
            target,
            self._clock(),
            resolution=note,
            actions_taken=tuple(report.actions_taken) + tuple(actions or ()),
        )
        self._save(report, updated, version, admin_id)
        logger.info("report_resolved", report_id=report_id, outcome=target.value,
                    reported_id=report.reported_id, admin_id=admin_id)
        self._standing_changed(report.reported_id)
        return updated

    def override_severity(self, report_id: str, severity: str, admin_id: str) -> Report:
        report, version = self._load(report_id)
        updated = report.with_severity(severity, admin_id, self._clock())
        self._save(report, updated, version, admin_id)
        logger.info("report_severity_overridden", report_id=report_id,
                    suggested=report.suggested_severity.value,
                    effective=updated.effective_severity.value,
                    admin_id=admin_id)
        self._standing_changed(report.reported_id)
        return updated

    # =============================================
    # QUERIES
    # =============================================

    def list_reports(self, reported_id: Optional[str] = None,
                     status: Optional[str] = None) -> List[Report]:
        filters = {}
        if reported_id:
            filters["reported_id"] = reported_id
        if status:
            try:
                filters["status"] = ReportStatus(status).value
            except ValueError as e:
                raise ValidationError(f"Unknown report status: {status!r}") from e
        reports = [Report.from_dict(d) for d in self._store.query(REPORTS, **filters)]
        return sorted(reports, key=lambda r: r.created_at)

    def aggregates(self, user_id: str) -> ReportAggregates:
        return report_aggregates(self._store, user_id)

    def _standing_changed(self, user_id: str) -> None:
        if self._on_standing_change is not None:
            self._on_standing_change(user_id)
