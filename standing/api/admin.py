"""
Standing Engine — Admin API

Every endpoint requires a token with role=admin. Admin decisions are the
inputs to the engine's state machines; the admin UI itself lives elsewhere.

Users:
    POST /v1/admin/users                                   - Mirror a user from the identity provider

Reports:
    GET  /v1/admin/reports                                 - List (filter by reported_id, status)
    POST /v1/admin/reports/{report_id}/investigate         - pending -> investigating
    POST /v1/admin/reports/{report_id}/resolve             - resolved | dismissed | escalated
    POST /v1/admin/reports/{report_id}/severity            - Override effective severity
    POST /v1/admin/violations                              - Record an automated violation

Standing:
    GET  /v1/admin/standing/{user_id}                      - Full snapshot incl. score and metrics
    GET  /v1/admin/standing/{user_id}/history              - Snapshot + transition history
    POST /v1/admin/standing/{user_id}/recompute            - Recompute now
    POST /v1/admin/standing/{user_id}/suspend              - Force suspension
    POST /v1/admin/standing/{user_id}/reinstate            - Lift suspension
    POST /v1/admin/standing/{user_id}/reset-warnings       - Zero the warning count

Appeals:
    GET  /v1/admin/appeals/{user_id}                       - Appeal for the current episode
    POST /v1/admin/appeals/{user_id}/resolve               - Approve (reinstate) or reject

Suppliers:
    GET  /v1/admin/suppliers/stats                         - Counts per account status
    GET  /v1/admin/suppliers/{supplier_id}                 - Record, eligibility, documents
    POST /v1/admin/suppliers/{supplier_id}/approve
    POST /v1/admin/suppliers/{supplier_id}/request-changes
    POST /v1/admin/suppliers/{supplier_id}/reject
    POST /v1/admin/suppliers/{supplier_id}/reopen
    POST /v1/admin/suppliers/{supplier_id}/suspend
    POST /v1/admin/suppliers/{supplier_id}/reactivate
    POST /v1/admin/suppliers/{supplier_id}/identity/verify
    POST /v1/admin/suppliers/{supplier_id}/identity/reject
    POST /v1/admin/suppliers/{supplier_id}/identity/reset
    POST /v1/admin/suppliers/{supplier_id}/tier/refresh
    POST /v1/admin/documents/{document_id}/review
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
import structlog

from standing.security import require_admin
from standing.services import Services, get_services
from standing.services.users import register_user

logger = structlog.get_logger()

admin_router = APIRouter(prefix="/v1/admin", tags=["admin"])


# =============================================
# REQUEST MODELS
# =============================================

class RegisterUserRequest(BaseModel):
    user_id: str
    role: str


class ResolveReportRequest(BaseModel):
    outcome: str
    resolution_note: str
    actions: List[str] = Field(default_factory=list)


class SeverityRequest(BaseModel):
    severity: str


class ViolationRequest(BaseModel):
    user_id: str
    violation_type: str
    description: str


class SuspendRequest(BaseModel):
    reason: str
    duration_days: Optional[int] = Field(default=None, ge=1)


class ReasonRequest(BaseModel):
    reason: str


class DecisionRequest(BaseModel):
    approve: bool
    note: Optional[str] = None


class DocumentReviewRequest(BaseModel):
    approve: bool
    reason: Optional[str] = None


# =============================================
# USERS & REPORTS
# =============================================

@admin_router.post("/users", status_code=201)
async def mirror_user(
    body: RegisterUserRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return register_user(services.store, body.user_id, body.role)


@admin_router.get("/reports")
async def list_reports(
    reported_id: Optional[str] = None,
    status: Optional[str] = None,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    reports = services.ledger.list_reports(reported_id=reported_id, status=status)
    return {"reports": [r.to_dict() for r in reports], "count": len(reports)}


@admin_router.post("/reports/{report_id}/investigate")
async def investigate_report(
    report_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.ledger.start_investigation(report_id, admin["user_id"]).to_dict()


@admin_router.post("/reports/{report_id}/resolve")
async def resolve_report(
    report_id: str,
    body: ResolveReportRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    report = services.ledger.resolve(
        report_id, body.outcome, body.resolution_note,
        actions=body.actions, admin_id=admin["user_id"],
    )
    return report.to_dict()


@admin_router.post("/reports/{report_id}/severity")
async def override_severity(
    report_id: str,
    body: SeverityRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.ledger.override_severity(report_id, body.severity, admin["user_id"]).to_dict()


@admin_router.post("/violations", status_code=201)
async def record_violation(
    body: ViolationRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    report_id = services.ledger.record_violation(body.user_id, body.violation_type, body.description)
    standing = services.standing.recompute(body.user_id)
    return {"report_id": report_id, "safety_status": standing.safety_status.value}


# =============================================
# STANDING
# =============================================

@admin_router.get("/standing/{user_id}")
async def get_standing(
    user_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.standing.get_standing(user_id).to_dict()


@admin_router.get("/standing/{user_id}/history")
async def standing_history(
    user_id: str,
    limit: int = 30,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    if services.history is None:
        return {"user_id": user_id, "snapshots": [], "transitions": []}
    return {
        "user_id": user_id,
        "snapshots": services.history.get_history(user_id, limit=limit),
        "transitions": services.history.get_transitions(user_id, limit=limit),
    }


@admin_router.post("/standing/{user_id}/recompute")
async def recompute_standing(
    user_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.standing.recompute(user_id).to_dict()


@admin_router.post("/standing/{user_id}/suspend")
async def suspend_user(
    user_id: str,
    body: SuspendRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    snapshot = services.standing.force_suspend(
        user_id, admin["user_id"], body.reason, duration_days=body.duration_days,
    )
    return snapshot.to_dict()


@admin_router.post("/standing/{user_id}/reinstate")
async def reinstate_user(
    user_id: str,
    body: ReasonRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.standing.reinstate(user_id, admin["user_id"], body.reason).to_dict()


@admin_router.post("/standing/{user_id}/reset-warnings")
async def reset_warnings(
    user_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.standing.reset_warnings(user_id, admin["user_id"]).to_dict()


# =============================================
# APPEALS
# =============================================

@admin_router.get("/appeals/{user_id}")
async def get_appeal(
    user_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.appeals.get_appeal(user_id).to_dict()


@admin_router.post("/appeals/{user_id}/resolve")
async def resolve_appeal(
    user_id: str,
    body: DecisionRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    appeal = services.appeals.resolve_appeal(user_id, body.approve, admin["user_id"], body.note)
    return {
        "appeal": appeal.to_dict(),
        "safety_status": services.standing.get_standing(user_id).safety_status.value,
    }


# =============================================
# SUPPLIERS
# =============================================

@admin_router.get("/suppliers/stats")
async def supplier_stats(
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.onboarding.stats()


@admin_router.get("/suppliers/{supplier_id}")
async def get_supplier(
    supplier_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    record = services.onboarding.get(supplier_id)
    return {
        **record.to_dict(),
        "eligibility": record.eligibility.to_dict(),
        "documents": services.onboarding.list_documents(supplier_id),
    }


@admin_router.post("/suppliers/{supplier_id}/approve")
async def approve_supplier(
    supplier_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.onboarding.approve(supplier_id, admin["user_id"]).to_dict()


@admin_router.post("/suppliers/{supplier_id}/request-changes")
async def request_changes(
    supplier_id: str,
    body: ReasonRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.onboarding.request_changes(supplier_id, admin["user_id"], body.reason).to_dict()


@admin_router.post("/suppliers/{supplier_id}/reject")
async def reject_supplier(
    supplier_id: str,
    body: ReasonRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.onboarding.reject(supplier_id, admin["user_id"], body.reason).to_dict()


@admin_router.post("/suppliers/{supplier_id}/reopen")
async def reopen_supplier(
    supplier_id: str,
    body: ReasonRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.onboarding.reopen(supplier_id, admin["user_id"], body.reason).to_dict()


@admin_router.post("/suppliers/{supplier_id}/suspend")
async def suspend_supplier(
    supplier_id: str,
    body: ReasonRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.onboarding.suspend(supplier_id, admin["user_id"], body.reason).to_dict()


@admin_router.post("/suppliers/{supplier_id}/reactivate")
async def reactivate_supplier(
    supplier_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.onboarding.reactivate(supplier_id, admin["user_id"]).to_dict()


@admin_router.post("/suppliers/{supplier_id}/identity/verify")
async def verify_identity(
    supplier_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    record = services.onboarding.verify_identity(supplier_id, admin["user_id"])
    services.standing.recompute(supplier_id)
    return record.to_dict()


@admin_router.post("/suppliers/{supplier_id}/identity/reject")
async def reject_identity(
    supplier_id: str,
    body: ReasonRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    record = services.onboarding.reject_identity(supplier_id, admin["user_id"], body.reason)
    services.standing.recompute(supplier_id)
    return record.to_dict()


@admin_router.post("/suppliers/{supplier_id}/identity/reset")
async def reset_identity(
    supplier_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    record = services.onboarding.reset_identity(supplier_id, admin["user_id"])
    services.standing.recompute(supplier_id)
    return record.to_dict()


@admin_router.post("/suppliers/{supplier_id}/tier/refresh")
async def refresh_tier(
    supplier_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.tiers.refresh(supplier_id).to_dict()


@admin_router.post("/documents/{document_id}/review")
async def review_document(
    document_id: str,
    body: DocumentReviewRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services),
):
    document = services.onboarding.review_document(
        document_id, body.approve, admin["user_id"], body.reason,
    )
    return document.to_dict()
