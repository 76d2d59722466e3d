"""
Standing Engine — User-facing API

Authenticated endpoints (JWT):
    POST /v1/reports                              - File a report against a user
    GET  /v1/standing/me                          - Own standing (score hidden while suspended)
    GET  /v1/standing/me/suspension               - Suspension notice + appeal affordance
    POST /v1/appeals                              - Appeal the current suspension

Supplier self-service:
    POST /v1/suppliers                            - Start onboarding
    GET  /v1/suppliers/me                         - Own supplier record
    POST /v1/suppliers/me/resubmit                - Answer a request for changes
    POST /v1/suppliers/me/identity/resubmit       - Resubmit rejected identity verification
    POST /v1/suppliers/me/documents               - Upload a verification document
    GET  /v1/suppliers/me/documents               - List own verification documents

Public lookups (no auth):
    GET  /v1/suppliers/{supplier_id}/eligibility  - Can this supplier take bookings?
    GET  /v1/suppliers/{supplier_id}/tier         - Current tier, benefits, progress
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
import structlog

from standing.engine.safety import SafetyStatus
from standing.rate_limit import rate_limit_documents, rate_limit_reports
from standing.security import require_auth
from standing.services import Services, get_services

logger = structlog.get_logger()

router = APIRouter(prefix="/v1", tags=["standing"])


# =============================================
# REQUEST/RESPONSE MODELS
# =============================================

class FileReportRequest(BaseModel):
    reported_id: str
    reported_role: str
    category: str
    reason: str
    description: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)
    booking_id: Optional[str] = None
    review_id: Optional[str] = None
    chat_id: Optional[str] = None


class FileReportResponse(BaseModel):
    report_id: str
    status: str = "pending"


class AppealRequest(BaseModel):
    message: str


class SupplierRegistration(BaseModel):
    category: Optional[str] = None
    service_count: int = Field(default=0, ge=0)


class DocumentUpload(BaseModel):
    document_type: str
    file_url: str
    file_name: str
    mime_type: str
    file_size: int
    expires_at: Optional[datetime] = None


def _require_supplier(user: dict) -> str:
    if user["role"] != "supplier":
        raise HTTPException(status_code=403, detail="Supplier account required")
    return user["user_id"]


# =============================================
# REPORTS & STANDING
# =============================================

@router.post("/reports", response_model=FileReportResponse, status_code=201)
async def file_report(
    body: FileReportRequest,
    background_tasks: BackgroundTasks,
    user: dict = Depends(rate_limit_reports),
    services: Services = Depends(get_services),
):
    reporter_role = user["role"] if user["role"] in ("client", "supplier") else "system"
    report_id = services.ledger.file_report(
        reporter_id=user["user_id"],
        reporter_role=reporter_role,
        reported_id=body.reported_id,
        reported_role=body.reported_role,
        category=body.category,
        reason=body.reason,
        evidence=body.evidence,
        description=body.description,
        booking_id=body.booking_id,
        review_id=body.review_id,
        chat_id=body.chat_id,
    )
    # New pending reports count toward the reported user's standing.
    background_tasks.add_task(services.standing.recompute, body.reported_id)
    return FileReportResponse(report_id=report_id)


@router.get("/standing/me")
async def my_standing(
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    snapshot = services.standing.get_standing(user["user_id"])
    view = {
        "safety_status": snapshot.safety_status.value,
        "warning_level": snapshot.warning_level.value,
        "warning_count": snapshot.warning_count,
        "badges": [b.to_dict() for b in snapshot.badges],
        "calculated_at": snapshot.calculated_at.isoformat() if snapshot.calculated_at else None,
    }
    if snapshot.safety_status != SafetyStatus.SUSPENDED:
        view["safety_score"] = snapshot.safety_score
    return view


@router.get("/standing/me/suspension")
async def my_suspension(
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return services.appeals.suspension_notice(user["user_id"])


@router.post("/appeals", status_code=201)
async def submit_appeal(
    body: AppealRequest,
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    appeal = services.appeals.submit_appeal(user["user_id"], body.message)
    return {"appeal_id": appeal.appeal_id, "status": appeal.status.value,
            "submitted_at": appeal.submitted_at.isoformat()}


# =============================================
# SUPPLIER SELF-SERVICE
# =============================================

@router.post("/suppliers", status_code=201)
async def register_supplier(
    body: SupplierRegistration,
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    supplier_id = _require_supplier(user)
    record = services.onboarding.register_supplier(supplier_id, body.category, body.service_count)
    return record.to_dict()


@router.get("/suppliers/me")
async def my_supplier_record(
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    record = services.onboarding.get(_require_supplier(user))
    return {**record.to_dict(), "eligibility": record.eligibility.to_dict()}


@router.post("/suppliers/me/resubmit")
async def resubmit_application(
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return services.onboarding.resubmit(_require_supplier(user)).to_dict()


@router.post("/suppliers/me/identity/resubmit")
async def resubmit_identity(
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return services.onboarding.resubmit_identity(_require_supplier(user)).to_dict()


@router.post("/suppliers/me/documents", status_code=201)
async def upload_document(
    body: DocumentUpload,
    user: dict = Depends(rate_limit_documents),
    services: Services = Depends(get_services),
):
    document = services.onboarding.upload_document(
        _require_supplier(user),
        document_type=body.document_type,
        file_url=body.file_url,
        file_name=body.file_name,
        mime_type=body.mime_type,
        file_size=body.file_size,
        expires_at=body.expires_at,
    )
    return document.to_dict()


@router.get("/suppliers/me/documents")
async def my_documents(
    user: dict = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return {"documents": services.onboarding.list_documents(_require_supplier(user))}


# =============================================
# PUBLIC LOOKUPS
# =============================================

@router.get("/suppliers/{supplier_id}/eligibility")
async def supplier_eligibility(supplier_id: str, services: Services = Depends(get_services)):
    return services.onboarding.eligibility(supplier_id).to_dict()


@router.get("/suppliers/{supplier_id}/tier")
async def supplier_tier(supplier_id: str, services: Services = Depends(get_services)):
    result = services.tiers.classify_supplier(supplier_id)
    return {
        "supplier_id": supplier_id,
        **services.tiers.progress(supplier_id),
        "benefits": result.benefits,
    }
