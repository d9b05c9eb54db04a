"""
Audit API Routes

Firm assignments, audits, observations and scorecards.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_actor
from ..database import get_db
from ..models.actor import ActorContext
from ..models.db_models import ObservationSeverity, ObservationStatus
from ..services.escalation import AuditService
from .common import unwrap


router = APIRouter(prefix="/audits", tags=["audits"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class AssignAgencyRequest(BaseModel):
    agency_id: str
    firm_id: str


class FirmAssignmentsRequest(BaseModel):
    assigned_agency_ids: List[str] = Field(default_factory=list)
    unassigned_agency_ids: List[str] = Field(default_factory=list)


class CreateAuditRequest(BaseModel):
    agency_id: str
    audit_date: date
    auditor_name: Optional[str] = None
    auditor_employee_id: Optional[str] = None
    location: Optional[str] = None
    remarks: Optional[str] = None


class AddObservationRequest(BaseModel):
    observation_number: str
    severity: ObservationSeverity
    description: str
    category: Optional[str] = None
    evidence_required: bool = False


class ScorecardRequest(BaseModel):
    audit_period: str
    audit_score: float
    audit_grade: str
    audit_category: Optional[str] = None
    final_observation: Optional[str] = None
    justification: Optional[str] = None


# =============================================================================
# ASSIGNMENTS (SUPER_ADMIN)
# =============================================================================

@router.post("/assignments", response_model=dict)
async def assign_agency(
    request: AssignAgencyRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(AuditService(db).assign_agency_to_firm(actor, request.agency_id, request.firm_id))


@router.put("/firms/{firm_id}/assignments", response_model=dict)
async def update_firm_assignments(
    firm_id: str,
    request: FirmAssignmentsRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = AuditService(db).update_firm_assignments(
        actor, firm_id, request.assigned_agency_ids, request.unassigned_agency_ids,
    )
    return unwrap(result)


# =============================================================================
# ADMIN QUERIES
# =============================================================================

@router.get("/observations", response_model=dict)
async def list_observations(
    status: Optional[ObservationStatus] = None,
    severity: Optional[ObservationSeverity] = None,
    agency_id: Optional[str] = None,
    audit_id: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = AuditService(db).admin_observations(
        actor, status=status, severity=severity, agency_id=agency_id, audit_id=audit_id,
    )
    return unwrap(result)


@router.get("/observations/pending-by-agency", response_model=dict)
async def pending_by_agency(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Observations awaiting review, grouped per agency for bulk issuance."""
    return unwrap(AuditService(db).agencies_with_pending_observations(actor))


# =============================================================================
# AUDITOR ENDPOINTS
# =============================================================================

@router.post("", response_model=dict)
async def create_audit(
    request: CreateAuditRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = AuditService(db).create_audit(
        actor,
        request.agency_id,
        request.audit_date,
        auditor_name=request.auditor_name,
        auditor_employee_id=request.auditor_employee_id,
        location=request.location,
        remarks=request.remarks,
    )
    return unwrap(result)


@router.get("/{audit_id}", response_model=dict)
async def get_audit(
    audit_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(AuditService(db).audit_details(actor, audit_id))


@router.post("/{audit_id}/observations", response_model=dict)
async def add_observation(
    audit_id: str,
    request: AddObservationRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = AuditService(db).add_observation(
        actor,
        audit_id,
        request.observation_number,
        request.severity,
        request.description,
        category=request.category,
        evidence_required=request.evidence_required,
    )
    return unwrap(result)


@router.post("/{audit_id}/complete", response_model=dict)
async def complete_audit(
    audit_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(AuditService(db).complete_audit(actor, audit_id))


@router.put("/{audit_id}/scorecard", response_model=dict)
async def save_scorecard(
    audit_id: str,
    request: ScorecardRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = AuditService(db).save_scorecard(
        actor,
        audit_id,
        request.audit_period,
        request.audit_score,
        request.audit_grade,
        audit_category=request.audit_category,
        final_observation=request.final_observation,
        justification=request.justification,
    )
    return unwrap(result)
