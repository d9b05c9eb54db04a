"""
Approval Request API Routes

Agencies request edit access to locked forms; admins review.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_actor
from ..database import get_db
from ..models.actor import ActorContext
from ..models.db_models import ApprovalStatus, ApprovalType
from ..services.forms import ApprovalRequestBroker, ReviewDecision
from .common import unwrap


router = APIRouter(prefix="/approvals", tags=["approvals"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class EditRequest(BaseModel):
    """Request to unlock a submitted form."""
    form_type: str = Field(..., description="Form type tag")
    form_id: str = Field(..., description="ID of the submitted form")
    reason: str = Field(..., description="Why the form must change")
    request_type: ApprovalType = Field(default=ApprovalType.UPDATE_SUBMITTED_FORM)
    document_path: Optional[str] = Field(None, description="Path of an already uploaded supporting document")


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    note: Optional[str] = None


class DocumentRequest(BaseModel):
    message: str


class DocumentUpload(BaseModel):
    document_path: str


# =============================================================================
# AGENCY ENDPOINTS
# =============================================================================

@router.post("", response_model=dict)
async def request_edit(
    request: EditRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = ApprovalRequestBroker(db).request_edit(
        actor,
        request.form_type,
        request.form_id,
        request.reason,
        request_type=request.request_type,
        document_path=request.document_path,
    )
    return unwrap(result)


@router.get("/mine", response_model=dict)
async def my_requests(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(ApprovalRequestBroker(db).my_requests(actor))


@router.get("/status", response_model=dict)
async def approval_status(
    form_type: str,
    form_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(ApprovalRequestBroker(db).approval_status(actor, form_type, form_id))


@router.post("/{request_id}/document", response_model=dict)
async def upload_document(
    request_id: str,
    request: DocumentUpload,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(ApprovalRequestBroker(db).upload_document(actor, request_id, request.document_path))


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.get("", response_model=dict)
async def list_requests(
    status: Optional[ApprovalStatus] = Query(ApprovalStatus.PENDING),
    user_id: Optional[str] = None,
    form_type: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = ApprovalRequestBroker(db).list_requests(
        actor, status=status, user_id=user_id, form_type=form_type, search=search,
    )
    return unwrap(result)


@router.get("/statistics", response_model=dict)
async def statistics(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(ApprovalRequestBroker(db).statistics(actor))


@router.post("/{request_id}/review", response_model=dict)
async def review_request(
    request_id: str,
    request: ReviewRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Approve (unlocks the form) or reject a pending request."""
    return unwrap(ApprovalRequestBroker(db).review(actor, request_id, request.decision, request.note))


@router.post("/{request_id}/request-document", response_model=dict)
async def request_document(
    request_id: str,
    request: DocumentRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(ApprovalRequestBroker(db).request_document(actor, request_id, request.message))
