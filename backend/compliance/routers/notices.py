"""
Show Cause Notice API Routes

Admins issue and close notices; agencies respond per observation.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_actor
from ..database import get_db
from ..models.actor import ActorContext
from ..services.escalation import NoticeService
from .common import to_naive_utc, unwrap


router = APIRouter(prefix="/notices", tags=["notices"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class IssueNoticeRequest(BaseModel):
    agency_id: str
    observation_ids: List[str]
    subject: str
    details: str
    response_due_date: datetime


class AgencySelection(BaseModel):
    agency_id: str
    observation_ids: List[str] = Field(default_factory=list)


class BulkIssueRequest(BaseModel):
    """One notice per agency, shared subject/details/due date."""
    selections: List[AgencySelection]
    subject: str
    details: str
    response_due_date: datetime


class IssueObservationRequest(BaseModel):
    response_deadline: Optional[datetime] = Field(None, description="Defaults to the configured number of days")


class RespondRequest(BaseModel):
    accepted: bool
    justification: Optional[str] = None
    evidence_path: Optional[str] = None


class CommentRequest(BaseModel):
    message: Optional[str] = None
    attachment_path: Optional[str] = Field(None, description="Path of an already uploaded file")
    attachment_name: Optional[str] = None


class CloseNoticeRequest(BaseModel):
    remarks: str


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.post("", response_model=dict)
async def issue_notice(
    request: IssueNoticeRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = NoticeService(db).issue_notice(
        actor,
        request.agency_id,
        request.observation_ids,
        request.subject,
        request.details,
        to_naive_utc(request.response_due_date),
    )
    return unwrap(result)


@router.post("/bulk", response_model=dict)
async def issue_bulk_notices(
    request: BulkIssueRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """
    Issue one notice per agency.

    Partial failure: per-agency errors are returned alongside successes.
    """
    result = NoticeService(db).issue_bulk_notices(
        actor,
        [(s.agency_id, s.observation_ids) for s in request.selections],
        request.subject,
        request.details,
        to_naive_utc(request.response_due_date),
    )
    return unwrap(result)


@router.post("/observations/{observation_id}/issue", response_model=dict)
async def issue_observation(
    observation_id: str,
    request: IssueObservationRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NoticeService(db).issue_to_agency(actor, observation_id, to_naive_utc(request.response_deadline)))


@router.post("/{notice_id}/close", response_model=dict)
async def close_notice(
    notice_id: str,
    request: CloseNoticeRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NoticeService(db).close_notice(actor, notice_id, request.remarks))


# =============================================================================
# AGENCY ENDPOINTS
# =============================================================================

@router.get("/mine", response_model=dict)
async def my_notices(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NoticeService(db).notices_for_agency(actor))


@router.post("/observations/{observation_id}/respond", response_model=dict)
async def respond(
    observation_id: str,
    request: RespondRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Accept or dispute an observation before its response deadline."""
    result = NoticeService(db).respond(
        actor,
        observation_id,
        request.accepted,
        justification=request.justification,
        evidence_path=request.evidence_path,
    )
    return unwrap(result)


@router.post("/observations/{observation_id}/comments", response_model=dict)
async def add_comment(
    observation_id: str,
    request: CommentRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = NoticeService(db).add_comment(
        actor,
        observation_id,
        message=request.message,
        attachment_path=request.attachment_path,
        attachment_name=request.attachment_name,
    )
    return unwrap(result)


@router.get("/observations/{observation_id}/comments", response_model=dict)
async def list_comments(
    observation_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NoticeService(db).list_comments(actor, observation_id))


@router.get("/{notice_id}", response_model=dict)
async def get_notice(
    notice_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NoticeService(db).notice_details(actor, notice_id))
