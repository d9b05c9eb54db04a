"""
Penalty API Routes
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_actor
from ..database import get_db
from ..models.actor import ActorContext
from ..services.escalation import PenaltyService
from .common import unwrap


router = APIRouter(prefix="/penalties", tags=["penalties"])


class AssignPenaltyRequest(BaseModel):
    amount: float
    reason: str
    deduction_month: str  # YYYY-MM
    corrective_action: Optional[str] = None


@router.post("/observations/{observation_id}", response_model=dict)
async def assign_penalty(
    observation_id: str,
    request: AssignPenaltyRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Assign a penalty and close the observation in one transaction."""
    result = PenaltyService(db).assign_penalty(
        actor,
        observation_id,
        request.amount,
        request.reason,
        request.deduction_month,
        corrective_action=request.corrective_action,
    )
    return unwrap(result)


@router.get("/mine", response_model=dict)
async def my_penalties(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(PenaltyService(db).penalties_for_agency(actor))


@router.post("/{penalty_id}/acknowledge", response_model=dict)
async def acknowledge_penalty(
    penalty_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(PenaltyService(db).acknowledge_penalty(actor, penalty_id))


@router.post("/{penalty_id}/pay", response_model=dict)
async def pay_penalty(
    penalty_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(PenaltyService(db).pay_penalty(actor, penalty_id))
