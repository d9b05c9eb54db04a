"""
Form API Routes

Draft, submit and delete agency forms. Every form type shares the same
endpoints; the form type tag is a path parameter.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_actor
from ..database import get_db
from ..models.actor import ActorContext
from ..models.db_models import SubmissionStatus
from ..services.forms import FORM_CONFIG, FormLifecycleManager
from .common import unwrap


router = APIRouter(prefix="/forms", tags=["forms"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SaveFormRequest(BaseModel):
    """Create or update a form."""
    payload: Dict[str, Any] = Field(..., description="Form fields")
    status: SubmissionStatus = Field(default=SubmissionStatus.DRAFT, description="DRAFT to save, SUBMITTED to submit")
    period_month: Optional[int] = Field(None, description="Reporting month (1-12)")
    period_year: Optional[int] = Field(None, description="Reporting year")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/catalogue", response_model=dict)
async def get_catalogue():
    """Every form type with its title, category and deadline day."""
    return {
        "forms": [
            {
                "form_type": form_type.value,
                "title": config["title"],
                "category": config["category"],
                "is_required": config["is_required"],
                "deadline_day": config["deadline_day"],
            }
            for form_type, config in FORM_CONFIG.items()
        ]
    }


@router.get("", response_model=dict)
async def list_my_submissions(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(FormLifecycleManager(db).list_submissions(actor))


@router.get("/status/{owner_id}", response_model=dict)
async def get_period_status(
    owner_id: str,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Admin view of an agency's required forms for one period."""
    return unwrap(FormLifecycleManager(db).period_status(actor, owner_id, month, year))


@router.get("/history/{form_type}", response_model=dict)
async def get_submission_history(
    form_type: str,
    owner_id: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Submitted forms of one type. Admins may pass owner_id."""
    return unwrap(FormLifecycleManager(db).submission_history(actor, form_type, owner_id=owner_id))


@router.post("/{form_type}", response_model=dict)
async def create_form(
    form_type: str,
    request: SaveFormRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = FormLifecycleManager(db).save(
        actor,
        form_type,
        request.payload,
        request.status,
        period_month=request.period_month,
        period_year=request.period_year,
    )
    return unwrap(result)


@router.put("/{form_type}/{form_id}", response_model=dict)
async def update_form(
    form_type: str,
    form_id: str,
    request: SaveFormRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """
    Save or submit an existing form.

    Locked (SUBMITTED) forms answer 409 until an edit request is approved.
    """
    result = FormLifecycleManager(db).save(actor, form_type, request.payload, request.status, form_id=form_id)
    return unwrap(result)


@router.get("/{form_type}/{form_id}", response_model=dict)
async def get_form(
    form_type: str,
    form_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(FormLifecycleManager(db).get_form(actor, form_type, form_id))


@router.delete("/{form_type}/{form_id}", response_model=dict)
async def delete_form(
    form_type: str,
    form_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(FormLifecycleManager(db).delete(actor, form_type, form_id))

