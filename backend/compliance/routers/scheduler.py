"""
Scheduler API Routes

Internal endpoints for system-automatic tasks: the deadline sweep and
deadline monitoring. Called by cron, never by users.
"""
import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.results import ErrorKind
from ..services.escalation import DeadlineSweeper

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        logger.warning("Scheduler endpoint called with an invalid internal key")
        raise HTTPException(
            status_code=403,
            detail={"error": ErrorKind.FORBIDDEN.value, "message": "Invalid internal API key"},
        )
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/deadline-sweep", response_model=dict)
async def run_deadline_sweep(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Auto-accept observations whose response deadline has passed.

    System-automatic - safe to re-run, already swept rows are skipped.
    """
    sweeper = DeadlineSweeper(db)

    result = sweeper.sweep_overdue_observations()

    return result


# =============================================================================
# SCHEDULER STATUS ENDPOINTS (READ-ONLY)
# =============================================================================

@router.get("/deadlines", response_model=dict)
async def get_upcoming_deadlines(
    days_ahead: int = Query(3, ge=1, le=90),
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Get observations whose response deadline falls in the next N days.
    """
    deadlines = DeadlineSweeper(db).get_upcoming_deadlines(days_ahead)

    return {
        "days_ahead": days_ahead,
        "count": len(deadlines),
        "deadlines": deadlines,
    }
