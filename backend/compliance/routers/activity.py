"""
Activity Log API Routes

Agencies read their own trail; admins search the whole log.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_actor
from ..database import get_db
from ..models.actor import ActorContext
from ..models.db_models import ActivityAction
from ..services.notifications import ActivityLogQueries
from ..services.notifications.activity_queries import DEFAULT_LIMIT, MAX_LIMIT
from .common import unwrap


router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("", response_model=dict)
async def list_activity(
    user_id: Optional[str] = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """The caller's own entries. Admins may pass another user_id."""
    return unwrap(ActivityLogQueries(db).logs_for_user(actor, user_id=user_id, limit=limit))


@router.get("/all", response_model=dict)
async def search_activity(
    actor_id: Optional[str] = None,
    action: Optional[ActivityAction] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = ActivityLogQueries(db).search(
        actor,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
    )
    return unwrap(result)


@router.get("/{entity_type}/{entity_id}", response_model=dict)
async def get_entity_history(
    entity_type: str,
    entity_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(ActivityLogQueries(db).entity_history(actor, entity_type, entity_id))
