"""
Notification API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_actor
from ..database import get_db
from ..models.actor import ActorContext
from ..services.notifications import NotificationInbox
from .common import unwrap


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=dict)
async def list_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NotificationInbox(db).list_for_user(actor, unread_only=unread_only))


@router.post("/read-all", response_model=dict)
async def mark_all_read(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NotificationInbox(db).mark_all_read(actor))


@router.post("/{notification_id}/read", response_model=dict)
async def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return unwrap(NotificationInbox(db).mark_read(actor, notification_id))
