"""
Notification Inbox

Read side of the notifications table for the signed-in user.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models.actor import ActorContext, check_actor
from ...models.db_models import NotificationDB
from ...models.results import ErrorKind, OperationResult, store_operation

INBOX_PAGE_SIZE = 50


class NotificationInbox:

    def __init__(self, db_session: Session):
        self.db = db_session

    @store_operation()
    def list_for_user(self, actor: Optional[ActorContext], unread_only: bool = False) -> OperationResult:
        denied = check_actor(actor)
        if denied:
            return denied

        query = self.db.query(NotificationDB).filter(NotificationDB.user_id == actor.user_id)
        if unread_only:
            query = query.filter(NotificationDB.read.is_(False))

        notifications = query.order_by(NotificationDB.created_at.desc()).limit(INBOX_PAGE_SIZE).all()
        unread_count = self.db.query(NotificationDB).filter(
            NotificationDB.user_id == actor.user_id,
            NotificationDB.read.is_(False),
        ).count()

        return OperationResult.ok({
            "notifications": [n.to_dict() for n in notifications],
            "unread_count": unread_count,
        })

    @store_operation()
    def mark_read(self, actor: Optional[ActorContext], notification_id: str) -> OperationResult:
        denied = check_actor(actor)
        if denied:
            return denied

        updated = self.db.query(NotificationDB).filter(
            NotificationDB.id == notification_id,
            NotificationDB.user_id == actor.user_id,
        ).update({"read": True, "read_at": datetime.utcnow()}, synchronize_session=False)

        if not updated:
            self.db.rollback()
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Notification not found.")

        self.db.commit()
        return OperationResult.ok({"notification_id": notification_id})

    @store_operation()
    def mark_all_read(self, actor: Optional[ActorContext]) -> OperationResult:
        denied = check_actor(actor)
        if denied:
            return denied

        updated = self.db.query(NotificationDB).filter(
            NotificationDB.user_id == actor.user_id,
            NotificationDB.read.is_(False),
        ).update({"read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
        self.db.commit()

        return OperationResult.ok({"marked_read": updated})
