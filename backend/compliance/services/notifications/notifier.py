"""
Notifier

AUTHORITY: BEST-EFFORT
Enqueues in-app notifications. Never part of the transactional guarantee:
operations collect their notifications into a NotificationBatch while they
work, commit their own changes, and only then hand the batch over.

A failed enqueue is logged and swallowed. It never turns a committed
transition into an error.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import NotificationDB, NotificationType, UserDB
from ...models.actor import ADMIN_ROLES

logger = logging.getLogger(__name__)


@dataclass
class PendingNotification:
    recipient_id: str
    category: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    related_id: Optional[str] = None
    related_type: Optional[str] = None


@dataclass
class NotificationBatch:
    """(recipient, message) pairs collected during one operation."""
    items: List[PendingNotification] = field(default_factory=list)

    def add(
        self,
        recipient_id: str,
        category: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        related_id: Optional[str] = None,
        related_type: Optional[str] = None,
    ) -> None:
        self.items.append(PendingNotification(
            recipient_id=recipient_id,
            category=category,
            title=title,
            message=message,
            link=link,
            related_id=related_id,
            related_type=related_type,
        ))

    def add_many(self, recipient_ids: Iterable[str], category: NotificationType, title: str, message: str, link: Optional[str] = None) -> None:
        for recipient_id in recipient_ids:
            self.add(recipient_id, category, title, message, link)

    def __len__(self) -> int:
        return len(self.items)


class Notifier:
    """Enqueue-and-log notifier backed by the notifications table."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def notify(
        self,
        recipient_id: str,
        category: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        related_id: Optional[str] = None,
        related_type: Optional[str] = None,
    ) -> bool:
        """
        Enqueue one notification. Fire-and-forget.

        Returns whether the enqueue succeeded, for logging only.
        """
        try:
            self.db.add(NotificationDB(
                id=str(uuid4()),
                user_id=recipient_id,
                type=category,
                title=title,
                message=message,
                link=link,
                related_id=related_id,
                related_type=related_type,
            ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Failed to enqueue {category.value} notification for {recipient_id}")
            return False

        logger.info(f"Queued {category.value} notification for {recipient_id}: {title}")
        return True

    def dispatch(self, batch: NotificationBatch) -> int:
        """Hand a whole batch over. Returns the number enqueued."""
        delivered = 0
        for item in batch.items:
            if self.notify(
                item.recipient_id,
                item.category,
                item.title,
                item.message,
                link=item.link,
                related_id=item.related_id,
                related_type=item.related_type,
            ):
                delivered += 1

        if delivered < len(batch):
            logger.warning(f"Notification batch partially enqueued: {delivered}/{len(batch)}")
        return delivered

    def admin_ids(self) -> List[str]:
        """Every active ADMIN and SUPER_ADMIN user id."""
        rows = self.db.query(UserDB.id).filter(
            UserDB.role.in_(ADMIN_ROLES),
            UserDB.is_active.is_(True),
        ).all()
        return [row.id for row in rows]

