"""
Activity Log Queries

Read side of the activity log. Agencies see their own trail and the
history of forms they own; admins can filter the whole log.
"""
from typing import Optional

from sqlalchemy.orm import Session

from ...models.actor import ActorContext, ADMIN_ROLES, check_actor
from ...models.db_models import ActivityAction, ActivityLogDB, FormSubmissionDB
from ...models.results import ErrorKind, OperationResult, store_operation

DEFAULT_LIMIT = 100
MAX_LIMIT = 500


def _clamp(limit: int) -> int:
    return max(1, min(limit, MAX_LIMIT))


class ActivityLogQueries:
    """
    Usage:
        queries = ActivityLogQueries(db)
        queries.logs_for_user(admin, agency_id, limit=50)
        queries.entity_history(agency, "agencyVisits", form_id)
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    @store_operation()
    def logs_for_user(
        self,
        actor: Optional[ActorContext],
        user_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> OperationResult:
        """Entries written by one actor, newest first. Defaults to the caller."""
        denied = check_actor(actor)
        if denied:
            return denied

        user_id = user_id or actor.user_id
        if user_id != actor.user_id and not actor.is_admin:
            return OperationResult.fail(ErrorKind.FORBIDDEN, "You can only view your own activity.")

        logs = self.db.query(ActivityLogDB).filter(
            ActivityLogDB.actor_id == user_id,
        ).order_by(ActivityLogDB.created_at.desc()).limit(_clamp(limit)).all()

        return OperationResult.ok({"user_id": user_id, "logs": [entry.to_dict() for entry in logs]})

    @store_operation()
    def search(
        self,
        actor: Optional[ActorContext],
        actor_id: Optional[str] = None,
        action: Optional[ActivityAction] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> OperationResult:
        """Admin view of the whole log with optional filters."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        query = self.db.query(ActivityLogDB)
        if actor_id:
            query = query.filter(ActivityLogDB.actor_id == actor_id)
        if action is not None:
            query = query.filter(ActivityLogDB.action == action)
        if entity_type:
            query = query.filter(ActivityLogDB.entity_type == entity_type)
        if entity_id:
            query = query.filter(ActivityLogDB.entity_id == entity_id)

        logs = query.order_by(ActivityLogDB.created_at.desc()).limit(_clamp(limit)).all()
        return OperationResult.ok({"logs": [entry.to_dict() for entry in logs], "total": len(logs)})

    @store_operation()
    def entity_history(self, actor: Optional[ActorContext], entity_type: str, entity_id: str) -> OperationResult:
        """
        Every entry for one entity, oldest first.

        Agencies may only read the history of a form they own. Admins may
        read any entity, including forms that have since been deleted.
        """
        denied = check_actor(actor)
        if denied:
            return denied

        if not actor.is_admin:
            owned = self.db.query(FormSubmissionDB.id).filter(
                FormSubmissionDB.id == entity_id,
                FormSubmissionDB.form_type == entity_type,
                FormSubmissionDB.owner_id == actor.user_id,
            ).first()
            if owned is None:
                return OperationResult.fail(ErrorKind.NOT_FOUND, "No history found for this record.")

        logs = self.db.query(ActivityLogDB).filter(
            ActivityLogDB.entity_type == entity_type,
            ActivityLogDB.entity_id == entity_id,
        ).order_by(ActivityLogDB.created_at.asc()).all()

        return OperationResult.ok({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "history": [entry.to_dict() for entry in logs],
        })
