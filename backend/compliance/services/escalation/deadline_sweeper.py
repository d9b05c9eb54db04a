"""
Deadline Sweeper

AUTHORITY: SYSTEM
Force-resolves observations whose response deadline elapsed without an
agency response. Runs from the scheduler endpoint, never from a user.

Each candidate is moved with its own conditional UPDATE guarded by
"still awaiting response and deadline < now", then committed on its own:
- re-running the sweep never double-processes a row
- a concurrent agency response that commits first turns the sweep's
  update into a no-op that is simply not counted
- a failing row is logged and skipped, the rest of the batch continues
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...models.db_models import (
    ActivityAction, AuditDB, NotificationType, ObservationDB, ObservationStatus,
    ShowCauseStatus,
)
from ..notifications import ActivityLogger, NotificationBatch, Notifier
from .notice_service import sync_notice_status
from .state_machine import OPEN_STATUSES, sources_for

logger = logging.getLogger(__name__)

AUTO_ACCEPT_NOTE = "Auto-accepted due to expired deadline."


class DeadlineSweeper:
    """
    Scheduled batch over overdue observations.

    Usage:
        DeadlineSweeper(db).sweep_overdue_observations()
    """

    def __init__(self, db_session: Session, notifier: Optional[Notifier] = None):
        self.db = db_session
        self.activity = ActivityLogger(db_session)
        self.notifier = notifier or Notifier(db_session)

    def get_overdue_observations(self, now: datetime) -> List[ObservationDB]:
        return self.db.query(ObservationDB).filter(
            ObservationDB.status.in_(sources_for(ObservationStatus.AUTO_ACCEPTED)),
            ObservationDB.response_deadline < now,
        ).all()

    def sweep_overdue_observations(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Auto-accept every observation whose response window has closed.

        AUTHORITY: SYSTEM - Called via the scheduler endpoint.

        Returns {"count": n, ...}; per-row errors are logged, never raised.
        """
        now = now or datetime.utcnow()
        processed: List[str] = []
        errors = 0
        batch = NotificationBatch()
        admin_ids = self.notifier.admin_ids()

        # Plain values, since every commit below expires the ORM rows
        candidates = [
            (o.id, o.observation_number, o.show_cause_notice_id, o.audit.agency_id)
            for o in self.get_overdue_observations(now)
        ]

        for observation_id, number, notice_id, agency_id in candidates:
            try:
                updated = self.db.query(ObservationDB).filter(
                    ObservationDB.id == observation_id,
                    ObservationDB.status.in_(OPEN_STATUSES),
                    ObservationDB.response_deadline < now,
                ).update({
                    "status": ObservationStatus.AUTO_ACCEPTED,
                    "agency_accepted": True,
                    "agency_response": AUTO_ACCEPT_NOTE,
                    "agency_response_date": now,
                    "auto_accepted_at": now,
                    "updated_at": now,
                }, synchronize_session=False)

                if not updated:
                    # Agency responded between the scan and the update
                    self.db.rollback()
                    continue

                self.activity.log(
                    ActivityAction.OBSERVATION_AUTO_ACCEPTED,
                    entity_type="Observation",
                    entity_id=observation_id,
                    description=f"Observation {number} auto-accepted after response deadline",
                    metadata={"swept_at": now, "show_cause_notice_id": notice_id},
                )

                old_notice_status, new_notice_status = sync_notice_status(self.db, notice_id)
                if new_notice_status == ShowCauseStatus.RESPONDED and old_notice_status != ShowCauseStatus.RESPONDED:
                    self.activity.log(
                        ActivityAction.SHOW_CAUSE_RESPONDED,
                        entity_type="ShowCauseNotice",
                        entity_id=notice_id,
                        description="All observations on the notice resolved by deadline sweep",
                    )

                self.db.commit()
            except Exception:
                self.db.rollback()
                errors += 1
                logger.exception(f"Deadline sweep failed for observation {observation_id}")
                continue

            processed.append(observation_id)
            batch.add(
                agency_id,
                NotificationType.OBSERVATION_AUTO_ACCEPTED,
                "Observation Auto-Accepted",
                f"Observation {number} was auto-accepted because the response deadline passed.",
                link=f"/notices/{notice_id}" if notice_id else None,
                related_id=observation_id,
                related_type="Observation",
            )
            batch.add_many(
                admin_ids,
                NotificationType.OBSERVATION_AUTO_ACCEPTED,
                "Observation Auto-Accepted",
                f"Observation {number} was auto-accepted after its response deadline.",
                link="/admin/observations",
            )

        self.notifier.dispatch(batch)
        logger.info(f"Deadline sweep: {len(processed)} auto-accepted, {errors} failed, {len(candidates)} scanned")

        return {
            "run_date": now.isoformat(),
            "count": len(processed),
            "scanned": len(candidates),
            "errors": errors,
            "observation_ids": processed,
        }

    def get_upcoming_deadlines(self, days_ahead: int = 3, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Observations still awaiting the agency with a deadline in the next N days."""
        now = now or datetime.utcnow()
        horizon = now + timedelta(days=days_ahead)

        rows = self.db.query(ObservationDB, AuditDB).join(
            AuditDB, ObservationDB.audit_id == AuditDB.id,
        ).filter(
            ObservationDB.status.in_(OPEN_STATUSES),
            ObservationDB.response_deadline >= now,
            ObservationDB.response_deadline <= horizon,
        ).order_by(ObservationDB.response_deadline).all()

        return [
            {
                "observation_id": o.id,
                "observation_number": o.observation_number,
                "agency_id": audit.agency_id,
                "show_cause_notice_id": o.show_cause_notice_id,
                "response_deadline": o.response_deadline.isoformat(),
                "hours_remaining": int((o.response_deadline - now).total_seconds() // 3600),
            }
            for o, audit in rows
        ]
