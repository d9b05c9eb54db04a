"""
Penalty Service

AUTHORITY: ADMIN assigns, AGENCY acknowledges and pays.

A penalty is the end of the escalation pipeline. Assignment is one
transaction: the observation moves to CLOSED with its penalty_id set
and the Penalty row is created, or neither happens. The observation
update is conditional on a penalizable status with no penalty yet, and
penalties.observation_id is unique, so a second assignment always
fails with Conflict.
"""
import logging
import re
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.actor import ActorContext, ADMIN_ROLES, check_actor
from ...models.db_models import (
    ActivityAction, NotificationType, ObservationDB, ObservationStatus,
    PenaltyDB, PenaltyStatus, UserRole,
)
from ...models.results import ErrorKind, OperationResult, store_operation
from ..notifications import ActivityLogger, NotificationBatch, Notifier
from .state_machine import PENALIZABLE_STATUSES, can_transition_penalty

logger = logging.getLogger(__name__)

DEDUCTION_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class PenaltyService:
    """
    Assign penalties and track their settlement.

    Usage:
        penalties = PenaltyService(db)
        penalties.assign_penalty(admin, obs_id, 500.0, "Late disclosure", "2026-04")
    """

    def __init__(self, db_session: Session, notifier: Optional[Notifier] = None):
        self.db = db_session
        self.activity = ActivityLogger(db_session)
        self.notifier = notifier or Notifier(db_session)

    @store_operation(conflict_message="A penalty has already been assigned to this observation.")
    def assign_penalty(
        self,
        actor: Optional[ActorContext],
        observation_id: str,
        amount: float,
        reason: str,
        deduction_month: str,
        corrective_action: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        if amount is None or amount <= 0:
            return OperationResult.fail(ErrorKind.VALIDATION, "Penalty amount must be greater than zero.")
        if not reason or not reason.strip():
            return OperationResult.fail(ErrorKind.VALIDATION, "A penalty reason is required.")
        if not deduction_month or not DEDUCTION_MONTH_PATTERN.match(deduction_month):
            return OperationResult.fail(ErrorKind.VALIDATION, "Deduction month must be in YYYY-MM format.")

        observation = self.db.query(ObservationDB).filter(ObservationDB.id == observation_id).first()
        if observation is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Observation not found.")

        now = now or datetime.utcnow()
        old_status = observation.status
        agency_id = observation.audit.agency_id
        penalty_id = str(uuid4())

        updated = self.db.query(ObservationDB).filter(
            ObservationDB.id == observation_id,
            ObservationDB.status.in_(PENALIZABLE_STATUSES),
            ObservationDB.penalty_id.is_(None),
        ).update({
            "status": ObservationStatus.CLOSED,
            "penalty_id": penalty_id,
            "updated_at": now,
        }, synchronize_session=False)
        if not updated:
            self.db.rollback()
            if observation.penalty_id is not None:
                return OperationResult.fail(ErrorKind.CONFLICT, "A penalty has already been assigned to this observation.")
            return OperationResult.fail(
                ErrorKind.CONFLICT,
                f"Penalties can only be assigned to accepted, auto-accepted or disputed observations "
                f"(current status: {old_status.value}).",
            )

        penalty = PenaltyDB(
            id=penalty_id,
            observation_id=observation_id,
            agency_id=agency_id,
            penalty_amount=amount,
            penalty_reason=reason.strip(),
            deduction_month=deduction_month,
            corrective_action=corrective_action,
            status=PenaltyStatus.SUBMITTED,
            notice_ref_no=observation.show_cause_notice_id,
            assigned_by=actor.user_id,
            assigned_at=now,
            submitted_at=now,
        )
        self.db.add(penalty)
        self.db.flush()

        self.activity.log(
            ActivityAction.PENALTY_ASSIGNED,
            entity_type="Observation",
            entity_id=observation_id,
            actor_id=actor.user_id,
            description=f"Penalty of {amount:.2f} assigned for {deduction_month}",
            metadata={
                "penalty_id": penalty_id,
                "old_values": {"status": old_status.value},
                "new_values": {"status": ObservationStatus.CLOSED.value},
            },
        )
        self.db.commit()
        logger.info(f"Penalty {penalty_id} assigned to observation {observation_id} ({amount:.2f})")

        batch = NotificationBatch()
        batch.add(
            agency_id,
            NotificationType.PENALTY_ISSUED,
            "Penalty Issued",
            f"A penalty of {amount:.2f} has been issued for observation {observation.observation_number}, "
            f"to be deducted in {deduction_month}.",
            link="/penalties",
            related_id=penalty_id,
            related_type="Penalty",
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"penalty": penalty.to_dict()}, message="Penalty assigned.")

    def _progress(
        self,
        actor: Optional[ActorContext],
        penalty_id: str,
        to_state: PenaltyStatus,
        action: ActivityAction,
        timestamp_field: str,
    ) -> OperationResult:
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        penalty = self.db.query(PenaltyDB).filter(
            PenaltyDB.id == penalty_id,
            PenaltyDB.agency_id == actor.user_id,
        ).first()
        if penalty is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Penalty not found.")

        from_state = penalty.status
        allowed, reason = can_transition_penalty(from_state, to_state)
        if not allowed:
            return OperationResult.fail(ErrorKind.CONFLICT, reason)

        updated = self.db.query(PenaltyDB).filter(
            PenaltyDB.id == penalty_id,
            PenaltyDB.status == from_state,
        ).update({"status": to_state, timestamp_field: datetime.utcnow()}, synchronize_session=False)
        if not updated:
            self.db.rollback()
            return OperationResult.fail(ErrorKind.CONFLICT, "Penalty was updated by another request.")

        self.activity.log(
            action,
            entity_type="Penalty",
            entity_id=penalty_id,
            actor_id=actor.user_id,
            description=f"Penalty {to_state.value.lower()}",
            metadata={
                "old_values": {"status": from_state.value},
                "new_values": {"status": to_state.value},
            },
        )
        self.db.commit()

        return OperationResult.ok({"penalty_id": penalty_id, "status": to_state.value})

    @store_operation()
    def acknowledge_penalty(self, actor: Optional[ActorContext], penalty_id: str) -> OperationResult:
        return self._progress(actor, penalty_id, PenaltyStatus.ACKNOWLEDGED, ActivityAction.PENALTY_ACKNOWLEDGED, "acknowledged_at")

    @store_operation()
    def pay_penalty(self, actor: Optional[ActorContext], penalty_id: str) -> OperationResult:
        return self._progress(actor, penalty_id, PenaltyStatus.PAID, ActivityAction.PENALTY_PAID, "paid_at")

    @store_operation()
    def penalties_for_agency(self, actor: Optional[ActorContext]) -> OperationResult:
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        penalties = self.db.query(PenaltyDB).filter(
            PenaltyDB.agency_id == actor.user_id,
        ).order_by(PenaltyDB.assigned_at.desc()).all()

        outstanding = sum(p.penalty_amount for p in penalties if p.status != PenaltyStatus.PAID)
        return OperationResult.ok({
            "penalties": [p.to_dict() for p in penalties],
            "outstanding_amount": outstanding,
        })
