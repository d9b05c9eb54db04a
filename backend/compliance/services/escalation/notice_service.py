"""
Show Cause Notice Service

AUTHORITY: ADMIN issues and closes notices, AGENCY responds.

Bundles observations awaiting admin review into a ShowCauseNotice for
one agency, records the agency's response per observation, and keeps the
notice status in line with its observations:

    ISSUED -> RESPONDED   automatic, once no observation awaits the agency
    RESPONDED -> CLOSED   explicit, by an admin, with remarks

Observation moves are conditional updates guarded by status (and, for
responses, by the deadline), so an agency response racing the deadline
sweep resolves to whichever commits first.
"""
import logging
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.actor import ActorContext, ADMIN_ROLES, check_actor
from ...models.db_models import (
    ActivityAction, AuditDB, NotificationType, ObservationCommentDB, ObservationDB, ObservationStatus,
    ShowCauseNoticeDB, ShowCauseStatus, UserDB, UserRole,
)
from ...models.results import ErrorKind, OperationResult, store_operation
from ..notifications import ActivityLogger, NotificationBatch, Notifier
from .state_machine import OPEN_STATUSES, derive_notice_status, is_terminal_for_notice

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_DAYS = int(os.getenv("DEFAULT_RESPONSE_DAYS", "7"))


def default_response_deadline(now: Optional[datetime] = None, days: int = DEFAULT_RESPONSE_DAYS) -> datetime:
    """End of the day `days` days from now."""
    now = now or datetime.utcnow()
    return (now + timedelta(days=days)).replace(hour=23, minute=59, second=59, microsecond=0)


def sync_notice_status(db: Session, notice_id: Optional[str]) -> Tuple[Optional[ShowCauseStatus], Optional[ShowCauseStatus]]:
    """
    Re-derive a notice's status from its observations.

    Locks the notice row first so two concurrent responses on the last
    two open observations cannot both miss the flip. Does not commit.
    Returns (old_status, new_status).
    """
    if notice_id is None:
        return None, None

    notice = db.query(ShowCauseNoticeDB).filter(
        ShowCauseNoticeDB.id == notice_id,
    ).with_for_update().populate_existing().first()
    if notice is None:
        return None, None

    child_statuses = [
        row.status for row in db.query(ObservationDB.status).filter(
            ObservationDB.show_cause_notice_id == notice_id,
        ).all()
    ]
    old_status = notice.status
    new_status = derive_notice_status(child_statuses, current=old_status)
    if new_status != old_status:
        notice.status = new_status
        notice.updated_at = datetime.utcnow()
    return old_status, new_status


class NoticeService:
    """
    Issue, respond to and close show cause notices.

    Usage:
        notices = NoticeService(db)
        notices.issue_notice(admin, agency_id, [obs_id], "Subject", "Details", due)
        notices.respond(agency, obs_id, accepted=True)
    """

    def __init__(self, db_session: Session, notifier: Optional[Notifier] = None):
        self.db = db_session
        self.activity = ActivityLogger(db_session)
        self.notifier = notifier or Notifier(db_session)

    # =========================================================================
    # ISSUANCE
    # =========================================================================

    def _issue(
        self,
        actor: ActorContext,
        agency_id: str,
        observation_ids: Sequence[str],
        subject: str,
        details: str,
        response_due_date: datetime,
        now: datetime,
        batch: NotificationBatch,
    ) -> Tuple[Optional[ShowCauseNoticeDB], Optional[OperationResult]]:
        """
        Create one notice and move its observations to SENT_TO_AGENCY.

        Does not commit. On failure returns (None, result) and leaves the
        rollback to the caller.
        """
        wanted = list(dict.fromkeys(observation_ids))
        if not wanted:
            return None, OperationResult.fail(ErrorKind.VALIDATION, "No observations selected.")

        agency = self.db.query(UserDB).filter(UserDB.id == agency_id, UserDB.role == UserRole.USER).first()
        if agency is None:
            return None, OperationResult.fail(ErrorKind.NOT_FOUND, "Agency not found.")

        notice = ShowCauseNoticeDB(
            id=str(uuid4()),
            subject=subject,
            details=details,
            response_due_date=response_due_date,
            status=ShowCauseStatus.ISSUED,
            issued_by_admin_id=actor.user_id,
            received_by_agency_id=agency_id,
        )
        self.db.add(notice)
        self.db.flush()

        agency_audits = select(AuditDB.id).where(AuditDB.agency_id == agency_id)
        updated = self.db.query(ObservationDB).filter(
            ObservationDB.id.in_(wanted),
            ObservationDB.status == ObservationStatus.PENDING_ADMIN_REVIEW,
            ObservationDB.audit_id.in_(agency_audits),
        ).update({
            "status": ObservationStatus.SENT_TO_AGENCY,
            "show_cause_notice_id": notice.id,
            "response_deadline": response_due_date,
            "sent_to_agency_at": now,
            "sent_by": actor.user_id,
            "visible_to_agency": True,
            "updated_at": now,
        }, synchronize_session=False)

        if updated != len(wanted):
            return None, OperationResult.fail(
                ErrorKind.CONFLICT,
                f"Only {updated} of {len(wanted)} observations are valid. "
                "Observations must belong to the agency and be pending admin review.",
            )

        self.activity.log(
            ActivityAction.SHOW_CAUSE_ISSUED,
            entity_type="ShowCauseNotice",
            entity_id=notice.id,
            actor_id=actor.user_id,
            description=f"Show cause notice issued to {agency.name} covering {updated} observation(s)",
            metadata={
                "agency_id": agency_id,
                "observation_ids": wanted,
                "response_due_date": response_due_date,
            },
        )
        for observation_id in wanted:
            self.activity.log(
                ActivityAction.OBSERVATION_SENT_TO_AGENCY,
                entity_type="Observation",
                entity_id=observation_id,
                actor_id=actor.user_id,
                description="Observation sent to agency",
                metadata={
                    "show_cause_notice_id": notice.id,
                    "old_values": {"status": ObservationStatus.PENDING_ADMIN_REVIEW.value},
                    "new_values": {"status": ObservationStatus.SENT_TO_AGENCY.value},
                },
            )

        batch.add(
            agency_id,
            NotificationType.SHOW_CAUSE_ISSUED,
            "Show Cause Notice Issued",
            f"{subject}. Please respond to {updated} observation(s) by {response_due_date:%d %b %Y}.",
            link=f"/notices/{notice.id}",
            related_id=notice.id,
            related_type="ShowCauseNotice",
        )
        return notice, None

    def _check_notice_fields(self, subject: str, details: str, response_due_date: datetime, now: datetime) -> Optional[OperationResult]:
        if not subject or not subject.strip() or not details or not details.strip():
            return OperationResult.fail(ErrorKind.VALIDATION, "Subject and details are required.")
        if response_due_date is None or response_due_date <= now:
            return OperationResult.fail(ErrorKind.VALIDATION, "Response due date must be in the future.")
        return None

    @store_operation()
    def issue_notice(
        self,
        actor: Optional[ActorContext],
        agency_id: str,
        observation_ids: Sequence[str],
        subject: str,
        details: str,
        response_due_date: datetime,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """Bundle observations of one agency into a notice and send it."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        now = now or datetime.utcnow()
        invalid = self._check_notice_fields(subject, details, response_due_date, now)
        if invalid:
            return invalid

        batch = NotificationBatch()
        notice, failure = self._issue(actor, agency_id, observation_ids, subject.strip(), details.strip(), response_due_date, now, batch)
        if failure:
            self.db.rollback()
            return failure

        self.db.commit()
        logger.info(f"Show cause notice {notice.id} issued to {agency_id}")
        self.notifier.dispatch(batch)

        return OperationResult.ok(
            {"notice_id": notice.id, "observation_count": len(set(observation_ids))},
            message="Show cause notice issued.",
        )

    @store_operation()
    def issue_to_agency(
        self,
        actor: Optional[ActorContext],
        observation_id: str,
        response_deadline: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """
        Send a single observation to its agency under its own notice.

        Without an explicit deadline the agency gets DEFAULT_RESPONSE_DAYS
        days, to the end of the day.
        """
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        now = now or datetime.utcnow()
        observation = self.db.query(ObservationDB).filter(ObservationDB.id == observation_id).first()
        if observation is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Observation not found.")
        if observation.status != ObservationStatus.PENDING_ADMIN_REVIEW:
            return OperationResult.fail(ErrorKind.CONFLICT, "Observation has already been sent to the agency.")

        deadline = response_deadline or default_response_deadline(now)
        subject = f"Show Cause Notice: Observation {observation.observation_number}"
        invalid = self._check_notice_fields(subject, observation.description, deadline, now)
        if invalid:
            return invalid

        batch = NotificationBatch()
        notice, failure = self._issue(
            actor, observation.audit.agency_id, [observation_id],
            subject, observation.description, deadline, now, batch,
        )
        if failure:
            self.db.rollback()
            return failure

        self.db.commit()
        logger.info(f"Observation {observation_id} sent to agency, deadline {deadline.isoformat()}")
        self.notifier.dispatch(batch)

        return OperationResult.ok(
            {"notice_id": notice.id, "observation_id": observation_id, "response_deadline": deadline.isoformat()},
            message="Observation sent to agency.",
        )

    @store_operation()
    def issue_bulk_notices(
        self,
        actor: Optional[ActorContext],
        selections: Iterable[Tuple[str, Sequence[str]]],
        subject: str,
        details: str,
        response_due_date: datetime,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """
        One notice per (agency_id, observation_ids) pair.

        Each agency runs in its own savepoint: a rejected agency is
        reported in `errors` and never undoes the others.
        """
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        now = now or datetime.utcnow()
        invalid = self._check_notice_fields(subject, details, response_due_date, now)
        if invalid:
            return invalid

        selections = list(selections)
        if not selections:
            return OperationResult.fail(ErrorKind.VALIDATION, "No agencies selected.")

        issued: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        batch = NotificationBatch()

        for agency_id, observation_ids in selections:
            agency_batch = NotificationBatch()
            savepoint = self.db.begin_nested()
            try:
                notice, failure = self._issue(
                    actor, agency_id, observation_ids,
                    subject.strip(), details.strip(), response_due_date, now, agency_batch,
                )
            except SQLAlchemyError as e:
                savepoint.rollback()
                logger.warning(f"Bulk notice for agency {agency_id} failed: {e}")
                errors.append({"agency_id": agency_id, "error": ErrorKind.DEPENDENCY.value, "message": str(e)})
                continue

            if failure:
                savepoint.rollback()
                errors.append({"agency_id": agency_id, "error": failure.error.value, "message": failure.message})
                continue

            savepoint.commit()
            batch.items.extend(agency_batch.items)
            issued.append({
                "agency_id": agency_id,
                "notice_id": notice.id,
                "observation_count": len(set(observation_ids)),
            })

        self.db.commit()
        logger.info(f"Bulk notice issuance: {len(issued)} issued, {len(errors)} failed")
        self.notifier.dispatch(batch)

        return OperationResult.ok(
            {
                "issued": issued,
                "errors": errors,
                "summary": {"total": len(selections), "successful": len(issued), "failed": len(errors)},
            },
            message=f"{len(issued)} notice(s) issued, {len(errors)} failed.",
        )

    # =========================================================================
    # AGENCY RESPONSE
    # =========================================================================

    @store_operation()
    def respond(
        self,
        actor: Optional[ActorContext],
        observation_id: str,
        accepted: bool,
        justification: Optional[str] = None,
        evidence_path: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """
        Accept or dispute an observation while its response window is open.

        A dispute needs a justification, plus evidence when the observation
        requires it. A second response, or one after the deadline, is a
        Conflict.
        """
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        now = now or datetime.utcnow()
        observation = self.db.query(ObservationDB).filter(ObservationDB.id == observation_id).first()
        if observation is None or observation.audit.agency_id != actor.user_id:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Observation not found.")

        justification = justification.strip() if justification else None
        if not accepted:
            if not justification:
                return OperationResult.fail(ErrorKind.VALIDATION, "A justification is required to dispute an observation.")
            if observation.evidence_required and not evidence_path:
                return OperationResult.fail(ErrorKind.VALIDATION, "Evidence is required to dispute this observation.")

        new_status = ObservationStatus.AGENCY_ACCEPTED if accepted else ObservationStatus.AGENCY_DISPUTED
        old_status = observation.status

        updated = self.db.query(ObservationDB).filter(
            ObservationDB.id == observation_id,
            ObservationDB.status.in_(OPEN_STATUSES),
            ObservationDB.response_deadline >= now,
        ).update({
            "status": new_status,
            "agency_accepted": accepted,
            "agency_response": None if accepted else justification,
            "agency_response_date": now,
            "evidence_path": evidence_path,
            "updated_at": now,
        }, synchronize_session=False)

        if not updated:
            self.db.rollback()
            if old_status not in OPEN_STATUSES:
                return OperationResult.fail(ErrorKind.CONFLICT, "This observation is not awaiting a response.")
            return OperationResult.fail(ErrorKind.CONFLICT, "The response deadline has passed.")

        self.activity.log(
            ActivityAction.OBSERVATION_RESPONDED,
            entity_type="Observation",
            entity_id=observation_id,
            actor_id=actor.user_id,
            description=f"Agency {'accepted' if accepted else 'disputed'} observation {observation.observation_number}",
            metadata={
                "old_values": {"status": old_status.value},
                "new_values": {"status": new_status.value},
                "evidence_path": evidence_path,
            },
        )

        notice_id = observation.show_cause_notice_id
        old_notice_status, new_notice_status = sync_notice_status(self.db, notice_id)
        notice_responded = (
            new_notice_status == ShowCauseStatus.RESPONDED and old_notice_status != ShowCauseStatus.RESPONDED
        )
        if notice_responded:
            self.activity.log(
                ActivityAction.SHOW_CAUSE_RESPONDED,
                entity_type="ShowCauseNotice",
                entity_id=notice_id,
                actor_id=actor.user_id,
                description="All observations on the notice have been responded to",
                metadata={
                    "old_values": {"status": old_notice_status.value},
                    "new_values": {"status": new_notice_status.value},
                },
            )

        self.db.commit()
        logger.info(f"Observation {observation_id} -> {new_status.value} by {actor.user_id}")

        message = (
            f"{actor.name or 'An agency'} {'accepted' if accepted else 'disputed'} "
            f"observation {observation.observation_number}."
        )
        if notice_responded:
            message += " All observations on the show cause notice have now been answered."
        batch = NotificationBatch()
        batch.add_many(
            self.notifier.admin_ids(),
            NotificationType.SHOW_CAUSE_RESPONDED,
            "Show Cause Notice Response",
            message,
            link=f"/admin/notices/{notice_id}" if notice_id else "/admin/observations",
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({
            "observation_id": observation_id,
            "status": new_status.value,
            "notice_id": notice_id,
            "notice_status": new_notice_status.value if new_notice_status else None,
        }, message="Response recorded.")

    # =========================================================================
    # COMMENTS
    # =========================================================================

    def _commentable_observation(self, actor: ActorContext, observation_id: str) -> Optional[ObservationDB]:
        """The observation if the actor may discuss it: any admin, or the audited agency once it was sent."""
        observation = self.db.query(ObservationDB).filter(ObservationDB.id == observation_id).first()
        if observation is None or actor.is_admin:
            return observation
        if observation.audit.agency_id != actor.user_id or not observation.visible_to_agency:
            return None
        return observation

    @store_operation()
    def add_comment(
        self,
        actor: Optional[ActorContext],
        observation_id: str,
        message: Optional[str] = None,
        attachment_path: Optional[str] = None,
        attachment_name: Optional[str] = None,
    ) -> OperationResult:
        """Post a message, an attachment or both on an observation."""
        denied = check_actor(actor, UserRole.USER, *ADMIN_ROLES)
        if denied:
            return denied

        message = message.strip() if message else ""
        if not message and not attachment_path:
            return OperationResult.fail(ErrorKind.VALIDATION, "A message or an attachment is required.")

        observation = self._commentable_observation(actor, observation_id)
        if observation is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Observation not found.")

        comment = ObservationCommentDB(
            id=str(uuid4()),
            observation_id=observation_id,
            author_id=actor.user_id,
            author_role=actor.role,
            message=message,
            attachment_path=attachment_path,
            attachment_name=attachment_name,
        )
        self.db.add(comment)
        self.db.flush()

        self.activity.log(
            ActivityAction.OBSERVATION_COMMENTED,
            entity_type="Observation",
            entity_id=observation_id,
            actor_id=actor.user_id,
            description=f"Comment added on observation {observation.observation_number}",
            metadata={"comment_id": comment.id, "attachment_path": attachment_path},
        )
        self.db.commit()

        notice_id = observation.show_cause_notice_id
        if actor.is_admin:
            # Agencies only hear about observations already sent to them
            recipients = [observation.audit.agency_id] if observation.visible_to_agency else []
            link = f"/notices/{notice_id}" if notice_id else None
        else:
            recipients = self.notifier.admin_ids()
            link = f"/admin/notices/{notice_id}" if notice_id else "/admin/observations"
        batch = NotificationBatch()
        batch.add_many(
            recipients,
            NotificationType.OBSERVATION_COMMENT,
            "New Comment",
            f"{actor.name or 'Someone'} commented on observation {observation.observation_number}.",
            link=link,
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"comment": comment.to_dict()}, message="Comment added.")

    @store_operation()
    def list_comments(self, actor: Optional[ActorContext], observation_id: str) -> OperationResult:
        """Thread for one observation, oldest first."""
        denied = check_actor(actor, UserRole.USER, *ADMIN_ROLES)
        if denied:
            return denied

        if self._commentable_observation(actor, observation_id) is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Observation not found.")

        comments = self.db.query(ObservationCommentDB).filter(
            ObservationCommentDB.observation_id == observation_id,
        ).order_by(ObservationCommentDB.created_at.asc()).all()

        return OperationResult.ok({"comments": [c.to_dict() for c in comments]})

    # =========================================================================
    # CLOSURE
    # =========================================================================

    @store_operation()
    def close_notice(self, actor: Optional[ActorContext], notice_id: str, remarks: str) -> OperationResult:
        """Close a notice once none of its observations is awaiting the agency."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        if not remarks or not remarks.strip():
            return OperationResult.fail(ErrorKind.VALIDATION, "Closing remarks are required.")

        notice = self.db.query(ShowCauseNoticeDB).filter(ShowCauseNoticeDB.id == notice_id).first()
        if notice is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Show cause notice not found.")

        pending = [o for o in notice.observations if not is_terminal_for_notice(o.status)]
        if pending:
            return OperationResult.fail(
                ErrorKind.CONFLICT,
                f"{len(pending)} observation(s) are still awaiting the agency's response.",
            )

        old_status = notice.status
        updated = self.db.query(ShowCauseNoticeDB).filter(
            ShowCauseNoticeDB.id == notice_id,
            ShowCauseNoticeDB.status != ShowCauseStatus.CLOSED,
        ).update({
            "status": ShowCauseStatus.CLOSED,
            "admin_remarks": remarks.strip(),
            "updated_at": datetime.utcnow(),
        }, synchronize_session=False)
        if not updated:
            self.db.rollback()
            return OperationResult.fail(ErrorKind.CONFLICT, "Show cause notice is already closed.")

        self.activity.log(
            ActivityAction.SHOW_CAUSE_CLOSED,
            entity_type="ShowCauseNotice",
            entity_id=notice_id,
            actor_id=actor.user_id,
            description="Show cause notice closed",
            metadata={
                "old_values": {"status": old_status.value},
                "new_values": {"status": ShowCauseStatus.CLOSED.value},
                "remarks": remarks.strip(),
            },
        )
        self.db.commit()

        batch = NotificationBatch()
        batch.add(
            notice.received_by_agency_id,
            NotificationType.SHOW_CAUSE_CLOSED,
            "Show Cause Notice Closed",
            f"The show cause notice '{notice.subject}' has been closed.",
            link=f"/notices/{notice_id}",
            related_id=notice_id,
            related_type="ShowCauseNotice",
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"notice_id": notice_id, "status": ShowCauseStatus.CLOSED.value})

    # =========================================================================
    # QUERIES
    # =========================================================================

    @staticmethod
    def _notice_with_observations(notice: ShowCauseNoticeDB) -> Dict[str, Any]:
        data = notice.to_dict()
        data["observations"] = [o.to_dict() for o in notice.observations]
        return data

    @store_operation()
    def notices_for_agency(self, actor: Optional[ActorContext]) -> OperationResult:
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        notices = self.db.query(ShowCauseNoticeDB).filter(
            ShowCauseNoticeDB.received_by_agency_id == actor.user_id,
        ).order_by(ShowCauseNoticeDB.created_at.desc()).all()

        return OperationResult.ok({"notices": [self._notice_with_observations(n) for n in notices]})

    @store_operation()
    def notice_details(self, actor: Optional[ActorContext], notice_id: str) -> OperationResult:
        """Visible to admins and to the receiving agency."""
        denied = check_actor(actor)
        if denied:
            return denied

        notice = self.db.query(ShowCauseNoticeDB).filter(ShowCauseNoticeDB.id == notice_id).first()
        if notice is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Show cause notice not found.")
        if not actor.is_admin and notice.received_by_agency_id != actor.user_id:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Show cause notice not found.")

        return OperationResult.ok({"notice": self._notice_with_observations(notice)})
