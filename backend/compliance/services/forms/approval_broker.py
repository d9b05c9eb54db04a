"""
Approval Request Broker

AUTHORITY: AGENCY files requests, ADMIN resolves them.
Creates, reviews and resolves requests to unlock a SUBMITTED form. On
approval it instructs the FormLifecycleManager to revert the form to
DRAFT inside the same transaction as the decision.

One PENDING request per (user_id, form_type, form_id) is enforced by the
partial unique index on approval_requests. The broker does not pre-check;
the constraint violation is the Conflict.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models.actor import ActorContext, ADMIN_ROLES, check_actor
from ...models.db_models import (
    ActivityAction, ApprovalRequestDB, ApprovalStatus, ApprovalType,
    NotificationType, SubmissionStatus, UserRole,
)
from ...models.results import ErrorKind, OperationResult, store_operation
from ..notifications import ActivityLogger, NotificationBatch, Notifier
from .lifecycle import FormLifecycleManager
from .registry import form_title, repository_for, resolve_form_type

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 100


class ReviewDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ApprovalRequestBroker:
    """
    Edit-approval workflow for locked forms.

    Usage:
        broker = ApprovalRequestBroker(db)
        broker.request_edit(agency, "agencyVisits", form_id, "Wrong visit date")
        broker.review(admin, request_id, ReviewDecision.APPROVE, "Go ahead")
    """

    def __init__(self, db_session: Session, notifier: Optional[Notifier] = None):
        self.db = db_session
        self.activity = ActivityLogger(db_session)
        self.notifier = notifier or Notifier(db_session)
        self.lifecycle = FormLifecycleManager(db_session, notifier=self.notifier)

    # =========================================================================
    # AGENCY SIDE
    # =========================================================================

    @store_operation(conflict_message="You already have a pending request for this form.")
    def request_edit(
        self,
        actor: Optional[ActorContext],
        form_type: str,
        form_id: str,
        reason: str,
        request_type: ApprovalType = ApprovalType.UPDATE_SUBMITTED_FORM,
        document_path: Optional[str] = None,
    ) -> OperationResult:
        """File a request to unlock one of the caller's SUBMITTED forms."""
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        if not reason or not reason.strip():
            return OperationResult.fail(ErrorKind.VALIDATION, "A reason for the edit is required.")

        resolved = resolve_form_type(form_type)
        if resolved is None:
            return OperationResult.fail(ErrorKind.VALIDATION, f"Unknown form type: {form_type}")

        form = repository_for(self.db, resolved).load(form_id, owner_id=actor.user_id)
        if form is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Form not found.")
        if form.status != SubmissionStatus.SUBMITTED:
            return OperationResult.fail(ErrorKind.CONFLICT, "Only submitted forms need edit approval.")

        request = ApprovalRequestDB(
            id=str(uuid4()),
            user_id=actor.user_id,
            form_type=resolved.value,
            form_id=form_id,
            request_type=request_type,
            reason=reason.strip(),
            document_path=document_path,
            status=ApprovalStatus.PENDING,
        )
        self.db.add(request)
        self.db.flush()

        self.activity.log(
            ActivityAction.APPROVAL_REQUESTED,
            entity_type="ApprovalRequest",
            entity_id=request.id,
            actor_id=actor.user_id,
            description=f"Edit approval requested for {form_title(resolved)}",
            metadata={"form_type": resolved.value, "form_id": form_id, "request_type": request_type.value},
        )
        self.db.commit()
        logger.info(f"Approval request {request.id} filed by {actor.user_id} for {resolved.value} {form_id}")

        batch = NotificationBatch()
        batch.add_many(
            self.notifier.admin_ids(),
            NotificationType.APPROVAL_REQUESTED,
            "New Approval Request",
            f"{actor.name or 'An agency'} requested to edit {form_title(resolved)}: {reason.strip()}",
            link="/admin/approvals",
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"request_id": request.id}, message="Approval request submitted.")

    @store_operation()
    def upload_document(self, actor: Optional[ActorContext], request_id: str, document_path: str) -> OperationResult:
        """Attach a supporting document to the caller's PENDING request."""
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied
        if not document_path:
            return OperationResult.fail(ErrorKind.VALIDATION, "A document path is required.")

        request = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.id == request_id,
            ApprovalRequestDB.user_id == actor.user_id,
        ).first()
        if request is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Approval request not found.")
        if request.status != ApprovalStatus.PENDING:
            return OperationResult.fail(ErrorKind.CONFLICT, "Documents can only be added to pending requests.")

        request.document_path = document_path
        # A pending request only carries an admin response when a document was asked for
        request.admin_response = None

        self.activity.log(
            ActivityAction.APPROVAL_DOCUMENT_UPLOADED,
            entity_type="ApprovalRequest",
            entity_id=request.id,
            actor_id=actor.user_id,
            description="Supporting document uploaded",
            metadata={"document_path": document_path},
        )
        self.db.commit()

        return OperationResult.ok({"request_id": request.id}, message="Document uploaded.")

    @store_operation()
    def approval_status(self, actor: Optional[ActorContext], form_type: str, form_id: str) -> OperationResult:
        """Latest PENDING or unconsumed APPROVED request the caller holds for a form."""
        denied = check_actor(actor)
        if denied:
            return denied

        request = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.user_id == actor.user_id,
            ApprovalRequestDB.form_type == form_type,
            ApprovalRequestDB.form_id == form_id,
            or_(
                ApprovalRequestDB.status == ApprovalStatus.PENDING,
                (ApprovalRequestDB.status == ApprovalStatus.APPROVED) & ApprovalRequestDB.consumed_at.is_(None),
            ),
        ).order_by(ApprovalRequestDB.created_at.desc()).first()

        return OperationResult.ok({
            "has_pending_request": request is not None and request.status == ApprovalStatus.PENDING,
            "is_approved": request is not None and request.status == ApprovalStatus.APPROVED,
            "request": request.to_dict() if request else None,
        })

    @store_operation()
    def my_requests(self, actor: Optional[ActorContext]) -> OperationResult:
        denied = check_actor(actor)
        if denied:
            return denied

        requests = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.user_id == actor.user_id,
        ).order_by(ApprovalRequestDB.created_at.desc()).all()

        return OperationResult.ok({"requests": [r.to_dict() for r in requests]})

    # =========================================================================
    # ADMIN SIDE
    # =========================================================================

    @store_operation()
    def review(
        self,
        actor: Optional[ActorContext],
        request_id: str,
        decision: ReviewDecision,
        note: Optional[str] = None,
    ) -> OperationResult:
        """
        Approve or reject a PENDING request.

        The status change is conditional on PENDING, so two admins racing
        on the same request resolve it exactly once. Approval unlocks the
        form in the same transaction.
        """
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        request = self.db.query(ApprovalRequestDB).filter(ApprovalRequestDB.id == request_id).first()
        if request is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Approval request not found.")

        new_status = ApprovalStatus.APPROVED if decision == ReviewDecision.APPROVE else ApprovalStatus.REJECTED
        now = datetime.utcnow()
        values = {"status": new_status, "reviewed_at": now, "reviewed_by": actor.user_id}
        if note is not None:
            values["admin_response"] = note

        updated = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.id == request_id,
            ApprovalRequestDB.status == ApprovalStatus.PENDING,
        ).update(values, synchronize_session=False)
        if not updated:
            self.db.rollback()
            return OperationResult.fail(ErrorKind.CONFLICT, "This request has already been processed.")

        resolved = resolve_form_type(request.form_type)
        if decision == ReviewDecision.APPROVE:
            form = self.lifecycle.force_draft(resolved, request.form_id, actor_id=actor.user_id) if resolved else None
            if form is None:
                self.db.rollback()
                return OperationResult.fail(
                    ErrorKind.NOT_FOUND,
                    "The form for this request no longer exists or was changed by another request.",
                )

        action = ActivityAction.APPROVAL_GRANTED if new_status == ApprovalStatus.APPROVED else ActivityAction.APPROVAL_REJECTED
        self.activity.log(
            action,
            entity_type="ApprovalRequest",
            entity_id=request_id,
            actor_id=actor.user_id,
            description=f"Approval request {new_status.value.lower()}",
            metadata={
                "form_type": request.form_type,
                "form_id": request.form_id,
                "old_values": {"status": ApprovalStatus.PENDING.value},
                "new_values": {"status": new_status.value},
            },
        )
        self.db.commit()
        self.db.refresh(request)
        logger.info(f"Approval request {request_id} {new_status.value} by {actor.user_id}")

        title = form_title(resolved) if resolved else request.form_type
        batch = NotificationBatch()
        if new_status == ApprovalStatus.APPROVED:
            batch.add(
                request.user_id,
                NotificationType.APPROVAL_APPROVED,
                "Form Unlocked",
                f"Your request to edit {title} was approved. The form is unlocked for editing.",
                link=f"/forms/{request.form_type}/{request.form_id}",
                related_id=request.id,
                related_type="ApprovalRequest",
            )
        else:
            batch.add(
                request.user_id,
                NotificationType.APPROVAL_REJECTED,
                "Approval Request Rejected",
                f"Your request to edit {title} was rejected." + (f" Note: {note}" if note else ""),
                link="/approvals",
                related_id=request.id,
                related_type="ApprovalRequest",
            )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"request": request.to_dict()}, message=f"Request {new_status.value.lower()}.")

    @store_operation()
    def request_document(self, actor: Optional[ActorContext], request_id: str, message: str) -> OperationResult:
        """Ask the requester for a supporting document. Status is unchanged."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied
        if not message or not message.strip():
            return OperationResult.fail(ErrorKind.VALIDATION, "A message describing the document is required.")

        request = self.db.query(ApprovalRequestDB).filter(ApprovalRequestDB.id == request_id).first()
        if request is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Approval request not found.")
        if request.status != ApprovalStatus.PENDING:
            return OperationResult.fail(ErrorKind.CONFLICT, "This request has already been processed.")

        request.admin_response = message.strip()
        request.reviewed_by = actor.user_id

        self.activity.log(
            ActivityAction.APPROVAL_DOCUMENT_REQUESTED,
            entity_type="ApprovalRequest",
            entity_id=request.id,
            actor_id=actor.user_id,
            description="Supporting document requested",
            metadata={"message": message.strip()},
        )
        self.db.commit()

        batch = NotificationBatch()
        batch.add(
            request.user_id,
            NotificationType.DOCUMENT_REQUESTED,
            "Document Requested",
            message.strip(),
            link="/approvals",
            related_id=request.id,
            related_type="ApprovalRequest",
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"request_id": request.id}, message="Document requested.")

    @store_operation()
    def list_requests(
        self,
        actor: Optional[ActorContext],
        status: Optional[ApprovalStatus] = ApprovalStatus.PENDING,
        user_id: Optional[str] = None,
        form_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> OperationResult:
        """Admin listing, PENDING by default."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        query = self.db.query(ApprovalRequestDB)
        if status is not None:
            query = query.filter(ApprovalRequestDB.status == status)
        if user_id:
            query = query.filter(ApprovalRequestDB.user_id == user_id)
        if form_type:
            query = query.filter(ApprovalRequestDB.form_type == form_type)
        if search:
            query = query.filter(ApprovalRequestDB.reason.ilike(f"%{search}%"))

        requests = query.order_by(ApprovalRequestDB.created_at.desc()).limit(LIST_PAGE_SIZE).all()
        total_pending = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.status == ApprovalStatus.PENDING,
        ).count()

        return OperationResult.ok({
            "requests": [r.to_dict() for r in requests],
            "total_pending": total_pending,
        })

    @store_operation()
    def statistics(self, actor: Optional[ActorContext]) -> OperationResult:
        """Counts by outcome; approved excludes requests already consumed by a resubmission or deletion."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        base = self.db.query(ApprovalRequestDB)
        pending = base.filter(ApprovalRequestDB.status == ApprovalStatus.PENDING).count()
        approved = base.filter(
            ApprovalRequestDB.status == ApprovalStatus.APPROVED,
            ApprovalRequestDB.consumed_at.is_(None),
        ).count()
        rejected = base.filter(ApprovalRequestDB.status == ApprovalStatus.REJECTED).count()
        needing_document = base.filter(
            ApprovalRequestDB.status == ApprovalStatus.PENDING,
            ApprovalRequestDB.admin_response.isnot(None),
            ApprovalRequestDB.document_path.is_(None),
        ).count()

        return OperationResult.ok({
            "pending": pending,
            "approved": approved,
            "rejected": rejected,
            "needing_document": needing_document,
        })
