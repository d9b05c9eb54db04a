"""
Form Lifecycle Manager

AUTHORITY: AGENCY (owner) for save/delete, SYSTEM for force_draft.
Owns the DRAFT -> SUBMITTED transition and the "locked unless approved"
edit rule, identically for every form type.

Lifecycle:
    (new) --save(DRAFT)------> DRAFT
    (new) --save(SUBMITTED)--> SUBMITTED
    DRAFT --save(DRAFT)------> DRAFT
    DRAFT --save(SUBMITTED)--> SUBMITTED
    SUBMITTED --force_draft--> DRAFT       (approval broker only)

A SUBMITTED form is locked. The only way back to DRAFT is an APPROVED
ApprovalRequest; the next submit, or deleting the unlocked draft, consumes
the approval, so a single approval buys exactly one edit window.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...models.actor import ActorContext, ADMIN_ROLES, check_actor
from ...models.db_models import (
    ActivityAction, ApprovalRequestDB, ApprovalStatus, FormSubmissionDB,
    NotificationType, SubmissionStatus, UserRole,
)
from ...models.results import ErrorKind, OperationResult, store_operation
from ..notifications import ActivityLogger, NotificationBatch, Notifier
from .registry import (
    FORM_CONFIG, FormType, form_title, missing_fields, period_deadline,
    repository_for, resolve_form_type,
)

logger = logging.getLogger(__name__)


def is_editable(form: FormSubmissionDB) -> bool:
    """A form may be edited by its owner iff it is a DRAFT."""
    return form.status == SubmissionStatus.DRAFT


def _snapshot(form: FormSubmissionDB) -> Dict[str, Any]:
    return {"status": form.status.value, "payload": form.payload}


class FormLifecycleManager:
    """
    Draft/submit/lock rules shared by every form type.

    Usage:
        manager = FormLifecycleManager(db)
        result = manager.save(actor, "agencyVisits", payload, SubmissionStatus.SUBMITTED)
    """

    def __init__(self, db_session: Session, notifier: Optional[Notifier] = None):
        self.db = db_session
        self.activity = ActivityLogger(db_session)
        self.notifier = notifier or Notifier(db_session)

    # =========================================================================
    # SAVE / SUBMIT
    # =========================================================================

    @store_operation(conflict_message="A submission for this form and period already exists.")
    def save(
        self,
        actor: Optional[ActorContext],
        form_type: str,
        payload: Dict[str, Any],
        target_status: SubmissionStatus,
        form_id: Optional[str] = None,
        period_month: Optional[int] = None,
        period_year: Optional[int] = None,
    ) -> OperationResult:
        """
        Create or update a form owned by the caller.

        Returns {form_id, status, resubmission}.
        """
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        resolved = resolve_form_type(form_type)
        if resolved is None:
            return OperationResult.fail(ErrorKind.VALIDATION, f"Unknown form type: {form_type}")

        if not payload:
            return OperationResult.fail(ErrorKind.VALIDATION, "Form payload cannot be empty.")

        if target_status == SubmissionStatus.SUBMITTED:
            missing = missing_fields(resolved, payload)
            if missing:
                return OperationResult.fail(
                    ErrorKind.VALIDATION,
                    f"Missing required fields: {', '.join(missing)}",
                )

        if (period_month is None) != (period_year is None):
            return OperationResult.fail(ErrorKind.VALIDATION, "Period month and year must be given together.")
        if period_month is not None and not 1 <= period_month <= 12:
            return OperationResult.fail(ErrorKind.VALIDATION, "Period month must be between 1 and 12.")

        if form_id is None:
            return self._create(actor, resolved, payload, target_status, period_month, period_year)
        return self._update(actor, resolved, form_id, payload, target_status)

    def _create(
        self,
        actor: ActorContext,
        form_type: FormType,
        payload: Dict[str, Any],
        target_status: SubmissionStatus,
        period_month: Optional[int],
        period_year: Optional[int],
    ) -> OperationResult:
        repo = repository_for(self.db, form_type)
        form = repo.create(actor.user_id, payload, target_status, period_month, period_year)

        action = (
            ActivityAction.FORM_SUBMITTED if target_status == SubmissionStatus.SUBMITTED
            else ActivityAction.FORM_CREATED
        )
        self.activity.log(
            action,
            entity_type=form_type.value,
            entity_id=form.id,
            actor_id=actor.user_id,
            description=f"{form_title(form_type)} {action.value.split('_', 1)[1].lower()}",
            metadata={"new_values": _snapshot(form)},
        )
        self.db.commit()
        logger.info(f"Created {form_type.value} {form.id} as {target_status.value} for {actor.user_id}")

        batch = NotificationBatch()
        if target_status == SubmissionStatus.SUBMITTED:
            self._queue_submitted(batch, actor, form_type, form)
        self.notifier.dispatch(batch)

        return OperationResult.ok(
            {"form_id": form.id, "status": form.status.value, "resubmission": False},
            message="Form submitted." if target_status == SubmissionStatus.SUBMITTED else "Draft saved.",
        )

    def _update(
        self,
        actor: ActorContext,
        form_type: FormType,
        form_id: str,
        payload: Dict[str, Any],
        target_status: SubmissionStatus,
    ) -> OperationResult:
        repo = repository_for(self.db, form_type)
        form = repo.load(form_id, owner_id=actor.user_id)
        if form is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Form not found.")

        current = form.status
        approval = self._active_approval(form_type, form.id)

        if current == SubmissionStatus.SUBMITTED:
            if target_status == SubmissionStatus.DRAFT:
                return OperationResult.fail(
                    ErrorKind.CONFLICT,
                    "A submitted form cannot be moved back to draft. Request edit approval instead.",
                )
            if approval is None:
                return OperationResult.fail(
                    ErrorKind.CONFLICT,
                    "This form is locked. Request edit approval before changing it.",
                )

        old_values = _snapshot(form)
        if not repo.save(form, payload, target_status, expected_status=current):
            self.db.rollback()
            return OperationResult.fail(ErrorKind.CONFLICT, "Form was changed by another request. Reload and retry.")

        resubmission = target_status == SubmissionStatus.SUBMITTED and approval is not None
        first_submission = (
            target_status == SubmissionStatus.SUBMITTED
            and current == SubmissionStatus.DRAFT
            and not resubmission
        )

        if resubmission:
            self._consume_approval(actor, approval)
            action = ActivityAction.FORM_RESUBMITTED
        elif first_submission:
            action = ActivityAction.FORM_SUBMITTED
        else:
            action = ActivityAction.FORM_UPDATED

        self.activity.log(
            action,
            entity_type=form_type.value,
            entity_id=form.id,
            actor_id=actor.user_id,
            description=f"{form_title(form_type)} {action.value.split('_', 1)[1].lower()}",
            metadata={"old_values": old_values, "new_values": _snapshot(form)},
        )
        self.db.commit()
        logger.info(f"{action.value}: {form_type.value} {form.id} {current.value} -> {target_status.value}")

        batch = NotificationBatch()
        if first_submission:
            self._queue_submitted(batch, actor, form_type, form)
        self.notifier.dispatch(batch)

        return OperationResult.ok(
            {"form_id": form.id, "status": form.status.value, "resubmission": resubmission},
            message="Form resubmitted." if resubmission else "Form saved.",
        )

    def _active_approval(self, form_type: FormType, form_id: str) -> Optional[ApprovalRequestDB]:
        """Most recent APPROVED request for this exact form not yet used up."""
        return self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.form_type == form_type.value,
            ApprovalRequestDB.form_id == form_id,
            ApprovalRequestDB.status == ApprovalStatus.APPROVED,
            ApprovalRequestDB.consumed_at.is_(None),
        ).order_by(ApprovalRequestDB.reviewed_at.desc()).first()

    def _consume_approval(self, actor: ActorContext, approval: ApprovalRequestDB, used_by: str = "resubmission") -> None:
        now = datetime.utcnow()
        note = f"[Consumed by {used_by} on {now:%Y-%m-%d %H:%M} UTC]"
        approval.consumed_at = now
        approval.admin_response = f"{approval.admin_response}\n{note}" if approval.admin_response else note

        self.activity.log(
            ActivityAction.APPROVAL_CONSUMED,
            entity_type="ApprovalRequest",
            entity_id=approval.id,
            actor_id=actor.user_id,
            description=f"Approval consumed by {used_by} of {approval.form_type}",
            metadata={"form_id": approval.form_id},
        )

    def _queue_submitted(
        self,
        batch: NotificationBatch,
        actor: ActorContext,
        form_type: FormType,
        form: FormSubmissionDB,
    ) -> None:
        batch.add(
            actor.user_id,
            NotificationType.FORM_SUBMITTED,
            "Form Submitted",
            f"Your {form_title(form_type)} has been submitted.",
            link=f"/forms/{form_type.value}/{form.id}",
            related_id=form.id,
            related_type=form_type.value,
        )

    # =========================================================================
    # DELETE
    # =========================================================================

    @store_operation()
    def delete(self, actor: Optional[ActorContext], form_type: str, form_id: str) -> OperationResult:
        """Delete a DRAFT form owned by the caller."""
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        resolved = resolve_form_type(form_type)
        if resolved is None:
            return OperationResult.fail(ErrorKind.VALIDATION, f"Unknown form type: {form_type}")

        repo = repository_for(self.db, resolved)
        form = repo.load(form_id, owner_id=actor.user_id)
        if form is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Form not found.")
        if form.status == SubmissionStatus.SUBMITTED:
            return OperationResult.fail(ErrorKind.CONFLICT, "Submitted forms cannot be deleted.")

        old_values = _snapshot(form)
        if not repo.delete(form):
            self.db.rollback()
            return OperationResult.fail(ErrorKind.CONFLICT, "Form was submitted by another request.")

        approval = self._active_approval(resolved, form_id)
        if approval is not None:
            self._consume_approval(actor, approval, used_by="deletion")

        self.activity.log(
            ActivityAction.FORM_DELETED,
            entity_type=resolved.value,
            entity_id=form_id,
            actor_id=actor.user_id,
            description=f"{form_title(resolved)} draft deleted",
            metadata={"old_values": old_values},
        )
        self.db.commit()

        return OperationResult.ok({"form_id": form_id}, message="Draft deleted.")

    # =========================================================================
    # APPROVAL BROKER HOOK
    # =========================================================================

    def force_draft(self, form_type: FormType, form_id: str, actor_id: Optional[str] = None) -> Optional[FormSubmissionDB]:
        """
        Unlock a SUBMITTED form back to DRAFT.

        Bypasses the SUBMITTED -> DRAFT rejection in save(). Runs inside the
        caller's transaction and does not commit. Returns None if the form
        does not exist or another request changed its status first.
        """
        repo = repository_for(self.db, form_type)
        form = repo.load(form_id)
        if form is None:
            return None

        if form.status == SubmissionStatus.SUBMITTED:
            if not repo.save(form, None, SubmissionStatus.DRAFT, expected_status=SubmissionStatus.SUBMITTED):
                return None
            self.activity.log(
                ActivityAction.FORM_UNLOCKED,
                entity_type=form_type.value,
                entity_id=form.id,
                actor_id=actor_id,
                description=f"{form_title(form_type)} unlocked for editing",
                metadata={
                    "old_values": {"status": SubmissionStatus.SUBMITTED.value},
                    "new_values": {"status": form.status.value},
                },
            )
        return form

    # =========================================================================
    # QUERIES
    # =========================================================================

    @store_operation()
    def get_form(self, actor: Optional[ActorContext], form_type: str, form_id: str) -> OperationResult:
        """Single form, visible to its owner and to admins."""
        denied = check_actor(actor)
        if denied:
            return denied

        resolved = resolve_form_type(form_type)
        if resolved is None:
            return OperationResult.fail(ErrorKind.VALIDATION, f"Unknown form type: {form_type}")

        owner_scope = None if actor.role in ADMIN_ROLES else actor.user_id
        form = repository_for(self.db, resolved).load(form_id, owner_id=owner_scope)
        if form is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Form not found.")

        data = form.to_dict()
        data["editable"] = is_editable(form)
        return OperationResult.ok({"form": data})

    @store_operation()
    def list_submissions(self, actor: Optional[ActorContext]) -> OperationResult:
        """Caller's submissions across every form type, most recent first."""
        denied = check_actor(actor, UserRole.USER)
        if denied:
            return denied

        forms = self.db.query(FormSubmissionDB).filter(
            FormSubmissionDB.owner_id == actor.user_id,
        ).order_by(FormSubmissionDB.updated_at.desc()).all()

        submissions: List[Dict[str, Any]] = []
        for form in forms:
            data = form.to_dict()
            resolved = resolve_form_type(form.form_type)
            data["title"] = form_title(resolved) if resolved else form.form_type
            data["editable"] = is_editable(form)
            submissions.append(data)

        return OperationResult.ok({"submissions": submissions, "total": len(submissions)})

    @store_operation()
    def period_status(
        self,
        actor: Optional[ActorContext],
        owner_id: str,
        month: int,
        year: int,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """
        Per required form type: NOT_STARTED, DRAFT, SUBMITTED or OVERDUE.

        OVERDUE means not SUBMITTED and the period's deadline day has passed.
        """
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied
        if not 1 <= month <= 12:
            return OperationResult.fail(ErrorKind.VALIDATION, "Month must be between 1 and 12.")

        now = now or datetime.utcnow()
        rows = self.db.query(FormSubmissionDB).filter(
            FormSubmissionDB.owner_id == owner_id,
            FormSubmissionDB.period_month == month,
            FormSubmissionDB.period_year == year,
        ).all()
        by_type = {row.form_type: row for row in rows}

        statuses = []
        for form_type, config in FORM_CONFIG.items():
            if not config["is_required"]:
                continue

            form = by_type.get(form_type.value)
            deadline = period_deadline(form_type, month, year)
            if form is not None and form.status == SubmissionStatus.SUBMITTED:
                status = "SUBMITTED"
            elif now > deadline:
                status = "OVERDUE"
            elif form is not None:
                status = "DRAFT"
            else:
                status = "NOT_STARTED"

            statuses.append({
                "form_type": form_type.value,
                "title": config["title"],
                "status": status,
                "form_id": form.id if form is not None else None,
                "deadline": deadline.isoformat(),
            })

        return OperationResult.ok({
            "owner_id": owner_id,
            "period": f"{year:04d}-{month:02d}",
            "forms": statuses,
        })

    @store_operation()
    def submission_history(
        self,
        actor: Optional[ActorContext],
        form_type: str,
        owner_id: Optional[str] = None,
    ) -> OperationResult:
        """SUBMITTED forms of one type for an owner, newest first. Agencies only see their own."""
        denied = check_actor(actor)
        if denied:
            return denied

        resolved = resolve_form_type(form_type)
        if resolved is None:
            return OperationResult.fail(ErrorKind.VALIDATION, f"Unknown form type: {form_type}")

        owner_id = owner_id or actor.user_id
        if owner_id != actor.user_id and not actor.is_admin:
            return OperationResult.fail(ErrorKind.FORBIDDEN, "You can only view your own submissions.")

        forms = self.db.query(FormSubmissionDB).filter(
            FormSubmissionDB.form_type == resolved.value,
            FormSubmissionDB.owner_id == owner_id,
            FormSubmissionDB.status == SubmissionStatus.SUBMITTED,
        ).order_by(FormSubmissionDB.created_at.desc()).all()

        return OperationResult.ok({
            "form_type": resolved.value,
            "owner_id": owner_id,
            "submissions": [form.to_dict() for form in forms],
        })
