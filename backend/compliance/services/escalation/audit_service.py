"""
Audit Service

AUTHORITY: AUDITOR raises findings, ADMIN reviews them, SUPER_ADMIN
manages which firm may audit which agency.

Entry point of the escalation pipeline: an auditor whose firm holds an
active assignment for an agency creates an Audit and records
Observations against it. Observations start in PENDING_ADMIN_REVIEW and
stay invisible to the agency until an admin issues them.
"""
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.actor import ActorContext, ADMIN_ROLES, check_actor
from ...models.db_models import (
    ActivityAction, AgencyAssignmentDB, AuditDB, AuditingFirmDB, AuditorDB,
    AuditStatus, NotificationType, ObservationDB, ObservationSeverity,
    ObservationStatus, ScorecardDB, UserDB, UserRole,
)
from ...models.results import ErrorKind, OperationResult, store_operation
from ..notifications import ActivityLogger, NotificationBatch, Notifier
from .state_machine import describe_state

logger = logging.getLogger(__name__)

HIGH_SEVERITIES = (ObservationSeverity.HIGH, ObservationSeverity.CRITICAL)


class AuditService:
    """
    Assignments, audits, observations and scorecards.

    Usage:
        audits = AuditService(db)
        result = audits.create_audit(auditor, agency_id, date(2026, 3, 2), location="Pune")
        audits.add_observation(auditor, result.data["audit_id"], "OBS-1", ObservationSeverity.HIGH, "...")
    """

    def __init__(self, db_session: Session, notifier: Optional[Notifier] = None):
        self.db = db_session
        self.activity = ActivityLogger(db_session)
        self.notifier = notifier or Notifier(db_session)

    def _auditor_profile(self, user_id: str) -> Optional[AuditorDB]:
        return self.db.query(AuditorDB).filter(AuditorDB.user_id == user_id).first()

    def _active_assignment(self, agency_id: str, firm_id: str) -> Optional[AgencyAssignmentDB]:
        return self.db.query(AgencyAssignmentDB).filter(
            AgencyAssignmentDB.agency_id == agency_id,
            AgencyAssignmentDB.firm_id == firm_id,
            AgencyAssignmentDB.is_active.is_(True),
        ).first()

    # =========================================================================
    # FIRM ASSIGNMENTS
    # =========================================================================

    @store_operation(conflict_message="This agency is already assigned to the firm.")
    def assign_agency_to_firm(self, actor: Optional[ActorContext], agency_id: str, firm_id: str) -> OperationResult:
        denied = check_actor(actor, UserRole.SUPER_ADMIN)
        if denied:
            return denied

        agency = self.db.query(UserDB).filter(UserDB.id == agency_id, UserDB.role == UserRole.USER).first()
        if agency is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Agency not found.")
        firm = self.db.query(AuditingFirmDB).filter(AuditingFirmDB.id == firm_id).first()
        if firm is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Auditing firm not found.")

        assignment = self._upsert_assignment(agency_id, firm_id, actor.user_id)

        self.activity.log(
            ActivityAction.AGENCY_ASSIGNED_TO_FIRM,
            entity_type="AgencyAssignment",
            entity_id=assignment.id,
            actor_id=actor.user_id,
            description=f"{agency.name} assigned to {firm.name}",
        )
        self.db.commit()

        return OperationResult.ok({"assignment_id": assignment.id}, message="Agency assigned.")

    @store_operation()
    def update_firm_assignments(
        self,
        actor: Optional[ActorContext],
        firm_id: str,
        assigned_agency_ids: List[str],
        unassigned_agency_ids: List[str],
    ) -> OperationResult:
        """
        Replace a firm's assignments in one transaction.

        Unassigned agencies are deactivated, assigned agencies are upserted
        as active. Nothing is visible until both halves have been applied.
        """
        denied = check_actor(actor, UserRole.SUPER_ADMIN)
        if denied:
            return denied

        overlap = set(assigned_agency_ids) & set(unassigned_agency_ids)
        if overlap:
            return OperationResult.fail(
                ErrorKind.VALIDATION,
                f"Agencies cannot be both assigned and unassigned: {', '.join(sorted(overlap))}",
            )

        firm = self.db.query(AuditingFirmDB).filter(AuditingFirmDB.id == firm_id).first()
        if firm is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Auditing firm not found.")

        known = {
            row.id for row in self.db.query(UserDB.id).filter(
                UserDB.id.in_(assigned_agency_ids),
                UserDB.role == UserRole.USER,
            ).all()
        } if assigned_agency_ids else set()
        unknown = [a for a in assigned_agency_ids if a not in known]
        if unknown:
            return OperationResult.fail(ErrorKind.NOT_FOUND, f"Agencies not found: {', '.join(unknown)}")

        deactivated = 0
        if unassigned_agency_ids:
            deactivated = self.db.query(AgencyAssignmentDB).filter(
                AgencyAssignmentDB.firm_id == firm_id,
                AgencyAssignmentDB.agency_id.in_(unassigned_agency_ids),
            ).update(
                {"is_active": False, "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )

        for agency_id in assigned_agency_ids:
            self._upsert_assignment(agency_id, firm_id, actor.user_id)

        self.activity.log(
            ActivityAction.FIRM_ASSIGNMENTS_UPDATED,
            entity_type="AuditingFirm",
            entity_id=firm_id,
            actor_id=actor.user_id,
            description=f"Assignments updated for {firm.name}",
            metadata={"assigned": assigned_agency_ids, "unassigned": unassigned_agency_ids},
        )
        self.db.commit()
        logger.info(f"Firm {firm_id}: {len(assigned_agency_ids)} assigned, {deactivated} deactivated")

        return OperationResult.ok({
            "firm_id": firm_id,
            "assigned": len(assigned_agency_ids),
            "unassigned": deactivated,
        })

    def _upsert_assignment(self, agency_id: str, firm_id: str, assigned_by: str) -> AgencyAssignmentDB:
        assignment = self.db.query(AgencyAssignmentDB).filter(
            AgencyAssignmentDB.agency_id == agency_id,
            AgencyAssignmentDB.firm_id == firm_id,
        ).first()
        if assignment is None:
            assignment = AgencyAssignmentDB(
                id=str(uuid4()),
                agency_id=agency_id,
                firm_id=firm_id,
                assigned_by=assigned_by,
                is_active=True,
            )
            self.db.add(assignment)
        else:
            assignment.is_active = True
            assignment.assigned_by = assigned_by
        self.db.flush()
        return assignment

    # =========================================================================
    # AUDITS
    # =========================================================================

    @store_operation()
    def create_audit(
        self,
        actor: Optional[ActorContext],
        agency_id: str,
        audit_date: date,
        auditor_name: Optional[str] = None,
        auditor_employee_id: Optional[str] = None,
        location: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> OperationResult:
        """Open an audit. The auditor's firm must hold an active assignment for the agency."""
        denied = check_actor(actor, UserRole.AUDITOR)
        if denied:
            return denied

        auditor = self._auditor_profile(actor.user_id)
        if auditor is None:
            return OperationResult.fail(ErrorKind.FORBIDDEN, "Auditor profile not found.")

        if self._active_assignment(agency_id, auditor.firm_id) is None:
            return OperationResult.fail(ErrorKind.FORBIDDEN, "Your firm is not assigned to this agency.")

        audit = AuditDB(
            id=str(uuid4()),
            agency_id=agency_id,
            firm_id=auditor.firm_id,
            auditor_id=auditor.id,
            audit_date=audit_date,
            status=AuditStatus.IN_PROGRESS,
            auditor_name=auditor_name or actor.name,
            auditor_employee_id=auditor_employee_id,
            location=location,
            remarks=remarks,
        )
        self.db.add(audit)
        self.db.flush()

        self.activity.log(
            ActivityAction.AUDIT_CREATED,
            entity_type="Audit",
            entity_id=audit.id,
            actor_id=actor.user_id,
            description=f"Audit created for agency {agency_id}",
            metadata={"audit_date": audit_date, "firm_id": auditor.firm_id},
        )
        self.db.commit()
        logger.info(f"Audit {audit.id} created by {actor.user_id} for agency {agency_id}")

        return OperationResult.ok({"audit_id": audit.id}, message="Audit created.")

    @store_operation()
    def complete_audit(self, actor: Optional[ActorContext], audit_id: str) -> OperationResult:
        denied = check_actor(actor, UserRole.AUDITOR)
        if denied:
            return denied

        audit, failure = self._audit_for_auditor(actor, audit_id)
        if failure:
            return failure

        updated = self.db.query(AuditDB).filter(
            AuditDB.id == audit_id,
            AuditDB.status == AuditStatus.IN_PROGRESS,
        ).update({"status": AuditStatus.COMPLETED, "updated_at": datetime.utcnow()}, synchronize_session=False)
        if not updated:
            self.db.rollback()
            return OperationResult.fail(ErrorKind.CONFLICT, "Audit is already completed.")

        self.activity.log(
            ActivityAction.AUDIT_COMPLETED,
            entity_type="Audit",
            entity_id=audit_id,
            actor_id=actor.user_id,
            description="Audit completed",
            metadata={
                "old_values": {"status": AuditStatus.IN_PROGRESS.value},
                "new_values": {"status": AuditStatus.COMPLETED.value},
            },
        )
        self.db.commit()

        return OperationResult.ok({"audit_id": audit_id, "status": AuditStatus.COMPLETED.value})

    def _audit_for_auditor(self, actor: ActorContext, audit_id: str):
        """(audit, None) if the caller's firm owns the audit, else (None, failure)."""
        audit = self.db.query(AuditDB).filter(AuditDB.id == audit_id).first()
        if audit is None:
            return None, OperationResult.fail(ErrorKind.NOT_FOUND, "Audit not found.")

        auditor = self._auditor_profile(actor.user_id)
        if auditor is None or auditor.firm_id != audit.firm_id:
            return None, OperationResult.fail(ErrorKind.FORBIDDEN, "This audit belongs to another firm.")
        return audit, None

    # =========================================================================
    # OBSERVATIONS
    # =========================================================================

    @store_operation(conflict_message="Observation number already exists for this audit.")
    def add_observation(
        self,
        actor: Optional[ActorContext],
        audit_id: str,
        observation_number: str,
        severity: ObservationSeverity,
        description: str,
        category: Optional[str] = None,
        evidence_required: bool = False,
    ) -> OperationResult:
        """Record a finding. Numbers are unique per audit."""
        denied = check_actor(actor, UserRole.AUDITOR)
        if denied:
            return denied

        if not observation_number or not description:
            return OperationResult.fail(ErrorKind.VALIDATION, "Observation number and description are required.")

        audit, failure = self._audit_for_auditor(actor, audit_id)
        if failure:
            return failure
        if audit.status != AuditStatus.IN_PROGRESS:
            return OperationResult.fail(ErrorKind.CONFLICT, "Observations cannot be added to a completed audit.")

        observation = ObservationDB(
            id=str(uuid4()),
            audit_id=audit_id,
            observation_number=observation_number,
            category=category,
            severity=severity,
            description=description,
            evidence_required=evidence_required,
            status=ObservationStatus.PENDING_ADMIN_REVIEW,
            visible_to_agency=False,
        )
        self.db.add(observation)
        self.db.flush()

        self.activity.log(
            ActivityAction.OBSERVATION_ADDED,
            entity_type="Observation",
            entity_id=observation.id,
            actor_id=actor.user_id,
            description=f"Observation {observation_number} ({severity.value}) added",
            metadata={"audit_id": audit_id, "agency_id": audit.agency_id},
        )
        self.db.commit()

        batch = NotificationBatch()
        batch.add_many(
            self.notifier.admin_ids(),
            NotificationType.OBSERVATION_ADDED,
            "New Observation",
            f"{severity.value} observation {observation_number} recorded and awaiting review.",
            link="/admin/observations",
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"observation_id": observation.id}, message="Observation added.")

    # =========================================================================
    # SCORECARD
    # =========================================================================

    @store_operation()
    def save_scorecard(
        self,
        actor: Optional[ActorContext],
        audit_id: str,
        audit_period: str,
        audit_score: float,
        audit_grade: str,
        audit_category: Optional[str] = None,
        final_observation: Optional[str] = None,
        justification: Optional[str] = None,
    ) -> OperationResult:
        """Create or replace the single scorecard of an audit."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        if not audit_period or not audit_grade:
            return OperationResult.fail(ErrorKind.VALIDATION, "Audit period and grade are required.")
        if not 0 <= audit_score <= 100:
            return OperationResult.fail(ErrorKind.VALIDATION, "Audit score must be between 0 and 100.")

        audit = self.db.query(AuditDB).filter(AuditDB.id == audit_id).first()
        if audit is None:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Audit not found.")

        values = {
            "audit_period": audit_period,
            "audit_score": audit_score,
            "audit_grade": audit_grade,
            "audit_category": audit_category,
            "final_observation": final_observation,
            "justification": justification,
        }
        scorecard = audit.scorecard
        if scorecard is None:
            scorecard = ScorecardDB(id=str(uuid4()), audit_id=audit_id, auditor_id=audit.auditor_id, **values)
            self.db.add(scorecard)
        else:
            for key, value in values.items():
                setattr(scorecard, key, value)
        self.db.flush()

        self.activity.log(
            ActivityAction.SCORECARD_PUBLISHED,
            entity_type="Audit",
            entity_id=audit_id,
            actor_id=actor.user_id,
            description=f"Scorecard published: {audit_grade} ({audit_score})",
        )
        self.db.commit()

        batch = NotificationBatch()
        batch.add(
            audit.agency_id,
            NotificationType.SYSTEM_ALERT,
            "Audit Scorecard Published",
            f"Your audit scorecard for {audit_period} is available. Grade: {audit_grade}.",
            link=f"/audits/{audit_id}",
            related_id=audit_id,
            related_type="Audit",
        )
        self.notifier.dispatch(batch)

        return OperationResult.ok({"scorecard_id": scorecard.id}, message="Scorecard saved.")

    # =========================================================================
    # QUERIES
    # =========================================================================

    @store_operation()
    def audit_details(self, actor: Optional[ActorContext], audit_id: str) -> OperationResult:
        """Audit with its observations. Auditors of the firm and admins only."""
        denied = check_actor(actor, UserRole.AUDITOR, *ADMIN_ROLES)
        if denied:
            return denied

        if actor.role == UserRole.AUDITOR:
            audit, failure = self._audit_for_auditor(actor, audit_id)
            if failure:
                return failure
        else:
            audit = self.db.query(AuditDB).filter(AuditDB.id == audit_id).first()
            if audit is None:
                return OperationResult.fail(ErrorKind.NOT_FOUND, "Audit not found.")

        data = audit.to_dict()
        data["observations"] = [
            {**o.to_dict(), "state": describe_state(o.status)}
            for o in sorted(audit.observations, key=lambda o: o.observation_number)
        ]
        scorecard = audit.scorecard
        data["scorecard"] = {
            "audit_period": scorecard.audit_period,
            "audit_score": scorecard.audit_score,
            "audit_grade": scorecard.audit_grade,
            "final_observation": scorecard.final_observation,
        } if scorecard else None

        return OperationResult.ok({"audit": data})

    @store_operation()
    def admin_observations(
        self,
        actor: Optional[ActorContext],
        status: Optional[ObservationStatus] = None,
        severity: Optional[ObservationSeverity] = None,
        agency_id: Optional[str] = None,
        audit_id: Optional[str] = None,
    ) -> OperationResult:
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        query = self.db.query(ObservationDB).join(AuditDB, ObservationDB.audit_id == AuditDB.id)
        if status is not None:
            query = query.filter(ObservationDB.status == status)
        if severity is not None:
            query = query.filter(ObservationDB.severity == severity)
        if agency_id:
            query = query.filter(AuditDB.agency_id == agency_id)
        if audit_id:
            query = query.filter(ObservationDB.audit_id == audit_id)

        observations = query.order_by(ObservationDB.created_at.desc()).all()
        return OperationResult.ok({
            "observations": [
                {**o.to_dict(), "agency_id": o.audit.agency_id}
                for o in observations
            ],
        })

    @store_operation()
    def agencies_with_pending_observations(self, actor: Optional[ActorContext]) -> OperationResult:
        """Observations awaiting admin review, grouped per agency for bulk issuance."""
        denied = check_actor(actor, *ADMIN_ROLES)
        if denied:
            return denied

        rows = self.db.query(ObservationDB, AuditDB, UserDB).join(
            AuditDB, ObservationDB.audit_id == AuditDB.id,
        ).join(
            UserDB, AuditDB.agency_id == UserDB.id,
        ).filter(
            ObservationDB.status == ObservationStatus.PENDING_ADMIN_REVIEW,
        ).order_by(UserDB.name, ObservationDB.observation_number).all()

        grouped: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"observations": []})
        for observation, audit, agency in rows:
            entry = grouped[agency.id]
            entry["agency_id"] = agency.id
            entry["agency_name"] = agency.name
            entry["observations"].append({
                **observation.to_dict(),
                "audit_date": audit.audit_date.isoformat() if audit.audit_date else None,
            })

        agencies = []
        for entry in grouped.values():
            entry["observation_count"] = len(entry["observations"])
            entry["high_severity_count"] = sum(
                1 for o in entry["observations"] if o["severity"] in [s.value for s in HIGH_SEVERITIES]
            )
            agencies.append(entry)

        return OperationResult.ok({"agencies": agencies, "total": len(agencies)})
