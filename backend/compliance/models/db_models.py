"""
Agency Compliance - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, Date, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS - STABLE VOCABULARY EXPOSED TO CALLERS
# =============================================================================

class UserRole(str, Enum):
    """Roles resolved by the session provider."""
    USER = "USER"  # Collection agency
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    AUDITOR = "AUDITOR"
    COLLECTION_MANAGER = "COLLECTION_MANAGER"


class SubmissionStatus(str, Enum):
    """Status of a monthly/annual form submission."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"


class ApprovalStatus(str, Enum):
    """Status of a request to unlock a submitted form."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalType(str, Enum):
    """Why the agency needs the submitted form back."""
    UPDATE_SUBMITTED_FORM = "UPDATE_SUBMITTED_FORM"
    UPDATE_PREVIOUS_MONTH = "UPDATE_PREVIOUS_MONTH"
    DELETE_RECORD = "DELETE_RECORD"


class AuditStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ObservationSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ObservationStatus(str, Enum):
    """States in the observation escalation state machine."""
    PENDING_ADMIN_REVIEW = "PENDING_ADMIN_REVIEW"
    SENT_TO_AGENCY = "SENT_TO_AGENCY"
    AWAITING_AGENCY_RESPONSE = "AWAITING_AGENCY_RESPONSE"
    AGENCY_ACCEPTED = "AGENCY_ACCEPTED"
    AGENCY_DISPUTED = "AGENCY_DISPUTED"
    AUTO_ACCEPTED = "AUTO_ACCEPTED"
    CLOSED = "CLOSED"


class ShowCauseStatus(str, Enum):
    """Status of a show cause notice, derived from its observations."""
    ISSUED = "ISSUED"
    RESPONDED = "RESPONDED"
    CLOSED = "CLOSED"


class PenaltyStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    PAID = "PAID"


class NotificationType(str, Enum):
    """Notification categories accepted by the notifier."""
    FORM_SUBMITTED = "FORM_SUBMITTED"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_APPROVED = "APPROVAL_APPROVED"
    APPROVAL_REJECTED = "APPROVAL_REJECTED"
    DOCUMENT_REQUESTED = "DOCUMENT_REQUESTED"
    SHOW_CAUSE_ISSUED = "SHOW_CAUSE_ISSUED"
    SHOW_CAUSE_RESPONDED = "SHOW_CAUSE_RESPONDED"
    SHOW_CAUSE_CLOSED = "SHOW_CAUSE_CLOSED"
    OBSERVATION_ADDED = "OBSERVATION_ADDED"
    OBSERVATION_COMMENT = "OBSERVATION_COMMENT"
    OBSERVATION_AUTO_ACCEPTED = "OBSERVATION_AUTO_ACCEPTED"
    PENALTY_ISSUED = "PENALTY_ISSUED"
    SYSTEM_ALERT = "SYSTEM_ALERT"


class ActivityAction(str, Enum):
    """Actions recorded in the activity log."""
    FORM_CREATED = "FORM_CREATED"
    FORM_UPDATED = "FORM_UPDATED"
    FORM_SUBMITTED = "FORM_SUBMITTED"
    FORM_RESUBMITTED = "FORM_RESUBMITTED"
    FORM_DELETED = "FORM_DELETED"
    FORM_UNLOCKED = "FORM_UNLOCKED"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_GRANTED = "APPROVAL_GRANTED"
    APPROVAL_REJECTED = "APPROVAL_REJECTED"
    APPROVAL_DOCUMENT_REQUESTED = "APPROVAL_DOCUMENT_REQUESTED"
    APPROVAL_DOCUMENT_UPLOADED = "APPROVAL_DOCUMENT_UPLOADED"
    APPROVAL_CONSUMED = "APPROVAL_CONSUMED"
    AGENCY_ASSIGNED_TO_FIRM = "AGENCY_ASSIGNED_TO_FIRM"
    FIRM_ASSIGNMENTS_UPDATED = "FIRM_ASSIGNMENTS_UPDATED"
    AUDIT_CREATED = "AUDIT_CREATED"
    AUDIT_COMPLETED = "AUDIT_COMPLETED"
    SCORECARD_PUBLISHED = "SCORECARD_PUBLISHED"
    OBSERVATION_ADDED = "OBSERVATION_ADDED"
    OBSERVATION_SENT_TO_AGENCY = "OBSERVATION_SENT_TO_AGENCY"
    OBSERVATION_RESPONDED = "OBSERVATION_RESPONDED"
    OBSERVATION_COMMENTED = "OBSERVATION_COMMENTED"
    OBSERVATION_AUTO_ACCEPTED = "OBSERVATION_AUTO_ACCEPTED"
    SHOW_CAUSE_ISSUED = "SHOW_CAUSE_ISSUED"
    SHOW_CAUSE_RESPONDED = "SHOW_CAUSE_RESPONDED"
    SHOW_CAUSE_CLOSED = "SHOW_CAUSE_CLOSED"
    PENALTY_ASSIGNED = "PENALTY_ASSIGNED"
    PENALTY_ACKNOWLEDGED = "PENALTY_ACKNOWLEDGED"
    PENALTY_PAID = "PENALTY_PAID"


# =============================================================================
# IDENTITY
# =============================================================================

class UserDB(Base):
    """Any actor in the system: agency, admin, auditor or collection manager."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AuditingFirmDB(Base):
    """External auditing firm that audits agencies assigned to it."""
    __tablename__ = "auditing_firms"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    auditors = relationship("AuditorDB", back_populates="firm")
    assignments = relationship("AgencyAssignmentDB", back_populates="firm")


class AuditorDB(Base):
    """Auditor profile linking an AUDITOR user to their firm."""
    __tablename__ = "auditors"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    firm_id = Column(String(36), ForeignKey("auditing_firms.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("UserDB")
    firm = relationship("AuditingFirmDB", back_populates="auditors")


class AgencyAssignmentDB(Base):
    """Which auditing firm may audit which agency."""
    __tablename__ = "agency_assignments"
    __table_args__ = (
        UniqueConstraint("agency_id", "firm_id", name="uq_agency_assignment_agency_firm"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    agency_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    firm_id = Column(String(36), ForeignKey("auditing_firms.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by = Column(String(36), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    agency = relationship("UserDB")
    firm = relationship("AuditingFirmDB", back_populates="assignments")


# =============================================================================
# FORM SUBMISSIONS / APPROVALS
# =============================================================================

class FormSubmissionDB(Base):
    """
    One submission of one form type, per agency, per period.

    The per-form field lists live in `payload`; every form type shares
    the same lifecycle columns.
    """
    __tablename__ = "form_submissions"
    __table_args__ = (
        UniqueConstraint(
            "owner_id", "form_type", "period_month", "period_year",
            name="uq_form_submission_owner_type_period",
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    form_type = Column(String(64), nullable=False, index=True)
    status = Column(SQLEnum(SubmissionStatus), nullable=False, default=SubmissionStatus.DRAFT)

    period_month = Column(Integer, nullable=True)
    period_year = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "form_type": self.form_type,
            "status": self.status.value,
            "period_month": self.period_month,
            "period_year": self.period_year,
            "payload": self.payload,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ApprovalRequestDB(Base):
    """
    Ticket an agency files to regain edit access to a SUBMITTED form.

    At most one PENDING request may exist per (user_id, form_type, form_id);
    the partial unique index is the enforcement point.
    """
    __tablename__ = "approval_requests"
    __table_args__ = (
        Index(
            "uq_approval_pending_per_form",
            "user_id", "form_type", "form_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    form_type = Column(String(64), nullable=False)
    form_id = Column(String(36), nullable=False, index=True)
    request_type = Column(SQLEnum(ApprovalType), nullable=False, default=ApprovalType.UPDATE_SUBMITTED_FORM)
    reason = Column(Text, nullable=False)
    document_path = Column(String(500), nullable=True)

    status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)
    admin_response = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String(36), nullable=True)
    consumed_at = Column(DateTime, nullable=True)  # Set when the unlocked form is resubmitted

    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "form_type": self.form_type,
            "form_id": self.form_id,
            "request_type": self.request_type.value,
            "reason": self.reason,
            "document_path": self.document_path,
            "status": self.status.value,
            "admin_response": self.admin_response,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "consumed_at": self.consumed_at.isoformat() if self.consumed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# AUDIT ESCALATION PIPELINE
# =============================================================================

class AuditDB(Base):
    """Field audit of one agency by one auditing firm."""
    __tablename__ = "audits"

    id = Column(String(36), primary_key=True)  # UUID
    agency_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    firm_id = Column(String(36), ForeignKey("auditing_firms.id"), nullable=False, index=True)
    auditor_id = Column(String(36), ForeignKey("auditors.id"), nullable=False)
    audit_date = Column(Date, nullable=False)
    status = Column(SQLEnum(AuditStatus), nullable=False, default=AuditStatus.IN_PROGRESS)

    auditor_name = Column(String(255), nullable=True)
    auditor_employee_id = Column(String(100), nullable=True)
    location = Column(String(255), nullable=True)
    remarks = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    observations = relationship("ObservationDB", back_populates="audit", cascade="all, delete-orphan")
    scorecard = relationship("ScorecardDB", back_populates="audit", uselist=False, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agency_id": self.agency_id,
            "firm_id": self.firm_id,
            "auditor_id": self.auditor_id,
            "audit_date": self.audit_date.isoformat() if self.audit_date else None,
            "status": self.status.value,
            "auditor_name": self.auditor_name,
            "location": self.location,
            "remarks": self.remarks,
        }


class ObservationDB(Base):
    """Single audit finding; the unit that escalates to a penalty."""
    __tablename__ = "observations"
    __table_args__ = (
        UniqueConstraint("audit_id", "observation_number", name="uq_observation_number_per_audit"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    audit_id = Column(String(36), ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True)
    observation_number = Column(String(50), nullable=False)
    category = Column(String(100), nullable=True)
    severity = Column(SQLEnum(ObservationSeverity), nullable=False)
    description = Column(Text, nullable=False)
    evidence_required = Column(Boolean, default=False, nullable=False)

    # State Machine
    status = Column(SQLEnum(ObservationStatus), nullable=False, default=ObservationStatus.PENDING_ADMIN_REVIEW, index=True)
    visible_to_agency = Column(Boolean, default=False)
    show_cause_notice_id = Column(String(36), ForeignKey("show_cause_notices.id"), nullable=True, index=True)
    sent_to_agency_at = Column(DateTime, nullable=True)
    sent_by = Column(String(36), nullable=True)
    response_deadline = Column(DateTime, nullable=True, index=True)

    # Agency response
    agency_accepted = Column(Boolean, nullable=True)
    agency_response = Column(Text, nullable=True)
    agency_response_date = Column(DateTime, nullable=True)
    evidence_path = Column(String(500), nullable=True)
    auto_accepted_at = Column(DateTime, nullable=True)

    penalty_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    audit = relationship("AuditDB", back_populates="observations")
    notice = relationship("ShowCauseNoticeDB", back_populates="observations")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "observation_number": self.observation_number,
            "category": self.category,
            "severity": self.severity.value,
            "description": self.description,
            "evidence_required": self.evidence_required,
            "status": self.status.value,
            "show_cause_notice_id": self.show_cause_notice_id,
            "response_deadline": self.response_deadline.isoformat() if self.response_deadline else None,
            "agency_accepted": self.agency_accepted,
            "agency_response": self.agency_response,
            "evidence_path": self.evidence_path,
            "penalty_id": self.penalty_id,
        }


class ShowCauseNoticeDB(Base):
    """Formal notice bundling one or more observations for one agency."""
    __tablename__ = "show_cause_notices"

    id = Column(String(36), primary_key=True)  # UUID
    subject = Column(String(500), nullable=False)
    details = Column(Text, nullable=False)
    response_due_date = Column(DateTime, nullable=False)
    status = Column(SQLEnum(ShowCauseStatus), nullable=False, default=ShowCauseStatus.ISSUED)
    issued_by_admin_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    received_by_agency_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    admin_remarks = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    observations = relationship("ObservationDB", back_populates="notice")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject": self.subject,
            "details": self.details,
            "response_due_date": self.response_due_date.isoformat() if self.response_due_date else None,
            "status": self.status.value,
            "issued_by_admin_id": self.issued_by_admin_id,
            "received_by_agency_id": self.received_by_agency_id,
            "admin_remarks": self.admin_remarks,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ObservationCommentDB(Base):
    """Message between the admin and the owning agency on one observation."""
    __tablename__ = "observation_comments"

    id = Column(String(36), primary_key=True)  # UUID
    observation_id = Column(String(36), ForeignKey("observations.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    author_role = Column(SQLEnum(UserRole), nullable=False)
    message = Column(Text, nullable=False, default="")
    attachment_path = Column(String(500), nullable=True)
    attachment_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "observation_id": self.observation_id,
            "author_id": self.author_id,
            "author_role": self.author_role.value,
            "message": self.message,
            "attachment_path": self.attachment_path,
            "attachment_name": self.attachment_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PenaltyDB(Base):
    """Monetary deduction tied 1:1 to a closed observation."""
    __tablename__ = "penalties"

    id = Column(String(36), primary_key=True)  # UUID
    observation_id = Column(String(36), ForeignKey("observations.id"), nullable=False, unique=True)
    agency_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    penalty_amount = Column(Float, nullable=False)
    penalty_reason = Column(Text, nullable=False)
    deduction_month = Column(String(7), nullable=False)  # YYYY-MM
    corrective_action = Column(Text, nullable=True)
    status = Column(SQLEnum(PenaltyStatus), nullable=False, default=PenaltyStatus.SUBMITTED)
    notice_ref_no = Column(String(36), nullable=True)  # Show cause notice the observation was issued under
    assigned_by = Column(String(36), nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "observation_id": self.observation_id,
            "agency_id": self.agency_id,
            "penalty_amount": self.penalty_amount,
            "penalty_reason": self.penalty_reason,
            "deduction_month": self.deduction_month,
            "corrective_action": self.corrective_action,
            "status": self.status.value,
            "notice_ref_no": self.notice_ref_no,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }


class ScorecardDB(Base):
    """Admin's published scoring of a completed audit (at most one per audit)."""
    __tablename__ = "audit_scorecards"

    id = Column(String(36), primary_key=True)  # UUID
    audit_id = Column(String(36), ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, unique=True)
    auditor_id = Column(String(36), nullable=True)
    audit_period = Column(String(50), nullable=False)
    audit_score = Column(Float, nullable=False)
    audit_grade = Column(String(10), nullable=False)
    audit_category = Column(String(100), nullable=True)
    final_observation = Column(Text, nullable=True)
    justification = Column(Text, nullable=True)
    signed_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    audit = relationship("AuditDB", back_populates="scorecard")


# =============================================================================
# ACTIVITY LOG / NOTIFICATIONS
# =============================================================================

class ActivityLogDB(Base):
    """
    Append-only business audit trail.
    Written in the same transaction as the change it describes.
    """
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True)  # UUID
    actor_id = Column(String(36), nullable=True, index=True)  # NULL for system actions
    action = Column(SQLEnum(ActivityAction), nullable=False)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(36), nullable=True, index=True)
    description = Column(Text, nullable=False)
    # 'metadata' is reserved on declarative classes
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "metadata": self.event_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class NotificationDB(Base):
    """Queued in-app notification; delivery is handled downstream."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(500), nullable=True)
    related_id = Column(String(36), nullable=True)
    related_type = Column(String(64), nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "related_id": self.related_id,
            "related_type": self.related_type,
            "read": self.read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
