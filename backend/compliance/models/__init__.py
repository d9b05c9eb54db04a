"""Agency Compliance - Data Models"""
from .db_models import (
    # Enums
    UserRole, SubmissionStatus, ApprovalStatus, ApprovalType, AuditStatus,
    ObservationSeverity, ObservationStatus, ShowCauseStatus, PenaltyStatus,
    NotificationType, ActivityAction,
)
from .results import ErrorKind, OperationResult
from .actor import ActorContext, ADMIN_ROLES, check_actor

__all__ = [
    "UserRole", "SubmissionStatus", "ApprovalStatus", "ApprovalType", "AuditStatus",
    "ObservationSeverity", "ObservationStatus", "ShowCauseStatus", "PenaltyStatus",
    "NotificationType", "ActivityAction",
    "ErrorKind", "OperationResult",
    "ActorContext", "ADMIN_ROLES", "check_actor",
]
