"""
Audit Escalation Pipeline

Audit -> Observation -> ShowCauseNotice -> Response -> Penalty

- AuditService: assignments, audits, observations, scorecards
- NoticeService: show cause issuance, agency responses, closure
- PenaltyService: penalty assignment and settlement
- DeadlineSweeper: SYSTEM auto-acceptance of expired observations
"""

from .state_machine import STATE_CONFIG, derive_notice_status, can_transition
from .audit_service import AuditService
from .notice_service import NoticeService, sync_notice_status
from .penalty_service import PenaltyService
from .deadline_sweeper import DeadlineSweeper

__all__ = [
    'STATE_CONFIG',
    'derive_notice_status',
    'can_transition',
    'AuditService',
    'NoticeService',
    'sync_notice_status',
    'PenaltyService',
    'DeadlineSweeper',
]
