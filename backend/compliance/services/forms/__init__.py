"""
Form Services

- FormLifecycleManager: draft/submit/lock rules for every form type
- ApprovalRequestBroker: edit-approval workflow for locked forms
- registry: form catalogue and the shared persistence delegate
"""

from .registry import FORM_CONFIG, FormType, FormRepository, repository_for
from .lifecycle import FormLifecycleManager, is_editable
from .approval_broker import ApprovalRequestBroker, ReviewDecision

__all__ = [
    'FORM_CONFIG',
    'FormType',
    'FormRepository',
    'repository_for',
    'FormLifecycleManager',
    'is_editable',
    'ApprovalRequestBroker',
    'ReviewDecision',
]
