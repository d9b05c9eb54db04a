"""
Notification Services

- Notifier: best-effort enqueue, never blocks a transition
- NotificationBatch: notifications collected during one operation
- ActivityLogger: transactional business audit trail
- ActivityLogQueries: read side of the audit trail
- NotificationInbox: read side for the signed-in user
"""

from .activity_log import ActivityLogger
from .activity_queries import ActivityLogQueries
from .notifier import Notifier, NotificationBatch
from .inbox import NotificationInbox

__all__ = [
    'ActivityLogger',
    'ActivityLogQueries',
    'Notifier',
    'NotificationBatch',
    'NotificationInbox',
]
