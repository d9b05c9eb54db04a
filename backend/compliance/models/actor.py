"""
Actor Context

The identity and role of whoever invokes a core operation. Built by the
transport layer from the session and passed explicitly into every call.
"""
from dataclasses import dataclass
from typing import Optional

from .db_models import UserRole
from .results import ErrorKind, OperationResult

ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


@dataclass(frozen=True)
class ActorContext:
    user_id: str
    role: UserRole
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_agency(self) -> bool:
        return self.role == UserRole.USER


def check_actor(actor: Optional[ActorContext], *roles: UserRole) -> Optional[OperationResult]:
    """
    Return a failure result if the actor may not run the operation, else None.

    No actor -> UNAUTHORIZED. Role outside `roles` -> FORBIDDEN.
    An empty `roles` accepts any authenticated actor.
    """
    if actor is None:
        return OperationResult.fail(ErrorKind.UNAUTHORIZED, "You must be logged in.")
    if roles and actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        return OperationResult.fail(ErrorKind.FORBIDDEN, f"This action requires one of: {allowed}.")
    return None
