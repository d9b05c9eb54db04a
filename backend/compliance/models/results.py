"""
Operation Results

Every core operation returns an OperationResult instead of raising:
either {"success": True, "data": {...}} or {"error": KIND, "message": "..."}.
Callers branch on `result.success` explicitly.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Error taxonomy shared by every core operation and the HTTP layer."""
    UNAUTHORIZED = "Unauthorized"  # No session
    FORBIDDEN = "Forbidden"        # Wrong role or ownership
    NOT_FOUND = "NotFound"         # Missing, or not owned by the caller
    CONFLICT = "Conflict"          # State guard violated
    VALIDATION = "Validation"      # Missing/empty required fields
    DEPENDENCY = "Dependency"      # Store failure


@dataclass
class OperationResult:
    """Discriminated result of a core operation."""
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, message: str = "") -> "OperationResult":
        return cls(success=True, data=data or {}, message=message)

    @classmethod
    def fail(cls, error: ErrorKind, message: str) -> "OperationResult":
        return cls(success=False, error=error, message=message)

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data, "message": self.message}
        return {"error": self.error.value, "message": self.message}


def store_operation(conflict_message: str = "Operation conflicts with existing data."):
    """
    Wrap a service method so Store failures become results.

    The wrapped method's instance must expose the session as `self.db`.
    Unique-constraint violations become CONFLICT with `conflict_message`;
    any other SQLAlchemy failure rolls back and becomes DEPENDENCY.
    """
    def decorator(operation):
        @wraps(operation)
        def wrapper(self, *args, **kwargs):
            try:
                return operation(self, *args, **kwargs)
            except IntegrityError as e:
                self.db.rollback()
                logger.warning(f"{operation.__qualname__}: constraint violation: {e.orig}")
                return OperationResult.fail(ErrorKind.CONFLICT, conflict_message)
            except SQLAlchemyError:
                self.db.rollback()
                logger.exception(f"{operation.__qualname__}: store failure")
                return OperationResult.fail(ErrorKind.DEPENDENCY, "The data store is unavailable. Please retry.")
        return wrapper
    return decorator
