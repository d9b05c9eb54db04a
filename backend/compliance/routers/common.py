"""
Shared router helpers.

Core services return OperationResult; the transport turns failures into
HTTPException with the error kind preserved verbatim in the detail.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from ..models.results import ErrorKind, OperationResult

ERROR_STATUS = {
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION: 422,
    ErrorKind.DEPENDENCY: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert any offset-aware input to match."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def unwrap(result: OperationResult) -> Dict[str, Any]:
    """Return the response body for a successful result, raise otherwise."""
    if not result.success:
        raise HTTPException(
            status_code=ERROR_STATUS[result.error],
            detail={"error": result.error.value, "message": result.message},
        )
    return result.to_dict()
