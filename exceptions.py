"""
Error taxonomy for the road defect service.
Each error carries the HTTP status the API layer answers with.
"""

from typing import Optional


class RoadDefectError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, detail: Optional[str] = None, message: Optional[str] = None):
        self.detail = detail or self.message
        if message:
            self.message = message
        super().__init__(self.detail)


class ValidationError(RoadDefectError):
    """Missing or malformed input. Raised before any write begins."""

    status_code = 400
    message = "Invalid request"


class NotFoundError(RoadDefectError):
    """A referenced location, contractor, assignment or report does not exist."""

    status_code = 404
    message = "Not found"


class ConflictError(RoadDefectError):
    """The external report identifier was already submitted."""

    status_code = 409
    message = "Report already submitted"


class InvalidTransitionError(RoadDefectError):
    """A status change the lifecycle state machine does not allow."""

    status_code = 409
    message = "Invalid status transition"

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from '{current}' to '{target}'")


class StorageError(RoadDefectError):
    """Underlying persistence failure. The original exception is kept as `cause`."""

    status_code = 500

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(str(cause), message=f"Failed to {operation.replace('_', ' ')}")
