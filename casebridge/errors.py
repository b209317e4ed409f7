"""
Domain errors raised by the service layer.

Each carries the HTTP status the API layer answers with; api.py installs a
single exception handler that renders them as {"detail": ...}.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for errors raised by casebridge services."""

    status_code = 400

    def __init__(self, detail: Any, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        detail = f"{resource} not found" if resource_id is None else f"{resource} {resource_id} not found"
        super().__init__(detail)
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(ServiceError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Raised when a state machine refuses a transition."""

    def __init__(self, current: str, target: str, what: str = "matter"):
        super().__init__(f"Cannot move {what} from {current} to {target}")
        self.current = current
        self.target = target


class ValidationFailedError(ServiceError):
    status_code = 422


class PayloadTooLargeError(ServiceError):
    status_code = 413
