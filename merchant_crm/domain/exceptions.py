"""Domain-specific exceptions"""

from typing import Any, Iterable, List, Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    status_code = 500
    code = "DomainError"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(DomainException):
    """Merchant, pipeline or onboarding record does not exist"""

    status_code = 404
    code = "NotFound"


class UnauthenticatedError(DomainException):
    """Request carries no usable actor identity"""

    status_code = 401
    code = "Unauthenticated"


class ForbiddenError(DomainException):
    """Actor failed the access gate"""

    status_code = 403
    code = "Forbidden"


class InvalidTransitionError(DomainException):
    """Requested stage is not reachable from the current stage"""

    status_code = 400
    code = "InvalidTransition"

    def __init__(self, current_stage, requested_stage, allowed_stages: Iterable):
        allowed = [stage.value for stage in allowed_stages]
        super().__init__(
            f"Invalid stage transition from {current_stage.value} to {requested_stage.value}. "
            f"Allowed: {', '.join(allowed) or 'none'}",
            details={
                "currentStage": current_stage.value,
                "requestedStage": requested_stage.value,
                "allowedStages": allowed,
            },
        )
        self.allowed_stages = allowed


class AlreadyInStageError(DomainException):
    """Merchant is already in the requested pipeline stage"""

    status_code = 400
    code = "AlreadyInStage"


class AlreadyInStatusError(DomainException):
    """Onboarding is already in the requested status"""

    status_code = 400
    code = "AlreadyInStatus"


class InvalidStateError(DomainException):
    """Operation attempted while the merchant is in the wrong stage"""

    status_code = 400
    code = "InvalidState"


class ValidationError(DomainException):
    """Malformed input, reported per field"""

    status_code = 400
    code = "ValidationError"

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(message, details=errors or [])

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, [{"field": field, "message": message}])


class ConcurrentModificationError(DomainException):
    """Row changed underneath the current unit of work"""

    status_code = 409
    code = "ConcurrentModification"
