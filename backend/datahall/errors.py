"""Typed service errors.

Services raise these; only the HTTP layer maps them to status codes.
"""
from typing import Optional


class ServiceError(Exception):
    code = "SERVICE_ERROR"
    retryable = False

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None) -> None:
        if code is not None:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)


class ValidationFailed(ServiceError):
    code = "VALIDATION_FAILED"

    def __init__(self, message: str, *, field: Optional[str] = None, code: Optional[str] = None) -> None:
        super().__init__(message, code=code)
        self.field = field


class NotFound(ServiceError):
    code = "NOT_FOUND"


class PermissionDenied(ServiceError):
    code = "FORBIDDEN"

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message, code=reason.upper().replace("-", "_") if reason else None)
        self.reason = reason


class StateError(ServiceError):
    code = "INVALID_STATE"


class Conflict(StateError):
    code = "CONFLICT"


class ExpirationPast(StateError):
    code = "EXPIRATION_PAST"


class LinkAliasConflict(Conflict):
    code = "LINK_ALIAS_CONFLICT"


class LinkExpired(StateError):
    code = "LINK_EXPIRED"


class InvalidPassword(StateError):
    code = "INVALID_PASSWORD"


class RequestAlreadyProcessed(Conflict):
    code = "REQUEST_ALREADY_PROCESSED"


class InfrastructureError(ServiceError):
    code = "INFRASTRUCTURE_ERROR"
    retryable = True


class StorageUnavailable(InfrastructureError):
    code = "STORAGE_UNAVAILABLE"
