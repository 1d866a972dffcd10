"""Service-layer exceptions.

Services raise these with human-readable messages; the API maps each class to
an HTTP status code.
"""

from __future__ import annotations


class ServiceError(ValueError):
    code = "SERVICE_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    status_code = 404


class PermissionDeniedError(ServiceError):
    code = "FORBIDDEN"
    status_code = 403


class ConflictError(ServiceError):
    code = "CONFLICT"
    status_code = 409
