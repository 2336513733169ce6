"""
Error kinds surfaced to API callers.

Each subclass carries a stable machine-readable ``kind`` that the client
switches on, plus the HTTP status it is rendered with by the handler
registered in main.py.
"""


class ServiceError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "An error occurred"):
        super().__init__(message)
        self.message = message


class UnauthenticatedError(ServiceError):
    kind = "unauthenticated"
    status_code = 401


class PermissionDeniedError(ServiceError):
    kind = "permission-denied"
    status_code = 403


class InvalidArgumentError(ServiceError):
    kind = "invalid-argument"
    status_code = 400


class NotFoundError(ServiceError):
    kind = "not-found"
    status_code = 404


class FailedPreconditionError(ServiceError):
    kind = "failed-precondition"
    status_code = 400


class ExternalServiceError(ServiceError):
    """A billing, storage or identity call failed."""
    kind = "internal"
    status_code = 500
