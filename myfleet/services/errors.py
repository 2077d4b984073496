"""
Domain errors raised by the service layer.
Routes never translate these by hand; main.create_app installs one handler
that maps each class to its HTTP status.
"""


class DomainError(Exception):
    status_code = 400
    code = "domain_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.code


class ValidationError(DomainError):
    status_code = 400
    code = "validation_error"


class InvalidMileage(DomainError):
    status_code = 400
    code = "invalid_mileage"


class PermissionDenied(DomainError):
    status_code = 403
    code = "permission_denied"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class InvalidTransition(DomainError):
    status_code = 409
    code = "invalid_transition"
