"""Exceptions raised by the service layer.

Each carries the HTTP status the routers use when surfacing it. Services
raise; routers catch at the user action that triggered the failure.
"""


class PortalError(ValueError):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class AccessDenied(PortalError):
    status_code = 403


class NotFound(PortalError):
    status_code = 404


class ExamUnavailable(PortalError):
    """Exam is unpublished, or the student has no valid enrollment for it."""

    status_code = 403


class AttemptClosed(PortalError):
    """The attempt is already submitted (or its deadline has passed)."""

    status_code = 409


class ValidationFailed(PortalError):
    status_code = 400

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(errors.values()))
        self.errors = errors
