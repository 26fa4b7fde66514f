# errors.py
# Role: Domain exceptions raised by the services and their HTTP mapping.

"""
Domain errors.

Services raise these; main.py registers handlers that turn them into
JSON responses. Client-facing errors carry a precise message, while
LedgerIntegrityError is reported to the client as an opaque 500.
"""


class DomainError(Exception):
    """Base class for errors the API reports to clients."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Malformed or missing input, rejected before any write."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class PermissionDenied(DomainError):
    """The referenced entity is missing or belongs to another user."""

    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """Uniqueness violation or a delete blocked by references."""

    status_code = 409


class LedgerIntegrityError(DomainError):
    """
    A unit of work could not be applied in full.

    The session is rolled back; the client only sees a generic failure.
    """

    status_code = 500
