"""
core/errors.py -- Application error taxonomy.

Stores and services raise these; api/main.py maps every AppError to the JSON
envelope {"success": false, "msg": ...} with the class's status code. Messages
are user-facing (Spanish, as shown in the admin UI).

Layer rule: core/ is the kernel. No imports from the rest of the project.
"""


class AppError(Exception):
    """Base class for errors that carry an HTTP status and a user message."""

    status_code: int = 500

    def __init__(self, msg: str) -> None:
        super().__init__(msg)
        self.msg = msg


class Unauthorized(AppError):
    """No session, or an invalid/expired one."""

    status_code = 401


class Forbidden(AppError):
    """Valid session, but the role or ownership check failed."""

    status_code = 403


class ValidationError(AppError):
    """Malformed or missing input, or a business rule on the input failed."""

    status_code = 400


class NotFound(AppError):
    status_code = 404


class Conflict(AppError):
    """Uniqueness violation or an illegal state transition."""

    status_code = 409


class InternalError(AppError):
    status_code = 500
