"""
Engine error taxonomy.

Every caller-visible failure is one of these. The HTTP layer renders them as
{"success": false, "error": message} with the class's status code.
Per-recipient delivery failures are NOT errors; they end up in the
campaign's `failed` counter.
"""


class EngineError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Missing or malformed input. Caller must correct and retry."""
    status_code = 400


class Unauthorized(EngineError):
    """Missing or unresolvable credential."""
    status_code = 401


class Forbidden(EngineError):
    """Valid credential, but it does not own the target."""
    status_code = 403


class NotFound(EngineError):
    status_code = 404


class Conflict(EngineError):
    """Duplicate email or domain."""
    status_code = 409
