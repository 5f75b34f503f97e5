from __future__ import annotations

from typing import Any


class ProgressionError(Exception):
    """Base class for failures the engine reports to its caller.

    Every subclass maps to one ``error_code`` and HTTP status so the API layer
    can render it without knowing the individual types.
    """

    error_code = "progression_error"
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = {k: v for k, v in extra.items() if v is not None}

    def to_payload(self) -> dict[str, Any]:
        return {"error_code": self.error_code, "error_message": self.message, **self.extra}


class NotFound(ProgressionError):
    error_code = "not_found"
    status_code = 404


class AccessDenied(ProgressionError):
    error_code = "access_denied"
    status_code = 403

    def __init__(self, reason: str, *, next_activity_id: int | None = None):
        super().__init__(reason, next_activity_id=next_activity_id)
        self.reason = reason
        self.next_activity_id = next_activity_id


class AlreadyCompleted(ProgressionError):
    error_code = "already_completed"
    status_code = 409


class NotStarted(ProgressionError):
    error_code = "not_started"
    status_code = 409


class IncompletePrerequisites(ProgressionError):
    error_code = "incomplete_prerequisites"
    status_code = 409


class RuleValidationError(ProgressionError):
    # Raised on rule writes only; evaluation degrades to False instead.
    error_code = "invalid_rule"
    status_code = 422
