"""
Error taxonomy shared by the booking, webhook and portal layers.

Every error carries the HTTP status it maps to; ``main.py`` installs a single
exception handler that renders ``{"error": ..., "reason": ...}`` JSON.
"""

from typing import Optional


class ValetError(Exception):
    """Base class for errors surfaced to API callers"""

    status_code = 500
    default_message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.reason = reason
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.reason:
            body["reason"] = self.reason
        return body


class Unauthenticated(ValetError):
    status_code = 401
    default_message = "Invalid or expired token"


class Forbidden(ValetError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ValetError):
    status_code = 404
    default_message = "Not found"


class InvalidInput(ValetError):
    status_code = 400
    default_message = "Invalid request"


class InvalidState(ValetError):
    status_code = 400
    default_message = "Operation not allowed in the current state"


class InvalidTransition(InvalidState):
    """Raised when a booking status change is not in the transition table"""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition: {from_status} → {to_status}")


class Conflict(ValetError):
    status_code = 409
    default_message = "Conflict"


class UpstreamFailure(ValetError):
    status_code = 500
    default_message = "Upstream dependency failed"


class Misconfiguration(ValetError):
    status_code = 500
    default_message = "Service misconfigured"
