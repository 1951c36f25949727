"""
Secure Data API — error taxonomy.

Every failure the gateway can report maps to one of these classes.  The
gateway's request handler is the only place they are turned into HTTP
responses; lower layers just raise.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors that carry their own HTTP status and category."""

    status_code: int = 500
    category: str = "Server Error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict[str, str]:
        return {"error": self.category, "message": self.message}


class AuthenticationError(GatewayError):
    status_code = 401
    category = "Unauthorized"


class AuthorizationError(GatewayError):
    status_code = 403
    category = "Forbidden"


class ValidationError(GatewayError):
    status_code = 400
    category = "Bad Request"


class NotFoundError(GatewayError):
    status_code = 404
    category = "Not Found"


class StoreError(GatewayError):
    """Object-storage transport or backend failure.  Never retried here."""

    status_code = 500
    category = "Server Error"
