"""Error taxonomy shared by the store, the generation client and the API.

Every error carries a stable ``kind`` that is surfaced to clients verbatim and
the HTTP status the API layer maps it to.
"""

from __future__ import annotations

from typing import ClassVar


class StudioError(Exception):
    kind: ClassVar[str] = "ServerError"
    status_code: ClassVar[int] = 500
    default_message: ClassVar[str] = "An unexpected error occurred. Please try again later."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidIdError(StudioError):
    kind = "InvalidId"
    status_code = 400
    default_message = "Please provide a valid session ID"


class UnauthorizedError(StudioError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "You must be signed in to access this resource"


class NotFoundError(StudioError):
    kind = "NotFound"
    status_code = 404
    default_message = "The requested session does not exist or you do not have access"


class ValidationError(StudioError):
    kind = "ValidationError"
    status_code = 422
    default_message = "Message or image is required"


class ConflictError(StudioError):
    kind = "Conflict"
    status_code = 409
    default_message = "The session was modified concurrently; reload and try again"


class BackendError(StudioError):
    kind = "BackendError"
    status_code = 502
    default_message = "Component generation failed"


class ServerError(StudioError):
    pass
