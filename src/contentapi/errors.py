from __future__ import annotations

from typing import Any


class ContentApiError(Exception):
    """Base error carrying a taxonomy kind, a stable code and a user-facing message."""

    kind = "Internal"
    default_status_code = 500

    def __init__(
        self,
        *,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code if status_code is not None else self.default_status_code
        self.code = code
        self.message = message
        self.details = details

    def to_body(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(ContentApiError):
    kind = "InvalidInput"
    default_status_code = 400


class UnauthorizedError(ContentApiError):
    kind = "Unauthorized"
    default_status_code = 401


class ForbiddenError(ContentApiError):
    kind = "Forbidden"
    default_status_code = 403


class NotFoundError(ContentApiError):
    kind = "NotFound"
    default_status_code = 404


class ConflictError(ContentApiError):
    kind = "Conflict"
    default_status_code = 409


class InternalError(ContentApiError):
    kind = "Internal"
    default_status_code = 500
