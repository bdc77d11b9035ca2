from __future__ import annotations

import re
from typing import Any, ClassVar

_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class GeodirError(Exception):
    """Typed domain error rendered by the HTTP layer as `{detail, code, meta}`.

    `code` is a stable dotted identifier such as `entry.version_conflict`;
    clients branch on it, never on `message`. `meta` must be safe to expose.
    Subclasses only pick a default code, message and HTTP status.
    """

    default_code: ClassVar[str] = "internal.error"
    default_message: ClassVar[str] = "Internal error"
    default_status: ClassVar[int] = 500

    def __init__(
        self,
        *,
        code: str | None = None,
        message: str | None = None,
        status_code: int | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        code = code or self.default_code
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(f"Error codes are dot-separated lowercase tokens, got {code!r}")
        message = message or self.default_message
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code or self.default_status)
        self.meta = dict(meta or {})

    def to_public_dict(self, *, request_id: str | None) -> dict[str, Any]:
        # `detail` mirrors FastAPI's own error bodies.
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        if request_id:
            payload["request_id"] = request_id
        if self.meta:
            payload["meta"] = self.meta
        return payload


class ValidationError(GeodirError):
    default_code = "request.validation_error"
    default_message = "Validation error"
    default_status = 422


class NotFoundError(GeodirError):
    default_code = "resource.not_found"
    default_message = "Not found"
    default_status = 404


class ConflictError(GeodirError):
    """Stale version or duplicate identity; the caller should re-read and retry."""

    default_code = "request.conflict"
    default_message = "Conflict"
    default_status = 409


class ConfirmationError(GeodirError):
    """A token that can no longer be redeemed (unknown, used, revoked or expired)."""

    default_code = "confirmation.invalid"
    default_message = "Confirmation token is not valid"
    default_status = 400


class UnauthorizedError(GeodirError):
    default_code = "auth.unauthorized"
    default_message = "Not authenticated"
    default_status = 401


class ForbiddenError(GeodirError):
    default_code = "auth.forbidden"
    default_message = "Forbidden"
    default_status = 403
