"""FastAPI dependencies shared by the route modules."""

from __future__ import annotations

from fastapi import Depends, Request

from geodir.config import get_settings
from geodir.container import Services
from geodir.kernel.errors import ForbiddenError, UnauthorizedError, ValidationError


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized; the application lifespan has not run")
    return services


def get_current_user_id(request: Request) -> str:
    """User id asserted by the upstream auth proxy."""
    header = get_settings().user_id_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise UnauthorizedError(meta={"header": header})
    return user_id


def require_admin(user_id: str = Depends(get_current_user_id)) -> str:
    if user_id not in set(get_settings().admin_user_ids):
        raise ForbiddenError(message="Admin access required")
    return user_id


def split_ids(raw: str, *, limit: int = 200) -> list[str]:
    """Parse the comma-separated id lists used in path parameters."""
    ids = list(dict.fromkeys(part.strip() for part in raw.split(",") if part.strip()))
    if not ids:
        raise ValidationError(code="request.invalid_ids", message="At least one id is required")
    if len(ids) > limit:
        raise ValidationError(
            code="request.invalid_ids",
            message=f"At most {limit} ids per request",
        )
    return ids
