"""
Notification Dispatch Admin API Routes

Operational view of the durable dispatch queue:
- list items by status
- requeue a failed item

Restricted to the user ids listed in `admin_user_ids`.
"""

from __future__ import annotations

from typing import Any, Literal

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from geodir.api.deps import get_services, require_admin
from geodir.container import Services
from geodir.kernel.errors import ConflictError

logger = structlog.get_logger()

router = APIRouter(prefix="/admin/dispatches", tags=["Admin"])


class ListDispatchesResponse(BaseModel):
    items: list[dict[str, Any]]


class RetryDispatchResponse(BaseModel):
    id: str
    status: str


@router.get("", response_model=ListDispatchesResponse)
async def list_dispatches(
    status: Literal["queued", "sending", "sent", "failed"] | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    _admin: str = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ListDispatchesResponse:
    items = await services.repositories.dispatch_queue.list_items(status=status, limit=limit)
    return ListDispatchesResponse(items=[item.to_dict() for item in items])


@router.post("/{item_id}/retry", response_model=RetryDispatchResponse)
async def retry_dispatch(
    item_id: str,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
) -> RetryDispatchResponse:
    requeued = await services.repositories.dispatch_queue.retry_failed(
        item_id,
        max_attempts=services.settings.dispatch_max_attempts,
        now=services.clock(),
    )
    if not requeued:
        raise ConflictError(
            code="dispatch.not_failed",
            message="Only failed dispatch items can be retried",
            meta={"id": item_id},
        )
    logger.info("Dispatch item requeued by admin", dispatch_id=item_id, admin_id=admin_id)
    return RetryDispatchResponse(id=item_id, status="queued")
