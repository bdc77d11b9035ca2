"""Bounding-box subscription API Routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from geodir.api.deps import get_current_user_id, get_services
from geodir.container import Services
from geodir.geo.types import MapBbox, MapPoint
from geodir.kernel.errors import ValidationError

router = APIRouter(tags=["Subscriptions"])


class Coordinate(BaseModel):
    lat: float
    lng: float


class SubscriptionCreatedResponse(BaseModel):
    id: str


class UnsubscribeResponse(BaseModel):
    revoked: int


@router.get("/bbox-subscriptions")
async def list_bbox_subscriptions(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    subscriptions = await services.registry.list_for_user(user_id)
    return [subscription.to_dict() for subscription in subscriptions]


@router.post("/subscribe-to-bbox", response_model=SubscriptionCreatedResponse)
async def subscribe_to_bbox(
    coordinates: list[Coordinate] = Body(..., description="[south_west, north_east]"),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> SubscriptionCreatedResponse:
    if len(coordinates) != 2:
        raise ValidationError(
            code="geo.invalid_bbox",
            message="Expected exactly two coordinates: south-west and north-east",
            meta={"count": len(coordinates)},
        )
    south_west, north_east = coordinates
    bbox = MapBbox.from_corners(
        MapPoint.from_lat_lng(south_west.lat, south_west.lng),
        MapPoint.from_lat_lng(north_east.lat, north_east.lng),
    )
    subscription_id = await services.registry.subscribe(user_id, bbox)
    return SubscriptionCreatedResponse(id=subscription_id)


@router.post("/unsubscribe-all-bboxes", response_model=UnsubscribeResponse)
async def unsubscribe_all_bboxes(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> UnsubscribeResponse:
    revoked = await services.registry.unsubscribe_all(user_id)
    return UnsubscribeResponse(revoked=revoked)
