"""Rating API Routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from geodir.api.deps import get_services, split_ids
from geodir.container import Services
from geodir.ratings.models import NewRating

router = APIRouter(prefix="/ratings", tags=["Ratings"])


class RatingCreatedResponse(BaseModel):
    id: str
    average_rating: float


class EntryRatingsResponse(BaseModel):
    entry_id: str
    average_rating: float | None
    rating_count: int
    context_averages: dict[str, float]
    ratings: list[dict[str, Any]]


class ArchiveRatingsRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1, max_length=200)


class ArchiveRatingsResponse(BaseModel):
    averages: dict[str, float | None]


@router.post("", response_model=RatingCreatedResponse)
async def create_rating(
    body: NewRating,
    services: Services = Depends(get_services),
) -> RatingCreatedResponse:
    rating_id, average = await services.ratings.add_rating(
        body.entry_id,
        body.value,
        context=body.context,
        title=body.title,
        comment=body.comment,
        source=body.source,
    )
    return RatingCreatedResponse(id=rating_id, average_rating=average)


@router.get("", response_model=EntryRatingsResponse)
async def list_entry_ratings(
    entry_id: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
) -> EntryRatingsResponse:
    entry = await services.entries.get(entry_id)
    ratings = await services.ratings.list_ratings(entry_id)
    return EntryRatingsResponse(
        entry_id=entry_id,
        average_rating=entry.average_rating,
        rating_count=entry.rating_count,
        context_averages=await services.ratings.context_averages(entry_id),
        ratings=[rating.to_dict() for rating in ratings],
    )


@router.get("/{ids}")
async def get_ratings(
    ids: str,
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    ratings = await services.ratings.get_ratings(split_ids(ids))
    return [rating.to_dict() for rating in ratings]


@router.post("/archive", response_model=ArchiveRatingsResponse)
async def archive_ratings(
    body: ArchiveRatingsRequest,
    services: Services = Depends(get_services),
) -> ArchiveRatingsResponse:
    averages = await services.ratings.archive_ratings(body.ids)
    return ArchiveRatingsResponse(averages=averages)
