"""Points and bounding boxes in latitude/longitude degrees.

Containment uses closed intervals on both axes. A box whose west edge lies
east of its east edge crosses the antimeridian and is treated as the union
of `[west, 180]` and `[-180, east]`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, NamedTuple

from geodir.kernel.errors import ValidationError

LAT_MIN, LAT_MAX = -90.0, 90.0
LNG_MIN, LNG_MAX = -180.0, 180.0


def _coerce_degree(value: Any, *, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            message=f"{name} must be a number",
            code="geo.invalid_position",
            meta={name: repr(value)},
        )
    if not math.isfinite(number):
        raise ValidationError(message=f"{name} must be finite", code="geo.invalid_position")
    return number


@dataclass(frozen=True, slots=True)
class MapPoint:
    lat: float
    lng: float

    @classmethod
    def from_lat_lng(cls, lat: Any, lng: Any) -> "MapPoint":
        lat_deg = _coerce_degree(lat, name="lat")
        lng_deg = _coerce_degree(lng, name="lng")
        if not LAT_MIN <= lat_deg <= LAT_MAX:
            raise ValidationError(
                message="Latitude must be within [-90, 90]",
                code="geo.invalid_position",
                meta={"lat": lat_deg},
            )
        if not LNG_MIN <= lng_deg <= LNG_MAX:
            raise ValidationError(
                message="Longitude must be within [-180, 180]",
                code="geo.invalid_position",
                meta={"lng": lng_deg},
            )
        return cls(lat=lat_deg, lng=lng_deg)


class Rect(NamedTuple):
    """A non-wrapping rectangle; the unit stored in the spatial index."""

    south: float
    north: float
    west: float
    east: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


@dataclass(frozen=True, slots=True)
class MapBbox:
    south_west: MapPoint
    north_east: MapPoint

    @classmethod
    def from_corners(cls, south_west: MapPoint, north_east: MapPoint) -> "MapBbox":
        if south_west.lat > north_east.lat:
            raise ValidationError(
                message="Bounding box south edge must not be north of its north edge",
                code="geo.invalid_bbox",
                meta={"south": south_west.lat, "north": north_east.lat},
            )
        return cls(south_west=south_west, north_east=north_east)

    @classmethod
    def from_degrees(cls, south: Any, west: Any, north: Any, east: Any) -> "MapBbox":
        return cls.from_corners(MapPoint.from_lat_lng(south, west), MapPoint.from_lat_lng(north, east))

    @property
    def south(self) -> float:
        return self.south_west.lat

    @property
    def north(self) -> float:
        return self.north_east.lat

    @property
    def west(self) -> float:
        return self.south_west.lng

    @property
    def east(self) -> float:
        return self.north_east.lng

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    def parts(self) -> tuple[Rect, ...]:
        """Split into non-wrapping rectangles (two when crossing the antimeridian)."""
        if self.crosses_antimeridian:
            return (
                Rect(self.south, self.north, self.west, LNG_MAX),
                Rect(self.south, self.north, LNG_MIN, self.east),
            )
        return (Rect(self.south, self.north, self.west, self.east),)

    def contains_point(self, point: MapPoint) -> bool:
        return any(part.contains(point.lat, point.lng) for part in self.parts())

    def to_dict(self) -> dict[str, float]:
        return {
            "south_west_lat": self.south,
            "south_west_lng": self.west,
            "north_east_lat": self.north,
            "north_east_lng": self.east,
        }
