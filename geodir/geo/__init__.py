"""Geographic primitives and the subscription spatial index."""

from geodir.geo.index import IndexedBox, IndexSnapshot, SpatialIndex
from geodir.geo.types import MapBbox, MapPoint, Rect

__all__ = [
    "IndexedBox",
    "IndexSnapshot",
    "MapBbox",
    "MapPoint",
    "Rect",
    "SpatialIndex",
]
