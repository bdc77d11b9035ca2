from __future__ import annotations

import pytest

from geodir.geo.types import MapBbox, MapPoint, Rect
from geodir.kernel.errors import ValidationError

pytestmark = pytest.mark.unit


def test_point_accepts_bounds_inclusive():
    assert MapPoint.from_lat_lng(-90, 180) == MapPoint(lat=-90.0, lng=180.0)
    assert MapPoint.from_lat_lng("12.5", "-3") == MapPoint(lat=12.5, lng=-3.0)


@pytest.mark.parametrize(
    ("lat", "lng"),
    [(90.1, 0), (-91, 0), (0, 180.5), (0, -181), (float("nan"), 0), (0, float("inf")), ("north", 0), (None, 0)],
)
def test_point_rejects_out_of_range_or_malformed(lat, lng):
    with pytest.raises(ValidationError) as exc:
        MapPoint.from_lat_lng(lat, lng)
    assert exc.value.code == "geo.invalid_position"
    assert exc.value.status_code == 422


def test_bbox_rejects_south_north_of_north():
    with pytest.raises(ValidationError) as exc:
        MapBbox.from_degrees(20, 10, 10, 20)
    assert exc.value.code == "geo.invalid_bbox"


def test_bbox_edges_and_corners_are_inside():
    bbox = MapBbox.from_degrees(10, 10, 20, 20)
    for lat, lng in [(10, 10), (20, 20), (10, 20), (15, 10), (20, 15)]:
        assert bbox.contains_point(MapPoint(lat, lng))
    assert not bbox.contains_point(MapPoint(20.0001, 15))
    assert not bbox.contains_point(MapPoint(25, 25))


def test_antimeridian_box_splits_in_two():
    bbox = MapBbox.from_degrees(-10, 170, 10, -170)

    assert bbox.crosses_antimeridian
    assert bbox.parts() == (Rect(-10, 10, 170, 180), Rect(-10, 10, -180, -170))
    assert bbox.contains_point(MapPoint(0, 175))
    assert bbox.contains_point(MapPoint(0, -175))
    assert bbox.contains_point(MapPoint(0, 180))
    assert bbox.contains_point(MapPoint(0, -180))
    assert not bbox.contains_point(MapPoint(0, 0))
    assert not bbox.contains_point(MapPoint(0, 160))


def test_degenerate_point_box_contains_only_its_point():
    bbox = MapBbox.from_degrees(5, 5, 5, 5)
    assert not bbox.crosses_antimeridian
    assert bbox.contains_point(MapPoint(5, 5))
    assert not bbox.contains_point(MapPoint(5, 5.000001))


def test_bbox_to_dict_uses_corner_names():
    assert MapBbox.from_degrees(1, 2, 3, 4).to_dict() == {
        "south_west_lat": 1.0,
        "south_west_lng": 2.0,
        "north_east_lat": 3.0,
        "north_east_lng": 4.0,
    }
