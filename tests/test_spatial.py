from __future__ import annotations

import pytest

from core.spatial import GeometryService


def test_haversine_distance_one_hundredth_degree_latitude() -> None:
    meters = GeometryService.haversine_distance(77.0, 28.0, 77.0, 28.01)

    assert meters == pytest.approx(1111.95, abs=0.5)
    assert GeometryService.haversine_distance(
        77.0,
        28.0,
        77.0,
        28.01,
        unit="km",
    ) == pytest.approx(1.11195, abs=1e-3)


def test_haversine_distance_rejects_unknown_unit() -> None:
    with pytest.raises(ValueError, match="Invalid unit"):
        GeometryService.haversine_distance(0, 0, 1, 1, unit="miles")


def test_path_length_sums_segments() -> None:
    path = [[77.0, 28.0], [77.0, 28.01], [77.0, 28.02]]

    assert GeometryService.path_length(path, unit="km") == pytest.approx(2.2239, abs=1e-3)
    assert GeometryService.path_length(path[:1]) == 0.0


def test_nearest_point_index_prefers_lowest_index_on_tie() -> None:
    polyline = [[77.0, 28.0], [77.0, 28.01], [77.0, 28.0]]

    assert GeometryService.nearest_point_index([77.0, 28.0], polyline) == 0
    assert GeometryService.nearest_point_index([77.0, 28.009], polyline) == 1
    assert GeometryService.nearest_point_index([77.0, 28.0], []) == 0


def test_point_in_polygon() -> None:
    ring = [[77.0, 28.0], [77.01, 28.0], [77.01, 28.01], [77.0, 28.01]]

    assert GeometryService.point_in_polygon([77.005, 28.005], ring)
    assert not GeometryService.point_in_polygon([77.02, 28.005], ring)
    assert not GeometryService.point_in_polygon([77.005, 28.005], ring[:2])


def test_within_radius_of_any() -> None:
    vertices = [[77.0, 28.0], [77.01, 28.0]]

    assert GeometryService.within_radius_of_any([77.0, 28.0005], vertices, 100)
    assert not GeometryService.within_radius_of_any([77.0, 28.005], vertices, 100)


@pytest.mark.parametrize(
    ("coord", "expected"),
    [
        ([77.0, 28.0], (True, [77.0, 28.0])),
        (("77.5", "28.5"), (True, [77.5, 28.5])),
        ([181.0, 28.0], (False, None)),
        ([77.0], (False, None)),
        (["x", 28.0], (False, None)),
    ],
)
def test_validate_coordinate_pair(coord, expected) -> None:
    assert GeometryService.validate_coordinate_pair(coord) == expected
