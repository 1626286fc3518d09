"""
Spatial and geometry utilities.

Great-circle distances, geofence containment and nearest-point matching
against route polylines. Coordinates are always ``[lng, lat]`` pairs in
GeoJSON order unless a function says otherwise.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from shapely.geometry import Point, Polygon

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


class GeometryService:
    """Authoritative geometry operations for the tracker."""

    EARTH_RADIUS_M = 6371000.0

    @staticmethod
    def validate_coordinate_pair(
        coord: Sequence[Any],
    ) -> tuple[bool, list[float] | None]:
        """Validate a [lon, lat] coordinate pair."""
        if not isinstance(coord, (list, tuple)) or len(coord) < 2:
            return False, None
        try:
            lon = float(coord[0])
            lat = float(coord[1])
        except (TypeError, ValueError, IndexError):
            return False, None
        if math.isnan(lon) or math.isnan(lat):
            return False, None
        if not (-180 <= lon <= 180 and -90 <= lat <= 90):
            return False, None
        return True, [lon, lat]

    @staticmethod
    def haversine_distance(
        lon1: float,
        lat1: float,
        lon2: float,
        lat2: float,
        unit: str = "meters",
    ) -> float:
        """Calculate the great-circle distance using the Haversine formula."""
        phi1 = math.radians(lat1)
        phi2 = math.radians(lat2)
        dphi = math.radians(lat2 - lat1)
        dlmb = math.radians(lon2 - lon1)
        a = (
            math.sin(dphi / 2) ** 2
            + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
        )
        distance_m = (
            2 * GeometryService.EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))
        )
        if unit == "meters":
            return distance_m
        if unit == "km":
            return distance_m / 1000.0
        msg = "Invalid unit. Use 'meters' or 'km'."
        raise ValueError(msg)

    @staticmethod
    def coord_distance(
        a: Sequence[float],
        b: Sequence[float],
        unit: str = "meters",
    ) -> float:
        """Distance between two ``[lng, lat]`` pairs."""
        return GeometryService.haversine_distance(a[0], a[1], b[0], b[1], unit)

    @staticmethod
    def path_length(coords: Sequence[Sequence[float]], unit: str = "meters") -> float:
        """Sum of great-circle lengths along a polyline."""
        total = 0.0
        for prev, curr in zip(coords, coords[1:]):
            total += GeometryService.coord_distance(prev, curr, unit)
        return total

    @staticmethod
    def nearest_point_index(
        coord: Sequence[float],
        polyline: Sequence[Sequence[float]],
    ) -> int:
        """
        Index of the polyline vertex closest to ``coord``.

        Linear scan; ties resolve to the lowest index. An empty polyline
        yields 0.
        """
        nearest_index = 0
        min_distance = math.inf
        for index, vertex in enumerate(polyline):
            distance = GeometryService.coord_distance(coord, vertex)
            if distance < min_distance:
                min_distance = distance
                nearest_index = index
        return nearest_index

    @staticmethod
    def point_in_polygon(
        coord: Sequence[float],
        ring: Sequence[Sequence[float]],
    ) -> bool:
        """Whether ``coord`` lies strictly inside the polygon ``ring``."""
        if len(ring) < 3:
            return False
        try:
            polygon = Polygon([(float(x), float(y)) for x, y, *_ in ring])
        except (TypeError, ValueError) as e:
            logger.warning("Invalid zone polygon: %s", e)
            return False
        if not polygon.is_valid:
            polygon = polygon.buffer(0)
        return polygon.contains(Point(float(coord[0]), float(coord[1])))

    @staticmethod
    def within_radius_of_any(
        coord: Sequence[float],
        vertices: Sequence[Sequence[float]],
        radius_m: float,
    ) -> bool:
        """Whether ``coord`` is within ``radius_m`` of any listed vertex."""
        return any(
            GeometryService.coord_distance(coord, vertex) <= radius_m
            for vertex in vertices
        )
