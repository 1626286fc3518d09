"""
GPS Point Validation Module.

Sanitizes raw fixes from the device feed into :class:`GpsPoint` values.
Malformed fixes are dropped and counted; they never abort processing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from config import (
    SERVICE_BOUNDS_EAST,
    SERVICE_BOUNDS_NORTH,
    SERVICE_BOUNDS_SOUTH,
    SERVICE_BOUNDS_WEST,
)
from core.exceptions import PointValidationError
from date_utils import parse_timestamp
from db.models import GpsPoint

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("lat", "lng", "dt_tracker")


@dataclass
class ValidationResult:
    """Valid points in timestamp order plus the number of rejected fixes."""

    points: list[GpsPoint] = field(default_factory=list)
    invalid_count: int = 0

    @property
    def total(self) -> int:
        return len(self.points) + self.invalid_count


def _to_float(value: Any, default: float | None = None) -> float | None:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def coerce_point(raw: dict[str, Any]) -> GpsPoint:
    """
    Build a GpsPoint from a raw fix.

    Raises:
        PointValidationError: The fix is missing fields, has unusable
            coordinates or timestamp, or lies outside the service region.
    """
    if not isinstance(raw, dict):
        msg = "Point is not a mapping"
        raise PointValidationError(msg)

    missing = [name for name in REQUIRED_FIELDS if raw.get(name) in (None, "")]
    if missing:
        msg = "Point is missing required fields"
        raise PointValidationError(msg, {"missing": missing})

    lat = _to_float(raw["lat"])
    lng = _to_float(raw["lng"])
    if lat is None or lng is None:
        msg = "Coordinates are not numeric"
        raise PointValidationError(msg, {"lat": raw["lat"], "lng": raw["lng"]})
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        msg = "Coordinates out of range"
        raise PointValidationError(msg, {"lat": lat, "lng": lng})
    if lat == 0 and lng == 0:
        msg = "Null island coordinates"
        raise PointValidationError(msg)
    if not (
        SERVICE_BOUNDS_SOUTH <= lat <= SERVICE_BOUNDS_NORTH
        and SERVICE_BOUNDS_WEST <= lng <= SERVICE_BOUNDS_EAST
    ):
        msg = "Coordinates outside service region"
        raise PointValidationError(msg, {"lat": lat, "lng": lng})

    dt_tracker = parse_timestamp(raw["dt_tracker"])
    if dt_tracker is None:
        msg = "Unparseable timestamp"
        raise PointValidationError(msg, {"dt_tracker": raw["dt_tracker"]})

    return GpsPoint(
        coordinates=[lng, lat],
        dt_tracker=dt_tracker,
        speed=_to_float(raw.get("speed"), 0.0),
        heading=_to_float(raw.get("heading"), 0.0),
        acc=_to_int(raw.get("acc")),
        fuelLevel=_to_float(raw.get("fuelLevel")),
    )


def validate_point(raw: dict[str, Any]) -> GpsPoint | None:
    """Return a sanitized point, or None when the fix is unusable."""
    try:
        return coerce_point(raw)
    except PointValidationError as e:
        logger.debug("Dropping GPS fix: %s %s", e.message, e.details)
        return None


def validate_points(raws: list[dict[str, Any]]) -> ValidationResult:
    """Validate a batch of raw fixes and return them sorted by ``dt_tracker``."""
    result = ValidationResult()
    for raw in raws:
        point = validate_point(raw)
        if point is None:
            result.invalid_count += 1
        else:
            result.points.append(point)

    result.points.sort(key=lambda p: p.dt_tracker)
    if result.invalid_count:
        logger.info(
            "Skipped %d invalid GPS points out of %d",
            result.invalid_count,
            result.total,
        )
    return result
