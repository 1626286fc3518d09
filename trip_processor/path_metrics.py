"""
Path Metrics Module.

Incremental distance, run duration and speed statistics over the chunk's
valid-movement point pairs.
"""

from __future__ import annotations

import logging

from config import MOVEMENT_NOISE_SPEED
from core.spatial import GeometryService
from db.models import GpsPoint
from trip_log_handler import trip_logger
from trip_processor.context import TripContext

logger = logging.getLogger(__name__)


def is_valid_movement(point: GpsPoint) -> bool:
    return point.acc == 1 and point.speed > MOVEMENT_NOISE_SPEED


def weighted_average_speed(
    previous_avg: float,
    previous_duration: float,
    batch_avg: float,
    batch_duration: float,
) -> float:
    """Time-weighted mean of the running average and a new batch."""
    total = previous_duration + batch_duration
    if total <= 0:
        return batch_avg
    return (previous_duration * previous_avg + batch_duration * batch_avg) / total


def process_path_metrics(ctx: TripContext) -> bool:
    """Accumulate truckRunDistance, runDuration, topSpeed and averageSpeed."""
    trip = ctx.trip
    points = trip.window_points
    if not points:
        trip_logger(logger, trip).error("Path metrics failed: empty path window")
        return False

    batch_distance_km = 0.0
    batch_minutes = 0.0
    top_speed = 0.0
    speed_sum = 0.0
    moving_points = 0

    for prev, curr in zip(points, points[1:]):
        if not (is_valid_movement(prev) and is_valid_movement(curr)):
            continue
        batch_distance_km += GeometryService.coord_distance(
            prev.coordinates,
            curr.coordinates,
            unit="km",
        )
        batch_minutes += max(
            0.0,
            (curr.dt_tracker - prev.dt_tracker).total_seconds() / 60,
        )
        top_speed = max(top_speed, curr.speed)
        speed_sum += curr.speed
        moving_points += 1

    ctx.batch_average_speed = speed_sum / moving_points if moving_points else 0.0
    if not moving_points:
        return True

    previous_duration = trip.runDuration
    trip.averageSpeed = weighted_average_speed(
        trip.averageSpeed,
        previous_duration,
        ctx.batch_average_speed,
        batch_minutes,
    )
    trip.truckRunDistance += batch_distance_km
    trip.runDuration = previous_duration + batch_minutes
    trip.topSpeed = max(trip.topSpeed, top_speed)
    ctx.changes.touch("truckRunDistance", "runDuration", "averageSpeed", "topSpeed")

    trip_logger(logger, trip).debug(
        "Path metrics: +%.2f km, +%.1f min, avg %.1f km/h, top %.1f km/h",
        batch_distance_km,
        batch_minutes,
        trip.averageSpeed,
        trip.topSpeed,
    )
    return True
