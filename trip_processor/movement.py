"""
Movement Tracking Module.

Classifies each chunk as Driving or Halted and accounts halt durations.
"""

from __future__ import annotations

import logging

from config import MIN_HALT_DURATION_MINUTES, SPEED_THRESHOLD
from date_utils import minutes_between
from db.models import GpsPoint, MovementStatus
from trip_log_handler import trip_logger
from trip_processor.context import TripContext

logger = logging.getLogger(__name__)


def classify_point(point: GpsPoint) -> MovementStatus:
    """Classify a single fix from its ignition flag and speed."""
    if point.acc == 1 and point.speed > SPEED_THRESHOLD:
        return MovementStatus.DRIVING
    if point.acc == 0 and point.speed <= SPEED_THRESHOLD:
        return MovementStatus.HALTED
    return MovementStatus.UNKNOWN


def classify_batch(points: list[GpsPoint]) -> MovementStatus:
    """
    Status of a batch: the shared status when every point agrees,
    otherwise the last point's own classification.
    """
    if not points:
        return MovementStatus.UNKNOWN
    statuses = {classify_point(p) for p in points}
    if len(points) > 1 and len(statuses) == 1:
        return statuses.pop()
    return classify_point(points[-1])


def process_movement(ctx: TripContext) -> bool:
    """Update movement status, halt timer and parked duration."""
    trip = ctx.trip
    log = trip_logger(logger, trip)
    points = trip.window_points
    if not points:
        log.error("Movement check failed: empty path window %s", trip.pathPoints)
        return False

    current = points[-1]
    previous_status = MovementStatus(trip.movementStatus)
    new_status = classify_batch(points)
    if new_status == MovementStatus.UNKNOWN:
        # ambiguous batch keeps the last known status
        new_status = previous_status

    if new_status == MovementStatus.HALTED and previous_status != MovementStatus.HALTED:
        trip.movementStatus = MovementStatus.HALTED
        trip.haltStartTime = current.dt_tracker
        trip.currentHaltDuration = 0
        log.info("Vehicle halted at %s", current.dt_tracker.isoformat())
        ctx.changes.touch("movementStatus", "haltStartTime", "currentHaltDuration")

    elif previous_status == MovementStatus.HALTED and new_status != MovementStatus.HALTED:
        halt_minutes = 0
        if trip.haltStartTime is not None:
            halt_minutes = max(0, minutes_between(trip.haltStartTime, current.dt_tracker))
        if halt_minutes >= MIN_HALT_DURATION_MINUTES:
            trip.parkedDuration += halt_minutes
        log.info("Vehicle started moving after halt of %d minutes", halt_minutes)
        trip.movementStatus = new_status
        trip.haltStartTime = None
        trip.currentHaltDuration = 0
        ctx.changes.touch(
            "movementStatus",
            "haltStartTime",
            "currentHaltDuration",
            "parkedDuration",
        )

    elif new_status == MovementStatus.HALTED:
        if trip.haltStartTime is None:
            trip.haltStartTime = current.dt_tracker
        trip.currentHaltDuration = max(
            0,
            minutes_between(trip.haltStartTime, current.dt_tracker),
        )
        ctx.changes.touch("haltStartTime", "currentHaltDuration")

    elif new_status != previous_status:
        trip.movementStatus = new_status
        ctx.changes.touch("movementStatus")

    return True
