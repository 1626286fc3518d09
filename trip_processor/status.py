"""
Trip Status Module.

Combines location occupancy, movement and rule state into lifecycle stage
transitions and the human-readable ``activeStatus``.
"""

from __future__ import annotations

import logging

from config import DEFAULT_MAX_DETENTION_MINUTES
from date_utils import minutes_between
from db.models import (
    LocationRole,
    MovementStatus,
    RouteRecord,
    RuleKind,
    RuleStatus,
    TripRecord,
    TripStage,
)
from trip_log_handler import trip_logger
from trip_processor.context import MembershipChange, TripContext

logger = logging.getLogger(__name__)


def location_status(route: RouteRecord, trip: TripRecord, dwell_minutes: int) -> str | None:
    """``Reached``/``Detained At`` phrasing for the occupied location."""
    current = trip.currentSignificantLocation
    if current is None:
        return None

    if current.locationType == LocationRole.VIA:
        limit = next(
            (
                via.maxDetentionTime
                for via in route.viaLocations
                if via.locationName == current.locationName
            ),
            0,
        ) or DEFAULT_MAX_DETENTION_MINUTES
        verb = "Detained At" if dwell_minutes > limit else "Reached"
        return f"{verb} Via Location ({current.locationName})"

    if current.locationType == LocationRole.END:
        verb = "Detained At" if dwell_minutes > route.endLocation.maxDetentionTime else "Reached"
        return f"{verb} End Location"

    if current.locationType == LocationRole.START:
        verb = "Detained At" if dwell_minutes > route.startLocation.maxDetentionTime else "Reached"
        return f"{verb} Start Location"

    return None


def running_status(trip: TripRecord) -> str:
    route_violated = (
        trip.ruleStatus.get(RuleKind.ROUTE_VIOLATION.value) == RuleStatus.VIOLATED
    )
    if trip.movementStatus == MovementStatus.DRIVING:
        return "Running & Route Violated" if route_violated else "Running On Route"
    return "Halted & Route Violated" if route_violated else "Halted"


def _start_trip(ctx: TripContext) -> None:
    trip = ctx.trip
    point = trip.latest_point
    ctx.stage_machine.set_stage(TripStage.ACTIVE, "Reached start location")
    trip.activeStatus = "Reached Start Location"
    if trip.actualStartTime is None:
        trip.actualStartTime = point.dt_tracker
        ctx.changes.touch("actualStartTime")
        trip_logger(logger, trip).info(
            "Trip started. Start time set to %s",
            trip.actualStartTime.isoformat(),
        )
    if not ctx.backdated:
        ctx.membership_change = MembershipChange.ADD


def _complete_trip(ctx: TripContext, reason: str) -> None:
    trip = ctx.trip
    ctx.stage_machine.set_stage(TripStage.COMPLETED, reason)
    trip.activeStatus = "Completed"
    trip.actualEndTime = trip.latest_point.dt_tracker
    trip.endReason = reason
    ctx.changes.touch("actualEndTime", "endReason")
    if not ctx.backdated:
        ctx.membership_change = MembershipChange.REMOVE
    trip_logger(logger, trip).info(
        "Trip completed (%s). End time set to %s",
        reason,
        trip.actualEndTime.isoformat(),
    )


def process_status(ctx: TripContext) -> bool:
    """Advance the lifecycle stage and refresh ``activeStatus``."""
    trip = ctx.trip
    route = ctx.route
    log = trip_logger(logger, trip)
    point = trip.latest_point
    if point is None:
        log.error("Status check failed: no latest point")
        return False
    if trip.plannedStartTime is None:
        log.error("Status check failed: trip has no planned start time")
        return False

    previous_stage = TripStage(trip.tripStage)
    previous_status = trip.activeStatus
    current = trip.currentSignificantLocation
    at_start = current is not None and current.locationType == LocationRole.START
    at_end = current is not None and current.locationType == LocationRole.END
    dwell = max(0, minutes_between(current.entryTime, point.dt_tracker)) if current else 0

    stage = ctx.stage_machine.stage
    if stage in (TripStage.PLANNED, TripStage.START_DELAYED):
        if at_start:
            _start_trip(ctx)
        elif stage == TripStage.PLANNED and point.dt_tracker > trip.plannedStartTime:
            ctx.stage_machine.set_stage(TripStage.START_DELAYED, "Planned start time elapsed")
            trip.activeStatus = "Inactive"

    elif stage == TripStage.ACTIVE:
        end_detention = route.endLocation.maxDetentionTime
        if trip.hasExitedEndLocation:
            _complete_trip(ctx, "Exited End Location")
        elif at_end:
            if end_detention and end_detention > 0:
                trip.activeStatus = location_status(route, trip, dwell) or "Reached End Location"
                log.info(
                    "At end location with detention requirement. Current dwell: %d minutes",
                    dwell,
                )
            else:
                _complete_trip(ctx, "Reached End Location")
        elif current is not None:
            trip.activeStatus = location_status(route, trip, dwell) or trip.activeStatus
        else:
            trip.activeStatus = running_status(trip)

    trip.tripStage = ctx.stage_machine.stage
    if trip.tripStage != previous_stage:
        log.info("Trip Stage Changed: %s -> %s", previous_stage.value, trip.tripStage)
        ctx.changes.touch("tripStage")
    if trip.activeStatus != previous_status:
        log.info("Active Status Changed: %s -> %s", previous_status, trip.activeStatus)
        ctx.changes.touch("activeStatus")
    return True
