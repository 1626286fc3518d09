"""
Significant Location Module.

Geofence occupancy for the route's start, via and end locations: entry,
switch and exit records with dwell times.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from config import ZONE_FALLBACK_RADIUS_M
from core.spatial import GeometryService
from date_utils import minutes_between
from db.models import (
    GpsPoint,
    LocationRole,
    LocationType,
    PointLocation,
    SignificantLocationRecord,
    TripRecord,
    TripStage,
    ZoneLocation,
)
from trip_log_handler import trip_logger
from trip_processor.context import TripContext

logger = logging.getLogger(__name__)

LocationMatch = tuple[LocationRole, PointLocation | ZoneLocation]


def check_location(
    location: PointLocation | ZoneLocation,
    coord: Sequence[float],
    fallback_radius_m: float = ZONE_FALLBACK_RADIUS_M,
) -> bool:
    """
    Whether ``coord`` (``[lng, lat]``) is inside the location's geofence.

    Zones use polygon containment, falling back to proximity to any vertex
    so that thin or slightly misdrawn polygons still register arrivals.
    """
    if location.locationType == LocationType.ZONE:
        if GeometryService.point_in_polygon(coord, location.zoneCoordinates):
            return True
        return GeometryService.within_radius_of_any(
            coord,
            location.zoneCoordinates,
            fallback_radius_m,
        )
    distance = GeometryService.coord_distance(coord, location.coordinates)
    return distance <= location.triggerRadius


def find_matches(ctx: TripContext, point: GpsPoint) -> list[LocationMatch]:
    route = ctx.route
    matches: list[LocationMatch] = []
    if check_location(route.startLocation, point.coordinates):
        matches.append((LocationRole.START, route.startLocation))
    if check_location(route.endLocation, point.coordinates):
        matches.append((LocationRole.END, route.endLocation))
    for via in route.viaLocations:
        if check_location(via, point.coordinates):
            matches.append((LocationRole.VIA, via))
    return matches


def has_left_start(trip: TripRecord) -> bool:
    return any(
        record.locationType == LocationRole.START and record.exitTime is not None
        for record in trip.significantLocations
    )


def choose_location(
    ctx: TripContext,
    matches: list[LocationMatch],
) -> LocationMatch | None:
    """
    Pick one location when several geofences overlap.

    The end location wins only on the last segment, when that segment ends
    there and the vehicle has already left the start. Otherwise any
    non-start match wins once the start has been left; before that the
    start wins.
    """
    if not matches:
        return None
    if len(matches) == 1:
        return matches[0]

    trip = ctx.trip
    by_role = {}
    for role, location in matches:
        by_role.setdefault(role, (role, location))
    left_start = has_left_start(trip)

    end_match = by_role.get(LocationRole.END)
    if ctx.segments and end_match is not None:
        last_index = len(ctx.segments) - 1
        in_last_segment = trip.currentlyActiveSegmentIndex == last_index
        last_end_name = ctx.segments[last_index].endLocation.locationName
        if in_last_segment and last_end_name == end_match[1].locationName and left_start:
            return end_match

    if left_start:
        for match in matches:
            if match[0] != LocationRole.START:
                return match

    return by_role.get(LocationRole.START, matches[0])


def ends_trip(ctx: TripContext) -> bool:
    """Only an Active trip can finish by leaving its end location."""
    return ctx.stage_machine.stage == TripStage.ACTIVE


def _close_current(trip: TripRecord, point: GpsPoint) -> SignificantLocationRecord:
    current = trip.currentSignificantLocation
    closed = current.model_copy(
        update={
            "exitTime": point.dt_tracker,
            "dwellTime": max(0, minutes_between(current.entryTime, point.dt_tracker)),
        },
    )
    trip.currentSignificantLocation = None
    return closed


def process_location(ctx: TripContext) -> bool:
    """Apply entry/switch/exit transitions for the latest point."""
    trip = ctx.trip
    log = trip_logger(logger, trip)
    point = trip.latest_point
    if point is None:
        log.error("Location check failed: no latest point")
        return False

    chosen = choose_location(ctx, find_matches(ctx, point))
    current = trip.currentSignificantLocation
    history_start = len(trip.significantLocations)

    if chosen is not None:
        role, location = chosen
        if current is None:
            trip.currentSignificantLocation = SignificantLocationRecord(
                locationName=location.locationName,
                locationType=role,
                entryTime=point.dt_tracker,
            )
            log.info("ENTRY %s (%s)", location.locationName, role.value)
            ctx.changes.touch("currentSignificantLocation")
        elif current.locationName != location.locationName:
            closed = _close_current(trip, point)
            trip.significantLocations.append(closed)
            ctx.changes.append("significantLocations", history_start)
            log.info("EXIT %s with dwell time %d minutes", closed.locationName, closed.dwellTime)
            if closed.locationType == LocationRole.END and ends_trip(ctx):
                trip.hasExitedEndLocation = True
                ctx.changes.touch("hasExitedEndLocation")
            trip.currentSignificantLocation = SignificantLocationRecord(
                locationName=location.locationName,
                locationType=role,
                entryTime=point.dt_tracker,
            )
            log.info("SWITCHED to %s (%s)", location.locationName, role.value)
            ctx.changes.touch("currentSignificantLocation")
        return True

    if current is None:
        return True

    closed = _close_current(trip, point)
    ctx.changes.touch("currentSignificantLocation")
    if closed.locationType == LocationRole.END and ends_trip(ctx):
        started = trip.actualStartTime
        already_recorded = any(
            record.locationName == closed.locationName
            and record.locationType == LocationRole.END
            and record.exitTime is not None
            and (started is None or record.exitTime >= started)
            for record in trip.significantLocations
        )
        if already_recorded:
            log.warning("Duplicate exit of end location %s ignored", closed.locationName)
            return True
        trip.significantLocations.append(closed)
        ctx.changes.append("significantLocations", history_start)
        trip.hasExitedEndLocation = True
        ctx.changes.touch("hasExitedEndLocation")
        log.info(
            "EXIT END LOCATION %s with dwell time %d minutes",
            closed.locationName,
            closed.dwellTime,
        )
        return True

    trip.significantLocations.append(closed)
    ctx.changes.append("significantLocations", history_start)
    log.info("EXIT %s with dwell time %d minutes", closed.locationName, closed.dwellTime)
    return True
