"""
Segment and Route Progress Module.

Builds route segments, tracks the active segment through its
start/update/finish lifecycle and derives trip-level progress, ETA and
reverse-travel episodes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from config import REVERSE_TRAVEL_MIN_DISTANCE_M, ROUND_TRIP_RATIO
from core.exceptions import RouteDataError
from core.spatial import GeometryService
from date_utils import get_current_utc_time, minutes_between
from db.models import (
    PointLocation,
    RouteRecord,
    RouteSegment,
    SegmentBoundary,
    SegmentProgress,
    SegmentStatus,
    SignificantEvent,
    TravelDirection,
    TripRecord,
    ZoneLocation,
)
from trip_log_handler import trip_logger
from trip_processor.context import TripContext

logger = logging.getLogger(__name__)

LOADING_PURPOSES = frozenset({"Loading", "LoadingUnloading"})
UNLOADING_PURPOSES = frozenset({"Unloading", "LoadingUnloading"})


# ============================================================================
# Segment construction
# ============================================================================


def determine_load_type(
    start: PointLocation | ZoneLocation,
    end: PointLocation | ZoneLocation,
) -> str:
    if start.purpose in LOADING_PURPOSES and end.purpose in UNLOADING_PURPOSES:
        return "loaded"
    if start.purpose in UNLOADING_PURPOSES and end.purpose in LOADING_PURPOSES:
        return "empty"
    return "none"


def _slice_path(
    path: list[list[float]],
    start_index: int,
    end_index: int,
) -> list[list[float]]:
    if start_index <= end_index:
        return [list(c) for c in path[start_index : end_index + 1]]
    return [list(c) for c in reversed(path[end_index : start_index + 1])]


def build_route_segments(route: RouteRecord) -> list[RouteSegment]:
    """
    Derive segments from consecutive route locations.

    Each segment's polyline is the slice of ``routePath`` between the
    vertices nearest to its two locations.

    Raises:
        RouteDataError: The route has no usable polyline.
    """
    path = route.routePath
    if len(path) < 2:
        msg = "Route path is missing or has fewer than two points"
        raise RouteDataError(msg, {"routeName": route.routeName})

    route_length_m = route.routeLength * 1000 or GeometryService.path_length(path)
    start_end_m = GeometryService.coord_distance(
        route.startLocation.anchor,
        route.endLocation.anchor,
    )
    is_round_trip = start_end_m < route_length_m * ROUND_TRIP_RATIO

    stops = [route.startLocation, *route.viaLocations, route.endLocation]
    indices = [GeometryService.nearest_point_index(s.anchor, path) for s in stops]

    segments: list[RouteSegment] = []
    for i, (start, end) in enumerate(zip(stops, stops[1:])):
        segment_path = _slice_path(path, indices[i], indices[i + 1])
        if len(segment_path) < 2:
            segment_path = [list(start.anchor), list(end.anchor)]
        if is_round_trip:
            direction = "up" if i == 0 else "down"
        else:
            direction = "oneway"
        segments.append(
            RouteSegment(
                name=f"{start.locationName} to {end.locationName}",
                startLocation=start,
                endLocation=end,
                segmentPath=segment_path,
                segmentLength=GeometryService.path_length(segment_path, unit="km"),
                direction=direction,
                loadType=determine_load_type(start, end),
            ),
        )
    return segments


# ============================================================================
# Progress along a polyline
# ============================================================================


@dataclass
class PathProgress:
    nearest_point_index: int
    distance_covered: float
    distance_remaining: float
    completion_percentage: float


def progress_along(
    coord: list[float],
    polyline: list[list[float]],
    total_length_km: float | None = None,
) -> PathProgress:
    """Nearest-vertex progress of ``coord`` along ``polyline`` (km)."""
    if not polyline:
        return PathProgress(0, 0.0, 0.0, 0.0)
    index = GeometryService.nearest_point_index(coord, polyline)
    covered = GeometryService.path_length(polyline[: index + 1], unit="km")
    total = total_length_km or GeometryService.path_length(polyline, unit="km")
    remaining = max(0.0, total - covered)
    pct = (covered / total) * 100 if total > 0 else 0.0
    return PathProgress(index, covered, remaining, min(100.0, max(0.0, pct)))


def calculate_eta(distance_remaining_km: float, average_speed_kmh: float):
    """ETA from now, or None unless both inputs are positive."""
    if distance_remaining_km <= 0 or average_speed_kmh <= 0:
        return None
    hours = distance_remaining_km / average_speed_kmh
    return get_current_utc_time() + timedelta(hours=hours)


# ============================================================================
# Segment lifecycle
# ============================================================================


def all_segments_completed(trip: TripRecord, segments: list[RouteSegment]) -> bool:
    return len(trip.segmentHistory) >= len(segments) and all(
        seg.status == SegmentStatus.COMPLETED for seg in trip.segmentHistory
    )


def start_segment(ctx: TripContext, index: int) -> None:
    trip = ctx.trip
    point = trip.latest_point
    segment = ctx.segments[index]
    to_index = trip.pathPoints.toIndex
    progress = SegmentProgress(
        segmentIndex=index,
        name=segment.name,
        direction=segment.direction,
        loadType=segment.loadType,
        status=SegmentStatus.RUNNING,
        startTime=point.dt_tracker,
        distanceRemaining=segment.segmentLength,
        segmentStartTripPathIndex=to_index,
        startLocation=SegmentBoundary(
            locationName=segment.startLocation.locationName,
            arrivalTime=point.dt_tracker,
            tripPathIndex=to_index,
        ),
        endLocation=SegmentBoundary(locationName=segment.endLocation.locationName),
    )
    trip.currentlyActiveSegmentIndex = index
    trip.currentlyActiveSegment = progress
    trip.segmentHistory.append(progress.model_copy(deep=True))
    ctx.changes.touch(
        "currentlyActiveSegmentIndex",
        "currentlyActiveSegment",
        "segmentHistory",
    )
    trip_logger(logger, trip).info("Started segment %d: %s", index, segment.name)


def _sync_history(trip: TripRecord, progress: SegmentProgress) -> None:
    if trip.segmentHistory and trip.segmentHistory[-1].segmentIndex == progress.segmentIndex:
        trip.segmentHistory[-1] = progress.model_copy(deep=True)


def finish_segment(ctx: TripContext) -> None:
    trip = ctx.trip
    active = trip.currentlyActiveSegment
    if trip.currentlyActiveSegmentIndex == -1 or active is None:
        return

    point = trip.latest_point
    to_index = trip.pathPoints.toIndex
    index = trip.currentlyActiveSegmentIndex
    segment = ctx.segments[index]
    finished = active.model_copy(
        update={
            "status": SegmentStatus.COMPLETED,
            "endTime": point.dt_tracker,
            "completionPercentage": 100.0,
            "distanceCovered": segment.segmentLength,
            "distanceRemaining": 0.0,
            "estimatedTimeOfArrival": None,
            "segmentEndTripPathIndex": to_index,
            "endLocation": SegmentBoundary(
                locationName=segment.endLocation.locationName,
                arrivalTime=point.dt_tracker,
                tripPathIndex=to_index,
            ),
        },
    )
    _sync_history(trip, finished)
    trip.currentlyActiveSegment = None
    trip.currentlyActiveSegmentIndex = -1
    ctx.changes.touch(
        "currentlyActiveSegmentIndex",
        "currentlyActiveSegment",
        "segmentHistory",
    )
    update_trip_level_metrics(ctx)

    log = trip_logger(logger, trip)
    if index == len(ctx.segments) - 1:
        log.info("Finished final segment %d. All segments completed.", index)
    else:
        log.info("Finished segment %d", index)


def update_segment(ctx: TripContext) -> None:
    trip = ctx.trip
    active = trip.currentlyActiveSegment
    if trip.currentlyActiveSegmentIndex == -1 or active is None:
        return

    point = trip.latest_point
    segment = ctx.segments[trip.currentlyActiveSegmentIndex]
    progress = progress_along(
        point.coordinates,
        segment.segmentPath,
        segment.segmentLength or None,
    )
    active.status = SegmentStatus.RUNNING
    active.nearestPointIndex = progress.nearest_point_index
    active.distanceCovered = progress.distance_covered
    active.distanceRemaining = progress.distance_remaining
    active.completionPercentage = progress.completion_percentage
    active.estimatedTimeOfArrival = calculate_eta(
        progress.distance_remaining,
        trip.averageSpeed,
    )
    if active.startLocation.departureTime is None:
        active.startLocation.departureTime = point.dt_tracker
        if active.startLocation.arrivalTime is not None:
            active.startLocation.dwellTime = max(
                0,
                minutes_between(active.startLocation.arrivalTime, point.dt_tracker),
            )

    _sync_history(trip, active)
    ctx.changes.touch("currentlyActiveSegment", "segmentHistory")
    update_trip_level_metrics(ctx)


def update_trip_level_metrics(ctx: TripContext) -> None:
    """Roll segment progress up into trip distance, completion and ETA."""
    trip = ctx.trip
    covered = sum(seg.distanceCovered for seg in trip.segmentHistory)
    route_length = ctx.route.routeLength
    trip.distanceCovered = covered
    if route_length > 0:
        trip.distanceRemaining = max(0.0, route_length - covered)
        trip.completionPercentage = min(100.0, max(0.0, covered / route_length * 100))
    else:
        trip.distanceRemaining = 0.0
        trip.completionPercentage = 0.0
    trip.estimatedTimeOfArrival = calculate_eta(trip.distanceRemaining, trip.averageSpeed)
    ctx.changes.touch(
        "distanceCovered",
        "distanceRemaining",
        "completionPercentage",
        "estimatedTimeOfArrival",
    )


# ============================================================================
# Route situation and reverse travel
# ============================================================================


def update_route_situation(ctx: TripContext) -> None:
    """
    Distance from the route and travel direction for the current window.

    Direction is reverse when the window's last point maps to an earlier
    route vertex than its first point.
    """
    trip = ctx.trip
    points = trip.window_points
    active = trip.currentlyActiveSegment
    if active is not None and trip.currentlyActiveSegmentIndex >= 0:
        polyline = ctx.segments[trip.currentlyActiveSegmentIndex].segmentPath
    else:
        polyline = ctx.route.routePath
    if not polyline or not points:
        return

    first_index = GeometryService.nearest_point_index(points[0].coordinates, polyline)
    last_index = GeometryService.nearest_point_index(points[-1].coordinates, polyline)
    trip.nearestPointIndex = last_index
    trip.distanceFromTruck = GeometryService.coord_distance(
        points[-1].coordinates,
        polyline[last_index],
    )
    direction = (
        TravelDirection.REVERSE if last_index < first_index else TravelDirection.FORWARD
    )
    trip.travelDirection = direction
    ctx.changes.touch("nearestPointIndex", "distanceFromTruck", "travelDirection")

    log = trip_logger(logger, trip)
    if direction == TravelDirection.REVERSE:
        window_coords = [list(p.coordinates) for p in points]
        chunk_distance = GeometryService.path_length(window_coords)
        if chunk_distance > REVERSE_TRAVEL_MIN_DISTANCE_M or trip.reverseTravelPath:
            if not trip.reverseTravelPath:
                trip.reverseTravelStartTime = points[0].dt_tracker
            trip.reverseTravelPath = [*trip.reverseTravelPath, *window_coords]
            trip.reverseTravelDistance += chunk_distance
            ctx.changes.touch(
                "reverseTravelPath",
                "reverseTravelDistance",
                "reverseTravelStartTime",
            )
            log.info(
                "Reverse travel: %d points, %.0f m accumulated",
                len(trip.reverseTravelPath),
                trip.reverseTravelDistance,
            )
        return

    if trip.reverseTravelPath:
        started = trip.reverseTravelStartTime or points[0].dt_tracker
        ended = points[0].dt_tracker
        event = SignificantEvent(
            eventType="ruleViolation",
            eventName="Reverse Travel",
            eventTime=started,
            eventStartTime=started,
            eventEndTime=ended,
            eventDuration=max(0, minutes_between(started, ended)),
            eventDistance=round(trip.reverseTravelDistance / 1000, 2),
            eventLocation={"type": "Point", "coordinates": trip.reverseTravelPath[0]},
            eventPath=trip.reverseTravelPath,
        )
        ctx.changes.append("significantEvents", len(trip.significantEvents))
        trip.significantEvents.append(event)
        log.info("Reverse travel event recorded: %.2f km", event.eventDistance)
    if trip.reverseTravelPath or trip.reverseTravelDistance:
        trip.reverseTravelPath = []
        trip.reverseTravelDistance = 0.0
        trip.reverseTravelStartTime = None
        ctx.changes.touch(
            "reverseTravelPath",
            "reverseTravelDistance",
            "reverseTravelStartTime",
        )


# ============================================================================
# Pipeline step
# ============================================================================


def process_segment(ctx: TripContext) -> bool:
    """Advance the segment state machine for the latest point."""
    trip = ctx.trip
    log = trip_logger(logger, trip)
    if trip.latest_point is None:
        log.error("Segment check failed: no latest point")
        return False
    if not ctx.segments:
        log.error("Segment check failed: route has no segments")
        return False

    update_route_situation(ctx)

    current_name = (
        trip.currentSignificantLocation.locationName
        if trip.currentSignificantLocation
        else None
    )
    index = trip.currentlyActiveSegmentIndex
    active_segment = ctx.segments[index] if 0 <= index < len(ctx.segments) else None
    completed = all_segments_completed(trip, ctx.segments)

    if index == -1 and not completed and not trip.segmentHistory:
        start_segment(ctx, 0)
        return True

    if current_name is None:
        update_segment(ctx)
        return True

    if active_segment is not None:
        if current_name == active_segment.startLocation.locationName:
            update_segment(ctx)
        if current_name == active_segment.endLocation.locationName:
            finish_segment(ctx)

    next_index = (
        index + 1 if index >= 0 else len(trip.segmentHistory)
    )
    completed = all_segments_completed(trip, ctx.segments)
    if (
        not completed
        and trip.currentlyActiveSegmentIndex == -1
        and next_index < len(ctx.segments)
        and current_name == ctx.segments[next_index].startLocation.locationName
    ):
        start_segment(ctx, next_index)
    return True
