"""
Rule Violation Module.

Evaluates the route's compliance rules for each chunk with hysteresis:
a rule flips to Violated once per episode, reports "running" while the
episode continues, and flips back to Good only from Violated. Each
episode is mirrored by a ``ruleViolation`` significant event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, time

from dateutil import tz

from config import LOCAL_TIMEZONE
from core.spatial import GeometryService
from date_utils import minutes_between
from db.models import (
    MovementStatus,
    RuleKind,
    RuleStatus,
    SignificantEvent,
    TravelDirection,
)
from trip_log_handler import trip_logger
from trip_processor.context import TripContext

logger = logging.getLogger(__name__)

EVENT_NAMES: dict[RuleKind, str] = {
    RuleKind.DRIVING_TIME: "Driving Time Violation",
    RuleKind.SPEED: "Speed Violation",
    RuleKind.HALT_TIME: "Halt Time Violation",
    RuleKind.ROUTE_VIOLATION: "Route Violation",
}


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` rule time."""
    hour, minute = (int(part) for part in value.split(":")[:2])
    return time(hour=hour, minute=minute)


def is_within_window(moment: datetime, start: time, end: time) -> bool:
    """
    Whether the local clock time of ``moment`` falls in ``[start, end]``.

    An ``end`` earlier than ``start`` closes the window on the next day.
    """
    local = moment.astimezone(tz.gettz(LOCAL_TIMEZONE)).time().replace(
        second=0,
        microsecond=0,
    )
    if end < start:
        return local >= start or local <= end
    return start <= local <= end


# ============================================================================
# Rule conditions
# ============================================================================


def driving_time_condition(ctx: TripContext) -> bool | None:
    rules = ctx.route.rules
    if rules.drivingStartTime is None or rules.drivingEndTime is None:
        return None
    point = ctx.trip.latest_point
    outside = not is_within_window(
        point.dt_tracker,
        parse_clock(rules.drivingStartTime),
        parse_clock(rules.drivingEndTime),
    )
    return outside and ctx.trip.movementStatus == MovementStatus.DRIVING


def speed_condition(ctx: TripContext) -> bool | None:
    limit = ctx.route.rules.speedLimit
    if limit is None:
        return None
    return ctx.batch_average_speed > limit


def halt_time_condition(ctx: TripContext) -> bool | None:
    max_hours = ctx.route.rules.maxHaltTime
    if max_hours is None:
        return None
    return ctx.trip.currentHaltDuration / 60 > max_hours


def route_violation_condition(ctx: TripContext) -> bool | None:
    threshold = ctx.route.rules.routeViolationThreshold
    if threshold is None:
        return None
    trip = ctx.trip
    if trip.distanceFromTruck > threshold:
        return True
    return (
        trip.travelDirection == TravelDirection.REVERSE
        and trip.reverseTravelDistance > threshold
    )


RULE_CONDITIONS: dict[RuleKind, Callable[[TripContext], bool | None]] = {
    RuleKind.DRIVING_TIME: driving_time_condition,
    RuleKind.SPEED: speed_condition,
    RuleKind.HALT_TIME: halt_time_condition,
    RuleKind.ROUTE_VIOLATION: route_violation_condition,
}


# ============================================================================
# Violation events
# ============================================================================


def _open_event(ctx: TripContext, event_name: str) -> SignificantEvent | None:
    for event in ctx.trip.significantEvents:
        if (
            event.eventType == "ruleViolation"
            and event.eventName == event_name
            and event.eventEndTime is None
        ):
            return event
    return None


def create_violation_event(ctx: TripContext, event_name: str) -> None:
    trip = ctx.trip
    window = trip.pathPoints
    point = trip.latest_point
    ctx.changes.append("significantEvents", len(trip.significantEvents))
    trip.significantEvents.append(
        SignificantEvent(
            eventType="ruleViolation",
            eventName=event_name,
            eventTime=point.dt_tracker,
            eventStartTime=point.dt_tracker,
            eventStartTripPathIndex=window.fromIndex,
            eventEndTripPathIndex=window.toIndex,
            eventLocation={"type": "Point", "coordinates": list(point.coordinates)},
        ),
    )
    trip_logger(logger, trip).info("Created new %s event", event_name)


def extend_violation_event(ctx: TripContext, event_name: str) -> None:
    event = _open_event(ctx, event_name)
    if event is None:
        return
    event.eventEndTripPathIndex = ctx.trip.pathPoints.toIndex
    ctx.changes.touch("significantEvents")


def close_violation_event(ctx: TripContext, event_name: str) -> None:
    trip = ctx.trip
    event = _open_event(ctx, event_name)
    if event is None:
        return

    to_index = trip.pathPoints.toIndex
    from_index = event.eventStartTripPathIndex or 0
    end_point = trip.tripPath[to_index]
    started_at = event.eventStartTime or trip.tripPath[from_index].dt_tracker

    event.eventEndTime = end_point.dt_tracker
    event.eventEndTripPathIndex = to_index
    event.eventDuration = max(0, minutes_between(started_at, end_point.dt_tracker))
    coords = [p.coordinates for p in trip.tripPath[from_index : to_index + 1]]
    if len(coords) >= 2:
        event.eventDistance = round(GeometryService.path_length(coords, unit="km"), 2)
    else:
        event.eventDistance = 0.0
    ctx.changes.touch("significantEvents")
    trip_logger(logger, trip).info(
        "Closed %s event. Duration: %d minutes, distance %.2f km",
        event_name,
        event.eventDuration,
        event.eventDistance,
    )


# ============================================================================
# Pipeline step
# ============================================================================


def evaluate_rule(ctx: TripContext, kind: RuleKind, violated: bool) -> None:
    """Apply one rule's hysteresis transition."""
    trip = ctx.trip
    previous = trip.ruleStatus.get(kind.value, RuleStatus.GOOD)
    event_name = EVENT_NAMES[kind]

    if violated:
        if previous != RuleStatus.VIOLATED:
            trip.ruleStatus = {**trip.ruleStatus, kind.value: RuleStatus.VIOLATED}
            ctx.changes.touch("ruleStatus")
            ctx.rule_signals["new"].append(kind.value)
            create_violation_event(ctx, event_name)
        else:
            ctx.rule_signals["running"].append(kind.value)
            extend_violation_event(ctx, event_name)
    elif previous == RuleStatus.VIOLATED:
        trip.ruleStatus = {**trip.ruleStatus, kind.value: RuleStatus.GOOD}
        ctx.changes.touch("ruleStatus")
        ctx.rule_signals["resolved"].append(kind.value)
        close_violation_event(ctx, event_name)


def process_rules(ctx: TripContext) -> bool:
    """Evaluate every configured rule against the current chunk."""
    trip = ctx.trip
    log = trip_logger(logger, trip)
    if trip.latest_point is None:
        log.error("Rule check failed: no latest point")
        return False

    for kind, condition in RULE_CONDITIONS.items():
        violated = condition(ctx)
        if violated is None:
            continue
        evaluate_rule(ctx, kind, violated)

    if ctx.rule_signals["new"]:
        log.info("New violations: %s", ", ".join(ctx.rule_signals["new"]))
    if ctx.rule_signals["running"]:
        log.info("Running violations: %s", ", ".join(ctx.rule_signals["running"]))
    if ctx.rule_signals["resolved"]:
        log.info("Resolved violations: %s", ", ".join(ctx.rule_signals["resolved"]))
    return True
