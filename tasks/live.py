"""
Live trip cycle.

One invocation processes whatever telemetry has arrived for a trip since
the previous cycle: the drained raw buffer for Active trips, or the
latest known fix for trips that have not reached their start location.
"""

from __future__ import annotations

import logging

from core.exceptions import ProcessingStepError, TelemetryUnavailableError
from date_utils import get_current_utc_time
from db.models import GpsPoint, TripRecord, TripStage
from telemetry import live_buffer
from telemetry.fuel import fetch_fuel_report
from telemetry.validators import validate_point, validate_points
from trip_log_handler import trip_logger
from trip_processor import ChangeSet, FuelRequest, MembershipChange, TripContext, TripProcessor
from trip_processor.fuel import apply_fuel_report
from trip_processor.state import PROCESSABLE_STAGES
from trip_repository import TripRepository

logger = logging.getLogger(__name__)


def drop_already_processed(trip: TripRecord, points: list[GpsPoint]) -> list[GpsPoint]:
    """Keep only points newer than the last point already in ``tripPath``."""
    if not trip.tripPath:
        return points
    last_seen = trip.tripPath[-1].dt_tracker
    return [p for p in points if p.dt_tracker > last_seen]


async def apply_membership(trip: TripRecord, ctx: TripContext) -> None:
    """Mirror a stage change into the active-trip membership set."""
    if ctx.membership_change == MembershipChange.ADD:
        await live_buffer.add_active_imei(trip.deviceImei)
    elif ctx.membership_change == MembershipChange.REMOVE:
        await live_buffer.remove_active_imei(trip.deviceImei)


async def refresh_fuel(
    trip: TripRecord,
    request: FuelRequest | None,
    changes: ChangeSet,
) -> bool:
    """
    Fetch and apply a requested fuel refresh.

    A fuel API outage is logged and leaves the previous fuel figures in
    place; it never fails the cycle.

    Returns:
        True if the trip's fuel fields were updated.
    """
    if request is None:
        return False
    log = trip_logger(logger, trip)
    try:
        report = await fetch_fuel_report(trip.deviceImei, request.time_from, request.time_to)
    except TelemetryUnavailableError as e:
        log.warning("Fuel status not refreshed: %s %s", e.message, e.details)
        return False
    if report is None:
        return False
    apply_fuel_report(trip, report, request.time_to, changes)
    return True


async def _collect_points(trip: TripRecord) -> list[GpsPoint]:
    log = trip_logger(logger, trip)
    if trip.tripStage == TripStage.ACTIVE:
        raws = await live_buffer.drain_raw_path(trip.deviceImei)
        if not raws:
            log.info("No buffered path data for device %s", trip.deviceImei)
            return []
        result = validate_points(raws)
        if result.invalid_count:
            log.info("Skipped %d invalid points", result.invalid_count)
        return result.points

    fix = await live_buffer.get_latest_fix(trip.deviceImei)
    if fix is None:
        log.info("Missing latest location for device %s", trip.deviceImei)
        return []
    point = validate_point(fix)
    if point is None:
        log.info("Invalid latest location for device %s", trip.deviceImei)
        return []
    return [point]


async def process_live_cycle(
    trip: TripRecord,
    repository: TripRepository,
) -> TripContext | None:
    """
    Run one live cycle for an already-loaded trip.

    Returns:
        The processing context, or None when there was nothing to process.

    Raises:
        ProcessingStepError: A pipeline step failed; nothing was persisted.
        TripInvariantError: The chunk produced a contradictory trip state.
    """
    log = trip_logger(logger, trip)
    if TripStage(trip.tripStage) not in PROCESSABLE_STAGES:
        log.info("Trip stage %s is not processable, skipping", trip.tripStage)
        return None

    if (
        trip.tripStage != TripStage.ACTIVE
        and trip.plannedStartTime is not None
        and get_current_utc_time() < trip.plannedStartTime
    ):
        log.info("Planned start time not reached yet")
        return None

    points = drop_already_processed(trip, await _collect_points(trip))
    if not points:
        log.debug("No new points to process")
        return None

    route = await repository.load_route(trip)
    processor = TripProcessor(trip, route)
    ctx = processor.process_chunk(points)
    if processor.errors:
        msg = "Pipeline step failed: " + ", ".join(processor.errors)
        raise ProcessingStepError(msg, processor.get_processing_status())

    await refresh_fuel(trip, ctx.fuel_request, ctx.changes)
    await repository.persist(trip, ctx.changes)
    await apply_membership(trip, ctx)
    if trip.tripStage == TripStage.COMPLETED:
        await repository.finish_trip(trip.tripId)
    return ctx


async def run_live_trip(
    trip_id: str,
    repository: TripRepository | None = None,
) -> TripRecord:
    """Load a trip and run one live cycle for it."""
    repository = repository or TripRepository()
    trip = await repository.load_trip(trip_id)
    if trip.backDated:
        trip_logger(logger, trip).info("Trip is marked as backdated, skipping live cycle")
        return trip
    await process_live_cycle(trip, repository)
    return trip
