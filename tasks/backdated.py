"""
Historical (backdated) trip replay.

Fetches the trip's GPS range from the history API, validates and chunks
it, and runs each chunk through the engine as if it were a live cycle.
Each chunk is persisted before the next one starts, so a retry resumes
from the last persisted point.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from config import BACKDATED_MAX_DAYS, BACKDATED_MAX_RETRIES
from core.exceptions import (
    PersistenceError,
    ProcessingStepError,
    TelemetryUnavailableError,
)
from core.retry import retry_async
from date_utils import get_current_utc_time
from db.models import TripRecord, TripStage
from tasks.live import drop_already_processed, refresh_fuel, run_live_trip
from telemetry import live_buffer
from telemetry.chunker import split_into_chunks
from telemetry.history import fetch_history
from telemetry.validators import validate_points
from trip_log_handler import trip_logger
from trip_processor import ChangeSet, TripProcessor
from trip_processor.fuel import plan_fuel_refresh
from trip_repository import TripRepository

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    TelemetryUnavailableError,
    PersistenceError,
    ProcessingStepError,
)


def replay_range(trip: TripRecord):
    """Start and end of the history to replay, capped at the max lookback."""
    start = trip.plannedStartTime
    now = get_current_utc_time()
    if start is None:
        start = now - timedelta(days=BACKDATED_MAX_DAYS)
    end = min(now, start + timedelta(days=BACKDATED_MAX_DAYS))
    if end < now:
        trip_logger(logger, trip).info(
            "End time exceeds maximum range of %d days. Limiting to %s",
            BACKDATED_MAX_DAYS,
            end.isoformat(),
        )
    return start, end


async def convert_to_live(trip: TripRecord, repository: TripRepository) -> None:
    """Hand the trip over to the live path."""
    await repository.mark_live(trip)
    if trip.tripStage == TripStage.ACTIVE:
        await live_buffer.add_active_imei(trip.deviceImei)


async def replay_trip(trip: TripRecord, repository: TripRepository) -> TripRecord:
    """
    Replay one backdated trip from its last persisted point.

    Raises:
        TelemetryUnavailableError: History could not be fetched.
        PersistenceError: A chunk could not be written.
        ProcessingStepError: A pipeline step failed on a chunk.
        TripInvariantError: A chunk produced a contradictory trip state.
    """
    log = trip_logger(logger, trip)
    start, end = replay_range(trip)
    log.info("Processing backdated trip from %s to %s", start.isoformat(), end.isoformat())

    raws = await fetch_history(trip.deviceImei, start, end)
    result = validate_points(raws)
    if result.invalid_count:
        log.info("Skipped %d invalid points", result.invalid_count)
    points = drop_already_processed(trip, result.points)

    chunks = split_into_chunks(points)
    log.info("Split %d points into %d chunks", len(points), len(chunks))
    if not chunks:
        log.info("No chunks to process backdated trip. Making it a live trip.")
        await convert_to_live(trip, repository)
        return trip

    route = await repository.load_route(trip)
    processor = TripProcessor(trip, route, backdated=True)
    for i, chunk in enumerate(chunks, start=1):
        ctx = processor.process_chunk(chunk)
        if processor.errors:
            msg = f"Pipeline step failed on chunk {i}/{len(chunks)}: " + ", ".join(
                processor.errors,
            )
            raise ProcessingStepError(msg, processor.get_processing_status())
        await repository.persist(trip, ctx.changes)
        log.info(
            "Chunk %d/%d: stage=%s status=%s movement=%s",
            i,
            len(chunks),
            trip.tripStage,
            trip.activeStatus,
            trip.movementStatus,
        )
        if trip.tripStage == TripStage.COMPLETED:
            log.info("Trip completed during backdated processing at chunk %d", i)
            break

    fuel_changes = ChangeSet()
    if await refresh_fuel(trip, plan_fuel_refresh(trip, trip.latest_point), fuel_changes):
        await repository.persist(trip, fuel_changes)

    if trip.tripStage == TripStage.COMPLETED:
        await repository.finish_trip(trip.tripId)
    else:
        await convert_to_live(trip, repository)
    return trip


async def run_backdated_trip(
    trip_id: str,
    repository: TripRepository | None = None,
    max_retries: int = BACKDATED_MAX_RETRIES,
    retry_delay: float = 2.0,
) -> TripRecord:
    """
    Replay a backdated trip, retrying transient failures.

    Every attempt reloads the trip, so it resumes from the last persisted
    chunk rather than from in-memory state. Trips no longer flagged as
    backdated get a normal live cycle instead.
    """
    repository = repository or TripRepository()

    async def attempt() -> TripRecord:
        trip = await repository.load_trip(trip_id)
        if not trip.backDated:
            trip_logger(logger, trip).info("Trip is no longer backdated, running live cycle")
            return await run_live_trip(trip_id, repository)
        return await replay_trip(trip, repository)

    retrying = retry_async(
        max_retries=max(0, max_retries - 1),
        retry_delay=retry_delay,
        retry_exceptions=RETRYABLE_ERRORS,
    )
    return await retrying(attempt)()
