"""
Fuel Status Module.

Decides when a trip's fuel summary is due for a refresh and applies a
fetched fuel report to the trip. Fetching itself happens outside the
pipeline; the step only leaves a :class:`FuelRequest` on the context.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from config import FUEL_LOOKBACK_POINTS, FUEL_REFRESH_INTERVAL_MINUTES
from db.models import FuelEvent, GpsPoint, TripRecord
from telemetry.fuel import FuelReport
from trip_log_handler import trip_logger
from trip_processor.context import ChangeSet, FuelRequest, TripContext

logger = logging.getLogger(__name__)

FUEL_FIELDS = (
    "fuelConsumption",
    "fuelEfficiency",
    "currentFuelLevel",
    "fuelEvents",
    "fuelStatusUpdateTime",
)


def has_fuel_data(trip: TripRecord) -> bool:
    """Whether the device reported a fuel level in its recent points."""
    return any(
        point.fuelLevel is not None for point in trip.tripPath[-FUEL_LOOKBACK_POINTS:]
    )


def plan_fuel_refresh(trip: TripRecord, point: GpsPoint | None) -> FuelRequest | None:
    """Fuel range to fetch, or None when no refresh is due."""
    if point is None or trip.actualStartTime is None or not has_fuel_data(trip):
        return None
    last_update = trip.fuelStatusUpdateTime
    interval = timedelta(minutes=FUEL_REFRESH_INTERVAL_MINUTES)
    if last_update is not None and point.dt_tracker - last_update < interval:
        return None
    return FuelRequest(time_from=trip.actualStartTime, time_to=point.dt_tracker)


def process_fuel(ctx: TripContext) -> bool:
    """Request a fuel refresh for live trips at most once per interval."""
    if ctx.backdated:
        return True
    request = plan_fuel_refresh(ctx.trip, ctx.trip.latest_point)
    if request is not None:
        trip_logger(logger, ctx.trip).debug(
            "Fuel refresh due for %s to %s",
            request.time_from.isoformat(),
            request.time_to.isoformat(),
        )
        ctx.fuel_request = request
    return True


def _event_location(trip: TripRecord, event_time: datetime) -> dict | None:
    for point in reversed(trip.tripPath):
        if point.dt_tracker <= event_time:
            return {"type": "Point", "coordinates": list(point.coordinates)}
    return None


def apply_fuel_report(
    trip: TripRecord,
    report: FuelReport,
    updated_at: datetime,
    changes: ChangeSet,
) -> None:
    """Store a fuel report on the trip; unknown figures are stored as 0."""
    trip.fuelConsumption = report.consumption or 0.0
    trip.fuelEfficiency = report.efficiency or 0.0
    trip.currentFuelLevel = report.end_level
    trip.fuelEvents = [
        FuelEvent(
            eventType=event["eventType"],
            eventTime=event["eventTime"],
            volume=event["volume"],
            location=_event_location(trip, event["eventTime"]),
        )
        for event in report.events
    ]
    trip.fuelStatusUpdateTime = updated_at
    changes.touch(*FUEL_FIELDS)
    trip_logger(logger, trip).info(
        "Fuel level: %.1fL, Consumption: %sL, Efficiency: %s km/L",
        report.end_level,
        report.consumption if report.consumption is not None else "NA",
        report.efficiency if report.efficiency is not None else "NA",
    )
