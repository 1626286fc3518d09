"""Client for the fuel sensor APIs.

A fuel report for a time range combines three calls: tank levels at the
range boundaries, the distance driven, and the filling/theft events the
sensor detected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from config import (
    FUEL_DISTANCE_API_URL,
    FUEL_EVENTS_API_URL,
    FUEL_LEVELS_API_URL,
    FUEL_TANK,
)
from core.exceptions import TelemetryUnavailableError
from core.http.session import get_session
from core.retry import HTTP_RETRY_EXCEPTIONS, retry_async
from date_utils import parse_timestamp

logger = logging.getLogger(__name__)

EVENT_TYPES = {"filling": "Filling", "theft": "Theft"}


@dataclass
class FuelReport:
    """Fuel summary for one trip range; ``None`` means not computable."""

    start_level: float
    end_level: float
    distance_km: float
    consumption: float | None
    efficiency: float | None
    events: list[dict[str, Any]] = field(default_factory=list)


@retry_async(max_retries=3, retry_delay=2.0)
async def _post(url: str, payload: dict[str, Any]) -> Any:
    session = await get_session()
    async with session.post(url, json=payload) as response:
        response.raise_for_status()
        return await response.json()


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def summarize_fuel(
    levels: dict[str, Any],
    events: list[dict[str, Any]],
    distance_km: float,
    tank: str = FUEL_TANK,
) -> FuelReport | None:
    """
    Combine tank levels, sensor events and distance into a report.

    Consumption is ``start - end + fills - theft`` over events inside the
    tank's reporting window. Non-positive consumption is reported as
    unknown, and so is efficiency without consumption or distance.
    """
    tank_levels = levels.get(tank)
    if not tank_levels:
        return None

    window_start = parse_timestamp(tank_levels.get("startTime"))
    window_end = parse_timestamp(tank_levels.get("endTime"))
    fills = _as_float(tank_levels.get("fills"))
    theft = _as_float(tank_levels.get("theft"))

    in_window = []
    for event in events:
        event_time = parse_timestamp(event.get("eventTime"))
        event_type = EVENT_TYPES.get(str(event.get("fuel_event_type", "")).lower())
        if event_time is None or event_type is None:
            continue
        if window_start and window_end and not window_start < event_time < window_end:
            continue
        volume = _as_float(event.get("fuel_event_volume"))
        if event_type == "Filling":
            fills += volume
        else:
            theft += volume
        in_window.append({"eventType": event_type, "eventTime": event_time, "volume": volume})
    in_window.sort(key=lambda e: e["eventTime"])

    start_level = _as_float(tank_levels.get("startLevel"))
    end_level = _as_float(tank_levels.get("endLevel"))
    consumed = start_level - end_level + fills - theft
    consumption = round(consumed, 3) if consumed > 0 else None
    efficiency = (
        round(distance_km / consumed, 1) if consumption is not None and distance_km else None
    )
    return FuelReport(
        start_level=start_level,
        end_level=end_level,
        distance_km=round(distance_km, 2),
        consumption=consumption,
        efficiency=efficiency,
        events=in_window,
    )


async def fetch_fuel_report(
    imei: str,
    time_from: datetime,
    time_to: datetime,
) -> FuelReport | None:
    """
    Fetch and summarize fuel data for ``imei`` between the two times.

    Returns:
        The report, or None when the device has no data for the tank.

    Raises:
        TelemetryUnavailableError: A fuel API is unreachable after retries
            or returned a malformed body.
    """
    payload = {
        "imei": imei,
        "timeFrom": time_from.isoformat(),
        "timeTo": time_to.isoformat(),
    }
    try:
        levels_body = await _post(FUEL_LEVELS_API_URL, payload)
        distance_body = await _post(FUEL_DISTANCE_API_URL, payload)
        events_body = await _post(FUEL_EVENTS_API_URL, payload)
    except (*HTTP_RETRY_EXCEPTIONS, ValueError) as e:
        msg = f"Fuel API request failed for {imei}"
        raise TelemetryUnavailableError(msg, {"error": str(e)}) from e

    try:
        levels = levels_body["data"]
        distance_km = _as_float(distance_body["dist"])
        events = events_body["data"] or []
    except (KeyError, TypeError) as e:
        msg = "Fuel API returned a malformed body"
        raise TelemetryUnavailableError(msg, {"imei": imei}) from e
    if not isinstance(levels, dict) or not isinstance(events, list):
        msg = "Fuel API returned a malformed body"
        raise TelemetryUnavailableError(msg, {"imei": imei})

    report = summarize_fuel(levels, events, distance_km)
    if report is None:
        logger.info("No %s fuel levels for %s", FUEL_TANK, imei)
    return report
