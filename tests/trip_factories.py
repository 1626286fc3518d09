from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from beanie import PydanticObjectId

from core.spatial import GeometryService
from db.models import (
    GpsPoint,
    PathWindow,
    PointLocation,
    RouteRecord,
    RouteRules,
    TripRecord,
)
from trip_processor.context import TripContext
from trip_processor.segments import build_route_segments
from trip_processor.state import TripStageMachine

# 09:30 in Asia/Kolkata
BASE_TIME = datetime(2025, 1, 6, 4, 0, tzinfo=UTC)
ROUTE_ID = PydanticObjectId("65a000000000000000000001")
LNG = 77.0
START_LAT = 28.0
VIA_LAT = 28.05
END_LAT = 28.1


def at(minutes: float) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def make_point(
    lat: float,
    minutes: float,
    speed: float = 40.0,
    acc: int = 1,
    lng: float = LNG,
    fuel: float | None = None,
) -> GpsPoint:
    return GpsPoint(
        coordinates=[lng, lat],
        dt_tracker=at(minutes),
        speed=speed,
        acc=acc,
        fuelLevel=fuel,
    )


def raw_fix(
    lat: float,
    minutes: float,
    speed: float = 40.0,
    acc: int = 1,
    lng: float = LNG,
    fuel: float | None = None,
) -> dict[str, Any]:
    fix = {
        "lat": lat,
        "lng": lng,
        "dt_tracker": at(minutes).isoformat(),
        "speed": speed,
        "acc": acc,
    }
    if fuel is not None:
        fix["fuelLevel"] = fuel
    return fix


def straight_path() -> list[list[float]]:
    """Due-north polyline from the start to the end location, ~1.1 km per step."""
    return [[LNG, round(START_LAT + 0.01 * i, 2)] for i in range(11)]


def point_location(
    name: str,
    lat: float,
    *,
    purpose: str | None = None,
    detention: float = 0,
    lng: float = LNG,
) -> PointLocation:
    return PointLocation(
        locationName=name,
        coordinates=[lng, lat],
        purpose=purpose,
        maxDetentionTime=detention,
        triggerRadius=500.0,
    )


def make_route(
    *,
    vias: list[PointLocation] | None = None,
    start_detention: float = 0,
    end_detention: float = 0,
    rules: RouteRules | None = None,
    path: list[list[float]] | None = None,
    end: PointLocation | None = None,
) -> RouteRecord:
    path = path or straight_path()
    return RouteRecord(
        routeName="Depot to Plant",
        startLocation=point_location("Depot", START_LAT, detention=start_detention),
        endLocation=end or point_location("Plant", END_LAT, detention=end_detention),
        viaLocations=vias or [],
        routePath=path,
        routeLength=GeometryService.path_length(path, unit="km"),
        rules=rules or RouteRules(),
    )


def make_trip(**overrides: Any) -> TripRecord:
    data: dict[str, Any] = {
        "tripId": "TRIP-1",
        "tripName": "Depot to Plant",
        "deviceImei": "860000000000001",
        "truckRegistrationNumber": "DL01AB1234",
        "route": ROUTE_ID,
        "plannedStartTime": at(15),
    }
    data.update(overrides)
    return TripRecord(**data)


def make_context(
    trip: TripRecord,
    route: RouteRecord,
    points: list[GpsPoint] | None = None,
    backdated: bool = False,
) -> TripContext:
    """Context with ``points`` appended to the trip path as the current window."""
    if points:
        start = len(trip.tripPath)
        trip.tripPath.extend(points)
        trip.pathPoints = PathWindow(fromIndex=start, toIndex=len(trip.tripPath) - 1)
    return TripContext(
        trip=trip,
        route=route,
        segments=route.segments or build_route_segments(route),
        stage_machine=TripStageMachine(trip.tripStage),
        backdated=backdated,
    )


def advance(ctx: TripContext, points: list[GpsPoint]) -> TripContext:
    """Move ``ctx`` onto a new window of points, keeping the stage machine."""
    trip = ctx.trip
    start = len(trip.tripPath)
    trip.tripPath.extend(points)
    trip.pathPoints = PathWindow(fromIndex=start, toIndex=len(trip.tripPath) - 1)
    ctx.changes.clear()
    ctx.membership_change = None
    ctx.rule_signals = {"new": [], "running": [], "resolved": []}
    return ctx


async def seed(repository: Any, trip: TripRecord | None = None, route: RouteRecord | None = None) -> TripRecord:
    """Store a trip and its route in the repository's collections."""
    trip = trip or make_trip()
    route = route or make_route()
    await repository.trips_collection.insert_one(trip.model_dump())
    await repository.routes_collection.insert_one({"_id": trip.route, **route.model_dump()})
    return trip
