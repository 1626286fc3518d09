from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from db.models import (
    GpsPoint,
    RouteRecord,
    Trip,
    TripStage,
    ZoneLocation,
)
from trip_factories import make_route, make_trip


def test_gps_point_parses_timestamps() -> None:
    point = GpsPoint(coordinates=[77.2, 28.5], dt_tracker="2025-01-06T09:30:00+05:30")

    assert point.dt_tracker == datetime(2025, 1, 6, 4, 0, tzinfo=UTC)
    assert point.lng == 77.2
    assert point.lat == 28.5

    with pytest.raises(ValidationError):
        GpsPoint(coordinates=[77.2, 28.5], dt_tracker="yesterday-ish")


def test_locations_are_discriminated_by_type() -> None:
    data = make_route().model_dump()
    data["endLocation"] = {
        "locationType": "zone",
        "locationName": "Plant Yard",
        "zoneCoordinates": [[77.0, 28.1], [77.01, 28.1], [77.01, 28.11], [77.0, 28.11]],
    }

    route = RouteRecord.model_validate(data)

    assert isinstance(route.endLocation, ZoneLocation)
    assert route.endLocation.anchor == pytest.approx([77.005, 28.105])
    assert route.startLocation.anchor == [77.0, 28.0]


def test_trip_window_helpers() -> None:
    trip = make_trip()
    assert trip.latest_point is None
    assert trip.window_points == []


def test_enum_fields_store_values() -> None:
    trip = make_trip(tripStage=TripStage.ACTIVE)

    assert trip.model_dump()["tripStage"] == "Active"
    trip.tripStage = TripStage.COMPLETED
    assert trip.tripStage == "Completed"


@pytest.mark.asyncio
async def test_trip_document_round_trip(beanie_db) -> None:
    await Trip(**make_trip(tripStage=TripStage.ACTIVE).model_dump()).insert()

    found = await Trip.find_one(Trip.tripId == "TRIP-1")

    assert found is not None
    assert found.tripStage == TripStage.ACTIVE
    raw = await beanie_db["trips"].find_one({"tripId": "TRIP-1"})
    assert raw["tripStage"] == "Active"
