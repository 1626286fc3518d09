from __future__ import annotations

import json

import pytest

from core.exceptions import TelemetryUnavailableError
from date_utils import parse_timestamp
from db.models import TripStage
from http_fakes import FakeApiSession, FakeResponse
from redis_fakes import FakeRedis
from tasks import live
from telemetry import fuel as fuel_api
from telemetry.fuel import FuelReport, summarize_fuel
from trip_factories import (
    VIA_LAT,
    at,
    make_context,
    make_point,
    make_route,
    make_trip,
    raw_fix,
    seed,
)
from trip_processor.context import ChangeSet, FuelRequest
from trip_processor.fuel import apply_fuel_report, plan_fuel_refresh, process_fuel
from trip_repository import TripRepository

IMEI = "860000000000001"


def _levels(start: float, end: float, fills: float = 0, theft: float = 0) -> dict:
    return {
        "tank_1": {
            "startLevel": start,
            "endLevel": end,
            "fills": fills,
            "theft": theft,
            "startTime": at(0).isoformat(),
            "endTime": at(120).isoformat(),
        },
    }


def _event(kind: str, minutes: float, volume: float) -> dict:
    return {
        "fuel_event_type": kind,
        "eventTime": at(minutes).isoformat(),
        "fuel_event_volume": volume,
    }


def test_refuel_event_adds_to_consumption() -> None:
    report = summarize_fuel(_levels(100, 130), [_event("filling", 30, 50)], distance_km=60)

    assert report.consumption == 20
    assert report.efficiency == 3.0
    assert report.end_level == 130
    assert report.events == [{"eventType": "Filling", "eventTime": at(30), "volume": 50.0}]


def test_theft_event_is_subtracted_from_consumption() -> None:
    report = summarize_fuel(_levels(100, 60), [_event("theft", 40, 10)], distance_km=90)

    assert report.consumption == 30
    assert report.efficiency == 3.0
    assert report.events[0]["eventType"] == "Theft"


def test_events_outside_the_tank_window_are_ignored() -> None:
    events = [_event("filling", 150, 40), _event("Filling", 10, 5), _event("leak", 20, 9)]

    report = summarize_fuel(_levels(50, 40), events, distance_km=30)

    assert report.consumption == 15
    assert [e["eventTime"] for e in report.events] == [at(10)]


def test_events_are_ordered_by_time() -> None:
    events = [_event("theft", 50, 1), _event("filling", 20, 10)]

    report = summarize_fuel(_levels(50, 50), events, distance_km=10)

    assert [e["eventType"] for e in report.events] == ["Filling", "Theft"]


def test_no_consumption_leaves_figures_unknown() -> None:
    report = summarize_fuel(_levels(40, 45), [], distance_km=12)

    assert report.consumption is None
    assert report.efficiency is None


def test_consumption_without_distance_has_no_efficiency() -> None:
    report = summarize_fuel(_levels(40, 30), [], distance_km=0)

    assert report.consumption == 10
    assert report.efficiency is None


def test_missing_tank_has_no_report() -> None:
    assert summarize_fuel({"tank_2": {"startLevel": 1}}, [], distance_km=5) is None


@pytest.fixture
def use_session(monkeypatch: pytest.MonkeyPatch):
    def _install(session: FakeApiSession) -> FakeApiSession:
        async def _get_session():
            return session

        monkeypatch.setattr(fuel_api, "get_session", _get_session)
        return session

    return _install


@pytest.mark.asyncio
async def test_fetch_fuel_report_combines_three_calls(use_session) -> None:
    session = use_session(
        FakeApiSession(
            FakeResponse({"data": _levels(80, 70)}),
            FakeResponse({"dist": "42.5"}),
            FakeResponse({"data": [_event("filling", 60, 5)]}),
        ),
    )

    report = await fuel_api.fetch_fuel_report(IMEI, at(0), at(120))

    assert report.consumption == 15
    assert report.efficiency == 2.8
    assert report.distance_km == 42.5
    assert session.urls == [
        fuel_api.FUEL_LEVELS_API_URL,
        fuel_api.FUEL_DISTANCE_API_URL,
        fuel_api.FUEL_EVENTS_API_URL,
    ]
    assert session.payloads[0] == {
        "imei": IMEI,
        "timeFrom": at(0).isoformat(),
        "timeTo": at(120).isoformat(),
    }


@pytest.mark.asyncio
async def test_fetch_fuel_report_with_malformed_body_is_unavailable(use_session) -> None:
    use_session(
        FakeApiSession(
            FakeResponse({"data": _levels(80, 70)}),
            FakeResponse({"error": "no distance"}),
            FakeResponse({"data": []}),
        ),
    )

    with pytest.raises(TelemetryUnavailableError) as exc_info:
        await fuel_api.fetch_fuel_report(IMEI, at(0), at(120))

    assert exc_info.value.details == {"imei": IMEI}


@pytest.mark.asyncio
async def test_fetch_fuel_report_undecodable_body_is_unavailable(use_session) -> None:
    session = use_session(
        FakeApiSession(FakeResponse(json.JSONDecodeError("bad", "<html>", 0))),
    )

    with pytest.raises(TelemetryUnavailableError):
        await fuel_api.fetch_fuel_report(IMEI, at(0), at(120))

    assert len(session.payloads) == 1


def test_refresh_needs_fuel_readings() -> None:
    trip = make_trip(actualStartTime=at(0), tripPath=[make_point(VIA_LAT, 70)])

    assert plan_fuel_refresh(trip, trip.latest_point) is None


def test_refresh_needs_a_started_trip() -> None:
    trip = make_trip(tripPath=[make_point(VIA_LAT, 70, fuel=55)])

    assert plan_fuel_refresh(trip, trip.latest_point) is None


def test_first_refresh_covers_trip_so_far() -> None:
    trip = make_trip(actualStartTime=at(0), tripPath=[make_point(VIA_LAT, 10, fuel=55)])

    assert plan_fuel_refresh(trip, trip.latest_point) == FuelRequest(at(0), at(10))


def test_refresh_waits_for_the_interval() -> None:
    trip = make_trip(
        actualStartTime=at(0),
        fuelStatusUpdateTime=at(10),
        tripPath=[make_point(VIA_LAT, 69, fuel=55)],
    )
    assert plan_fuel_refresh(trip, trip.latest_point) is None

    trip.tripPath.append(make_point(VIA_LAT, 70, fuel=54))
    assert plan_fuel_refresh(trip, trip.latest_point) == FuelRequest(at(0), at(70))


def test_process_fuel_requests_refresh_for_live_trips_only() -> None:
    route = make_route()
    points = [make_point(VIA_LAT, 5, fuel=60)]

    live_ctx = make_context(make_trip(actualStartTime=at(0)), route, points)
    assert process_fuel(live_ctx)
    assert live_ctx.fuel_request == FuelRequest(at(0), at(5))

    backdated_ctx = make_context(make_trip(actualStartTime=at(0)), route, points, backdated=True)
    assert process_fuel(backdated_ctx)
    assert backdated_ctx.fuel_request is None


def test_apply_fuel_report_places_events_on_path() -> None:
    trip = make_trip(
        actualStartTime=at(0),
        tripPath=[make_point(VIA_LAT, 0), make_point(VIA_LAT + 0.01, 20)],
    )
    report = FuelReport(
        start_level=100,
        end_level=130,
        distance_km=60,
        consumption=20,
        efficiency=3.0,
        events=[{"eventType": "Filling", "eventTime": at(25), "volume": 50.0}],
    )
    changes = ChangeSet()

    apply_fuel_report(trip, report, at(30), changes)

    assert trip.fuelConsumption == 20
    assert trip.fuelEfficiency == 3.0
    assert trip.currentFuelLevel == 130
    assert trip.fuelStatusUpdateTime == at(30)
    [event] = trip.fuelEvents
    assert event.eventType == "Filling"
    assert event.volume == 50
    assert event.location == {"type": "Point", "coordinates": list(trip.tripPath[1].coordinates)}
    assert {"fuelConsumption", "fuelEvents", "fuelStatusUpdateTime"} <= changes.replaced


def test_apply_report_without_consumption_stores_zero() -> None:
    trip = make_trip(fuelConsumption=12.0, fuelEfficiency=4.0)
    report = FuelReport(
        start_level=40,
        end_level=45,
        distance_km=3,
        consumption=None,
        efficiency=None,
    )

    apply_fuel_report(trip, report, at(30), ChangeSet())

    assert trip.fuelConsumption == 0
    assert trip.fuelEfficiency == 0
    assert trip.fuelEvents == []


@pytest.mark.asyncio
async def test_fuel_outage_keeps_previous_figures(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def _unavailable(imei, time_from, time_to):
        raise TelemetryUnavailableError("Fuel API request failed", {"error": "timeout"})

    monkeypatch.setattr(live, "fetch_fuel_report", _unavailable)
    trip = make_trip(fuelConsumption=12.0)
    changes = ChangeSet()

    refreshed = await live.refresh_fuel(trip, FuelRequest(at(0), at(60)), changes)

    assert not refreshed
    assert trip.fuelConsumption == 12.0
    assert changes.is_empty()
    assert "Fuel status not refreshed" in caplog.text


@pytest.mark.asyncio
async def test_live_cycle_stores_fuel_status(
    monkeypatch: pytest.MonkeyPatch,
    repository: TripRepository,
    fake_redis: FakeRedis,
) -> None:
    requested = []

    async def _report(imei, time_from, time_to):
        requested.append((imei, time_from, time_to))
        return FuelReport(
            start_level=90,
            end_level=70,
            distance_km=40,
            consumption=20,
            efficiency=2.0,
            events=[{"eventType": "Theft", "eventTime": at(20), "volume": 3.0}],
        )

    monkeypatch.setattr(live, "fetch_fuel_report", _report)
    trip = await seed(repository, make_trip(tripStage=TripStage.ACTIVE, actualStartTime=at(0)))
    fake_redis.lists[f"{IMEI}:rawTripPath"] = [
        json.dumps(raw_fix(VIA_LAT, 20, fuel=72)),
        json.dumps(raw_fix(VIA_LAT + 0.002, 22, fuel=70)),
    ]

    await live.process_live_cycle(trip, repository)

    assert requested == [(IMEI, at(0), at(22))]
    doc = await repository.trips_collection.find_one({"tripId": "TRIP-1"})
    assert doc["fuelConsumption"] == 20
    assert doc["currentFuelLevel"] == 70
    assert doc["fuelEvents"][0]["eventType"] == "Theft"
    assert parse_timestamp(doc["fuelStatusUpdateTime"]) == at(22)
