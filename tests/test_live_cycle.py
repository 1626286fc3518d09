from __future__ import annotations

import json

import pytest

from config import ACTIVE_TRIP_IMEIS_KEY
from core.exceptions import ProcessingStepError
from db.models import TripStage
from redis_fakes import FakeRedis
from tasks.live import drop_already_processed, process_live_cycle, run_live_trip
from trip_factories import (
    END_LAT,
    START_LAT,
    VIA_LAT,
    at,
    make_point,
    make_trip,
    raw_fix,
    seed,
)
from trip_repository import TripRepository

IMEI = "860000000000001"


def _buffer(fake_redis: FakeRedis, *fixes) -> None:
    fake_redis.lists[f"{IMEI}:rawTripPath"] = [json.dumps(f) for f in fixes]


def _latest(fake_redis: FakeRedis, lat: float, minutes: float) -> None:
    fix = raw_fix(lat, minutes)
    fake_redis.strings.update({f"{IMEI}:{k}": str(fix[k]) for k in ("lat", "lng", "dt_tracker")})


def test_drop_already_processed() -> None:
    trip = make_trip(tripPath=[make_point(VIA_LAT, 5)])
    points = [make_point(VIA_LAT, 3), make_point(VIA_LAT, 5), make_point(VIA_LAT, 6)]

    assert drop_already_processed(trip, points) == points[2:]
    assert drop_already_processed(make_trip(), points) == points


@pytest.mark.asyncio
async def test_active_trip_drains_buffer_and_persists(
    repository: TripRepository,
    fake_redis: FakeRedis,
) -> None:
    trip = await seed(repository, make_trip(tripStage=TripStage.ACTIVE, actualStartTime=at(0)))
    _buffer(fake_redis, raw_fix(VIA_LAT, 20), raw_fix(0, 21, lng=0), raw_fix(VIA_LAT + 0.002, 22))

    ctx = await process_live_cycle(trip, repository)

    assert ctx is not None
    assert f"{IMEI}:rawTripPath" not in fake_redis.lists
    doc = await repository.trips_collection.find_one({"tripId": "TRIP-1"})
    assert len(doc["tripPath"]) == 2
    assert doc["pathPoints"] == {"fromIndex": 0, "toIndex": 1}
    assert doc["activeStatus"] == "Running On Route"


@pytest.mark.asyncio
async def test_planned_trip_uses_latest_fix_and_joins_active_set(
    repository: TripRepository,
    fake_redis: FakeRedis,
) -> None:
    trip = await seed(repository)
    _latest(fake_redis, START_LAT, 10)

    await process_live_cycle(trip, repository)

    doc = await repository.trips_collection.find_one({"tripId": "TRIP-1"})
    assert doc["tripStage"] == "Active"
    assert doc["activeStatus"] == "Reached Start Location"
    assert fake_redis.sets[ACTIVE_TRIP_IMEIS_KEY] == {IMEI}


@pytest.mark.asyncio
async def test_completed_cycle_archives_and_leaves_active_set(
    repository: TripRepository,
    fake_redis: FakeRedis,
) -> None:
    trip = await seed(
        repository,
        make_trip(tripStage=TripStage.ACTIVE, actualStartTime=at(0), tripPath=[make_point(VIA_LAT, 30)]),
    )
    fake_redis.sets[ACTIVE_TRIP_IMEIS_KEY] = {IMEI}
    _buffer(fake_redis, raw_fix(END_LAT - 0.001, 60), raw_fix(END_LAT, 61))

    await process_live_cycle(trip, repository)

    assert fake_redis.sets[ACTIVE_TRIP_IMEIS_KEY] == set()
    archived = await repository.archive_collection.find_one({"tripId": "TRIP-1"})
    assert archived["tripStage"] == "Completed"
    assert len(archived["tripPath"]) == 3
    live = await repository.trips_collection.find_one({"tripId": "TRIP-1"})
    assert "tripPath" not in live
    assert live["endReason"] == "Reached End Location"


@pytest.mark.asyncio
async def test_terminal_trip_is_skipped(repository: TripRepository, fake_redis: FakeRedis) -> None:
    trip = make_trip(tripStage=TripStage.CANCELLED)
    _latest(fake_redis, START_LAT, 10)

    assert await process_live_cycle(trip, repository) is None


@pytest.mark.asyncio
async def test_no_new_points_is_a_no_op(repository: TripRepository, fake_redis: FakeRedis) -> None:
    trip = await seed(repository, make_trip(tripPath=[make_point(START_LAT, 10)]))
    _latest(fake_redis, START_LAT, 10)

    assert await process_live_cycle(trip, repository) is None
    active = make_trip(tripId="TRIP-2", tripStage=TripStage.ACTIVE)
    assert await process_live_cycle(active, repository) is None


@pytest.mark.asyncio
async def test_step_failure_persists_nothing(repository: TripRepository, fake_redis: FakeRedis) -> None:
    trip = await seed(repository, make_trip(plannedStartTime=None))
    _latest(fake_redis, START_LAT, 10)

    with pytest.raises(ProcessingStepError):
        await process_live_cycle(trip, repository)

    doc = await repository.trips_collection.find_one({"tripId": "TRIP-1"})
    assert doc["tripPath"] == []


@pytest.mark.asyncio
async def test_run_live_trip_skips_backdated(repository: TripRepository, fake_redis: FakeRedis) -> None:
    await seed(repository, make_trip(backDated=True))
    _latest(fake_redis, START_LAT, 10)

    trip = await run_live_trip("TRIP-1", repository)

    assert trip.backDated is True
    doc = await repository.trips_collection.find_one({"tripId": "TRIP-1"})
    assert doc["tripPath"] == []
