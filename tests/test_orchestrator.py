from __future__ import annotations

import asyncio

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from config import BACKDATED_TRIPS_KEY
from redis_fakes import FakeRedis
from tasks.orchestrator import QueuedTrip, TripRunner

HANG = "hang"


class FakeProcess:
    def __init__(self, trip_id: str) -> None:
        self.trip_id = trip_id
        self.returncode: int | None = None
        self.killed = False
        self._done = asyncio.Event()

    def finish(self, code: int = 0) -> None:
        self.returncode = code
        self._done.set()

    async def wait(self) -> int | None:
        await self._done.wait()
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.finish(-9)


class FakeSpawner:
    """Hands out fake worker processes.

    ``script`` maps a trip id to the outcomes of its successive launches:
    an int exits immediately with that code, ``HANG`` never exits. Trips
    without a script stay running until the test finishes them.
    """

    def __init__(self, script: dict[str, list] | None = None) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.spawned: list[str] = []
        self.processes: dict[str, FakeProcess] = {}

    async def __call__(self, trip_id: str) -> FakeProcess:
        self.spawned.append(trip_id)
        process = FakeProcess(trip_id)
        self.processes[trip_id] = process
        outcomes = self.script.get(trip_id)
        if outcomes:
            outcome = outcomes.pop(0)
            if outcome != HANG:
                process.finish(outcome)
        return process


class StubRepository:
    def __init__(self, live_ids=None, error: Exception | None = None) -> None:
        self.live_ids = live_ids or []
        self.error = error

    async def find_live_trip_ids(self, limit: int) -> list[str]:
        if self.error is not None:
            raise self.error
        return self.live_ids[:limit]


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _runner(spawner: FakeSpawner, **kwargs) -> TripRunner:
    kwargs.setdefault("repository", StubRepository())
    kwargs.setdefault("retry_delay", 0)
    return TripRunner(spawn=spawner, **kwargs)


@pytest.mark.asyncio
async def test_concurrency_ceiling_holds_until_a_worker_exits() -> None:
    spawner = FakeSpawner()
    runner = _runner(spawner, max_concurrent=2)
    for i in range(5):
        runner.enqueue(QueuedTrip(f"trip-{i}"))

    assert runner.launch_pending() == 2
    await settle()
    assert spawner.spawned == ["trip-0", "trip-1"]
    assert runner.available_slots == 0

    spawner.processes["trip-0"].finish(0)
    await settle()

    assert spawner.spawned == ["trip-0", "trip-1", "trip-2"]
    assert set(runner.active) == {"trip-1", "trip-2"}
    assert [item.trip_id for item in runner.pending_live] == ["trip-3", "trip-4"]

    await runner.shutdown()


@pytest.mark.asyncio
async def test_backdated_trips_launch_first() -> None:
    spawner = FakeSpawner({"live-a": [0], "live-b": [0], "old-c": [0]})
    runner = _runner(spawner, max_concurrent=1)
    runner.enqueue(QueuedTrip("live-a"))
    runner.enqueue(QueuedTrip("live-b"))
    runner.enqueue(QueuedTrip("old-c", backdated=True))

    runner.launch_pending()
    await runner.wait_idle()

    assert spawner.spawned == ["old-c", "live-a", "live-b"]


@pytest.mark.asyncio
async def test_queued_or_running_trip_is_not_enqueued_twice() -> None:
    spawner = FakeSpawner()
    runner = _runner(spawner, max_concurrent=1)

    assert runner.enqueue(QueuedTrip("t1"))
    assert not runner.enqueue(QueuedTrip("t1", backdated=True))
    runner.launch_pending()
    await settle()
    assert not runner.enqueue(QueuedTrip("t1"))

    await runner.shutdown()


@pytest.mark.asyncio
async def test_timed_out_worker_is_killed_and_retried() -> None:
    spawner = FakeSpawner({"slow": [HANG, 0]})
    runner = _runner(spawner, max_concurrent=1, process_timeout=0.05, max_retries=2)
    runner.enqueue(QueuedTrip("slow"))

    runner.launch_pending()
    await runner.wait_idle()

    assert spawner.spawned == ["slow", "slow"]
    assert not runner.active


@pytest.mark.asyncio
async def test_failed_worker_retries_then_gives_up() -> None:
    spawner = FakeSpawner({"bad": [1, 1, 1, 1, 1]})
    runner = _runner(spawner, max_concurrent=1, max_retries=2)
    runner.enqueue(QueuedTrip("bad"))

    runner.launch_pending()
    await runner.wait_idle()

    assert spawner.spawned == ["bad"] * 3


@pytest.mark.asyncio
async def test_exhausted_backdated_trip_returns_to_queue(fake_redis: FakeRedis) -> None:
    spawner = FakeSpawner({"old": [1, 1]})
    runner = _runner(spawner, max_concurrent=1, max_retries=1)
    runner.enqueue(QueuedTrip("old", backdated=True))

    runner.launch_pending()
    await runner.wait_idle()

    assert spawner.spawned == ["old", "old"]
    assert fake_redis.lists[BACKDATED_TRIPS_KEY] == ["old"]


@pytest.mark.asyncio
async def test_spawn_failure_counts_as_failed_run() -> None:
    attempts = 0

    async def broken_spawn(trip_id: str):
        nonlocal attempts
        attempts += 1
        raise OSError("no python")

    runner = TripRunner(
        spawn=broken_spawn,
        repository=StubRepository(),
        max_concurrent=1,
        max_retries=1,
        retry_delay=0,
    )
    runner.enqueue(QueuedTrip("t1"))

    runner.launch_pending()
    await runner.wait_idle()

    assert attempts == 2


@pytest.mark.asyncio
async def test_refill_reads_both_sources(fake_redis: FakeRedis) -> None:
    fake_redis.lists[BACKDATED_TRIPS_KEY] = ["old-1", "old-2"]
    spawner = FakeSpawner()
    runner = _runner(
        spawner,
        max_concurrent=0,
        repository=StubRepository(["live-1", "old-1", "live-2"]),
    )

    await runner.refill()

    assert [i.trip_id for i in runner.pending_backdated] == ["old-1", "old-2"]
    assert [i.trip_id for i in runner.pending_live] == ["live-1", "live-2"]
    assert BACKDATED_TRIPS_KEY not in fake_redis.lists or not fake_redis.lists[BACKDATED_TRIPS_KEY]


@pytest.mark.asyncio
async def test_refill_survives_database_errors(fake_redis: FakeRedis) -> None:
    fake_redis.lists[BACKDATED_TRIPS_KEY] = ["old-1"]
    runner = _runner(
        FakeSpawner(),
        max_concurrent=0,
        repository=StubRepository(error=ServerSelectionTimeoutError("down")),
    )

    await runner.refill()

    assert [i.trip_id for i in runner.pending_backdated] == ["old-1"]
    assert not runner.pending_live


@pytest.mark.asyncio
async def test_shutdown_kills_running_workers() -> None:
    spawner = FakeSpawner()
    runner = _runner(spawner, max_concurrent=2)
    runner.enqueue(QueuedTrip("t1"))
    runner.enqueue(QueuedTrip("t2"))
    runner.launch_pending()
    await settle()

    await runner.shutdown()

    assert all(p.killed for p in spawner.processes.values())
    assert not runner.active
    assert spawner.spawned == ["t1", "t2"]


@pytest.mark.asyncio
async def test_run_refills_and_stops_gracefully(fake_redis: FakeRedis) -> None:
    spawner = FakeSpawner({"live-1": [0]})
    runner = _runner(
        spawner,
        max_concurrent=2,
        run_interval=3600,
        monitor_interval=0.01,
        repository=StubRepository(["live-1"]),
    )

    task = asyncio.create_task(runner.run())
    await asyncio.sleep(0.05)
    runner.stop()
    await asyncio.wait_for(task, timeout=1)

    assert spawner.spawned == ["live-1"]
    assert not runner.active
