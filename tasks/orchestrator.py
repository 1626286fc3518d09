#!/usr/bin/env python3
"""Trip runner: bounded-concurrency scheduling of per-trip worker processes.

Usage:
    python -m tasks.orchestrator

Every run interval the runner refills two queues, backdated trips from
the Redis ``backdatedTrips`` list and live trips from MongoDB, and launches
one ``tasks.worker`` process per free slot, backdated trips first. A
worker that exits non-zero or times out is requeued with exponential
backoff until its retries are exhausted.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from config import (
    BACKDATED_BATCH_SIZE,
    LIVE_TRIP_BATCH_SIZE,
    LOG_FORMAT,
    LOG_LEVEL,
    MAX_CONCURRENT_TRIPS,
    MONITOR_INTERVAL_SECONDS,
    PROCESS_TIMEOUT_SECONDS,
    RUN_INTERVAL_SECONDS,
    WORKER_MAX_RETRIES,
    WORKER_RETRY_DELAY_SECONDS,
)
from core.redis import close_shared_redis
from db import db_manager
from telemetry import live_buffer
from trip_repository import TripRepository

logger = logging.getLogger(__name__)

SpawnFn = Callable[[str], Awaitable[Any]]


@dataclass
class QueuedTrip:
    trip_id: str
    backdated: bool = False
    attempt: int = 0


async def spawn_worker(trip_id: str) -> asyncio.subprocess.Process:
    """Start ``python -m tasks.worker <trip_id>`` as an isolated process."""
    return await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "tasks.worker",
        trip_id,
    )


class TripRunner:
    """
    Runs per-trip workers with a fixed concurrency ceiling.

    ``spawn`` returns a process-like object exposing ``wait()``, ``kill()``
    and ``returncode``; it defaults to :func:`spawn_worker`.
    """

    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_TRIPS,
        process_timeout: float = PROCESS_TIMEOUT_SECONDS,
        max_retries: int = WORKER_MAX_RETRIES,
        retry_delay: float = WORKER_RETRY_DELAY_SECONDS,
        run_interval: float = RUN_INTERVAL_SECONDS,
        monitor_interval: float = MONITOR_INTERVAL_SECONDS,
        spawn: SpawnFn | None = None,
        repository: TripRepository | None = None,
    ) -> None:
        self.max_concurrent = max_concurrent
        self.process_timeout = process_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.run_interval = run_interval
        self.monitor_interval = monitor_interval
        self._spawn = spawn or spawn_worker
        self._repository = repository

        self.pending_backdated: deque[QueuedTrip] = deque()
        self.pending_live: deque[QueuedTrip] = deque()
        self.active: dict[str, asyncio.Task] = {}
        self._processes: dict[str, Any] = {}
        self._retry_tasks: set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()

    @property
    def repository(self) -> TripRepository:
        if self._repository is None:
            self._repository = TripRepository()
        return self._repository

    @property
    def available_slots(self) -> int:
        return max(0, self.max_concurrent - len(self.active))

    def _is_known(self, trip_id: str) -> bool:
        if trip_id in self.active:
            return True
        return any(
            item.trip_id == trip_id
            for item in (*self.pending_backdated, *self.pending_live)
        )

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def enqueue(self, item: QueuedTrip) -> bool:
        """Queue a trip unless it is already queued or running."""
        if self._is_known(item.trip_id):
            logger.debug("Trip %s already queued or active, skipping", item.trip_id)
            return False
        queue = self.pending_backdated if item.backdated else self.pending_live
        queue.append(item)
        return True

    def launch_pending(self) -> int:
        """Launch queued trips into free slots, backdated first."""
        launched = 0
        while self.available_slots > 0 and not self._stop_event.is_set():
            if self.pending_backdated:
                item = self.pending_backdated.popleft()
            elif self.pending_live:
                item = self.pending_live.popleft()
            else:
                break
            if item.trip_id in self.active:
                logger.info("Trip %s already being processed, skipping", item.trip_id)
                continue
            self.active[item.trip_id] = asyncio.create_task(
                self._run_worker(item),
                name=f"trip-worker-{item.trip_id}",
            )
            launched += 1
        if launched:
            logger.info(
                "Launched %d trips (%d/%d processes active)",
                launched,
                len(self.active),
                self.max_concurrent,
            )
        return launched

    async def refill(self) -> None:
        """Refill both queues from the backdated list and the trips collection."""
        try:
            backdated_ids = await live_buffer.pop_backdated_trip_ids(BACKDATED_BATCH_SIZE)
        except RedisError:
            logger.exception("Could not read backdated trip queue")
            backdated_ids = []
        for trip_id in backdated_ids:
            self.enqueue(QueuedTrip(trip_id, backdated=True))

        try:
            live_ids = await self.repository.find_live_trip_ids(LIVE_TRIP_BATCH_SIZE)
        except PyMongoError:
            logger.exception("Could not load live trips")
            live_ids = []
        for trip_id in live_ids:
            self.enqueue(QueuedTrip(trip_id))

        logger.info(
            "Queued %d backdated and %d live trips",
            len(self.pending_backdated),
            len(self.pending_live),
        )
        self.launch_pending()

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _wait_for_exit(self, trip_id: str, process: Any) -> int | None:
        try:
            return await asyncio.wait_for(process.wait(), timeout=self.process_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Process timeout for trip %s after %.0f seconds, killing",
                trip_id,
                self.process_timeout,
            )
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            return None

    async def _run_worker(self, item: QueuedTrip) -> None:
        code: int | None = None
        try:
            logger.info("Launching processor for trip %s", item.trip_id)
            process = await self._spawn(item.trip_id)
            self._processes[item.trip_id] = process
            code = await self._wait_for_exit(item.trip_id, process)
            logger.info("Trip %s process exited with code %s", item.trip_id, code)
        except OSError:
            logger.exception("Could not launch worker for trip %s", item.trip_id)
        finally:
            self._processes.pop(item.trip_id, None)
            self.active.pop(item.trip_id, None)

        if code != 0 and not self._stop_event.is_set():
            await self._handle_failure(item)
        self.launch_pending()

    async def _handle_failure(self, item: QueuedTrip) -> None:
        if item.attempt >= self.max_retries:
            logger.error(
                "Max retries (%d) reached for trip %s, giving up for this cycle",
                self.max_retries,
                item.trip_id,
            )
            if item.backdated:
                try:
                    await live_buffer.push_backdated_trip_id(item.trip_id)
                except RedisError:
                    logger.exception("Could not requeue backdated trip %s", item.trip_id)
            return

        delay = self.retry_delay * (2**item.attempt)
        retry_item = QueuedTrip(item.trip_id, item.backdated, item.attempt + 1)
        logger.info(
            "Retrying trip %s in %.1fs (attempt %d/%d)",
            item.trip_id,
            delay,
            retry_item.attempt,
            self.max_retries,
        )
        task = asyncio.create_task(self._requeue_after(retry_item, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue_after(self, item: QueuedTrip, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.enqueue(item):
            self.launch_pending()

    async def wait_idle(self) -> None:
        """Wait until no worker is running and no retry is pending."""
        while self.active or self._retry_tasks:
            await asyncio.gather(
                *self.active.values(),
                *self._retry_tasks,
                return_exceptions=True,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self) -> None:
        if not self._stop_event.is_set():
            logger.info("Stop requested, initiating graceful shutdown...")
            self._stop_event.set()

    async def run(self) -> None:
        """Refill every run interval and fill free slots every monitor interval."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.stop)

        logger.info(
            "TripRunner started with max %d concurrent processes",
            self.max_concurrent,
        )
        next_refill = loop.time()
        try:
            while not self._stop_event.is_set():
                if loop.time() >= next_refill:
                    await self.refill()
                    next_refill = loop.time() + self.run_interval
                else:
                    self.launch_pending()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.monitor_interval,
                    )
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Cancel pending retries and terminate running workers."""
        self._stop_event.set()
        for task in list(self._retry_tasks):
            task.cancel()
        for trip_id, process in list(self._processes.items()):
            if getattr(process, "returncode", None) is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                logger.info("Killed process for trip %s", trip_id)
        await asyncio.gather(
            *self.active.values(),
            *self._retry_tasks,
            return_exceptions=True,
        )
        logger.info("TripRunner stopped")


async def main() -> int:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    runner = TripRunner()
    try:
        await runner.run()
    finally:
        await close_shared_redis()
        await db_manager.cleanup_connections()
    return 0


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
