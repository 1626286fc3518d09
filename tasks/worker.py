#!/usr/bin/env python3
"""Per-trip worker process.

Usage:
    python -m tasks.worker <tripId>

Processes exactly one trip and exits. Exit codes:
    0  success (including "nothing to do")
    1  retryable failure (telemetry, persistence or step failure)
    2  fatal trip invariant violation
    3  trip not found
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from enum import IntEnum

from aiohttp import ClientError
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from config import LOG_FORMAT, LOG_LEVEL
from core.exceptions import ResourceNotFoundError, TripInvariantError, TripTrackerError
from core.http import cleanup_session
from core.redis import close_shared_redis
from db import db_manager, trip_logs_collection
from tasks.backdated import run_backdated_trip
from tasks.live import process_live_cycle
from trip_log_handler import TripLogHandler
from trip_repository import TripRepository

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    OK = 0
    RETRYABLE = 1
    INVARIANT = 2
    NOT_FOUND = 3


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process one trip and exit.")
    parser.add_argument("trip_id", help="Trip identifier (tripId)")
    return parser.parse_args(argv)


async def process_trip(trip_id: str, repository: TripRepository | None = None) -> ExitCode:
    """Run the live or backdated path for one trip and map errors to exit codes."""
    repository = repository or TripRepository()
    try:
        trip = await repository.load_trip(trip_id)
        if trip.backDated:
            await run_backdated_trip(trip_id, repository)
        else:
            await process_live_cycle(trip, repository)
    except ResourceNotFoundError:
        logger.error("Trip %s not found. Exiting.", trip_id)
        return ExitCode.NOT_FOUND
    except TripInvariantError as e:
        logger.critical("Trip %s invariant violated: %s %s", trip_id, e.message, e.details)
        return ExitCode.INVARIANT
    except (TripTrackerError, PyMongoError, RedisError, ClientError, asyncio.TimeoutError):
        logger.exception("Error processing trip %s", trip_id)
        return ExitCode.RETRYABLE
    logger.info("Trip %s processing completed", trip_id)
    return ExitCode.OK


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

    handler = TripLogHandler(trip_logs_collection)
    root_logger = logging.getLogger()
    try:
        await db_manager.init_beanie()
        await handler.setup_indexes()
        handler.setLevel(logging.INFO)
        root_logger.addHandler(handler)
        return int(await process_trip(args.trip_id))
    except PyMongoError:
        logger.exception("Database unavailable for trip %s", args.trip_id)
        return int(ExitCode.RETRYABLE)
    finally:
        await handler.drain()
        root_logger.removeHandler(handler)
        handler.close()
        await cleanup_session()
        await close_shared_redis()
        await db_manager.cleanup_connections()


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
