"""Redis-backed live telemetry buffer and trip membership keys.

Upstream ingestion appends raw fixes to ``{imei}:rawTripPath`` for devices in
the ``activeTripImeis`` set and keeps the latest scalar fix in
``{imei}:lat``, ``{imei}:lng`` and ``{imei}:dt_tracker`` for every device.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from config import ACTIVE_TRIP_IMEIS_KEY, BACKDATED_TRIPS_KEY
from core.redis import get_shared_redis
from core.retry import REDIS_RETRY_EXCEPTIONS, retry_async

logger = logging.getLogger(__name__)

LATEST_FIX_FIELDS = ("lat", "lng", "dt_tracker", "speed", "acc")


def _raw_path_key(imei: str) -> str:
    return f"{imei}:rawTripPath"


def _decode_fix(entry: str) -> dict[str, Any] | None:
    try:
        fix = json.loads(entry)
    except (TypeError, json.JSONDecodeError):
        return None
    return fix if isinstance(fix, dict) else None


@retry_async(retry_exceptions=REDIS_RETRY_EXCEPTIONS)
async def drain_raw_path(imei: str) -> list[dict[str, Any]]:
    """
    Read every buffered fix for ``imei`` and clear the buffer atomically.

    Entries that are not JSON objects are dropped with a warning.
    """
    client = await get_shared_redis()
    key = _raw_path_key(imei)
    pipe = client.pipeline(transaction=True)
    pipe.lrange(key, 0, -1)
    pipe.delete(key)
    entries, _ = await pipe.execute()

    fixes: list[dict[str, Any]] = []
    undecodable = 0
    for entry in entries or []:
        fix = _decode_fix(entry)
        if fix is None:
            undecodable += 1
        else:
            fixes.append(fix)
    if undecodable:
        logger.warning(
            "Dropped %d undecodable entries from %s",
            undecodable,
            key,
        )
    return fixes


@retry_async(retry_exceptions=REDIS_RETRY_EXCEPTIONS)
async def get_latest_fix(imei: str) -> dict[str, Any] | None:
    """Latest scalar fix for a device, or None when no position is known."""
    client = await get_shared_redis()
    values = await client.mget([f"{imei}:{name}" for name in LATEST_FIX_FIELDS])
    fix = {
        name: value
        for name, value in zip(LATEST_FIX_FIELDS, values)
        if value is not None
    }
    if not all(name in fix for name in ("lat", "lng", "dt_tracker")):
        return None
    return fix


@retry_async(retry_exceptions=REDIS_RETRY_EXCEPTIONS)
async def add_active_imei(imei: str) -> None:
    client = await get_shared_redis()
    await client.sadd(ACTIVE_TRIP_IMEIS_KEY, imei)
    logger.info("Device %s added to %s", imei, ACTIVE_TRIP_IMEIS_KEY)


@retry_async(retry_exceptions=REDIS_RETRY_EXCEPTIONS)
async def remove_active_imei(imei: str) -> None:
    client = await get_shared_redis()
    await client.srem(ACTIVE_TRIP_IMEIS_KEY, imei)
    logger.info("Device %s removed from %s", imei, ACTIVE_TRIP_IMEIS_KEY)


@retry_async(retry_exceptions=REDIS_RETRY_EXCEPTIONS)
async def pop_backdated_trip_ids(limit: int) -> list[str]:
    """Pop up to ``limit`` trip ids from the backdated queue."""
    client = await get_shared_redis()
    popped = await client.lpop(BACKDATED_TRIPS_KEY, limit)
    if not popped:
        return []
    if isinstance(popped, str):
        return [popped]
    return list(popped)


@retry_async(retry_exceptions=REDIS_RETRY_EXCEPTIONS)
async def push_backdated_trip_id(trip_id: str) -> None:
    """Return a trip id to the tail of the backdated queue."""
    client = await get_shared_redis()
    await client.rpush(BACKDATED_TRIPS_KEY, trip_id)
