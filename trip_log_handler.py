"""
Per-trip log persistence.

Records emitted through :func:`trip_logger` carry ``trip_id`` and
``device_imei``; :class:`TripLogHandler` copies those records into the
``trip_logs`` collection so a trip's processing history can be inspected
after the worker process is gone.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, Any

from pymongo.errors import PyMongoError

from config import TRIP_LOG_TTL_DAYS
from date_utils import get_current_utc_time

if TYPE_CHECKING:
    from db.models import TripRecord


class TripLoggerAdapter(logging.LoggerAdapter):
    """Stamps trip identity onto every record without clobbering call extras."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{self.extra['trip_id']}] {msg}", kwargs


def trip_logger(logger: logging.Logger, trip: TripRecord) -> TripLoggerAdapter:
    """Wrap a module logger so its records are attributed to ``trip``."""
    return TripLoggerAdapter(
        logger,
        {"trip_id": trip.tripId, "device_imei": trip.deviceImei},
    )


class TripLogHandler(logging.Handler):
    """Logging handler that writes trip-attributed records to MongoDB."""

    def __init__(self, collection: Any) -> None:
        """
        Args:
            collection: Async (motor-compatible) collection for log documents.
        """
        super().__init__()
        self.collection = collection
        self._pending: set[asyncio.Task] = set()
        self._setup_complete = False

    async def setup_indexes(self) -> None:
        """Create lookup and TTL indexes for the log collection."""
        if self._setup_complete:
            return
        try:
            await self.collection.create_index("trip_id")
            await self.collection.create_index(
                "timestamp",
                expireAfterSeconds=TRIP_LOG_TTL_DAYS * 24 * 60 * 60,
            )
            self._setup_complete = True
        except PyMongoError as e:
            print(f"Warning: Could not create trip log indexes: {e}", file=sys.stderr)

    def emit(self, record: logging.LogRecord) -> None:
        if getattr(record, "trip_id", None) is None:
            return
        try:
            entry = self._format_log_entry(record)
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: the worker is shutting down; the record still reaches stderr
            return
        except Exception:
            self.handleError(record)
            return
        task = loop.create_task(self._async_emit(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _async_emit(self, entry: dict[str, Any]) -> None:
        try:
            await self.collection.insert_one(entry)
        except PyMongoError as e:
            print(f"Warning: Could not persist trip log: {e}", file=sys.stderr)

    async def drain(self) -> None:
        """Wait for every scheduled insert to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def _format_log_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        entry = {
            "timestamp": get_current_utc_time(),
            "trip_id": record.trip_id,
            "device_imei": getattr(record, "device_imei", None),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return entry

    def formatException(self, exc_info: Any) -> str:
        return logging.Formatter().formatException(exc_info)
