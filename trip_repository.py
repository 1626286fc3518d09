"""Trip Repository Module.

This module provides the TripRepository class that handles all database
persistence for trips: loading a trip and its route, writing the fields a
processing cycle changed, and archiving completed trips.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from core.exceptions import PersistenceError, ResourceNotFoundError, RouteDataError
from core.retry import MONGO_RETRY_EXCEPTIONS, retry_async
from date_utils import get_current_utc_time
from db import archived_trips_collection, routes_collection, trips_collection
from db.models import RouteRecord, TripRecord
from trip_processor.context import ChangeSet
from trip_processor.state import PROCESSABLE_STAGES

logger = logging.getLogger(__name__)

# Identity fields set at trip creation; never rewritten by the engine.
STATIC_FIELDS = frozenset(
    {
        "tripId",
        "deviceImei",
        "route",
        "plannedStartTime",
        "tripName",
        "truckRegistrationNumber",
    },
)

# Fields kept on the live record once a trip has been archived.
RETAIN_FIELDS = (
    "tripId",
    "tripName",
    "deviceImei",
    "truckRegistrationNumber",
    "route",
    "plannedStartTime",
    "actualStartTime",
    "actualEndTime",
    "endReason",
    "tripStage",
    "activeStatus",
    "backDated",
    "truckRunDistance",
    "fuelConsumption",
    "fuelEfficiency",
    "distanceCovered",
    "averageSpeed",
    "topSpeed",
    "runDuration",
    "parkedDuration",
    "archivedAt",
)


class TripRepository:
    """Repository for trip database operations.

    Works on raw Motor collections so it can be pointed at any
    motor-compatible collection in tests.
    """

    def __init__(
        self,
        trips_col=None,
        routes_col=None,
        archive_col=None,
    ):
        """Initialize the repository with optional custom collections.

        Args:
            trips_col: Optional custom trips collection (for testing)
            routes_col: Optional custom routes collection (for testing)
            archive_col: Optional custom archived trips collection (for testing)
        """
        self.trips_collection = trips_col if trips_col is not None else trips_collection
        self.routes_collection = (
            routes_col if routes_col is not None else routes_collection
        )
        self.archive_collection = (
            archive_col if archive_col is not None else archived_trips_collection
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_trip(self, trip_id: str) -> TripRecord:
        """Fetch and validate a trip.

        Raises:
            ResourceNotFoundError: No trip has this id.
        """
        doc = await self.trips_collection.find_one({"tripId": trip_id})
        if doc is None:
            msg = f"Trip {trip_id} not found"
            raise ResourceNotFoundError(msg, {"tripId": trip_id})
        return TripRecord.model_validate(doc)

    async def load_route(self, trip: TripRecord) -> RouteRecord:
        """Fetch and validate the trip's route.

        Raises:
            RouteDataError: The route is missing or malformed.
        """
        if trip.route is None:
            msg = "Trip has no route"
            raise RouteDataError(msg, {"tripId": trip.tripId})
        doc = await self.routes_collection.find_one({"_id": trip.route})
        if doc is None:
            msg = f"Route {trip.route} not found"
            raise RouteDataError(msg, {"tripId": trip.tripId})
        try:
            return RouteRecord.model_validate(doc)
        except PydanticValidationError as e:
            msg = f"Route {trip.route} is malformed: {e.error_count()} errors"
            raise RouteDataError(msg, {"tripId": trip.tripId}) from e

    async def find_live_trip_ids(self, limit: int) -> list[str]:
        """Ids of non-backdated trips still in a processable stage."""
        cursor = self.trips_collection.find(
            {
                "tripStage": {"$in": [stage.value for stage in PROCESSABLE_STAGES]},
                "backDated": {"$ne": True},
            },
            projection={"tripId": 1},
        )
        docs = await cursor.to_list(length=limit)
        return [doc["tripId"] for doc in docs]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def build_update(trip: TripRecord, changes: ChangeSet) -> dict[str, Any]:
        """Turn a change record into a Mongo update document.

        Replaced fields go into ``$set``; appended fields push only their
        new tail. Static identity fields are never written.
        """
        data = trip.model_dump(mode="python")
        update: dict[str, Any] = {}

        to_set = {
            name: data[name]
            for name in sorted(changes.replaced)
            if name in data and name not in STATIC_FIELDS
        }
        if to_set:
            update["$set"] = to_set

        to_push = {
            name: {"$each": data[name][start:]}
            for name, start in sorted(changes.push_fields().items())
            if name in data and name not in STATIC_FIELDS and data[name][start:]
        }
        if to_push:
            update["$push"] = to_push
        return update

    @retry_async(retry_exceptions=MONGO_RETRY_EXCEPTIONS)
    async def _update_trip(self, trip_id: str, update: dict[str, Any]) -> None:
        await self.trips_collection.update_one({"tripId": trip_id}, update)

    async def persist(self, trip: TripRecord, changes: ChangeSet) -> bool:
        """Write the fields changed during a cycle.

        Returns:
            True if anything was written.

        Raises:
            PersistenceError: The write failed after retries.
        """
        update = self.build_update(trip, changes)
        if not update:
            logger.debug("Trip %s: nothing to persist", trip.tripId)
            return False
        try:
            await self._update_trip(trip.tripId, update)
        except PyMongoError as e:
            msg = f"Failed to persist trip {trip.tripId}: {e}"
            raise PersistenceError(msg, {"tripId": trip.tripId}) from e
        logger.debug(
            "Trip %s: persisted %s",
            trip.tripId,
            ", ".join(sorted({k for op in update.values() for k in op})),
        )
        return True

    async def mark_live(self, trip: TripRecord) -> None:
        """Hand a historical trip over to live processing."""
        trip.backDated = False
        changes = ChangeSet()
        changes.touch("backDated")
        await self.persist(trip, changes)
        logger.info("Trip %s converted to a live trip", trip.tripId)

    async def finish_trip(self, trip_id: str) -> bool:
        """Archive a completed trip and truncate its live record.

        The full document is copied into the archive first, so a failure
        part-way leaves the live record intact and the call can be repeated.

        Returns:
            True if the trip was archived, False if it no longer exists.

        Raises:
            PersistenceError: Either write failed.
        """
        try:
            doc = await self.trips_collection.find_one({"tripId": trip_id})
            if doc is None:
                logger.warning("Trip %s not found for archiving", trip_id)
                return False
            if doc.get("archivedAt") is not None:
                logger.info("Trip %s already archived", trip_id)
                return True

            archived_at = get_current_utc_time()
            archive_doc = {k: v for k, v in doc.items() if k != "_id"}
            archive_doc["archivedAt"] = archived_at
            await self.archive_collection.replace_one(
                {"tripId": trip_id},
                archive_doc,
                upsert=True,
            )

            retained = {k: doc[k] for k in RETAIN_FIELDS if k in doc}
            retained["archivedAt"] = archived_at
            await self.trips_collection.replace_one({"_id": doc["_id"]}, retained)
        except PyMongoError as e:
            msg = f"Failed to archive trip {trip_id}: {e}"
            raise PersistenceError(msg, {"tripId": trip_id}) from e

        logger.info("Trip %s archived and live record truncated", trip_id)
        return True
