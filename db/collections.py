"""Collection proxy and collection definitions module.

Provides CollectionProxy for lazy collection access and defines the
tracker's collection proxies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorCollection

from config import TRIP_LOG_COLLECTION
from db.manager import db_manager


class CollectionProxy:
    """Proxy that always resolves the current collection from the db manager.

    Collection references stay valid after the manager reconnects on a new
    event loop.

    Example:
        trips = CollectionProxy("trips")
        await trips.find_one({"tripId": trip_id})
    """

    def __init__(self, name: str) -> None:
        self._name = name

    @property
    def _collection(self) -> AsyncIOMotorCollection:
        return db_manager.get_collection(self._name)

    @property
    def name(self) -> str:
        return self._name

    def __getattr__(self, attr: str) -> Any:
        """Delegate attribute access to the underlying collection."""
        return getattr(self._collection, attr)

    def __repr__(self) -> str:
        return f"<CollectionProxy name={self._name}>"


def get_collection(name: str) -> CollectionProxy:
    return CollectionProxy(name)


# ============================================================================
# Application Collection Definitions
# ============================================================================

trips_collection = get_collection("trips")
routes_collection = get_collection("routes")
archived_trips_collection = get_collection("archived_trips")
trip_logs_collection = get_collection(TRIP_LOG_COLLECTION)
