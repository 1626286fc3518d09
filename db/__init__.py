"""Database package for MongoDB operations using Beanie ODM.

Modules:
    manager: DatabaseManager singleton for connection handling
    collections: Lazy collection proxies for raw Motor access
    models: Embedded schemas and Beanie Document models

Usage:
    from db import db_manager, trips_collection
    from db.models import Trip

    await db_manager.init_beanie()
    trip = await Trip.find_one(Trip.tripId == "T-100")
"""

from db.collections import (
    CollectionProxy,
    archived_trips_collection,
    get_collection,
    routes_collection,
    trip_logs_collection,
    trips_collection,
)
from db.manager import DatabaseManager, db_manager

__all__ = [
    # Manager
    "DatabaseManager",
    "db_manager",
    # Collections
    "CollectionProxy",
    "archived_trips_collection",
    "get_collection",
    "routes_collection",
    "trip_logs_collection",
    "trips_collection",
]
