"""
Database connection manager module.

Provides a singleton DatabaseManager class for the MongoDB client used by
workers and the orchestrator, with event loop handling and Beanie setup.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import UTC
from typing import Any, Final, Self

import certifi
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)

from config import MONGODB_DATABASE

logger = logging.getLogger(__name__)

DEFAULT_MONGO_URI: Final[str] = "mongodb://localhost:27017"
MONGODB_URI_ENV_VAR: Final[str] = "MONGODB_URI"


def _get_mongo_uri() -> str:
    return os.getenv(MONGODB_URI_ENV_VAR, "").strip() or DEFAULT_MONGO_URI


class DatabaseManager:
    """
    Singleton class to manage the MongoDB client and database connection.

    Each worker process owns one client. The client is rebuilt when the
    running event loop changes, since Motor clients are loop-bound.

    Environment Variables:
        MONGODB_URI: MongoDB URI (default: mongodb://localhost:27017)
        MONGODB_DATABASE: Database name (default: trip_tracker)
        MONGODB_MAX_POOL_SIZE: Connection pool size (default: 20)
        MONGODB_SERVER_SELECTION_TIMEOUT_MS: Server selection timeout (default: 10000)
        MONGODB_SOCKET_TIMEOUT_MS: Socket timeout (default: 30000)
    """

    _instance: DatabaseManager | None = None
    _lock = threading.Lock()

    def __new__(cls) -> Self:
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if not getattr(self, "_initialized", False):
            self._client: AsyncIOMotorClient | None = None
            self._db: AsyncIOMotorDatabase | None = None
            self._bound_loop: asyncio.AbstractEventLoop | None = None
            self._beanie_initialized = False
            self._initialized = True

            self._max_pool_size = int(os.getenv("MONGODB_MAX_POOL_SIZE", "20"))
            self._server_selection_timeout_ms = int(
                os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "10000"),
            )
            self._socket_timeout_ms = int(
                os.getenv("MONGODB_SOCKET_TIMEOUT_MS", "30000"),
            )
            self._db_name = MONGODB_DATABASE

    def _client_kwargs(self, mongo_uri: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "tz_aware": True,
            "tzinfo": UTC,
            "maxPoolSize": self._max_pool_size,
            "minPoolSize": 0,
            "serverSelectionTimeoutMS": self._server_selection_timeout_ms,
            "socketTimeoutMS": self._socket_timeout_ms,
            "retryWrites": True,
            "retryReads": True,
            "appname": "TripTracker",
        }
        if mongo_uri.startswith("mongodb+srv://"):
            kwargs.update(tls=True, tlsCAFile=certifi.where())
        return kwargs

    def _initialize_client(self) -> None:
        mongo_uri = _get_mongo_uri()
        logger.debug("Initializing MongoDB client for database %s", self._db_name)
        self._client = AsyncIOMotorClient(mongo_uri, **self._client_kwargs(mongo_uri))
        self._db = self._client[self._db_name]
        self._bound_loop = self._get_current_loop()
        logger.info("MongoDB client initialized successfully")

    @staticmethod
    def _get_current_loop() -> asyncio.AbstractEventLoop | None:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _reset(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._db = None
        self._bound_loop = None
        self._beanie_initialized = False

    def _check_loop_and_reconnect(self) -> None:
        """Drop the client if its event loop is closed or has changed."""
        if self._client is None or self._bound_loop is None:
            return
        current_loop = self._get_current_loop()
        if self._bound_loop.is_closed() or (
            current_loop is not None and current_loop is not self._bound_loop
        ):
            logger.info("Event loop changed, reconnecting MongoDB client")
            self._reset()

    @property
    def db(self) -> AsyncIOMotorDatabase:
        self._check_loop_and_reconnect()
        if self._db is None:
            self._initialize_client()
        return self._db

    @property
    def client(self) -> AsyncIOMotorClient:
        self._check_loop_and_reconnect()
        if self._client is None:
            self._initialize_client()
        return self._client

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        return self.db[name]

    async def init_beanie(self) -> None:
        """
        Initialize Beanie ODM with all document models.

        Safe to call more than once; it is a no-op while the client and
        loop are unchanged.
        """
        self._check_loop_and_reconnect()
        if self._beanie_initialized and self._db is not None:
            logger.debug("Beanie already initialized, skipping")
            return

        from beanie import init_beanie

        from db.models import ALL_DOCUMENT_MODELS

        await init_beanie(database=self.db, document_models=ALL_DOCUMENT_MODELS)
        self._beanie_initialized = True
        logger.info(
            "Beanie ODM initialized with %d document models",
            len(ALL_DOCUMENT_MODELS),
        )

    async def cleanup_connections(self) -> None:
        """Close the MongoDB client."""
        if self._client is not None:
            logger.info("Closing MongoDB client connections...")
        self._reset()


# Singleton instance
db_manager = DatabaseManager()
