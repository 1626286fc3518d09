"""Centralized configuration for environment variables and tunables.

This module is the single source of truth for configuration used across the
tracker. Import constants from here rather than calling os.getenv directly
in multiple places.
"""

from __future__ import annotations

import os
from typing import Final

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    return float(value) if value else default


# --- Storage ---
MONGODB_DATABASE: Final[str] = os.getenv("MONGODB_DATABASE", "trip_tracker")
TRIP_LOG_COLLECTION: Final[str] = os.getenv("TRIP_LOG_COLLECTION", "trip_logs")
TRIP_LOG_TTL_DAYS: Final[int] = _env_int("TRIP_LOG_TTL_DAYS", 30)

# --- Telemetry sources ---
HISTORY_API_URL: Final[str] = os.getenv(
    "HISTORY_API_URL",
    "http://localhost:11002/routeFuelRaw",
)
FUEL_LEVELS_API_URL: Final[str] = os.getenv(
    "FUEL_LEVELS_API_URL",
    "http://localhost:11001/fuelLevels",
)
FUEL_DISTANCE_API_URL: Final[str] = os.getenv(
    "FUEL_DISTANCE_API_URL",
    "http://localhost:11001/accurateKm",
)
FUEL_EVENTS_API_URL: Final[str] = os.getenv(
    "FUEL_EVENTS_API_URL",
    "http://localhost:11002/crawlFuel",
)
HTTP_CONNECTION_LIMIT: Final[int] = 10
HTTP_TIMEOUT_CONNECT: Final[float] = 10.0
HTTP_TIMEOUT_SOCK_READ: Final[float] = 60.0
HTTP_TIMEOUT_TOTAL: Final[float] = 120.0
ACTIVE_TRIP_IMEIS_KEY: Final[str] = "activeTripImeis"
BACKDATED_TRIPS_KEY: Final[str] = "backdatedTrips"

# Serviceable region (India) as (south, north, west, east)
SERVICE_BOUNDS_SOUTH: Final[float] = _env_float("SERVICE_BOUNDS_SOUTH", 6.5)
SERVICE_BOUNDS_NORTH: Final[float] = _env_float("SERVICE_BOUNDS_NORTH", 37.0)
SERVICE_BOUNDS_WEST: Final[float] = _env_float("SERVICE_BOUNDS_WEST", 68.0)
SERVICE_BOUNDS_EAST: Final[float] = _env_float("SERVICE_BOUNDS_EAST", 97.5)

# --- Chunking / historical replay ---
CHUNK_WINDOW_MINUTES: Final[int] = _env_int("CHUNK_WINDOW_MINUTES", 5)
MIN_POINTS_FOR_CHUNKING: Final[int] = 4
BACKDATED_MAX_DAYS: Final[int] = _env_int("BACKDATED_MAX_DAYS", 5)
BACKDATED_MAX_RETRIES: Final[int] = _env_int("BACKDATED_MAX_RETRIES", 3)
BACKDATED_BATCH_SIZE: Final[int] = 100
LIVE_TRIP_BATCH_SIZE: Final[int] = 100

# --- Movement / metrics thresholds (km/h, minutes) ---
SPEED_THRESHOLD: Final[float] = _env_float("SPEED_THRESHOLD", 3.0)
MOVEMENT_NOISE_SPEED: Final[float] = _env_float("MOVEMENT_NOISE_SPEED", 2.0)
MIN_HALT_DURATION_MINUTES: Final[int] = _env_int("MIN_HALT_DURATION_MINUTES", 1)

# --- Locations ---
DEFAULT_MAX_DETENTION_MINUTES: Final[int] = _env_int(
    "DEFAULT_MAX_DETENTION_MINUTES",
    600,
)
ZONE_FALLBACK_RADIUS_M: Final[float] = _env_float("ZONE_FALLBACK_RADIUS_M", 100.0)
ROUND_TRIP_RATIO: Final[float] = 0.02
REVERSE_TRAVEL_MIN_DISTANCE_M: Final[float] = 500.0

# --- Fuel ---
FUEL_TANK: Final[str] = os.getenv("FUEL_TANK", "tank_1")
FUEL_REFRESH_INTERVAL_MINUTES: Final[int] = _env_int("FUEL_REFRESH_INTERVAL_MINUTES", 60)
FUEL_LOOKBACK_POINTS: Final[int] = 20

# --- Rules ---
LOCAL_TIMEZONE: Final[str] = os.getenv("LOCAL_TIMEZONE", "Asia/Kolkata")

# --- Orchestrator ---
MAX_CONCURRENT_TRIPS: Final[int] = _env_int("MAX_CONCURRENT_TRIPS", 5)
RUN_INTERVAL_SECONDS: Final[float] = _env_float("RUN_INTERVAL_SECONDS", 300.0)
PROCESS_TIMEOUT_SECONDS: Final[float] = _env_float("PROCESS_TIMEOUT_SECONDS", 300.0)
WORKER_MAX_RETRIES: Final[int] = _env_int("WORKER_MAX_RETRIES", 3)
WORKER_RETRY_DELAY_SECONDS: Final[float] = _env_float(
    "WORKER_RETRY_DELAY_SECONDS",
    5.0,
)
MONITOR_INTERVAL_SECONDS: Final[float] = _env_float("MONITOR_INTERVAL_SECONDS", 5.0)

# --- Logging ---
LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT: Final[str] = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


__all__ = [
    "ACTIVE_TRIP_IMEIS_KEY",
    "BACKDATED_BATCH_SIZE",
    "BACKDATED_MAX_DAYS",
    "BACKDATED_MAX_RETRIES",
    "BACKDATED_TRIPS_KEY",
    "CHUNK_WINDOW_MINUTES",
    "DEFAULT_MAX_DETENTION_MINUTES",
    "FUEL_DISTANCE_API_URL",
    "FUEL_EVENTS_API_URL",
    "FUEL_LEVELS_API_URL",
    "FUEL_LOOKBACK_POINTS",
    "FUEL_REFRESH_INTERVAL_MINUTES",
    "FUEL_TANK",
    "HISTORY_API_URL",
    "HTTP_CONNECTION_LIMIT",
    "HTTP_TIMEOUT_CONNECT",
    "HTTP_TIMEOUT_SOCK_READ",
    "HTTP_TIMEOUT_TOTAL",
    "LIVE_TRIP_BATCH_SIZE",
    "LOCAL_TIMEZONE",
    "LOG_FORMAT",
    "LOG_LEVEL",
    "MAX_CONCURRENT_TRIPS",
    "MIN_HALT_DURATION_MINUTES",
    "MIN_POINTS_FOR_CHUNKING",
    "MONGODB_DATABASE",
    "MONITOR_INTERVAL_SECONDS",
    "MOVEMENT_NOISE_SPEED",
    "PROCESS_TIMEOUT_SECONDS",
    "REVERSE_TRAVEL_MIN_DISTANCE_M",
    "ROUND_TRIP_RATIO",
    "RUN_INTERVAL_SECONDS",
    "SERVICE_BOUNDS_EAST",
    "SERVICE_BOUNDS_NORTH",
    "SERVICE_BOUNDS_SOUTH",
    "SERVICE_BOUNDS_WEST",
    "SPEED_THRESHOLD",
    "TRIP_LOG_COLLECTION",
    "TRIP_LOG_TTL_DAYS",
    "WORKER_MAX_RETRIES",
    "WORKER_RETRY_DELAY_SECONDS",
    "ZONE_FALLBACK_RADIUS_M",
]
