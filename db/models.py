"""Beanie ODM document models and embedded schemas for the tracker.

The processing engine works on the plain pydantic records
(:class:`TripRecord`, :class:`RouteRecord`); the Beanie documents extend them
with collection settings and indexes.

Usage:
    from db.models import Trip, TripStage

    trips = await Trip.find(Trip.tripStage == TripStage.ACTIVE).to_list()
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo import ASCENDING, IndexModel

from config import TRIP_LOG_TTL_DAYS
from date_utils import parse_timestamp

# ============================================================================
# Enumerations
# ============================================================================


class TripStage(str, Enum):
    PLANNED = "Planned"
    START_DELAYED = "Start Delayed"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    ABORTED = "Aborted"
    CANCELLED = "Cancelled"


class MovementStatus(str, Enum):
    DRIVING = "Driving"
    HALTED = "Halted"
    UNKNOWN = "Unknown"


class RuleStatus(str, Enum):
    GOOD = "Good"
    VIOLATED = "Violated"


class RuleKind(str, Enum):
    """Configured compliance rules, keyed by their ``ruleStatus`` entry."""

    DRIVING_TIME = "drivingTimeStatus"
    SPEED = "speedStatus"
    HALT_TIME = "haltTimeStatus"
    ROUTE_VIOLATION = "routeViolationStatus"


class LocationType(str, Enum):
    POINT = "point"
    ZONE = "zone"


class LocationRole(str, Enum):
    START = "startLocation"
    END = "endLocation"
    VIA = "viaLocation"


class SegmentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class TravelDirection(str, Enum):
    FORWARD = "forward"
    REVERSE = "reverse"


class FuelEventType(str, Enum):
    FILLING = "Filling"
    THEFT = "Theft"


class TrackerModel(BaseModel):
    """Base for embedded schemas; enums are stored by value."""

    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True,
        populate_by_name=True,
    )


def _parse_optional_datetime(v: Any) -> datetime | None:
    if v is None:
        return None
    return parse_timestamp(v)


# ============================================================================
# GPS
# ============================================================================


class GpsPoint(TrackerModel):
    """A validated GPS fix as stored in ``tripPath``."""

    coordinates: list[float]
    dt_tracker: datetime
    speed: float = 0.0
    heading: float = 0.0
    acc: int = 0
    fuelLevel: float | None = None

    @field_validator("dt_tracker", mode="before")
    @classmethod
    def parse_dt_tracker(cls, v: Any) -> datetime:
        parsed = parse_timestamp(v)
        if parsed is None:
            msg = f"Unparseable dt_tracker: {v!r}"
            raise ValueError(msg)
        return parsed

    @property
    def lng(self) -> float:
        return self.coordinates[0]

    @property
    def lat(self) -> float:
        return self.coordinates[1]


class PathWindow(TrackerModel):
    """Indices into ``tripPath`` covering the most recent batch."""

    fromIndex: int = 0
    toIndex: int = 0


# ============================================================================
# Routes and locations
# ============================================================================


class PointLocation(TrackerModel):
    """Circular geofence: centre plus trigger radius in metres."""

    locationType: Literal["point"] = "point"
    locationName: str
    purpose: str | None = None
    maxDetentionTime: float = 0
    coordinates: list[float]
    triggerRadius: float = 500.0

    @property
    def anchor(self) -> list[float]:
        return self.coordinates


class ZoneLocation(TrackerModel):
    """Polygon geofence given as a ring of ``[lng, lat]`` vertices."""

    locationType: Literal["zone"] = "zone"
    locationName: str
    purpose: str | None = None
    maxDetentionTime: float = 0
    zoneCoordinates: list[list[float]]

    @property
    def anchor(self) -> list[float]:
        ring = self.zoneCoordinates
        lng = sum(v[0] for v in ring) / len(ring)
        lat = sum(v[1] for v in ring) / len(ring)
        return [lng, lat]


Location = Annotated[PointLocation | ZoneLocation, Field(discriminator="locationType")]


class RouteRules(TrackerModel):
    """
    Compliance rules configured for a route.

    ``drivingStartTime``/``drivingEndTime`` are ``HH:MM`` strings,
    ``speedLimit`` is km/h, ``maxHaltTime`` is hours and
    ``routeViolationThreshold`` is metres. Unset rules are not evaluated.
    """

    drivingStartTime: str | None = None
    drivingEndTime: str | None = None
    speedLimit: float | None = None
    maxHaltTime: float | None = None
    routeViolationThreshold: float | None = None


class RouteSegment(TrackerModel):
    """Precomputed directed sub-path between two consecutive locations."""

    name: str
    startLocation: Location
    endLocation: Location
    segmentPath: list[list[float]] = Field(default_factory=list)
    segmentLength: float = 0.0
    direction: str = "oneway"
    loadType: str = "none"


class RouteRecord(TrackerModel):
    routeName: str | None = None
    startLocation: Location
    endLocation: Location
    viaLocations: list[Location] = Field(default_factory=list)
    routePath: list[list[float]] = Field(default_factory=list)
    routeLength: float = 0.0
    segments: list[RouteSegment] = Field(default_factory=list)
    rules: RouteRules = Field(default_factory=RouteRules)


# ============================================================================
# Trip state
# ============================================================================


class SignificantLocationRecord(TrackerModel):
    locationName: str
    locationType: LocationRole
    entryTime: datetime
    exitTime: datetime | None = None
    dwellTime: int = 0

    @field_validator("entryTime", "exitTime", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _parse_optional_datetime(v)


class SignificantEvent(TrackerModel):
    eventType: str
    eventName: str
    eventTime: datetime | None = None
    eventStartTime: datetime | None = None
    eventEndTime: datetime | None = None
    eventDuration: int | None = None
    eventDistance: float | None = None
    eventStartTripPathIndex: int | None = None
    eventEndTripPathIndex: int | None = None
    eventLocation: dict[str, Any] | None = None
    eventPath: list[list[float]] | None = None

    @field_validator("eventTime", "eventStartTime", "eventEndTime", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _parse_optional_datetime(v)


class FuelEvent(TrackerModel):
    """A refuelling or fuel-theft event reported by the fuel sensor."""

    eventType: FuelEventType
    eventTime: datetime
    volume: float = 0.0
    location: dict[str, Any] | None = None

    @field_validator("eventTime", mode="before")
    @classmethod
    def parse_event_time(cls, v: Any) -> datetime | None:
        return _parse_optional_datetime(v)


class SegmentBoundary(TrackerModel):
    locationName: str
    arrivalTime: datetime | None = None
    departureTime: datetime | None = None
    dwellTime: int = 0
    tripPathIndex: int | None = None

    @field_validator("arrivalTime", "departureTime", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _parse_optional_datetime(v)


class SegmentProgress(TrackerModel):
    segmentIndex: int
    name: str
    direction: str = "oneway"
    loadType: str = "none"
    status: SegmentStatus = SegmentStatus.PENDING
    startTime: datetime | None = None
    endTime: datetime | None = None
    distanceCovered: float = 0.0
    distanceRemaining: float = 0.0
    completionPercentage: float = 0.0
    estimatedTimeOfArrival: datetime | None = None
    nearestPointIndex: int = 0
    segmentStartTripPathIndex: int | None = None
    segmentEndTripPathIndex: int | None = None
    startLocation: SegmentBoundary
    endLocation: SegmentBoundary

    @field_validator(
        "startTime",
        "endTime",
        "estimatedTimeOfArrival",
        mode="before",
    )
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _parse_optional_datetime(v)


class TripRecord(TrackerModel):
    """Mutable per-trip aggregate owned by the worker processing it."""

    tripId: str
    tripName: str | None = None
    deviceImei: str
    truckRegistrationNumber: str | None = None
    route: PydanticObjectId | None = None

    plannedStartTime: datetime | None = None
    actualStartTime: datetime | None = None
    actualEndTime: datetime | None = None
    endReason: str | None = None
    tripStage: TripStage = TripStage.PLANNED
    activeStatus: str = "Inactive"
    backDated: bool = False

    movementStatus: MovementStatus = MovementStatus.UNKNOWN
    haltStartTime: datetime | None = None
    currentHaltDuration: int = 0
    parkedDuration: int = 0
    averageSpeed: float = 0.0
    topSpeed: float = 0.0
    runDuration: float = 0.0
    truckRunDistance: float = 0.0

    distanceCovered: float = 0.0
    distanceRemaining: float = 0.0
    completionPercentage: float = 0.0
    estimatedTimeOfArrival: datetime | None = None
    distanceFromTruck: float = 0.0
    nearestPointIndex: int = 0
    travelDirection: TravelDirection = TravelDirection.FORWARD
    reverseTravelDistance: float = 0.0
    reverseTravelPath: list[list[float]] = Field(default_factory=list)
    reverseTravelStartTime: datetime | None = None

    tripPath: list[GpsPoint] = Field(default_factory=list)
    pathPoints: PathWindow | None = None

    currentSignificantLocation: SignificantLocationRecord | None = None
    significantLocations: list[SignificantLocationRecord] = Field(
        default_factory=list,
    )
    hasExitedEndLocation: bool = False

    ruleStatus: dict[str, RuleStatus] = Field(default_factory=dict)
    significantEvents: list[SignificantEvent] = Field(default_factory=list)

    currentlyActiveSegmentIndex: int = -1
    currentlyActiveSegment: SegmentProgress | None = None
    segmentHistory: list[SegmentProgress] = Field(default_factory=list)

    fuelConsumption: float = 0.0
    fuelEfficiency: float = 0.0
    currentFuelLevel: float = 0.0
    fuelEvents: list[FuelEvent] = Field(default_factory=list)
    fuelStatusUpdateTime: datetime | None = None

    lastProcessedAt: datetime | None = None

    @field_validator(
        "plannedStartTime",
        "actualStartTime",
        "actualEndTime",
        "haltStartTime",
        "estimatedTimeOfArrival",
        "reverseTravelStartTime",
        "fuelStatusUpdateTime",
        "lastProcessedAt",
        mode="before",
    )
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        """Parse datetime fields using the centralized date_utils."""
        return _parse_optional_datetime(v)

    @property
    def latest_point(self) -> GpsPoint | None:
        if self.pathPoints is None or not self.tripPath:
            return None
        if not 0 <= self.pathPoints.toIndex < len(self.tripPath):
            return None
        return self.tripPath[self.pathPoints.toIndex]

    @property
    def window_points(self) -> list[GpsPoint]:
        if self.pathPoints is None:
            return []
        return self.tripPath[self.pathPoints.fromIndex : self.pathPoints.toIndex + 1]


# ============================================================================
# Documents
# ============================================================================


class Route(RouteRecord, Document):
    """Route document referenced by trips."""

    class Settings:
        name = "routes"


class Trip(TripRecord, Document):
    """Live trip document; truncated to a fixed field set once archived."""

    tripId: Indexed(str, unique=True)
    deviceImei: Indexed(str)

    class Settings:
        name = "trips"
        indexes = [
            IndexModel(
                [("tripStage", ASCENDING), ("backDated", ASCENDING)],
                name="trips_stage_backdated_idx",
            ),
            IndexModel(
                [("plannedStartTime", ASCENDING)],
                name="trips_plannedStartTime_idx",
            ),
        ]


class ArchivedTrip(Document):
    """Full trip record copied out of the live collection on completion."""

    tripId: Indexed(str)
    deviceImei: str | None = None
    archivedAt: datetime | None = None

    model_config = ConfigDict(extra="allow")

    class Settings:
        name = "archived_trips"


class TripLog(Document):
    """Per-trip log record written by the trip log handler."""

    timestamp: datetime | None = None
    trip_id: str | None = None
    device_imei: str | None = None
    level: str | None = None
    logger_name: str | None = None
    message: str | None = None
    exc_info: str | None = None

    class Settings:
        name = "trip_logs"
        indexes = [
            IndexModel([("trip_id", ASCENDING)]),
            IndexModel(
                [("timestamp", ASCENDING)],
                expireAfterSeconds=TRIP_LOG_TTL_DAYS * 24 * 60 * 60,
            ),
        ]


ALL_DOCUMENT_MODELS = [
    Route,
    Trip,
    ArchivedTrip,
    TripLog,
]
