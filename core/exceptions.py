"""
Centralized exception hierarchy for domain-specific errors.

Errors fall into three families: bad telemetry (never fatal, counted and
dropped), transient infrastructure failures (retried, then surfaced as a
worker failure) and trip invariant violations (fatal for the worker).
"""


class TripTrackerError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(TripTrackerError):
    """Exception raised when data validation fails."""


class PointValidationError(ValidationError):
    """A raw GPS fix could not be turned into a usable point."""


class ExternalServiceError(TripTrackerError):
    """Exception raised when service calls fail."""


class TelemetryUnavailableError(ExternalServiceError):
    """The telemetry source (live buffer or history API) could not be read."""


class PersistenceError(TripTrackerError):
    """Trip state could not be written after exhausting retries."""


class ResourceNotFoundError(TripTrackerError):
    """Exception raised when a requested resource is not found."""


class TripInvariantError(TripTrackerError):
    """Trip state became self-contradictory; processing must abort."""


class RouteDataError(TripInvariantError):
    """Route or segment data required by the engine is missing or malformed."""


class ProcessingStepError(TripTrackerError):
    """A pipeline step reported failure; the chunk is not persisted."""
