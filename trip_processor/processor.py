"""
Trip Processor Module.

Main pipeline class that runs one chunk of GPS points through every
processing step for a single trip.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from core.exceptions import RouteDataError, TripInvariantError
from date_utils import get_current_utc_time
from db.models import GpsPoint, PathWindow, RouteRecord, TripRecord, TripStage
from trip_log_handler import trip_logger
from trip_processor.context import ChangeSet, TripContext
from trip_processor.fuel import process_fuel
from trip_processor.locations import process_location
from trip_processor.movement import process_movement
from trip_processor.path_metrics import process_path_metrics
from trip_processor.rules import process_rules
from trip_processor.segments import build_route_segments, process_segment
from trip_processor.state import TripStageMachine
from trip_processor.status import process_status

logger = logging.getLogger(__name__)

Step = Callable[[TripContext], bool]

PIPELINE: tuple[tuple[str, Step], ...] = (
    ("movement", process_movement),
    ("path_metrics", process_path_metrics),
    ("location", process_location),
    ("segment", process_segment),
    ("fuel", process_fuel),
    ("rules", process_rules),
    ("status", process_status),
)


class TripProcessor:
    """
    Runs the per-chunk processing pipeline for one trip.

    The trip is owned exclusively by this processor for the duration of a
    worker invocation. Each call to :meth:`process_chunk` appends the chunk
    to ``tripPath``, moves the ``pathPoints`` window onto it and runs the
    steps in order, stopping at the first one that reports failure.
    """

    def __init__(
        self,
        trip: TripRecord,
        route: RouteRecord,
        backdated: bool = False,
    ) -> None:
        """
        Initialize the trip processor.

        Args:
            trip: The trip aggregate to mutate
            route: The trip's route
            backdated: Whether this is a historical replay

        Raises:
            RouteDataError: The route cannot be split into segments.
        """
        self.trip = trip
        self.route = route
        self.backdated = backdated
        self.segments = route.segments or build_route_segments(route)
        if not self.segments:
            msg = "Route has no segments"
            raise RouteDataError(msg, {"tripId": trip.tripId})
        self._stage_machine = TripStageMachine(trip.tripStage)

    @property
    def stage(self) -> TripStage:
        return self._stage_machine.stage

    @property
    def stage_history(self) -> list[dict[str, Any]]:
        """Get the stage transition history."""
        return self._stage_machine.stage_history

    @property
    def errors(self) -> dict[str, str]:
        """Get any step failures from the last chunk."""
        return self._stage_machine.errors

    def get_processing_status(self) -> dict[str, Any]:
        return self._stage_machine.get_status(self.trip.tripId)

    def process_chunk(self, points: list[GpsPoint]) -> TripContext:
        """
        Process one chunk of validated, time-ordered points.

        Args:
            points: The chunk to process

        Returns:
            The context holding the changed-field record and any pending
            active-membership change. ``stage_machine.is_failed()`` tells
            whether a step failed part-way.

        Raises:
            TripInvariantError: The chunk left the trip in a contradictory
                state and must not be persisted.
        """
        trip = self.trip
        log = trip_logger(logger, trip)
        self._stage_machine.reset_errors()
        ctx = TripContext(
            trip=trip,
            route=self.route,
            segments=self.segments,
            stage_machine=self._stage_machine,
            backdated=self.backdated,
            changes=ChangeSet(),
        )
        if not points:
            log.debug("Empty chunk, nothing to process")
            return ctx

        start = len(trip.tripPath)
        trip.tripPath.extend(points)
        trip.pathPoints = PathWindow(fromIndex=start, toIndex=len(trip.tripPath) - 1)
        ctx.changes.append("tripPath", start)
        ctx.changes.touch("pathPoints")

        for name, step in PIPELINE:
            if not step(ctx):
                self._stage_machine.mark_failed(name, f"{name} step reported failure")
                log.warning("Processing stopped at %s step", name)
                break

        self.check_invariants()

        trip.lastProcessedAt = get_current_utc_time()
        ctx.changes.touch("lastProcessedAt")
        log.info(
            "Processed chunk of %d points: stage=%s status=%s",
            len(points),
            trip.tripStage,
            trip.activeStatus,
        )
        return ctx

    def check_invariants(self) -> None:
        """Raise if the trip exited its end location without completing."""
        trip = self.trip
        if trip.hasExitedEndLocation and trip.tripStage != TripStage.COMPLETED:
            msg = "Trip exited end location but stage is not Completed"
            raise TripInvariantError(
                msg,
                {"tripId": trip.tripId, "tripStage": trip.tripStage},
            )
