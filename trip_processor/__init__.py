"""
Trip Processor Package.

This package provides the per-trip telemetry processing engine:
- Lifecycle stage machine
- Movement and halt tracking
- Path metrics (distance, speed, run time)
- Significant-location occupancy
- Segment and route progress, reverse travel
- Fuel status refresh requests
- Rule violation hysteresis
- Trip status

Usage:
    from trip_processor import TripProcessor

    processor = TripProcessor(trip, route)
    ctx = processor.process_chunk(points)
    await repository.persist(processor.trip, ctx.changes)
"""

from trip_processor.context import ChangeSet, FuelRequest, MembershipChange, TripContext
from trip_processor.processor import PIPELINE, TripProcessor
from trip_processor.segments import build_route_segments
from trip_processor.state import PROCESSABLE_STAGES, TripStageMachine

__all__ = [
    # Main processor
    "PIPELINE",
    "TripProcessor",
    # Context
    "ChangeSet",
    "FuelRequest",
    "MembershipChange",
    "TripContext",
    # State management
    "PROCESSABLE_STAGES",
    "TripStageMachine",
    # Route helpers
    "build_route_segments",
]
