"""
Processing context shared by the pipeline steps of one chunk.

Steps mutate the trip in place and record which fields they touched on
the :class:`ChangeSet`, which the repository turns into a minimal update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from db.models import RouteRecord, RouteSegment, TripRecord
from trip_processor.state import TripStageMachine


class MembershipChange(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class FuelRequest:
    """Fuel range the worker should fetch after the chunk is processed."""

    time_from: datetime
    time_to: datetime


@dataclass
class ChangeSet:
    """
    Typed record of trip fields modified during a cycle.

    ``replaced`` fields are written wholesale. ``appended`` maps an array
    field to the index of its first new element; only the tail is pushed.
    A field that is both appended to and modified in place is replaced.
    """

    replaced: set[str] = field(default_factory=set)
    appended: dict[str, int] = field(default_factory=dict)

    def touch(self, *fields: str) -> None:
        self.replaced.update(fields)

    def append(self, field_name: str, start_index: int) -> None:
        current = self.appended.get(field_name)
        if current is None or start_index < current:
            self.appended[field_name] = start_index

    def push_fields(self) -> dict[str, int]:
        """Appended fields that can be written as a tail push."""
        return {
            name: start
            for name, start in self.appended.items()
            if name not in self.replaced
        }

    def merge(self, other: ChangeSet) -> None:
        self.replaced |= other.replaced
        for name, start in other.appended.items():
            self.append(name, start)

    def is_empty(self) -> bool:
        return not self.replaced and not self.appended

    def clear(self) -> None:
        self.replaced.clear()
        self.appended.clear()


@dataclass
class TripContext:
    """Everything a pipeline step may read or mutate for one chunk."""

    trip: TripRecord
    route: RouteRecord
    segments: list[RouteSegment]
    stage_machine: TripStageMachine
    backdated: bool = False
    changes: ChangeSet = field(default_factory=ChangeSet)
    membership_change: MembershipChange | None = None
    fuel_request: FuelRequest | None = None
    batch_average_speed: float = 0.0
    rule_signals: dict[str, list[str]] = field(
        default_factory=lambda: {"new": [], "running": [], "resolved": []},
    )
