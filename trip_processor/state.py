"""
Trip Stage State Module.

Tracks a trip's lifecycle stage, validates transitions and records step
failures for the processing cycle.
"""

from __future__ import annotations

from typing import Any

from core.exceptions import TripInvariantError
from date_utils import get_current_utc_time
from db.models import TripStage

VALID_TRANSITIONS: dict[TripStage, frozenset[TripStage]] = {
    TripStage.PLANNED: frozenset(
        {
            TripStage.START_DELAYED,
            TripStage.ACTIVE,
            TripStage.ABORTED,
            TripStage.CANCELLED,
        },
    ),
    TripStage.START_DELAYED: frozenset(
        {TripStage.ACTIVE, TripStage.ABORTED, TripStage.CANCELLED},
    ),
    TripStage.ACTIVE: frozenset({TripStage.COMPLETED, TripStage.ABORTED}),
    TripStage.COMPLETED: frozenset(),
    TripStage.ABORTED: frozenset(),
    TripStage.CANCELLED: frozenset(),
}

PROCESSABLE_STAGES = frozenset(
    {TripStage.PLANNED, TripStage.START_DELAYED, TripStage.ACTIVE},
)


class TripStageMachine:
    """
    Manages lifecycle stage transitions for one trip.

    Keeps a history of stage changes and the errors of any processing
    steps that failed during the current cycle.
    """

    def __init__(self, stage: TripStage | str = TripStage.PLANNED) -> None:
        self.stage = TripStage(stage)
        self.stage_history: list[dict[str, Any]] = []
        self.errors: dict[str, str] = {}

    def can_proceed_to(self, target: TripStage | str) -> bool:
        """Check if transitioning to ``target`` is valid from the current stage."""
        return TripStage(target) in VALID_TRANSITIONS.get(self.stage, frozenset())

    def set_stage(self, new_stage: TripStage | str, reason: str | None = None) -> bool:
        """
        Move to ``new_stage`` and record it in history.

        Returns:
            True if the stage changed, False if already in ``new_stage``.

        Raises:
            TripInvariantError: The transition is not allowed.
        """
        target = TripStage(new_stage)
        if target == self.stage:
            return False
        if not self.can_proceed_to(target):
            msg = f"Illegal trip stage transition {self.stage.value} -> {target.value}"
            raise TripInvariantError(
                msg,
                {"from": self.stage.value, "to": target.value},
            )

        change: dict[str, Any] = {
            "from": self.stage.value,
            "to": target.value,
            "timestamp": get_current_utc_time(),
        }
        if reason:
            change["reason"] = reason
        self.stage_history.append(change)
        self.stage = target
        return True

    def mark_failed(self, step: str, error: str) -> None:
        self.errors[step] = error

    def is_failed(self) -> bool:
        return bool(self.errors)

    def is_processable(self) -> bool:
        return self.stage in PROCESSABLE_STAGES

    def reset_errors(self) -> None:
        self.errors = {}

    def get_status(self, trip_id: str = "unknown") -> dict[str, Any]:
        """Current stage, transition history and step errors."""
        return {
            "stage": self.stage.value,
            "history": self.stage_history,
            "errors": self.errors,
            "trip_id": trip_id,
        }
