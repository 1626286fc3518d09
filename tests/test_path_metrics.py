from __future__ import annotations

import pytest

from trip_factories import advance, make_context, make_point, make_route, make_trip
from trip_processor.path_metrics import process_path_metrics, weighted_average_speed


def test_weighted_average_speed() -> None:
    assert weighted_average_speed(30, 2, 60, 2) == pytest.approx(45)
    assert weighted_average_speed(30, 6, 60, 2) == pytest.approx(37.5)
    assert weighted_average_speed(0, 0, 50, 0) == 50


def test_path_metrics_accumulate_over_moving_pairs() -> None:
    trip = make_trip(averageSpeed=30.0, runDuration=2.0, truckRunDistance=1.0, topSpeed=50.0)
    ctx = make_context(
        trip,
        make_route(),
        [make_point(lat, m, speed=60, acc=1) for lat, m in ((28.0, 0), (28.01, 1), (28.02, 2))],
    )

    assert process_path_metrics(ctx)
    assert trip.truckRunDistance == pytest.approx(1.0 + 2.2239, abs=1e-3)
    assert trip.runDuration == pytest.approx(4.0)
    assert trip.averageSpeed == pytest.approx(45.0)
    assert trip.topSpeed == 60
    assert ctx.batch_average_speed == pytest.approx(60)
    assert {"truckRunDistance", "runDuration", "averageSpeed", "topSpeed"} <= ctx.changes.replaced


def test_noise_points_break_pairs() -> None:
    trip = make_trip()
    ctx = make_context(
        trip,
        make_route(),
        [
            make_point(28.0, 0, speed=60, acc=1),
            make_point(28.01, 1, speed=1, acc=1),
            make_point(28.02, 2, speed=60, acc=0),
        ],
    )

    assert process_path_metrics(ctx)
    assert trip.truckRunDistance == 0.0
    assert trip.runDuration == 0.0
    assert ctx.batch_average_speed == 0.0
    assert ctx.changes.is_empty()


def test_top_speed_never_decreases() -> None:
    trip = make_trip()
    ctx = make_context(trip, make_route(), [make_point(28.0, 0, speed=80), make_point(28.01, 1, speed=80)])
    assert process_path_metrics(ctx)

    advance(ctx, [make_point(28.02, 2, speed=40), make_point(28.03, 3, speed=40)])
    assert process_path_metrics(ctx)

    assert trip.topSpeed == 80
    assert trip.runDuration == pytest.approx(2.0)
    assert trip.averageSpeed == pytest.approx(60.0)


def test_path_metrics_fail_without_window() -> None:
    assert process_path_metrics(make_context(make_trip(), make_route())) is False
