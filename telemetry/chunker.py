"""Split an ordered point sequence into bounded time windows."""

from __future__ import annotations

import logging
from datetime import timedelta

from config import CHUNK_WINDOW_MINUTES, MIN_POINTS_FOR_CHUNKING
from db.models import GpsPoint

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(minutes=CHUNK_WINDOW_MINUTES)


def split_into_chunks(
    points: list[GpsPoint],
    window: timedelta = DEFAULT_WINDOW,
    min_points: int = MIN_POINTS_FOR_CHUNKING,
) -> list[list[GpsPoint]]:
    """
    Partition time-ordered points into chunks of roughly ``window`` length.

    A new chunk starts when a point is more than ``window`` past the current
    chunk's first point and the current chunk already holds at least two
    points. A trailing chunk with a single point is folded into the one
    before it, so every emitted chunk has at least two points.

    Fewer than ``min_points`` points, or a sequence that never crosses a
    window boundary, yields no chunks; callers treat that as "nothing to
    replay".
    """
    if len(points) < min_points:
        return []

    chunks: list[list[GpsPoint]] = []
    current: list[GpsPoint] = []
    chunk_start = None

    for point in points:
        if chunk_start is None:
            chunk_start = point.dt_tracker
            current.append(point)
        elif point.dt_tracker - chunk_start > window and len(current) > 1:
            chunks.append(current)
            current = [point]
            chunk_start = point.dt_tracker
        else:
            current.append(point)

    if not chunks:
        logger.debug(
            "%d points fit inside a single %s window; no chunks emitted",
            len(points),
            window,
        )
        return []

    if len(current) < 2:
        chunks[-1].extend(current)
    else:
        chunks.append(current)
    return chunks
