"""
Trip processing entry points.

Modules:
- live: one live cycle for a trip (buffer drain or latest fix)
- backdated: historical replay of a trip in chunks
- worker: per-trip process entry, ``python -m tasks.worker <tripId>``
- orchestrator: TripRunner, bounded-concurrency scheduling of workers
"""
