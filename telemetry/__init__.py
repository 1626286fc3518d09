"""Telemetry ingestion: point validation, chunking and telemetry sources."""

from telemetry.chunker import split_into_chunks
from telemetry.validators import ValidationResult, validate_point, validate_points

__all__ = [
    "ValidationResult",
    "split_into_chunks",
    "validate_point",
    "validate_points",
]
