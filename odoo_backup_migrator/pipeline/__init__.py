"""
Migration pipeline: phase sequencing, progress events and run results.

Key exports:
    - migrate: Run extraction, database setup, migration and export
    - ProgressChannel / ProgressUpdate: Synchronous progress events
    - CancellationToken: Advisory cancellation checked between phases
    - MigrationResult / MigrationReport / MigrationError: Run outcome
"""

from .events import CancellationToken, ProgressChannel, ProgressUpdate
from .models import MigrationError, MigrationReport, MigrationResult, PhaseTimings
from .runner import MigrationPipeline, migrate

__all__ = [
    "CancellationToken",
    "MigrationError",
    "MigrationPipeline",
    "MigrationReport",
    "MigrationResult",
    "PhaseTimings",
    "ProgressChannel",
    "ProgressUpdate",
    "migrate",
]
