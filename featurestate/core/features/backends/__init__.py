"""
Feature store and snapshot repository implementations.
"""

from .database import DatabaseFeatureStore, DatabaseSnapshotRepository
from .memory import MemoryFeatureStore, MemorySnapshotRepository

__all__ = [
    "DatabaseFeatureStore",
    "DatabaseSnapshotRepository",
    "MemoryFeatureStore",
    "MemorySnapshotRepository",
]
