"""Attribute inheritance from products to variants."""

from channelsync.inheritance.engine import (
    AttributeInheritanceEngine,
    InheritanceOptions,
    InheritanceResult,
)
from channelsync.inheritance.sync_job import InheritanceSyncJob, SyncJobResult

__all__ = [
    "AttributeInheritanceEngine",
    "InheritanceOptions",
    "InheritanceResult",
    "InheritanceSyncJob",
    "SyncJobResult",
]
