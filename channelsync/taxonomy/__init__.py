"""Channel taxonomy cache: discovered categories, attributes and values."""

from channelsync.taxonomy.payload import (
    DiscoveryPayload,
    PayloadNormalizer,
    TaxonomyEntryPayload,
)
from channelsync.taxonomy.store import HealthReport, TaxonomyStore, UpsertResult

__all__ = [
    "DiscoveryPayload",
    "HealthReport",
    "PayloadNormalizer",
    "TaxonomyEntryPayload",
    "TaxonomyStore",
    "UpsertResult",
]
