"""Marketplace link registry, push-driven transitions and legacy migration."""

from channelsync.links.migration import LegacyLinkMigrator, MigrationResult
from channelsync.links.push import LinkSynchronizer, PushAdapter, PushResult
from channelsync.links.registry import LinkHierarchy, LinkRegistry

__all__ = [
    "LegacyLinkMigrator",
    "LinkHierarchy",
    "LinkRegistry",
    "LinkSynchronizer",
    "MigrationResult",
    "PushAdapter",
    "PushResult",
]
