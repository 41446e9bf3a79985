"""Channel schema discovery."""

from channelsync.discovery.adapters import (
    AdapterRegistry,
    DiscoveryAdapter,
    DiscoveryError,
    HttpDiscoveryAdapter,
    StaticFieldAdapter,
    default_adapter_registry,
)
from channelsync.discovery.orchestrator import (
    AccountSyncResult,
    DiscoveryOrchestrator,
    DiscoverySummary,
)

__all__ = [
    "AccountSyncResult",
    "AdapterRegistry",
    "DiscoveryAdapter",
    "DiscoveryError",
    "DiscoveryOrchestrator",
    "DiscoverySummary",
    "HttpDiscoveryAdapter",
    "StaticFieldAdapter",
    "default_adapter_registry",
]
