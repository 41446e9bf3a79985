"""Channel discovery adapters.

An adapter fetches the raw schema of one channel account. Channels with a
fixed listing format (Shopify, eBay, Amazon) are served from built-in
field sets; operator platforms that expose their schema over HTTP are
read with ``HttpDiscoveryAdapter``.
"""

from typing import Any, Protocol

import httpx
import structlog

from channelsync.domain import AdapterNotFoundError
from channelsync.infrastructure.config import settings
from channelsync.infrastructure.models import ChannelAccount
from channelsync.taxonomy.payload import DiscoveryPayload

logger = structlog.get_logger()


class DiscoveryAdapter(Protocol):
    """Fetches the schema of a channel account."""

    async def discover(self, account: ChannelAccount) -> DiscoveryPayload:
        ...


class DiscoveryError(Exception):
    """Error from a discovery call."""

    def __init__(self, account_id: str, message: str, status_code: int | None = None) -> None:
        self.account_id = account_id
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{account_id}] {message}")


# ============================================================================
# Static field sets
# ============================================================================


SHOPIFY_FIELDS: list[dict[str, Any]] = [
    # Product fields
    {"code": "title", "label": "Product Title", "type": "TEXT", "required": True},
    {"code": "body_html", "label": "Description", "type": "LONG_TEXT", "required": False},
    {"code": "vendor", "label": "Vendor", "type": "TEXT", "required": False},
    {"code": "product_type", "label": "Product Type", "type": "TEXT", "required": False},
    {"code": "tags", "label": "Tags", "type": "LIST_MULTIPLE_VALUES", "required": False},
    {"code": "handle", "label": "URL Handle", "type": "TEXT", "required": False},
    {"code": "published", "label": "Published", "type": "BOOLEAN", "required": False},
    # Variant fields
    {"code": "sku", "label": "SKU", "type": "TEXT", "required": True},
    {"code": "price", "label": "Price", "type": "DECIMAL", "required": True},
    {"code": "compare_at_price", "label": "Compare At Price", "type": "DECIMAL", "required": False},
    {"code": "inventory_quantity", "label": "Inventory Quantity", "type": "INTEGER", "required": False},
    {"code": "weight", "label": "Weight", "type": "DECIMAL", "required": False},
    {"code": "barcode", "label": "Barcode", "type": "TEXT", "required": False},
    {"code": "option1", "label": "Option 1 (Color)", "type": "TEXT", "required": False},
    {"code": "option2", "label": "Option 2 (Size)", "type": "TEXT", "required": False},
    {"code": "option3", "label": "Option 3 (Material)", "type": "TEXT", "required": False},
]

EBAY_FIELDS: list[dict[str, Any]] = [
    {"code": "title", "label": "Title", "type": "TEXT", "required": True},
    {"code": "description", "label": "Description", "type": "LONG_TEXT", "required": True},
    {"code": "price", "label": "Price", "type": "DECIMAL", "required": True},
    {"code": "quantity", "label": "Quantity", "type": "INTEGER", "required": True},
    {"code": "condition", "label": "Condition", "type": "LIST", "required": True},
    {"code": "brand", "label": "Brand", "type": "TEXT", "required": False},
    {"code": "mpn", "label": "MPN", "type": "TEXT", "required": False},
    {"code": "upc", "label": "UPC", "type": "TEXT", "required": False},
    {"code": "ean", "label": "EAN", "type": "TEXT", "required": False},
]

AMAZON_FIELDS: list[dict[str, Any]] = [
    {"code": "title", "label": "Product Title", "type": "TEXT", "required": True},
    {"code": "description", "label": "Product Description", "type": "LONG_TEXT", "required": True},
    {"code": "price", "label": "Price", "type": "DECIMAL", "required": True},
    {"code": "quantity", "label": "Quantity", "type": "INTEGER", "required": True},
    {"code": "brand", "label": "Brand", "type": "TEXT", "required": True},
    {"code": "manufacturer", "label": "Manufacturer", "type": "TEXT", "required": False},
    {"code": "asin", "label": "ASIN", "type": "TEXT", "required": False},
    {"code": "upc", "label": "UPC", "type": "TEXT", "required": False},
    {"code": "ean", "label": "EAN", "type": "TEXT", "required": False},
]


class StaticFieldAdapter:
    """Serve a fixed field set for channels with a known listing format."""

    def __init__(self, fields: list[dict[str, Any]], categories: list[dict[str, Any]] | None = None) -> None:
        self.fields = fields
        self.categories = categories or []

    async def discover(self, account: ChannelAccount) -> DiscoveryPayload:
        """Return the built-in field set.

        Args:
            account: Channel account being discovered.

        Returns:
            DiscoveryPayload with the static attributes.
        """
        return DiscoveryPayload(
            categories=[dict(c) for c in self.categories],
            attributes=[dict(f) for f in self.fields],
        )


# ============================================================================
# HTTP discovery
# ============================================================================


class HttpDiscoveryAdapter:
    """Read categories, attributes and value lists from an operator API.

    The account settings carry ``api_url`` and ``api_key``. Endpoint paths
    default to the Mirakl operator layout.
    """

    def __init__(
        self,
        timeout: float | None = None,
        hierarchies_path: str = "/api/hierarchies",
        attributes_path: str = "/api/products/attributes",
        value_lists_path: str = "/api/values_lists",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize adapter.

        Args:
            timeout: Request timeout in seconds.
            hierarchies_path: Category hierarchy endpoint.
            attributes_path: Product attributes endpoint.
            value_lists_path: Value lists endpoint.
            transport: Optional httpx transport (used by tests).
        """
        self.timeout = timeout or settings.discovery_http_timeout
        self.hierarchies_path = hierarchies_path
        self.attributes_path = attributes_path
        self.value_lists_path = value_lists_path
        self.transport = transport

    async def discover(self, account: ChannelAccount) -> DiscoveryPayload:
        """Fetch the schema of an account.

        A failed value-list request is reported in ``errors`` instead of
        failing the whole discovery.

        Raises:
            DiscoveryError: If credentials are missing or the hierarchy or
                attribute request fails.
        """
        config = account.settings or {}
        base_url = config.get("api_url") or config.get("base_url")
        api_key = config.get("api_key")
        if not base_url or not api_key:
            raise DiscoveryError(account.id, "Missing API credentials in account settings")

        async with httpx.AsyncClient(
            base_url=base_url,
            timeout=self.timeout,
            headers={"Authorization": api_key, "Accept": "application/json"},
            transport=self.transport,
        ) as client:
            hierarchies = await self._get(client, account, self.hierarchies_path)
            attributes = await self._get(client, account, self.attributes_path)
            # Value lists are optional; the schema is still usable without them
            errors: list[str] = []
            try:
                value_lists = await self._get(client, account, self.value_lists_path)
            except DiscoveryError as e:
                errors.append(e.message)
                value_lists = {}

        return DiscoveryPayload(
            categories=[
                {
                    "external_id": h.get("code"),
                    "name": h.get("label"),
                    "level": h.get("level", 1),
                    "parent_external_id": h.get("parent_code") or None,
                }
                for h in hierarchies.get("hierarchies", [])
            ],
            attributes=[
                {
                    "code": a.get("code"),
                    "label": a.get("label"),
                    "type": a.get("type"),
                    "required": a.get("required", False),
                    "values_list": a.get("values_list") or a.get("type_parameter"),
                    "category": a.get("hierarchy_code") or None,
                    "validation_rules": a.get("validations") or {},
                }
                for a in attributes.get("attributes", [])
            ],
            value_lists=[
                {"code": v.get("code"), "values": v.get("values", [])}
                for v in value_lists.get("values_lists", [])
            ],
            errors=errors,
        )

    async def _get(
        self,
        client: httpx.AsyncClient,
        account: ChannelAccount,
        path: str,
    ) -> dict[str, Any]:
        try:
            response = await client.get(path)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Discovery request failed",
                account_id=account.id,
                path=path,
                status_code=e.response.status_code,
            )
            raise DiscoveryError(
                account.id,
                f"HTTP {e.response.status_code} from {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("Discovery request error", account_id=account.id, path=path, error=str(e))
            raise DiscoveryError(account.id, f"Request error: {e}") from e


# ============================================================================
# Registry
# ============================================================================


class AdapterRegistry:
    """Map channel types to discovery adapters."""

    def __init__(self) -> None:
        self._adapters: dict[str, DiscoveryAdapter] = {}

    def register(self, channel_type: str, adapter: DiscoveryAdapter) -> None:
        self._adapters[channel_type.lower()] = adapter

    def get(self, channel_type: str) -> DiscoveryAdapter:
        """Get the adapter for a channel type.

        Raises:
            AdapterNotFoundError: If none is registered.
        """
        adapter = self._adapters.get(channel_type.lower())
        if adapter is None:
            raise AdapterNotFoundError(channel_type)
        return adapter

    def channel_types(self) -> list[str]:
        return sorted(self._adapters)


def default_adapter_registry() -> AdapterRegistry:
    """Registry with the built-in adapters."""
    registry = AdapterRegistry()
    registry.register("shopify", StaticFieldAdapter(SHOPIFY_FIELDS))
    registry.register("ebay", StaticFieldAdapter(EBAY_FIELDS))
    registry.register("amazon", StaticFieldAdapter(AMAZON_FIELDS))
    registry.register("mirakl", HttpDiscoveryAdapter())
    return registry
