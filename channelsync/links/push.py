"""Push-driven link transitions.

A catalog/offer push adapter sends a product or variant to a channel and
reports back the identifiers the channel assigned. ``LinkSynchronizer``
turns those results into link state changes.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.domain import LinkLevel, LinkStatus
from channelsync.infrastructure.models import MarketplaceLink
from channelsync.links.registry import LinkRegistry

logger = structlog.get_logger()


@dataclass
class PushResult:
    """Result reported by a push adapter."""

    success: bool
    external_product_id: str | None = None
    external_variant_id: str | None = None
    external_sku: str | None = None
    error: str | None = None


class PushAdapter(Protocol):
    """Sends one product or variant to a channel."""

    async def push(self, link: MarketplaceLink, payload: dict[str, Any]) -> PushResult:
        ...


class LinkSynchronizer:
    """Push links through an adapter and record the outcome on each link."""

    def __init__(self, session: AsyncSession, adapter: PushAdapter) -> None:
        self.session = session
        self.adapter = adapter
        self.registry = LinkRegistry(session)

    async def push(
        self,
        link: MarketplaceLink,
        payload: dict[str, Any],
        pushed_by: str = "sync",
    ) -> PushResult:
        """Push one link and apply the result.

        Failed links are moved back to pending before the retry. Linked
        links are pushed again without a state change on success.

        Args:
            link: Link to push.
            payload: Channel-specific body for the adapter.
            pushed_by: Actor recorded when the link becomes linked.

        Returns:
            The adapter's result; adapter exceptions are recorded as failures.
        """
        if link.link_status.is_retryable():
            await self.registry.mark_status(link, LinkStatus.PENDING)

        try:
            result = await self.adapter.push(link, payload)
        except Exception as e:
            logger.warning("Push adapter raised", link_id=link.id, error=str(e))
            result = PushResult(success=False, error=str(e))

        await self.apply_result(link, result, pushed_by=pushed_by)
        return result

    async def apply_result(
        self,
        link: MarketplaceLink,
        result: PushResult,
        pushed_by: str = "sync",
    ) -> None:
        """Record a push result on a link.

        Args:
            link: Link that was pushed.
            result: Adapter result.
            pushed_by: Actor recorded when the link becomes linked.
        """
        if not result.success:
            if link.link_status == LinkStatus.LINKED:
                link.external_metadata = {
                    **(link.external_metadata or {}),
                    "last_error": result.error,
                }
                await self.session.flush()
                logger.warning("Push failed for linked link", link_id=link.id, error=result.error)
                return
            await self.registry.mark_status(link, LinkStatus.FAILED, error=result.error)
            return

        if result.external_product_id and not link.external_product_id:
            link.external_product_id = result.external_product_id
        if (
            link.link_level == LinkLevel.VARIANT
            and result.external_variant_id
            and not link.external_variant_id
        ):
            link.external_variant_id = result.external_variant_id
        if result.external_sku:
            link.external_sku = result.external_sku
        if link.external_metadata and "last_error" in link.external_metadata:
            link.external_metadata = {
                k: v for k, v in link.external_metadata.items() if k != "last_error"
            }

        if link.link_status == LinkStatus.PENDING:
            if link.external_id:
                await self.registry.mark_status(link, LinkStatus.LINKED, linked_by=pushed_by)
            else:
                await self.registry.mark_status(
                    link,
                    LinkStatus.FAILED,
                    error="channel did not return an external identifier",
                )
        else:
            await self.session.flush()
