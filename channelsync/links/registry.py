"""Link registry.

Tracks which internal product or variant is bound to which external
catalog entry in each channel account, and drives the link lifecycle.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.catalog.repository import CatalogRepository
from channelsync.domain import (
    ChannelAccountNotFoundError,
    IntegrityError,
    LinkLevel,
    LinkStatus,
    StateTransition,
    validate_link_transition,
)
from channelsync.infrastructure.clock import utcnow
from channelsync.infrastructure.models import ChannelAccount, MarketplaceLink

logger = structlog.get_logger()


@dataclass
class LinkHierarchy:
    """A product link with its variant links."""

    product_link: MarketplaceLink
    variant_links: list[MarketplaceLink] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        statuses: dict[str, int] = {}
        for link in self.variant_links:
            statuses[link.status] = statuses.get(link.status, 0) + 1
        return {
            "product_link": self.product_link.to_dict(),
            "variant_links": [v.to_dict() for v in self.variant_links],
            "variant_status_counts": statuses,
        }


class LinkRegistry:
    """Create, look up and transition marketplace links.

    The registry flushes but never commits; the caller owns the transaction.

    Example usage:
        registry = LinkRegistry(session)
        link = await registry.upsert_product_link(account_id, product_id, "EXT-1")
        await registry.mark_status(link, LinkStatus.LINKED, linked_by="sync")
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize registry with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session
        self.catalog = CatalogRepository(session)

    async def upsert_product_link(
        self,
        account_id: str,
        internal_product_id: str,
        external_product_id: str,
        data: dict[str, Any] | None = None,
        fan_out: bool = True,
    ) -> MarketplaceLink:
        """Create or update the product-level link for an external product.

        A newly created link fans out one pending variant link per internal
        variant that has no variant link in this account yet.

        Args:
            account_id: Channel account ID.
            internal_product_id: Internal product ID.
            external_product_id: External product ID in the channel.
            data: Optional ``internal_sku``, ``external_sku`` and ``metadata``.
            fan_out: Create pending variant links on creation.

        Returns:
            The product link.

        Raises:
            ChannelAccountNotFoundError: If the account does not exist.
            IntegrityError: If the external product is bound to another product.
        """
        await self._require_account(account_id)
        data = data or {}

        link = await self.find_by_external(account_id, LinkLevel.PRODUCT, external_product_id)
        if link is not None:
            if link.internal_id != internal_product_id:
                raise IntegrityError(
                    f"External product {external_product_id} is already bound to "
                    f"product {link.internal_id} in account {account_id}",
                    details={
                        "account_id": account_id,
                        "external_product_id": external_product_id,
                        "bound_to": link.internal_id,
                        "requested": internal_product_id,
                    },
                )
            self._apply_data(link, data)
            await self.session.flush()
            logger.info(
                "Product link updated",
                link_id=link.id,
                account_id=account_id,
                external_product_id=external_product_id,
            )
            return link

        link = MarketplaceLink(
            channel_account_id=account_id,
            level=LinkLevel.PRODUCT.value,
            internal_id=internal_product_id,
            external_product_id=external_product_id,
            status=LinkStatus.PENDING.value,
            external_metadata={},
        )
        self._apply_data(link, data)
        self.session.add(link)
        await self.session.flush()

        fanned_out = await self.fan_out_variant_links(link) if fan_out else []
        logger.info(
            "Product link created",
            link_id=link.id,
            account_id=account_id,
            external_product_id=external_product_id,
            variant_links_created=len(fanned_out),
        )
        return link

    async def fan_out_variant_links(self, product_link: MarketplaceLink) -> list[MarketplaceLink]:
        """Create pending variant links for variants that have none yet.

        Args:
            product_link: Product-level link.

        Returns:
            The variant links created.
        """
        variants = await self.catalog.get_variants_for_product(product_link.internal_id)
        created = []
        for variant in variants:
            existing = await self._find_variant_link_for(product_link.channel_account_id, variant.id)
            if existing is not None:
                continue
            link = MarketplaceLink(
                channel_account_id=product_link.channel_account_id,
                level=LinkLevel.VARIANT.value,
                internal_id=variant.id,
                internal_sku=variant.sku,
                external_product_id=product_link.external_product_id,
                parent_link_id=product_link.id,
                status=LinkStatus.PENDING.value,
                external_metadata={},
            )
            self.session.add(link)
            created.append(link)
        if created:
            await self.session.flush()
        return created

    async def upsert_variant_link(
        self,
        account_id: str,
        internal_variant_id: str,
        external_variant_id: str,
        parent_link: MarketplaceLink | None = None,
        data: dict[str, Any] | None = None,
    ) -> MarketplaceLink:
        """Create or update the variant-level link for an external variant.

        A pending fan-out link for the same internal variant without an
        external variant ID is adopted instead of creating a second link.

        Args:
            account_id: Channel account ID.
            internal_variant_id: Internal variant ID.
            external_variant_id: External variant ID in the channel.
            parent_link: Product-level link in the same account.
            data: Optional ``internal_sku``, ``external_sku`` and ``metadata``.

        Returns:
            The variant link.

        Raises:
            IntegrityError: If the parent is not a product link of this account,
                or the external variant is bound to another variant.
        """
        await self._require_account(account_id)
        data = data or {}

        if parent_link is not None:
            self._check_parent(account_id, parent_link)

        link = await self.find_by_external(account_id, LinkLevel.VARIANT, external_variant_id)
        if link is not None and link.internal_id != internal_variant_id:
            raise IntegrityError(
                f"External variant {external_variant_id} is already bound to "
                f"variant {link.internal_id} in account {account_id}",
                details={
                    "account_id": account_id,
                    "external_variant_id": external_variant_id,
                    "bound_to": link.internal_id,
                    "requested": internal_variant_id,
                },
            )

        if link is None:
            link = await self._find_variant_link_for(
                account_id, internal_variant_id, unbound_only=True
            )

        created = link is None
        if created:
            link = MarketplaceLink(
                channel_account_id=account_id,
                level=LinkLevel.VARIANT.value,
                internal_id=internal_variant_id,
                status=LinkStatus.PENDING.value,
                external_metadata={},
            )
            self.session.add(link)

        link.external_variant_id = external_variant_id
        if parent_link is not None:
            link.parent_link_id = parent_link.id
            link.external_product_id = parent_link.external_product_id
        self._apply_data(link, data)
        await self.session.flush()

        logger.info(
            "Variant link created" if created else "Variant link updated",
            link_id=link.id,
            account_id=account_id,
            external_variant_id=external_variant_id,
            parent_link_id=link.parent_link_id,
        )
        return link

    async def find_by_external(
        self,
        account_id: str,
        level: LinkLevel,
        external_id: str,
    ) -> MarketplaceLink | None:
        """Find the link bound to an external ID at a level.

        Args:
            account_id: Channel account ID.
            level: Product or variant level.
            external_id: External product ID or external variant ID.

        Returns:
            Link if found, None otherwise.
        """
        column = (
            MarketplaceLink.external_product_id
            if level == LinkLevel.PRODUCT
            else MarketplaceLink.external_variant_id
        )
        result = await self.session.execute(
            select(MarketplaceLink).where(
                and_(
                    MarketplaceLink.channel_account_id == account_id,
                    MarketplaceLink.level == level.value,
                    column == external_id,
                )
            )
        )
        return result.scalars().first()

    async def get_by_id(self, link_id: str) -> MarketplaceLink | None:
        return await self.session.get(MarketplaceLink, link_id)

    async def find_for_internal(
        self,
        account_id: str,
        level: LinkLevel,
        internal_id: str,
    ) -> Sequence[MarketplaceLink]:
        """Find the links of an internal product or variant in an account."""
        result = await self.session.execute(
            select(MarketplaceLink)
            .where(
                and_(
                    MarketplaceLink.channel_account_id == account_id,
                    MarketplaceLink.level == level.value,
                    MarketplaceLink.internal_id == internal_id,
                )
            )
            .order_by(MarketplaceLink.created_at, MarketplaceLink.id)
        )
        return result.scalars().all()

    async def mark_status(
        self,
        link: MarketplaceLink,
        status: LinkStatus,
        linked_by: str | None = None,
        error: str | None = None,
    ) -> StateTransition[LinkStatus] | None:
        """Move a link to a new status.

        Allowed: pending to linked, pending to failed, failed to pending.
        Marking the current status again is a no-op.

        Args:
            link: Link to transition.
            status: Target status.
            linked_by: Actor recorded when linking.
            error: Failure reason stored in the metadata snapshot.

        Returns:
            The transition, or None for a no-op.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
            IntegrityError: If linking without the external ID for the level.
        """
        current = link.link_status
        if current == status:
            return None

        validate_link_transition(link.id, current, status)

        if status == LinkStatus.LINKED:
            if not link.external_id:
                raise IntegrityError(
                    f"Link {link.id} cannot be linked without an external "
                    f"{link.level} ID",
                    details={"link_id": link.id, "level": link.level},
                )
            link.linked_at = utcnow()
            link.linked_by = linked_by

        if status == LinkStatus.FAILED and error:
            link.external_metadata = {**(link.external_metadata or {}), "last_error": error}

        link.status = status.value
        await self.session.flush()

        transition = StateTransition(from_state=current, to_state=status, trigger="mark_status")
        logger.info("Link status changed", link_id=link.id, transition=str(transition))
        return transition

    async def unlink(self, link: MarketplaceLink) -> StateTransition[LinkStatus] | None:
        """Return a linked link to pending and clear its link stamp.

        Returns:
            The transition, or None if the link was not linked.
        """
        current = link.link_status
        if current != LinkStatus.LINKED:
            return None
        link.status = LinkStatus.PENDING.value
        link.linked_at = None
        link.linked_by = None
        await self.session.flush()

        transition = StateTransition(from_state=current, to_state=LinkStatus.PENDING, trigger="unlink")
        logger.info("Link unlinked", link_id=link.id, transition=str(transition))
        return transition

    async def attach_to_parent(
        self,
        link: MarketplaceLink,
        parent_link: MarketplaceLink,
    ) -> MarketplaceLink:
        """Set the parent of a variant link.

        Raises:
            IntegrityError: If the link is not variant-level or the parent is invalid.
        """
        if link.link_level != LinkLevel.VARIANT:
            raise IntegrityError(
                f"Link {link.id} is not a variant link",
                details={"link_id": link.id, "level": link.level},
            )
        self._check_parent(link.channel_account_id, parent_link)
        link.parent_link_id = parent_link.id
        if link.external_product_id is None:
            link.external_product_id = parent_link.external_product_id
        await self.session.flush()
        return link

    async def children(self, link: MarketplaceLink) -> Sequence[MarketplaceLink]:
        """Variant links whose parent is this product link."""
        result = await self.session.execute(
            select(MarketplaceLink)
            .where(MarketplaceLink.parent_link_id == link.id)
            .order_by(MarketplaceLink.internal_sku, MarketplaceLink.id)
        )
        return result.scalars().all()

    async def hierarchy(self, link: MarketplaceLink) -> LinkHierarchy:
        """Product link with its variant links."""
        return LinkHierarchy(product_link=link, variant_links=list(await self.children(link)))

    async def statistics(self, account_id: str | None = None) -> dict[str, Any]:
        """Counts of links by level and status.

        Args:
            account_id: Restrict to one account.

        Returns:
            ``{"total", "by_level", "by_status", "orphaned_variant_links"}``.
        """
        query = select(MarketplaceLink.level, MarketplaceLink.status, func.count())
        orphaned = select(func.count()).select_from(MarketplaceLink).where(
            and_(
                MarketplaceLink.level == LinkLevel.VARIANT.value,
                MarketplaceLink.parent_link_id.is_(None),
            )
        )
        if account_id is not None:
            query = query.where(MarketplaceLink.channel_account_id == account_id)
            orphaned = orphaned.where(MarketplaceLink.channel_account_id == account_id)

        rows = (await self.session.execute(query.group_by(MarketplaceLink.level, MarketplaceLink.status))).all()
        by_level: dict[str, int] = {}
        by_status: dict[str, int] = {}
        for level, status, count in rows:
            by_level[level] = by_level.get(level, 0) + count
            by_status[status] = by_status.get(status, 0) + count

        return {
            "total": sum(by_level.values()),
            "by_level": by_level,
            "by_status": by_status,
            "orphaned_variant_links": (await self.session.execute(orphaned)).scalar_one(),
        }

    # ------------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------------

    async def _require_account(self, account_id: str) -> ChannelAccount:
        account = await self.session.get(ChannelAccount, account_id)
        if account is None:
            raise ChannelAccountNotFoundError(account_id)
        return account

    async def _find_variant_link_for(
        self,
        account_id: str,
        variant_id: str,
        unbound_only: bool = False,
    ) -> MarketplaceLink | None:
        conditions = [
            MarketplaceLink.channel_account_id == account_id,
            MarketplaceLink.level == LinkLevel.VARIANT.value,
            MarketplaceLink.internal_id == variant_id,
        ]
        if unbound_only:
            conditions.append(MarketplaceLink.external_variant_id.is_(None))
        result = await self.session.execute(
            select(MarketplaceLink)
            .where(and_(*conditions))
            .order_by(MarketplaceLink.created_at, MarketplaceLink.id)
        )
        return result.scalars().first()

    @staticmethod
    def _check_parent(account_id: str, parent_link: MarketplaceLink) -> None:
        if parent_link.channel_account_id != account_id:
            raise IntegrityError(
                f"Parent link {parent_link.id} belongs to account "
                f"{parent_link.channel_account_id}, not {account_id}",
                details={
                    "parent_link_id": parent_link.id,
                    "parent_account_id": parent_link.channel_account_id,
                    "account_id": account_id,
                },
            )
        if parent_link.link_level != LinkLevel.PRODUCT:
            raise IntegrityError(
                f"Parent link {parent_link.id} is not a product link",
                details={"parent_link_id": parent_link.id, "level": parent_link.level},
            )

    @staticmethod
    def _apply_data(link: MarketplaceLink, data: dict[str, Any]) -> None:
        if "internal_sku" in data:
            link.internal_sku = data["internal_sku"]
        if "external_sku" in data:
            link.external_sku = data["external_sku"]
        if data.get("metadata"):
            link.external_metadata = {**(link.external_metadata or {}), **data["metadata"]}
