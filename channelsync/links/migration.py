"""Migration of flat legacy SKU links into hierarchical marketplace links.

Each chunk of ``sku_links`` rows is migrated in its own transaction. A
failing chunk is rolled back and reported; later chunks still run.
"""

import time
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channelsync.catalog.repository import CatalogRepository
from channelsync.domain import LinkLevel, LinkStatus
from channelsync.infrastructure.batching import chunked
from channelsync.infrastructure.config import settings
from channelsync.infrastructure.models import ChannelAccount, LegacySkuLink
from channelsync.links.registry import LinkRegistry

logger = structlog.get_logger()

_LEGACY_STATUS_MAP: dict[str, LinkStatus] = {
    "linked": LinkStatus.LINKED,
    "failed": LinkStatus.FAILED,
    "pending": LinkStatus.PENDING,
}


def map_legacy_status(value: str | None, has_external_id: bool) -> LinkStatus:
    """Map a legacy status string to a link status.

    Unknown values become pending, and so does ``linked`` without an
    external identifier.
    """
    status = _LEGACY_STATUS_MAP.get((value or "").strip().lower(), LinkStatus.PENDING)
    if status == LinkStatus.LINKED and not has_external_id:
        return LinkStatus.PENDING
    return status


@dataclass
class MigrationResult:
    """Totals of a migration run."""

    dry_run: bool = False
    total_legacy_links: int = 0
    migrated: int = 0
    skipped: int = 0
    variant_links_created: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)
    failed_chunks: list[int] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    orphaned_variant_links: int = 0
    execution_time_ms: int = 0

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1

    def merge(self, other: "MigrationResult") -> None:
        """Add the counts of a chunk result into this one."""
        self.migrated += other.migrated
        self.skipped += other.skipped
        self.variant_links_created += other.variant_links_created
        for reason, count in other.skip_reasons.items():
            self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + count
        self.errors.extend(other.errors)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed_chunks or self.orphaned_variant_links else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "total_legacy_links": self.total_legacy_links,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "skip_reasons": self.skip_reasons,
            "variant_links_created": self.variant_links_created,
            "failed_chunks": self.failed_chunks,
            "errors": self.errors,
            "orphaned_variant_links": self.orphaned_variant_links,
            "execution_time_ms": self.execution_time_ms,
        }


class LegacyLinkMigrator:
    """Convert ``sku_links`` rows into product links with variant fan-out.

    Example usage:
        migrator = LegacyLinkMigrator(session_factory, batch_size=100)
        result = await migrator.run(dry_run=True)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.migration_batch_size

    async def run(self, dry_run: bool = False) -> MigrationResult:
        """Migrate every legacy link.

        Args:
            dry_run: Make the decisions and count them without writing.

        Returns:
            MigrationResult with totals, skip reasons and failed chunks.
        """
        started = time.monotonic()
        result = MigrationResult(dry_run=dry_run)

        async with self.session_factory() as session:
            legacy_ids = list(
                (
                    await session.execute(
                        select(LegacySkuLink.id).order_by(LegacySkuLink.created_at, LegacySkuLink.id)
                    )
                ).scalars().all()
            )
        result.total_legacy_links = len(legacy_ids)
        logger.info(
            "Starting legacy link migration",
            total=len(legacy_ids),
            batch_size=self.batch_size,
            dry_run=dry_run,
        )

        for chunk_index, chunk_ids in enumerate(chunked(legacy_ids, self.batch_size)):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        chunk_result = await self._migrate_chunk(session, chunk_ids, dry_run)
                result.merge(chunk_result)
            except Exception as e:
                logger.exception("Legacy link chunk failed", chunk=chunk_index, error=str(e))
                result.failed_chunks.append(chunk_index)
                result.errors.append({"chunk": chunk_index, "error": str(e)})

        if not dry_run:
            async with self.session_factory() as session:
                stats = await LinkRegistry(session).statistics()
            result.orphaned_variant_links = stats["orphaned_variant_links"]
            if result.orphaned_variant_links:
                logger.warning(
                    "Orphaned variant links after migration",
                    count=result.orphaned_variant_links,
                )

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        logger.info("Legacy link migration finished", **result.to_dict())
        return result

    async def _migrate_chunk(
        self,
        session: AsyncSession,
        legacy_ids: list[str],
        dry_run: bool,
    ) -> MigrationResult:
        registry = LinkRegistry(session)
        catalog = CatalogRepository(session)
        result = MigrationResult(dry_run=dry_run)

        rows = (
            await session.execute(
                select(LegacySkuLink)
                .where(LegacySkuLink.id.in_(legacy_ids))
                .order_by(LegacySkuLink.created_at, LegacySkuLink.id)
            )
        ).scalars().all()

        for legacy in rows:
            if await session.get(ChannelAccount, legacy.channel_account_id) is None:
                result.skip("unknown channel account")
                continue
            if await catalog.get_product(legacy.product_id) is None:
                result.skip("unknown product")
                continue
            if not legacy.external_product_id:
                result.skip("missing external product id")
                continue
            if await registry.find_for_internal(
                legacy.channel_account_id, LinkLevel.PRODUCT, legacy.product_id
            ):
                result.skip("product already linked")
                continue
            if await registry.find_by_external(
                legacy.channel_account_id, LinkLevel.PRODUCT, legacy.external_product_id
            ) is not None:
                result.skip("external product already bound")
                continue

            if dry_run:
                result.migrated += 1
                result.variant_links_created += await self._count_unlinked_variants(
                    registry, catalog, legacy
                )
                continue

            link = await registry.upsert_product_link(
                legacy.channel_account_id,
                legacy.product_id,
                legacy.external_product_id,
                data={
                    "internal_sku": legacy.internal_sku,
                    "external_sku": legacy.external_sku,
                    "metadata": {
                        **(legacy.marketplace_data or {}),
                        "migrated_from_sku_link": legacy.id,
                    },
                },
            )

            status = map_legacy_status(legacy.link_status, bool(legacy.external_product_id))
            if status != LinkStatus.PENDING:
                await registry.mark_status(link, status, linked_by=legacy.linked_by or "migration")
                if status == LinkStatus.LINKED and legacy.linked_at is not None:
                    link.linked_at = legacy.linked_at

            result.migrated += 1
            result.variant_links_created += len(await registry.children(link))

        return result

    @staticmethod
    async def _count_unlinked_variants(
        registry: LinkRegistry,
        catalog: CatalogRepository,
        legacy: LegacySkuLink,
    ) -> int:
        count = 0
        for variant in await catalog.get_variants_for_product(legacy.product_id):
            if not await registry.find_for_internal(
                legacy.channel_account_id, LinkLevel.VARIANT, variant.id
            ):
                count += 1
        return count
