"""Batch attribute inheritance job.

Variants in scope are processed in chunks. Each chunk is one transaction:
a chunk that fails is rolled back and reported while later chunks still
run. Cancellation is only honoured between chunks.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channelsync.catalog.registry import AttributeDefinitionRegistry
from channelsync.catalog.repository import CatalogRepository
from channelsync.domain import ConfigurationError
from channelsync.infrastructure.batching import chunked
from channelsync.infrastructure.config import settings
from channelsync.infrastructure.models import ChannelAccount
from channelsync.inheritance.engine import (
    AttributeInheritanceEngine,
    InheritanceOptions,
    InheritanceResult,
)

logger = structlog.get_logger()


@dataclass
class SyncJobResult:
    """Aggregate of a batch inheritance run, merged chunk by chunk."""

    dry_run: bool = False
    variants_total: int = 0
    variants_processed: int = 0
    inherited: int = 0
    skipped: int = 0
    errors: int = 0
    invalid: int = 0
    chunks_total: int = 0
    chunks_completed: int = 0
    failed_chunks: list[int] = field(default_factory=list)
    chunk_errors: dict[int, str] = field(default_factory=dict)
    variant_errors: dict[str, dict[str, str]] = field(default_factory=dict)
    cancelled: bool = False
    execution_time_ms: int = 0

    def add(self, result: InheritanceResult) -> None:
        """Fold one variant's result into the totals."""
        self.variants_processed += 1
        self.inherited += len(result.inherited)
        self.skipped += len(result.skipped)
        self.errors += len(result.errors)
        self.invalid += len(result.invalid)
        if result.errors:
            self.variant_errors[result.variant_id] = dict(result.errors)

    def merge(self, other: "SyncJobResult") -> None:
        """Add a chunk's totals into this result."""
        self.variants_processed += other.variants_processed
        self.inherited += other.inherited
        self.skipped += other.skipped
        self.errors += other.errors
        self.invalid += other.invalid
        self.variant_errors.update(other.variant_errors)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed_chunks else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "variants_total": self.variants_total,
            "variants_processed": self.variants_processed,
            "inherited": self.inherited,
            "skipped": self.skipped,
            "errors": self.errors,
            "invalid": self.invalid,
            "chunks_total": self.chunks_total,
            "chunks_completed": self.chunks_completed,
            "failed_chunks": self.failed_chunks,
            "chunk_errors": {str(k): v for k, v in self.chunk_errors.items()},
            "variant_errors": self.variant_errors,
            "cancelled": self.cancelled,
            "execution_time_ms": self.execution_time_ms,
        }


class InheritanceSyncJob:
    """Run attribute inheritance over a filtered set of variants.

    Example usage:
        job = InheritanceSyncJob(session_factory, product_ids=[product_id])
        result = await job.run()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        product_ids: list[str] | None = None,
        variant_ids: list[str] | None = None,
        attribute_keys: list[str] | None = None,
        channel_account_id: str | None = None,
        force: bool = False,
        dry_run: bool = False,
        batch_size: int | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the job.

        Args:
            session_factory: Factory for per-chunk sessions.
            product_ids: Restrict to variants of these products.
            variant_ids: Restrict to these variants.
            attribute_keys: Restrict to these attribute keys.
            channel_account_id: Validate against this account's value lists.
            force: Overwrite explicit variant values.
            dry_run: Decide without writing.
            batch_size: Variants per chunk.
            should_cancel: Polled between chunks; returning True stops the job.
        """
        self.session_factory = session_factory
        self.product_ids = product_ids or None
        self.variant_ids = variant_ids or None
        self.attribute_keys = attribute_keys or None
        self.channel_account_id = channel_account_id
        self.force = force
        self.dry_run = dry_run
        self.batch_size = batch_size or settings.inheritance_batch_size
        self.should_cancel = should_cancel or (lambda: False)

    async def validate(self) -> list[str]:
        """Check every filter before work starts and resolve the variants.

        Returns:
            Variant IDs in processing order.

        Raises:
            ConfigurationError: If any product ID, variant ID, attribute key
                or channel account is unknown, or the batch size is invalid.
        """
        if self.batch_size < 1:
            raise ConfigurationError("Batch size must be positive", details={"batch_size": self.batch_size})

        async with self.session_factory() as session:
            catalog = CatalogRepository(session)

            if self.product_ids:
                missing = sorted(set(self.product_ids) - await catalog.existing_product_ids(self.product_ids))
                if missing:
                    raise ConfigurationError(
                        f"Invalid product IDs: {', '.join(missing)}", details={"product_ids": missing}
                    )

            if self.variant_ids:
                missing = sorted(set(self.variant_ids) - await catalog.existing_variant_ids(self.variant_ids))
                if missing:
                    raise ConfigurationError(
                        f"Invalid variant IDs: {', '.join(missing)}", details={"variant_ids": missing}
                    )

            if self.attribute_keys:
                unknown = await AttributeDefinitionRegistry(session).unknown_keys(self.attribute_keys)
                if unknown:
                    raise ConfigurationError(
                        f"Invalid attribute keys: {', '.join(unknown)}", details={"attribute_keys": unknown}
                    )

            if self.channel_account_id and await session.get(ChannelAccount, self.channel_account_id) is None:
                raise ConfigurationError(
                    f"Invalid channel account: {self.channel_account_id}",
                    details={"channel_account_id": self.channel_account_id},
                )

            return await catalog.find_variant_ids(self.product_ids, self.variant_ids)

    async def run(self) -> SyncJobResult:
        """Validate the filters and process every chunk.

        Returns:
            SyncJobResult with merged totals and failed chunks.

        Raises:
            ConfigurationError: If validation fails; nothing is written.
        """
        started = time.monotonic()
        variant_ids = await self.validate()
        chunks = list(chunked(variant_ids, self.batch_size))
        result = SyncJobResult(
            dry_run=self.dry_run,
            variants_total=len(variant_ids),
            chunks_total=len(chunks),
        )
        options = InheritanceOptions(
            force=self.force,
            dry_run=self.dry_run,
            attribute_keys=self.attribute_keys,
            channel_account_id=self.channel_account_id,
        )

        logger.info(
            "Starting attribute inheritance job",
            variants=len(variant_ids),
            chunks=len(chunks),
            batch_size=self.batch_size,
            force=self.force,
            dry_run=self.dry_run,
        )

        for index, chunk in enumerate(chunks):
            if self.should_cancel():
                result.cancelled = True
                logger.warning("Inheritance job cancelled", completed_chunks=result.chunks_completed)
                break

            try:
                chunk_result = await self._run_chunk(chunk, options)
            except Exception as e:
                logger.exception("Inheritance chunk failed", chunk=index, error=str(e))
                result.failed_chunks.append(index)
                result.chunk_errors[index] = str(e)
                continue

            result.merge(chunk_result)
            result.chunks_completed += 1

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Attribute inheritance job finished",
            variants_processed=result.variants_processed,
            inherited=result.inherited,
            skipped=result.skipped,
            errors=result.errors,
            failed_chunks=result.failed_chunks,
        )
        return result

    async def _run_chunk(self, variant_ids: list[str], options: InheritanceOptions) -> SyncJobResult:
        chunk_result = SyncJobResult(dry_run=options.dry_run)
        async with self.session_factory() as session:
            async with session.begin():
                engine = AttributeInheritanceEngine(session)
                for variant in await engine.catalog.get_variants_by_ids(variant_ids):
                    chunk_result.add(await engine.inherit_attributes_for_variant(variant, options))
        return chunk_result
