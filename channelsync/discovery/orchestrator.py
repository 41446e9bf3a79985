"""Discovery/sync orchestrator.

Runs discovery for every active channel account (or an explicit list),
normalises each payload and feeds it to the taxonomy store. Accounts are
isolated from each other: each one runs in its own transaction and a
failure is recorded without stopping the rest.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channelsync.discovery.adapters import AdapterRegistry, DiscoveryError, default_adapter_registry
from channelsync.domain import ConfigurationError
from channelsync.infrastructure.clock import utcnow
from channelsync.infrastructure.config import settings
from channelsync.infrastructure.models import ChannelAccount
from channelsync.taxonomy.payload import PayloadNormalizer
from channelsync.taxonomy.store import TaxonomyStore

logger = structlog.get_logger()


@dataclass
class AccountSyncResult:
    """Outcome of discovery for one account."""

    account_id: str
    channel_type: str
    account_name: str
    success: bool = False
    skipped: bool = False
    skip_reason: str | None = None
    planned: bool = False
    fields_discovered: int = 0
    value_lists_discovered: int = 0
    categories_discovered: int = 0
    required_fields: int = 0
    optional_fields: int = 0
    entries_skipped: int = 0
    entries_deactivated: int = 0
    error: str | None = None
    partial_errors: list[str] = field(default_factory=list)
    execution_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "channel_type": self.channel_type,
            "account_name": self.account_name,
            "success": self.success,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "planned": self.planned,
            "fields_discovered": self.fields_discovered,
            "value_lists_discovered": self.value_lists_discovered,
            "categories_discovered": self.categories_discovered,
            "required_fields": self.required_fields,
            "optional_fields": self.optional_fields,
            "entries_skipped": self.entries_skipped,
            "entries_deactivated": self.entries_deactivated,
            "error": self.error,
            "partial_errors": self.partial_errors,
            "execution_time_ms": self.execution_time_ms,
        }


@dataclass
class DiscoverySummary:
    """Totals across all accounts of a discovery run."""

    dry_run: bool = False
    total_accounts: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    planned: int = 0
    total_fields: int = 0
    total_value_lists: int = 0
    total_required_fields: int = 0
    total_optional_fields: int = 0
    errors: dict[str, str] = field(default_factory=dict)
    results: list[AccountSyncResult] = field(default_factory=list)
    execution_time_ms: int = 0

    def add(self, result: AccountSyncResult) -> None:
        """Fold one account's result into the totals."""
        self.results.append(result)
        if result.planned:
            self.planned += 1
        elif result.skipped:
            self.skipped += 1
        elif result.success:
            self.successful += 1
            self.total_fields += result.fields_discovered
            self.total_value_lists += result.value_lists_discovered
            self.total_required_fields += result.required_fields
            self.total_optional_fields += result.optional_fields
            if result.partial_errors:
                self.errors[result.account_id] = "; ".join(result.partial_errors)
        else:
            self.failed += 1
            self.errors[result.account_id] = result.error or "unknown error"

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "total_accounts": self.total_accounts,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "planned": self.planned,
            "total_fields": self.total_fields,
            "total_value_lists": self.total_value_lists,
            "total_required_fields": self.total_required_fields,
            "total_optional_fields": self.total_optional_fields,
            "errors": self.errors,
            "results": [r.to_dict() for r in self.results],
            "execution_time_ms": self.execution_time_ms,
        }


class DiscoveryOrchestrator:
    """Drive discovery across channel accounts.

    Example usage:
        orchestrator = DiscoveryOrchestrator(session_factory)
        summary = await orchestrator.run(force=True)
        sys.exit(summary.exit_code)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapters: AdapterRegistry | None = None,
        freshness_days: int | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            session_factory: Factory for per-account sessions.
            adapters: Adapter registry, defaults to the built-in adapters.
            freshness_days: Accounts synced more recently are skipped unless forced.
        """
        self.session_factory = session_factory
        self.adapters = adapters or default_adapter_registry()
        self.freshness = timedelta(
            days=settings.discovery_freshness_days if freshness_days is None else freshness_days
        )

    async def run(
        self,
        account_ids: list[str] | None = None,
        force: bool = False,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> DiscoverySummary:
        """Discover every selected account.

        Args:
            account_ids: Explicit accounts; defaults to all active accounts.
            force: Ignore the staleness guard.
            dry_run: Report which accounts would sync without calling adapters.
            now: Reference time, defaults to the current time.

        Returns:
            DiscoverySummary with per-account results.

        Raises:
            ConfigurationError: If an explicit account ID is unknown.
        """
        started = time.monotonic()
        now = now or utcnow()
        accounts = await self._select_accounts(account_ids)
        summary = DiscoverySummary(dry_run=dry_run, total_accounts=len(accounts))

        logger.info(
            "Starting channel discovery",
            accounts=len(accounts),
            force=force,
            dry_run=dry_run,
        )

        for account in accounts:
            result = AccountSyncResult(
                account_id=account.id,
                channel_type=account.channel_type,
                account_name=account.account_name,
            )

            skip_reason = None if force else await self._freshness_skip_reason(account, now)
            if skip_reason:
                result.skipped = True
                result.skip_reason = skip_reason
                logger.info("Skipping fresh account", account_id=account.id, reason=skip_reason)
            elif dry_run:
                result.planned = True
                result.success = True
            else:
                await self._sync_account(account, result, now)

            summary.add(result)

        summary.execution_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Channel discovery finished",
            successful=summary.successful,
            failed=summary.failed,
            skipped=summary.skipped,
            total_fields=summary.total_fields,
        )
        return summary

    async def _select_accounts(self, account_ids: list[str] | None) -> list[ChannelAccount]:
        async with self.session_factory() as session:
            if account_ids:
                result = await session.execute(
                    select(ChannelAccount).where(ChannelAccount.id.in_(account_ids))
                )
                found = {a.id: a for a in result.scalars().all()}
                missing = [a for a in account_ids if a not in found]
                if missing:
                    raise ConfigurationError(
                        f"Unknown channel accounts: {', '.join(missing)}",
                        details={"account_ids": missing},
                    )
                return [found[a] for a in dict.fromkeys(account_ids)]

            result = await session.execute(
                select(ChannelAccount)
                .where(ChannelAccount.is_active.is_(True))
                .order_by(ChannelAccount.channel_type, ChannelAccount.account_name)
            )
            return list(result.scalars().all())

    async def _freshness_skip_reason(self, account: ChannelAccount, now: datetime) -> str | None:
        async with self.session_factory() as session:
            last_synced = await TaxonomyStore(session).last_synced_at(account.id)
        if last_synced is None:
            return None
        age = now - last_synced
        if age < self.freshness:
            return f"synced {age.days} days ago"
        return None

    async def _sync_account(
        self,
        account: ChannelAccount,
        result: AccountSyncResult,
        now: datetime,
    ) -> None:
        started = time.monotonic()
        try:
            adapter = self.adapters.get(account.channel_type)
            payload = await adapter.discover(account)
            if payload.is_empty:
                reason = "; ".join(payload.errors) or "adapter returned an empty schema"
                raise DiscoveryError(account.id, reason)

            entries = PayloadNormalizer().normalize(payload)
            async with self.session_factory() as session:
                async with session.begin():
                    # A partial payload must not deactivate what the adapter failed to fetch
                    upsert = await TaxonomyStore(session).upsert_entries(
                        account.id, entries, now=now, deactivate_missing=not payload.errors
                    )

            if payload.errors:
                result.partial_errors = list(payload.errors)
                logger.warning(
                    "Partial discovery payload",
                    account_id=account.id,
                    channel_type=account.channel_type,
                    errors=payload.errors,
                )

            result.success = True
            result.fields_discovered = upsert.counts_by_type.get("attribute", 0)
            result.categories_discovered = upsert.counts_by_type.get("category", 0)
            result.value_lists_discovered = len(
                {v.get("code") for v in payload.value_lists if v.get("code")}
                | {a.get("code") or a.get("external_id") for a in payload.attributes if a.get("values")}
            )
            result.required_fields = upsert.required_attributes
            result.optional_fields = upsert.optional_attributes
            result.entries_skipped = len(upsert.skipped)
            result.entries_deactivated = upsert.deactivated
            logger.info(
                "Account discovery complete",
                account_id=account.id,
                channel_type=account.channel_type,
                fields=result.fields_discovered,
                value_lists=result.value_lists_discovered,
            )
        except Exception as e:
            result.success = False
            result.error = str(e)
            logger.exception(
                "Account discovery failed",
                account_id=account.id,
                channel_type=account.channel_type,
                error=str(e),
            )
        finally:
            result.execution_time_ms = int((time.monotonic() - started) * 1000)
