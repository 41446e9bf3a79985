"""Tests for the discovery orchestrator."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from channelsync.discovery import AdapterRegistry, DiscoveryError, DiscoveryOrchestrator, StaticFieldAdapter
from channelsync.domain import ConfigurationError
from channelsync.infrastructure.models import TaxonomyEntry
from channelsync.taxonomy.payload import DiscoveryPayload

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

FIELDS = [
    {"code": "title", "label": "Title", "type": "TEXT", "required": True},
    {"code": "color", "label": "Color", "type": "LIST", "values": ["red", "blue"]},
]


class FailingAdapter:
    async def discover(self, account):
        raise DiscoveryError(account.id, "HTTP 500 from /api/hierarchies", status_code=500)


class PartialAdapter:
    """Returns attributes but reports the value-list call as failed."""

    async def discover(self, account):
        return DiscoveryPayload(
            attributes=[{"code": "color", "label": "Color", "value_list": "color"}],
            errors=["values_lists endpoint timed out"],
        )


def _registry(**adapters) -> AdapterRegistry:
    registry = AdapterRegistry()
    for channel_type, adapter in adapters.items():
        registry.register(channel_type, adapter)
    return registry


async def _entry_count(session_factory, account_id: str) -> int:
    async with session_factory() as check:
        query = select(func.count()).select_from(TaxonomyEntry).where(TaxonomyEntry.channel_account_id == account_id)
        return (await check.execute(query)).scalar_one()


async def _active_values(session_factory, account_id: str) -> int:
    async with session_factory() as check:
        query = (
            select(func.count())
            .select_from(TaxonomyEntry)
            .where(
                TaxonomyEntry.channel_account_id == account_id,
                TaxonomyEntry.taxonomy_type == "value",
                TaxonomyEntry.is_active.is_(True),
            )
        )
        return (await check.execute(query)).scalar_one()


class TestDiscoveryOrchestrator:
    """Tests for DiscoveryOrchestrator.run."""

    async def test_failed_account_does_not_block_others(self, session, session_factory, seed) -> None:
        """One account failing leaves the other's entries committed."""
        broken = await seed.account("ebay", "broken")
        healthy = await seed.account("shopify", "healthy")
        await session.commit()
        orchestrator = DiscoveryOrchestrator(
            session_factory, _registry(ebay=FailingAdapter(), shopify=StaticFieldAdapter(FIELDS))
        )

        summary = await orchestrator.run(now=NOW)

        assert summary.total_accounts == 2
        assert summary.successful == 1
        assert summary.failed == 1
        assert "HTTP 500" in summary.errors[broken.id]
        assert summary.exit_code == 1
        assert await _entry_count(session_factory, healthy.id) == 4
        assert await _entry_count(session_factory, broken.id) == 0

    async def test_counts_fields_and_value_lists(self, session, session_factory, seed) -> None:
        account = await seed.account("shopify")
        await session.commit()
        orchestrator = DiscoveryOrchestrator(session_factory, _registry(shopify=StaticFieldAdapter(FIELDS)))

        summary = await orchestrator.run([account.id], now=NOW)

        (result,) = summary.results
        assert result.success
        assert result.fields_discovered == 2
        assert result.value_lists_discovered == 1
        assert result.required_fields == 1
        assert result.optional_fields == 1
        assert summary.to_dict()["total_fields"] == 2

    async def test_fresh_account_is_skipped_unless_forced(self, session, session_factory, seed) -> None:
        """Accounts synced within the freshness window are skipped."""
        account = await seed.account("shopify")
        await session.commit()
        orchestrator = DiscoveryOrchestrator(
            session_factory, _registry(shopify=StaticFieldAdapter(FIELDS)), freshness_days=7
        )
        await orchestrator.run(now=NOW)

        summary = await orchestrator.run(now=NOW + timedelta(days=2))
        assert summary.skipped == 1
        assert summary.results[0].skip_reason == "synced 2 days ago"

        forced = await orchestrator.run(force=True, now=NOW + timedelta(days=2))
        assert forced.successful == 1
        assert forced.results[0].account_id == account.id

    async def test_dry_run_plans_without_calling_adapters(self, session, session_factory, seed) -> None:
        account = await seed.account("ebay")
        await session.commit()
        orchestrator = DiscoveryOrchestrator(session_factory, _registry(ebay=FailingAdapter()))

        summary = await orchestrator.run(dry_run=True, now=NOW)

        assert summary.planned == 1
        assert summary.failed == 0
        assert summary.exit_code == 0
        assert await _entry_count(session_factory, account.id) == 0

    async def test_empty_payload_is_a_failure(self, session, session_factory, seed) -> None:
        """An empty schema never wipes stored entries."""
        account = await seed.account("shopify")
        await session.commit()
        await DiscoveryOrchestrator(session_factory, _registry(shopify=StaticFieldAdapter(FIELDS))).run(now=NOW)

        summary = await DiscoveryOrchestrator(session_factory, _registry(shopify=StaticFieldAdapter([]))).run(
            force=True, now=NOW
        )

        assert summary.failed == 1
        assert "empty schema" in summary.errors[account.id]
        assert await _entry_count(session_factory, account.id) == 4

    async def test_missing_adapter_is_a_failure(self, session, session_factory, seed) -> None:
        account = await seed.account("etsy")
        await session.commit()

        summary = await DiscoveryOrchestrator(session_factory, _registry()).run(now=NOW)

        assert summary.failed == 1
        assert "etsy" in summary.errors[account.id]

    async def test_inactive_accounts_only_run_when_named(self, session, session_factory, seed) -> None:
        account = await seed.account("shopify", is_active=False)
        await session.commit()
        orchestrator = DiscoveryOrchestrator(session_factory, _registry(shopify=StaticFieldAdapter(FIELDS)))

        assert (await orchestrator.run(now=NOW)).total_accounts == 0
        assert (await orchestrator.run([account.id], now=NOW)).successful == 1

    async def test_unknown_account_ids(self, session_factory) -> None:
        with pytest.raises(ConfigurationError, match="Unknown channel accounts: nope"):
            await DiscoveryOrchestrator(session_factory, _registry()).run(["nope"])

    async def test_partial_payload_is_reported_and_keeps_stored_entries(self, session, session_factory, seed) -> None:
        """Adapter errors alongside data are surfaced and nothing is deactivated."""
        account = await seed.account("shopify")
        await session.commit()
        await DiscoveryOrchestrator(session_factory, _registry(shopify=StaticFieldAdapter(FIELDS))).run(now=NOW)
        assert await _active_values(session_factory, account.id) == 2

        summary = await DiscoveryOrchestrator(session_factory, _registry(shopify=PartialAdapter())).run(
            force=True, now=NOW + timedelta(days=1)
        )

        (result,) = summary.results
        assert result.success
        assert result.partial_errors == ["values_lists endpoint timed out"]
        assert result.entries_deactivated == 0
        assert summary.errors[account.id] == "values_lists endpoint timed out"
        assert summary.to_dict()["results"][0]["partial_errors"] == ["values_lists endpoint timed out"]
        assert await _active_values(session_factory, account.id) == 2
