"""Tests for the taxonomy store."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from channelsync.domain import ChannelAccountNotFoundError
from channelsync.infrastructure.models import TaxonomyEntry
from channelsync.taxonomy import TaxonomyStore
from channelsync.taxonomy.store import health_status

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _entries() -> list[dict]:
    return [
        {"type": "category", "external_id": "C1", "name": "Clothing", "level": 1},
        {"type": "category", "external_id": "C2", "name": "Tops", "level": 2, "parent_external_id": "C1"},
        {"type": "category", "external_id": "S1", "name": "Shoes", "level": 1},
        {"type": "attribute", "external_id": "title", "name": "Title", "key": "title", "is_required": True},
        {
            "type": "attribute",
            "external_id": "material",
            "name": "Material",
            "key": "material",
            "data_type": "list",
            "validation_rules": {"value_list": "material"},
            "category_external_id": "C1",
        },
        {
            "type": "attribute",
            "external_id": "heel",
            "name": "Heel height",
            "key": "heel",
            "category_external_id": "S1",
        },
        {"type": "value", "external_id": "material:cotton", "name": "Cotton", "key": "cotton", "parent_external_id": "material"},
        {"type": "value", "external_id": "material:linen", "name": "Linen", "key": "linen", "parent_external_id": "material"},
    ]


async def _count(session) -> int:
    return (await session.execute(select(func.count()).select_from(TaxonomyEntry))).scalar_one()


class TestUpsertEntries:
    """Tests for TaxonomyStore.upsert_entries."""

    async def test_creates_entries(self, session, seed) -> None:
        """New entries are created and counted by type."""
        account = await seed.account()
        result = await TaxonomyStore(session).upsert_entries(account.id, _entries(), now=NOW)

        assert result.created == 8
        assert result.counts_by_type == {"category": 3, "attribute": 3, "value": 2}
        assert result.required_attributes == 1
        assert result.optional_attributes == 2
        assert await _count(session) == 8

    async def test_second_upsert_is_a_no_op(self, session, seed) -> None:
        """Upserting the same payload twice leaves entries unchanged."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(account.id, _entries(), now=NOW)
        before = {e.external_id: e.to_dict() for e in (await session.execute(select(TaxonomyEntry))).scalars()}

        result = await store.upsert_entries(account.id, _entries(), now=NOW)

        after = {e.external_id: e.to_dict() for e in (await session.execute(select(TaxonomyEntry))).scalars()}
        assert result.created == 0
        assert result.updated == 0
        assert result.unchanged == 8
        assert await _count(session) == 8
        assert after == before

    async def test_changed_entry_is_updated(self, session, seed) -> None:
        """A changed name updates the stored entry."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(account.id, _entries(), now=NOW)

        entries = _entries()
        entries[3]["name"] = "Product title"
        result = await store.upsert_entries(account.id, entries, now=NOW)

        assert result.updated == 1
        assert (await store.get_attribute(account.id, "title")).name == "Product title"

    async def test_missing_entries_are_deactivated_and_revived(self, session, seed) -> None:
        """Entries absent from a payload become inactive until they return."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(account.id, _entries(), now=NOW)

        result = await store.upsert_entries(account.id, _entries()[:-1], now=NOW)
        assert result.deactivated == 1
        assert await store.get_value_list(account.id, "material") == ["cotton"]

        result = await store.upsert_entries(account.id, _entries(), now=NOW)
        assert result.updated == 1
        assert await store.get_value_list(account.id, "material") == ["cotton", "linen"]

    async def test_malformed_entries_are_skipped(self, session, seed) -> None:
        """Invalid and duplicate entries are reported, not stored."""
        account = await seed.account()
        entries = [
            {"type": "attribute", "external_id": "title", "name": "Title"},
            {"type": "attribute", "external_id": "brand"},
            {"type": "attribute", "external_id": "title", "name": "Title again"},
        ]
        result = await TaxonomyStore(session).upsert_entries(account.id, entries, now=NOW)

        assert result.created == 1
        assert [(s.index, s.external_id) for s in result.skipped] == [(1, "brand"), (2, "title")]
        assert result.skipped[1].reason == "duplicate entry in payload"

    async def test_oversized_fields_are_skipped(self, session, seed) -> None:
        """Values longer than their columns are rejected before the flush."""
        account = await seed.account()
        entries = [
            {"type": "attribute", "external_id": "title", "name": "Title"},
            {"type": "attribute", "external_id": "fit", "name": "Fit", "data_type": "x" * 51},
            {"type": "value", "external_id": "fit:slim", "name": "Slim", "parent_external_id": "p" * 256},
            {"type": "attribute", "external_id": "size", "name": "Size", "category_external_id": "c" * 256},
        ]
        result = await TaxonomyStore(session).upsert_entries(account.id, entries, now=NOW)

        assert result.created == 1
        assert [s.external_id for s in result.skipped] == ["fit", "fit:slim", "size"]
        assert result.skipped[0].reason.startswith("data_type:")
        assert await _count(session) == 1

    async def test_unknown_account(self, session) -> None:
        """Upserting into a missing account raises."""
        with pytest.raises(ChannelAccountNotFoundError):
            await TaxonomyStore(session).upsert_entries("missing", [], now=NOW)

    async def test_parent_ids_are_resolved(self, session, seed) -> None:
        """Child categories and values point at their parent rows."""
        account = await seed.account()
        await TaxonomyStore(session).upsert_entries(account.id, _entries(), now=NOW)

        rows = {e.external_id: e for e in (await session.execute(select(TaxonomyEntry))).scalars()}
        assert rows["C2"].parent_id == rows["C1"].id
        assert rows["material:cotton"].parent_id == rows["material"].id
        assert rows["C1"].parent_id is None


class TestTaxonomyQueries:
    """Tests for attribute and value list lookups."""

    async def test_attributes_for_category_include_ancestors(self, session, seed) -> None:
        """Attributes attached to an ancestor category apply to its children."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(account.id, _entries(), now=NOW)

        keys = [a.key for a in await store.get_attributes(account.id, category="C2")]
        assert keys == ["material", "title"]
        assert await store.category_lineage(account.id, "C2") == ["C2", "C1"]

    async def test_all_attributes(self, session, seed) -> None:
        """Without a category every active attribute is returned."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(account.id, _entries(), now=NOW)

        assert [a.key for a in await store.get_attributes(account.id)] == ["heel", "material", "title"]

    async def test_value_list_falls_back_to_choices(self, session, seed) -> None:
        """Choices in the rules serve as the list when no value entries exist."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(
            account.id,
            [
                {
                    "type": "attribute",
                    "external_id": "fit",
                    "name": "Fit",
                    "key": "fit",
                    "validation_rules": {"choices": ["slim", "regular"]},
                }
            ],
            now=NOW,
        )

        assert await store.get_value_list(account.id, "fit") == ["slim", "regular"]
        assert await store.get_value_list(account.id, "unknown") == []


class TestHealthReport:
    """Tests for the taxonomy health score."""

    async def test_empty_account_scores_zero(self, session, seed) -> None:
        """An account without attributes scores 0."""
        account = await seed.account()
        report = await TaxonomyStore(session).health_report(account.id, now=NOW)

        assert report.score == 0
        assert report.status == "poor"
        assert report.issues == ["no field definitions"]

    async def test_complete_fresh_taxonomy_scores_full(self, session, seed) -> None:
        """Required fields, fresh sync and filled lists score 100."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(account.id, _entries(), now=NOW)

        report = await store.health_report(account.id, now=NOW + timedelta(days=1))
        assert report.score == 100
        assert report.status == "excellent"
        assert report.issues == []
        assert report.stats["attributes"] == 3
        assert report.stats["required_attributes"] == 1

    async def test_penalties(self, session, seed) -> None:
        """Missing required fields, staleness and empty lists reduce the score."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(
            account.id,
            [
                {"type": "attribute", "external_id": "color", "name": "Color", "data_type": "list"},
                {
                    "type": "attribute",
                    "external_id": "size",
                    "name": "Size",
                    "data_type": "list",
                    "validation_rules": {"choices": ["S", "M"]},
                },
            ],
            now=NOW,
        )

        report = await store.health_report(account.id, now=NOW + timedelta(days=40))

        # 100 - 40 (no required) - 30 (stale) - 15 (one of two lists empty)
        assert report.score == 15
        assert report.status == "poor"
        assert report.issues[0] == "no required fields"
        assert report.issues[1].startswith("taxonomy is stale")
        assert report.issues[2] == "1 list attributes have no values: color"

    async def test_cache_status(self, session, seed) -> None:
        """Cache status counts entries per type."""
        account = await seed.account()
        store = TaxonomyStore(session)
        await store.upsert_entries(account.id, _entries(), now=NOW)
        await store.upsert_entries(account.id, _entries()[:-1], now=NOW)

        status = await store.cache_status(account.id)
        assert status["value"]["total"] == 2
        assert status["value"]["active"] == 1
        assert status["category"] == {"total": 3, "active": 3, "last_synced_at": NOW.isoformat()}


@pytest.mark.parametrize(
    ("score", "expected"),
    [(100, "excellent"), (90, "excellent"), (89, "good"), (70, "good"), (50, "fair"), (49, "poor")],
)
def test_health_status_bands(score: int, expected: str) -> None:
    """Scores map onto status bands."""
    assert health_status(score) == expected
