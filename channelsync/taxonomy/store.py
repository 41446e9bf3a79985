"""Taxonomy store.

Local mirror of each channel account's schema: categories, attributes and
the enumerated values of list-typed attributes. Written by discovery,
read by the inheritance engine and the validator.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.domain import ChannelAccountNotFoundError, TaxonomyType
from channelsync.infrastructure.clock import ensure_aware, utcnow
from channelsync.infrastructure.config import settings
from channelsync.infrastructure.models import ChannelAccount, TaxonomyEntry
from channelsync.taxonomy.payload import TaxonomyEntryPayload

logger = structlog.get_logger()

# Fields compared to decide whether an upsert changed an entry
_TRACKED_FIELDS = (
    "name",
    "key",
    "data_type",
    "is_required",
    "validation_rules",
    "level",
    "parent_external_id",
    "category_external_id",
)

# Health score deductions
NO_REQUIRED_PENALTY = 40
STALE_SYNC_PENALTY = 30
EMPTY_VALUE_LIST_PENALTY = 30


# ============================================================================
# Results
# ============================================================================


@dataclass
class SkippedEntry:
    """Entry rejected by payload validation."""

    index: int
    external_id: str | None
    reason: str


@dataclass
class UpsertResult:
    """Outcome of one ``upsert_entries`` call."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deactivated: int = 0
    skipped: list[SkippedEntry] = field(default_factory=list)
    counts_by_type: dict[str, int] = field(default_factory=dict)
    required_attributes: int = 0
    optional_attributes: int = 0

    @property
    def accepted(self) -> int:
        return self.created + self.updated + self.unchanged

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "deactivated": self.deactivated,
            "skipped": [
                {"index": s.index, "external_id": s.external_id, "reason": s.reason}
                for s in self.skipped
            ],
            "counts_by_type": self.counts_by_type,
        }


@dataclass
class HealthReport:
    """Completeness and freshness of an account's taxonomy."""

    account_id: str
    score: int
    status: str
    issues: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "score": self.score,
            "status": self.status,
            "issues": self.issues,
            "stats": self.stats,
        }


def health_status(score: int) -> str:
    """Map a health score to its status label."""
    if score >= 90:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    return "poor"


# ============================================================================
# Store
# ============================================================================


class TaxonomyStore:
    """Persistence and queries for taxonomy entries.

    The store flushes but never commits; the caller owns the transaction.

    Example usage:
        store = TaxonomyStore(session)
        result = await store.upsert_entries(account_id, entries)
        attributes = await store.get_attributes(account_id, category="CAT-12")
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get_account(self, account_id: str) -> ChannelAccount:
        """Resolve a channel account.

        Raises:
            ChannelAccountNotFoundError: If the account does not exist.
        """
        account = await self.session.get(ChannelAccount, account_id)
        if account is None:
            raise ChannelAccountNotFoundError(account_id)
        return account

    async def upsert_entries(
        self,
        account_id: str,
        entries: Iterable[dict[str, Any] | TaxonomyEntryPayload],
        now: datetime | None = None,
        deactivate_missing: bool = True,
    ) -> UpsertResult:
        """Idempotently upsert entries keyed by (account, type, external_id).

        Entries that were stored before but are absent from this payload are
        marked inactive. Malformed entries are skipped and reported.

        Args:
            account_id: Channel account ID.
            entries: Entry dicts or validated payloads.
            now: Sync timestamp, defaults to the current time.
            deactivate_missing: Deactivate stored entries missing from the payload.

        Returns:
            UpsertResult with counts and skipped entries.

        Raises:
            ChannelAccountNotFoundError: If the account does not exist.
        """
        await self.get_account(account_id)
        now = now or utcnow()
        result = UpsertResult()

        payloads: dict[tuple[str, str], TaxonomyEntryPayload] = {}
        for index, raw in enumerate(entries):
            try:
                payload = (
                    raw
                    if isinstance(raw, TaxonomyEntryPayload)
                    else TaxonomyEntryPayload.model_validate(raw)
                )
            except ValidationError as e:
                external_id = raw.get("external_id") if isinstance(raw, dict) else None
                reason = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                )
                result.skipped.append(SkippedEntry(index, external_id, reason))
                logger.warning(
                    "Skipping malformed taxonomy entry",
                    account_id=account_id,
                    index=index,
                    external_id=external_id,
                    reason=reason,
                )
                continue

            if payload.identity in payloads:
                result.skipped.append(
                    SkippedEntry(index, payload.external_id, "duplicate entry in payload")
                )
                continue
            payloads[payload.identity] = payload

        existing = {
            (e.taxonomy_type, e.external_id): e
            for e in await self._load_entries(account_id)
        }

        for identity, payload in payloads.items():
            entry = existing.get(identity)
            if entry is None:
                entry = TaxonomyEntry(
                    channel_account_id=account_id,
                    taxonomy_type=payload.type.value,
                    external_id=payload.external_id,
                    is_active=True,
                )
                self._apply(entry, payload)
                self.session.add(entry)
                existing[identity] = entry
                result.created += 1
            elif self._differs(entry, payload) or not entry.is_active:
                self._apply(entry, payload)
                entry.is_active = True
                result.updated += 1
            else:
                result.unchanged += 1

            entry.last_synced_at = now
            result.counts_by_type[payload.type.value] = (
                result.counts_by_type.get(payload.type.value, 0) + 1
            )
            if payload.type == TaxonomyType.ATTRIBUTE:
                if payload.is_required:
                    result.required_attributes += 1
                else:
                    result.optional_attributes += 1

        if deactivate_missing:
            for identity, entry in existing.items():
                if identity not in payloads and entry.is_active:
                    entry.is_active = False
                    result.deactivated += 1

        await self.session.flush()
        self._resolve_parents(existing)
        await self.session.flush()

        logger.info(
            "Taxonomy entries upserted",
            account_id=account_id,
            created=result.created,
            updated=result.updated,
            unchanged=result.unchanged,
            deactivated=result.deactivated,
            skipped=len(result.skipped),
        )
        return result

    async def get_attributes(
        self,
        account_id: str,
        category: str | None = None,
    ) -> list[TaxonomyEntry]:
        """Get active attributes, optionally for a category.

        With a category, returns attributes that apply to every category or
        are attached to the category or any of its ancestors.

        Args:
            account_id: Channel account ID.
            category: Category external ID.

        Returns:
            Attribute entries ordered by key.
        """
        await self.get_account(account_id)
        attributes = await self._load_entries(
            account_id, TaxonomyType.ATTRIBUTE, active_only=True
        )
        if category is None:
            return sorted(attributes, key=lambda e: (e.key or e.external_id))

        lineage = await self.category_lineage(account_id, category)
        return sorted(
            (
                a for a in attributes
                if a.category_external_id is None or a.category_external_id in lineage
            ),
            key=lambda e: (e.key or e.external_id),
        )

    async def get_attribute(self, account_id: str, attribute_key: str) -> TaxonomyEntry | None:
        """Get an active attribute by key, falling back to external ID."""
        result = await self.session.execute(
            select(TaxonomyEntry).where(
                and_(
                    TaxonomyEntry.channel_account_id == account_id,
                    TaxonomyEntry.taxonomy_type == TaxonomyType.ATTRIBUTE.value,
                    TaxonomyEntry.is_active.is_(True),
                    (TaxonomyEntry.key == attribute_key)
                    | (TaxonomyEntry.external_id == attribute_key),
                )
            )
        )
        matches = result.scalars().all()
        for entry in matches:
            if entry.key == attribute_key:
                return entry
        return matches[0] if matches else None

    async def category_lineage(self, account_id: str, category: str) -> list[str]:
        """External IDs of a category and its ancestors, nearest first."""
        categories = {
            c.external_id: c
            for c in await self._load_entries(account_id, TaxonomyType.CATEGORY, active_only=True)
        }
        lineage: list[str] = []
        current = categories.get(category)
        if current is None:
            return [category]
        while current is not None and current.external_id not in lineage:
            lineage.append(current.external_id)
            parent = current.parent_external_id
            current = categories.get(parent) if parent else None
        return lineage

    async def get_value_list(self, account_id: str, attribute_key: str) -> list[str]:
        """Get the allowed values of a list-typed attribute.

        Args:
            account_id: Channel account ID.
            attribute_key: Attribute key or external ID.

        Returns:
            Value codes; falls back to ``validation_rules["choices"]`` when the
            attribute has no value entries. Empty for unknown attributes.
        """
        await self.get_account(account_id)
        attribute = await self.get_attribute(account_id, attribute_key)
        if attribute is None:
            return []

        rules = attribute.validation_rules or {}
        list_code = rules.get("value_list") or attribute.external_id
        result = await self.session.execute(
            select(TaxonomyEntry)
            .where(
                and_(
                    TaxonomyEntry.channel_account_id == account_id,
                    TaxonomyEntry.taxonomy_type == TaxonomyType.VALUE.value,
                    TaxonomyEntry.is_active.is_(True),
                    TaxonomyEntry.parent_external_id == list_code,
                )
            )
            .order_by(TaxonomyEntry.name)
        )
        values = [v.key or v.name for v in result.scalars().all()]
        if values:
            return values
        return [str(choice) for choice in rules.get("choices") or []]

    async def last_synced_at(self, account_id: str) -> datetime | None:
        """Most recent sync time of any entry of the account."""
        result = await self.session.execute(
            select(func.max(TaxonomyEntry.last_synced_at)).where(
                TaxonomyEntry.channel_account_id == account_id
            )
        )
        return ensure_aware(result.scalar_one_or_none())

    async def health_report(
        self,
        account_id: str,
        now: datetime | None = None,
    ) -> HealthReport:
        """Score the completeness and freshness of an account's taxonomy.

        Args:
            account_id: Channel account ID.
            now: Reference time for staleness, defaults to the current time.

        Returns:
            HealthReport with a 0-100 score, status label, issues and stats.
        """
        await self.get_account(account_id)
        now = now or utcnow()
        entries = await self._load_entries(account_id, active_only=True)

        categories = [e for e in entries if e.type == TaxonomyType.CATEGORY]
        attributes = [e for e in entries if e.type == TaxonomyType.ATTRIBUTE]
        values = [e for e in entries if e.type == TaxonomyType.VALUE]
        required = [a for a in attributes if a.is_required]
        last_synced = max(
            (ensure_aware(e.last_synced_at) for e in entries if e.last_synced_at),
            default=None,
        )

        values_by_list: dict[str, int] = {}
        for value in values:
            if value.parent_external_id:
                values_by_list[value.parent_external_id] = (
                    values_by_list.get(value.parent_external_id, 0) + 1
                )
        list_attributes = [
            a for a in attributes
            if a.is_list_typed or (a.validation_rules or {}).get("value_list")
        ]
        empty_lists = [
            a for a in list_attributes
            if not values_by_list.get((a.validation_rules or {}).get("value_list") or a.external_id)
            and not (a.validation_rules or {}).get("choices")
        ]

        stats = {
            "total_entries": len(entries),
            "categories": len(categories),
            "attributes": len(attributes),
            "required_attributes": len(required),
            "optional_attributes": len(attributes) - len(required),
            "list_attributes": len(list_attributes),
            "empty_value_lists": len(empty_lists),
            "values": len(values),
            "last_synced_at": last_synced.isoformat() if last_synced else None,
        }

        if not attributes:
            return HealthReport(
                account_id=account_id,
                score=0,
                status=health_status(0),
                issues=["no field definitions"],
                stats=stats,
            )

        score = 100
        issues: list[str] = []

        if not required:
            score -= NO_REQUIRED_PENALTY
            issues.append("no required fields")

        stale_after = timedelta(days=settings.taxonomy_stale_days)
        if last_synced is None or now - last_synced > stale_after:
            score -= STALE_SYNC_PENALTY
            age = f"{(now - last_synced).days} days ago" if last_synced else "never"
            issues.append(f"taxonomy is stale (last synced {age})")

        if list_attributes and empty_lists:
            ratio = len(empty_lists) / len(list_attributes)
            score -= round(EMPTY_VALUE_LIST_PENALTY * ratio)
            issues.append(
                f"{len(empty_lists)} list attributes have no values: "
                + ", ".join(sorted(a.key or a.external_id for a in empty_lists))
            )

        score = max(0, min(100, score))
        return HealthReport(
            account_id=account_id,
            score=score,
            status=health_status(score),
            issues=issues,
            stats=stats,
        )

    async def cache_status(self, account_id: str) -> dict[str, dict[str, Any]]:
        """Per-type totals, active counts and last sync times.

        Returns:
            Mapping of taxonomy type to ``{total, active, last_synced_at}``.
        """
        await self.get_account(account_id)
        status: dict[str, dict[str, Any]] = {}
        for taxonomy_type in TaxonomyType:
            entries = await self._load_entries(account_id, taxonomy_type)
            last_synced = max(
                (ensure_aware(e.last_synced_at) for e in entries if e.last_synced_at),
                default=None,
            )
            status[taxonomy_type.value] = {
                "total": len(entries),
                "active": sum(1 for e in entries if e.is_active),
                "last_synced_at": last_synced.isoformat() if last_synced else None,
            }
        return status

    # ------------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------------

    async def _load_entries(
        self,
        account_id: str,
        taxonomy_type: TaxonomyType | None = None,
        active_only: bool = False,
    ) -> list[TaxonomyEntry]:
        conditions = [TaxonomyEntry.channel_account_id == account_id]
        if taxonomy_type is not None:
            conditions.append(TaxonomyEntry.taxonomy_type == taxonomy_type.value)
        if active_only:
            conditions.append(TaxonomyEntry.is_active.is_(True))
        result = await self.session.execute(
            select(TaxonomyEntry).where(and_(*conditions)).order_by(TaxonomyEntry.external_id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _differs(entry: TaxonomyEntry, payload: TaxonomyEntryPayload) -> bool:
        return any(getattr(entry, name) != getattr(payload, name) for name in _TRACKED_FIELDS)

    @staticmethod
    def _apply(entry: TaxonomyEntry, payload: TaxonomyEntryPayload) -> None:
        for name in _TRACKED_FIELDS:
            setattr(entry, name, getattr(payload, name))

    @staticmethod
    def _resolve_parents(entries: dict[tuple[str, str], TaxonomyEntry]) -> None:
        """Point ``parent_id`` at the parent category or attribute entry."""
        parent_type = {
            TaxonomyType.CATEGORY.value: TaxonomyType.CATEGORY.value,
            TaxonomyType.VALUE.value: TaxonomyType.ATTRIBUTE.value,
        }
        for (taxonomy_type, _), entry in entries.items():
            target_type = parent_type.get(taxonomy_type)
            parent = None
            if target_type and entry.parent_external_id:
                parent = entries.get((target_type, entry.parent_external_id))
            parent_id = parent.id if parent is not None else None
            if entry.parent_id != parent_id:
                entry.parent_id = parent_id
