"""SQLAlchemy models for channel-side tables.

Provides ORM models for channel accounts, the taxonomy cache, marketplace
links and the legacy ``sku_links`` table the links are migrated from.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from channelsync.domain import LinkLevel, LinkStatus, OwnerRef, TaxonomyType
from channelsync.domain.state_machines import EntityKind
from channelsync.infrastructure.clock import utcnow
from channelsync.infrastructure.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Attribute data types whose values come from a value list
LIST_DATA_TYPES = {"list", "list_multiple_values", "enum", "select", "value_list"}


# ============================================================================
# Channel Accounts
# ============================================================================


class ChannelAccount(Base):
    """One configured connection to an external marketplace.

    Attributes:
        id: Account identifier.
        channel_type: Marketplace family (shopify, ebay, amazon, mirakl, ...).
        account_name: Name unique within the channel type.
        is_active: Inactive accounts are skipped by discovery.
        settings: Opaque connection settings (base URL, API key reference).
    """

    __tablename__ = "channel_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    channel_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    settings: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("channel_type", "account_name", name="uq_channel_accounts_type_name"),
    )

    def __repr__(self) -> str:
        return f"<ChannelAccount(id={self.id}, {self.display_name})>"

    @property
    def display_name(self) -> str:
        return f"{self.channel_type}:{self.account_name}"


# ============================================================================
# Taxonomy Cache
# ============================================================================


class TaxonomyEntry(Base):
    """Cached description of one external schema element.

    Categories nest through ``parent_external_id``/``parent_id``. Value
    entries point at their attribute the same way. Attributes may be
    scoped to a category through ``category_external_id``.
    """

    __tablename__ = "taxonomy_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    channel_account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("channel_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    taxonomy_type: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    data_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validation_rules: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    parent_external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("taxonomy_entries.id", ondelete="SET NULL"),
        nullable=True,
    )
    category_external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "channel_account_id",
            "taxonomy_type",
            "external_id",
            name="uq_taxonomy_entries_account_type_external",
        ),
        Index("ix_taxonomy_entries_account_type", "channel_account_id", "taxonomy_type"),
    )

    def __repr__(self) -> str:
        return f"<TaxonomyEntry({self.taxonomy_type}:{self.external_id}, name={self.name})>"

    @property
    def type(self) -> TaxonomyType:
        return TaxonomyType(self.taxonomy_type)

    @property
    def is_list_typed(self) -> bool:
        """Attribute whose values come from an enumerated list."""
        return (self.data_type or "").lower() in LIST_DATA_TYPES

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation.
        """
        return {
            "id": self.id,
            "type": self.taxonomy_type,
            "external_id": self.external_id,
            "name": self.name,
            "key": self.key,
            "data_type": self.data_type,
            "is_required": self.is_required,
            "validation_rules": self.validation_rules,
            "level": self.level,
            "parent_external_id": self.parent_external_id,
            "category_external_id": self.category_external_id,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "is_active": self.is_active,
        }


# ============================================================================
# Marketplace Links
# ============================================================================


class MarketplaceLink(Base):
    """Binding between an internal product/variant and its external counterpart.

    ``internal_id`` is the product ID for product-level links and the
    variant ID for variant-level links. Uniqueness of external IDs per
    account and level is enforced by partial unique indexes.
    """

    __tablename__ = "marketplace_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    channel_account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("channel_accounts.id"),
        nullable=False,
        index=True,
    )
    level: Mapped[str] = mapped_column(String(20), nullable=False, default=LinkLevel.PRODUCT.value)
    internal_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    external_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_variant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    internal_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_sku: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LinkStatus.PENDING.value, index=True
    )
    parent_link_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("marketplace_links.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    external_metadata: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    linked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    linked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index(
            "uq_links_account_external_product",
            "channel_account_id",
            "external_product_id",
            unique=True,
            sqlite_where=text("level = 'product'"),
            postgresql_where=text("level = 'product'"),
        ),
        Index(
            "uq_links_account_external_variant",
            "channel_account_id",
            "external_variant_id",
            unique=True,
            sqlite_where=text("level = 'variant' AND external_variant_id IS NOT NULL"),
            postgresql_where=text("level = 'variant' AND external_variant_id IS NOT NULL"),
        ),
        Index("ix_links_account_level_internal", "channel_account_id", "level", "internal_id"),
    )

    def __repr__(self) -> str:
        return f"<MarketplaceLink(id={self.id}, level={self.level}, status={self.status})>"

    @property
    def link_level(self) -> LinkLevel:
        return LinkLevel(self.level)

    @property
    def link_status(self) -> LinkStatus:
        return LinkStatus(self.status)

    @property
    def owner(self) -> OwnerRef:
        kind = EntityKind.PRODUCT if self.link_level == LinkLevel.PRODUCT else EntityKind.VARIANT
        return OwnerRef(kind=kind, id=self.internal_id)

    @property
    def external_id(self) -> str | None:
        """External identifier for this link's level."""
        if self.link_level == LinkLevel.PRODUCT:
            return self.external_product_id
        return self.external_variant_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation.
        """
        return {
            "id": self.id,
            "channel_account_id": self.channel_account_id,
            "level": self.level,
            "internal_id": self.internal_id,
            "external_product_id": self.external_product_id,
            "external_variant_id": self.external_variant_id,
            "internal_sku": self.internal_sku,
            "external_sku": self.external_sku,
            "status": self.status,
            "parent_link_id": self.parent_link_id,
            "external_metadata": self.external_metadata,
            "linked_at": self.linked_at.isoformat() if self.linked_at else None,
            "linked_by": self.linked_by,
        }


class LegacySkuLink(Base):
    """Flat product-to-channel link from before hierarchical links existed."""

    __tablename__ = "sku_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    channel_account_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    internal_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_sku: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    link_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    marketplace_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    linked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    linked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<LegacySkuLink(id={self.id}, product_id={self.product_id})>"
