"""SQLAlchemy models for the internal product catalog.

Defines products, variants, attribute definitions and attribute
assignments. Assignments reference their owner through the
``(owner_kind, owner_id)`` pair and their definition by ID without a
foreign key, so orphaned rows can exist and are found by the validator.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from channelsync.domain import (
    AssignmentSource,
    AttributeDataType,
    EntityKind,
    InheritanceStrategy,
    OwnerRef,
    ValidationStatus,
)
from channelsync.infrastructure.clock import utcnow
from channelsync.infrastructure.database import Base
from channelsync.infrastructure.models import JSONType


class Product(Base):
    """Product in the internal catalog.

    Attributes:
        id: Unique product identifier.
        sku: Stock Keeping Unit.
        name: Product name.
        category_path: Internal category path (e.g., "Apparel > Shirts").
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    category_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Product(id={self.id}, sku={self.sku})>"

    @property
    def owner(self) -> OwnerRef:
        return OwnerRef.product(self.id)


class ProductVariant(Base):
    """Sellable variant of a product (size, color combinations)."""

    __tablename__ = "product_variants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    product_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    def __repr__(self) -> str:
        """String representation."""
        return f"<ProductVariant(id={self.id}, sku={self.sku})>"

    @property
    def owner(self) -> OwnerRef:
        return OwnerRef.variant(self.id)


class AttributeDefinition(Base):
    """Internal attribute registry entry.

    Attributes:
        key: Unique attribute key (e.g., "material").
        data_type: One of string, number, boolean, enum, json, date, url.
        validation_rules: Type rules such as ``max_length``, ``min``, ``max``.
        enum_values: Allowed values for enum attributes.
        is_inheritable: Whether variants may inherit the product value.
        inheritance_strategy: always, fallback or never.
        marketplace_mappings: Per channel type mapping, e.g.
            ``{"shopify": {"attribute": "material"}}``.
    """

    __tablename__ = "attribute_definitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AttributeDataType.STRING.value
    )
    validation_rules: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    enum_values: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    default_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_inheritable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    inheritance_strategy: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InheritanceStrategy.ALWAYS.value
    )
    is_required_for_products: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_required_for_variants: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    marketplace_mappings: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deprecated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        """String representation."""
        return f"<AttributeDefinition(key={self.key}, type={self.data_type})>"

    @property
    def supports_inheritance(self) -> bool:
        """Inheritable and not opted out through the strategy."""
        return self.is_inheritable and self.inheritance_strategy != InheritanceStrategy.NEVER.value

    @property
    def is_usable(self) -> bool:
        """Active and not deprecated."""
        return self.is_active and self.deprecated_at is None

    def mapped_attribute_key(self, channel_type: str) -> str | None:
        """Taxonomy attribute key this definition maps to on a channel.

        Args:
            channel_type: Channel family (e.g., "shopify").

        Returns:
            Mapped attribute key, or None when the channel has no mapping.
        """
        mapping = (self.marketplace_mappings or {}).get(channel_type)
        if isinstance(mapping, dict):
            return mapping.get("attribute")
        if isinstance(mapping, str):
            return mapping
        return None


class AttributeAssignment(Base):
    """Typed attribute value attached to a product or variant.

    Inherited assignments keep a back-reference to the product-level
    assignment they were copied from. An explicit value that replaced an
    inherited one is flagged ``is_override``.
    """

    __tablename__ = "attribute_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    owner_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    attribute_definition_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ValidationStatus.UNVALIDATED.value
    )
    validation_errors: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    last_validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_inherited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    inherited_from_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    inherited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AssignmentSource.MANUAL.value
    )
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    previous_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_attribute_assignments_owner", "owner_kind", "owner_id"),
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<AttributeAssignment(owner={self.owner_kind}:{self.owner_id}, value={self.value!r})>"

    @property
    def owner(self) -> OwnerRef:
        return OwnerRef(kind=EntityKind(self.owner_kind), id=self.owner_id)

    @owner.setter
    def owner(self, ref: OwnerRef) -> None:
        self.owner_kind = ref.kind.value
        self.owner_id = ref.id

    def set_value(self, value: str | None, assigned_by: str | None = None) -> None:
        """Set an explicit value.

        Replacing an inherited value turns the assignment into an override.

        Args:
            value: New raw value.
            assigned_by: Who made the change.
        """
        if self.is_inherited:
            self.clear_inheritance()
        if self.value is not None and value != self.value:
            self.previous_value = self.value
            self.version = (self.version or 1) + 1
        self.value = value
        self.source = AssignmentSource.MANUAL.value
        self.assigned_at = utcnow()
        self.assigned_by = assigned_by
        self.validation_status = ValidationStatus.UNVALIDATED.value

    def inherit_from(self, source: "AttributeAssignment") -> None:
        """Copy the value of a product-level assignment.

        Args:
            source: Product-level assignment of the same definition.
        """
        now = utcnow()
        if self.value is not None and source.value != self.value:
            self.previous_value = self.value
            self.version = (self.version or 1) + 1
        self.value = source.value
        self.is_inherited = True
        self.is_override = False
        self.inherited_from_id = source.id
        self.inherited_at = now
        self.source = AssignmentSource.INHERITANCE.value
        self.assigned_at = now
        self.assigned_by = "inheritance"

    def clear_inheritance(self) -> None:
        """Detach from the source; the current value becomes an override."""
        if self.is_inherited:
            self.is_override = True
        self.is_inherited = False
        self.inherited_from_id = None
        self.inherited_at = None

    def record_validation(self, status: ValidationStatus, errors: list[str]) -> None:
        """Store a validation outcome."""
        self.validation_status = status.value
        self.validation_errors = errors or None
        self.last_validated_at = utcnow()
