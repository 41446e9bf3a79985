"""Catalog repository for database operations.

Provides lookups for products, variants and attribute assignments used
by the inheritance engine, the link registry and the validator.
"""

from collections.abc import Iterable, Sequence

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.catalog.models import AttributeAssignment, Product, ProductVariant
from channelsync.domain import EntityKind, OwnerRef


class CatalogRepository:
    """Repository for catalog database operations.

    Example usage:
        async with session_factory() as session:
            repo = CatalogRepository(session)
            variants = await repo.get_variants_for_product(product_id)
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    # ------------------------------------------------------------------------
    # Products and variants
    # ------------------------------------------------------------------------

    async def get_product(self, product_id: str) -> Product | None:
        return await self.session.get(Product, product_id)

    async def get_variant(self, variant_id: str) -> ProductVariant | None:
        return await self.session.get(ProductVariant, variant_id)

    async def get_variants_for_product(self, product_id: str) -> Sequence[ProductVariant]:
        """Get all variants of a product ordered by SKU.

        Args:
            product_id: Parent product ID.

        Returns:
            Sequence of variants.
        """
        result = await self.session.execute(
            select(ProductVariant)
            .where(ProductVariant.product_id == product_id)
            .order_by(ProductVariant.sku)
        )
        return result.scalars().all()

    async def get_variants_by_ids(self, variant_ids: Iterable[str]) -> Sequence[ProductVariant]:
        ids = list(variant_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(ProductVariant).where(ProductVariant.id.in_(ids)).order_by(ProductVariant.sku)
        )
        return result.scalars().all()

    async def find_variant_ids(
        self,
        product_ids: list[str] | None = None,
        variant_ids: list[str] | None = None,
    ) -> list[str]:
        """Find variant IDs in scope, in a stable order.

        Args:
            product_ids: Restrict to variants of these products.
            variant_ids: Restrict to these variants.

        Returns:
            Ordered list of variant IDs.
        """
        query = select(ProductVariant.id)

        conditions = []
        if product_ids:
            conditions.append(ProductVariant.product_id.in_(product_ids))
        if variant_ids:
            conditions.append(ProductVariant.id.in_(variant_ids))
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.session.execute(query.order_by(ProductVariant.product_id, ProductVariant.sku))
        return list(result.scalars().all())

    async def existing_product_ids(self, product_ids: Iterable[str]) -> set[str]:
        ids = list(product_ids)
        if not ids:
            return set()
        result = await self.session.execute(select(Product.id).where(Product.id.in_(ids)))
        return set(result.scalars().all())

    async def existing_variant_ids(self, variant_ids: Iterable[str]) -> set[str]:
        ids = list(variant_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(ProductVariant.id).where(ProductVariant.id.in_(ids))
        )
        return set(result.scalars().all())

    async def owner_exists(self, owner: OwnerRef) -> bool:
        """Check whether the product or variant behind a reference exists."""
        model = Product if owner.kind == EntityKind.PRODUCT else ProductVariant
        return await self.session.get(model, owner.id) is not None

    # ------------------------------------------------------------------------
    # Attribute assignments
    # ------------------------------------------------------------------------

    async def get_assignments(
        self,
        owner: OwnerRef,
        definition_id: str | None = None,
    ) -> Sequence[AttributeAssignment]:
        """Get assignments of an owner, most recently updated first.

        Args:
            owner: Product or variant reference.
            definition_id: Restrict to one attribute definition.

        Returns:
            Sequence of assignments.
        """
        conditions = [
            AttributeAssignment.owner_kind == owner.kind.value,
            AttributeAssignment.owner_id == owner.id,
        ]
        if definition_id is not None:
            conditions.append(AttributeAssignment.attribute_definition_id == definition_id)

        result = await self.session.execute(
            select(AttributeAssignment)
            .where(and_(*conditions))
            .order_by(AttributeAssignment.updated_at.desc(), AttributeAssignment.id)
        )
        return result.scalars().all()

    async def get_assignment(
        self,
        owner: OwnerRef,
        definition_id: str,
    ) -> AttributeAssignment | None:
        """Get the current assignment of an owner for one definition.

        Returns:
            Most recently updated assignment, None if there is none.
        """
        assignments = await self.get_assignments(owner, definition_id)
        return assignments[0] if assignments else None

    async def get_assignment_by_id(self, assignment_id: str) -> AttributeAssignment | None:
        return await self.session.get(AttributeAssignment, assignment_id)

    async def find_assignments(
        self,
        owner_kind: EntityKind | None = None,
        owner_ids: list[str] | None = None,
        definition_ids: list[str] | None = None,
        inherited: bool | None = None,
    ) -> Sequence[AttributeAssignment]:
        """Find assignments with optional filters.

        Args:
            owner_kind: Restrict to product or variant assignments.
            owner_ids: Restrict to these owners.
            definition_ids: Restrict to these definitions.
            inherited: Filter on the inherited flag.

        Returns:
            Sequence of assignments ordered by owner and definition.
        """
        query = select(AttributeAssignment)

        conditions = []
        if owner_kind is not None:
            conditions.append(AttributeAssignment.owner_kind == owner_kind.value)
        if owner_ids is not None:
            conditions.append(AttributeAssignment.owner_id.in_(owner_ids))
        if definition_ids is not None:
            conditions.append(AttributeAssignment.attribute_definition_id.in_(definition_ids))
        if inherited is not None:
            conditions.append(AttributeAssignment.is_inherited == inherited)
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.session.execute(
            query.order_by(
                AttributeAssignment.owner_kind,
                AttributeAssignment.owner_id,
                AttributeAssignment.attribute_definition_id,
                AttributeAssignment.id,
            )
        )
        return result.scalars().all()

    async def save(self, assignment: AttributeAssignment) -> AttributeAssignment:
        """Save an assignment.

        Args:
            assignment: Assignment to save.

        Returns:
            Saved assignment.
        """
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def delete(self, assignment: AttributeAssignment) -> None:
        await self.session.delete(assignment)
        await self.session.flush()
