"""Attribute inheritance engine.

Copies typed attribute values from a parent product to its variants.
Each attribute key is decided and written inside its own savepoint so a
failure on one key is reported without aborting the rest of the variant.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.catalog.models import AttributeAssignment, AttributeDefinition, ProductVariant
from channelsync.catalog.registry import AttributeDefinitionRegistry
from channelsync.catalog.repository import CatalogRepository
from channelsync.domain import (
    ChannelAccountNotFoundError,
    ConfigurationError,
    EntityKind,
    InheritanceStrategy,
    OwnerRef,
    ValueCheck,
    validate_value,
)
from channelsync.infrastructure.models import ChannelAccount
from channelsync.taxonomy.store import TaxonomyStore

logger = structlog.get_logger()

# Skip reasons
PARENT_HAS_NO_VALUE = "parent has no value"
EXPLICITLY_SET = "explicitly set"
ALREADY_INHERITED = "already inherited"


@dataclass
class InheritanceOptions:
    """Options for one inheritance pass.

    Attributes:
        force: Overwrite explicit variant values.
        dry_run: Decide without writing.
        attribute_keys: Restrict to these attribute keys.
        channel_account_id: Also validate against this account's value lists.
    """

    force: bool = False
    dry_run: bool = False
    attribute_keys: list[str] | None = None
    channel_account_id: str | None = None


@dataclass
class InheritanceResult:
    """Per-variant outcome: keys inherited, keys skipped and per-key errors."""

    variant_id: str
    inherited: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    skip_reasons: dict[str, str] = field(default_factory=dict)
    invalid: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "inherited": self.inherited,
            "skipped": self.skipped,
            "errors": self.errors,
            "skip_reasons": self.skip_reasons,
            "invalid": self.invalid,
        }


@dataclass
class _Decision:
    inherit: bool
    reason: str | None = None
    validation: ValueCheck | None = None


class AttributeInheritanceEngine:
    """Propagate attribute values from products to variants.

    Example usage:
        engine = AttributeInheritanceEngine(session)
        result = await engine.inherit_attributes_for_variant(
            variant, InheritanceOptions(attribute_keys=["material"])
        )
        result.inherited  # ["material"]
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize engine with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session
        self.catalog = CatalogRepository(session)
        self.definitions = AttributeDefinitionRegistry(session)
        self.taxonomy = TaxonomyStore(session)

    async def inherit_attributes_for_variant(
        self,
        variant: ProductVariant | str,
        options: InheritanceOptions | None = None,
    ) -> InheritanceResult:
        """Inherit every inheritable attribute of the parent product.

        Args:
            variant: Variant or variant ID.
            options: Force, dry-run, key filter and channel account.

        Returns:
            InheritanceResult for the variant.

        Raises:
            ConfigurationError: If the variant does not exist.
            ChannelAccountNotFoundError: If the channel account does not exist.
        """
        options = options or InheritanceOptions()
        variant = await self._resolve_variant(variant)
        account = await self._resolve_account(options.channel_account_id)
        definitions = await self.definitions.get_inheritable(options.attribute_keys)
        result = InheritanceResult(variant_id=variant.id)

        for definition in definitions:
            try:
                async with self.session.begin_nested():
                    decision = await self._inherit_one(variant, definition, options, account)
            except Exception as e:
                result.errors[definition.key] = str(e)
                logger.warning(
                    "Attribute inheritance failed",
                    variant_id=variant.id,
                    attribute=definition.key,
                    error=str(e),
                )
                continue

            if decision.inherit:
                result.inherited.append(definition.key)
                if decision.validation is not None and not decision.validation.is_valid:
                    result.invalid[definition.key] = decision.validation.errors
            else:
                result.skipped.append(definition.key)
                result.skip_reasons[definition.key] = decision.reason or ""

        logger.info(
            "Variant inheritance processed",
            variant_id=variant.id,
            inherited=len(result.inherited),
            skipped=len(result.skipped),
            errors=len(result.errors),
            dry_run=options.dry_run,
        )
        return result

    async def inherit_attributes_for_product(
        self,
        product_id: str,
        options: InheritanceOptions | None = None,
    ) -> list[InheritanceResult]:
        """Run inheritance for every variant of a product."""
        variants = await self.catalog.get_variants_for_product(product_id)
        return [await self.inherit_attributes_for_variant(v, options) for v in variants]

    async def refresh_inheritance_for_variant(
        self,
        variant: ProductVariant | str,
    ) -> dict[str, list[str]]:
        """Re-sync inherited values of a variant with their sources.

        Inherited values whose source changed are copied again; inherited
        values whose source is gone or empty are removed.

        Returns:
            ``{"refreshed": [keys], "removed": [keys]}``.
        """
        variant = await self._resolve_variant(variant)
        assignments = await self.catalog.find_assignments(
            owner_kind=EntityKind.VARIANT, owner_ids=[variant.id], inherited=True
        )
        definitions = await self.definitions.get_by_ids(a.attribute_definition_id for a in assignments)
        refreshed: list[str] = []
        removed: list[str] = []

        for assignment in assignments:
            definition = definitions.get(assignment.attribute_definition_id)
            key = definition.key if definition else assignment.attribute_definition_id
            source = (
                await self.catalog.get_assignment_by_id(assignment.inherited_from_id)
                if assignment.inherited_from_id
                else None
            )
            if source is None or source.value in (None, ""):
                await self.catalog.delete(assignment)
                removed.append(key)
                continue
            if source.value != assignment.value:
                assignment.inherit_from(source)
                if definition is not None:
                    check = self._check(definition, assignment.value)
                    assignment.record_validation(check.status, check.errors)
                await self.catalog.save(assignment)
                refreshed.append(key)

        logger.info(
            "Variant inheritance refreshed",
            variant_id=variant.id,
            refreshed=len(refreshed),
            removed=len(removed),
        )
        return {"refreshed": refreshed, "removed": removed}

    async def statistics(self) -> dict[str, int]:
        """Counts of variant assignments by origin."""
        base = select(func.count()).select_from(AttributeAssignment).where(
            AttributeAssignment.owner_kind == EntityKind.VARIANT.value
        )
        total = (await self.session.execute(base)).scalar_one()
        inherited = (
            await self.session.execute(base.where(AttributeAssignment.is_inherited.is_(True)))
        ).scalar_one()
        overrides = (
            await self.session.execute(
                base.where(
                    and_(
                        AttributeAssignment.is_inherited.is_(False),
                        AttributeAssignment.is_override.is_(True),
                    )
                )
            )
        ).scalar_one()
        return {
            "total_variant_attributes": total,
            "inherited": inherited,
            "overrides": overrides,
            "explicit": total - inherited - overrides,
        }

    # ------------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------------

    async def _inherit_one(
        self,
        variant: ProductVariant,
        definition: AttributeDefinition,
        options: InheritanceOptions,
        account: ChannelAccount | None,
    ) -> _Decision:
        parent = await self.catalog.get_assignment(OwnerRef.product(variant.product_id), definition.id)
        if parent is None or parent.value in (None, ""):
            return _Decision(inherit=False, reason=PARENT_HAS_NO_VALUE)

        current = await self.catalog.get_assignment(OwnerRef.variant(variant.id), definition.id)
        if current is not None:
            explicit = not current.is_inherited and current.value not in (None, "")
            if explicit:
                if not options.force:
                    return _Decision(inherit=False, reason=EXPLICITLY_SET)
                if definition.inheritance_strategy == InheritanceStrategy.FALLBACK.value:
                    return _Decision(inherit=False, reason=EXPLICITLY_SET)
            elif (
                current.is_inherited
                and current.value == parent.value
                and current.inherited_from_id == parent.id
            ):
                return _Decision(inherit=False, reason=ALREADY_INHERITED)

        allowed = await self._allowed_values(definition, account)
        check = self._check(definition, parent.value, allowed)
        if options.dry_run:
            return _Decision(inherit=True, validation=check)

        if current is None:
            current = AttributeAssignment(
                owner_kind=EntityKind.VARIANT.value,
                owner_id=variant.id,
                attribute_definition_id=definition.id,
            )
        current.inherit_from(parent)
        current.record_validation(check.status, check.errors)
        await self.catalog.save(current)
        return _Decision(inherit=True, validation=check)

    async def _allowed_values(
        self,
        definition: AttributeDefinition,
        account: ChannelAccount | None,
    ) -> list[str] | None:
        if account is None:
            return None
        attribute_key = definition.mapped_attribute_key(account.channel_type)
        if not attribute_key:
            return None
        return await self.taxonomy.get_value_list(account.id, attribute_key) or None

    @staticmethod
    def _check(
        definition: AttributeDefinition,
        value: str | None,
        allowed: list[str] | None = None,
    ) -> ValueCheck:
        return validate_value(
            value,
            definition.data_type,
            rules=definition.validation_rules,
            enum_values=definition.enum_values,
            allowed_values=allowed,
        )

    async def _resolve_variant(self, variant: ProductVariant | str) -> ProductVariant:
        if isinstance(variant, ProductVariant):
            return variant
        resolved = await self.catalog.get_variant(variant)
        if resolved is None:
            raise ConfigurationError(
                f"Variant {variant} not found", details={"variant_id": variant}
            )
        return resolved

    async def _resolve_account(self, account_id: str | None) -> ChannelAccount | None:
        if account_id is None:
            return None
        account = await self.session.get(ChannelAccount, account_id)
        if account is None:
            raise ChannelAccountNotFoundError(account_id)
        return account
