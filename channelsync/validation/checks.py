"""Consistency checks and their repairs.

Checks and fixers are plain async functions registered in explicit
tables: ``CHECKS`` maps a ``CheckId`` to the function that finds its
issues, ``FIXERS`` maps a ``FixAction`` to the function that repairs one
issue. Both receive a ``ValidationContext``.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.catalog.models import AttributeAssignment, AttributeDefinition, Product, ProductVariant
from channelsync.catalog.registry import AttributeDefinitionRegistry
from channelsync.catalog.repository import CatalogRepository
from channelsync.domain import (
    CheckId,
    EntityKind,
    FixAction,
    LinkLevel,
    LinkNotFoundError,
    OwnerRef,
    Severity,
    ValidationStatus,
    validate_value,
)
from channelsync.infrastructure.clock import ensure_aware
from channelsync.infrastructure.models import MarketplaceLink
from channelsync.inheritance.engine import AttributeInheritanceEngine, InheritanceOptions
from channelsync.links.registry import LinkRegistry


@dataclass
class Issue:
    """One inconsistency found by a check."""

    check: CheckId
    severity: Severity
    message: str
    subject: str
    record_id: str | None = None
    attribute_key: str | None = None
    fix_action: FixAction | None = None
    details: dict[str, Any] = field(default_factory=dict)
    fixed: bool = False
    fix_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "check": self.check.value,
            "severity": self.severity.value,
            "message": self.message,
            "subject": self.subject,
            "record_id": self.record_id,
            "attribute_key": self.attribute_key,
            "fix_action": self.fix_action.value if self.fix_action else None,
            "details": self.details,
            "fixed": self.fixed,
            "fix_error": self.fix_error,
        }


@dataclass
class ValidationScope:
    """Restricts which records the checks look at."""

    product_ids: list[str] | None = None
    variant_ids: list[str] | None = None
    attribute_keys: list[str] | None = None
    channel_account_ids: list[str] | None = None

    @property
    def has_entity_filter(self) -> bool:
        return bool(self.product_ids or self.variant_ids)


class ValidationContext:
    """Shared state for one validator run.

    Resolves the scope once and caches definitions so checks stay cheap.
    """

    def __init__(self, session: AsyncSession, scope: ValidationScope | None = None) -> None:
        self.session = session
        self.scope = scope or ValidationScope()
        self.catalog = CatalogRepository(session)
        self.definitions = AttributeDefinitionRegistry(session)
        self.links = LinkRegistry(session)
        self.engine = AttributeInheritanceEngine(session)
        self.all_definitions: dict[str, AttributeDefinition] = {}
        self.definition_ids: list[str] | None = None
        self.variant_ids: list[str] | None = None
        self.product_ids: list[str] | None = None

    async def load(self) -> None:
        """Resolve the scope into ID lists."""
        result = await self.session.execute(select(AttributeDefinition))
        self.all_definitions = {d.id: d for d in result.scalars().all()}

        if self.scope.attribute_keys:
            self.definition_ids = [
                d.id for d in self.all_definitions.values() if d.key in self.scope.attribute_keys
            ]

        if self.scope.has_entity_filter:
            self.variant_ids = await self.catalog.find_variant_ids(
                self.scope.product_ids, self.scope.variant_ids
            )
            product_ids = set(self.scope.product_ids or [])
            for variant in await self.catalog.get_variants_by_ids(self.variant_ids):
                product_ids.add(variant.product_id)
            self.product_ids = sorted(product_ids)

    def key_for(self, definition_id: str) -> str:
        definition = self.all_definitions.get(definition_id)
        return definition.key if definition else definition_id

    def owner_ids_for(self, kind: EntityKind) -> list[str] | None:
        if not self.scope.has_entity_filter:
            return None
        if kind == EntityKind.VARIANT:
            return self.variant_ids or []
        return self.product_ids or []

    async def variant_assignments(self, inherited: bool | None = None) -> list[AttributeAssignment]:
        return list(
            await self.catalog.find_assignments(
                owner_kind=EntityKind.VARIANT,
                owner_ids=self.owner_ids_for(EntityKind.VARIANT),
                definition_ids=self.definition_ids,
                inherited=inherited,
            )
        )

    async def scoped_assignments(self) -> list[AttributeAssignment]:
        """Product and variant assignments inside the scope."""
        assignments: list[AttributeAssignment] = []
        for kind in (EntityKind.PRODUCT, EntityKind.VARIANT):
            assignments.extend(
                await self.catalog.find_assignments(
                    owner_kind=kind,
                    owner_ids=self.owner_ids_for(kind),
                    definition_ids=self.definition_ids,
                )
            )
        return assignments

    async def scoped_links(self, level: LinkLevel | None = None) -> list[MarketplaceLink]:
        query = select(MarketplaceLink)
        conditions = []
        if level is not None:
            conditions.append(MarketplaceLink.level == level.value)
        if self.scope.channel_account_ids:
            conditions.append(MarketplaceLink.channel_account_id.in_(self.scope.channel_account_ids))
        if self.scope.has_entity_filter:
            conditions.append(
                MarketplaceLink.internal_id.in_([*(self.variant_ids or []), *(self.product_ids or [])])
            )
        if conditions:
            query = query.where(and_(*conditions))
        result = await self.session.execute(query.order_by(MarketplaceLink.created_at, MarketplaceLink.id))
        return list(result.scalars().all())

    async def product_link_for(self, account_id: str, product_id: str) -> MarketplaceLink | None:
        links = await self.links.find_for_internal(account_id, LinkLevel.PRODUCT, product_id)
        return links[0] if links else None


CheckFn = Callable[[ValidationContext], Awaitable[list[Issue]]]
FixFn = Callable[[ValidationContext, Issue], Awaitable[None]]


# ============================================================================
# Attribute checks
# ============================================================================


async def _source_problem(
    ctx: ValidationContext,
    assignment: AttributeAssignment,
) -> tuple[str | None, AttributeAssignment | None]:
    """Classify the source of an inherited assignment.

    Returns:
        ``("orphaned", None)``, ``("invalid", source)`` or ``(None, source)``.
    """
    if not assignment.inherited_from_id:
        return "orphaned", None
    source = await ctx.catalog.get_assignment_by_id(assignment.inherited_from_id)
    if source is None:
        return "orphaned", None

    variant = await ctx.catalog.get_variant(assignment.owner_id)
    definition = ctx.all_definitions.get(assignment.attribute_definition_id)
    if (
        source.owner_kind != EntityKind.PRODUCT.value
        or source.attribute_definition_id != assignment.attribute_definition_id
        or (variant is not None and source.owner_id != variant.product_id)
        or (definition is not None and not (definition.supports_inheritance and definition.is_usable))
    ):
        return "invalid", source
    return None, source


def _invalid_inheritance_message(ctx: ValidationContext, assignment: AttributeAssignment) -> str:
    definition = ctx.all_definitions.get(assignment.attribute_definition_id)
    if definition is not None and not definition.is_usable:
        return "Inherited value belongs to an inactive or deprecated attribute"
    if definition is not None and not definition.supports_inheritance:
        return "Inherited value belongs to an attribute that no longer supports inheritance"
    return "Inherited value points at a source that is not its parent product"


async def check_orphaned_inheritance(ctx: ValidationContext) -> list[Issue]:
    """Inherited variant values whose source assignment no longer exists."""
    issues = []
    for assignment in await ctx.variant_assignments(inherited=True):
        problem, _ = await _source_problem(ctx, assignment)
        if problem == "orphaned":
            issues.append(
                Issue(
                    check=CheckId.ORPHANED_INHERITANCE,
                    severity=Severity.CRITICAL,
                    message="Inherited value references a missing source",
                    subject=str(assignment.owner),
                    record_id=assignment.id,
                    attribute_key=ctx.key_for(assignment.attribute_definition_id),
                    fix_action=FixAction.DELETE,
                    details={"inherited_from_id": assignment.inherited_from_id},
                )
            )
    return issues


async def check_invalid_inheritance(ctx: ValidationContext) -> list[Issue]:
    """Inherited values whose source is not the parent product's assignment.

    Values of definitions that no longer support inheritance, or are
    inactive or deprecated, are flagged the same way.
    """
    issues = []
    for assignment in await ctx.variant_assignments(inherited=True):
        problem, source = await _source_problem(ctx, assignment)
        if problem == "invalid" and source is not None:
            issues.append(
                Issue(
                    check=CheckId.INVALID_INHERITANCE,
                    severity=Severity.CRITICAL,
                    message=_invalid_inheritance_message(ctx, assignment),
                    subject=str(assignment.owner),
                    record_id=assignment.id,
                    attribute_key=ctx.key_for(assignment.attribute_definition_id),
                    fix_action=FixAction.CLEAR_INHERITANCE,
                    details={"source": str(source.owner), "source_id": source.id},
                )
            )
    return issues


async def check_inheritance_drift(ctx: ValidationContext) -> list[Issue]:
    """Inherited values that no longer match their source."""
    issues = []
    for assignment in await ctx.variant_assignments(inherited=True):
        problem, source = await _source_problem(ctx, assignment)
        if problem is None and source is not None and source.value != assignment.value:
            issues.append(
                Issue(
                    check=CheckId.INHERITANCE_DRIFT,
                    severity=Severity.WARNING,
                    message="Inherited value differs from the parent value",
                    subject=str(assignment.owner),
                    record_id=assignment.id,
                    attribute_key=ctx.key_for(assignment.attribute_definition_id),
                    fix_action=FixAction.REINHERIT,
                    details={"value": assignment.value, "parent_value": source.value},
                )
            )
    return issues


async def check_orphaned_attribute(ctx: ValidationContext) -> list[Issue]:
    """Assignments whose definition or owner no longer exists."""
    assignments = await ctx.catalog.find_assignments(definition_ids=ctx.definition_ids)
    products = set((await ctx.session.execute(select(Product.id))).scalars().all())
    variants = set((await ctx.session.execute(select(ProductVariant.id))).scalars().all())
    product_scope = ctx.owner_ids_for(EntityKind.PRODUCT)
    variant_scope = ctx.owner_ids_for(EntityKind.VARIANT)

    issues = []
    for assignment in assignments:
        is_variant = assignment.owner_kind == EntityKind.VARIANT.value
        scope = variant_scope if is_variant else product_scope
        if scope is not None and assignment.owner_id not in scope:
            continue

        reasons = []
        if assignment.attribute_definition_id not in ctx.all_definitions:
            reasons.append("definition missing")
        if assignment.owner_id not in (variants if is_variant else products):
            reasons.append("owner missing")
        if reasons:
            issues.append(
                Issue(
                    check=CheckId.ORPHANED_ATTRIBUTE,
                    severity=Severity.CRITICAL,
                    message=f"Orphaned attribute value ({', '.join(reasons)})",
                    subject=str(assignment.owner),
                    record_id=assignment.id,
                    attribute_key=ctx.key_for(assignment.attribute_definition_id),
                    fix_action=FixAction.DELETE,
                    details={"reasons": reasons},
                )
            )
    return issues


async def check_duplicate_assignment(ctx: ValidationContext) -> list[Issue]:
    """More than one assignment for the same owner and definition.

    The most recently validated assignment is kept. When no assignment was
    validated, or the latest validation time is shared, the issue is
    reported as info without a fix.
    """
    groups: dict[tuple[str, str, str], list[AttributeAssignment]] = {}
    for kind in (EntityKind.PRODUCT, EntityKind.VARIANT):
        for assignment in await ctx.catalog.find_assignments(
            owner_kind=kind,
            owner_ids=ctx.owner_ids_for(kind),
            definition_ids=ctx.definition_ids,
        ):
            key = (assignment.owner_kind, assignment.owner_id, assignment.attribute_definition_id)
            groups.setdefault(key, []).append(assignment)

    issues = []
    for (owner_kind, owner_id, definition_id), assignments in groups.items():
        if len(assignments) < 2:
            continue
        subject = str(OwnerRef(kind=EntityKind(owner_kind), id=owner_id))
        validated = [a for a in assignments if a.last_validated_at is not None]
        latest = max((ensure_aware(a.last_validated_at) for a in validated), default=None)
        winners = [a for a in validated if ensure_aware(a.last_validated_at) == latest]

        if len(winners) != 1:
            issues.append(
                Issue(
                    check=CheckId.DUPLICATE_ASSIGNMENT,
                    severity=Severity.INFO,
                    message=f"{len(assignments)} values for one attribute; no single most recently validated value",
                    subject=subject,
                    attribute_key=ctx.key_for(definition_id),
                    details={"assignment_ids": [a.id for a in assignments]},
                )
            )
            continue

        keep = winners[0]
        issues.append(
            Issue(
                check=CheckId.DUPLICATE_ASSIGNMENT,
                severity=Severity.WARNING,
                message=f"{len(assignments)} values for one attribute",
                subject=subject,
                record_id=keep.id,
                attribute_key=ctx.key_for(definition_id),
                fix_action=FixAction.MERGE,
                details={
                    "keep_id": keep.id,
                    "remove_ids": [a.id for a in assignments if a.id != keep.id],
                },
            )
        )
    return issues


async def check_missing_inheritance(ctx: ValidationContext) -> list[Issue]:
    """Variants without a value for an attribute their parent has."""
    definitions = await ctx.definitions.get_inheritable(ctx.scope.attribute_keys)
    if not definitions:
        return []
    definition_ids = [d.id for d in definitions]

    variant_ids = (
        ctx.variant_ids
        if ctx.scope.has_entity_filter
        else await ctx.catalog.find_variant_ids()
    )
    variants = await ctx.catalog.get_variants_by_ids(variant_ids or [])
    product_values = {
        (a.owner_id, a.attribute_definition_id)
        for a in await ctx.catalog.find_assignments(
            owner_kind=EntityKind.PRODUCT,
            owner_ids=sorted({v.product_id for v in variants}),
            definition_ids=definition_ids,
        )
        if a.value not in (None, "")
    }
    variant_values = {
        (a.owner_id, a.attribute_definition_id)
        for a in await ctx.catalog.find_assignments(
            owner_kind=EntityKind.VARIANT,
            owner_ids=[v.id for v in variants],
            definition_ids=definition_ids,
        )
        if a.value not in (None, "") or a.is_inherited
    }

    issues = []
    for variant in variants:
        for definition in definitions:
            if (variant.product_id, definition.id) not in product_values:
                continue
            if (variant.id, definition.id) in variant_values:
                continue
            issues.append(
                Issue(
                    check=CheckId.MISSING_INHERITANCE,
                    severity=Severity.INFO,
                    message="Variant has no value for an inheritable parent attribute",
                    subject=str(variant.owner),
                    attribute_key=definition.key,
                    fix_action=FixAction.CREATE_INHERITANCE,
                    details={"variant_id": variant.id, "product_id": variant.product_id},
                )
            )
    return issues


async def check_invalid_value(ctx: ValidationContext) -> list[Issue]:
    """Assignments whose last validation failed."""
    issues = []
    for assignment in await ctx.scoped_assignments():
        if assignment.validation_status != ValidationStatus.INVALID.value:
            continue
        if assignment.attribute_definition_id not in ctx.all_definitions:
            continue
        issues.append(
            Issue(
                check=CheckId.INVALID_VALUE,
                severity=Severity.WARNING,
                message="Attribute value failed validation",
                subject=str(assignment.owner),
                record_id=assignment.id,
                attribute_key=ctx.key_for(assignment.attribute_definition_id),
                fix_action=FixAction.REVALIDATE,
                details={"value": assignment.value, "errors": assignment.validation_errors or []},
            )
        )
    return issues


async def check_never_validated(ctx: ValidationContext) -> list[Issue]:
    issues = []
    for assignment in await ctx.scoped_assignments():
        if assignment.validation_status != ValidationStatus.UNVALIDATED.value:
            continue
        if assignment.attribute_definition_id not in ctx.all_definitions:
            continue
        issues.append(
            Issue(
                check=CheckId.NEVER_VALIDATED,
                severity=Severity.INFO,
                message="Attribute value has never been validated",
                subject=str(assignment.owner),
                record_id=assignment.id,
                attribute_key=ctx.key_for(assignment.attribute_definition_id),
                fix_action=FixAction.REVALIDATE,
            )
        )
    return issues


# ============================================================================
# Link checks
# ============================================================================


async def check_orphaned_variant_link(ctx: ValidationContext) -> list[Issue]:
    """Variant links without a parent link."""
    issues = []
    for link in await ctx.scoped_links(LinkLevel.VARIANT):
        if link.parent_link_id is not None:
            continue
        variant = await ctx.catalog.get_variant(link.internal_id)
        candidate = (
            await ctx.product_link_for(link.channel_account_id, variant.product_id)
            if variant is not None
            else None
        )
        issues.append(
            Issue(
                check=CheckId.ORPHANED_VARIANT_LINK,
                severity=Severity.WARNING,
                message="Variant link has no parent product link",
                subject=f"link:{link.id}",
                record_id=link.id,
                fix_action=FixAction.ATTACH_TO_PARENT if candidate is not None else None,
                details={
                    "channel_account_id": link.channel_account_id,
                    "candidate_parent_id": candidate.id if candidate is not None else None,
                },
            )
        )
    return issues


async def check_invalid_parent_link(ctx: ValidationContext) -> list[Issue]:
    """Variant links whose parent is missing, foreign or not their product's link."""
    issues = []
    for link in await ctx.scoped_links(LinkLevel.VARIANT):
        if link.parent_link_id is None:
            continue
        parent = await ctx.links.get_by_id(link.parent_link_id)
        variant = await ctx.catalog.get_variant(link.internal_id)

        reason = None
        if parent is None:
            reason = "parent link missing"
        elif parent.level != LinkLevel.PRODUCT.value:
            reason = "parent is not a product link"
        elif parent.channel_account_id != link.channel_account_id:
            reason = "parent belongs to another account"
        elif variant is not None and parent.internal_id != variant.product_id:
            reason = "parent links a different product"
        if reason is None:
            continue

        issues.append(
            Issue(
                check=CheckId.INVALID_PARENT_LINK,
                severity=Severity.CRITICAL,
                message=f"Invalid parent link: {reason}",
                subject=f"link:{link.id}",
                record_id=link.id,
                fix_action=FixAction.REATTACH_PARENT,
                details={"parent_link_id": link.parent_link_id, "reason": reason},
            )
        )
    return issues


async def check_duplicate_binding(ctx: ValidationContext) -> list[Issue]:
    """One internal entity bound more than once in the same account and level."""
    groups: dict[tuple[str, str, str], list[MarketplaceLink]] = {}
    for link in await ctx.scoped_links():
        groups.setdefault((link.channel_account_id, link.level, link.internal_id), []).append(link)

    issues = []
    for (account_id, level, internal_id), links in groups.items():
        if len(links) < 2:
            continue
        issues.append(
            Issue(
                check=CheckId.DUPLICATE_BINDING,
                severity=Severity.WARNING,
                message=f"{level} {internal_id} has {len(links)} links in one account",
                subject=f"{level}:{internal_id}",
                details={"channel_account_id": account_id, "link_ids": [l.id for l in links]},
            )
        )
    return issues


CHECKS: dict[CheckId, CheckFn] = {
    CheckId.ORPHANED_INHERITANCE: check_orphaned_inheritance,
    CheckId.INHERITANCE_DRIFT: check_inheritance_drift,
    CheckId.INVALID_INHERITANCE: check_invalid_inheritance,
    CheckId.ORPHANED_ATTRIBUTE: check_orphaned_attribute,
    CheckId.DUPLICATE_ASSIGNMENT: check_duplicate_assignment,
    CheckId.MISSING_INHERITANCE: check_missing_inheritance,
    CheckId.INVALID_VALUE: check_invalid_value,
    CheckId.NEVER_VALIDATED: check_never_validated,
    CheckId.ORPHANED_VARIANT_LINK: check_orphaned_variant_link,
    CheckId.INVALID_PARENT_LINK: check_invalid_parent_link,
    CheckId.DUPLICATE_BINDING: check_duplicate_binding,
}


# ============================================================================
# Fixers
# ============================================================================


async def fix_delete(ctx: ValidationContext, issue: Issue) -> None:
    """Delete the assignment; one already removed by an earlier fix counts as done."""
    assignment = await ctx.catalog.get_assignment_by_id(issue.record_id)
    if assignment is not None:
        await ctx.catalog.delete(assignment)


async def fix_reinherit(ctx: ValidationContext, issue: Issue) -> None:
    assignment = await ctx.catalog.get_assignment_by_id(issue.record_id)
    if assignment is None:
        raise LookupError(f"Assignment {issue.record_id} no longer exists")
    result = await ctx.engine.inherit_attributes_for_variant(
        assignment.owner_id,
        InheritanceOptions(force=True, attribute_keys=[issue.attribute_key]),
    )
    if issue.attribute_key in result.errors:
        raise RuntimeError(result.errors[issue.attribute_key])
    if issue.attribute_key not in result.inherited:
        raise RuntimeError(result.skip_reasons.get(issue.attribute_key, "not inherited"))


async def fix_clear_inheritance(ctx: ValidationContext, issue: Issue) -> None:
    assignment = await ctx.catalog.get_assignment_by_id(issue.record_id)
    if assignment is None:
        raise LookupError(f"Assignment {issue.record_id} no longer exists")
    assignment.clear_inheritance()
    await ctx.catalog.save(assignment)


async def fix_merge(ctx: ValidationContext, issue: Issue) -> None:
    for assignment_id in issue.details.get("remove_ids", []):
        assignment = await ctx.catalog.get_assignment_by_id(assignment_id)
        if assignment is not None:
            await ctx.catalog.delete(assignment)


async def fix_create_inheritance(ctx: ValidationContext, issue: Issue) -> None:
    result = await ctx.engine.inherit_attributes_for_variant(
        issue.details["variant_id"],
        InheritanceOptions(attribute_keys=[issue.attribute_key]),
    )
    if issue.attribute_key in result.errors:
        raise RuntimeError(result.errors[issue.attribute_key])
    if issue.attribute_key not in result.inherited:
        raise RuntimeError(result.skip_reasons.get(issue.attribute_key, "not inherited"))


async def fix_attach_to_parent(ctx: ValidationContext, issue: Issue) -> None:
    link = await ctx.links.get_by_id(issue.record_id)
    if link is None:
        raise LinkNotFoundError(issue.record_id)
    parent = await ctx.links.get_by_id(issue.details["candidate_parent_id"])
    if parent is None:
        raise LinkNotFoundError(issue.details["candidate_parent_id"])
    await ctx.links.attach_to_parent(link, parent)


async def fix_reattach_parent(ctx: ValidationContext, issue: Issue) -> None:
    link = await ctx.links.get_by_id(issue.record_id)
    if link is None:
        raise LinkNotFoundError(issue.record_id)
    link.parent_link_id = None
    variant = await ctx.catalog.get_variant(link.internal_id)
    parent = (
        await ctx.product_link_for(link.channel_account_id, variant.product_id)
        if variant is not None
        else None
    )
    if parent is not None:
        await ctx.links.attach_to_parent(link, parent)
    else:
        await ctx.session.flush()
    issue.details["new_parent_link_id"] = parent.id if parent is not None else None



async def fix_revalidate(ctx: ValidationContext, issue: Issue) -> None:
    """Re-run value validation and store the outcome."""
    assignment = await ctx.catalog.get_assignment_by_id(issue.record_id)
    if assignment is None:
        return
    definition = ctx.all_definitions[assignment.attribute_definition_id]
    check = validate_value(
        assignment.value,
        definition.data_type,
        rules=definition.validation_rules,
        enum_values=definition.enum_values,
    )
    assignment.record_validation(check.status, check.errors)
    await ctx.catalog.save(assignment)
    issue.details["status"] = check.status.value

FIXERS: dict[FixAction, FixFn] = {
    FixAction.DELETE: fix_delete,
    FixAction.REINHERIT: fix_reinherit,
    FixAction.CLEAR_INHERITANCE: fix_clear_inheritance,
    FixAction.MERGE: fix_merge,
    FixAction.CREATE_INHERITANCE: fix_create_inheritance,
    FixAction.ATTACH_TO_PARENT: fix_attach_to_parent,
    FixAction.REATTACH_PARENT: fix_reattach_parent,
    FixAction.REVALIDATE: fix_revalidate,
}
