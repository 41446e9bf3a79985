"""Tests for the attribute and link validator."""

from datetime import datetime, timezone

import pytest

from channelsync.catalog.repository import CatalogRepository
from channelsync.domain import (
    CheckId,
    ConfigurationError,
    FixAction,
    LinkLevel,
    OwnerRef,
    Severity,
)
from channelsync.inheritance import AttributeInheritanceEngine
from channelsync.links import LinkRegistry
from channelsync.validation import (
    AttributeValidator,
    ValidationScope,
    ValidatorOptions,
    parse_checks,
    parse_severities,
)

T1 = datetime(2026, 9, 1, tzinfo=timezone.utc)
T2 = datetime(2026, 9, 2, tzinfo=timezone.utc)


async def _run(session, *checks: str, fix: bool = False, **kwargs):
    options = ValidatorOptions(checks=list(checks) or None, fix=fix, **kwargs)
    return await AttributeValidator(session).run(options)


class TestAttributeChecks:
    """Checks over attribute assignments."""

    async def test_orphaned_inheritance_is_deleted_by_fix(self, session, seed) -> None:
        """An inherited value with a missing source is critical and removable."""
        _, (variant, _) = await seed.product()
        material = await seed.definition("material")
        orphan = await seed.assign(variant, material, "Cotton", is_inherited=True, inherited_from_id="gone")

        report = await _run(session, "orphaned_inheritance", fix=True)

        (issue,) = report.issues
        assert issue.severity == Severity.CRITICAL
        assert issue.record_id == orphan.id
        assert issue.fix_action == FixAction.DELETE
        assert issue.fixed
        assert report.fixed == 1
        assert report.exit_code == 1
        assert await CatalogRepository(session).get_assignment_by_id(orphan.id) is None

    async def test_drift_flags_only_the_drifted_pair(self, session, seed) -> None:
        """A parent change after inheritance flags that variant and key only."""
        product, (variant,) = await seed.product("A", ("A-S",))
        other, _ = await seed.product("B", ("B-S",))
        material = await seed.definition("material")
        color = await seed.definition("color")
        source = await seed.assign(product, material, "Cotton")
        await seed.assign(product, color, "Blue")
        await seed.assign(other, material, "Cotton")
        engine = AttributeInheritanceEngine(session)
        await engine.inherit_attributes_for_product(product.id)
        await engine.inherit_attributes_for_product(other.id)

        source.value = "Wool"
        await session.flush()

        report = await _run(session, "inheritance_drift")

        (issue,) = report.issues
        assert issue.subject == str(OwnerRef.variant(variant.id))
        assert issue.attribute_key == "material"
        assert issue.details == {"value": "Cotton", "parent_value": "Wool"}
        assert issue.severity == Severity.WARNING
        assert report.exit_code == 0

    async def test_drift_fix_reinherits(self, session, seed) -> None:
        """The fix copies the current parent value again."""
        product, (variant, _) = await seed.product()
        material = await seed.definition("material")
        source = await seed.assign(product, material, "Cotton")
        await seed.assign(variant, material, "Wool", is_inherited=True, inherited_from_id=source.id)

        report = await _run(session, "inheritance_drift", fix=True)

        assert report.fixed == 1
        assignment = await CatalogRepository(session).get_assignment(OwnerRef.variant(variant.id), material.id)
        assert assignment.value == "Cotton"
        assert assignment.is_inherited

    async def test_invalid_inheritance_source(self, session, seed) -> None:
        """A value inherited from another product is critical; the fix detaches it."""
        _, (variant,) = await seed.product("A", ("A-S",))
        other, _ = await seed.product("B", ())
        material = await seed.definition("material")
        foreign = await seed.assign(other, material, "Cotton")
        assignment = await seed.assign(variant, material, "Cotton", is_inherited=True, inherited_from_id=foreign.id)

        report = await _run(session, "invalid_inheritance", "orphaned_inheritance", fix=True)

        (issue,) = report.issues
        assert issue.check == CheckId.INVALID_INHERITANCE
        assert issue.details["source_id"] == foreign.id
        assert issue.fixed
        assert not assignment.is_inherited
        assert assignment.is_override
        assert assignment.value == "Cotton"

    @pytest.mark.parametrize(
        ("change", "message"),
        [
            (
                {"is_inheritable": False},
                "Inherited value belongs to an attribute that no longer supports inheritance",
            ),
            (
                {"inheritance_strategy": "never"},
                "Inherited value belongs to an attribute that no longer supports inheritance",
            ),
            ({"is_active": False}, "Inherited value belongs to an inactive or deprecated attribute"),
            ({"deprecated_at": T1}, "Inherited value belongs to an inactive or deprecated attribute"),
        ],
    )
    async def test_definition_change_invalidates_inherited_values(self, session, seed, change, message) -> None:
        """Inherited values are flagged once their definition stops supporting inheritance."""
        product, (variant,) = await seed.product("A", ("A-S",))
        material = await seed.definition("material")
        await seed.assign(product, material, "Cotton")
        await AttributeInheritanceEngine(session).inherit_attributes_for_product(product.id)
        for name, value in change.items():
            setattr(material, name, value)
        await session.flush()

        report = await _run(session, "invalid_inheritance", fix=True)

        (issue,) = report.issues
        assert issue.message == message
        assert issue.fixed
        assignment = await CatalogRepository(session).get_assignment(OwnerRef.variant(variant.id), material.id)
        assert not assignment.is_inherited
        assert assignment.value == "Cotton"

    async def test_invalid_value_is_revalidated(self, session, seed) -> None:
        """A stale invalid status is rechecked against the current rules."""
        product, _ = await seed.product("A", ())
        weight = await seed.definition("weight", "number")
        assignment = await seed.assign(
            product,
            weight,
            "12",
            validation_status="invalid",
            validation_errors=["Value must be numeric"],
            last_validated_at=T1,
        )

        report = await _run(session, "invalid_value", fix=True)

        (issue,) = report.issues
        assert issue.severity == Severity.WARNING
        assert issue.fix_action == FixAction.REVALIDATE
        assert issue.details["errors"] == ["Value must be numeric"]
        assert issue.details["status"] == "valid"
        assert assignment.validation_status == "valid"
        assert assignment.validation_errors is None
        assert report.exit_code == 0

    async def test_never_validated_values_are_validated_by_fix(self, session, seed) -> None:
        """Unvalidated values are reported as info and get a stored outcome."""
        product, _ = await seed.product("A", ())
        weight = await seed.definition("weight", "number")
        good = await seed.assign(product, await seed.definition("title"), "Shirt")
        bad = await seed.assign(product, weight, "heavy")

        report = await _run(session, "never_validated", fix=True)

        assert len(report.issues) == 2
        assert all(i.severity == Severity.INFO and i.fixed for i in report.issues)
        assert good.validation_status == "valid"
        assert bad.validation_status == "invalid"
        assert bad.validation_errors == ["Value must be numeric"]
        assert bad.last_validated_at is not None

        rerun = await _run(session, "never_validated", "invalid_value")
        assert [(i.check, i.record_id) for i in rerun.issues] == [(CheckId.INVALID_VALUE, bad.id)]

    async def test_orphaned_attribute(self, session, seed) -> None:
        """Values whose definition was deleted are critical."""
        product, _ = await seed.product()
        assignment = await seed.assign(product, "deleted-definition", "x")

        report = await _run(session, "orphaned_attribute")

        (issue,) = report.issues
        assert issue.record_id == assignment.id
        assert issue.message == "Orphaned attribute value (definition missing)"
        assert issue.severity == Severity.CRITICAL

    async def test_duplicate_keeps_most_recently_validated(self, session, seed) -> None:
        """The most recently validated duplicate survives the merge."""
        product, _ = await seed.product()
        material = await seed.definition("material")
        older = await seed.assign(product, material, "Cotton", last_validated_at=T1)
        newer = await seed.assign(product, material, "Linen", last_validated_at=T2)

        report = await _run(session, "duplicate_assignment", fix=True)

        (issue,) = report.issues
        assert issue.severity == Severity.WARNING
        assert issue.details == {"keep_id": newer.id, "remove_ids": [older.id]}
        assert issue.fixed
        catalog = CatalogRepository(session)
        assert await catalog.get_assignment_by_id(older.id) is None
        assert await catalog.get_assignment_by_id(newer.id) is not None

    async def test_duplicate_without_clear_winner_is_info(self, session, seed) -> None:
        """Duplicates validated at the same time are left for manual review."""
        product, _ = await seed.product()
        material = await seed.definition("material")
        await seed.assign(product, material, "Cotton", last_validated_at=T1)
        await seed.assign(product, material, "Linen", last_validated_at=T1)

        report = await _run(session, "duplicate_assignment", fix=True)

        (issue,) = report.issues
        assert issue.severity == Severity.INFO
        assert issue.fix_action is None
        assert not issue.fixed

    async def test_missing_inheritance_is_created_by_fix(self, session, seed) -> None:
        """Variants missing a parent value inherit it on fix."""
        product, variants = await seed.product()
        material = await seed.definition("material")
        await seed.assign(product, material, "Cotton")

        report = await _run(session, "missing_inheritance", fix=True)

        assert len(report.issues) == 2
        assert all(i.severity == Severity.INFO and i.fixed for i in report.issues)
        catalog = CatalogRepository(session)
        for variant in variants:
            assignment = await catalog.get_assignment(OwnerRef.variant(variant.id), material.id)
            assert assignment.is_inherited

    async def test_scope_limits_checked_products(self, session, seed) -> None:
        """Only products inside the scope are checked."""
        material = await seed.definition("material")
        first, _ = await seed.product("A", ("A-S",))
        second, _ = await seed.product("B", ("B-S",))
        await seed.assign(first, material, "Cotton")
        await seed.assign(second, material, "Linen")

        report = await _run(
            session, "missing_inheritance", scope=ValidationScope(product_ids=[first.id])
        )

        (issue,) = report.issues
        assert issue.details["product_id"] == first.id


class TestLinkChecks:
    """Checks over marketplace links."""

    async def test_orphaned_variant_link_attached_by_fix(self, session, seed) -> None:
        """A parentless variant link joins its product link on fix."""
        account = await seed.account()
        product, (variant, _) = await seed.product()
        parent = await LinkRegistry(session).upsert_product_link(account.id, product.id, "EXT-1", fan_out=False)
        orphan = await seed.link(account, variant.id, LinkLevel.VARIANT, external_variant_id="EXT-V1")

        report = await _run(session, "orphaned_variant_link", fix=True)

        (issue,) = report.issues
        assert issue.details["candidate_parent_id"] == parent.id
        assert issue.fixed
        assert orphan.parent_link_id == parent.id

    async def test_orphaned_variant_link_without_candidate(self, session, seed) -> None:
        """Without a product link there is nothing to attach to."""
        account = await seed.account()
        _, (variant, _) = await seed.product()
        await seed.link(account, variant.id, LinkLevel.VARIANT)

        report = await _run(session, "orphaned_variant_link", fix=True)

        (issue,) = report.issues
        assert issue.fix_action is None
        assert not issue.fixed

    async def test_parent_of_other_product_is_reattached(self, session, seed) -> None:
        """A variant link under another product's link moves to its own product's link."""
        account = await seed.account()
        product, (variant, _) = await seed.product("A", ("A-S", "A-M"))
        other, _ = await seed.product("B", ())
        registry = LinkRegistry(session)
        own = await registry.upsert_product_link(account.id, product.id, "EXT-A", fan_out=False)
        wrong = await registry.upsert_product_link(account.id, other.id, "EXT-B", fan_out=False)
        link = await seed.link(account, variant.id, LinkLevel.VARIANT, parent_link_id=wrong.id)

        report = await _run(session, "invalid_parent_link", fix=True)

        (issue,) = report.issues
        assert issue.details["reason"] == "parent links a different product"
        assert issue.details["new_parent_link_id"] == own.id
        assert link.parent_link_id == own.id
        assert report.exit_code == 1

    async def test_parent_in_other_account(self, session, seed) -> None:
        """A parent link from another account is invalid."""
        shop = await seed.account("shopify")
        ebay = await seed.account("ebay")
        product, (variant, _) = await seed.product()
        foreign = await LinkRegistry(session).upsert_product_link(ebay.id, product.id, "EXT-1", fan_out=False)
        await seed.link(shop, variant.id, LinkLevel.VARIANT, parent_link_id=foreign.id)

        report = await _run(session, "invalid_parent_link")

        (issue,) = report.issues
        assert issue.details["reason"] == "parent belongs to another account"

    async def test_duplicate_binding(self, session, seed) -> None:
        """Two links for one product in an account are reported without a fix."""
        account = await seed.account()
        product, _ = await seed.product("A", ())
        await seed.link(account, product.id, external_product_id="EXT-1")
        await seed.link(account, product.id, external_product_id="EXT-2")

        report = await _run(session, "duplicate_binding", fix=True)

        (issue,) = report.issues
        assert issue.severity == Severity.WARNING
        assert issue.fix_action is None
        assert len(issue.details["link_ids"]) == 2


class TestReport:
    """Severity filter, exit codes and option parsing."""

    async def test_severity_filter_only_limits_the_report(self, session, seed) -> None:
        """Filtered-out critical issues still count for the exit code."""
        product, (variant, _) = await seed.product()
        material = await seed.definition("material")
        await seed.assign(product, material, "Cotton")
        await seed.assign(variant, material, "x", is_inherited=True, inherited_from_id="gone")

        report = await _run(session, "orphaned_inheritance", "missing_inheritance", severities=["info"])

        assert [i.severity for i in report.visible_issues] == [Severity.INFO]
        assert report.counts_by_severity["critical"] == 1
        assert report.exit_code == 1
        data = report.to_dict()
        assert data["total_issues"] == len(report.issues)
        assert [i["severity"] for i in data["issues"]] == ["info"]

    async def test_clean_catalog(self, session, seed) -> None:
        """A consistent catalog reports nothing and exits 0."""
        await seed.product()

        report = await _run(session)

        assert report.issues == []
        assert report.exit_code == 0
        assert set(report.counts_by_check) == {c.value for c in CheckId}

    @pytest.mark.parametrize(
        ("scope", "message"),
        [
            (ValidationScope(product_ids=["nope"]), "Invalid product IDs: nope"),
            (ValidationScope(variant_ids=["nope"]), "Invalid variant IDs: nope"),
            (ValidationScope(attribute_keys=["nope"]), "Invalid attribute keys: nope"),
            (ValidationScope(channel_account_ids=["nope"]), "Invalid channel account: nope"),
        ],
    )
    async def test_invalid_scope(self, session, scope, message) -> None:
        """Unknown scope IDs are rejected before any check runs."""
        with pytest.raises(ConfigurationError) as exc_info:
            await _run(session, scope=scope)
        assert exc_info.value.message == message

    def test_parse_checks(self) -> None:
        """Check names are deduplicated and validated."""
        assert parse_checks(None) == list(CheckId)
        assert parse_checks(["inheritance_drift", "inheritance_drift"]) == [CheckId.INHERITANCE_DRIFT]
        with pytest.raises(ConfigurationError, match="Invalid checks: bogus"):
            parse_checks(["bogus"])

    def test_parse_severities(self) -> None:
        """Severity names are validated; none means all."""
        assert parse_severities([]) is None
        assert parse_severities(["critical"]) == [Severity.CRITICAL]
        with pytest.raises(ConfigurationError, match="Invalid severity levels: fatal"):
            parse_severities(["fatal"])
