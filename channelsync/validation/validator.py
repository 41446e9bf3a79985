"""Validator run: select checks, collect issues, apply fixes."""

import time
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from channelsync.domain import CheckId, ConfigurationError, Severity
from channelsync.infrastructure.models import ChannelAccount
from channelsync.validation.checks import (
    CHECKS,
    FIXERS,
    Issue,
    ValidationContext,
    ValidationScope,
)

logger = structlog.get_logger()


@dataclass
class ValidatorOptions:
    """Options for one validator run.

    ``severities`` only filters what the report shows; every selected
    check still runs and, with ``fix``, every fixable issue is repaired.
    """

    checks: list[str] | None = None
    severities: list[str] | None = None
    scope: ValidationScope = field(default_factory=ValidationScope)
    fix: bool = False


@dataclass
class ValidationReport:
    """Issues found by a run, with totals."""

    checks_run: list[CheckId] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)
    severity_filter: list[Severity] | None = None
    fix_requested: bool = False
    duration_ms: int = 0

    @property
    def visible_issues(self) -> list[Issue]:
        """Issues that pass the severity filter, most severe first."""
        issues = self.issues
        if self.severity_filter:
            issues = [i for i in issues if i.severity in self.severity_filter]
        return sorted(issues, key=lambda i: i.severity.rank)

    @property
    def counts_by_severity(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for issue in self.issues:
            counts[issue.severity.value] += 1
        return counts

    @property
    def counts_by_check(self) -> dict[str, int]:
        counts = {c.value: 0 for c in self.checks_run}
        for issue in self.issues:
            counts[issue.check.value] = counts.get(issue.check.value, 0) + 1
        return counts

    @property
    def fixed(self) -> int:
        return sum(1 for i in self.issues if i.fixed)

    @property
    def failed_fixes(self) -> int:
        return sum(1 for i in self.issues if i.fix_error is not None)

    @property
    def has_critical(self) -> bool:
        return any(i.severity == Severity.CRITICAL for i in self.issues)

    @property
    def exit_code(self) -> int:
        """Non-zero when any critical issue was found, fixed or not."""
        return 1 if self.has_critical else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "checks_run": [c.value for c in self.checks_run],
            "total_issues": len(self.issues),
            "counts_by_severity": self.counts_by_severity,
            "counts_by_check": self.counts_by_check,
            "fix_requested": self.fix_requested,
            "fixed": self.fixed,
            "failed_fixes": self.failed_fixes,
            "duration_ms": self.duration_ms,
            "issues": [i.to_dict() for i in self.visible_issues],
        }


def parse_checks(names: list[str] | None) -> list[CheckId]:
    """Resolve check names, defaulting to every registered check.

    Raises:
        ConfigurationError: If a name is not a known check.
    """
    if not names:
        return list(CHECKS)
    known = {c.value for c in CheckId}
    invalid = [n for n in names if n not in known]
    if invalid:
        raise ConfigurationError(
            f"Invalid checks: {', '.join(invalid)}",
            details={"invalid": invalid, "available": sorted(known)},
        )
    return [CheckId(n) for n in dict.fromkeys(names)]


def parse_severities(names: list[str] | None) -> list[Severity] | None:
    """Resolve severity names for the report filter.

    Raises:
        ConfigurationError: If a name is not a known severity.
    """
    if not names:
        return None
    known = {s.value for s in Severity}
    invalid = [n for n in names if n not in known]
    if invalid:
        raise ConfigurationError(
            f"Invalid severity levels: {', '.join(invalid)}",
            details={"invalid": invalid, "available": sorted(known)},
        )
    return [Severity(n) for n in dict.fromkeys(names)]


class AttributeValidator:
    """Run consistency checks and optional repairs in one session.

    The caller owns the transaction. Each fix runs in its own savepoint so
    a failing fix is rolled back alone.

    Example usage:
        async with session_factory() as session:
            async with session.begin():
                report = await AttributeValidator(session).run(
                    ValidatorOptions(checks=["inheritance_drift"], fix=True)
                )
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def run(self, options: ValidatorOptions | None = None) -> ValidationReport:
        """Run the selected checks.

        Args:
            options: Checks, severity filter, scope and fix flag.

        Returns:
            ValidationReport.

        Raises:
            ConfigurationError: For unknown checks, severities, scope IDs or keys.
        """
        options = options or ValidatorOptions()
        started = time.monotonic()
        checks = parse_checks(options.checks)
        severities = parse_severities(options.severities)
        await self._validate_scope(options.scope)

        context = ValidationContext(self.session, options.scope)
        await context.load()

        report = ValidationReport(
            checks_run=checks,
            severity_filter=severities,
            fix_requested=options.fix,
        )
        logger.info(
            "Starting validation",
            checks=[c.value for c in checks],
            fix=options.fix,
        )

        for check_id in checks:
            issues = await CHECKS[check_id](context)
            logger.info("Check complete", check=check_id.value, issues=len(issues))
            if options.fix:
                for issue in issues:
                    await self._fix(context, issue)
            report.issues.extend(issues)

        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Validation finished",
            issues=len(report.issues),
            critical=report.counts_by_severity[Severity.CRITICAL.value],
            fixed=report.fixed,
            failed_fixes=report.failed_fixes,
        )
        return report

    async def _fix(self, context: ValidationContext, issue: Issue) -> None:
        if issue.fix_action is None:
            return
        fixer = FIXERS[issue.fix_action]
        try:
            async with self.session.begin_nested():
                await fixer(context, issue)
            issue.fixed = True
        except Exception as e:
            issue.fix_error = str(e)
            logger.warning(
                "Fix failed",
                check=issue.check.value,
                action=issue.fix_action.value,
                record_id=issue.record_id,
                error=str(e),
            )

    async def _validate_scope(self, scope: ValidationScope) -> None:
        context = ValidationContext(self.session, scope)
        if scope.product_ids:
            missing = sorted(set(scope.product_ids) - await context.catalog.existing_product_ids(scope.product_ids))
            if missing:
                raise ConfigurationError(
                    f"Invalid product IDs: {', '.join(missing)}", details={"product_ids": missing}
                )
        if scope.variant_ids:
            missing = sorted(set(scope.variant_ids) - await context.catalog.existing_variant_ids(scope.variant_ids))
            if missing:
                raise ConfigurationError(
                    f"Invalid variant IDs: {', '.join(missing)}", details={"variant_ids": missing}
                )
        if scope.attribute_keys:
            unknown = await context.definitions.unknown_keys(scope.attribute_keys)
            if unknown:
                raise ConfigurationError(
                    f"Invalid attribute keys: {', '.join(unknown)}", details={"attribute_keys": unknown}
                )
        if scope.channel_account_ids:
            result = await self.session.execute(
                select(ChannelAccount.id).where(ChannelAccount.id.in_(scope.channel_account_ids))
            )
            known = set(result.scalars().all())
            missing = [a for a in scope.channel_account_ids if a not in known]
            if missing:
                raise ConfigurationError(
                    f"Invalid channel account: {', '.join(missing)}",
                    details={"channel_account_ids": missing},
                )
