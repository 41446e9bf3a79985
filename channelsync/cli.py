"""channelsync command line.

Usage:
    channelsync discover --account-id ACC1 --force
    channelsync inherit --product-id P1 --attribute material --dry-run
    channelsync validate --check inheritance_drift --fix --report json
    channelsync migrate-links --batch-size 200
    channelsync health --account-id ACC1
"""

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channelsync.discovery import DiscoveryOrchestrator
from channelsync.domain import CheckId, DomainError, Severity
from channelsync.infrastructure.database import get_session_factory
from channelsync.infrastructure.logging import configure_logging
from channelsync.inheritance import InheritanceSyncJob
from channelsync.links import LegacyLinkMigrator
from channelsync.taxonomy import TaxonomyStore
from channelsync.validation import (
    AttributeValidator,
    ValidationScope,
    ValidatorOptions,
    render_report,
    write_report,
)
from channelsync.validation.reporting import REPORT_FORMATS

logger = structlog.get_logger()


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


async def cmd_discover(args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]) -> int:
    summary = await DiscoveryOrchestrator(session_factory).run(
        account_ids=args.account_id,
        force=args.force,
        dry_run=args.dry_run,
    )
    _print_json(summary.to_dict())
    return summary.exit_code


async def cmd_inherit(args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]) -> int:
    job = InheritanceSyncJob(
        session_factory,
        product_ids=args.product_id,
        variant_ids=args.variant_id,
        attribute_keys=args.attribute,
        channel_account_id=args.channel_account_id,
        force=args.force,
        dry_run=args.dry_run,
        batch_size=args.batch_size,
    )
    result = await job.run()
    _print_json(result.to_dict())
    return result.exit_code


async def cmd_validate(args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]) -> int:
    options = ValidatorOptions(
        checks=args.check,
        severities=args.severity,
        fix=args.fix,
        scope=ValidationScope(
            product_ids=args.product_id,
            variant_ids=args.variant_id,
            attribute_keys=args.attribute,
            channel_account_ids=args.account_id,
        ),
    )
    async with session_factory() as session:
        async with session.begin():
            report = await AttributeValidator(session).run(options)

    print(render_report(report, args.report))
    if args.output_file:
        path = write_report(report, args.output_file, fmt="json")
        logger.info("Validation report written", path=str(path))
    return report.exit_code


async def cmd_migrate_links(args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]) -> int:
    result = await LegacyLinkMigrator(session_factory, batch_size=args.batch_size).run(dry_run=args.dry_run)
    _print_json(result.to_dict())
    return result.exit_code


async def cmd_health(args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        store = TaxonomyStore(session)
        report = await store.health_report(args.account_id)
        status = await store.cache_status(args.account_id)
    _print_json({**report.to_dict(), "cache": status})
    return 0


COMMANDS = {
    "discover": cmd_discover,
    "inherit": cmd_inherit,
    "validate": cmd_validate,
    "migrate-links": cmd_migrate_links,
    "health": cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="channelsync",
        description="Marketplace taxonomy, link and attribute synchronization",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default from settings)")
    parser.add_argument("--log-console", action="store_true", help="Console log output instead of JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    discover = subparsers.add_parser("discover", help="Discover channel schemas")
    discover.add_argument("--account-id", action="append", help="Channel account ID (repeatable)")
    discover.add_argument("--force", action="store_true", help="Ignore the freshness guard")
    discover.add_argument("--dry-run", action="store_true", help="Show what would be synced")

    inherit = subparsers.add_parser("inherit", help="Propagate product attributes to variants")
    inherit.add_argument("--product-id", action="append", help="Product ID (repeatable)")
    inherit.add_argument("--variant-id", action="append", help="Variant ID (repeatable)")
    inherit.add_argument("--attribute", action="append", help="Attribute key (repeatable)")
    inherit.add_argument("--channel-account-id", help="Validate against this account's value lists")
    inherit.add_argument("--force", action="store_true", help="Overwrite explicit variant values")
    inherit.add_argument("--dry-run", action="store_true", help="Decide without writing")
    inherit.add_argument("--batch-size", type=int, default=None, help="Variants per transaction")

    validate = subparsers.add_parser("validate", help="Check link and attribute consistency")
    validate.add_argument(
        "--check",
        action="append",
        help=f"Check to run (repeatable): {', '.join(c.value for c in CheckId)}",
    )
    validate.add_argument(
        "--severity",
        action="append",
        help=f"Severity to report (repeatable): {', '.join(s.value for s in Severity)}",
    )
    validate.add_argument("--fix", action="store_true", help="Apply automatic fixes")
    validate.add_argument("--report", choices=REPORT_FORMATS, default="console", help="Output format")
    validate.add_argument("--output-file", help="Also write the JSON report to this path")
    validate.add_argument("--product-id", action="append", help="Product ID (repeatable)")
    validate.add_argument("--variant-id", action="append", help="Variant ID (repeatable)")
    validate.add_argument("--attribute", action="append", help="Attribute key (repeatable)")
    validate.add_argument("--account-id", action="append", help="Channel account ID (repeatable)")

    migrate = subparsers.add_parser("migrate-links", help="Convert legacy sku_links into marketplace links")
    migrate.add_argument("--dry-run", action="store_true", help="Count without writing")
    migrate.add_argument("--batch-size", type=int, default=None, help="Legacy rows per transaction")

    health = subparsers.add_parser("health", help="Score an account's taxonomy")
    health.add_argument("--account-id", required=True, help="Channel account ID")

    return parser


async def run_command(
    args: argparse.Namespace,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> int:
    """Run a parsed command and map domain errors to exit code 1."""
    session_factory = session_factory or get_session_factory()
    try:
        return await COMMANDS[args.command](args, session_factory)
    except DomainError as e:
        logger.error("Command failed", command=args.command, error=e.message, details=e.details)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, json_output=False if args.log_console else None)
    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
