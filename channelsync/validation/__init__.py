"""Consistency checks and repairs for links and attribute values."""

from channelsync.validation.checks import (
    CHECKS,
    FIXERS,
    Issue,
    ValidationContext,
    ValidationScope,
)
from channelsync.validation.reporting import render_report, write_report
from channelsync.validation.validator import (
    AttributeValidator,
    ValidationReport,
    ValidatorOptions,
    parse_checks,
    parse_severities,
)

__all__ = [
    "CHECKS",
    "FIXERS",
    "AttributeValidator",
    "Issue",
    "ValidationContext",
    "ValidationReport",
    "ValidationScope",
    "ValidatorOptions",
    "parse_checks",
    "parse_severities",
    "render_report",
    "write_report",
]
