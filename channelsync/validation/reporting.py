"""Render validation reports for the console, as JSON, or to a file."""

import json
from pathlib import Path

from channelsync.domain import ConfigurationError, Severity
from channelsync.validation.validator import ValidationReport

REPORT_FORMATS = ("console", "json")

_MARKERS = {
    Severity.CRITICAL: "[CRITICAL]",
    Severity.WARNING: "[WARNING]",
    Severity.INFO: "[INFO]",
}


def render_json(report: ValidationReport) -> str:
    return json.dumps(report.to_dict(), indent=2, default=str)


def render_console(report: ValidationReport) -> str:
    """Human-readable summary followed by one line per visible issue."""
    lines = ["Validation summary", "=" * 40]
    for severity, count in report.counts_by_severity.items():
        lines.append(f"  {severity:<10} {count}")
    lines.append(f"  {'total':<10} {len(report.issues)}")
    if report.fix_requested:
        lines.append(f"  {'fixed':<10} {report.fixed}")
        lines.append(f"  {'failed':<10} {report.failed_fixes}")
    lines.append(f"  {'duration':<10} {report.duration_ms} ms")

    lines.append("")
    lines.append("By check")
    lines.append("-" * 40)
    for check, count in report.counts_by_check.items():
        lines.append(f"  {check:<24} {count}")

    issues = report.visible_issues
    if issues:
        lines.append("")
        lines.append("Issues")
        lines.append("-" * 40)
    for issue in issues:
        line = f"{_MARKERS[issue.severity]} {issue.check.value} {issue.subject}"
        if issue.attribute_key:
            line += f" ({issue.attribute_key})"
        line += f": {issue.message}"
        if issue.fixed:
            line += f" -> fixed ({issue.fix_action.value})"
        elif issue.fix_error:
            line += f" -> fix failed: {issue.fix_error}"
        lines.append(line)

    if not report.issues:
        lines.append("")
        lines.append("No issues found.")
    return "\n".join(lines)


def render_report(report: ValidationReport, fmt: str = "console") -> str:
    """Render in one of ``REPORT_FORMATS``.

    Raises:
        ConfigurationError: For an unknown format.
    """
    if fmt == "json":
        return render_json(report)
    if fmt == "console":
        return render_console(report)
    raise ConfigurationError(
        f"Invalid report format: {fmt}", details={"available": list(REPORT_FORMATS)}
    )


def write_report(report: ValidationReport, path: str | Path, fmt: str = "json") -> Path:
    """Write the rendered report to a file, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(report, fmt) + "\n", encoding="utf-8")
    return path
