"""Scan report generators."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from security_controls import __version__
from security_controls.exceptions import ReportWriteError
from security_controls.fileio import atomic_write_text
from security_controls.frameworks import display_name
from security_controls.models import EnrichedViolation, ScanReport, Severity

logger = logging.getLogger(__name__)

SEVERITY_ICONS = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🔵",
    Severity.UNKNOWN: "⚪",
}


class ReportGenerator(ABC):
    """Abstract base class for report generators."""

    @abstractmethod
    def generate(self, report: ScanReport) -> str:
        """Generate a report.

        Args:
            report: The enriched scan report.

        Returns:
            Formatted report as a string.
        """
        pass


class JSONReporter(ReportGenerator):
    """Generate JSON format reports."""

    def __init__(self, indent: int = 2, include_metadata: bool = True) -> None:
        """Initialize JSON reporter.

        Args:
            indent: JSON indentation level.
            include_metadata: Whether to include the scan_metadata block.
        """
        self.indent = indent
        self.include_metadata = include_metadata

    def generate(self, report: ScanReport) -> str:
        """Generate JSON report."""
        return json.dumps(report.to_dict(include_metadata=self.include_metadata), indent=self.indent)


class MarkdownReporter(ReportGenerator):
    """Generate human-readable Markdown reports.

    The output depends only on the report contents, including the footer
    timestamp which is taken from the scan metadata.
    """

    def __init__(self, include_metadata: bool = True) -> None:
        self.include_metadata = include_metadata

    def generate(self, report: ScanReport) -> str:
        """Generate Markdown report."""
        lines: list[str] = ["# Security Policy Scan Report", ""]
        meta = report.scan_metadata

        if self.include_metadata and meta:
            lines.append(f"**Scan Date:** {meta.get('timestamp', 'unknown')}  ")
            lines.append(f"**Environment:** {meta.get('environment', 'unknown')}  ")
            lines.append(f"**Commit:** {meta.get('commit_hash', 'unknown')}  ")
            if meta.get("severity_filter") and meta["severity_filter"] != "all":
                lines.append(f"**Severity Filter:** {meta['severity_filter']}  ")
            lines.append("")

        self._render_summary(lines, report)
        if report.violations:
            self._render_violations(lines, report.violations)
        self._render_frameworks(lines, report)

        lines += ["", "---", "", f"*Generated by security-controls {__version__}*  "]
        if meta.get("timestamp"):
            lines.append(f"*Report generated at: {meta['timestamp']}*")
        return "\n".join(lines) + "\n"

    def _render_summary(self, lines: list[str], report: ScanReport) -> None:
        summary = report.summary
        lines += ["## Executive Summary", ""]
        if summary.total_violations == 0:
            lines += [
                "✅ **No policy violations found**",
                "",
                "All enabled security controls passed.",
                "",
            ]
            return

        lines += [
            f"⚠️ **{summary.total_violations} policy violation(s) detected**",
            "",
            "| Severity | Count |",
            "|----------|-------|",
        ]
        for severity in Severity.ordered():
            count = summary.by_severity.get(severity.value.lower(), 0)
            lines.append(f"| {SEVERITY_ICONS[severity]} {severity.value.capitalize()} | {count} |")
        if summary.by_severity.get("unknown"):
            lines.append(f"| {SEVERITY_ICONS[Severity.UNKNOWN]} Unknown | {summary.by_severity['unknown']} |")

        lines += ["", "### Violations by Domain", ""]
        lines += [f"- **{domain.upper()}**: {count} violation(s)" for domain, count in summary.by_domain]
        lines += ["", "### Violations by Cloud Provider", ""]
        lines += [f"- **{cloud.upper()}**: {count} violation(s)" for cloud, count in summary.by_cloud]
        lines.append("")

    def _render_violations(self, lines: list[str], violations: list[EnrichedViolation]) -> None:
        lines += ["## Detailed Violations", ""]
        for severity in Severity.ordered() + [Severity.UNKNOWN]:
            group = [v for v in violations if v.severity == severity]
            if not group:
                continue
            lines += [
                f"### {SEVERITY_ICONS[severity]} {severity.value} Severity ({len(group)} violations)",
                "",
            ]
            for item in group:
                lines += self._render_violation(item)

    def _render_violation(self, item: EnrichedViolation) -> list[str]:
        v = item.violation
        out = [
            f"#### {v.control_id}: {v.message or 'Policy violation'}",
            "",
            f"**Resource:** `{v.resource_address or 'unknown'}`  ",
            f"**Resource Type:** `{v.resource_type or 'unknown'}`  ",
        ]
        if item.control is not None:
            out.append(f"**Control:** {item.control.title}  ")
            out.append(f"**Domain:** {item.control.domain}  ")
            out.append(f"**Cloud Provider:** {item.control.cloud_provider}  ")
        if v.file_location is not None:
            location = v.file_location.filename
            if v.file_location.line_number is not None:
                location += f":{v.file_location.line_number}"
            out.append(f"**File:** {location}  ")
        if item.catalog_severity is not None:
            out.append(f"**Catalog Severity:** {item.catalog_severity.value}  ")
        out += [
            "",
            "**Remediation:**  ",
            item.remediation or "No remediation guidance available",
            "",
        ]
        if item.control is not None and item.control.description:
            out += ["**Description:**  ", item.control.description, ""]
        out += ["---", ""]
        return out

    def _render_frameworks(self, lines: list[str], report: ScanReport) -> None:
        lines += ["## Framework Compliance", ""]
        if not report.violations:
            lines.append("All framework requirements are currently met.")
            return
        if not report.framework_compliance:
            lines.append("No violations map to a compliance framework.")
            return
        for entry in report.framework_compliance:
            lines += [
                f"### {entry.framework.upper()} ({display_name(entry.framework)})",
                "",
                f"- **Violations:** {entry.violation_count}",
                f"- **Affected Controls:** {', '.join(entry.references)}",
                "",
            ]


class TableReporter(ReportGenerator):
    """Generate rich table format reports for CLI output."""

    SEVERITY_COLORS = {
        Severity.CRITICAL: "red bold",
        Severity.HIGH: "red",
        Severity.MEDIUM: "yellow",
        Severity.LOW: "blue",
        Severity.UNKNOWN: "dim",
    }

    def __init__(self, show_details: bool = True) -> None:
        """Initialize table reporter.

        Args:
            show_details: Whether to show full details or summary only.
        """
        self.show_details = show_details
        self.console = Console(record=True, force_terminal=True, width=140)

    def generate(self, report: ScanReport) -> str:
        """Generate table report."""
        self._render_summary(report)
        if report.violations:
            self._render_violations(report.violations)
        return self.console.export_text()

    def _render_summary(self, report: ScanReport) -> None:
        """Render summary panel."""
        summary_text = Text()
        summary_text.append(f"Total Violations: {report.summary.total_violations}\n\n")
        summary_text.append("By Severity:\n", style="bold")
        for severity in Severity.ordered():
            count = report.summary.by_severity.get(severity.value.lower(), 0)
            summary_text.append(f"  {severity.value}: ", style=self.SEVERITY_COLORS[severity])
            summary_text.append(f"{count}\n")

        self.console.print(
            Panel(summary_text, title="Policy Scan Summary", border_style="blue")
        )

    def _render_violations(self, violations: list[EnrichedViolation]) -> None:
        """Render violations table."""
        table = Table(title="Policy Violations", show_header=True, header_style="bold cyan")
        table.add_column("Severity", width=10)
        table.add_column("Control", width=18)
        table.add_column("Resource", width=40)
        table.add_column("Domain", width=12)
        if self.show_details:
            table.add_column("Message", width=50)

        for item in violations:
            row = [
                Text(item.severity.value, style=self.SEVERITY_COLORS[item.severity]),
                item.control_id,
                item.violation.resource_address,
                item.domain or "unknown",
            ]
            if self.show_details:
                row.append(item.violation.message)
            table.add_row(*row)

        self.console.print(table)


class SARIFReporter(ReportGenerator):
    """Generate SARIF reports for code scanning integrations."""

    SARIF_VERSION = "2.1.0"
    SCHEMA = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json"

    SECURITY_SEVERITY = {
        Severity.CRITICAL: "9.5",
        Severity.HIGH: "8.0",
        Severity.MEDIUM: "5.5",
        Severity.LOW: "3.0",
        Severity.UNKNOWN: "0.0",
    }

    def __init__(self, tool_name: str = "security-controls", tool_version: str = __version__) -> None:
        self.tool_name = tool_name
        self.tool_version = tool_version

    def generate(self, report: ScanReport) -> str:
        """Generate SARIF report."""
        rules: dict[str, dict[str, Any]] = {}
        results: list[dict[str, Any]] = []
        for item in report.violations:
            if item.control_id not in rules:
                rules[item.control_id] = self._create_rule(item)
            results.append(self._create_result(item))

        sarif = {
            "$schema": self.SCHEMA,
            "version": self.SARIF_VERSION,
            "runs": [
                {
                    "tool": {
                        "driver": {
                            "name": self.tool_name,
                            "version": self.tool_version,
                            "rules": list(rules.values()),
                        }
                    },
                    "results": results,
                }
            ],
        }
        return json.dumps(sarif, indent=2)

    def _create_rule(self, item: EnrichedViolation) -> dict[str, Any]:
        control = item.control
        title = control.title if control else item.control_id
        rule: dict[str, Any] = {
            "id": item.control_id,
            "name": title.replace(" ", ""),
            "shortDescription": {"text": title},
            "defaultConfiguration": {"level": self._severity_to_sarif_level(item.severity)},
            "properties": {"security-severity": self.SECURITY_SEVERITY[item.severity]},
        }
        if control is not None:
            rule["fullDescription"] = {"text": control.description or control.title}
            rule["help"] = {"text": control.remediation}
            rule["properties"]["tags"] = [
                f"{key}:{ref}" for key, refs in control.frameworks.items() for ref in refs
            ]
        return rule

    def _create_result(self, item: EnrichedViolation) -> dict[str, Any]:
        v = item.violation
        result: dict[str, Any] = {
            "ruleId": item.control_id,
            "level": self._severity_to_sarif_level(item.severity),
            "message": {"text": v.message},
            "locations": [],
        }
        if v.file_location is not None:
            location: dict[str, Any] = {
                "physicalLocation": {"artifactLocation": {"uri": v.file_location.filename}}
            }
            if v.file_location.line_number is not None:
                location["physicalLocation"]["region"] = {
                    "startLine": v.file_location.line_number,
                    "startColumn": 1,
                }
            result["locations"].append(location)
        if v.resource_address:
            result["locations"].append(
                {"logicalLocations": [{"fullyQualifiedName": v.resource_address, "kind": "resource"}]}
            )
        return result

    def _severity_to_sarif_level(self, severity: Severity) -> str:
        """Convert severity to SARIF level."""
        mapping = {
            Severity.CRITICAL: "error",
            Severity.HIGH: "error",
            Severity.MEDIUM: "warning",
            Severity.LOW: "note",
            Severity.UNKNOWN: "note",
        }
        return mapping.get(severity, "note")


def create_reporter(
    format: str,
    show_details: bool = True,
    include_metadata: bool = True,
) -> ReportGenerator:
    """Create a reporter for the specified format.

    Args:
        format: Output format ('json', 'markdown', 'table', 'sarif').
        show_details: Whether to show full details (for table format).
        include_metadata: Whether to include scan metadata (json, markdown).

    Returns:
        Appropriate ReportGenerator instance.

    Raises:
        ValueError: If format is not supported.
    """
    if format == "json":
        return JSONReporter(include_metadata=include_metadata)
    elif format in ("markdown", "md"):
        return MarkdownReporter(include_metadata=include_metadata)
    elif format == "table":
        return TableReporter(show_details=show_details)
    elif format == "sarif":
        return SARIFReporter()
    else:
        raise ValueError(
            f"Unsupported format: {format}. Use 'json', 'markdown', 'table', or 'sarif'."
        )


def report_base_name(
    environment: Optional[str] = None,
    severity: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """``security-report[_<env>][_<severity>]_<YYYYmmdd_HHMMSS>``."""
    parts = ["security-report"]
    if environment and environment != "local":
        parts.append(environment)
    if severity and severity.lower() != "all":
        parts.append(severity.lower())
    parts.append((now or datetime.now()).strftime("%Y%m%d_%H%M%S"))
    return "_".join(parts)


def write_report(path: Path | str, content: str) -> Path:
    """Write report content, leaving no partial file on failure.

    Raises:
        ReportWriteError: If the file cannot be written.
    """
    path = Path(path)
    try:
        atomic_write_text(path, content)
    except OSError as e:
        raise ReportWriteError(path, e.strerror or str(e)) from e
    logger.info(f"Report written to {path}")
    return path
