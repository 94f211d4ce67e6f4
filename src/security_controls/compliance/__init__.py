"""Violation enrichment, compliance aggregation and exports."""

from security_controls.compliance.aggregator import (
    FrameworkAggregation,
    aggregate_frameworks,
    enrich_violations,
    framework_compliance,
    order_violations,
    summarize,
    unknown_control_ids,
)
from security_controls.compliance.exporter import (
    build_compliance_export,
    collect_historical_exports,
    filter_catalog_for_export,
    render_compliance_csv,
)
from security_controls.compliance.report import build_scan_report, load_violations
from security_controls.frameworks import ComplianceFramework

__all__ = [
    "ComplianceFramework",
    "FrameworkAggregation",
    "aggregate_frameworks",
    "build_compliance_export",
    "build_scan_report",
    "collect_historical_exports",
    "enrich_violations",
    "filter_catalog_for_export",
    "framework_compliance",
    "load_violations",
    "order_violations",
    "render_compliance_csv",
    "summarize",
    "unknown_control_ids",
]
