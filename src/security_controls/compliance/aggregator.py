"""Violation enrichment and compliance aggregation.

All functions here are pure: they take a catalog snapshot and violations and
return new values without touching disk.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from security_controls.catalog.store import Catalog
from security_controls.frameworks import order_framework_keys
from security_controls.models import (
    Control,
    EnrichedViolation,
    FrameworkCompliance,
    ReportSummary,
    Severity,
    Violation,
)

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


def unknown_control_ids(catalog: Catalog, violations: Iterable[Violation]) -> list[str]:
    """Control ids referenced by violations but missing from the catalog."""
    return sorted({v.control_id for v in violations if v.control_id not in catalog})


def enrich_violation(catalog: Catalog, violation: Violation) -> EnrichedViolation:
    """Join a violation with its catalog control.

    A violation with an unrecognised severity takes the catalog severity. A
    violation whose severity differs from the catalog keeps its own and
    records the catalog value alongside.
    """
    control = catalog.find(violation.control_id)
    if control is None:
        return EnrichedViolation(violation=violation)

    severity = violation.severity
    catalog_severity = None
    if severity == Severity.UNKNOWN:
        severity = control.severity
    elif severity != control.severity:
        catalog_severity = control.severity
        logger.warning(
            f"{violation.control_id}: reported severity {severity.value} differs from "
            f"catalog severity {control.severity.value}"
        )

    return EnrichedViolation(
        violation=violation,
        control=control,
        severity=severity,
        remediation=violation.remediation or control.remediation or None,
        catalog_severity=catalog_severity,
    )


def enrich_violations(catalog: Catalog, violations: Iterable[Violation]) -> list[EnrichedViolation]:
    """Enrich every violation, keeping input order.

    Violations of controls missing from the catalog pass through without
    catalog fields and are logged once per control id.
    """
    violations = list(violations)
    for control_id in unknown_control_ids(catalog, violations):
        logger.warning(f"Violation references control not in catalog: {control_id}")
    return [enrich_violation(catalog, v) for v in violations]


def order_violations(enriched: Iterable[EnrichedViolation]) -> list[EnrichedViolation]:
    """Sort by severity, most severe first, keeping encounter order within a severity."""
    return sorted(enriched, key=lambda e: -e.severity.rank)


def summarize(enriched: list[EnrichedViolation]) -> ReportSummary:
    """Count violations by severity, domain and cloud provider."""
    severity_counts = Counter(e.severity for e in enriched)
    by_severity = {s.value.lower(): severity_counts.get(s, 0) for s in Severity.ordered()}
    if severity_counts.get(Severity.UNKNOWN):
        by_severity[UNKNOWN] = severity_counts[Severity.UNKNOWN]

    domains = Counter(e.domain or UNKNOWN for e in enriched)
    clouds = Counter(e.cloud_provider or UNKNOWN for e in enriched)
    return ReportSummary(
        total_violations=len(enriched),
        by_severity=by_severity,
        by_domain=sorted(domains.items()),
        by_cloud=sorted(clouds.items()),
    )


def framework_compliance(enriched: list[EnrichedViolation]) -> list[FrameworkCompliance]:
    """Per framework, how many violations touch it and which references are affected."""
    counts: Counter = Counter()
    references: dict[str, set[str]] = {}
    for e in enriched:
        for framework, refs in e.frameworks.items():
            if not refs:
                continue
            counts[framework] += 1
            references.setdefault(framework, set()).update(refs)

    return [
        FrameworkCompliance(
            framework=key,
            violation_count=counts[key],
            references=sorted(references[key]),
        )
        for key in order_framework_keys(counts)
    ]


def _severity_breakdown(controls: list[Control]) -> list[dict]:
    counts = Counter(c.severity for c in controls)
    return [
        {"severity": s.value, "count": counts[s]} for s in Severity.ordered() if counts.get(s)
    ]


def _domain_breakdown(controls: list[Control]) -> list[dict]:
    counts = Counter(c.domain for c in controls)
    return [{"domain": d, "count": n} for d, n in sorted(counts.items())]


@dataclass
class FrameworkAggregation:
    """Catalog-wide view of framework coverage."""

    framework_summary: dict[str, dict] = field(default_factory=dict)
    cross_framework_mapping: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "framework_summary": self.framework_summary,
            "cross_framework_mapping": self.cross_framework_mapping,
        }


def aggregate_frameworks(catalog: Catalog) -> FrameworkAggregation:
    """Summarize how the catalog's controls cover each framework."""
    controls = list(catalog)
    keys = order_framework_keys(
        name for c in controls for name, refs in c.frameworks.items() if refs
    )

    summary: dict[str, dict] = {}
    for key in keys:
        mapped = [c for c in controls if c.frameworks.get(key)]
        summary[key] = {
            "total_controls": len(mapped),
            "controls_by_severity": _severity_breakdown(mapped),
            "controls_by_domain": _domain_breakdown(mapped),
            "unique_references": len({ref for c in mapped for ref in c.frameworks[key]}),
        }

    cis = [c for c in controls if c.frameworks.get("cis_aws") or c.frameworks.get("cis_azure")]
    if cis:
        summary["cis"] = {
            "total_controls": len(cis),
            "aws_controls": sum(1 for c in cis if c.frameworks.get("cis_aws")),
            "azure_controls": sum(1 for c in cis if c.frameworks.get("cis_azure")),
            "controls_by_severity": _severity_breakdown(cis),
        }

    mapping = [
        {
            "control_id": c.control_id,
            "title": c.title,
            "severity": c.severity.value,
            "cloud_provider": c.cloud_provider,
            "domain": c.domain,
            "frameworks": {k: list(v) for k, v in c.frameworks.items()},
            "framework_count": c.framework_count,
        }
        for c in controls
    ]
    mapping.sort(key=lambda row: (-row["framework_count"], row["control_id"]))
    return FrameworkAggregation(framework_summary=summary, cross_framework_mapping=mapping)
