"""Assemble enriched scan reports from violation lists."""

import json
import logging
from pathlib import Path
from typing import Optional

from security_controls.catalog.store import Catalog
from security_controls.compliance.aggregator import (
    enrich_violations,
    framework_compliance,
    order_violations,
    summarize,
)
from security_controls.exceptions import InvalidViolationsError
from security_controls.models import ScanReport, Severity, Violation

logger = logging.getLogger(__name__)


def parse_violations(data, source: Path | str = "<input>") -> list[Violation]:
    """Turn a parsed violations document into Violation records.

    Accepts either a list of records or an object with a ``violations`` list.

    Raises:
        InvalidViolationsError: If the document has another shape.
    """
    if isinstance(data, dict):
        if "violations" not in data:
            raise InvalidViolationsError(source, "object has no 'violations' list")
        data = data["violations"]
    if not isinstance(data, list):
        raise InvalidViolationsError(source, "expected a list of violations")

    violations = []
    for i, record in enumerate(data):
        if not isinstance(record, dict):
            raise InvalidViolationsError(source, f"violation {i} is not an object")
        violations.append(Violation.from_record(record))
    return violations


def load_violations(path: Path | str) -> list[Violation]:
    """Read violations from a JSON file.

    Raises:
        InvalidViolationsError: If the file is unreadable or malformed.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise InvalidViolationsError(path, f"cannot read file: {e.strerror or e}") from e
    except UnicodeDecodeError as e:
        raise InvalidViolationsError(path, f"not valid UTF-8 at byte {e.start}") from e
    except json.JSONDecodeError as e:
        raise InvalidViolationsError(
            path, f"invalid JSON at line {e.lineno} column {e.colno}: {e.msg}"
        ) from e
    return parse_violations(data, path)


def build_scan_report(
    catalog: Catalog,
    violations: list[Violation],
    scan_metadata: Optional[dict] = None,
    severity: Optional[Severity] = None,
) -> ScanReport:
    """Filter, enrich, order and summarize violations into a report.

    Args:
        catalog: Catalog snapshot used for enrichment.
        violations: Raw violations in engine order.
        scan_metadata: Metadata block for the report.
        severity: Minimum severity to include.

    Returns:
        ScanReport ready for the emitters.
    """
    enriched = enrich_violations(catalog, violations)
    if severity is not None:
        enriched = [e for e in enriched if e.severity.meets(severity)]
    ordered = order_violations(enriched)
    logger.debug(f"Report holds {len(ordered)} of {len(violations)} violation(s)")
    return ScanReport(
        scan_metadata=dict(scan_metadata or {}),
        summary=summarize(ordered),
        violations=ordered,
        framework_compliance=framework_compliance(ordered),
    )
