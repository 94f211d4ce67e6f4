"""Compliance matrix exports (JSON and CSV) built from the catalog alone."""

import csv
import io
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from security_controls.catalog.store import Catalog
from security_controls.compliance.aggregator import aggregate_frameworks
from security_controls.frameworks import KNOWN_FRAMEWORKS, order_framework_keys, resolve_framework_filter
from security_controls.models import Severity

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10

_CSV_COLUMN_NAMES = {
    "nist_800_53": "NIST_800_53",
    "cis_aws": "CIS_AWS",
    "cis_azure": "CIS_Azure",
    "iso_27001": "ISO_27001",
}


def filter_catalog_for_export(
    catalog: Catalog,
    framework: str = "all",
    cloud: str = "all",
    severity: Optional[Severity] = None,
) -> Catalog:
    """Restrict a catalog to one framework family, cloud provider and minimum severity.

    The returned catalog is a copy whose ``total_controls`` reflects the
    filtered view.
    """
    keys = resolve_framework_filter(framework)
    controls = {}
    for control_id, control in catalog.controls.items():
        if cloud and cloud != "all" and control.cloud_provider != cloud:
            continue
        if keys is not None and not any(control.frameworks.get(k) for k in keys):
            continue
        if severity is not None and not control.severity.meets(severity):
            continue
        controls[control_id] = control

    metadata = dict(catalog.metadata)
    metadata["total_controls"] = len(controls)
    return Catalog(metadata=metadata, controls=controls, extra=dict(catalog.extra))


def collect_historical_exports(
    reports_dir: Path, limit: int = HISTORY_LIMIT, exclude: Optional[list[Path]] = None
) -> list[dict]:
    """Export metadata of earlier compliance exports, newest first.

    Only JSON files whose name contains ``compliance`` and which carry an
    ``export_metadata`` object are considered.
    """
    reports_dir = Path(reports_dir)
    if not reports_dir.is_dir():
        return []
    excluded = {p.resolve() for p in exclude or []}
    history = []
    for path in sorted(reports_dir.glob("*compliance*.json"), key=lambda p: p.name, reverse=True):
        if path.resolve() in excluded:
            continue
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug(f"Skipping unreadable historical export {path}: {e}")
            continue
        meta = data.get("export_metadata") if isinstance(data, dict) else None
        if not isinstance(meta, dict):
            continue
        history.append({**meta, "file": path.name})
        if len(history) >= limit:
            break
    return history


def build_export_metadata(
    timestamp: str,
    commit_hash: str,
    output_format: str,
    framework: str,
    cloud: str,
    include_historical: bool,
    source_file: str,
    severity: Optional[str] = None,
) -> dict:
    """The export_metadata block of a compliance export."""
    return {
        "timestamp": timestamp,
        "commit_hash": commit_hash,
        "format": output_format,
        "framework_filter": framework,
        "cloud_filter": cloud,
        "severity_filter": severity or "all",
        "include_historical": include_historical,
        "source_file": source_file,
    }


def build_compliance_export(
    catalog: Catalog, export_metadata: dict, historical: Optional[list[dict]] = None
) -> dict:
    """Full JSON compliance export for a (possibly filtered) catalog."""
    return {
        "export_metadata": export_metadata,
        "control_metadata": dict(catalog.metadata),
        "framework_aggregation": aggregate_frameworks(catalog).to_dict(),
        "controls": {cid: catalog.controls[cid].to_dict() for cid in sorted(catalog.controls)},
        "historical_data": list(historical or []),
    }


def csv_framework_columns(catalog: Catalog) -> list[str]:
    """Framework keys with a CSV column: the known four, then any others found."""
    extra = {k for c in catalog for k in c.frameworks if k not in KNOWN_FRAMEWORKS}
    return order_framework_keys(set(KNOWN_FRAMEWORKS) | extra)


def render_compliance_csv(catalog: Catalog) -> str:
    """Compliance matrix with one row per control, sorted by control id.

    Multiple references within a framework are joined with ``;``.
    """
    frameworks = csv_framework_columns(catalog)
    header = (
        ["Control_ID", "Title", "Severity", "Cloud_Provider", "Domain"]
        + [_CSV_COLUMN_NAMES.get(k, k.upper()) for k in frameworks]
        + ["Policy_File", "Description", "Remediation", "Framework_Count"]
    )

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    for control_id in sorted(catalog.controls):
        control = catalog.controls[control_id]
        writer.writerow(
            [control_id, control.title, control.severity.value, control.cloud_provider, control.domain]
            + [";".join(control.frameworks.get(k, [])) for k in frameworks]
            + [control.policy_file, control.description, control.remediation, control.framework_count]
        )
    return buffer.getvalue()


def export_base_name(
    framework: str = "all",
    cloud: str = "all",
    now: Optional[datetime] = None,
    severity: Optional[str] = None,
) -> str:
    """``compliance_export[_<framework>][_<cloud>][_<severity>]_<YYYYmmdd_HHMMSS>``."""
    parts = ["compliance_export"]
    if framework and framework != "all":
        parts.append(framework)
    if cloud and cloud != "all":
        parts.append(cloud)
    if severity and severity != "all":
        parts.append(severity.lower())
    parts.append((now or datetime.now()).strftime("%Y%m%d_%H%M%S"))
    return "_".join(parts)
