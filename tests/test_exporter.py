"""Tests for compliance matrix exports."""

import csv
import io
import json
from datetime import datetime

from security_controls.compliance.exporter import (
    build_compliance_export,
    build_export_metadata,
    collect_historical_exports,
    export_base_name,
    filter_catalog_for_export,
    render_compliance_csv,
)
from security_controls.models import Severity


def _metadata(**overrides):
    values = dict(
        timestamp="2026-05-01T10:00:00Z",
        commit_hash="abc123",
        output_format="json",
        framework="all",
        cloud="all",
        include_historical=True,
        source_file="policies/control_metadata.json",
    )
    values.update(overrides)
    return build_export_metadata(**values)


class TestFilterCatalog:
    """Tests for export filtering."""

    def test_framework_filter(self, store):
        catalog = filter_catalog_for_export(store.load(), framework="iso")
        assert sorted(catalog.controls) == ["NET-001", "OPT-AWS-DATA-001"]
        assert catalog.metadata["total_controls"] == 2

    def test_cloud_filter(self, store):
        assert len(filter_catalog_for_export(store.load(), cloud="azure")) == 0

    def test_severity_threshold(self, store):
        catalog = filter_catalog_for_export(store.load(), severity=Severity.MEDIUM)
        assert sorted(catalog.controls) == ["IAM-001", "NET-001", "NET-002"]
        assert catalog.metadata["total_controls"] == 3

    def test_severity_combined_with_framework(self, store):
        catalog = filter_catalog_for_export(store.load(), framework="iso", severity=Severity.HIGH)
        assert sorted(catalog.controls) == ["NET-001"]

    def test_all(self, store):
        assert len(filter_catalog_for_export(store.load())) == 4

    def test_source_catalog_untouched(self, store):
        catalog = store.load()
        filter_catalog_for_export(catalog, framework="nist")
        assert catalog.metadata["total_controls"] == 4


class TestComplianceExport:
    """Tests for the JSON export document."""

    def test_structure(self, store):
        document = build_compliance_export(store.load(), _metadata())
        assert set(document) == {
            "export_metadata",
            "control_metadata",
            "framework_aggregation",
            "controls",
            "historical_data",
        }
        assert list(document["controls"]) == ["IAM-001", "NET-001", "NET-002", "OPT-AWS-DATA-001"]
        assert document["export_metadata"]["framework_filter"] == "all"
        assert document["historical_data"] == []

    def test_deterministic(self, store):
        first = json.dumps(build_compliance_export(store.load(), _metadata()))
        second = json.dumps(build_compliance_export(store.load(), _metadata()))
        assert first == second


class TestHistoricalExports:
    """Tests for collecting earlier exports."""

    def test_newest_first_with_limit(self, tmp_path):
        for day in range(1, 14):
            name = f"compliance_export_202605{day:02d}_120000.json"
            (tmp_path / name).write_text(json.dumps({"export_metadata": {"timestamp": f"day {day}"}}))
        history = collect_historical_exports(tmp_path)
        assert len(history) == 10
        assert history[0]["file"] == "compliance_export_20260513_120000.json"
        assert history[0]["timestamp"] == "day 13"

    def test_skips_unrelated_and_broken_files(self, tmp_path):
        (tmp_path / "security-report_20260501.json").write_text("{}")
        (tmp_path / "compliance_export_1.json").write_text("{broken")
        (tmp_path / "compliance_export_2.json").write_text(json.dumps({"no_metadata": True}))
        (tmp_path / "compliance_export_3.json").write_text(json.dumps({"export_metadata": {"format": "csv"}}))
        history = collect_historical_exports(tmp_path)
        assert history == [{"format": "csv", "file": "compliance_export_3.json"}]

    def test_missing_directory(self, tmp_path):
        assert collect_historical_exports(tmp_path / "missing") == []


class TestComplianceCsv:
    """Tests for the CSV compliance matrix."""

    def test_columns_and_rows(self, store):
        rows = list(csv.reader(io.StringIO(render_compliance_csv(store.load()))))
        assert rows[0] == [
            "Control_ID", "Title", "Severity", "Cloud_Provider", "Domain",
            "NIST_800_53", "CIS_AWS", "CIS_Azure", "ISO_27001",
            "Policy_File", "Description", "Remediation", "Framework_Count",
        ]
        assert [row[0] for row in rows[1:]] == ["IAM-001", "NET-001", "NET-002", "OPT-AWS-DATA-001"]
        net002 = rows[3]
        assert net002[5] == "SC-7;AU-12"
        assert net002[-1] == "1"

    def test_extra_framework_column(self, store):
        catalog = store.load()
        catalog.get("NET-001").frameworks["soc2"] = ["CC6.1"]
        header = render_compliance_csv(catalog).splitlines()[0].split(",")
        assert header[9] == "SOC2"


class TestExportBaseName:
    """Tests for export file naming."""

    def test_names(self):
        now = datetime(2026, 5, 1, 9, 30, 15)
        assert export_base_name(now=now) == "compliance_export_20260501_093015"
        assert export_base_name("nist", "aws", now) == "compliance_export_nist_aws_20260501_093015"
        assert export_base_name(now=now, severity="HIGH") == "compliance_export_high_20260501_093015"
