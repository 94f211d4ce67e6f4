"""Tests for violation enrichment and framework aggregation."""

import json

import pytest

from security_controls.compliance.aggregator import (
    aggregate_frameworks,
    enrich_violations,
    framework_compliance,
    order_violations,
    summarize,
    unknown_control_ids,
)
from security_controls.compliance.report import build_scan_report, load_violations, parse_violations
from security_controls.exceptions import InvalidViolationsError
from security_controls.models import Severity, Violation


def _violation(control_id, severity="HIGH", resource="aws_security_group.web", message="m"):
    return Violation.from_record(
        {"control_id": control_id, "severity": severity, "resource": resource, "message": message}
    )


class TestEnrichment:
    """Tests for enrich_violations."""

    def test_known_control(self, store):
        [item] = enrich_violations(store.load(), [_violation("NET-001")])
        assert item.known
        assert item.domain == "networking"
        assert item.remediation == "Restrict ingress on port 22 to trusted CIDR ranges"
        assert item.catalog_severity is None

    def test_engine_remediation_wins(self, store):
        v = _violation("NET-001")
        v.remediation = "Close port 22"
        [item] = enrich_violations(store.load(), [v])
        assert item.remediation == "Close port 22"

    def test_unknown_severity_adopts_catalog(self, store):
        [item] = enrich_violations(store.load(), [_violation("IAM-001", severity="bogus")])
        assert item.severity == Severity.CRITICAL

    def test_severity_mismatch_recorded(self, store):
        [item] = enrich_violations(store.load(), [_violation("NET-001", severity="LOW")])
        assert item.severity == Severity.LOW
        assert item.catalog_severity == Severity.HIGH
        assert item.to_dict()["catalog_severity"] == "HIGH"

    def test_unknown_control_passes_through(self, store):
        [item] = enrich_violations(store.load(), [_violation("ZZZ-404")])
        assert not item.known
        assert item.domain is None
        assert unknown_control_ids(store.load(), [item.violation]) == ["ZZZ-404"]


class TestOrderingAndSummary:
    """Tests for ordering and summary counts."""

    def test_order_is_stable_within_severity(self, store):
        violations = [
            _violation("NET-002", "MEDIUM", "a"),
            _violation("NET-001", "HIGH", "b"),
            _violation("NET-002", "MEDIUM", "c"),
            _violation("IAM-001", "CRITICAL", "d"),
        ]
        ordered = order_violations(enrich_violations(store.load(), violations))
        assert [e.violation.resource_address for e in ordered] == ["d", "b", "a", "c"]

    def test_summary(self, store):
        enriched = enrich_violations(
            store.load(),
            [_violation("NET-001"), _violation("NET-002", "MEDIUM"), _violation("ZZZ-1", "odd")],
        )
        summary = summarize(enriched)
        assert summary.total_violations == 3
        assert summary.by_severity == {"critical": 0, "high": 1, "medium": 1, "low": 0, "unknown": 1}
        assert summary.by_domain == [("networking", 2), ("unknown", 1)]
        assert summary.by_cloud == [("aws", 2), ("unknown", 1)]

    def test_empty_summary(self):
        summary = summarize([])
        assert summary.total_violations == 0
        assert "unknown" not in summary.by_severity

    def test_framework_compliance(self, store):
        enriched = enrich_violations(store.load(), [_violation("NET-001"), _violation("NET-002", "MEDIUM")])
        result = {f.framework: f for f in framework_compliance(enriched)}
        assert list(result) == ["nist_800_53", "cis_aws", "iso_27001"]
        assert result["nist_800_53"].violation_count == 2
        assert result["nist_800_53"].references == ["AU-12", "SC-7"]


class TestAggregateFrameworks:
    """Tests for catalog-wide framework aggregation."""

    def test_framework_summary(self, store):
        summary = aggregate_frameworks(store.load()).framework_summary
        assert summary["nist_800_53"]["total_controls"] == 3
        assert summary["nist_800_53"]["unique_references"] == 3
        assert summary["cis"] == {
            "total_controls": 2,
            "aws_controls": 2,
            "azure_controls": 0,
            "controls_by_severity": [
                {"severity": "CRITICAL", "count": 1},
                {"severity": "HIGH", "count": 1},
            ],
        }

    def test_cross_framework_mapping_order(self, store):
        mapping = aggregate_frameworks(store.load()).cross_framework_mapping
        assert [row["control_id"] for row in mapping] == ["NET-001", "IAM-001", "NET-002", "OPT-AWS-DATA-001"]
        assert mapping[0]["framework_count"] == 3


class TestScanReport:
    """Tests for building scan reports."""

    def test_net001_scenario(self, store):
        report = build_scan_report(
            store.load(), [_violation("NET-001", "HIGH", "aws_security_group.web", "SSH open")]
        )
        assert report.summary.total_violations == 1
        item = report.violations[0].to_dict()
        assert item["control_id"] == "NET-001"
        assert item["frameworks"]["cis_aws"] == ["5.2"]
        assert item["domain"] == "networking"
        assert [f.framework for f in report.framework_compliance] == ["nist_800_53", "cis_aws", "iso_27001"]

    def test_severity_filter_uses_reconciled_severity(self, store):
        violations = [_violation("IAM-001", "bogus"), _violation("NET-002", "MEDIUM")]
        report = build_scan_report(store.load(), violations, severity=Severity.HIGH)
        assert [v.control_id for v in report.violations] == ["IAM-001"]

    def test_empty_input(self, store):
        report = build_scan_report(store.load(), [])
        assert not report.has_violations
        assert report.framework_compliance == []


class TestLoadViolations:
    """Tests for reading violation files."""

    def test_list_and_object_forms(self, tmp_path):
        records = [{"control_id": "NET-001", "resource": "x.y"}]
        assert parse_violations(records)[0].control_id == "NET-001"
        assert parse_violations({"violations": records})[0].resource_address == "x.y"

    def test_invalid_shapes(self):
        with pytest.raises(InvalidViolationsError):
            parse_violations({"results": []})
        with pytest.raises(InvalidViolationsError):
            parse_violations("text")
        with pytest.raises(InvalidViolationsError, match="violation 1"):
            parse_violations([{}, 5])

    def test_load_file(self, tmp_path):
        path = tmp_path / "violations.json"
        path.write_text(json.dumps({"violations": [{"control_id": "IAM-001"}]}))
        assert load_violations(path)[0].control_id == "IAM-001"

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "violations.json"
        path.write_text("[")
        with pytest.raises(InvalidViolationsError, match="invalid JSON"):
            load_violations(path)
