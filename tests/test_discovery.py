"""Tests for policy group discovery."""

import json

import pytest

from security_controls.evaluation.discovery import (
    discover_policy_groups,
    has_live_rules,
    load_document,
    resolve_policy_groups,
)
from security_controls.exceptions import InvalidDocumentError, NoPolicyGroupsError


def _names(groups):
    return [g.name for g in groups]


class TestDiscoverPolicyGroups:
    """Tests for discover_policy_groups."""

    def test_sorted_groups_excluding_optional(self, project):
        groups = discover_policy_groups(project / "policies")
        assert _names(groups) == ["aws/identity", "aws/networking"]

    def test_include_optional(self, project):
        groups = discover_policy_groups(project / "policies", include_optional=True)
        assert _names(groups) == ["aws/identity", "aws/networking", "optional"]

    def test_skips_fully_commented_directory(self, project):
        legacy = project / "policies" / "legacy"
        legacy.mkdir()
        (legacy / "old.rego").write_text("# package legacy\n#~ deny contains msg if { true }\n")
        assert "legacy" not in _names(discover_policy_groups(project / "policies"))

    def test_skips_test_files_and_hidden_dirs(self, project):
        tests_dir = project / "policies" / "tests"
        tests_dir.mkdir()
        (tests_dir / "net_test.rego").write_text("package net_test\n")
        hidden = project / "policies" / ".git"
        hidden.mkdir()
        (hidden / "x.rego").write_text("package x\n")
        assert _names(discover_policy_groups(project / "policies")) == ["aws/identity", "aws/networking"]

    def test_base_directory_fallback(self, tmp_path):
        (tmp_path / "main.rego").write_text("package main\n\ndeny contains msg if { false }\n")
        groups = discover_policy_groups(tmp_path)
        assert _names(groups) == ["."]
        assert groups[0].path == tmp_path

    def test_nothing_found(self, tmp_path):
        with pytest.raises(NoPolicyGroupsError):
            discover_policy_groups(tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(NoPolicyGroupsError):
            discover_policy_groups(tmp_path / "missing")


class TestResolvePolicyGroups:
    """Tests for explicit policy directories."""

    def test_explicit_order_kept(self, project):
        policies = project / "policies"
        groups = resolve_policy_groups(
            policies, [str(policies / "aws/networking"), str(policies / "aws/identity")]
        )
        assert [g.path.name for g in groups] == ["networking", "identity"]

    def test_missing_explicit_dirs_skipped(self, project):
        policies = project / "policies"
        groups = resolve_policy_groups(policies, [str(policies / "nope"), str(policies / "aws/identity")])
        assert len(groups) == 1

    def test_all_explicit_dirs_missing(self, project):
        with pytest.raises(NoPolicyGroupsError):
            resolve_policy_groups(project / "policies", [str(project / "nope")])

    def test_defaults_to_discovery(self, project):
        assert len(resolve_policy_groups(project / "policies", [])) == 2


class TestLoadDocument:
    """Tests for input document loading."""

    def test_valid(self, plan_file):
        assert "planned_values" in load_document(plan_file)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps([1, 2]))
        with pytest.raises(InvalidDocumentError, match="object"):
            load_document(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text("{")
        with pytest.raises(InvalidDocumentError, match="invalid JSON"):
            load_document(path)

    def test_missing(self, tmp_path):
        with pytest.raises(InvalidDocumentError):
            load_document(tmp_path / "missing.json")


class TestHasLiveRules:
    """Tests for live rule detection."""

    def test_indented_rule_is_not_live(self, tmp_path):
        path = tmp_path / "p.rego"
        path.write_text("#~ package p\n    deny := true\n")
        assert not has_live_rules(path)

    def test_package_line(self, tmp_path):
        path = tmp_path / "p.rego"
        path.write_text("# header\npackage p\n")
        assert has_live_rules(path)
