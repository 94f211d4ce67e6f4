"""Tests for the conftest and OPA engine adapters."""

import json
import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from security_controls.evaluation import create_evaluator
from security_controls.evaluation.base import engine_environment, message_record
from security_controls.evaluation.conftest_engine import ConftestEvaluator
from security_controls.evaluation.opa import OpaEvaluator, collect_rule_messages
from security_controls.exceptions import EvaluationEngineError, EvaluationTimeoutError
from security_controls.models import Severity


def _completed(stdout="", returncode=0, stderr=""):
    return Mock(stdout=stdout, stderr=stderr, returncode=returncode)


CONFTEST_OUTPUT = [
    {
        "filename": "plan.json",
        "namespace": "terraform.security.aws.networking",
        "successes": 3,
        "failures": [
            {
                "msg": json.dumps(
                    {
                        "control_id": "NET-001",
                        "severity": "HIGH",
                        "resource": "aws_security_group.web",
                        "message": "SSH open to the world",
                    }
                )
            },
            {"msg": "plain text failure", "metadata": {"details": {"control_id": "NET-002"}}},
        ],
        "warnings": [{"msg": {"control_id": "NET-003", "severity": "LOW", "message": "advisory"}}],
    }
]


class TestMessageRecord:
    """Tests for engine message normalisation."""

    def test_json_string(self):
        assert message_record('{"control_id": "A"}') == {"control_id": "A"}

    def test_nested_msg(self):
        assert message_record({"msg": {"control_id": "A"}}) == {"control_id": "A"}

    def test_plain_string_with_metadata(self):
        record = message_record("bad", {"control_id": "A", "severity": "LOW"})
        assert record == {"control_id": "A", "severity": "LOW", "message": "bad"}


class TestConftestEvaluator:
    """Tests for ConftestEvaluator."""

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_parses_failures(self, mock_run):
        mock_run.return_value = _completed(json.dumps(CONFTEST_OUTPUT), returncode=1)
        result = ConftestEvaluator().evaluate(Path("plan.json"), Path("policies/aws/networking"))

        assert result.exit_code == 1
        assert [v.control_id for v in result.violations] == ["NET-001", "NET-002"]
        first = result.violations[0]
        assert first.severity == Severity.HIGH
        assert first.resource_address == "aws_security_group.web"
        assert first.resource_type == "aws_security_group"
        assert result.violations[1].message == "plain text failure"

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_command_line(self, mock_run):
        mock_run.return_value = _completed("[]")
        ConftestEvaluator(binary="/opt/conftest").evaluate(Path("plan.json"), Path("rules"))
        args, kwargs = mock_run.call_args
        assert args[0] == [
            "/opt/conftest", "test", "--policy", "rules", "--all-namespaces",
            "--no-color", "--output", "json", "plan.json",
        ]
        assert kwargs["env"] == engine_environment()

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_warnings_only_when_requested(self, mock_run):
        mock_run.return_value = _completed(json.dumps(CONFTEST_OUTPUT), returncode=1)
        result = ConftestEvaluator(include_warnings=True).evaluate(Path("plan.json"), Path("rules"))
        assert [v.control_id for v in result.violations] == ["NET-001", "NET-002", "NET-003"]
        assert len(result.warnings) == 1

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_clean(self, mock_run):
        mock_run.return_value = _completed(json.dumps([{"filename": "plan.json", "successes": 4}]))
        result = ConftestEvaluator().evaluate(Path("plan.json"), Path("rules"))
        assert result.violations == []
        assert result.exit_code == 0

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_engine_error_exit_code(self, mock_run):
        mock_run.return_value = _completed("", returncode=2, stderr="1 error occurred: rego_parse_error\n")
        with pytest.raises(EvaluationEngineError) as exc_info:
            ConftestEvaluator().evaluate(Path("plan.json"), Path("rules"))
        assert exc_info.value.exit_code == 2
        assert "rego_parse_error" in exc_info.value.reason

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_unparseable_output(self, mock_run):
        mock_run.return_value = _completed("not json", returncode=1)
        with pytest.raises(EvaluationEngineError):
            ConftestEvaluator().evaluate(Path("plan.json"), Path("rules"))

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_nonzero_exit_with_results_is_not_a_failure(self, mock_run):
        mock_run.return_value = _completed(json.dumps(CONFTEST_OUTPUT), returncode=2)
        result = ConftestEvaluator().evaluate(Path("plan.json"), Path("rules"))
        assert [v.control_id for v in result.violations] == ["NET-001", "NET-002"]
        assert result.exit_code == 2

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_fail_on_warn(self, mock_run):
        mock_run.return_value = _completed(json.dumps(CONFTEST_OUTPUT), returncode=2)
        result = ConftestEvaluator(fail_on_warn=True).evaluate(Path("plan.json"), Path("rules"))
        assert "--fail-on-warn" in mock_run.call_args[0][0]
        assert [v.control_id for v in result.violations] == ["NET-001", "NET-002", "NET-003"]

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_malformed_result_list(self, mock_run):
        mock_run.return_value = _completed('["not an object"]', returncode=1)
        with pytest.raises(EvaluationEngineError):
            ConftestEvaluator().evaluate(Path("plan.json"), Path("rules"))

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        with pytest.raises(EvaluationEngineError, match="not found"):
            ConftestEvaluator().evaluate(Path("plan.json"), Path("rules"))

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="conftest", timeout=5)
        with pytest.raises(EvaluationTimeoutError):
            ConftestEvaluator().evaluate(Path("plan.json"), Path("rules"), timeout=5)

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_version(self, mock_run):
        mock_run.return_value = _completed("Conftest: 0.56.0\nOPA: 0.70.0\n")
        evaluator = ConftestEvaluator()
        assert evaluator.version() == "Conftest: 0.56.0"
        evaluator.version()
        assert mock_run.call_count == 1

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_version_unknown(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        assert ConftestEvaluator().version() == "unknown"


class TestOpaEvaluator:
    """Tests for OpaEvaluator."""

    OUTPUT = {
        "result": [
            {
                "expressions": [
                    {
                        "value": {
                            "terraform": {
                                "security": {
                                    "aws": {
                                        "networking": {
                                            "deny": [{"control_id": "NET-001", "resource": "aws_vpc.a"}]
                                        },
                                        "identity": {
                                            "deny": [{"control_id": "IAM-001", "severity": "CRITICAL"}],
                                            "allow": True,
                                        },
                                    }
                                }
                            }
                        }
                    }
                ]
            }
        ]
    }

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_collects_deny_sets(self, mock_run):
        mock_run.return_value = _completed(json.dumps(self.OUTPUT))
        result = OpaEvaluator().evaluate(Path("plan.json"), Path("rules"))
        assert [v.control_id for v in result.violations] == ["IAM-001", "NET-001"]
        assert result.exit_code == 1

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_no_result(self, mock_run):
        mock_run.return_value = _completed("{}")
        result = OpaEvaluator().evaluate(Path("plan.json"), Path("rules"))
        assert result.violations == []
        assert result.exit_code == 0

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_failure(self, mock_run):
        mock_run.return_value = _completed("", returncode=1, stderr="rego_type_error: undefined ref")
        with pytest.raises(EvaluationEngineError, match="rego_type_error"):
            OpaEvaluator().evaluate(Path("plan.json"), Path("rules"))

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_nonzero_exit_with_result_document(self, mock_run):
        mock_run.return_value = _completed(json.dumps(self.OUTPUT), returncode=2)
        result = OpaEvaluator().evaluate(Path("plan.json"), Path("rules"))
        assert [v.control_id for v in result.violations] == ["IAM-001", "NET-001"]

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_error_document(self, mock_run):
        errors = {"errors": [{"code": "rego_parse_error", "message": "unexpected eof token"}]}
        mock_run.return_value = _completed(json.dumps(errors), returncode=1)
        with pytest.raises(EvaluationEngineError, match="unexpected eof token") as exc_info:
            OpaEvaluator().evaluate(Path("plan.json"), Path("rules"))
        assert exc_info.value.exit_code == 1

    @patch("security_controls.evaluation.base.subprocess.run")
    def test_warn_rules_with_fail_on_warn(self, mock_run):
        output = {"result": [{"expressions": [{"value": {"p": {"warn": [{"control_id": "LOG-001"}]}}}]}]}
        mock_run.return_value = _completed(json.dumps(output))
        assert OpaEvaluator().evaluate(Path("plan.json"), Path("rules")).violations == []
        result = OpaEvaluator(fail_on_warn=True).evaluate(Path("plan.json"), Path("rules"))
        assert [v.control_id for v in result.violations] == ["LOG-001"]

    def test_collect_rule_messages_violation_rule(self):
        assert collect_rule_messages({"p": {"violation": ["a"], "deny": ["b"]}}) == ["b", "a"]


class TestCreateEvaluator:
    """Tests for create_evaluator factory."""

    def test_known_engines(self):
        assert isinstance(create_evaluator("conftest"), ConftestEvaluator)
        assert isinstance(create_evaluator("OPA", "/usr/local/bin/opa"), OpaEvaluator)

    def test_unknown_engine(self):
        with pytest.raises(ValueError, match="Unknown evaluator"):
            create_evaluator("sentinel")

    def test_fail_on_warn_passed_through(self):
        assert create_evaluator("conftest", fail_on_warn=True).fail_on_warn is True
        assert create_evaluator("opa").fail_on_warn is False
