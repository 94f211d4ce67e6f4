"""Shared fixtures: a small control catalog, its policy tree and a plan document."""

import json
import re
from pathlib import Path
from typing import Optional

import pytest
from click.testing import CliRunner

from security_controls.catalog.store import CatalogStore
from security_controls.evaluation.base import EvaluationResult, Evaluator
from security_controls.exceptions import EvaluationEngineError
from security_controls.models import ControlStatus, Severity, Violation
from security_controls.policy.blocks import PolicyFile, block_status

CATALOG = {
    "metadata": {
        "version": "1.0",
        "last_updated": "2026-01-01",
        "total_controls": 4,
        "aws_controls": 4,
        "azure_controls": 0,
        "optional_controls": 1,
    },
    "controls": {
        "NET-001": {
            "title": "Security groups must not allow SSH from the internet",
            "severity": "HIGH",
            "cloud_provider": "aws",
            "domain": "networking",
            "frameworks": {
                "nist_800_53": ["SC-7"],
                "cis_aws": ["5.2"],
                "iso_27001": ["A.13.1.1"],
            },
            "description": "Inbound SSH must be restricted to known networks",
            "remediation": "Restrict ingress on port 22 to trusted CIDR ranges",
            "policy_file": "policies/aws/networking/networking_policies.rego",
        },
        "NET-002": {
            "title": "VPC flow logs must be enabled",
            "severity": "MEDIUM",
            "cloud_provider": "aws",
            "domain": "networking",
            "frameworks": {"nist_800_53": ["SC-7", "AU-12"]},
            "description": "VPCs must capture flow logs",
            "remediation": "Create an aws_flow_log for every VPC",
            "policy_file": "policies/aws/networking/networking_policies.rego",
        },
        "IAM-001": {
            "title": "IAM users must not have inline policies",
            "severity": "CRITICAL",
            "cloud_provider": "aws",
            "domain": "identity",
            "frameworks": {"nist_800_53": ["AC-2"], "cis_aws": ["1.16"]},
            "description": "Permissions must be granted through groups or roles",
            "remediation": "Move inline policies to managed policies attached to groups",
            "policy_file": "policies/aws/identity/identity_policies.rego",
        },
        "OPT-AWS-DATA-001": {
            "title": "S3 buckets must use customer managed keys",
            "severity": "LOW",
            "cloud_provider": "aws",
            "domain": "data",
            "frameworks": {"iso_27001": ["A.10.1.1"]},
            "description": "Bucket encryption must use a customer managed KMS key",
            "remediation": "Set kms_master_key_id on the bucket encryption configuration",
            "policy_file": "policies/optional/aws_data_001.rego",
            "optional": True,
            "category": "strict",
        },
    },
}


def _deny_rule(control_id: str, severity: str, resource_type: str, message: str) -> str:
    return (
        "deny contains msg if {\n"
        "    resource := input.planned_values.root_module.resources[_]\n"
        f'    resource.type == "{resource_type}"\n'
        "    msg := {\n"
        f'        "control_id": "{control_id}",\n'
        f'        "severity": "{severity}",\n'
        '        "resource": resource.address,\n'
        f'        "message": "{message}"\n'
        "    }\n"
        "}\n"
    )


NETWORKING_POLICY = (
    "# CONTROL: NET-001\n"
    "# TITLE: Security groups must not allow SSH from the internet\n"
    "# SEVERITY: HIGH\n"
    "# FRAMEWORKS: NIST:SC-7,CIS-AWS:5.2,ISO:A.13.1.1\n"
    "# STATUS: ENABLED\n"
    "\n"
    "package terraform.security.aws.networking\n"
    "\n"
    "import rego.v1\n"
    "\n"
    "# Port 22 open to the world\n"
    + _deny_rule("NET-001", "HIGH", "aws_security_group", "Security group allows SSH from 0.0.0.0/0")
    + "\n"
    "# CONTROL: NET-002\n"
    "# TITLE: VPC flow logs must be enabled\n"
    "# SEVERITY: MEDIUM\n"
    "# FRAMEWORKS: NIST:SC-7,NIST:AU-12\n"
    "# STATUS: ENABLED\n"
    "\n"
    + _deny_rule("NET-002", "MEDIUM", "aws_vpc", "VPC has no flow logs")
)

IDENTITY_POLICY = (
    "# CONTROL: IAM-001\n"
    "# TITLE: IAM users must not have inline policies\n"
    "# SEVERITY: CRITICAL\n"
    "# FRAMEWORKS: NIST:AC-2,CIS-AWS:1.16\n"
    "# STATUS: ENABLED\n"
    "\n"
    "package terraform.security.aws.identity\n"
    "\n"
    "import rego.v1\n"
    "\n"
    + _deny_rule("IAM-001", "CRITICAL", "aws_iam_user_policy", "IAM user has an inline policy")
)

OPTIONAL_POLICY = (
    "# CONTROL: OPT-AWS-DATA-001\n"
    "# TITLE: S3 buckets must use customer managed keys\n"
    "# SEVERITY: LOW\n"
    "# FRAMEWORKS: ISO:A.10.1.1\n"
    "# STATUS: ENABLED\n"
    "# OPTIONAL: true\n"
    "# CATEGORY: strict\n"
    "\n"
    "package terraform.security.aws.optional.data\n"
    "\n"
    "import rego.v1\n"
    "\n"
    + _deny_rule("OPT-AWS-DATA-001", "LOW", "aws_s3_bucket", "Bucket does not use a customer managed key")
)

PLAN = {
    "format_version": "1.2",
    "planned_values": {
        "root_module": {
            "resources": [
                {"address": "aws_security_group.web", "type": "aws_security_group", "values": {}},
                {"address": "aws_vpc.main", "type": "aws_vpc", "values": {}},
                {"address": "aws_iam_user_policy.admin", "type": "aws_iam_user_policy", "values": {}},
                {"address": "aws_s3_bucket.logs", "type": "aws_s3_bucket", "values": {}},
            ]
        }
    },
}

NETWORKING_FILE = "policies/aws/networking/networking_policies.rego"
IDENTITY_FILE = "policies/aws/identity/identity_policies.rego"
OPTIONAL_FILE = "policies/optional/aws_data_001.rego"
CATALOG_FILE = "policies/control_metadata.json"


def write_project(root: Path) -> Path:
    """Lay out the sample catalog and policy tree under a directory."""
    files = {
        NETWORKING_FILE: NETWORKING_POLICY,
        IDENTITY_FILE: IDENTITY_POLICY,
        OPTIONAL_FILE: OPTIONAL_POLICY,
        CATALOG_FILE: json.dumps(CATALOG, indent=2) + "\n",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content.encode("utf-8"))
    return root


_TYPE_RE = re.compile(r'^\s*resource\.type == "([^"]+)"')
_SEVERITY_RE = re.compile(r'^\s*"severity": "([^"]+)"')
_MESSAGE_RE = re.compile(r'^\s*"message": "([^"]+)"')


class FakeEvaluator(Evaluator):
    """Evaluates the sample rule shape without an external engine.

    Every enabled block whose live lines compare ``resource.type`` against a
    literal reports each planned resource of that type.
    """

    name = "fake"

    def __init__(self, binary: Optional[str] = None, fail_groups: tuple[str, ...] = ()) -> None:
        super().__init__(binary)
        self.fail_groups = fail_groups
        self.calls: list[Path] = []

    def version(self) -> str:
        return "fake 1.0"

    def evaluate(self, document, rule_dir, timeout=None):
        rule_dir = Path(rule_dir)
        self.calls.append(rule_dir)
        if rule_dir.name in self.fail_groups:
            raise EvaluationEngineError(str(rule_dir), "rego_parse_error", exit_code=2)

        resources = json.loads(Path(document).read_text())["planned_values"]["root_module"]["resources"]
        violations = []
        for path in sorted(rule_dir.glob("*.rego")):
            policy = PolicyFile.read(path)
            for block in policy.index:
                if block_status(policy.lines, block) != ControlStatus.ENABLED:
                    continue
                live = [
                    line
                    for line in policy.lines[block.start_line - 1 : block.end_line]
                    if not line.lstrip().startswith("#")
                ]
                resource_type = severity = message = None
                for line in live:
                    resource_type = resource_type or _match(_TYPE_RE, line)
                    severity = severity or _match(_SEVERITY_RE, line)
                    message = message or _match(_MESSAGE_RE, line)
                if resource_type is None:
                    continue
                for resource in resources:
                    if resource["type"] == resource_type:
                        violations.append(
                            Violation(
                                control_id=block.control_id,
                                severity=Severity.parse(severity),
                                resource_address=resource["address"],
                                message=message or "",
                                resource_type=resource_type,
                            )
                        )
        return EvaluationResult(violations=violations, exit_code=1 if violations else 0)


def _match(pattern: re.Pattern, line: str) -> Optional[str]:
    match = pattern.match(line)
    return match.group(1) if match else None


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep config environment overrides from leaking into tests."""
    for name in (
        "SECURITY_CONTROLS_POLICIES_DIR",
        "SECURITY_CONTROLS_REPORTS_DIR",
        "SECURITY_CONTROLS_ENVIRONMENT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def project(tmp_path):
    """Project root holding the sample catalog and policy tree."""
    return write_project(tmp_path / "project")


@pytest.fixture
def store(project):
    """Catalog store for the sample project."""
    return CatalogStore(project / CATALOG_FILE)


@pytest.fixture
def plan_file(tmp_path):
    """Terraform plan JSON with one resource per sample control."""
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(PLAN, indent=2))
    return path


@pytest.fixture
def fake_evaluator():
    """Evaluator that understands the sample rules."""
    return FakeEvaluator()
