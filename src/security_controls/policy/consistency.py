"""Consistency checks between the catalog and the policy tree.

Reports problems without repairing anything.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from security_controls.catalog.store import Catalog
from security_controls.exceptions import MalformedPolicyFileError, PolicyFileNotFoundError
from security_controls.models import Severity
from security_controls.policy.blocks import ControlBlock, PolicyFile

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"

REQUIRED_HEADERS = ("TITLE", "SEVERITY", "FRAMEWORKS", "STATUS")

_HEADER_RE = re.compile(r"^#\s*(TITLE|SEVERITY|FRAMEWORKS|STATUS):\s*(.*?)\s*$")
_RULE_RE = re.compile(r"^\s*(deny|allow|violation|warn)\b")
_REGO_V1_RE = re.compile(r"^\s*import\s+rego\.v1\b")


@dataclass
class ValidationIssue:
    """A single consistency problem."""

    level: str
    code: str
    message: str
    control_id: Optional[str] = None
    path: Optional[str] = None
    line: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "code": self.code,
            "message": self.message,
            "control_id": self.control_id,
            "path": self.path,
            "line": self.line,
        }


@dataclass
class ValidationReport:
    """Result of validating the catalog against the policy tree."""

    issues: list[ValidationIssue] = field(default_factory=list)
    checked_controls: int = 0
    checked_files: int = 0

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, level: str, code: str, message: str, **context) -> None:
        issue = ValidationIssue(level=level, code=code, message=message, **context)
        log = logger.error if level == ERROR else logger.warning
        log(message)
        self.issues.append(issue)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "checked_controls": self.checked_controls,
            "checked_files": self.checked_files,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "issues": [i.to_dict() for i in self.issues],
        }


def find_policy_files(policies_dir: Path, extensions: Iterable[str] = (".rego",)) -> list[Path]:
    """All policy files under a directory, sorted, skipping hidden directories."""
    extensions = tuple(extensions)
    if not policies_dir.is_dir():
        return []
    files = [
        p
        for p in policies_dir.rglob("*")
        if p.is_file()
        and p.suffix in extensions
        and not any(part.startswith(".") for part in p.relative_to(policies_dir).parts)
    ]
    return sorted(files)


def _check_headers(
    report: ValidationReport, policy: PolicyFile, block: ControlBlock, expected: Severity
) -> None:
    found: dict[str, tuple[str, int]] = {}
    for line_no in block.line_numbers():
        match = _HEADER_RE.match(policy.lines[line_no - 1].rstrip("\r\n"))
        if match and match.group(1) not in found:
            found[match.group(1)] = (match.group(2), line_no)

    rel = str(policy.path)
    for header in REQUIRED_HEADERS:
        if header not in found:
            report.add(
                WARNING,
                "missing_header",
                f"{block.control_id}: missing {header} header in {rel}",
                control_id=block.control_id,
                path=rel,
                line=block.start_line,
            )

    if "SEVERITY" in found:
        value, line_no = found["SEVERITY"]
        header_severity = Severity.parse(value)
        if header_severity != expected:
            report.add(
                WARNING,
                "severity_mismatch",
                f"{block.control_id}: header severity {value or '<empty>'} differs from "
                f"catalog severity {expected.value}",
                control_id=block.control_id,
                path=rel,
                line=line_no,
            )


def validate_catalog(
    catalog: Catalog,
    project_root: Path,
    policies_dir: Path,
    extensions: Iterable[str] = (".rego",),
) -> ValidationReport:
    """Check that every control has exactly one block and the tree has no strays.

    Args:
        catalog: Catalog snapshot.
        project_root: Directory catalog policy_file paths are relative to.
        policies_dir: Root of the policy tree to scan for orphan markers.
        extensions: Policy file suffixes.

    Returns:
        ValidationReport listing every problem found.
    """
    report = ValidationReport()
    files: dict[Path, Optional[PolicyFile]] = {}

    def read(path: Path) -> Optional[PolicyFile]:
        key = path.resolve()
        if key not in files:
            try:
                files[key] = PolicyFile.read(path)
            except MalformedPolicyFileError as e:
                report.add(
                    ERROR,
                    "duplicate_marker",
                    str(e),
                    control_id=e.control_id,
                    path=str(path),
                    line=e.second_line,
                )
                files[key] = None
            except PolicyFileNotFoundError:
                files[key] = None
        return files[key]

    for control in catalog:
        report.checked_controls += 1
        path = Path(control.policy_file)
        if not path.is_absolute():
            path = project_root / path
        if not path.is_file():
            report.add(
                ERROR,
                "missing_policy_file",
                f"{control.control_id}: policy file not found: {control.policy_file}",
                control_id=control.control_id,
                path=control.policy_file,
            )
            continue
        policy = read(path)
        if policy is None:
            continue
        block = policy.index.get(control.control_id)
        if block is None:
            report.add(
                ERROR,
                "missing_marker",
                f"{control.control_id}: no CONTROL marker in {control.policy_file}",
                control_id=control.control_id,
                path=control.policy_file,
            )
            continue
        _check_headers(report, policy, block, control.severity)

    for path in find_policy_files(policies_dir, extensions):
        report.checked_files += 1
        policy = read(path)
        if policy is None:
            continue
        for block in policy.index:
            if block.control_id not in catalog:
                report.add(
                    WARNING,
                    "orphan_marker",
                    f"{block.control_id}: marker in {path} has no catalog entry",
                    control_id=block.control_id,
                    path=str(path),
                    line=block.start_line,
                )
        has_rules = any(_RULE_RE.match(line) for line in policy.lines)
        if has_rules and not any(_REGO_V1_RE.match(line) for line in policy.lines):
            report.add(
                WARNING,
                "missing_rego_v1_import",
                f"{path}: rules defined without 'import rego.v1'",
                path=str(path),
                line=1,
            )

    for key, (stored, expected) in catalog.stale_counters().items():
        report.add(
            WARNING,
            "stale_counter",
            f"Catalog metadata {key} is {stored}, expected {expected}",
        )

    return report
