"""Scaffolding for new controls.

Creates the catalog entry and the policy block skeleton for a new control so
the two never drift apart: the catalog entry is written first and rolled back
if the policy file cannot be written.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from security_controls.catalog.store import Catalog, CatalogStore
from security_controls.exceptions import DuplicateControlError, PolicyFileUnreadableError
from security_controls.fileio import atomic_write_text, read_text_exact
from security_controls.frameworks import normalize_framework_key
from security_controls.models import Control, ControlStatus, Severity

logger = logging.getLogger(__name__)

VALID_CLOUDS = ("aws", "azure", "multi")
VALID_DOMAINS = ("identity", "networking", "logging", "data", "governance")
VALID_CATEGORIES = ("strict", "experimental", "environment-specific")

DOMAIN_PREFIXES = {
    "identity": "IAM",
    "networking": "NET",
    "logging": "LOG",
    "data": "DATA",
    "governance": "GOV",
}

# Prefixes accepted in "nist:AC-2,cis-aws:1.1" mapping strings
FRAMEWORK_PREFIXES = {
    "nist": "nist_800_53",
    "cis-aws": "cis_aws",
    "cis-azure": "cis_azure",
    "iso": "iso_27001",
}

# Labels used in the FRAMEWORKS header comment
FRAMEWORK_LABELS = {
    "nist_800_53": "NIST-800-53",
    "cis_aws": "CIS-AWS",
    "cis_azure": "CIS-Azure",
    "iso_27001": "ISO-27001",
}

_NUMBER_RE = re.compile(r"^\d{3}$")


def control_id_prefix(domain: str, cloud: str, optional: bool = False) -> str:
    """Identifier prefix for controls of a domain, e.g. ``NET`` or ``OPT-AWS-DATA``."""
    if optional:
        return f"OPT-{cloud.upper()}-{domain.upper()}"
    return DOMAIN_PREFIXES.get(domain, domain.upper())


def next_control_number(catalog: Catalog, domain: str, cloud: str, optional: bool = False) -> str:
    """Next free three-digit number for the domain's prefix."""
    pattern = re.compile(rf"^{re.escape(control_id_prefix(domain, cloud, optional))}-(\d{{3}})$")
    numbers = [int(m.group(1)) for m in (pattern.match(cid) for cid in catalog.controls) if m]
    return f"{max(numbers, default=0) + 1:03d}"


def parse_framework_mappings(value: str) -> dict[str, list[str]]:
    """Parse ``nist:AC-2,cis-aws:1.1,iso:A.9.2.1`` into catalog framework mappings.

    Entries without exactly one ``:`` are ignored. Unrecognised prefixes are
    kept under their normalised key.
    """
    frameworks: dict[str, list[str]] = {}
    for pair in value.split(","):
        parts = pair.strip().split(":")
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            if pair.strip():
                logger.warning(f"Ignoring malformed framework mapping: {pair.strip()}")
            continue
        prefix, reference = parts[0].strip().lower(), parts[1].strip()
        key = FRAMEWORK_PREFIXES.get(prefix)
        if key is None:
            key = normalize_framework_key(prefix)
            logger.warning(f"Unknown framework prefix: {prefix}")
        refs = frameworks.setdefault(key, [])
        if reference not in refs:
            refs.append(reference)
    return frameworks


def frameworks_comment(frameworks: dict[str, list[str]]) -> str:
    """Render framework mappings for the block's FRAMEWORKS header line."""
    return ",".join(
        f"{FRAMEWORK_LABELS.get(key, key.upper())}:{ref}"
        for key, refs in frameworks.items()
        for ref in refs
    )


def package_name_for(cloud: str, domain: str, optional: bool = False) -> str:
    """Rego package for a control's policy file."""
    if optional:
        return f"terraform.security.{cloud}.optional.{domain}"
    return f"terraform.security.{cloud}.{domain}"


def policy_path_for(
    policies_dir: Path,
    cloud: str,
    domain: str,
    number: str,
    optional: bool = False,
    optional_dir_name: str = "optional",
) -> Path:
    """Policy file a new control is written to."""
    if optional:
        return policies_dir / optional_dir_name / f"{cloud}_{domain}_{number}.rego"
    return policies_dir / cloud / domain / f"{domain}_policies.rego"


def _rego_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def render_control_block(control: Control, package_name: str) -> str:
    """Render the metadata header and rule skeleton for a control."""
    lines = [
        f"# CONTROL: {control.control_id}",
        f"# TITLE: {control.title}",
        f"# SEVERITY: {control.severity.value}",
        f"# FRAMEWORKS: {frameworks_comment(control.frameworks)}",
        f"# STATUS: {ControlStatus.ENABLED.value}",
    ]
    if control.is_optional:
        lines.append("# OPTIONAL: true")
        if control.category:
            lines.append(f"# CATEGORY: {control.category}")
        if control.prerequisites:
            lines.append(f"# PREREQUISITES: {control.prerequisites}")
        if control.impact:
            lines.append(f"# IMPACT: {control.impact}")

    lines += [
        "",
        f"package {package_name}",
        "",
        "import rego.v1",
        "",
        "# Replace the resource type and requirement check with the control logic",
        "deny contains msg if {",
        "    resource := input.planned_values.root_module.resources[_]",
        '    resource.type == "REPLACE_WITH_TERRAFORM_RESOURCE_TYPE"',
        "",
        "    not meets_security_requirements(resource.values)",
        "",
        "    msg := {",
        f'        "control_id": "{control.control_id}",',
        f'        "severity": "{control.severity.value}",',
        '        "resource": resource.address,',
        f'        "message": "{_rego_string(control.description)}",',
        f'        "remediation": "{_rego_string(control.remediation)}"',
        "    }",
        "}",
        "",
        "meets_security_requirements(resource_values) if {",
        '    resource_values.security_setting == "enabled"',
        "}",
    ]
    return "\n".join(lines) + "\n"


@dataclass
class ScaffoldRequest:
    """Inputs for a new control."""

    cloud: str
    domain: str
    title: str
    severity: str
    description: str
    remediation: str
    frameworks: dict[str, list[str]] = field(default_factory=dict)
    optional: bool = False
    number: Optional[str] = None
    category: Optional[str] = None
    prerequisites: Optional[str] = None
    impact: Optional[str] = None

    def validate(self) -> None:
        """Check the request inputs.

        Raises:
            ValueError: On the first invalid input.
        """
        if self.cloud not in VALID_CLOUDS:
            raise ValueError(f"Invalid cloud provider '{self.cloud}'. Choose from: {', '.join(VALID_CLOUDS)}")
        if self.domain not in VALID_DOMAINS:
            raise ValueError(f"Invalid domain '{self.domain}'. Choose from: {', '.join(VALID_DOMAINS)}")
        if Severity.parse(self.severity) == Severity.UNKNOWN:
            raise ValueError(f"Invalid severity '{self.severity}'")
        if self.number is not None and not _NUMBER_RE.match(self.number):
            raise ValueError(f"Invalid control number '{self.number}', expected three digits")
        if self.category and self.category not in VALID_CATEGORIES:
            raise ValueError(f"Invalid category '{self.category}'. Choose from: {', '.join(VALID_CATEGORIES)}")
        for name in ("title", "description", "remediation"):
            if not getattr(self, name).strip():
                raise ValueError(f"{name.capitalize()} cannot be empty")


@dataclass
class ScaffoldResult:
    """Outcome of scaffolding a control."""

    control: Control
    policy_path: Path
    package_name: str
    created_file: bool
    content: str
    dry_run: bool = False


class ControlScaffolder:
    """Creates new controls in the catalog and policy tree."""

    def __init__(
        self,
        store: CatalogStore,
        project_root: Path,
        policies_dir: Path,
        optional_dir_name: str = "optional",
    ) -> None:
        self.store = store
        self.project_root = Path(project_root)
        self.policies_dir = Path(policies_dir)
        self.optional_dir_name = optional_dir_name

    def create(self, request: ScaffoldRequest, dry_run: bool = False) -> ScaffoldResult:
        """Create a control's catalog entry and policy block.

        Args:
            request: Control inputs.
            dry_run: Build everything but write nothing.

        Returns:
            ScaffoldResult describing what was (or would be) written.

        Raises:
            ValueError: If the request is invalid.
            DuplicateControlError: If the generated id already exists.
            OSError: If the policy file cannot be written. The catalog is
                restored from its backup first.
        """
        request.validate()
        catalog = self.store.load()
        number = request.number or next_control_number(
            catalog, request.domain, request.cloud, request.optional
        )
        control_id = f"{control_id_prefix(request.domain, request.cloud, request.optional)}-{number}"

        policy_path = policy_path_for(
            self.policies_dir,
            request.cloud,
            request.domain,
            number,
            optional=request.optional,
            optional_dir_name=self.optional_dir_name,
        )
        control = Control(
            control_id=control_id,
            title=request.title.strip(),
            severity=Severity.parse(request.severity),
            cloud_provider=request.cloud,
            domain=request.domain,
            frameworks=request.frameworks,
            description=request.description.strip(),
            remediation=request.remediation.strip(),
            policy_file=Path(os.path.relpath(policy_path, self.project_root)).as_posix(),
            optional=True if request.optional else None,
            category=request.category if request.optional else None,
            prerequisites=request.prerequisites if request.optional else None,
            impact=request.impact if request.optional else None,
        )
        package_name = package_name_for(request.cloud, request.domain, request.optional)
        block = render_control_block(control, package_name)

        create_file = request.optional or not policy_path.exists()
        if create_file:
            content = block
        else:
            try:
                existing = read_text_exact(policy_path)
            except UnicodeDecodeError as e:
                raise PolicyFileUnreadableError(policy_path, f"not valid UTF-8 at byte {e.start}") from e
            separator = "\n" if existing.endswith("\n") else "\n\n"
            content = existing + separator + block

        result = ScaffoldResult(
            control=control,
            policy_path=policy_path,
            package_name=package_name,
            created_file=create_file,
            content=content,
            dry_run=dry_run,
        )
        if dry_run:
            if control_id in catalog:
                raise DuplicateControlError(control_id)
            return result

        had_catalog_backup = self.store.backup_path.exists()
        self.store.add(control)
        try:
            atomic_write_text(policy_path, content)
        except OSError:
            logger.error(f"Failed to write {policy_path}, rolling back catalog entry for {control_id}")
            self.store.restore_backup()
            if not had_catalog_backup:
                self.store.backup_path.unlink(missing_ok=True)
            raise

        action = "Created" if create_file else "Appended control to"
        logger.info(f"{action} policy file {policy_path} for {control_id}")
        return result
