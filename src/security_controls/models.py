"""Data models for controls, violations and scan reports."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(Enum):
    """Control and violation severity levels."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more severe."""
        return _SEVERITY_RANK[self]

    def meets(self, threshold: "Severity") -> bool:
        """Check whether this severity is at or above a threshold."""
        return self.rank >= threshold.rank

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Parse a severity string, mapping anything unrecognised to UNKNOWN."""
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def ordered(cls) -> list["Severity"]:
        """Known severities from most to least severe."""
        return [cls.CRITICAL, cls.HIGH, cls.MEDIUM, cls.LOW]


_SEVERITY_RANK = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ControlStatus(Enum):
    """Whether a control's rule logic is active."""

    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


# Keys of a catalog record that map onto Control attributes. Anything else is
# carried in Control.extra and written back untouched.
_CONTROL_KEYS = (
    "title",
    "severity",
    "cloud_provider",
    "domain",
    "frameworks",
    "description",
    "remediation",
    "policy_file",
    "optional",
    "category",
    "prerequisites",
    "impact",
)


@dataclass
class Control:
    """A single security control from the catalog."""

    control_id: str
    title: str
    severity: Severity
    cloud_provider: str
    domain: str
    frameworks: dict[str, list[str]] = field(default_factory=dict)
    description: str = ""
    remediation: str = ""
    policy_file: str = ""
    optional: Optional[bool] = None
    category: Optional[str] = None
    prerequisites: Optional[str] = None
    impact: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Keep reference order but drop repeats within a framework.
        self.frameworks = {
            name: list(dict.fromkeys(refs)) for name, refs in self.frameworks.items()
        }

    @property
    def is_optional(self) -> bool:
        """Whether this control ships disabled-by-default in the optional set."""
        return bool(self.optional) or self.control_id.startswith("OPT-")

    @property
    def framework_count(self) -> int:
        """Number of frameworks this control maps to."""
        return sum(1 for refs in self.frameworks.values() if refs)

    @classmethod
    def from_dict(cls, control_id: str, data: dict) -> "Control":
        """Create a control from its catalog record.

        Raises:
            ValueError: If a required field is missing or invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("control record must be an object")

        missing = [k for k in ("title", "severity", "cloud_provider", "domain") if not data.get(k)]
        if missing:
            raise ValueError(f"missing required field(s): {', '.join(missing)}")

        severity = Severity.parse(data["severity"])
        if severity == Severity.UNKNOWN:
            raise ValueError(f"invalid severity '{data['severity']}'")

        frameworks = data.get("frameworks") or {}
        if not isinstance(frameworks, dict) or not all(
            isinstance(refs, list) for refs in frameworks.values()
        ):
            raise ValueError("frameworks must map framework names to lists of references")

        return cls(
            control_id=control_id,
            title=data["title"],
            severity=severity,
            cloud_provider=data["cloud_provider"],
            domain=data["domain"],
            frameworks={name: [str(r) for r in refs] for name, refs in frameworks.items()},
            description=data.get("description") or "",
            remediation=data.get("remediation") or "",
            policy_file=data.get("policy_file") or "",
            optional=data.get("optional"),
            category=data.get("category"),
            prerequisites=data.get("prerequisites"),
            impact=data.get("impact"),
            extra={k: v for k, v in data.items() if k not in _CONTROL_KEYS},
        )

    def to_dict(self) -> dict:
        """Convert to the catalog record representation."""
        data: dict[str, Any] = {
            "title": self.title,
            "severity": self.severity.value,
            "cloud_provider": self.cloud_provider,
            "domain": self.domain,
            "frameworks": {name: list(refs) for name, refs in self.frameworks.items()},
            "description": self.description,
            "remediation": self.remediation,
            "policy_file": self.policy_file,
        }
        for key in ("optional", "category", "prerequisites", "impact"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data.update(self.extra)
        return data


@dataclass
class FileLocation:
    """Source location of the offending resource, when the engine knows it."""

    filename: str
    line_number: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {"filename": self.filename, "line_number": self.line_number}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["FileLocation"]:
        """Build from an engine record, tolerating absent or partial data."""
        if isinstance(data, str) and data:
            return cls(filename=data)
        if not isinstance(data, dict) or not data.get("filename"):
            return None
        line = data.get("line_number", data.get("line"))
        return cls(filename=str(data["filename"]), line_number=line if isinstance(line, int) else None)


def resource_type_from_address(address: str) -> str:
    """Derive the resource type from a Terraform resource address.

    ``module.net.aws_security_group.web[0]`` yields ``aws_security_group``.
    """
    parts = address.split(".")
    i = 0
    while i < len(parts) and parts[i] == "module":
        i += 2
    if i < len(parts) and parts[i] == "data":
        i += 1
    if i < len(parts) - 1:
        return parts[i]
    return ""


@dataclass
class Violation:
    """A single policy violation reported by the evaluation engine."""

    control_id: str
    severity: Severity
    resource_address: str
    message: str
    resource_type: str = ""
    remediation: Optional[str] = None
    file_location: Optional[FileLocation] = None
    # Policy group that produced this violation; not part of the canonical form.
    group: Optional[str] = None

    @classmethod
    def from_record(cls, record: dict, group: Optional[str] = None) -> "Violation":
        """Create a violation from an engine or previously exported record."""
        address = str(record.get("resource_address") or record.get("resource") or "")
        message = record.get("message")
        if message is None:
            message = record.get("msg", "")
        return cls(
            control_id=str(record.get("control_id") or "UNKNOWN"),
            severity=Severity.parse(record.get("severity") or "MEDIUM"),
            resource_address=address,
            message=str(message),
            resource_type=str(record.get("resource_type") or resource_type_from_address(address)),
            remediation=record.get("remediation") or None,
            file_location=FileLocation.from_dict(record.get("file_location")),
            group=group,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        data: dict[str, Any] = {
            "control_id": self.control_id,
            "severity": self.severity.value,
            "resource": self.resource_address,
            "resource_type": self.resource_type,
            "message": self.message,
            "remediation": self.remediation,
        }
        if self.file_location is not None:
            data["file_location"] = self.file_location.to_dict()
        return data


@dataclass
class EnrichedViolation:
    """A violation joined with its catalog control, if one exists."""

    violation: Violation
    control: Optional[Control] = None
    severity: Optional[Severity] = None
    remediation: Optional[str] = None
    catalog_severity: Optional[Severity] = None

    def __post_init__(self) -> None:
        if self.severity is None:
            self.severity = self.violation.severity
        if self.remediation is None:
            self.remediation = self.violation.remediation

    @property
    def control_id(self) -> str:
        return self.violation.control_id

    @property
    def known(self) -> bool:
        """Whether the violation's control exists in the catalog."""
        return self.control is not None

    @property
    def domain(self) -> Optional[str]:
        return self.control.domain if self.control else None

    @property
    def cloud_provider(self) -> Optional[str]:
        return self.control.cloud_provider if self.control else None

    @property
    def frameworks(self) -> dict[str, list[str]]:
        return self.control.frameworks if self.control else {}

    def to_dict(self) -> dict:
        """Convert to dictionary representation.

        Catalog fields are only present for controls found in the catalog.
        """
        data = self.violation.to_dict()
        data["severity"] = self.severity.value
        data["remediation"] = self.remediation
        if self.control is not None:
            data["title"] = self.control.title
            data["frameworks"] = {k: list(v) for k, v in self.control.frameworks.items()}
            data["domain"] = self.control.domain
            data["cloud_provider"] = self.control.cloud_provider
            data["description"] = self.control.description
            data["policy_file"] = self.control.policy_file
        if self.catalog_severity is not None:
            data["catalog_severity"] = self.catalog_severity.value
        return data


@dataclass
class ReportSummary:
    """Aggregate counts over a set of enriched violations."""

    total_violations: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_domain: list[tuple[str, int]] = field(default_factory=list)
    by_cloud: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "total_violations": self.total_violations,
            "violations_by_severity": dict(self.by_severity),
            "violations_by_domain": [{"domain": d, "count": c} for d, c in self.by_domain],
            "violations_by_cloud": [{"cloud_provider": p, "count": c} for p, c in self.by_cloud],
        }


@dataclass
class FrameworkCompliance:
    """Violation count and affected references for one framework."""

    framework: str
    violation_count: int
    references: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "framework": self.framework,
            "violation_count": self.violation_count,
            "references": list(self.references),
        }


@dataclass
class ScanReport:
    """A complete, enriched scan report ready for emitting."""

    scan_metadata: dict = field(default_factory=dict)
    summary: ReportSummary = field(default_factory=ReportSummary)
    violations: list[EnrichedViolation] = field(default_factory=list)
    framework_compliance: list[FrameworkCompliance] = field(default_factory=list)

    @property
    def has_violations(self) -> bool:
        return bool(self.violations)

    def to_dict(self, include_metadata: bool = True) -> dict:
        """Convert to dictionary representation."""
        data: dict[str, Any] = {}
        if include_metadata:
            data["scan_metadata"] = dict(self.scan_metadata)
        data["summary"] = self.summary.to_dict()
        data["violations"] = [v.to_dict() for v in self.violations]
        data["framework_compliance"] = [f.to_dict() for f in self.framework_compliance]
        return data
