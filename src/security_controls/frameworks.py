"""Compliance framework identifiers and filter aliases."""

from enum import Enum
from typing import Optional


class ComplianceFramework(Enum):
    """Frameworks the catalog maps controls to."""

    NIST_800_53 = "nist_800_53"
    CIS_AWS = "cis_aws"
    CIS_AZURE = "cis_azure"
    ISO_27001 = "iso_27001"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    ComplianceFramework.NIST_800_53: "NIST 800-53",
    ComplianceFramework.CIS_AWS: "CIS AWS",
    ComplianceFramework.CIS_AZURE: "CIS Azure",
    ComplianceFramework.ISO_27001: "ISO 27001",
}

# Short names accepted on the command line
FRAMEWORK_ALIASES: dict[str, list[str]] = {
    "nist": [ComplianceFramework.NIST_800_53.value],
    "cis": [ComplianceFramework.CIS_AWS.value, ComplianceFramework.CIS_AZURE.value],
    "iso": [ComplianceFramework.ISO_27001.value],
}

KNOWN_FRAMEWORKS = [f.value for f in ComplianceFramework]


def normalize_framework_key(name: str) -> str:
    """Normalize a framework name to its catalog key form (``cis-aws`` -> ``cis_aws``)."""
    return name.strip().lower().replace("-", "_").replace(" ", "_")


def resolve_framework_filter(name: Optional[str]) -> Optional[list[str]]:
    """Resolve a framework filter to the catalog keys it covers.

    Args:
        name: Alias (``nist``, ``cis``, ``iso``), catalog key, or ``all``.

    Returns:
        List of framework keys, or None when every framework is selected.
    """
    if not name:
        return None
    key = normalize_framework_key(name)
    if key == "all":
        return None
    if key in FRAMEWORK_ALIASES:
        return list(FRAMEWORK_ALIASES[key])
    return [key]


def display_name(key: str) -> str:
    """Human readable name for a framework key."""
    try:
        return ComplianceFramework(key).display_name
    except ValueError:
        return key.replace("_", " ").upper()


def order_framework_keys(keys) -> list[str]:
    """Known frameworks first in their canonical order, then the rest sorted."""
    keys = set(keys)
    known = [k for k in KNOWN_FRAMEWORKS if k in keys]
    return known + sorted(keys - set(KNOWN_FRAMEWORKS))
