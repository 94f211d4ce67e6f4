"""Persistent control catalog.

The catalog is a single JSON document holding a ``metadata`` block and a
``controls`` mapping keyed by control id. It is the system of record for
control metadata; rule logic lives in the policy files it points to.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from security_controls.exceptions import (
    CatalogCorruptError,
    CatalogNotFoundError,
    ControlNotFoundError,
    DuplicateControlError,
)
from security_controls.fileio import atomic_write_text, backup_file
from security_controls.frameworks import resolve_framework_filter
from security_controls.models import Control, ControlStatus, Severity

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"

StatusResolver = Callable[[Control], Optional[ControlStatus]]


@dataclass
class Catalog:
    """In-memory snapshot of the control catalog."""

    metadata: dict[str, Any] = field(default_factory=dict)
    controls: dict[str, Control] = field(default_factory=dict)
    # Unknown top-level keys, written back as found
    extra: dict[str, Any] = field(default_factory=dict)

    def __contains__(self, control_id: object) -> bool:
        return control_id in self.controls

    def __len__(self) -> int:
        return len(self.controls)

    def __iter__(self) -> Iterator[Control]:
        return iter(self.controls.values())

    def get(self, control_id: str) -> Control:
        """Get a control by id.

        Raises:
            ControlNotFoundError: If no such control exists.
        """
        try:
            return self.controls[control_id]
        except KeyError:
            raise ControlNotFoundError(control_id) from None

    def find(self, control_id: str) -> Optional[Control]:
        """Get a control by id, or None."""
        return self.controls.get(control_id)

    def expected_counters(self) -> dict[str, int]:
        """Counter values derived from the current set of controls."""
        controls = list(self.controls.values())
        return {
            "total_controls": len(controls),
            "aws_controls": sum(1 for c in controls if c.cloud_provider == "aws"),
            "azure_controls": sum(1 for c in controls if c.cloud_provider == "azure"),
            "optional_controls": sum(1 for c in controls if c.is_optional),
        }

    def stale_counters(self) -> dict[str, tuple[Any, int]]:
        """Counters whose stored value differs from the derived value."""
        stale = {}
        for key, expected in self.expected_counters().items():
            if key in self.metadata and self.metadata[key] != expected:
                stale[key] = (self.metadata[key], expected)
        return stale

    def recompute_counters(self, today: Optional[date] = None) -> None:
        """Refresh the derived counters and the last-updated date."""
        self.metadata.update(self.expected_counters())
        self.metadata["last_updated"] = (today or date.today()).isoformat()

    @classmethod
    def from_dict(cls, data: Any, path: Path) -> "Catalog":
        """Build a catalog from its parsed JSON document.

        Raises:
            CatalogCorruptError: If the structure or any control is invalid.
        """
        if not isinstance(data, dict):
            raise CatalogCorruptError(path, "top level must be an object")
        raw_controls = data.get("controls")
        if not isinstance(raw_controls, dict):
            raise CatalogCorruptError(path, "missing 'controls' object")
        metadata = data.get("metadata", {})
        if not isinstance(metadata, dict):
            raise CatalogCorruptError(path, "'metadata' must be an object")

        controls = {}
        for control_id, record in raw_controls.items():
            try:
                controls[control_id] = Control.from_dict(control_id, record)
            except ValueError as e:
                raise CatalogCorruptError(path, str(e), control_id=control_id) from e

        extra = {k: v for k, v in data.items() if k not in ("metadata", "controls")}
        return cls(metadata=dict(metadata), controls=controls, extra=extra)

    def to_dict(self) -> dict:
        """Convert to the persisted JSON document."""
        data: dict[str, Any] = {
            "metadata": dict(self.metadata),
            "controls": {cid: c.to_dict() for cid, c in self.controls.items()},
        }
        data.update(self.extra)
        return data


class CatalogStore:
    """Loads and saves the control catalog file."""

    def __init__(self, path: Path | str) -> None:
        """Initialize the store.

        Args:
            path: Path to the catalog JSON file.
        """
        self.path = Path(path)

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + BACKUP_SUFFIX)

    def load(self) -> Catalog:
        """Load the catalog from disk.

        Raises:
            CatalogNotFoundError: If the file does not exist.
            CatalogCorruptError: If the file is not a valid catalog.
        """
        if not self.path.is_file():
            raise CatalogNotFoundError(self.path)
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise CatalogCorruptError(
                self.path, f"invalid JSON at line {e.lineno} column {e.colno}: {e.msg}"
            ) from e
        except UnicodeDecodeError as e:
            raise CatalogCorruptError(self.path, f"not valid UTF-8 at byte {e.start}") from e
        catalog = Catalog.from_dict(data, self.path)
        logger.debug(f"Loaded {len(catalog)} controls from {self.path}")
        return catalog

    def get(self, control_id: str) -> Control:
        """Load the catalog and return one control.

        Raises:
            ControlNotFoundError: If no such control exists.
        """
        return self.load().get(control_id)

    def add(self, control: Control) -> Catalog:
        """Add a new control and persist the catalog.

        Raises:
            DuplicateControlError: If the id already exists. Nothing is written.
        """
        catalog = self.load()
        if control.control_id in catalog:
            raise DuplicateControlError(control.control_id)
        catalog.controls[control.control_id] = control
        catalog.recompute_counters()
        self.save(catalog)
        logger.info(f"Added control {control.control_id} to {self.path}")
        return catalog

    def update(self, control: Control) -> Catalog:
        """Replace the metadata of an existing control and persist the catalog.

        Raises:
            ControlNotFoundError: If the control does not exist.
        """
        catalog = self.load()
        catalog.get(control.control_id)
        catalog.controls[control.control_id] = control
        catalog.recompute_counters()
        self.save(catalog)
        return catalog

    def save(self, catalog: Catalog) -> None:
        """Write the catalog, keeping the previous version as a backup."""
        if self.path.exists():
            backup_file(self.path, BACKUP_SUFFIX)
        atomic_write_text(self.path, json.dumps(catalog.to_dict(), indent=2) + "\n")

    def restore_backup(self) -> bool:
        """Restore the catalog from its backup copy.

        Returns:
            True if a backup existed and was restored.
        """
        if not self.backup_path.is_file():
            return False
        atomic_write_text(self.path, self.backup_path.read_text(encoding="utf-8"))
        logger.warning(f"Restored {self.path} from {self.backup_path}")
        return True

    def filter(
        self,
        control_filter: "ControlFilter",
        status_resolver: Optional[StatusResolver] = None,
        sort_by: str = "id",
    ) -> list[Control]:
        """Load the catalog and return matching controls, sorted."""
        return filter_controls(self.load(), control_filter, status_resolver, sort_by)


@dataclass
class ControlFilter:
    """Independent, composable predicates over catalog controls.

    Unset fields match everything.
    """

    cloud: Optional[str] = None
    domain: Optional[str] = None
    severity: Optional[Severity] = None
    min_severity: Optional[Severity] = None
    framework: Optional[str] = None
    status: Optional[ControlStatus] = None
    text: Optional[str] = None

    def matches(self, control: Control, status: Optional[ControlStatus] = None) -> bool:
        """Check a control against every set predicate."""
        if self.cloud and control.cloud_provider != self.cloud:
            return False
        if self.domain and control.domain != self.domain:
            return False
        if self.severity and control.severity != self.severity:
            return False
        if self.min_severity and not control.severity.meets(self.min_severity):
            return False
        if self.framework and not _matches_framework(control, self.framework):
            return False
        if self.status and status != self.status:
            return False
        if self.text:
            needle = self.text.lower()
            haystack = (control.control_id, control.title, control.description)
            if not any(needle in value.lower() for value in haystack):
                return False
        return True


def _matches_framework(control: Control, framework: str) -> bool:
    """Match by framework key or alias, or by a reference substring."""
    keys = resolve_framework_filter(framework)
    if keys is None:
        return True
    if any(control.frameworks.get(key) for key in keys):
        return True
    pattern = re.compile(re.escape(framework), re.IGNORECASE)
    return any(
        pattern.search(f"{name}:{ref}")
        for name, refs in control.frameworks.items()
        for ref in refs
    )


SORT_KEYS = ("id", "title", "severity", "cloud", "domain", "status")


def filter_controls(
    catalog: Catalog,
    control_filter: ControlFilter,
    status_resolver: Optional[StatusResolver] = None,
    sort_by: str = "id",
) -> list[Control]:
    """Filter and sort catalog controls.

    Args:
        catalog: Catalog snapshot.
        control_filter: Predicates to apply.
        status_resolver: Returns a control's toggle status. Required when
            filtering or sorting by status.
        sort_by: One of SORT_KEYS.

    Raises:
        ValueError: On an unknown sort key, or status use without a resolver.
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {sort_by}")
    needs_status = control_filter.status is not None or sort_by == "status"
    if needs_status and status_resolver is None:
        raise ValueError("A status resolver is required to filter or sort by status")

    statuses: dict[str, Optional[ControlStatus]] = {}
    if status_resolver is not None and needs_status:
        statuses = {c.control_id: status_resolver(c) for c in catalog}

    matched = [
        c for c in catalog if control_filter.matches(c, statuses.get(c.control_id))
    ]

    if sort_by == "severity":
        matched.sort(key=lambda c: (-c.severity.rank, c.control_id))
    elif sort_by == "status":
        matched.sort(
            key=lambda c: (statuses[c.control_id].value if statuses.get(c.control_id) else "~", c.control_id)
        )
    else:
        attr = {
            "id": "control_id",
            "title": "title",
            "cloud": "cloud_provider",
            "domain": "domain",
        }[sort_by]
        matched.sort(key=lambda c: (getattr(c, attr), c.control_id))
    return matched
