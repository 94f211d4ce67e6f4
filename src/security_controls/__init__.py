"""security-controls - Control registry, policy toggling and compliance reporting."""

__version__ = "0.3.0"

from security_controls.models import (
    Control,
    ControlStatus,
    EnrichedViolation,
    ScanReport,
    Severity,
    Violation,
)
from security_controls.catalog import Catalog, CatalogStore
from security_controls.policy import ToggleEngine

__all__ = [
    "__version__",
    "Catalog",
    "CatalogStore",
    "Control",
    "ControlStatus",
    "EnrichedViolation",
    "ScanReport",
    "Severity",
    "ToggleEngine",
    "Violation",
]
