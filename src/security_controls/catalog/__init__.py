"""Control catalog storage and scaffolding."""

from security_controls.catalog.store import (
    Catalog,
    CatalogStore,
    ControlFilter,
    filter_controls,
)
from security_controls.catalog.scaffold import (
    ControlScaffolder,
    ScaffoldRequest,
    ScaffoldResult,
    parse_framework_mappings,
)

__all__ = [
    "Catalog",
    "CatalogStore",
    "ControlFilter",
    "ControlScaffolder",
    "ScaffoldRequest",
    "ScaffoldResult",
    "filter_controls",
    "parse_framework_mappings",
]
