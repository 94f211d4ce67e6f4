"""Policy group discovery and input document loading."""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

from security_controls.exceptions import InvalidDocumentError, NoPolicyGroupsError

logger = logging.getLogger(__name__)

# An uncommented line that starts a package or rule
LIVE_RULE_RE = re.compile(r"^(package|deny|violation|warn)\b")

SKIP_DIRS = {"__pycache__", "node_modules"}


@dataclass(frozen=True)
class PolicyGroup:
    """A directory of policy files evaluated as one unit."""

    name: str
    path: Path

    def to_dict(self) -> dict:
        return {"name": self.name, "path": str(self.path)}


def has_live_rules(path: Path) -> bool:
    """Whether a policy file holds at least one uncommented package or rule line."""
    try:
        with open(path, encoding="utf-8") as f:
            return any(LIVE_RULE_RE.match(line) for line in f)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Cannot read policy file {path}: {e}")
        return False


def _is_rule_file(path: Path, extensions: tuple[str, ...]) -> bool:
    return path.suffix in extensions and not path.stem.endswith("_test")


def _qualifies(directory: Path, extensions: tuple[str, ...]) -> bool:
    return any(
        _is_rule_file(p, extensions) and has_live_rules(p)
        for p in sorted(directory.iterdir())
        if p.is_file()
    )


def discover_policy_groups(
    policies_dir: Path,
    extensions: Iterable[str] = (".rego",),
    optional_dir_name: str = "optional",
    include_optional: bool = False,
) -> list[PolicyGroup]:
    """Find policy groups under a directory, in deterministic sorted order.

    A subdirectory is a group when it directly holds a rule file with live
    rules. If no subdirectory qualifies, the base directory itself is the
    group when it qualifies.

    Args:
        policies_dir: Root of the policy tree.
        extensions: Policy file suffixes.
        optional_dir_name: Directory name holding optional controls.
        include_optional: Also evaluate optional control directories.

    Raises:
        NoPolicyGroupsError: If nothing qualifies.
    """
    policies_dir = Path(policies_dir)
    extensions = tuple(extensions)
    if not policies_dir.is_dir():
        raise NoPolicyGroupsError(policies_dir)

    groups: list[PolicyGroup] = []
    for dirpath, dirnames, _ in os.walk(policies_dir):
        dirnames[:] = sorted(
            d
            for d in dirnames
            if not d.startswith(".")
            and d not in SKIP_DIRS
            and (include_optional or d != optional_dir_name)
        )
        directory = Path(dirpath)
        if directory == policies_dir:
            continue
        if _qualifies(directory, extensions):
            name = directory.relative_to(policies_dir).as_posix()
            groups.append(PolicyGroup(name=name, path=directory))

    if not groups and _qualifies(policies_dir, extensions):
        groups.append(PolicyGroup(name=".", path=policies_dir))

    if not groups:
        raise NoPolicyGroupsError(policies_dir)

    groups.sort(key=lambda g: g.name)
    logger.debug(f"Discovered {len(groups)} policy group(s) under {policies_dir}")
    return groups


def resolve_policy_groups(
    policies_dir: Path,
    explicit_dirs: Optional[Sequence[str]] = None,
    extensions: Iterable[str] = (".rego",),
    optional_dir_name: str = "optional",
    include_optional: bool = False,
) -> list[PolicyGroup]:
    """Use explicitly requested directories, or discover groups.

    Explicit directories keep the order given. Missing ones are logged and
    skipped.

    Raises:
        NoPolicyGroupsError: If no usable directory remains.
    """
    if not explicit_dirs:
        return discover_policy_groups(policies_dir, extensions, optional_dir_name, include_optional)

    groups = []
    seen = set()
    for entry in explicit_dirs:
        path = Path(entry)
        if not path.is_dir():
            logger.warning(f"Policy directory not found, skipping: {entry}")
            continue
        if path.resolve() in seen:
            continue
        seen.add(path.resolve())
        groups.append(PolicyGroup(name=path.as_posix(), path=path))

    if not groups:
        raise NoPolicyGroupsError(", ".join(explicit_dirs))
    return groups


def load_document(path: Path) -> dict:
    """Load and check the JSON document to evaluate.

    Raises:
        InvalidDocumentError: If the file is missing, not JSON, or not an object.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidDocumentError(path, f"cannot read file: {e.strerror or e}") from e
    except UnicodeDecodeError as e:
        raise InvalidDocumentError(path, f"not valid UTF-8 at byte {e.start}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidDocumentError(
            path, f"invalid JSON at line {e.lineno} column {e.colno}: {e.msg}"
        ) from e
    if not isinstance(data, dict):
        raise InvalidDocumentError(path, "top level must be a JSON object")
    return data
