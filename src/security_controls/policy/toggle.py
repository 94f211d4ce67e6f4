"""Enable and disable controls by commenting out their rule logic.

Disabling prefixes every live rule line in a control's block with
``TOGGLE_MARKER``; enabling strips exactly that prefix again. Header lines,
blank lines and comments the author wrote are never touched, so a disable
followed by an enable restores the file byte for byte. Blocks commented out
by hand, or shipped disabled with a plain ``# `` prefix, are enabled by
uncommenting their Rego statements and rule bodies.

Toggles are not locked: concurrent toggles of the same policy file must be
serialised by the caller.
"""

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from security_controls.catalog.store import Catalog, CatalogStore
from security_controls.exceptions import PolicyError, ToggleError, ToggleWriteError
from security_controls.fileio import atomic_write_text, backup_file, read_text_exact
from security_controls.models import Control, ControlStatus
from security_controls.policy.blocks import (
    ControlBlock,
    PolicyFile,
    block_status,
    build_block_index,
    is_header_line,
    is_rule_line,
)

logger = logging.getLogger(__name__)

TOGGLE_MARKER = "#~ "
BACKUP_SUFFIX = ".bak"

STATEMENT_RE = re.compile(r"^(package|import|default)\s")
RULE_HEAD_RE = re.compile(r"^[A-Za-z_][\w.]*(?:\[[^\]]*\])?(?:\([^)]*\))?\s*(contains|if|:=|=|\{)")


@dataclass
class ToggleResult:
    """Outcome of an enable or disable request."""

    control_id: str
    action: str
    changed: bool
    previous_status: ControlStatus
    status: ControlStatus
    policy_file: Path
    lines_changed: int = 0
    dry_run: bool = False
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "control_id": self.control_id,
            "action": self.action,
            "changed": self.changed,
            "previous_status": self.previous_status.value,
            "status": self.status.value,
            "policy_file": str(self.policy_file),
            "lines_changed": self.lines_changed,
            "dry_run": self.dry_run,
            "message": self.message,
        }


def disable_lines(lines: list[str], block: ControlBlock) -> tuple[list[str], int]:
    """Comment out the live rule lines of a block.

    Returns:
        New file lines and the number of lines changed.
    """
    result = list(lines)
    changed = 0
    for i in range(block.start_line - 1, block.end_line):
        line = result[i]
        if is_header_line(line) or not is_rule_line(line):
            continue
        result[i] = TOGGLE_MARKER + line
        changed += 1
    return result, changed


def enable_lines(lines: list[str], block: ControlBlock) -> tuple[list[str], int]:
    """Uncomment the lines a previous disable commented out.

    Blocks with no toggle marker were commented out some other way, usually
    with a plain ``# `` prefix; for those the commented rule logic is
    recovered by ``uncomment_rule_lines``.

    Returns:
        New file lines and the number of lines changed.
    """
    result = list(lines)
    changed = 0
    for i in range(block.start_line - 1, block.end_line):
        line = result[i]
        if line.startswith(TOGGLE_MARKER):
            result[i] = line[len(TOGGLE_MARKER):]
            changed += 1
    if changed == 0:
        return uncomment_rule_lines(lines, block)
    return result, changed


def uncomment_rule_lines(lines: list[str], block: ControlBlock) -> tuple[list[str], int]:
    """Uncomment rule logic that was commented out with a plain ``#``.

    A commented line is rule logic when it is a ``package``, ``import`` or
    ``default`` statement, opens a rule, or sits inside a rule body opened by
    an earlier such line. Header lines, indented comments and prose comments
    between rules stay as they are.

    Returns:
        New file lines and the number of lines changed.
    """
    result = list(lines)
    changed = 0
    depth = 0
    for i in range(block.start_line - 1, block.end_line):
        line = result[i]
        if not line.startswith("#") or is_header_line(line):
            continue
        content = line[2:] if line.startswith("# ") else line[1:]
        if depth == 0 and not is_rule_start(content):
            continue
        result[i] = content
        changed += 1
        depth = max(depth + content.count("{") - content.count("}"), 0)
    return result, changed


def is_rule_start(content: str) -> bool:
    """Whether uncommented text begins a Rego statement or rule."""
    stripped = content.rstrip()
    if STATEMENT_RE.match(stripped):
        return True
    match = RULE_HEAD_RE.match(stripped)
    if match is None:
        return False
    # contains/if heads must open a body, so prose such as "allow if needed" is skipped
    return match.group(1) not in ("contains", "if") or stripped.endswith("{")


class ToggleEngine:
    """Resolves controls through the catalog and toggles their policy blocks."""

    def __init__(self, store: CatalogStore, project_root: Path | str) -> None:
        """Initialize the toggle engine.

        Args:
            store: Catalog store used to resolve control ids.
            project_root: Directory catalog policy_file paths are relative to.
        """
        self.store = store
        self.project_root = Path(project_root)

    def policy_path(self, control: Control) -> Path:
        """Absolute path of a control's policy file."""
        path = Path(control.policy_file)
        return path if path.is_absolute() else self.project_root / path

    def status(self, control_id: str) -> ControlStatus:
        """Current status of a control.

        Raises:
            ControlNotFoundError: If the control is not in the catalog.
            PolicyFileNotFoundError: If its policy file is missing.
            ControlBlockNotFoundError: If the file has no marker for it.
        """
        control = self.store.get(control_id)
        return PolicyFile.read(self.policy_path(control), control_id).status(control_id)

    def status_resolver(self) -> Callable[[Control], Optional[ControlStatus]]:
        """Build a resolver that reads each policy file once.

        The resolver returns None for controls whose block cannot be read,
        so listings keep working over an inconsistent tree.
        """
        cache: dict[Path, Optional[PolicyFile]] = {}

        def resolve(control: Control) -> Optional[ControlStatus]:
            path = self.policy_path(control)
            if path not in cache:
                try:
                    cache[path] = PolicyFile.read(path, control.control_id)
                except PolicyError as e:
                    logger.debug(f"Cannot read status for {control.control_id}: {e}")
                    cache[path] = None
            policy = cache[path]
            if policy is None:
                return None
            block = policy.index.get(control.control_id)
            if block is None:
                logger.debug(f"No block for {control.control_id} in {path}")
                return None
            return block_status(policy.lines, block)

        return resolve

    def statuses(self, catalog: Optional[Catalog] = None) -> dict[str, Optional[ControlStatus]]:
        """Status of every catalog control, None where it cannot be determined."""
        catalog = catalog or self.store.load()
        resolve = self.status_resolver()
        return {control.control_id: resolve(control) for control in catalog}

    def enable(self, control_id: str, dry_run: bool = False) -> ToggleResult:
        """Enable a control. Already enabled controls are left untouched."""
        return self._toggle(control_id, ControlStatus.ENABLED, dry_run)

    def disable(self, control_id: str, dry_run: bool = False) -> ToggleResult:
        """Disable a control. Already disabled controls are left untouched."""
        return self._toggle(control_id, ControlStatus.DISABLED, dry_run)

    def _toggle(self, control_id: str, target: ControlStatus, dry_run: bool) -> ToggleResult:
        control = self.store.get(control_id)
        path = self.policy_path(control)
        policy = PolicyFile.read(path, control_id)
        block = policy.locate(control_id)
        current = block_status(policy.lines, block)
        action = "enable" if target == ControlStatus.ENABLED else "disable"

        if current == target:
            message = f"Control {control_id} is already {target.value.lower()}"
            logger.info(message)
            return ToggleResult(
                control_id=control_id,
                action=action,
                changed=False,
                previous_status=current,
                status=current,
                policy_file=path,
                dry_run=dry_run,
                message=message,
            )

        if target == ControlStatus.DISABLED:
            new_lines, changed = disable_lines(policy.lines, block)
        else:
            new_lines, changed = enable_lines(policy.lines, block)
            if changed == 0:
                raise ToggleError(
                    f"Control {control_id} in {path} has no commented rule logic "
                    f"in lines {block.start_line}-{block.end_line}"
                )

        if block_status(new_lines, block) != target:
            raise ToggleError(f"Control {control_id} would not become {target.value} after {action}")

        if dry_run:
            message = f"Would {action} {control_id} ({changed} line(s) in {path})"
        else:
            self._write(path, policy.text, "".join(new_lines), control_id, target)
            message = f"Control {control_id} {action}d ({changed} line(s) changed)"
        logger.info(message)

        return ToggleResult(
            control_id=control_id,
            action=action,
            changed=True,
            previous_status=current,
            status=target,
            policy_file=path,
            lines_changed=changed,
            dry_run=dry_run,
            message=message,
        )

    def _write(
        self, path: Path, original: str, content: str, control_id: str, target: ControlStatus
    ) -> None:
        """Write the toggled file, restoring the backup on any failure."""
        try:
            backup = backup_file(path, BACKUP_SUFFIX)
        except OSError as e:
            raise ToggleWriteError(path, f"cannot create backup: {e}") from e

        try:
            atomic_write_text(path, content)
            written = read_text_exact(path)
            lines = written.splitlines(keepends=True)
            block = build_block_index(lines, path).locate(control_id)
            if written != content or block_status(lines, block) != target:
                raise OSError("content on disk does not match the toggled content")
        except (OSError, PolicyError) as e:
            try:
                shutil.copy2(backup, path)
            except OSError:
                logger.error(f"Could not restore {path} from {backup}")
                atomic_write_text(path, original)
            raise ToggleWriteError(path, str(e)) from e
