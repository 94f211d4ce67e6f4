"""Control block index for policy files.

A control block starts at a ``# CONTROL: <id>`` marker line and runs up to
the line before the next marker, or the end of the file. The index is built
in one pass over the lines and works on in-memory text, so it can be tested
without touching disk.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union

from security_controls.exceptions import (
    ControlBlockNotFoundError,
    MalformedPolicyFileError,
    PolicyFileNotFoundError,
    PolicyFileUnreadableError,
)
from security_controls.fileio import read_text_exact
from security_controls.models import ControlStatus

MARKER_RE = re.compile(r"^# CONTROL: (\S+)$")

# Metadata header lines, never altered by toggling
HEADER_PREFIXES = (
    "# CONTROL:",
    "# TITLE:",
    "# SEVERITY:",
    "# FRAMEWORKS:",
    "# STATUS:",
    "# OPTIONAL:",
    "# CATEGORY:",
    "# PREREQUISITES:",
    "# IMPACT:",
)


@dataclass(frozen=True)
class ControlBlock:
    """Line span of one control, 1-based and inclusive."""

    control_id: str
    start_line: int
    end_line: int

    @property
    def span(self) -> tuple[int, int]:
        return (self.start_line, self.end_line)

    def line_numbers(self) -> range:
        return range(self.start_line, self.end_line + 1)


@dataclass
class BlockIndex:
    """All control blocks of one policy file, in file order."""

    source: str
    total_lines: int
    blocks: dict[str, ControlBlock] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ControlBlock]:
        return iter(self.blocks.values())

    def __contains__(self, control_id: object) -> bool:
        return control_id in self.blocks

    def __len__(self) -> int:
        return len(self.blocks)

    def get(self, control_id: str) -> Optional[ControlBlock]:
        return self.blocks.get(control_id)

    def locate(self, control_id: str) -> ControlBlock:
        """Get a control's block.

        Raises:
            ControlBlockNotFoundError: If the file has no marker for the control.
        """
        block = self.blocks.get(control_id)
        if block is None:
            raise ControlBlockNotFoundError(self.source, control_id)
        return block


def marker_id(line: str) -> Optional[str]:
    """Control id of a marker line, or None if the line is not a marker."""
    match = MARKER_RE.match(line.rstrip())
    return match.group(1) if match else None


def build_block_index(lines: list[str], source: Union[str, Path] = "<memory>") -> BlockIndex:
    """Index control blocks in a single pass over the lines of a policy file.

    Args:
        lines: File lines, with or without line endings.
        source: Name used in error messages.

    Returns:
        BlockIndex with one ControlBlock per marker.

    Raises:
        MalformedPolicyFileError: If a control id has two markers.
    """
    index = BlockIndex(source=str(source), total_lines=len(lines))
    current_id: Optional[str] = None
    current_start = 0
    seen: dict[str, int] = {}

    for line_no, line in enumerate(lines, start=1):
        control_id = marker_id(line)
        if control_id is None:
            continue
        if control_id in seen:
            raise MalformedPolicyFileError(source, control_id, seen[control_id], line_no)
        seen[control_id] = line_no
        if current_id is not None:
            index.blocks[current_id] = ControlBlock(current_id, current_start, line_no - 1)
        current_id, current_start = control_id, line_no

    if current_id is not None:
        index.blocks[current_id] = ControlBlock(current_id, current_start, len(lines))
    return index


def is_header_line(line: str) -> bool:
    """Whether a line belongs to the fixed metadata header."""
    return line.lstrip().startswith(HEADER_PREFIXES)


def is_rule_line(line: str) -> bool:
    """Whether a line is live rule logic (not blank, not a comment)."""
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def block_status(lines: list[str], block: ControlBlock) -> ControlStatus:
    """ENABLED iff the block holds at least one live rule line."""
    for line in lines[block.start_line - 1 : block.end_line]:
        if is_rule_line(line):
            return ControlStatus.ENABLED
    return ControlStatus.DISABLED


@dataclass
class PolicyFile:
    """A policy file read from disk together with its block index."""

    path: Path
    text: str
    lines: list[str]
    index: BlockIndex

    @classmethod
    def read(cls, path: Union[str, Path], control_id: Optional[str] = None) -> "PolicyFile":
        """Read and index a policy file.

        Raises:
            PolicyFileNotFoundError: If the file does not exist.
            PolicyFileUnreadableError: If the file is not valid UTF-8.
            MalformedPolicyFileError: If a control marker is duplicated.
        """
        path = Path(path)
        if not path.is_file():
            raise PolicyFileNotFoundError(path, control_id)
        try:
            text = read_text_exact(path)
        except UnicodeDecodeError as e:
            raise PolicyFileUnreadableError(path, f"not valid UTF-8 at byte {e.start}", control_id) from e
        lines = text.splitlines(keepends=True)
        return cls(path=path, text=text, lines=lines, index=build_block_index(lines, path))

    def locate(self, control_id: str) -> ControlBlock:
        return self.index.locate(control_id)

    def status(self, control_id: str) -> ControlStatus:
        return block_status(self.lines, self.index.locate(control_id))


def locate(policy_file: Union[str, Path], control_id: str) -> tuple[int, int]:
    """Line span ``(start_line, end_line)`` of a control in a policy file."""
    return PolicyFile.read(policy_file, control_id).locate(control_id).span


def status(policy_file: Union[str, Path], control_id: str) -> ControlStatus:
    """Current status of a control in a policy file."""
    return PolicyFile.read(policy_file, control_id).status(control_id)
