"""Crash-safe file writes shared by the catalog, toggle and report writers."""

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str) -> None:
    """Write text to a file so readers never observe partial content.

    The content goes to a temporary file in the same directory which then
    replaces the destination. No newline translation is applied, so line
    endings in ``content`` are written as given.

    Args:
        path: Destination file.
        content: Full new file content.

    Raises:
        OSError: If the write or rename fails. The destination is untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
    logger.debug(f"Wrote {len(content)} bytes to {path}")


def backup_file(path: Path, suffix: str) -> Path:
    """Copy a file next to itself with the given suffix appended.

    Returns:
        Path of the backup copy.
    """
    path = Path(path)
    backup = path.with_name(path.name + suffix)
    shutil.copy2(path, backup)
    logger.debug(f"Backed up {path} to {backup}")
    return backup


def read_text_exact(path: Path) -> str:
    """Read a text file without newline translation."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()
