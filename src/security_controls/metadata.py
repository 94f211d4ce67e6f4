"""Scan metadata: timestamps, git commit and tool versions."""

import logging
import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

from security_controls import __version__

logger = logging.getLogger(__name__)

CI_VARIABLES = ("CI", "GITHUB_ACTIONS", "GITLAB_CI")

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with a ``Z`` suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def get_commit_hash(cwd: Optional[Path] = None) -> str:
    """Current git commit, or ``unknown`` outside a repository."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=str(cwd) if cwd else None,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"git unavailable: {e}")
        return "unknown"
    return result.stdout.strip() if result.returncode == 0 and result.stdout.strip() else "unknown"


def get_tool_version(binary: str, args: tuple[str, ...] = ("--version",)) -> str:
    """First line of a tool's version output, or ``unknown``."""
    try:
        result = subprocess.run(
            [binary, *args], capture_output=True, text=True, timeout=10
        )
    except (OSError, subprocess.SubprocessError):
        return "unknown"
    lines = result.stdout.strip().splitlines()
    return lines[0].strip() if result.returncode == 0 and lines else "unknown"


def detect_scan_mode(environ: Optional[Mapping[str, str]] = None) -> str:
    """``ci`` when running under a CI system, otherwise ``local``."""
    environ = os.environ if environ is None else environ
    return "ci" if any(environ.get(name) for name in CI_VARIABLES) else "local"


def build_scan_metadata(
    environment: str,
    input_file: Optional[str],
    severity_filter: Optional[str] = None,
    engine_version: Optional[str] = None,
    terraform_version: Optional[str] = None,
    cwd: Optional[Path] = None,
    now: Optional[datetime] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict:
    """Assemble the scan_metadata block of a report.

    Args:
        environment: Deployment environment label (local, dev, prod...).
        input_file: Violations or plan file the report was built from.
        severity_filter: Minimum severity applied, if any.
        engine_version: Evaluation engine version string.
        terraform_version: Terraform version string.
        cwd: Directory used to read the git commit.
        now: Timestamp override.
        environ: Environment mapping used to detect CI.

    Returns:
        Metadata dictionary.
    """
    return {
        "timestamp": utc_timestamp(now),
        "environment": environment,
        "commit_hash": get_commit_hash(cwd),
        "scan_mode": detect_scan_mode(environ),
        "tool_versions": {
            "security_controls": __version__,
            "engine": engine_version or "unknown",
            "terraform": terraform_version or "unknown",
        },
        "severity_filter": severity_filter or "all",
        "input_file": input_file,
    }
