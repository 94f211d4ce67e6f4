"""Base class for external policy evaluation engines."""

import json
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from security_controls.exceptions import EvaluationEngineError, EvaluationTimeoutError
from security_controls.models import Violation

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Violations reported by an engine for one policy group."""

    violations: list[Violation] = field(default_factory=list)
    exit_code: int = 0
    warnings: list[Violation] = field(default_factory=list)
    raw: Any = None


class Evaluator(ABC):
    """Abstract base class for evaluation engines."""

    name: str = "engine"

    def __init__(self, binary: Optional[str] = None, fail_on_warn: bool = False) -> None:
        """Initialize the evaluator.

        Args:
            binary: Engine executable, defaults to the engine name on PATH.
            fail_on_warn: Report warn rules as violations.
        """
        self.binary = binary or self.name
        self.fail_on_warn = fail_on_warn
        self._version: Optional[str] = None

    @abstractmethod
    def evaluate(
        self, document: Path, rule_dir: Path, timeout: Optional[float] = None
    ) -> EvaluationResult:
        """Evaluate a document against the rules in one directory.

        Args:
            document: JSON document (Terraform plan) to evaluate.
            rule_dir: Directory holding one policy group.
            timeout: Seconds before the engine is abandoned.

        Returns:
            EvaluationResult with the violations in engine order.

        Raises:
            EvaluationEngineError: If the engine could not produce a result.
            EvaluationTimeoutError: If the engine exceeded the timeout.
        """
        pass

    def version(self) -> str:
        """Engine version string, or ``unknown`` if it cannot be determined."""
        if self._version is None:
            try:
                result = subprocess.run(
                    [self.binary, "--version"],
                    capture_output=True,
                    text=True,
                    timeout=10,
                    env=engine_environment(),
                )
                lines = result.stdout.strip().splitlines()
                self._version = lines[0].strip() if result.returncode == 0 and lines else "unknown"
            except (OSError, subprocess.SubprocessError):
                self._version = "unknown"
        return self._version

    def run(self, args: list[str], group: str, timeout: Optional[float]) -> subprocess.CompletedProcess:
        """Run the engine binary with a fixed environment.

        Raises:
            EvaluationEngineError: If the binary is missing or cannot start.
            EvaluationTimeoutError: If it exceeds the timeout.
        """
        cmd = [self.binary, *args]
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=engine_environment(),
            )
        except FileNotFoundError as e:
            raise EvaluationEngineError(group, f"{self.binary} not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise EvaluationTimeoutError(group, timeout or 0) from e
        except OSError as e:
            raise EvaluationEngineError(group, f"cannot run {self.binary}: {e}") from e


def engine_environment() -> dict[str, str]:
    """Minimal environment for engine subprocesses.

    Only the variables needed to locate and run the binary are passed, so
    results do not depend on the caller's environment.
    """
    return {
        "PATH": os.environ.get("PATH", os.defpath),
        "HOME": os.environ.get("HOME", "/tmp"),
        "LANG": "C",
        "LC_ALL": "C",
        "NO_COLOR": "1",
    }


def message_record(message: Any, metadata: Any = None) -> dict:
    """Normalise an engine message into a violation record.

    Rules may emit an object, a JSON-encoded object, or a plain string.
    Engine metadata is merged underneath the message's own fields.
    """
    record: dict = {}
    if isinstance(metadata, dict):
        details = metadata.get("details")
        record.update(details if isinstance(details, dict) else metadata)

    if isinstance(message, str):
        try:
            decoded = json.loads(message)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            message = decoded

    if isinstance(message, dict):
        nested = message.get("msg")
        if isinstance(nested, dict):
            record.update(nested)
        else:
            record.update(message)
    elif message is not None:
        record["message"] = str(message)
    return record
