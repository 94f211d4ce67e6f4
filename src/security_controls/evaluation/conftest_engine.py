"""Conftest evaluation engine adapter."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from security_controls.evaluation.base import EvaluationResult, Evaluator, message_record
from security_controls.exceptions import EvaluationEngineError
from security_controls.models import Violation

logger = logging.getLogger(__name__)


class ConftestEvaluator(Evaluator):
    """Runs ``conftest test`` against one policy directory at a time.

    Whether the run succeeded is decided by the output, not the exit code:
    conftest exits 1 on failures and 2 on warnings with ``--fail-on-warn``,
    and both still print a full JSON result list.
    """

    name = "conftest"

    def __init__(
        self, binary: Optional[str] = None, include_warnings: bool = False, fail_on_warn: bool = False
    ) -> None:
        super().__init__(binary, fail_on_warn)
        self.include_warnings = include_warnings or fail_on_warn

    def evaluate(
        self, document: Path, rule_dir: Path, timeout: Optional[float] = None
    ) -> EvaluationResult:
        group = str(rule_dir)
        args = ["test", "--policy", str(rule_dir), "--all-namespaces", "--no-color", "--output", "json"]
        if self.fail_on_warn:
            args.append("--fail-on-warn")
        proc = self.run([*args, str(document)], group, timeout)

        try:
            results = json.loads(proc.stdout) if proc.stdout.strip() else None
        except json.JSONDecodeError:
            results = None

        if not isinstance(results, list) or not all(isinstance(entry, dict) for entry in results):
            reason = (proc.stderr or proc.stdout).strip().splitlines()
            raise EvaluationEngineError(
                group,
                reason[0] if reason else "no parseable output",
                exit_code=proc.returncode,
            )

        violations = self.parse_results(results, "failures", group)
        warnings = self.parse_results(results, "warnings", group) if self.include_warnings else []
        logger.debug(f"{group}: {len(violations)} failure(s), exit code {proc.returncode}")
        return EvaluationResult(
            violations=violations + warnings,
            exit_code=proc.returncode,
            warnings=warnings,
            raw=results,
        )

    @staticmethod
    def parse_results(results: list[Any], kind: str, group: str) -> list[Violation]:
        """Extract violations of one kind (``failures`` or ``warnings``) in output order."""
        violations = []
        for entry in results:
            if not isinstance(entry, dict):
                continue
            for item in entry.get(kind) or []:
                if not isinstance(item, dict):
                    continue
                record = message_record(item.get("msg"), item.get("metadata"))
                violations.append(Violation.from_record(record, group=group))
        return violations
