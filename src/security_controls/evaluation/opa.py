"""OPA evaluation engine adapter.

Used where conftest is not installed. Every ``deny`` and ``violation`` rule
under any package of the policy directory contributes violations, and
``warn`` rules do too when warnings fail the run.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from security_controls.evaluation.base import EvaluationResult, Evaluator, message_record
from security_controls.exceptions import EvaluationEngineError
from security_controls.models import Violation

logger = logging.getLogger(__name__)

RULE_NAMES = ("deny", "violation")
WARN_RULE_NAMES = ("warn",)


class OpaEvaluator(Evaluator):
    """Runs ``opa eval`` and collects deny/violation sets from every package."""

    name = "opa"

    def evaluate(
        self, document: Path, rule_dir: Path, timeout: Optional[float] = None
    ) -> EvaluationResult:
        group = str(rule_dir)
        proc = self.run(
            ["eval", "--format", "json", "--data", str(rule_dir), "--input", str(document), "data"],
            group,
            timeout,
        )
        try:
            output = json.loads(proc.stdout) if proc.stdout.strip() else None
        except json.JSONDecodeError:
            output = None

        # opa reports compile and runtime errors as {"errors": [...]}
        if not isinstance(output, dict) or output.get("errors"):
            raise EvaluationEngineError(group, opa_error_reason(proc, output), exit_code=proc.returncode)
        if proc.returncode != 0:
            logger.debug(f"{group}: opa exited {proc.returncode} with a complete result document")

        expressions = [
            expression
            for result in output.get("result") or []
            if isinstance(result, dict)
            for expression in result.get("expressions") or []
            if isinstance(expression, dict)
        ]

        rule_names = RULE_NAMES + WARN_RULE_NAMES if self.fail_on_warn else RULE_NAMES
        violations: list[Violation] = []
        for expression in expressions:
            for message in collect_rule_messages(expression.get("value"), rule_names):
                violations.append(Violation.from_record(message_record(message), group=group))

        return EvaluationResult(violations=violations, exit_code=1 if violations else 0, raw=output)


def opa_error_reason(proc, output: Any) -> str:
    """First error message from opa's error document, stderr or stdout."""
    if isinstance(output, dict):
        for error in output.get("errors") or []:
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
    reason = (proc.stderr or proc.stdout).strip().splitlines()
    return reason[0] if reason else "no parseable opa output"


def collect_rule_messages(value: Any, rule_names: tuple[str, ...] = RULE_NAMES) -> list[Any]:
    """Walk an OPA data document and gather the members of deny/violation sets.

    Packages are visited in sorted order so the result is deterministic.
    """
    messages: list[Any] = []
    if not isinstance(value, dict):
        return messages
    for key in sorted(value):
        child = value[key]
        if key in rule_names and isinstance(child, list):
            messages.extend(child)
        elif isinstance(child, dict):
            messages.extend(collect_rule_messages(child, rule_names))
    return messages
