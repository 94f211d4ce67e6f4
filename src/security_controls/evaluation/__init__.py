"""Policy evaluation through external engines."""

from typing import Optional

from security_controls.evaluation.base import EvaluationResult, Evaluator
from security_controls.evaluation.conftest_engine import ConftestEvaluator
from security_controls.evaluation.discovery import (
    PolicyGroup,
    discover_policy_groups,
    load_document,
    resolve_policy_groups,
)
from security_controls.evaluation.opa import OpaEvaluator
from security_controls.evaluation.orchestrator import (
    EvaluationOrchestrator,
    EvaluationRun,
    GroupOutcome,
    GroupStatus,
    filter_by_severity,
)

EVALUATORS = {
    "conftest": ConftestEvaluator,
    "opa": OpaEvaluator,
}


def create_evaluator(name: str, binary: Optional[str] = None, fail_on_warn: bool = False) -> Evaluator:
    """Create an evaluator by engine name.

    Args:
        name: Engine name (conftest, opa).
        binary: Optional path to the engine executable.
        fail_on_warn: Treat policy warnings as violations.

    Returns:
        Evaluator instance.

    Raises:
        ValueError: If the engine is not supported.
    """
    evaluator_class = EVALUATORS.get(name.lower())
    if evaluator_class is None:
        raise ValueError(f"Unknown evaluator: {name}. Supported: {', '.join(EVALUATORS)}")
    return evaluator_class(binary, fail_on_warn=fail_on_warn)


__all__ = [
    "ConftestEvaluator",
    "EvaluationOrchestrator",
    "EvaluationResult",
    "EvaluationRun",
    "Evaluator",
    "GroupOutcome",
    "GroupStatus",
    "OpaEvaluator",
    "PolicyGroup",
    "create_evaluator",
    "discover_policy_groups",
    "filter_by_severity",
    "load_document",
    "resolve_policy_groups",
]
