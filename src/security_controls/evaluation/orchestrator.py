"""Parallel evaluation of policy groups.

Each group is handed to the evaluation engine in a bounded worker pool. A
failing or slow group never sinks the others; results are merged in group
discovery order so the output does not depend on scheduling.
"""

import json
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from security_controls.evaluation.base import Evaluator
from security_controls.evaluation.discovery import PolicyGroup, load_document
from security_controls.exceptions import EvaluationEngineError
from security_controls.models import Severity, Violation

logger = logging.getLogger(__name__)


class GroupStatus(Enum):
    """Outcome of evaluating one policy group."""

    CLEAN = "clean"
    VIOLATIONS = "violations"
    FAILED = "failed"


@dataclass
class GroupOutcome:
    """Result of one policy group."""

    group: PolicyGroup
    status: GroupStatus
    violations: list[Violation] = field(default_factory=list)
    exit_code: Optional[int] = None
    error: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "group": self.group.name,
            "status": self.status.value,
            "violation_count": len(self.violations),
            "exit_code": self.exit_code,
            "error": self.error,
        }


@dataclass
class DuplicateViolation:
    """The same control and resource reported by more than one group."""

    control_id: str
    resource_address: str
    groups: list[str]

    def to_dict(self) -> dict:
        return {
            "control_id": self.control_id,
            "resource": self.resource_address,
            "groups": list(self.groups),
        }


@dataclass
class EvaluationRun:
    """Merged result of evaluating a document against all policy groups."""

    document: Path
    outcomes: list[GroupOutcome] = field(default_factory=list)
    violations: list[Violation] = field(default_factory=list)
    duplicates: list[DuplicateViolation] = field(default_factory=list)
    severity_filter: Optional[Severity] = None
    total_before_filter: int = 0

    @property
    def failed(self) -> list[GroupOutcome]:
        return [o for o in self.outcomes if o.status == GroupStatus.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    @property
    def has_violations(self) -> bool:
        return bool(self.violations)

    @property
    def exit_code(self) -> int:
        """0 clean, 1 violations, 2 when any group failed to evaluate."""
        if self.has_failures:
            return 2
        return 1 if self.violations else 0

    def canonical_violations(self) -> str:
        """Violation list in a stable serialized form, for comparing runs."""
        return json.dumps([v.to_dict() for v in self.violations], sort_keys=True, indent=2)

    def to_dict(self) -> dict:
        by_severity = {s.value.lower(): 0 for s in Severity.ordered()}
        for v in self.violations:
            key = v.severity.value.lower()
            by_severity[key] = by_severity.get(key, 0) + 1
        return {
            "input_file": str(self.document),
            "policy_directories": [o.group.name for o in self.outcomes],
            "severity_filter": self.severity_filter.value if self.severity_filter else None,
            "summary": {
                "total_violations": len(self.violations),
                "total_before_filter": self.total_before_filter,
                "by_severity": by_severity,
                "failed_groups": len(self.failed),
            },
            "groups": [o.to_dict() for o in self.outcomes],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "violations": [v.to_dict() for v in self.violations],
        }


def filter_by_severity(violations: list[Violation], threshold: Optional[Severity]) -> list[Violation]:
    """Keep violations at or above a severity, preserving order."""
    if threshold is None:
        return list(violations)
    return [v for v in violations if v.severity.meets(threshold)]


def find_duplicates(outcomes: list[GroupOutcome]) -> list[DuplicateViolation]:
    """Pairs of (control_id, resource) reported by more than one group."""
    seen: dict[tuple[str, str], list[str]] = {}
    for outcome in outcomes:
        for v in outcome.violations:
            groups = seen.setdefault((v.control_id, v.resource_address), [])
            if outcome.group.name not in groups:
                groups.append(outcome.group.name)
    return [
        DuplicateViolation(control_id=cid, resource_address=res, groups=groups)
        for (cid, res), groups in seen.items()
        if len(groups) > 1
    ]


class EvaluationOrchestrator:
    """Evaluates a document against policy groups in parallel."""

    def __init__(
        self,
        evaluator: Evaluator,
        max_workers: int = 4,
        group_timeout: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            evaluator: Engine adapter used for every group.
            max_workers: Maximum concurrent engine invocations.
            group_timeout: Per-group engine timeout in seconds.
            deadline: Overall time limit in seconds. Each engine call is
                given at most the time left before it, and groups still
                running when it passes are recorded as failed.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.evaluator = evaluator
        self.max_workers = max_workers
        self.group_timeout = group_timeout
        self.deadline = deadline

    def run(
        self,
        document: Path,
        groups: list[PolicyGroup],
        severity: Optional[Severity] = None,
    ) -> EvaluationRun:
        """Evaluate a document against every group and merge the results.

        Args:
            document: JSON document to evaluate.
            groups: Policy groups in the order their results are merged.
            severity: Minimum severity to keep after merging.

        Raises:
            InvalidDocumentError: If the document is not a JSON object.
        """
        document = Path(document)
        load_document(document)

        deadline_at = time.monotonic() + self.deadline if self.deadline else None
        outcomes: list[Optional[GroupOutcome]] = [None] * len(groups)
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, max(len(groups), 1)),
            thread_name_prefix="policy-group",
        )
        try:
            futures: dict[Future, int] = {
                executor.submit(self._evaluate_group, document, group, deadline_at): i
                for i, group in enumerate(groups)
            }
            done, not_done = wait(futures, timeout=self.deadline)
            for future in done:
                index = futures[future]
                try:
                    outcomes[index] = future.result()
                except Exception as e:
                    logger.exception(f"Unexpected error evaluating {groups[index].name}")
                    outcomes[index] = GroupOutcome(
                        group=groups[index], status=GroupStatus.FAILED, error=str(e)
                    )
            for future in not_done:
                future.cancel()
                index = futures[future]
                logger.error(f"Policy group {groups[index].name} did not finish before the deadline")
                outcomes[index] = GroupOutcome(
                    group=groups[index],
                    status=GroupStatus.FAILED,
                    error=f"did not finish within {self.deadline:g}s",
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        ordered = [o for o in outcomes if o is not None]
        merged = [v for outcome in ordered for v in outcome.violations]

        duplicates = find_duplicates(ordered)
        for dup in duplicates:
            logger.warning(
                f"{dup.control_id} on {dup.resource_address} reported by multiple groups: "
                f"{', '.join(dup.groups)}"
            )

        run = EvaluationRun(
            document=document,
            outcomes=ordered,
            violations=filter_by_severity(merged, severity),
            duplicates=duplicates,
            severity_filter=severity,
            total_before_filter=len(merged),
        )
        logger.info(
            f"Evaluated {len(groups)} group(s): {len(run.violations)} violation(s), "
            f"{len(run.failed)} failed"
        )
        return run

    def _group_timeout(self, deadline_at: Optional[float]) -> Optional[float]:
        """Per-group timeout, capped by the time left before the deadline."""
        if deadline_at is None:
            return self.group_timeout
        remaining = max(deadline_at - time.monotonic(), 0.0)
        return remaining if self.group_timeout is None else min(self.group_timeout, remaining)

    def _evaluate_group(
        self, document: Path, group: PolicyGroup, deadline_at: Optional[float] = None
    ) -> GroupOutcome:
        started = time.monotonic()
        timeout = self._group_timeout(deadline_at)
        if deadline_at is not None and timeout <= 0:
            return GroupOutcome(
                group=group,
                status=GroupStatus.FAILED,
                error=f"not started before the {self.deadline:g}s deadline",
            )
        try:
            result = self.evaluator.evaluate(document, group.path, timeout=timeout)
        except EvaluationEngineError as e:
            logger.error(f"Policy group {group.name} failed: {e.reason}")
            return GroupOutcome(
                group=group,
                status=GroupStatus.FAILED,
                exit_code=e.exit_code,
                error=e.reason,
                duration=time.monotonic() - started,
            )

        violations = [replace(v, group=group.name) for v in result.violations]
        return GroupOutcome(
            group=group,
            status=GroupStatus.VIOLATIONS if violations else GroupStatus.CLEAN,
            violations=violations,
            exit_code=result.exit_code,
            duration=time.monotonic() - started,
        )
