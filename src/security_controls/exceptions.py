"""Exceptions raised by security-controls."""

from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


class SecurityControlsError(Exception):
    """Base class for all security-controls errors."""
    pass


class ConfigError(SecurityControlsError):
    """Project configuration could not be read."""
    pass


# Catalog


class CatalogError(SecurityControlsError):
    """Control catalog error."""
    pass


class CatalogNotFoundError(CatalogError):
    """The catalog file does not exist."""

    def __init__(self, path: PathLike):
        self.path = Path(path)
        super().__init__(f"Control catalog not found: {self.path}")


class CatalogCorruptError(CatalogError):
    """The catalog file is not valid JSON or has an invalid structure."""

    def __init__(self, path: PathLike, reason: str, control_id: Optional[str] = None):
        self.path = Path(path)
        self.reason = reason
        self.control_id = control_id
        where = f" (control {control_id})" if control_id else ""
        super().__init__(f"Corrupt control catalog {self.path}{where}: {reason}")


class ControlNotFoundError(CatalogError):
    """No control with the requested identifier exists."""

    def __init__(self, control_id: str):
        self.control_id = control_id
        super().__init__(f"Control not found in catalog: {control_id}")


class DuplicateControlError(CatalogError):
    """A control with the same identifier already exists."""

    def __init__(self, control_id: str):
        self.control_id = control_id
        super().__init__(f"Control already exists in catalog: {control_id}")


# Policy files


class PolicyError(SecurityControlsError):
    """Policy file error."""
    pass


class PolicyFileNotFoundError(PolicyError):
    """A control's policy file does not exist."""

    def __init__(self, path: PathLike, control_id: Optional[str] = None):
        self.path = Path(path)
        self.control_id = control_id
        suffix = f" for control {control_id}" if control_id else ""
        super().__init__(f"Policy file not found{suffix}: {self.path}")


class ControlBlockNotFoundError(PolicyError):
    """A policy file holds no marker for the requested control."""

    def __init__(self, path: PathLike, control_id: str):
        self.path = Path(path)
        self.control_id = control_id
        super().__init__(f"Control {control_id} not found in policy file: {self.path}")


class MalformedPolicyFileError(PolicyError):
    """A policy file holds the same control marker more than once."""

    def __init__(self, path: PathLike, control_id: str, first_line: int, second_line: int):
        self.path = Path(path)
        self.control_id = control_id
        self.first_line = first_line
        self.second_line = second_line
        super().__init__(
            f"Duplicate marker for control {control_id} in {self.path} "
            f"at lines {first_line} and {second_line}"
        )


class PolicyFileUnreadableError(PolicyError):
    """A policy file exists but cannot be decoded as UTF-8 text."""

    def __init__(self, path: PathLike, reason: str, control_id: Optional[str] = None):
        self.path = Path(path)
        self.reason = reason
        self.control_id = control_id
        super().__init__(f"Cannot read policy file {self.path}: {reason}")


class ToggleError(PolicyError):
    """A control could not be toggled."""
    pass


class ToggleWriteError(ToggleError):
    """Writing the toggled policy file failed; the original was restored."""

    def __init__(self, path: PathLike, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to write policy file {self.path}: {reason}")


# Evaluation


class EvaluationError(SecurityControlsError):
    """Evaluation error."""
    pass


class InvalidDocumentError(EvaluationError):
    """The document to evaluate is not a JSON object."""

    def __init__(self, path: PathLike, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid input document {self.path}: {reason}")


class NoPolicyGroupsError(EvaluationError):
    """No policy group with live rule files was found."""

    def __init__(self, location: PathLike):
        self.location = Path(location)
        super().__init__(f"No policy directories with rule files found under {self.location}")


class EvaluationEngineError(EvaluationError):
    """The external evaluation engine failed for a policy group."""

    def __init__(self, group: str, reason: str, exit_code: Optional[int] = None):
        self.group = group
        self.reason = reason
        self.exit_code = exit_code
        code = f" (exit code {exit_code})" if exit_code is not None else ""
        super().__init__(f"Evaluation of {group} failed{code}: {reason}")


class EvaluationTimeoutError(EvaluationEngineError):
    """The external evaluation engine did not finish in time."""

    def __init__(self, group: str, timeout: float):
        self.timeout = timeout
        super().__init__(group, f"timed out after {timeout:g}s")


# Reporting


class InvalidViolationsError(SecurityControlsError):
    """A violations file for report generation could not be read."""

    def __init__(self, path: PathLike, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid violations file {self.path}: {reason}")


class ReportWriteError(SecurityControlsError):
    """A report or export could not be written."""

    def __init__(self, path: PathLike, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to write report {self.path}: {reason}")
