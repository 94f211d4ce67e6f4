"""Project configuration for security-controls."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from security_controls.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = (".security-controls.yaml", "security-controls.yaml")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ProjectConfig:
    """Layout and evaluation settings for a policy repository."""

    root: Path = field(default_factory=Path.cwd)

    # Layout, relative to root unless absolute
    policies_dir: str = "policies"
    catalog_file: str = "policies/control_metadata.json"
    reports_dir: str = "reports"
    optional_dir_name: str = "optional"
    policy_extensions: list[str] = field(default_factory=lambda: [".rego"])

    # Evaluation engine
    evaluator: str = "conftest"
    engine_binary: str | None = None
    max_workers: int = 4
    group_timeout: float = 120.0

    # Reporting
    environment: str = "local"

    log_level: str = "WARNING"

    @classmethod
    def from_dict(cls, data: dict, root: Path | None = None) -> "ProjectConfig":
        """Create config from dictionary."""
        root = Path(root) if root is not None else Path.cwd()
        try:
            max_workers = int(data.get("max_workers", 4))
            group_timeout = float(data.get("group_timeout", 120.0))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e
        if max_workers < 1:
            raise ConfigError("max_workers must be at least 1")

        log_level = str(data.get("log_level") or "WARNING").upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(
                f"Invalid log_level '{data['log_level']}', expected one of {', '.join(LOG_LEVELS)}"
            )

        extensions = data.get("policy_extensions", [".rego"])
        if isinstance(extensions, str):
            extensions = [extensions]

        return cls(
            root=root,
            policies_dir=os.environ.get("SECURITY_CONTROLS_POLICIES_DIR")
            or data.get("policies_dir", "policies"),
            catalog_file=data.get("catalog_file", "policies/control_metadata.json"),
            reports_dir=os.environ.get("SECURITY_CONTROLS_REPORTS_DIR")
            or data.get("reports_dir", "reports"),
            optional_dir_name=data.get("optional_dir_name", "optional"),
            policy_extensions=list(extensions),
            evaluator=data.get("evaluator", "conftest"),
            engine_binary=data.get("engine_binary"),
            max_workers=max_workers,
            group_timeout=group_timeout,
            environment=os.environ.get("SECURITY_CONTROLS_ENVIRONMENT")
            or data.get("environment", "local"),
            log_level=log_level,
        )

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "policies_dir": self.policies_dir,
            "catalog_file": self.catalog_file,
            "reports_dir": self.reports_dir,
            "optional_dir_name": self.optional_dir_name,
            "policy_extensions": list(self.policy_extensions),
            "evaluator": self.evaluator,
            "engine_binary": self.engine_binary,
            "max_workers": self.max_workers,
            "group_timeout": self.group_timeout,
            "environment": self.environment,
            "log_level": self.log_level,
        }

    def resolve(self, value: str) -> Path:
        """Resolve a configured path against the project root."""
        path = Path(value)
        return path if path.is_absolute() else self.root / path

    @property
    def policies_path(self) -> Path:
        return self.resolve(self.policies_dir)

    @property
    def catalog_path(self) -> Path:
        return self.resolve(self.catalog_file)

    @property
    def reports_path(self) -> Path:
        return self.resolve(self.reports_dir)


def find_config_file(root: Path) -> Path | None:
    """Return the first config file present at the project root."""
    for name in CONFIG_FILE_NAMES:
        candidate = Path(root) / name
        if candidate.is_file():
            return candidate
    return None


def load_config(root: Path | str = ".") -> ProjectConfig:
    """Load project configuration, falling back to defaults.

    Args:
        root: Project root directory.

    Returns:
        The resolved project configuration.

    Raises:
        ConfigError: If the config file exists but cannot be parsed.
    """
    root = Path(root).resolve()
    config_path = find_config_file(root)
    if config_path is None:
        logger.debug(f"No config file in {root}, using defaults")
        return ProjectConfig.from_dict({}, root=root)

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    logger.debug(f"Loaded config from {config_path}")
    return ProjectConfig.from_dict(data, root=root)


def write_default_config(root: Path | str = ".") -> Path:
    """Write a config file with default settings.

    Returns:
        Path of the written config file.
    """
    config = ProjectConfig(root=Path(root))
    config_path = Path(root) / CONFIG_FILE_NAMES[0]
    with open(config_path, "w", encoding="utf-8") as f:
        f.write("# security-controls configuration\n")
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    return config_path
