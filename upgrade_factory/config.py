"""
ng-upgrade-factory - Configuration
==================================
Loads ~/.config/ng-upgrade/config.yaml, then <project>/.ng-upgrade.yaml,
then NG_UPGRADE_* env var overrides.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

# Load .env from the working directory (before any os.environ access)
load_dotenv()

USER_CONFIG_PATH = Path.home() / ".config" / "ng-upgrade" / "config.yaml"
PROJECT_CONFIG_NAME = ".ng-upgrade.yaml"
DEFAULT_META_DIR = ".ng-upgrade"

STRATEGIES = ("conservative", "balanced", "progressive")
CHECKPOINT_FREQUENCIES = ("every-step", "major-versions", "custom")
VALIDATION_LEVELS = ("basic", "comprehensive")
THIRD_PARTY_HANDLING = ("automatic", "manual", "prompt")
ROLLBACK_POLICIES = ("auto-on-failure", "manual", "never")


@dataclass
class UpgradeOptions:
    """Per-run upgrade behaviour."""

    target_version: str = ""
    strategy: str = "balanced"
    checkpoint_frequency: str = "major-versions"
    validation_level: str = "basic"
    third_party_handling: str = "automatic"
    rollback_policy: str = "auto-on-failure"
    parallel_processing: bool = False
    backup_path: Optional[str] = None
    run_schematics: bool = True
    install_dependencies: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        for name, allowed in (
            ("strategy", STRATEGIES),
            ("checkpoint_frequency", CHECKPOINT_FREQUENCIES),
            ("validation_level", VALIDATION_LEVELS),
            ("third_party_handling", THIRD_PARTY_HANDLING),
            ("rollback_policy", ROLLBACK_POLICIES),
        ):
            value = getattr(self, name)
            if value not in allowed:
                raise ConfigError(f"Invalid {name} {value!r}; expected one of {', '.join(allowed)}")

    @property
    def comprehensive(self) -> bool:
        return self.validation_level == "comprehensive"


@dataclass
class CheckpointConfig:
    """Snapshot store layout and policy."""

    meta_dir: str = DEFAULT_META_DIR
    exclude_patterns: list = field(
        default_factory=lambda: [
            "node_modules",
            "dist",
            ".angular",
            "coverage",
            ".nyc_output",
            "*.log",
            ".DS_Store",
            "Thumbs.db",
        ]
    )
    restore_exclude_patterns: list = field(default_factory=lambda: ["node_modules"])
    essential_files: list = field(
        default_factory=lambda: ["package.json", "angular.json", "tsconfig.json"]
    )
    keep_count: int = 5
    capture_status: bool = True  # run build/test probes when snapshotting
    large_checkpoint_bytes: int = 100 * 1024 * 1024


@dataclass
class ValidationConfig:
    """Commands and timeouts (seconds) for validation probes."""

    build_command: str = "npm run build"
    test_command: str = "npm test -- --watch=false --browsers=ChromeHeadless"
    lint_command: str = "npm run lint"
    runtime_command: str = "node --version"
    compatibility_command: str = "npm ls --depth=0"
    build_timeout: int = 300
    test_timeout: int = 600
    lint_timeout: int = 120
    default_timeout: int = 120
    node_version_command: str = "node --version"
    tsc_version_command: str = "npx tsc --version"

    def command_for(self, kind: str) -> str:
        return getattr(self, f"{kind}_command", "")

    def timeout_for(self, kind: str) -> int:
        return int(getattr(self, f"{kind}_timeout", self.default_timeout))


@dataclass
class InstallerConfig:
    """npm install behaviour."""

    install_command: str = "npm install"
    force_flag: str = "--force"
    clean_command: str = "npm ci"
    max_retries: int = 2
    retry_delay_sec: float = 2.0
    timeout: int = 900


@dataclass
class FactoryConfig:
    """Root configuration object."""

    upgrade: UpgradeOptions = field(default_factory=UpgradeOptions)
    checkpoints: CheckpointConfig = field(default_factory=CheckpointConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    installer: InstallerConfig = field(default_factory=InstallerConfig)
    log_dir: Optional[str] = None


_SECTIONS = ("upgrade", "checkpoints", "validation", "installer")


def _apply_section(obj, raw: dict):
    """Apply dict values to a dataclass."""
    for k, v in raw.items():
        if hasattr(obj, k):
            setattr(obj, k, v)


def _read_yaml(path: Path) -> dict:
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config {path} must be a mapping")
    return raw


def load_config(
    project_path: Optional[Path | str] = None,
    config_path: Optional[Path | str] = None,
) -> FactoryConfig:
    """Load config from YAML files + env vars."""
    cfg = FactoryConfig()

    sources = [Path(config_path)] if config_path else [USER_CONFIG_PATH]
    if project_path is not None and not config_path:
        sources.append(Path(project_path) / PROJECT_CONFIG_NAME)

    for path in sources:
        if not path.exists():
            continue
        raw = _read_yaml(path)
        for section in _SECTIONS:
            if isinstance(raw.get(section), dict):
                _apply_section(getattr(cfg, section), raw[section])
        if "log_dir" in raw:
            cfg.log_dir = raw["log_dir"]

    # Env overrides
    if d := os.environ.get("NG_UPGRADE_META_DIR"):
        cfg.checkpoints.meta_dir = d
    if k := os.environ.get("NG_UPGRADE_KEEP"):
        try:
            cfg.checkpoints.keep_count = int(k)
        except ValueError as e:
            raise ConfigError(f"NG_UPGRADE_KEEP must be an integer, got {k!r}") from e
    if p := os.environ.get("NG_UPGRADE_ROLLBACK_POLICY"):
        cfg.upgrade.rollback_policy = p
    if ld := os.environ.get("NG_UPGRADE_LOG_DIR"):
        cfg.log_dir = ld

    cfg.upgrade.validate()
    return cfg


def save_config(cfg: FactoryConfig, path: Path | str) -> None:
    """Persist config sections to YAML."""
    raw = dataclasses.asdict(cfg)
    to_save = {k: raw[k] for k in _SECTIONS if k in raw}
    # target_version is per-run, never persisted
    to_save["upgrade"].pop("target_version", None)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(to_save, f, default_flow_style=False, allow_unicode=True)
