"""
Upgrade data model
==================
Versions, snapshots, steps, paths and run results. Plain dataclasses;
snapshots round-trip through the JSON index via to_dict/from_dict.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import InvalidUpgradePathError

# Build / test outcomes recorded in snapshot metadata
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_UNKNOWN = "unknown"

# Prerequisite kinds
PREREQ_RUNTIME = "runtime"
PREREQ_TOOLCHAIN = "toolchain"
PREREQ_DEPENDENCY = "dependency"
PREREQ_ENVIRONMENT = "environment"

# Validation kinds
VALIDATION_KINDS = ("build", "test", "lint", "runtime", "compatibility")

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+|x|\*))?(?:\.(\d+|x|\*))?")


@dataclass(frozen=True, eq=False)
class Version:
    """Parsed framework version. Ordering and equality use the major number only."""

    major: int
    minor: int = 0
    patch: int = 0

    def __post_init__(self):
        if self.major < 0:
            raise InvalidUpgradePathError(f"Invalid major version: {self.major}")

    @property
    def full(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @classmethod
    def parse(cls, text: str | int) -> "Version":
        """Parse '17', '17.1', '^17.1.3', '~16.2.0' or 'v18.19.1'."""
        raw = str(text).strip().lstrip("^~=v><")
        m = _VERSION_RE.match(raw)
        if not m:
            raise InvalidUpgradePathError(f"Cannot parse version: {text!r}")
        minor = m.group(2) if m.group(2) and m.group(2).isdigit() else "0"
        patch = m.group(3) if m.group(3) and m.group(3).isdigit() else "0"
        return cls(int(m.group(1)), int(minor), int(patch))

    def __str__(self) -> str:
        return self.full

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.major == other.major

    def __hash__(self) -> int:
        return hash(self.major)

    def __lt__(self, other: "Version") -> bool:
        return self.major < other.major

    def __le__(self, other: "Version") -> bool:
        return self.major <= other.major

    def __gt__(self, other: "Version") -> bool:
        return self.major > other.major

    def __ge__(self, other: "Version") -> bool:
        return self.major >= other.major


# ── Snapshots ──


@dataclass
class SnapshotMetadata:
    project_size: int = 0
    dependencies: dict = field(default_factory=dict)
    configuration: Any = field(default_factory=dict)
    build_status: str = STATUS_UNKNOWN
    test_status: str = STATUS_UNKNOWN

    def to_dict(self) -> dict:
        return {
            "projectSize": self.project_size,
            "dependencies": dict(self.dependencies),
            "configuration": self.configuration,
            "buildStatus": self.build_status,
            "testStatus": self.test_status,
        }

    @classmethod
    def from_dict(cls, raw: dict | None) -> "SnapshotMetadata":
        raw = raw or {}
        return cls(
            project_size=int(raw.get("projectSize") or 0),
            dependencies=dict(raw.get("dependencies") or {}),
            configuration=raw.get("configuration") or {},
            build_status=raw.get("buildStatus") or STATUS_UNKNOWN,
            test_status=raw.get("testStatus") or STATUS_UNKNOWN,
        )


@dataclass
class Snapshot:
    """A stored copy of the project tree. Immutable once indexed."""

    id: str
    version: str
    timestamp: datetime
    description: str
    path: str
    metadata: SnapshotMetadata = field(default_factory=SnapshotMetadata)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "version": self.version,
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
            "path": self.path,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Snapshot":
        return cls(
            id=str(raw["id"]),
            version=str(raw.get("version") or "unknown"),
            timestamp=parse_timestamp(raw.get("timestamp")),
            description=str(raw.get("description") or ""),
            path=str(raw.get("path") or ""),
            metadata=SnapshotMetadata.from_dict(raw.get("metadata")),
        )


def parse_timestamp(value: Any) -> datetime:
    """ISO-8601 (with or without 'Z') or epoch seconds → aware datetime."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        ts = datetime.fromtimestamp(value, tz=timezone.utc)
    elif value:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    else:
        ts = datetime.fromtimestamp(0, tz=timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ── Steps and paths ──


@dataclass(frozen=True)
class Prerequisite:
    kind: str  # runtime|toolchain|dependency|environment
    name: str
    required_version: Optional[str] = None
    critical: bool = True


@dataclass(frozen=True)
class ValidationStep:
    kind: str  # build|test|lint|runtime|compatibility
    description: str
    required: bool = True
    command: Optional[str] = None
    timeout: Optional[int] = None  # seconds


@dataclass
class UpgradeStep:
    from_version: str
    to_version: str
    required: bool = True
    prerequisites: list[Prerequisite] = field(default_factory=list)
    breaking_changes: list = field(default_factory=list)
    validations: list[ValidationStep] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.from_version} -> {self.to_version}"

    def to_dict(self) -> dict:
        return {
            "from": self.from_version,
            "to": self.to_version,
            "required": self.required,
            "prerequisites": [asdict(p) for p in self.prerequisites],
            "breaking_changes": [bc.id for bc in self.breaking_changes],
            "validations": [asdict(v) for v in self.validations],
        }


@dataclass
class UpgradePath:
    from_version: Version
    to_version: Version
    steps: list[UpgradeStep] = field(default_factory=list)

    @property
    def versions(self) -> list[str]:
        return [str(self.from_version.major)] + [s.to_version for s in self.steps]


@dataclass
class UpgradeResult:
    success: bool
    from_version: str
    to_version: str
    completed_steps: list[UpgradeStep] = field(default_factory=list)
    failed_step: Optional[UpgradeStep] = None
    error: Optional[BaseException] = None
    warnings: list[str] = field(default_factory=list)
    checkpoints: list[Snapshot] = field(default_factory=list)
    duration: float = 0.0  # seconds
    rollback_available: bool = False
    rolled_back: bool = False
    rollback_succeeded: Optional[bool] = None
    rollback_checkpoint: Optional[str] = None
    rollback_error: Optional[str] = None
    manual_intervention_required: bool = False
    final_state: str = ""
    state_history: list[dict] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "success": self.success,
            "from": self.from_version,
            "to": self.to_version,
            "completed_steps": [s.label for s in self.completed_steps],
            "failed_step": self.failed_step.label if self.failed_step else None,
            "error": str(self.error) if self.error else None,
            "warnings": list(self.warnings),
            "checkpoints": [c.id for c in self.checkpoints],
            "duration_sec": round(self.duration, 2),
            "rollback_available": self.rollback_available,
            "rolled_back": self.rolled_back,
            "rollback_succeeded": self.rollback_succeeded,
            "rollback_checkpoint": self.rollback_checkpoint,
            "rollback_error": self.rollback_error,
            "manual_intervention_required": self.manual_intervention_required,
            "final_state": self.final_state,
        }
