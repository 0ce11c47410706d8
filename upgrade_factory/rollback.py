"""
Rollback Engine - Restore the project from checkpoints
======================================================
Every public operation returns a structured result; store exceptions are
caught and reported with a machine-readable reason:

    not_found | corrupted | io_error | no_valid_checkpoint | invalid_path

The caller (usually the orchestrator) decides whether a failed rollback
is fatal.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .checkpoints import PRE_RESTORE_ID, CheckpointStore
from .errors import (
    CheckpointCorruptedError,
    CheckpointError,
    CheckpointNotFoundError,
    NoValidCheckpointError,
)
from .manifest import PACKAGE_JSON, current_angular_version, read_json
from .models import STATUS_SUCCESS, Snapshot

logger = logging.getLogger(__name__)

PRE_ROLLBACK_PREFIX = "pre-rollback"

REASON_NOT_FOUND = "not_found"
REASON_CORRUPTED = "corrupted"
REASON_IO_ERROR = "io_error"
REASON_NO_VALID_CHECKPOINT = "no_valid_checkpoint"
REASON_INVALID_PATH = "invalid_path"

# Extra post-restore check: project path → warnings
PostCheck = Callable[[Path], list]


@dataclass
class RollbackOptions:
    preserve_files: list[str] = field(default_factory=list)
    backup_before_rollback: bool = False
    validate_after_rollback: bool = False
    reinstall_dependencies: bool = False


@dataclass
class RollbackResult:
    success: bool
    checkpoint: Optional[Snapshot] = None
    preserved_files: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    reason: Optional[str] = None
    backup_id: Optional[str] = None

    @property
    def clean(self) -> bool:
        """Succeeded with no post-restore warnings."""
        return self.success and not self.warnings


@dataclass
class FeasibilityReport:
    feasible: bool
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class RollbackPlan:
    checkpoint_id: str
    steps: list[str]
    estimated_minutes: int
    risks: list[str]
    mitigations: list[str]


def is_safety_checkpoint(checkpoint_id: str) -> bool:
    """Automatic copies taken by restore/rollback themselves."""
    return checkpoint_id == PRE_RESTORE_ID or checkpoint_id.startswith(PRE_ROLLBACK_PREFIX)


def newest_first(snapshots: list[Snapshot]) -> list[Snapshot]:
    indexed = sorted(enumerate(snapshots), key=lambda p: (p[1].timestamp, p[0]), reverse=True)
    return [s for _i, s in indexed]


class RollbackEngine:
    """Recovery controller on top of a CheckpointStore."""

    def __init__(
        self,
        store: CheckpointStore,
        *,
        installer=None,
        post_check: Optional[PostCheck] = None,
    ):
        self.store = store
        self.installer = installer
        self.post_check = post_check
        self._history: list[dict] = []

    @property
    def project_path(self) -> Path:
        return self.store.project_path

    # ── Rollback operations ──

    def rollback_to(self, checkpoint_id: str, options: Optional[RollbackOptions] = None) -> RollbackResult:
        """Restore a checkpoint, optionally keeping some current files."""
        options = options or RollbackOptions()
        snapshot: Optional[Snapshot] = None
        try:
            snapshot = self.store.get(checkpoint_id)
            if snapshot is None:
                raise CheckpointNotFoundError(checkpoint_id)

            validation = self.store.validate(checkpoint_id)
            if not validation["valid"]:
                raise CheckpointCorruptedError(checkpoint_id, validation["errors"])

            preserved = self._capture(options.preserve_files)
            warnings = [
                f"Not preserved (missing): {p}"
                for p in options.preserve_files
                if not self._resolve(p).exists()
            ]

            backup_id = None
            if options.backup_before_rollback:
                backup_id = self._backup(f"Before rolling back to {checkpoint_id}")

            self.store.restore(checkpoint_id)

            for rel, content in preserved.items():
                target = self.project_path / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)

            if options.reinstall_dependencies and self.installer is not None:
                if not self.installer.reinstall_clean():
                    warnings.append("Dependency reinstall failed; run `npm ci` manually")

            if options.validate_after_rollback:
                warnings.extend(self._post_restore_check(snapshot))

            self._record(checkpoint_id, "rollback", True)
            logger.info(f"Rolled back to {checkpoint_id} ({len(preserved)} preserved files)")
            return RollbackResult(
                success=True,
                checkpoint=snapshot,
                preserved_files=sorted(preserved),
                warnings=warnings,
                backup_id=backup_id,
            )

        except CheckpointNotFoundError as e:
            return self._failure(checkpoint_id, None, str(e), REASON_NOT_FOUND)
        except CheckpointCorruptedError as e:
            return self._failure(checkpoint_id, snapshot, str(e), REASON_CORRUPTED)
        except ValueError as e:
            return self._failure(checkpoint_id, snapshot, str(e), REASON_INVALID_PATH)
        except (CheckpointError, OSError) as e:
            return self._failure(checkpoint_id, snapshot, str(e), REASON_IO_ERROR)

    def rollback_to_last_good(self, options: Optional[RollbackOptions] = None) -> RollbackResult:
        """Newest checkpoint that validates and whose build succeeded."""
        for snapshot in newest_first(self.store.list()):
            if snapshot.metadata.build_status != STATUS_SUCCESS:
                continue
            if not self.store.validate(snapshot.id)["valid"]:
                continue
            logger.info(f"Last good checkpoint: {snapshot.id}")
            return self.rollback_to(snapshot.id, options)

        error = NoValidCheckpointError()
        self._record("", "rollback-last-good", False)
        return RollbackResult(success=False, error=str(error), reason=REASON_NO_VALID_CHECKPOINT)

    def progressive_rollback(self, target_id: Optional[str] = None) -> list[RollbackResult]:
        """Undo one checkpoint at a time, newest first.

        Stops before target_id, or at the first rollback that succeeds
        without post-restore warnings. Safety copies are skipped.
        """
        results: list[RollbackResult] = []
        for snapshot in newest_first(self.store.list()):
            if is_safety_checkpoint(snapshot.id):
                continue
            if target_id and snapshot.id == target_id:
                break
            result = self.rollback_to(snapshot.id, RollbackOptions(validate_after_rollback=True))
            results.append(result)
            if result.clean:
                break
        return results

    def selective_rollback(
        self,
        checkpoint_id: str,
        paths: list[str],
        options: Optional[RollbackOptions] = None,
    ) -> RollbackResult:
        """Restore only the listed paths from a checkpoint.

        Paths absent from the checkpoint are removed from the tree and
        reported as warnings. Everything else is left untouched.
        """
        options = options or RollbackOptions()
        snapshot = self.store.get(checkpoint_id)
        if snapshot is None:
            return self._failure(checkpoint_id, None, str(CheckpointNotFoundError(checkpoint_id)), REASON_NOT_FOUND)

        source_root = Path(snapshot.path)
        warnings: list[str] = []
        restored: list[str] = []
        try:
            targets = [(rel, self._resolve(rel)) for rel in paths]
            backup_id = self._backup(f"Before selective rollback to {checkpoint_id}") \
                if options.backup_before_rollback else None

            for rel, dest in targets:
                src = source_root / Path(rel)
                if src.is_dir():
                    if dest.exists():
                        shutil.rmtree(dest) if dest.is_dir() else dest.unlink()
                    shutil.copytree(src, dest, symlinks=True)
                elif src.exists():
                    if dest.is_dir():
                        shutil.rmtree(dest)
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(src, dest)
                else:
                    if dest.is_dir():
                        shutil.rmtree(dest)
                    elif dest.exists():
                        dest.unlink()
                    warnings.append(f"{rel} absent from checkpoint {checkpoint_id}; removed")
                    continue
                restored.append(rel)
        except ValueError as e:
            return self._failure(checkpoint_id, snapshot, str(e), REASON_INVALID_PATH)
        except OSError as e:
            return self._failure(checkpoint_id, snapshot, str(e), REASON_IO_ERROR)

        self._record(checkpoint_id, "selective", True)
        return RollbackResult(
            success=True,
            checkpoint=snapshot,
            preserved_files=restored,
            warnings=warnings,
            backup_id=backup_id,
        )

    # ── Planning ──

    def assess_feasibility(self, checkpoint_id: str) -> FeasibilityReport:
        """Non-mutating pre-check before a rollback."""
        issues: list[str] = []
        warnings: list[str] = []

        if self.store.get(checkpoint_id) is None:
            issues.append(f"Checkpoint {checkpoint_id} not found")
            return FeasibilityReport(False, issues, warnings)

        validation = self.store.validate(checkpoint_id)
        if not validation["valid"]:
            issues.extend(validation["errors"])

        size = self.store.size(checkpoint_id)
        if size > self.store.config.large_checkpoint_bytes:
            warnings.append(
                f"Large checkpoint ({size // (1024 * 1024)}MB) may require significant disk space"
            )
        warnings.append("Uncommitted changes will be lost during rollback")

        return FeasibilityReport(not issues, issues, warnings)

    def build_plan(self, checkpoint_id: str) -> RollbackPlan:
        """Descriptive plan for operator review. Never executed automatically."""
        if self.store.get(checkpoint_id) is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return RollbackPlan(
            checkpoint_id=checkpoint_id,
            steps=[
                "Validate checkpoint integrity",
                "Create backup of current state",
                "Stop development server if running",
                "Restore project files from checkpoint",
                "Restore package.json and lock file",
                "Reinstall node_modules (npm ci)",
                "Validate rollback success",
                "Restart development server",
            ],
            estimated_minutes=15,
            risks=[
                "Loss of uncommitted changes",
                "Dependency installation failures",
                "Configuration drift",
                "Data loss if not properly backed up",
            ],
            mitigations=[
                "Create pre-rollback backup",
                "Commit or stash current changes",
                "Verify checkpoint integrity first",
                "Run validation after rollback",
            ],
        )

    def history(self) -> list[dict]:
        return list(self._history)

    # ── Internals ──

    def _resolve(self, rel: str) -> Path:
        """Project-relative path → absolute; refuses escapes and store paths."""
        root = self.project_path
        target = (root / rel).resolve()
        if target == root or not target.is_relative_to(root):
            raise ValueError(f"Path outside project: {rel}")
        if self.store.owns(target):
            raise ValueError(f"Path reserved for checkpoint storage: {rel}")
        return target

    def _capture(self, rel_paths: list[str]) -> dict[str, bytes]:
        captured: dict[str, bytes] = {}
        for rel in rel_paths:
            path = self._resolve(rel)
            if path.is_file():
                captured[rel] = path.read_bytes()
            elif path.is_dir():
                for child in sorted(path.rglob("*")):
                    if child.is_file():
                        captured[child.relative_to(self.project_path).as_posix()] = child.read_bytes()
        return captured

    def _backup(self, description: str) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
        backup_id = f"{PRE_ROLLBACK_PREFIX}-{stamp}"
        self.store.create(backup_id, description, capture_status=False)
        return backup_id

    def _post_restore_check(self, snapshot: Snapshot) -> list[str]:
        warnings: list[str] = []
        for name in self.store.config.essential_files:
            if not (self.project_path / name).exists():
                warnings.append(f"Essential file missing after rollback: {name}")
        if (self.project_path / PACKAGE_JSON).exists() and read_json(self.project_path / PACKAGE_JSON) is None:
            warnings.append("package.json is not valid JSON after rollback")

        restored_version = current_angular_version(self.project_path)
        if snapshot.version != "unknown" and restored_version != snapshot.version:
            warnings.append(
                f"Angular version {restored_version} does not match checkpoint version {snapshot.version}"
            )

        if self.post_check is not None:
            try:
                warnings.extend(self.post_check(self.project_path) or [])
            except Exception as e:
                warnings.append(f"Post-rollback check failed: {e}")
        return warnings

    def _failure(self, checkpoint_id: str, snapshot, message: str, reason: str) -> RollbackResult:
        logger.error(f"Rollback to {checkpoint_id} failed ({reason}): {message}")
        self._record(checkpoint_id, "rollback", False, message)
        return RollbackResult(success=False, checkpoint=snapshot, error=message, reason=reason)

    def _record(self, checkpoint_id: str, kind: str, success: bool, reason: str = "") -> None:
        self._history.append({
            "checkpoint_id": checkpoint_id,
            "kind": kind,
            "success": success,
            "reason": reason,
            "time": datetime.now(timezone.utc).isoformat(),
        })
