"""
Checkpoint Store - Point-in-time copies of the project tree
============================================================
Layout (relative to the project root):

    <meta-dir>/checkpoints/<id>/   full copy of the project at capture time
    <meta-dir>/checkpoints.json    index: {"checkpoints": [{id, version, timestamp, ...}]}

The store exclusively owns both. Imperative actions (create, restore,
delete) raise on failure; queries (list, get, size, validate) never do.

Usage:
    store = CheckpointStore("/path/to/app")
    cp = store.create("initial", "Before upgrade")
    store.validate("initial")   # → {"valid": True, "errors": []}
    store.restore("initial")
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from .commands import run_command
from .config import CheckpointConfig, ValidationConfig
from .errors import CheckpointError, CheckpointNotFoundError
from .manifest import (
    ANGULAR_JSON,
    all_dependencies,
    current_angular_version,
    read_json,
    read_package_json,
    write_json,
)
from .models import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    STATUS_UNKNOWN,
    Snapshot,
    SnapshotMetadata,
)

logger = logging.getLogger(__name__)

PRE_RESTORE_ID = "pre-restore"
INDEX_FILE = "checkpoints.json"
CHECKPOINTS_DIR = "checkpoints"

_ID_RE = re.compile(r"^[A-Za-z0-9._-]+$")

# Build/test status probe: project path → success|failed|unknown
StatusProbe = Callable[[Path], str]


def command_probe(command: str, timeout: int) -> StatusProbe:
    """Probe that maps a command's exit status to success/failed."""

    def _probe(project_path: Path) -> str:
        return STATUS_SUCCESS if run_command(command, project_path, timeout).ok else STATUS_FAILED

    return _probe


def matches_pattern(rel_path: str, patterns: Iterable[str]) -> bool:
    """Substring match, or '*' wildcard converted to a regex search."""
    for pattern in patterns:
        if "*" in pattern:
            regex = re.escape(pattern).replace(r"\*", ".*")
            if re.search(regex, rel_path):
                return True
        elif pattern in rel_path:
            return True
    return False


def directory_size(path: Path) -> int:
    """Recursive byte size. Unreadable entries are skipped (advisory value)."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
    return total


class CheckpointStore:
    """Snapshot store for one project directory."""

    def __init__(
        self,
        project_path: Path | str,
        config: Optional[CheckpointConfig] = None,
        *,
        storage_root: Optional[Path | str] = None,
        build_probe: Optional[StatusProbe] = None,
        test_probe: Optional[StatusProbe] = None,
        validation: Optional[ValidationConfig] = None,
    ):
        self.project_path = Path(project_path).resolve()
        self.config = config or CheckpointConfig()
        self.storage_root = (
            Path(storage_root).resolve() if storage_root else self.project_path / self.config.meta_dir
        )
        self.checkpoints_dir = self.storage_root / CHECKPOINTS_DIR
        self.index_file = self.storage_root / INDEX_FILE

        validation = validation or ValidationConfig()
        self._build_probe = build_probe or command_probe(
            validation.build_command, validation.build_timeout
        )
        self._test_probe = test_probe or command_probe(
            validation.test_command, validation.test_timeout
        )

        self.exclude_patterns = list(self.config.exclude_patterns) + [self.config.meta_dir]
        self.restore_exclude_patterns = list(self.config.restore_exclude_patterns) + [
            self.config.meta_dir
        ]

    # ── Index ──

    def initialize(self) -> None:
        """Ensure storage root and index exist. Safe to call repeatedly."""
        self.checkpoints_dir.mkdir(parents=True, exist_ok=True)
        if not self.index_file.exists():
            write_json(self.index_file, {"checkpoints": []})

    def _read_index(self) -> list[dict]:
        data = read_json(self.index_file)
        if not isinstance(data, dict):
            return []
        rows = data.get("checkpoints") or []
        return [r for r in rows if isinstance(r, dict) and r.get("id")]

    def _write_index(self, rows: list[dict]) -> None:
        write_json(self.index_file, {"checkpoints": rows})

    # ── Queries ──

    def list(self) -> list[Snapshot]:
        """All snapshots in index order. Missing/corrupt index → []."""
        snapshots = []
        for row in self._read_index():
            try:
                snapshots.append(Snapshot.from_dict(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed checkpoint entry {row.get('id')}: {e}")
        return snapshots

    def get(self, checkpoint_id: str) -> Optional[Snapshot]:
        return next((s for s in self.list() if s.id == checkpoint_id), None)

    def size(self, checkpoint_id: str) -> int:
        snapshot = self.get(checkpoint_id)
        if snapshot is None:
            return 0
        return directory_size(Path(snapshot.path))

    def owns(self, path: Path | str) -> bool:
        """True for the store's directories, their contents and their ancestors."""
        target = Path(path).resolve()
        for reserved in (self.storage_root, self.project_path / self.config.meta_dir):
            if target.is_relative_to(reserved) or reserved.is_relative_to(target):
                return True
        return False

    def validate(self, checkpoint_id: str) -> dict:
        """Integrity check → {"valid": bool, "errors": [str]}. Never raises."""
        snapshot = self.get(checkpoint_id)
        if snapshot is None:
            return {"valid": False, "errors": ["Checkpoint not found"]}

        errors: list[str] = []
        root = Path(snapshot.path)
        try:
            if not root.is_dir():
                errors.append("Checkpoint directory not found")
            for name in self.config.essential_files:
                if not (root / name).exists():
                    errors.append(f"Essential file missing: {name}")
        except OSError as e:
            errors.append(f"Checkpoint unreadable: {e}")

        return {"valid": not errors, "errors": errors}

    # ── Actions ──

    def create(
        self,
        checkpoint_id: Optional[str] = None,
        description: str = "",
        *,
        capture_status: Optional[bool] = None,
    ) -> Snapshot:
        """Copy the project tree into a new checkpoint and index it."""
        self.initialize()
        checkpoint_id = checkpoint_id or str(uuid.uuid4())
        if not _ID_RE.match(checkpoint_id):
            raise CheckpointError(f"Invalid checkpoint id: {checkpoint_id!r}")

        if self.get(checkpoint_id) is not None:
            logger.info(f"Replacing existing checkpoint {checkpoint_id}")
            self.delete(checkpoint_id)

        dest = self.checkpoints_dir / checkpoint_id
        if dest.exists():
            # Orphan directory left by an interrupted delete
            shutil.rmtree(dest)

        timestamp = datetime.now(timezone.utc)
        try:
            self._copy_tree(self.project_path, dest, self.exclude_patterns)
        except OSError as e:
            shutil.rmtree(dest, ignore_errors=True)
            raise CheckpointError(f"Failed to copy project into checkpoint {checkpoint_id}: {e}") from e

        if capture_status is None:
            capture_status = self.config.capture_status
        snapshot = Snapshot(
            id=checkpoint_id,
            version=current_angular_version(self.project_path),
            timestamp=timestamp,
            description=description,
            path=str(dest),
            metadata=self._capture_metadata(dest, capture_status),
        )

        rows = self._read_index()
        rows.append(snapshot.to_dict())
        self._write_index(rows)
        logger.info(f"Checkpoint created: {checkpoint_id} ({description})")
        return snapshot

    def restore(self, checkpoint_id: str) -> Snapshot:
        """Replace the project tree with a checkpoint's copy.

        A safety checkpoint of the current state (id 'pre-restore') is taken
        first. node_modules and the store's own directory are left alone;
        dependencies are not reinstalled here.
        """
        snapshot = self.get(checkpoint_id)
        if snapshot is None:
            raise CheckpointNotFoundError(checkpoint_id)
        source = Path(snapshot.path)
        if not source.is_dir():
            raise CheckpointError(f"Checkpoint directory missing: {source}")

        self.initialize()
        staging = Path(tempfile.mkdtemp(prefix="restore-", dir=str(self.storage_root)))
        try:
            # Stage first: the checkpoint may be the one about to be replaced
            staged = staging / "tree"
            try:
                self._copy_tree(source, staged, ())
            except OSError as e:
                raise CheckpointError(f"Failed to stage checkpoint {checkpoint_id}: {e}") from e

            backup = self.create(
                PRE_RESTORE_ID, f"Before restoring to {checkpoint_id}", capture_status=False
            )

            try:
                self._clear_project()
                for entry in staged.iterdir():
                    shutil.move(str(entry), str(self.project_path / entry.name))
            except OSError as e:
                logger.error(f"Restore of {checkpoint_id} failed mid-way, reverting: {e}")
                self._revert_from(Path(backup.path))
                raise CheckpointError(f"Failed to restore checkpoint {checkpoint_id}: {e}") from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info(f"Project restored to checkpoint {checkpoint_id}")
        return snapshot

    def delete(self, checkpoint_id: str) -> None:
        """Remove a checkpoint. Index entry goes first so it never dangles."""
        snapshot = self.get(checkpoint_id)
        if snapshot is None:
            raise CheckpointNotFoundError(checkpoint_id)

        rows = [r for r in self._read_index() if r.get("id") != checkpoint_id]
        self._write_index(rows)
        try:
            shutil.rmtree(snapshot.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CheckpointError(f"Failed to remove checkpoint directory {snapshot.path}: {e}") from e
        logger.info(f"Checkpoint deleted: {checkpoint_id}")

    def cleanup_old(self, keep_count: Optional[int] = None) -> list[str]:
        """Keep the newest keep_count checkpoints; return deleted ids."""
        keep = self.config.keep_count if keep_count is None else keep_count
        snapshots = self.list()
        if len(snapshots) <= keep:
            return []

        # Newest first; index position breaks timestamp ties
        ordered = sorted(
            enumerate(snapshots), key=lambda p: (p[1].timestamp, p[0]), reverse=True
        )
        deleted = []
        for _pos, snapshot in ordered[max(keep, 0):]:
            self.delete(snapshot.id)
            deleted.append(snapshot.id)
        return deleted

    # ── Internals ──

    def _capture_metadata(self, copy_root: Path, capture_status: bool) -> SnapshotMetadata:
        package_json = read_package_json(self.project_path)
        configuration = read_json(self.project_path / ANGULAR_JSON)
        build_status = test_status = STATUS_UNKNOWN
        if capture_status:
            build_status = self._probe(self._build_probe, "build")
            test_status = self._probe(self._test_probe, "test")
        return SnapshotMetadata(
            project_size=directory_size(copy_root),
            dependencies=all_dependencies(package_json),
            configuration=configuration if configuration is not None else {},
            build_status=build_status,
            test_status=test_status,
        )

    def _probe(self, probe: StatusProbe, kind: str) -> str:
        try:
            status = probe(self.project_path)
        except Exception as e:
            logger.warning(f"{kind} status probe failed: {e}")
            return STATUS_UNKNOWN
        return status if status in (STATUS_SUCCESS, STATUS_FAILED) else STATUS_UNKNOWN

    def _copy_tree(self, src_root: Path, dest_root: Path, patterns: Iterable[str]) -> None:
        patterns = list(patterns)
        dest_root.mkdir(parents=True, exist_ok=True)
        for dirpath, dirnames, filenames in os.walk(src_root):
            rel_dir = Path(dirpath).relative_to(src_root)
            target_dir = dest_root / rel_dir
            kept_dirs = []
            for name in dirnames:
                rel = (rel_dir / name).as_posix()
                if matches_pattern(rel, patterns):
                    continue
                full = Path(dirpath) / name
                if full.resolve() == self.storage_root:
                    continue
                if full.is_symlink():
                    os.symlink(os.readlink(full), target_dir / name)
                    continue
                (target_dir / name).mkdir(exist_ok=True)
                kept_dirs.append(name)
            dirnames[:] = kept_dirs
            for name in filenames:
                rel = (rel_dir / name).as_posix()
                if matches_pattern(rel, patterns):
                    continue
                shutil.copy2(Path(dirpath) / name, target_dir / name, follow_symlinks=False)

    def _clear_project(self) -> None:
        for entry in self.project_path.iterdir():
            if self._is_inside_storage(entry) or matches_pattern(entry.name, self.restore_exclude_patterns):
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()

    def _revert_from(self, backup_root: Path) -> None:
        try:
            self._clear_project()
            self._copy_tree(backup_root, self.project_path, ())
        except OSError as e:
            logger.critical(f"Could not revert project from {backup_root}: {e}")

    def _is_inside_storage(self, entry: Path) -> bool:
        try:
            return self.storage_root == entry.resolve() or self.storage_root.is_relative_to(entry.resolve())
        except OSError:
            return False
