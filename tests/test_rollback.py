"""Tests for the rollback engine."""
import shutil

import pytest

from conftest import StatusProbe, StubInstaller, core_version, tree, write_package_json
from upgrade_factory.checkpoints import CheckpointStore
from upgrade_factory.config import CheckpointConfig
from upgrade_factory.errors import CheckpointNotFoundError
from upgrade_factory.rollback import (
    REASON_CORRUPTED,
    REASON_INVALID_PATH,
    REASON_IO_ERROR,
    REASON_NO_VALID_CHECKPOINT,
    REASON_NOT_FOUND,
    RollbackEngine,
    RollbackOptions,
    is_safety_checkpoint,
)


@pytest.fixture
def engine(store):
    return RollbackEngine(store)


def _three_versions(store, project):
    """Checkpoints initial (14), step-15, step-16; project left at 16."""
    store.create("initial")
    write_package_json(project, core="^15.0.0")
    store.create("step-15")
    write_package_json(project, core="^16.0.0")
    store.create("step-16")


class TestRollbackTo:
    def test_restores_tree(self, engine, store, project):
        before = tree(project)
        store.create("initial")
        write_package_json(project, core="^15.0.0")
        (project / "src" / "app" / "extra.ts").write_text("x\n")

        result = engine.rollback_to("initial")

        assert result.success
        assert result.checkpoint.id == "initial"
        assert result.reason is None
        assert tree(project) == before

    def test_not_found(self, engine):
        result = engine.rollback_to("nope")
        assert not result.success
        assert result.reason == REASON_NOT_FOUND
        assert "nope" in result.error

    def test_corrupted_leaves_project_alone(self, engine, store, project):
        cp = store.create("initial")
        (store.checkpoints_dir / cp.id / "package.json").unlink()
        write_package_json(project, core="^15.0.0")

        result = engine.rollback_to("initial")

        assert not result.success
        assert result.reason == REASON_CORRUPTED
        assert core_version(project) == "^15.0.0"

    def test_preserving_store_index_is_rejected(self, engine, store, project):
        store.create("initial")
        write_package_json(project, core="^15.0.0")

        result = engine.rollback_to("initial", RollbackOptions(preserve_files=[".ng-upgrade/checkpoints.json"]))

        assert result.reason == REASON_INVALID_PATH
        assert core_version(project) == "^15.0.0"
        ids = [s.id for s in store.list()]
        assert ids == ["initial"]
        assert [p.name for p in store.checkpoints_dir.iterdir()] == ids

    def test_io_failure_mid_restore(self, engine, store, project, monkeypatch):
        store.create("initial")
        write_package_json(project, core="^15.0.0")
        before = tree(project)

        def failing_move(src, dst):
            raise OSError("Read-only file system")

        monkeypatch.setattr(shutil, "move", failing_move)
        result = engine.rollback_to("initial")

        assert not result.success
        assert result.reason == REASON_IO_ERROR
        assert tree(project) == before
        for snapshot in store.list():
            assert store.validate(snapshot.id)["valid"]

    def test_preserve_files(self, engine, store, project):
        store.create("initial")
        (project / "local.env").write_text("API_KEY=dev\n")
        write_package_json(project, core="^15.0.0")

        result = engine.rollback_to(
            "initial", RollbackOptions(preserve_files=["local.env", "missing.txt"])
        )

        assert result.success
        assert result.preserved_files == ["local.env"]
        assert (project / "local.env").read_text() == "API_KEY=dev\n"
        assert core_version(project) == "^14.2.0"
        assert "Not preserved (missing): missing.txt" in result.warnings

    def test_preserve_directory(self, engine, store, project):
        store.create("initial")
        notes = project / "notes"
        notes.mkdir()
        (notes / "a.md").write_text("a")
        (notes / "b.md").write_text("b")

        result = engine.rollback_to("initial", RollbackOptions(preserve_files=["notes"]))

        assert result.preserved_files == ["notes/a.md", "notes/b.md"]
        assert (notes / "b.md").read_text() == "b"
        assert result.warnings == []

    def test_preserve_outside_project(self, engine, store, project):
        store.create("initial")
        write_package_json(project, core="^15.0.0")

        result = engine.rollback_to("initial", RollbackOptions(preserve_files=["../outside.txt"]))

        assert not result.success
        assert result.reason == REASON_INVALID_PATH
        assert core_version(project) == "^15.0.0"

    def test_backup_before_rollback(self, engine, store, project):
        store.create("initial")
        (project / "src" / "app" / "work.ts").write_text("work\n")

        result = engine.rollback_to("initial", RollbackOptions(backup_before_rollback=True))

        assert result.backup_id.startswith("pre-rollback-")
        backup = store.get(result.backup_id)
        assert "src/app/work.ts" in tree(backup.path)
        assert backup.metadata.build_status == "unknown"

    def test_validate_after_rollback_clean(self, engine, store, project):
        store.create("initial")
        write_package_json(project, core="^15.0.0")
        result = engine.rollback_to("initial", RollbackOptions(validate_after_rollback=True))
        assert result.clean

    def test_post_check_warnings(self, store, project):
        engine = RollbackEngine(store, post_check=lambda path: ["smoke test failed"])
        store.create("initial")
        result = engine.rollback_to("initial", RollbackOptions(validate_after_rollback=True))
        assert result.success
        assert not result.clean
        assert result.warnings == ["smoke test failed"]

    def test_post_check_exception_is_warning(self, store, project):
        def explode(path):
            raise RuntimeError("probe crashed")

        engine = RollbackEngine(store, post_check=explode)
        store.create("initial")
        result = engine.rollback_to("initial", RollbackOptions(validate_after_rollback=True))
        assert result.success
        assert result.warnings == ["Post-rollback check failed: probe crashed"]

    def test_reinstall_failure_is_warning(self, store, project):
        installer = StubInstaller(ok=False)
        engine = RollbackEngine(store, installer=installer)
        store.create("initial")

        result = engine.rollback_to("initial", RollbackOptions(reinstall_dependencies=True))

        assert result.success
        assert installer.clean_installs == 1
        assert any("npm ci" in w for w in result.warnings)

    def test_history(self, engine, store):
        store.create("initial")
        engine.rollback_to("initial")
        engine.rollback_to("nope")
        history = engine.history()
        assert [h["success"] for h in history] == [True, False]
        assert history[0]["checkpoint_id"] == "initial"


class TestLastGood:
    def test_skips_failed_builds(self, project):
        store = CheckpointStore(
            project,
            build_probe=StatusProbe("success", "failed", "failed"),
            test_probe=StatusProbe(),
        )
        engine = RollbackEngine(store)
        _three_versions(store, project)

        result = engine.rollback_to_last_good()

        assert result.success
        assert result.checkpoint.id == "initial"
        assert core_version(project) == "^14.2.0"

    def test_prefers_newest_good(self, store, project, engine):
        _three_versions(store, project)
        (project / "src" / "app" / "broken.ts").write_text("oops\n")
        result = engine.rollback_to_last_good()
        assert result.checkpoint.id == "step-16"

    def test_skips_corrupted(self, store, project, engine):
        _three_versions(store, project)
        (store.checkpoints_dir / "step-16" / "tsconfig.json").unlink()
        result = engine.rollback_to_last_good()
        assert result.checkpoint.id == "step-15"

    def test_none_good(self, project):
        store = CheckpointStore(
            project, build_probe=StatusProbe(default="failed"), test_probe=StatusProbe()
        )
        engine = RollbackEngine(store)
        store.create("initial")
        write_package_json(project, core="^15.0.0")

        result = engine.rollback_to_last_good()

        assert not result.success
        assert result.reason == REASON_NO_VALID_CHECKPOINT
        assert core_version(project) == "^15.0.0"


class TestProgressive:
    def test_stops_at_first_clean(self, store, project, engine):
        _three_versions(store, project)
        (project / "src" / "app" / "partial.ts").write_text("half-applied\n")

        results = engine.progressive_rollback()

        assert len(results) == 1
        assert results[0].checkpoint.id == "step-16"
        assert not (project / "src" / "app" / "partial.ts").exists()

    def test_walks_back_until_clean(self, store, project):
        def smoke(path):
            return ["app does not boot"] if core_version(path) == "^16.0.0" else []

        engine = RollbackEngine(store, post_check=smoke)
        _three_versions(store, project)

        results = engine.progressive_rollback()

        assert [r.checkpoint.id for r in results] == ["step-16", "step-15"]
        assert not results[0].clean
        assert results[1].clean
        assert core_version(project) == "^15.0.0"

    def test_stops_before_target(self, store, project):
        engine = RollbackEngine(store, post_check=lambda path: ["still broken"])
        _three_versions(store, project)

        results = engine.progressive_rollback(target_id="step-15")

        assert [r.checkpoint.id for r in results] == ["step-16"]

    def test_skips_safety_copies(self, store, project):
        engine = RollbackEngine(store, post_check=lambda path: ["still broken"])
        _three_versions(store, project)
        store.restore("step-16")  # leaves a pre-restore copy behind

        results = engine.progressive_rollback()

        assert "pre-restore" not in [r.checkpoint.id for r in results]
        assert [r.checkpoint.id for r in results] == ["step-16", "step-15", "initial"]

    def test_empty_store(self, engine):
        assert engine.progressive_rollback() == []


class TestSelective:
    def test_restores_only_listed_paths(self, engine, store, project):
        original_main = (project / "src" / "main.ts").read_text()
        store.create("initial")
        write_package_json(project, core="^15.0.0")
        (project / "src" / "main.ts").write_text("changed\n")
        (project / "src" / "app" / "new.ts").write_text("new\n")

        result = engine.selective_rollback("initial", ["src/main.ts"])

        assert result.success
        assert result.preserved_files == ["src/main.ts"]
        assert (project / "src" / "main.ts").read_text() == original_main
        assert (project / "src" / "app" / "new.ts").exists()
        assert core_version(project) == "^15.0.0"

    def test_path_absent_from_checkpoint_is_removed(self, engine, store, project):
        store.create("initial")
        (project / "src" / "app" / "new.ts").write_text("new\n")

        result = engine.selective_rollback("initial", ["src/app/new.ts"])

        assert result.success
        assert not (project / "src" / "app" / "new.ts").exists()
        assert result.preserved_files == []
        assert any("absent from checkpoint" in w for w in result.warnings)

    def test_directory(self, engine, store, project):
        store.create("initial")
        (project / "src" / "app" / "new.ts").write_text("new\n")
        (project / "src" / "app" / "app.component.ts").write_text("changed\n")
        write_package_json(project, core="^15.0.0")

        result = engine.selective_rollback("initial", ["src"])

        assert result.success
        assert not (project / "src" / "app" / "new.ts").exists()
        assert "AppComponent" in (project / "src" / "app" / "app.component.ts").read_text()
        assert core_version(project) == "^15.0.0"

    def test_not_found(self, engine):
        result = engine.selective_rollback("nope", ["src"])
        assert result.reason == REASON_NOT_FOUND

    def test_escaping_path(self, engine, store):
        store.create("initial")
        result = engine.selective_rollback("initial", ["../../etc/passwd"])
        assert result.reason == REASON_INVALID_PATH

    @pytest.mark.parametrize("path", [".ng-upgrade", ".ng-upgrade/checkpoints/initial/package.json"])
    def test_store_directory_is_off_limits(self, engine, store, project, path):
        store.create("initial")
        write_package_json(project, core="^15.0.0")
        store.create("step-15")

        result = engine.selective_rollback("initial", [path])

        assert not result.success
        assert result.reason == REASON_INVALID_PATH
        assert [s.id for s in store.list()] == ["initial", "step-15"]
        assert store.validate("initial")["valid"]

    def test_parent_of_storage_root_is_off_limits(self, project):
        store = CheckpointStore(
            project, storage_root=project / "backups" / "ng",
            build_probe=StatusProbe(), test_probe=StatusProbe(),
        )
        store.create("initial")

        result = RollbackEngine(store).selective_rollback("initial", ["backups"])

        assert result.reason == REASON_INVALID_PATH
        assert store.get("initial") is not None

    def test_backup(self, engine, store, project):
        store.create("initial")
        result = engine.selective_rollback(
            "initial", ["src/main.ts"], RollbackOptions(backup_before_rollback=True)
        )
        assert store.get(result.backup_id) is not None


class TestPlanning:
    def test_feasible(self, engine, store):
        store.create("initial")
        report = engine.assess_feasibility("initial")
        assert report.feasible
        assert report.issues == []
        assert "Uncommitted changes will be lost during rollback" in report.warnings

    def test_not_feasible_when_missing(self, engine):
        report = engine.assess_feasibility("nope")
        assert not report.feasible
        assert report.issues == ["Checkpoint nope not found"]

    def test_not_feasible_when_corrupted(self, engine, store):
        store.create("initial")
        (store.checkpoints_dir / "initial" / "angular.json").unlink()
        report = engine.assess_feasibility("initial")
        assert not report.feasible
        assert "Essential file missing: angular.json" in report.issues

    def test_large_checkpoint_warning(self, project):
        store = CheckpointStore(
            project, CheckpointConfig(large_checkpoint_bytes=1),
            build_probe=StatusProbe(), test_probe=StatusProbe(),
        )
        store.create("initial")
        report = RollbackEngine(store).assess_feasibility("initial")
        assert report.feasible
        assert any(w.startswith("Large checkpoint") for w in report.warnings)

    def test_plan(self, engine, store):
        store.create("initial")
        plan = engine.build_plan("initial")
        assert plan.checkpoint_id == "initial"
        assert len(plan.steps) == 8
        assert plan.estimated_minutes == 15
        assert len(plan.risks) == 4
        assert len(plan.mitigations) == 4

    def test_plan_missing(self, engine):
        with pytest.raises(CheckpointNotFoundError):
            engine.build_plan("nope")


class TestSafetyIds:
    def test_safety_ids(self):
        assert is_safety_checkpoint("pre-restore")
        assert is_safety_checkpoint("pre-rollback-20240101-000000-000000")
        assert not is_safety_checkpoint("initial")
        assert not is_safety_checkpoint("step-15")
