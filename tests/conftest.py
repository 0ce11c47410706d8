"""Shared fixtures: a minimal Angular project and stub collaborators.

Nothing here ever shells out to node or npm.
"""
import json
from pathlib import Path

import pytest

from upgrade_factory.checkpoints import CheckpointStore
from upgrade_factory.commands import CommandResult
from upgrade_factory.events import EventRecorder
from upgrade_factory.validator import ValidationResult


def write_package_json(project: Path, core: str = "^14.2.0", **extra) -> None:
    pkg = {
        "name": "demo-app",
        "version": "0.0.1",
        "scripts": {"build": "ng build", "test": "ng test"},
        "dependencies": {
            "@angular/common": core,
            "@angular/core": core,
            "@angular/router": core,
            "rxjs": "~7.5.0",
            "zone.js": "~0.11.4",
        },
        "devDependencies": {
            "@angular/cli": core,
            "@angular/compiler-cli": core,
            "typescript": "~4.7.2",
        },
    }
    pkg.update(extra)
    (project / "package.json").write_text(json.dumps(pkg, indent=2))


def core_version(project: Path) -> str:
    pkg = json.loads((project / "package.json").read_text())
    return pkg["dependencies"]["@angular/core"]


def tree(root: Path, skip=(".ng-upgrade", "node_modules")) -> dict:
    """Relative path → bytes for every file under root."""
    files = {}
    for path in sorted(Path(root).rglob("*")):
        rel = path.relative_to(root)
        if rel.parts and rel.parts[0] in skip:
            continue
        if path.is_file():
            files[rel.as_posix()] = path.read_bytes()
    return files


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "app"
    (root / "src" / "app").mkdir(parents=True)
    write_package_json(root)
    (root / "angular.json").write_text(json.dumps({
        "version": 1,
        "defaultProject": "demo-app",
        "projects": {"demo-app": {"projectType": "application", "root": ""}},
    }, indent=2))
    (root / "tsconfig.json").write_text(json.dumps({
        "compilerOptions": {"target": "es2017", "strict": True},
        "angularCompilerOptions": {"enableIvy": True},
    }, indent=2))
    (root / "src" / "main.ts").write_text("platformBrowserDynamic().bootstrapModule(AppModule);\n")
    (root / "src" / "app" / "app.component.ts").write_text(
        "@Component({ selector: 'app-root', template: '' })\nexport class AppComponent {}\n"
    )
    (root / "src" / "app" / "app.module.ts").write_text(
        "@NgModule({ declarations: [AppComponent] })\nexport class AppModule {}\n"
    )
    (root / "node_modules" / "left-pad").mkdir(parents=True)
    (root / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1;\n")
    return root


class StatusProbe:
    """Build/test probe returning queued statuses, then a default."""

    def __init__(self, *statuses, default="success"):
        self.queue = list(statuses)
        self.default = default
        self.calls = 0

    def __call__(self, project_path):
        self.calls += 1
        return self.queue.pop(0) if self.queue else self.default


@pytest.fixture
def store(project):
    return CheckpointStore(project, build_probe=StatusProbe(), test_probe=StatusProbe())


class FakeRunner:
    """Records commands; answers from a prefix → (exit_code, stdout) table."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.commands = []

    def __call__(self, cmd, cwd=None, timeout=120):
        self.commands.append(cmd)
        for prefix, (code, out) in self.answers.items():
            if cmd.startswith(prefix):
                return CommandResult(cmd, code, stdout=out)
        return CommandResult(cmd, 0)


class StubHandler:
    """Bumps @angular/core and drops a marker file; optionally fails mid-way."""

    def __init__(self, version, fail=False, changes=(), prerequisites_ok=True):
        self.version = version
        self.fail = fail
        self.changes = list(changes)
        self.prerequisites_ok = prerequisites_ok
        self.calls = []

    def execute(self, project_path, step, options):
        self.calls.append(step.label)
        marker = Path(project_path) / "src" / "app" / f"v{self.version}.txt"
        marker.write_text(f"upgraded to {self.version}\n")
        if self.fail:
            raise RuntimeError(f"schematic crashed for {self.version}")
        write_package_json(Path(project_path), core=f"^{self.version}.0.0")

    def validate_prerequisites(self, project_path):
        return self.prerequisites_ok

    def get_breaking_changes(self):
        return list(self.changes)


def stub_handlers(versions=range(12, 21), failing=()):
    return {str(v): StubHandler(str(v), fail=str(v) in failing) for v in versions}


class StubValidator:
    """Prerequisites pass; validations pass unless their kind is listed."""

    def __init__(self, failing_kinds=(), prerequisites_ok=True):
        self.failing_kinds = set(failing_kinds)
        self.prerequisites_ok = prerequisites_ok
        self.ran = []

    def validate_prerequisite(self, prereq):
        return self.prerequisites_ok

    def run_validation(self, step):
        self.ran.append(step.kind)
        if step.kind in self.failing_kinds:
            return ValidationResult(False, f"{step.kind} validation failed", error="boom")
        return ValidationResult(True, f"{step.kind} validation passed")


class StubInstaller:
    def __init__(self, ok=True):
        self.ok = ok
        self.installs = 0
        self.clean_installs = 0

    def ensure_installed(self):
        self.installs += 1
        return self.ok

    def reinstall_clean(self):
        self.clean_installs += 1
        return self.ok


@pytest.fixture
def recorder():
    return EventRecorder()
