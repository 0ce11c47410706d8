"""Tests for the data-driven version handlers."""
import json

import pytest

from conftest import FakeRunner, write_package_json
from upgrade_factory.config import UpgradeOptions
from upgrade_factory.errors import StepExecutionError
from upgrade_factory.handlers import (
    SUPPORTED_VERSIONS,
    VERSION_SPECS,
    DataDrivenHandler,
    build_handler_registry,
)
from upgrade_factory.models import UpgradeStep


def handler(version, runner=None):
    return DataDrivenHandler(VERSION_SPECS[version], runner=runner or FakeRunner())


def read(project, name):
    return json.loads((project / name).read_text())


class TestExecute:
    def test_updates_package_json(self, project):
        handler("15").execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        pkg = read(project, "package.json")
        assert pkg["dependencies"]["@angular/core"] == "^15.0.0"
        assert pkg["dependencies"]["@angular/router"] == "^15.0.0"
        assert pkg["devDependencies"]["@angular/cli"] == "^15.0.0"
        assert pkg["devDependencies"]["typescript"] == "~4.8.2"
        assert pkg["dependencies"]["zone.js"] == "~0.12.0"
        assert pkg["dependencies"]["rxjs"] == "~7.5.0"

    def test_companions_only_when_present(self, project):
        write_package_json(project, dependencies={"@angular/core": "^14.2.0"})
        handler("15").execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        deps = read(project, "package.json")["dependencies"]
        assert "zone.js" not in deps
        assert "rxjs" not in deps

    def test_raises_es_target(self, project):
        handler("15").execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        assert read(project, "tsconfig.json")["compilerOptions"]["target"] == "ES2022"

    def test_keeps_newer_es_target(self, project):
        (project / "tsconfig.json").write_text(json.dumps({"compilerOptions": {"target": "esnext"}}))
        handler("15").execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        assert read(project, "tsconfig.json")["compilerOptions"]["target"] == "esnext"

    def test_tsconfig_with_comments_left_alone(self, project):
        raw = '{\n  // comment\n  "compilerOptions": {"target": "es2017"}\n}\n'
        (project / "tsconfig.json").write_text(raw)
        handler("15").execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        assert (project / "tsconfig.json").read_text() == raw

    def test_drops_default_project(self, project):
        handler("15").execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        assert "defaultProject" not in read(project, "angular.json")

    def test_conservative_keeps_default_project(self, project):
        options = UpgradeOptions(strategy="conservative")
        handler("15").execute(project, UpgradeStep("14", "15"), options)
        assert read(project, "angular.json")["defaultProject"] == "demo-app"

    def test_runs_schematics(self, project):
        runner = FakeRunner()
        handler("15", runner).execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        assert runner.commands == [
            "npx ng update @angular/core@15 @angular/cli@15 --allow-dirty --force"
        ]

    def test_schematics_optional(self, project):
        runner = FakeRunner()
        options = UpgradeOptions(run_schematics=False)
        handler("15", runner).execute(project, UpgradeStep("14", "15"), options)
        assert runner.commands == []

    def test_schematics_failure_not_fatal(self, project):
        runner = FakeRunner({"npx ng update": (1, "")})
        handler("15", runner).execute(project, UpgradeStep("14", "15"), UpgradeOptions())
        assert read(project, "package.json")["dependencies"]["@angular/core"] == "^15.0.0"

    def test_missing_package_json(self, project):
        (project / "package.json").unlink()
        with pytest.raises(StepExecutionError):
            handler("15").execute(project, UpgradeStep("14", "15"), UpgradeOptions())


class TestTransforms:
    def test_thirteen_drops_enable_ivy(self, project):
        write_package_json(project, core="^12.2.0")
        handler("13").execute(project, UpgradeStep("12", "13"), UpgradeOptions(run_schematics=False))
        tsconfig = read(project, "tsconfig.json")
        assert "enableIvy" not in tsconfig["angularCompilerOptions"]

    def test_sixteen_drops_ngcc(self, project):
        write_package_json(
            project, core="^15.2.0",
            scripts={"postinstall": "ngcc --properties es2015 && node patch.js"},
        )
        handler("16").execute(project, UpgradeStep("15", "16"), UpgradeOptions(run_schematics=False))
        assert read(project, "package.json")["scripts"]["postinstall"] == "node patch.js"

    def test_sixteen_removes_empty_postinstall(self, project):
        write_package_json(project, core="^15.2.0", scripts={"postinstall": "ngcc"})
        handler("16").execute(project, UpgradeStep("15", "16"), UpgradeOptions(run_schematics=False))
        assert "postinstall" not in read(project, "package.json")["scripts"]


class TestPrerequisites:
    def test_node_ok(self, project):
        runner = FakeRunner({"node --version": (0, "v18.19.1\n")})
        assert handler("17", runner).validate_prerequisites(project)

    def test_node_too_old(self, project):
        runner = FakeRunner({"node --version": (0, "v16.20.2\n")})
        assert not handler("17", runner).validate_prerequisites(project)

    def test_node_missing(self, project):
        runner = FakeRunner({"node --version": (127, "")})
        assert not handler("17", runner).validate_prerequisites(project)

    def test_not_angular(self, project):
        write_package_json(project, dependencies={"react": "^18.0.0"}, devDependencies={})
        runner = FakeRunner({"node --version": (0, "v20.11.0\n")})
        assert not handler("17", runner).validate_prerequisites(project)


class TestRegistry:
    def test_all_versions(self):
        registry = build_handler_registry()
        assert sorted(int(v) for v in registry) == list(range(12, 21))
        assert SUPPORTED_VERSIONS == tuple(range(12, 21))

    def test_immutable(self):
        registry = build_handler_registry()
        with pytest.raises(TypeError):
            registry["21"] = handler("20")

    def test_breaking_changes(self):
        ids = [bc.id for bc in build_handler_registry()["13"].get_breaking_changes()]
        assert "ng13-view-engine-removal" in ids

    def test_typescript_pin(self):
        assert VERSION_SPECS["17"].typescript_pin == "~5.2.0"
