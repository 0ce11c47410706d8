"""Tests for prerequisite checks and validation probes."""
from conftest import FakeRunner, write_package_json
from upgrade_factory.commands import EXIT_TIMEOUT, CommandResult
from upgrade_factory.models import Prerequisite, ValidationStep
from upgrade_factory.validator import ValidatorFramework, extract_warnings


class TestPrerequisites:
    def test_runtime(self, project):
        v = ValidatorFramework(project, runner=FakeRunner({"node --version": (0, "v18.19.1\n")}))
        assert v.validate_prerequisite(Prerequisite("runtime", "node", ">=18.13.0"))
        assert not v.validate_prerequisite(Prerequisite("runtime", "node", ">=20.0.0"))

    def test_toolchain(self, project):
        v = ValidatorFramework(project, runner=FakeRunner({"npx tsc": (0, "Version 4.7.4\n")}))
        assert v.validate_prerequisite(Prerequisite("toolchain", "typescript", ">=4.7.2 <4.8.0"))
        assert not v.validate_prerequisite(Prerequisite("toolchain", "typescript", ">=5.2.0 <5.3.0"))

    def test_dependency(self, project):
        v = ValidatorFramework(project, runner=FakeRunner())
        assert v.validate_prerequisite(Prerequisite("dependency", "@angular/cli", "^14.0.0"))
        assert not v.validate_prerequisite(Prerequisite("dependency", "@angular/cli", "^15.0.0"))
        assert not v.validate_prerequisite(Prerequisite("dependency", "@ngrx/store"))

    def test_environment(self, project):
        v = ValidatorFramework(project, runner=FakeRunner({"yarn": (127, "")}))
        assert v.validate_prerequisite(Prerequisite("environment", "npm"))
        assert not v.validate_prerequisite(Prerequisite("environment", "yarn"))
        assert not v.validate_prerequisite(Prerequisite("environment", "rm -rf /"))

    def test_unknown_kind(self, project):
        v = ValidatorFramework(project, runner=FakeRunner())
        assert not v.validate_prerequisite(Prerequisite("astrology", "stars"))


class TestValidations:
    def test_build_passes(self, project):
        runner = FakeRunner()
        v = ValidatorFramework(project, runner=runner)
        result = v.run_validation(ValidationStep("build", "Build", command="npm run build", timeout=10))
        assert result.success
        assert result.message == "Build validation passed"
        assert runner.commands == ["npm run build"]

    def test_build_fails(self, project):
        v = ValidatorFramework(project, runner=FakeRunner({"npm run build": (1, "error TS2304")}))
        result = v.run_validation(ValidationStep("build", "Build"))
        assert not result.success
        assert "error TS2304" in result.error

    def test_timeout(self, project):
        def slow(cmd, cwd=None, timeout=120):
            return CommandResult(cmd, EXIT_TIMEOUT, stderr="TIMEOUT", timed_out=True)

        v = ValidatorFramework(project, runner=slow)
        result = v.run_validation(ValidationStep("test", "Tests", timeout=5))
        assert not result.success
        assert result.message == "Test validation timed out"
        assert result.error == "timed out after 5s"

    def test_warnings_collected(self, project):
        v = ValidatorFramework(project, runner=FakeRunner({"npm run build": (0, "WARNING: budget exceeded\nok")}))
        result = v.run_validation(ValidationStep("build", "Build"))
        assert result.success
        assert result.warnings == ["WARNING: budget exceeded"]

    def test_unknown_kind_runs_nothing(self, project):
        runner = FakeRunner()
        result = ValidatorFramework(project, runner=runner).run_validation(
            ValidationStep("node_version", "Node version")
        )
        assert not result.success
        assert result.message == "Unknown validation kind: node_version"
        assert runner.commands == []

    def test_lint_falls_back_to_eslint(self, project):
        write_package_json(project, scripts={}, devDependencies={"eslint": "^8.0.0"})
        runner = FakeRunner()
        ValidatorFramework(project, runner=runner).run_validation(ValidationStep("lint", "Lint"))
        assert runner.commands == ["npx eslint src/**/*.ts"]

    def test_compatibility_ok(self, project):
        v = ValidatorFramework(project, runner=FakeRunner())
        assert v.run_validation(ValidationStep("compatibility", "Compat")).success

    def test_compatibility_version_mismatch(self, project):
        write_package_json(project, dependencies={"@angular/core": "^14.2.0", "@angular/router": "^15.0.0"})
        result = ValidatorFramework(project, runner=FakeRunner()).run_validation(
            ValidationStep("compatibility", "Compat")
        )
        assert not result.success
        assert "Version mismatch: @angular/router@^15.0.0" in result.error

    def test_compatibility_peer_deps(self, project):
        runner = FakeRunner({"npm ls": (1, "npm ERR! peer dep missing: @angular/core@^15\n")})
        result = ValidatorFramework(project, runner=runner).run_validation(
            ValidationStep("compatibility", "Compat")
        )
        assert not result.success
        assert "1 peer dependency conflicts" in result.error


class TestExtractWarnings:
    def test_extract(self):
        out = "building...\nWarning: unused import\nnpm WARN deprecated x\ndone"
        assert extract_warnings(out) == ["Warning: unused import", "npm WARN deprecated x"]
