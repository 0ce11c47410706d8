"""
Validator - prerequisite checks and build/test/lint probes.
============================================================
Every probe is a synchronous command with an explicit timeout; the
result is a ValidationResult, never an exception.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .commands import CommandResult, run_command
from .config import ValidationConfig
from .manifest import CORE_PACKAGE, all_dependencies, read_package_json
from .models import (
    PREREQ_DEPENDENCY,
    PREREQ_ENVIRONMENT,
    PREREQ_RUNTIME,
    PREREQ_TOOLCHAIN,
    VALIDATION_KINDS,
    Prerequisite,
    ValidationStep,
)
from .semver import satisfies

logger = logging.getLogger(__name__)

ENVIRONMENT_TOOLS = ("git", "npm", "yarn", "node", "npx")

_VERSION_IN_TEXT = re.compile(r"v?(\d+\.\d+(?:\.\d+)?)")
_WARNING_RE = re.compile(r"warn", re.IGNORECASE)


@dataclass
class ValidationResult:
    success: bool
    message: str
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def extract_warnings(output: str) -> list[str]:
    """Output lines mentioning a warning."""
    return [line.strip() for line in output.splitlines() if _WARNING_RE.search(line)]


def _major(spec: str) -> Optional[int]:
    m = _VERSION_IN_TEXT.search(spec)
    return int(m.group(1).split(".")[0]) if m else None


class ValidatorFramework:
    def __init__(
        self,
        project_path: Path | str,
        config: Optional[ValidationConfig] = None,
        runner: Callable[..., CommandResult] = run_command,
    ):
        self.project_path = Path(project_path)
        self.config = config or ValidationConfig()
        self.runner = runner

    # ── Prerequisites ──

    def validate_prerequisite(self, prereq: Prerequisite) -> bool:
        if prereq.kind == PREREQ_RUNTIME:
            return self._tool_version_ok(self.config.node_version_command, prereq.required_version)
        if prereq.kind == PREREQ_TOOLCHAIN:
            return self._tool_version_ok(self.config.tsc_version_command, prereq.required_version)
        if prereq.kind == PREREQ_DEPENDENCY:
            return self._dependency_ok(prereq.name, prereq.required_version)
        if prereq.kind == PREREQ_ENVIRONMENT:
            return self._environment_ok(prereq.name)
        logger.warning(f"Unknown prerequisite kind: {prereq.kind}")
        return False

    def _tool_version_ok(self, command: str, required: Optional[str]) -> bool:
        result = self.runner(command, cwd=self.project_path, timeout=60)
        if not result.ok:
            return False
        m = _VERSION_IN_TEXT.search(result.stdout)
        if not m:
            return False
        return satisfies(m.group(1), required or "")

    def _dependency_ok(self, name: str, required: Optional[str]) -> bool:
        current = all_dependencies(read_package_json(self.project_path)).get(name)
        if not current:
            return False
        if not required:
            return True
        return satisfies(re.sub(r"^[\^~]", "", current), required)

    def _environment_ok(self, tool: str) -> bool:
        if tool not in ENVIRONMENT_TOOLS:
            logger.warning(f"Unknown environment tool: {tool}")
            return False
        return self.runner(f"{tool} --version", cwd=self.project_path, timeout=30).ok

    # ── Validations ──

    def run_validation(self, step: ValidationStep) -> ValidationResult:
        if step.kind not in VALIDATION_KINDS:
            return ValidationResult(False, f"Unknown validation kind: {step.kind}", error=step.kind)
        if step.kind == "compatibility":
            return self._compatibility()
        if step.kind == "lint" and not step.command:
            command = self._lint_command()
        else:
            command = step.command or self.config.command_for(step.kind)
        if not command:
            return ValidationResult(False, f"No command configured for {step.kind} validation", error=step.kind)

        timeout = step.timeout or self.config.timeout_for(step.kind)
        result = self.runner(command, cwd=self.project_path, timeout=timeout)
        warnings = extract_warnings(result.output)
        label = step.kind.capitalize()

        if result.timed_out:
            return ValidationResult(False, f"{label} validation timed out", f"timed out after {timeout}s", warnings)
        if not result.ok:
            return ValidationResult(False, f"{label} validation failed", result.output[-2000:], warnings)
        return ValidationResult(True, f"{label} validation passed", warnings=warnings)

    def _lint_command(self) -> str:
        pkg = read_package_json(self.project_path)
        scripts = pkg.get("scripts") or {}
        dev = pkg.get("devDependencies") or {}
        if "lint" in scripts:
            return self.config.lint_command
        if "eslint" in dev:
            return "npx eslint src/**/*.ts"
        if "tslint" in dev:
            return "npx tslint -p tsconfig.json"
        return self.config.lint_command

    def _compatibility(self) -> ValidationResult:
        issues = self._version_mismatches()
        warnings: list[str] = []

        ls = self.runner(self.config.compatibility_command, cwd=self.project_path,
                         timeout=self.config.default_timeout)
        peer = [line.strip() for line in ls.output.splitlines() if "peer dep" in line]
        if peer:
            issues.append(f"Found {len(peer)} peer dependency conflicts")
        warnings.extend(line for line in extract_warnings(ls.output) if "peer dep" not in line)

        if issues:
            return ValidationResult(False, "Compatibility issues found", "; ".join(issues), warnings)
        return ValidationResult(True, "Compatibility validation passed", warnings=warnings)

    def _version_mismatches(self) -> list[str]:
        deps = all_dependencies(read_package_json(self.project_path))
        core = deps.get(CORE_PACKAGE)
        core_major = _major(core) if core else None
        if core_major is None:
            return []
        issues = []
        for name, spec in sorted(deps.items()):
            if not name.startswith("@angular/") or name == CORE_PACKAGE:
                continue
            major = _major(spec)
            if major is not None and major != core_major:
                issues.append(f"Version mismatch: {name}@{spec} with {CORE_PACKAGE}@{core}")
        return issues
