"""
Upgrade Path Calculator
=======================
Pure computation: current major → target major as a sequence of one-major
steps, each with prerequisites, breaking changes and validations.

No shortest-path search: every major in between is visited, because
Angular only supports `ng update` one major at a time.

Usage:
    calc = UpgradePathCalculator()
    path = calc.calculate_path(Version(14), Version(17), options)
    [s.label for s in path.steps]   # ['14 -> 15', '15 -> 16', '16 -> 17']
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from .breaking_changes import Severity, count_by_severity
from .config import UpgradeOptions, ValidationConfig
from .errors import HandlerNotFoundError, InvalidUpgradePathError
from .handlers import SUPPORTED_VERSIONS, VERSION_SPECS, VersionHandler, VersionSpec
from .models import (
    PREREQ_DEPENDENCY,
    PREREQ_ENVIRONMENT,
    PREREQ_RUNTIME,
    PREREQ_TOOLCHAIN,
    Prerequisite,
    UpgradePath,
    UpgradeStep,
    ValidationStep,
    Version,
)

logger = logging.getLogger(__name__)

MAX_VERSION_GAP = 8
BASE_MINUTES_PER_STEP = 15
STRATEGY_FACTORS = {"conservative": 1.5, "balanced": 1.0, "progressive": 0.8}
COMPREHENSIVE_FACTOR = 1.3
COMPLEX_VERSIONS = ("13", "15", "17")


class UpgradePathCalculator:
    """Step Sequencer. Stateless apart from its lookup tables."""

    def __init__(
        self,
        handlers: Optional[Mapping[str, VersionHandler]] = None,
        specs: Mapping[str, VersionSpec] = VERSION_SPECS,
        validation: Optional[ValidationConfig] = None,
    ):
        self.handlers = handlers
        self.specs = specs
        self.validation = validation or ValidationConfig()
        self.supported = tuple(sorted(int(v) for v in specs)) if specs else SUPPORTED_VERSIONS

    # ── Path ──

    def calculate_path(self, current: Version, target: Version, options: Optional[UpgradeOptions] = None) -> UpgradePath:
        options = options or UpgradeOptions()
        self._validate_versions(current, target)

        steps: list[UpgradeStep] = []
        for major in range(current.major + 1, target.major + 1):
            steps.append(self._create_step(str(major - 1), str(major), options))

        if options.strategy == "progressive":
            # intermediate stops without high/critical changes become optional
            for step in steps[:-1]:
                if not (count_by_severity(step.breaking_changes, Severity.CRITICAL)
                        or count_by_severity(step.breaking_changes, Severity.HIGH)):
                    step.required = False

        path = UpgradePath(from_version=current, to_version=target, steps=steps)
        logger.info(f"Upgrade path: {' → '.join(path.versions)}")
        return path

    def _validate_versions(self, current: Version, target: Version) -> None:
        if current.major >= target.major:
            raise InvalidUpgradePathError(
                f"Invalid upgrade path: cannot upgrade from {current.full} to {target.full}. "
                "Target version must be higher than current version."
            )
        supported = ", ".join(str(v) for v in self.supported)
        if current.major not in self.supported:
            raise InvalidUpgradePathError(
                f"Current Angular version {current.major} is not supported. Supported versions: {supported}"
            )
        if target.major not in self.supported:
            raise InvalidUpgradePathError(
                f"Target Angular version {target.major} is not supported. Supported versions: {supported}"
            )
        gap = target.major - current.major
        if gap > MAX_VERSION_GAP:
            raise InvalidUpgradePathError(
                f"Large version gap detected ({gap} major versions). "
                "Consider upgrading in smaller increments."
            )

    def _create_step(self, from_version: str, to_version: str, options: UpgradeOptions) -> UpgradeStep:
        spec = self.specs.get(to_version)
        if spec is None:
            raise HandlerNotFoundError(f"No handler found for Angular version {to_version}")

        if self.handlers is not None:
            handler = self.handlers.get(to_version)
            if handler is None:
                raise HandlerNotFoundError(f"No handler found for Angular version {to_version}")
            changes = list(handler.get_breaking_changes())
        else:
            changes = list(spec.breaking_changes)

        return UpgradeStep(
            from_version=from_version,
            to_version=to_version,
            required=True,
            prerequisites=self._prerequisites(spec),
            breaking_changes=changes,
            validations=self._validations(to_version, options),
        )

    def _prerequisites(self, spec: VersionSpec) -> list[Prerequisite]:
        # typescript and the CLI are installed by the step itself
        return [
            Prerequisite(PREREQ_RUNTIME, "node", spec.node, critical=True),
            Prerequisite(PREREQ_ENVIRONMENT, "npm", None, critical=True),
            Prerequisite(PREREQ_TOOLCHAIN, "typescript", spec.typescript, critical=False),
            Prerequisite(PREREQ_DEPENDENCY, "@angular/cli", f"^{spec.version}.0.0", critical=False),
        ]

    def _validations(self, version: str, options: UpgradeOptions) -> list[ValidationStep]:
        v = self.validation
        steps = [
            ValidationStep("build", f"Validate build after Angular {version} upgrade",
                           required=True, command=v.build_command, timeout=v.build_timeout),
        ]
        if options.comprehensive:
            steps += [
                ValidationStep("test", f"Run tests after Angular {version} upgrade",
                               required=True, command=v.test_command, timeout=v.test_timeout),
                ValidationStep("lint", f"Lint code after Angular {version} upgrade",
                               required=False, command=v.lint_command, timeout=v.lint_timeout),
            ]
        return steps

    # ── Advisory scores ──

    def estimate_duration(self, path: UpgradePath, options: Optional[UpgradeOptions] = None) -> float:
        """Estimated minutes."""
        options = options or UpgradeOptions()
        per_step = BASE_MINUTES_PER_STEP * STRATEGY_FACTORS.get(options.strategy, 1.0)
        if options.comprehensive:
            per_step *= COMPREHENSIVE_FACTOR
        return round(len(path.steps) * per_step, 1)

    def estimate_complexity(self, path: UpgradePath) -> dict:
        score = len(path.steps) * 10
        factors: list[str] = []

        for step in path.steps:
            critical = count_by_severity(step.breaking_changes, Severity.CRITICAL)
            high = count_by_severity(step.breaking_changes, Severity.HIGH)
            score += critical * 20 + high * 10
            if critical:
                factors.append(f"Angular {step.to_version}: {critical} critical breaking changes")

        jump = path.to_version.major - path.from_version.major
        if jump > 4:
            score += jump * 5
            factors.append(f"Large version jump: {jump} major versions")

        for step in path.steps:
            if step.to_version in COMPLEX_VERSIONS:
                score += 15
                factors.append(f"Angular {step.to_version} includes significant architectural changes")

        return {"score": score, "factors": factors}
