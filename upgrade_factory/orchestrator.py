"""
Upgrade Orchestrator - multi-version upgrade run.
=================================================
Drives one upgrade through the state machine:

    idle → analyzing → path_planning → validating_prerequisites
         → checkpointing (initial) → executing_step(i) → validating_step(i)
         → checkpointing → ... → final_validation → complete

    failed → rolling_back → rolled_back      (auto-on-failure only)

Analysis, path planning and prerequisite failures abort before anything
is touched. After the initial checkpoint every failure is handled by the
rollback policy, and the result always says which step failed, whether a
rollback happened and whether it worked.

Usage:
    orch = UpgradeOrchestrator("/path/to/app", UpgradeOptions(target_version="17"))
    plan = orch.plan()          # dry run, no mutation
    result = orch.run()
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional

from .analyzer import ProjectAnalysis, ProjectAnalyzer
from .checkpoints import CheckpointStore
from .config import FactoryConfig, UpgradeOptions
from .errors import (
    HandlerNotFoundError,
    InvalidUpgradePathError,
    PrerequisiteError,
    StepExecutionError,
    UpgradeFactoryError,
    ValidationFailedError,
)
from .events import (
    ANALYSIS_COMPLETE,
    CHECKPOINT_CREATED,
    FINAL_VALIDATION,
    MANUAL_INTERVENTION,
    PATH_CALCULATED,
    PREREQUISITES_VALIDATED,
    ROLLBACK_COMPLETE,
    ROLLBACK_FAILED,
    ROLLBACK_START,
    STEP_COMPLETE,
    STEP_FAILED,
    STEP_SKIPPED,
    STEP_START,
    UPGRADE_COMPLETE,
    UPGRADE_FAILED,
    Event,
    EventRecorder,
    EventSink,
    LoggingSink,
)
from .handlers import VersionHandler, build_handler_registry
from .installer import DependencyInstaller
from .manifest import current_angular_version
from .models import Snapshot, UpgradePath, UpgradeResult, UpgradeStep, ValidationStep, Version
from .path_calculator import UpgradePathCalculator
from .rollback import RollbackEngine, RollbackOptions, RollbackResult
from .state_machine import UpgradeState, UpgradeStateMachine
from .validator import ValidatorFramework

logger = logging.getLogger(__name__)

INITIAL_CHECKPOINT = "initial"

CheckpointPredicate = Callable[[UpgradeStep], bool]


@dataclass
class UpgradePlan:
    """Dry-run output: what run() would do."""
    analysis: ProjectAnalysis
    path: UpgradePath
    estimated_minutes: float
    complexity: dict
    checkpoints: list[str] = field(default_factory=list)
    manual_changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "from": self.path.from_version.full,
            "to": self.path.to_version.full,
            "steps": [s.to_dict() for s in self.path.steps],
            "estimated_minutes": self.estimated_minutes,
            "complexity": self.complexity,
            "checkpoints": list(self.checkpoints),
            "manual_changes": list(self.manual_changes),
            "risk": self.analysis.risk.overall,
        }


class _StepFailure(Exception):
    """Internal: carries the failing step out of the step loop."""

    def __init__(self, step: Optional[UpgradeStep], error: BaseException, final: bool = False):
        super().__init__(str(error))
        self.step = step
        self.error = error
        self.final = final


class UpgradeOrchestrator:
    """
    Top-level upgrade driver. Every collaborator can be injected; defaults
    are built from the FactoryConfig.
    """

    def __init__(
        self,
        project_path: Path | str,
        options: Optional[UpgradeOptions] = None,
        *,
        config: Optional[FactoryConfig] = None,
        store: Optional[CheckpointStore] = None,
        rollback: Optional[RollbackEngine] = None,
        analyzer: Optional[ProjectAnalyzer] = None,
        calculator: Optional[UpgradePathCalculator] = None,
        validator: Optional[ValidatorFramework] = None,
        installer: Optional[DependencyInstaller] = None,
        handlers: Optional[Mapping[str, VersionHandler]] = None,
        sink: Optional[EventSink] = None,
        checkpoint_predicate: Optional[CheckpointPredicate] = None,
    ):
        self.project_path = Path(project_path).resolve()
        self.config = config or FactoryConfig()
        self.options = options or self.config.upgrade

        self.store = store or CheckpointStore(
            self.project_path,
            self.config.checkpoints,
            storage_root=self.options.backup_path,
            validation=self.config.validation,
        )
        self.installer = installer or DependencyInstaller(self.project_path, self.config.installer)
        self.rollback = rollback or RollbackEngine(self.store, installer=self.installer)
        self.analyzer = analyzer or ProjectAnalyzer(self.project_path, parallel=self.options.parallel_processing)
        self.handlers = handlers if handlers is not None else build_handler_registry(
            node_version_command=self.config.validation.node_version_command,
        )
        self.calculator = calculator or UpgradePathCalculator(self.handlers, validation=self.config.validation)
        self.validator = validator or ValidatorFramework(self.project_path, self.config.validation)
        if sink is None:
            recorder = EventRecorder()
            recorder.on_event(LoggingSink().emit)
            sink = recorder
        self.sink = sink
        self.checkpoint_predicate = checkpoint_predicate

    # ── Events ──

    def _emit(self, event_type: str, **payload) -> None:
        self.sink.emit(Event(event_type=event_type, payload=payload))

    # ── Dry run ──

    def plan(self, options: Optional[UpgradeOptions] = None) -> UpgradePlan:
        """Analysis + path + estimates. Raises on analysis/path errors; touches nothing."""
        options = options or self.options
        analysis = self.analyzer.analyze()
        path = self.calculator.calculate_path(analysis.current_version, self._target(options), options)
        checkpoints = [INITIAL_CHECKPOINT] + [
            self._checkpoint_id(s) for s in path.steps if self._should_checkpoint(s, options)
        ]
        return UpgradePlan(
            analysis=analysis,
            path=path,
            estimated_minutes=self.calculator.estimate_duration(path, options),
            complexity=self.calculator.estimate_complexity(path),
            checkpoints=checkpoints,
            manual_changes=[bc.id for s in path.steps for bc in s.breaking_changes if bc.manual],
        )

    # ── Run ──

    def run(self, options: Optional[UpgradeOptions] = None) -> UpgradeResult:
        options = options or self.options
        start = time.monotonic()
        sm = UpgradeStateMachine(str(uuid.uuid4()))
        result = UpgradeResult(success=False, from_version="", to_version=str(options.target_version))

        # Pre-flight: nothing is touched before the initial checkpoint
        try:
            sm.transition(UpgradeState.ANALYZING, "start")
            analysis = self.analyzer.analyze()
            result.from_version = analysis.current_version.full
            self._emit(ANALYSIS_COMPLETE, version=analysis.current_version.full, risk=analysis.risk.overall)
            result.warnings.extend(self._third_party_warnings(analysis, options))

            sm.transition(UpgradeState.PATH_PLANNING, f"{analysis.current_version.major} → {options.target_version}")
            path = self.calculator.calculate_path(analysis.current_version, self._target(options), options)
            result.to_version = path.to_version.full
            self._emit(PATH_CALCULATED, versions=path.versions, steps=len(path.steps))

            sm.transition(UpgradeState.VALIDATING_PREREQUISITES, f"{len(path.steps)} steps")
            result.warnings.extend(self._validate_prerequisites(path))
            self._emit(PREREQUISITES_VALIDATED, steps=len(path.steps))
        except UpgradeFactoryError as e:
            logger.error(f"Pre-flight failed: {e}")
            sm.transition(UpgradeState.FAILED, str(e))
            result.error = e
            self._emit(UPGRADE_FAILED, error=str(e), stage="pre-flight")
            return self._finish(result, sm, start)

        if options.install_dependencies and not self.installer.ensure_installed():
            result.warnings.append("Initial dependency installation failed; continuing")

        try:
            sm.transition(UpgradeState.CHECKPOINTING, INITIAL_CHECKPOINT)
            self.store.initialize()
            initial = self.store.create(
                INITIAL_CHECKPOINT,
                f"Before upgrade from {analysis.current_version.full} to {path.to_version.full}",
            )
        except (UpgradeFactoryError, OSError) as e:
            # still pre-mutation: the initial copy failed
            logger.error(f"Initial checkpoint failed: {e}")
            sm.transition(UpgradeState.FAILED, str(e))
            result.error = e
            self._emit(UPGRADE_FAILED, error=str(e), stage="initial-checkpoint")
            return self._finish(result, sm, start)
        result.checkpoints.append(initial)
        self._emit(CHECKPOINT_CREATED, checkpoint=initial.id)

        try:
            self._execute_steps(path, options, sm, result)
            self._final_validation(options, sm)
        except _StepFailure as failure:
            self._handle_failure(failure, options, sm, result, initial)
            return self._finish(result, sm, start)

        sm.transition(UpgradeState.COMPLETE, "final validation passed")
        if options.install_dependencies and not self.installer.ensure_installed():
            result.warnings.append("Final dependency installation failed; run `npm install` manually")

        deleted = self.store.cleanup_old(self.config.checkpoints.keep_count)
        if deleted:
            logger.info(f"Removed old checkpoints: {', '.join(deleted)}")

        result.success = True
        self._emit(UPGRADE_COMPLETE, to=result.to_version, steps=len(result.completed_steps))
        return self._finish(result, sm, start, deleted)

    # ── Steps ──

    def _execute_steps(self, path: UpgradePath, options: UpgradeOptions, sm: UpgradeStateMachine,
                       result: UpgradeResult) -> None:
        for index, step in enumerate(path.steps, 1):
            if self._already_at(step):
                self._emit(STEP_SKIPPED, step=step.label, reason="project already at target version")
                continue

            sm.transition(UpgradeState.EXECUTING_STEP, step.label)
            self._emit(STEP_START, step=step.label, index=index, total=len(path.steps))
            for bc in step.breaking_changes:
                if bc.manual:
                    result.manual_intervention_required = True
                    result.warnings.append(f"Angular {step.to_version}: {bc.description} ({bc.instructions})")
                    self._emit(MANUAL_INTERVENTION, step=step.label, change=bc.id, instructions=bc.instructions)

            try:
                handler = self.handlers.get(step.to_version)
                if handler is None:
                    raise HandlerNotFoundError(f"No handler found for Angular version {step.to_version}")
                handler.execute(self.project_path, step, options)
            except Exception as e:
                # handlers are external: any error is a step failure
                raise _StepFailure(step, self._as_step_error(step, e)) from e

            sm.transition(UpgradeState.VALIDATING_STEP, step.label)
            result.warnings.extend(self._run_step_validations(step, options))

            if self._should_checkpoint(step, options):
                sm.transition(UpgradeState.CHECKPOINTING, step.label)
                try:
                    snapshot = self.store.create(
                        self._checkpoint_id(step), f"After upgrade to Angular {step.to_version}"
                    )
                except (UpgradeFactoryError, OSError) as e:
                    raise _StepFailure(step, e) from e
                result.checkpoints.append(snapshot)
                self._emit(CHECKPOINT_CREATED, checkpoint=snapshot.id)

            result.completed_steps.append(step)
            self._emit(STEP_COMPLETE, step=step.label)

    def _run_step_validations(self, step: UpgradeStep, options: UpgradeOptions) -> list[str]:
        warnings: list[str] = []
        for validation in step.validations:
            if not validation.required and not options.comprehensive:
                continue
            outcome = self.validator.run_validation(validation)
            warnings.extend(outcome.warnings)
            if outcome.success:
                continue
            if validation.required:
                error = ValidationFailedError(
                    f"{validation.description}: {outcome.message}", validation.kind, outcome.error or ""
                )
                raise _StepFailure(step, error)
            warnings.append(f"{validation.description}: {outcome.message}")
        return warnings

    def _final_validation(self, options: UpgradeOptions, sm: UpgradeStateMachine) -> None:
        sm.transition(UpgradeState.FINAL_VALIDATION, "all steps complete")
        cfg = self.config.validation
        checks = [ValidationStep("build", "Final build", True, cfg.build_command, cfg.build_timeout)]
        if options.comprehensive:
            checks.append(ValidationStep("test", "Final tests", True, cfg.test_command, cfg.test_timeout))

        for check in checks:
            outcome = self.validator.run_validation(check)
            self._emit(FINAL_VALIDATION, kind=check.kind, success=outcome.success)
            if not outcome.success:
                error = ValidationFailedError(f"{check.description} failed: {outcome.message}",
                                              check.kind, outcome.error or "")
                raise _StepFailure(None, error, final=True)

    # ── Failure handling ──

    def _handle_failure(self, failure: _StepFailure, options: UpgradeOptions, sm: UpgradeStateMachine,
                        result: UpgradeResult, initial: Snapshot) -> None:
        result.failed_step = failure.step
        result.error = failure.error
        label = failure.step.label if failure.step else "final validation"
        sm.transition(UpgradeState.FAILED, f"{label}: {failure.error}")
        self._emit(STEP_FAILED, step=label, error=str(failure.error))

        # final validation failure: the whole upgrade is suspect
        target = initial if failure.final else result.checkpoints[-1]
        if options.rollback_policy == "auto-on-failure":
            sm.transition(UpgradeState.ROLLING_BACK, target.id)
            self._emit(ROLLBACK_START, checkpoint=target.id)
            outcome = self._rollback(target.id, options)

            result.rolled_back = True
            result.rollback_checkpoint = target.id
            result.rollback_succeeded = outcome.success
            result.warnings.extend(outcome.warnings)
            if outcome.success:
                sm.transition(UpgradeState.ROLLED_BACK, target.id)
                self._emit(ROLLBACK_COMPLETE, checkpoint=target.id)
            else:
                result.rollback_error = outcome.error
                result.manual_intervention_required = True
                sm.transition(UpgradeState.FAILED, f"rollback failed: {outcome.error}")
                self._emit(ROLLBACK_FAILED, checkpoint=target.id, error=outcome.error, reason=outcome.reason)
        else:
            result.manual_intervention_required = True
            if options.rollback_policy == "manual":
                result.warnings.append(f"Rollback available: ngup rollback {target.id}")

        self._emit(UPGRADE_FAILED, step=label, error=str(failure.error), rolled_back=result.rolled_back)

    def _rollback(self, checkpoint_id: str, options: UpgradeOptions) -> RollbackResult:
        return self.rollback.rollback_to(
            checkpoint_id,
            RollbackOptions(
                validate_after_rollback=True,
                reinstall_dependencies=options.install_dependencies,
            ),
        )

    # ── Helpers ──

    def _target(self, options: UpgradeOptions) -> Version:
        if not str(options.target_version).strip():
            raise InvalidUpgradePathError("No target version given")
        return Version.parse(options.target_version)

    def _validate_prerequisites(self, path: UpgradePath) -> list[str]:
        """Critical failures raise PrerequisiteError; the rest become warnings."""
        failures: list[str] = []
        warnings: list[str] = []
        seen = set()
        for step in path.steps:
            handler = self.handlers.get(step.to_version)
            if handler is None:
                raise HandlerNotFoundError(f"No handler found for Angular version {step.to_version}")
            for prereq in step.prerequisites:
                key = (prereq.kind, prereq.name, prereq.required_version)
                if key in seen:
                    continue
                seen.add(key)
                if self.validator.validate_prerequisite(prereq):
                    continue
                text = f"{prereq.name} {prereq.required_version or ''}".strip()
                if prereq.critical:
                    failures.append(f"Angular {step.to_version}: {text}")
                else:
                    warnings.append(f"Prerequisite not met (installed by the upgrade): {text}")
            if not handler.validate_prerequisites(self.project_path):
                failures.append(f"Angular {step.to_version}: handler prerequisites not met")

        if failures:
            raise PrerequisiteError("Critical prerequisites failed: " + "; ".join(failures))
        return warnings

    def _third_party_warnings(self, analysis: ProjectAnalysis, options: UpgradeOptions) -> list[str]:
        if options.third_party_handling == "automatic":
            return []
        return [
            f"{lib.name} is {lib.status}; alternatives: {', '.join(lib.alternatives) or 'none'}"
            for lib in analysis.deprecated
        ]

    def _should_checkpoint(self, step: UpgradeStep, options: UpgradeOptions) -> bool:
        if options.checkpoint_frequency in ("every-step", "major-versions"):
            return True
        predicate = self.checkpoint_predicate or (lambda s: s.required)
        return bool(predicate(step))

    @staticmethod
    def _checkpoint_id(step: UpgradeStep) -> str:
        return f"step-{step.to_version}"

    def _already_at(self, step: UpgradeStep) -> bool:
        try:
            return Version.parse(current_angular_version(self.project_path)).major >= int(step.to_version)
        except (InvalidUpgradePathError, ValueError):
            return False

    @staticmethod
    def _as_step_error(step: UpgradeStep, error: BaseException) -> UpgradeFactoryError:
        if isinstance(error, (StepExecutionError, ValidationFailedError)):
            return error
        return StepExecutionError(f"Upgrade step failed: {step.label}: {error}", step, error)

    def _finish(self, result: UpgradeResult, sm: UpgradeStateMachine, start: float,
                deleted: Optional[list[str]] = None) -> UpgradeResult:
        deleted = set(deleted or [])
        result.rollback_available = any(c.id not in deleted for c in result.checkpoints)
        result.duration = time.monotonic() - start
        result.final_state = sm.state.value
        result.state_history = sm.get_history()
        return result

    # ── Pass-throughs ──

    def rollback_to(self, checkpoint_id: str, options: Optional[RollbackOptions] = None) -> RollbackResult:
        return self.rollback.rollback_to(checkpoint_id, options)

    def list_checkpoints(self) -> list[Snapshot]:
        return self.store.list()
