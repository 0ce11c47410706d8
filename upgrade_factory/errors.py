"""Exception hierarchy for the upgrade factory."""

from __future__ import annotations


class UpgradeFactoryError(Exception):
    """Base class for every error raised by upgrade_factory."""


class ConfigError(UpgradeFactoryError):
    """Invalid option value or unreadable config file."""


class AnalysisError(UpgradeFactoryError):
    """Project could not be analyzed (no manifest, not an Angular project)."""


class InvalidUpgradePathError(UpgradeFactoryError):
    """Target not above current, or a version outside the supported window."""


class PrerequisiteError(UpgradeFactoryError):
    """A critical prerequisite failed before any mutation."""


class HandlerNotFoundError(UpgradeFactoryError):
    """No version handler registered for a step's destination version."""


class StepExecutionError(UpgradeFactoryError):
    """A version handler raised while applying a step."""

    def __init__(self, message: str, step=None, cause: BaseException | None = None):
        super().__init__(message)
        self.step = step
        self.cause = cause


class ValidationFailedError(UpgradeFactoryError):
    """A required validation (step or final) did not pass."""

    def __init__(self, message: str, kind: str = "", output: str = ""):
        super().__init__(message)
        self.kind = kind
        self.output = output


class CheckpointError(UpgradeFactoryError):
    """Snapshot store failure."""


class CheckpointNotFoundError(CheckpointError):
    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint {checkpoint_id} not found")
        self.checkpoint_id = checkpoint_id


class CheckpointCorruptedError(CheckpointError):
    def __init__(self, checkpoint_id: str, errors: list[str]):
        super().__init__(f"Checkpoint {checkpoint_id} is corrupted: {', '.join(errors)}")
        self.checkpoint_id = checkpoint_id
        self.errors = list(errors)


class NoValidCheckpointError(CheckpointError):
    def __init__(self, message: str = "No valid checkpoint found for rollback"):
        super().__init__(message)
