"""
ng-upgrade-factory - Multi-version Angular upgrades
===================================================

Sequences major-version upgrade steps, snapshots the project around each
step and rolls back on failure.

Usage:
    from upgrade_factory import UpgradeOrchestrator, UpgradeOptions

    orchestrator = UpgradeOrchestrator("/path/to/app", UpgradeOptions(target_version="17"))
    result = orchestrator.run()
"""

from .checkpoints import CheckpointStore
from .config import FactoryConfig, UpgradeOptions, load_config
from .errors import UpgradeFactoryError
from .models import Snapshot, UpgradePath, UpgradeResult, UpgradeStep, Version
from .orchestrator import UpgradeOrchestrator
from .path_calculator import UpgradePathCalculator
from .rollback import RollbackEngine, RollbackOptions

__version__ = "1.0.0"

__all__ = [
    "CheckpointStore",
    "FactoryConfig",
    "RollbackEngine",
    "RollbackOptions",
    "Snapshot",
    "UpgradeFactoryError",
    "UpgradeOptions",
    "UpgradeOrchestrator",
    "UpgradePath",
    "UpgradePathCalculator",
    "UpgradeResult",
    "UpgradeStep",
    "Version",
    "load_config",
]
