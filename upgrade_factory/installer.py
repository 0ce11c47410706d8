"""Dependency installation via npm, with retries."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional

from .commands import CommandResult, run_command
from .config import InstallerConfig

logger = logging.getLogger(__name__)


class DependencyInstaller:
    """
    ensure_installed(): `npm install`, retried up to max_retries times with
    the force flag on later attempts. Returns False when every attempt
    failed; package.json stays updated for a manual `npm install`.
    """

    def __init__(
        self,
        project_path: Path | str,
        config: Optional[InstallerConfig] = None,
        runner: Callable[..., CommandResult] = run_command,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.project_path = Path(project_path)
        self.config = config or InstallerConfig()
        self.runner = runner
        self._sleep = sleep
        self.attempts: list[CommandResult] = []

    def ensure_installed(self) -> bool:
        cfg = self.config
        for attempt in range(cfg.max_retries + 1):
            cmd = cfg.install_command
            if attempt > 0:
                cmd = f"{cmd} {cfg.force_flag}".strip()
                if cfg.retry_delay_sec:
                    self._sleep(cfg.retry_delay_sec)
            result = self.runner(cmd, cwd=self.project_path, timeout=cfg.timeout)
            self.attempts.append(result)
            if result.ok:
                logger.info(f"Dependencies installed ({cmd})")
                return True
            logger.warning(f"{cmd} failed (attempt {attempt + 1}/{cfg.max_retries + 1}): {result.output[-300:]}")

        logger.error("Dependency installation failed; run `npm install` manually")
        return False

    def reinstall_clean(self) -> bool:
        """`npm ci` after a restore: node_modules matches the restored lock file."""
        result = self.runner(self.config.clean_command, cwd=self.project_path, timeout=self.config.timeout)
        self.attempts.append(result)
        if not result.ok:
            logger.error(f"{self.config.clean_command} failed: {result.output[-300:]}")
        return result.ok
