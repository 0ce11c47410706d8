"""Shell command execution with captured output and explicit timeouts."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = -1
EXIT_NOT_FOUND = 127


@dataclass
class CommandResult:
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


def run_command(cmd: str, cwd: Optional[Path | str] = None, timeout: int = 120) -> CommandResult:
    """Run a shell command and capture its result. Never raises on failure."""
    start = time.monotonic()
    logger.debug(f"$ {cmd} (cwd={cwd}, timeout={timeout}s)")
    try:
        r = subprocess.run(
            cmd, shell=True, cwd=str(cwd) if cwd else None,
            capture_output=True, text=True, timeout=timeout,
        )
        result = CommandResult(cmd, r.returncode, r.stdout or "", r.stderr or "")
    except subprocess.TimeoutExpired as e:
        result = CommandResult(
            cmd, EXIT_TIMEOUT,
            stdout=_decode(e.stdout), stderr=_decode(e.stderr) or "TIMEOUT",
            timed_out=True,
        )
    except OSError as e:
        # cwd missing or shell unavailable
        result = CommandResult(cmd, EXIT_NOT_FOUND, stderr=str(e))
    result.duration = time.monotonic() - start
    if not result.ok:
        logger.debug(f"Command failed ({result.exit_code}): {cmd}")
    return result


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return str(data)
