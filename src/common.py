"""Common utilities and types for cluster automation."""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Result returned by a tool action."""
    success: bool
    message: str = ''
    duration: float = 0.0
    output: str = ''


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: float = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def missing_executables(names: list[str]) -> list[str]:
    """Return the executables from names that are not on PATH."""
    missing = []
    for name in names:
        if shutil.which(name) is None:
            logger.debug(f"Executable not found on PATH: {name}")
            missing.append(name)
    return missing
