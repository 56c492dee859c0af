"""Common utilities and types for lifecycle test runs."""

import logging
import random
import string
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Values of SKIP_<stage> that do not count as set
FALSE_VALUES = ('', '0', 'false', 'no', 'off')

UNIQUE_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class ActionResult:
    """Result returned by a stage action."""
    success: bool
    message: str = ''
    duration: float = 0.0


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
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


def is_truthy(value: Optional[str]) -> bool:
    """Interpret an environment-style flag value."""
    if value is None:
        return False
    return value.strip().lower() not in FALSE_VALUES


def unique_id(length: int = 6, rng: Optional[random.Random] = None) -> str:
    """Return a short lowercase id for naming cloud resources."""
    rng = rng or random.SystemRandom()
    return ''.join(rng.choice(UNIQUE_ID_ALPHABET) for _ in range(length))
