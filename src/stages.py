"""Stage runner: run named stage bodies under per-stage skip control."""

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional

from common import ActionResult, is_truthy
from errors import LifecycleError, StageError

logger = logging.getLogger(__name__)

SKIP_ENV_PREFIX = 'SKIP_'


def skip_env_var(stage: str) -> str:
    """Name of the environment variable that bypasses a stage."""
    return f'{SKIP_ENV_PREFIX}{stage}'


def resolve_skip_flags(
    stage_names: Iterable[str],
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, bool]:
    """Build the skip mapping from SKIP_<stage> environment variables."""
    env = os.environ if environ is None else environ
    return {name: is_truthy(env.get(skip_env_var(name))) for name in stage_names}


@dataclass
class StageResult:
    """Outcome of one run_stage call."""
    name: str
    status: str  # 'passed', 'skipped'
    message: str = ''
    duration: float = 0.0

    @property
    def skipped(self) -> bool:
        return self.status == 'skipped'


class StageRunner:
    """Runs stage bodies; a failure aborts by raising StageError.

    Skip decisions come from the injected ``skip_flags`` mapping, never
    from process state, so the runner can be exercised in isolation.
    """

    def __init__(self, skip_flags: Optional[Mapping[str, bool]] = None, report=None):
        self.skip_flags = dict(skip_flags or {})
        self.report = report
        self.executed: list[str] = []

    def should_skip(self, name: str) -> bool:
        return bool(self.skip_flags.get(name, False))

    def run_stage(
        self,
        name: str,
        body: Callable[[], Optional[ActionResult]],
        description: str = '',
    ) -> StageResult:
        """Run one stage.

        The body may return an ActionResult or None. A result with
        success=False is treated like a raised exception.

        Raises:
            StageError: If the body fails, wrapping the cause
        """
        if self.should_skip(name):
            logger.info(f"The '{skip_env_var(name)}' flag is set, so skipping stage '{name}'.")
            if self.report:
                self.report.skip_stage(name, description)
            return StageResult(name=name, status='skipped')

        logger.info(f"Running stage '{name}'" + (f" - {description}" if description else ''))
        if self.report:
            self.report.start_stage(name, description)
        self.executed.append(name)
        start = time.time()

        try:
            result = body()
            if result is not None and not result.success:
                raise LifecycleError(result.message or 'stage reported failure')
        except BaseException as e:
            duration = time.time() - start
            logger.error(f"Stage '{name}' failed after {duration:.1f}s: {type(e).__name__}: {e}")
            if self.report:
                self.report.fail_stage(name, f'{type(e).__name__}: {e}', duration)
            if isinstance(e, Exception):
                raise StageError(name, e) from e
            raise

        duration = result.duration if result is not None and result.duration else time.time() - start
        message = result.message if result is not None else ''
        logger.info(f"Stage '{name}' passed ({duration:.1f}s)")
        if self.report:
            self.report.pass_stage(name, message, duration)
        return StageResult(name=name, status='passed', message=message, duration=duration)
