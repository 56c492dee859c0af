"""Scenario definitions and lifecycle orchestration."""

import logging
import time
from functools import partial
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from config import RunConfig
from errors import ConfigurationError, StageError
from reporting import TestReport
from stages import StageRunner
from state_store import StateStore

logger = logging.getLogger(__name__)


@runtime_checkable
class Scenario(Protocol):
    """Protocol for scenario definitions.

    Class attributes:
        name: Scenario identifier (e.g., 'mysql-public-ip')
        description: Human-readable description
    """
    name: str
    description: str

    def get_stages(self, config: RunConfig) -> list[tuple[str, Any, str]]:
        """Return ordered (stage_name, action, description) tuples."""
        ...

    def get_teardown(self, config: RunConfig) -> tuple[str, Any, str]:
        """Return the (stage_name, action, description) run after every run."""
        ...


class Orchestrator:
    """Runs a scenario's stages in order, then always runs teardown.

    Stages are positional: there is no dependency graph, and skipping a
    stage whose output a later stage needs is the operator's problem
    (surfacing as a ConfigurationError from the state store).
    """

    def __init__(
        self,
        scenario: Scenario,
        config: RunConfig,
        work_dir: Path,
        skip_flags: Optional[Mapping[str, bool]] = None,
        report_dir: Optional[Path] = None,
        dry_run: bool = False,
    ):
        self.scenario = scenario
        self.config = config
        self.work_dir = Path(work_dir)
        self.dry_run = dry_run
        self.store = StateStore(self.work_dir)
        self.report = TestReport(scenario=scenario.name, report_dir=report_dir, work_dir=str(self.work_dir))
        self.runner = StageRunner(skip_flags, report=self.report)
        self.error: Optional[StageError] = None
        self.teardown_error: Optional[StageError] = None
        self.teardown_runs = 0

    def _stage_list(self) -> tuple[list[tuple[str, Any, str]], tuple[str, Any, str]]:
        stages = self.scenario.get_stages(self.config)
        teardown = self.scenario.get_teardown(self.config)
        names = [name for name, _, _ in stages] + [teardown[0]]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate stage names in '{self.scenario.name}': {duplicates}")
        return stages, teardown

    def stage_names(self) -> list[str]:
        stages, teardown = self._stage_list()
        return [name for name, _, _ in stages] + [teardown[0]]

    def preview(self) -> bool:
        """Show what would be executed without running. Returns True."""
        stages, teardown = self._stage_list()

        print("")
        print(f"  DRY-RUN: {self.scenario.name}")
        print(f"  Working directory: {self.work_dir}")
        print("")
        print("Stages to execute:")
        for name, action, description in stages + [teardown]:
            marker = 'SKIP' if self.runner.should_skip(name) else ' OK '
            print(f"  [{marker}] {name}: {description}")
            print(f"         Action: {type(action).__name__}")
        print("")
        print("Remove --dry-run to execute the scenario.")
        return True

    def _run_teardown(self, teardown: tuple[str, Any, str]) -> None:
        name, action, description = teardown
        self.teardown_runs += 1
        try:
            self.runner.run_stage(name, partial(action.run, self.config, self.store), description)
        except StageError as e:
            self.teardown_error = e
            if self.error is not None:
                logger.error(
                    f"Teardown also failed; the run failed first in stage '{self.error.stage}': {self.error.cause}"
                )

    def run(self) -> bool:
        """Run all stages then teardown. Returns True if everything passed.

        Teardown is entered through ``finally`` before the first stage
        starts, so it runs once whether the stages pass, fail or are
        interrupted. An interrupt is re-raised after teardown.
        """
        if self.dry_run:
            return self.preview()

        stages, teardown = self._stage_list()
        logger.info(f"Starting scenario '{self.scenario.name}' in {self.work_dir}")
        self.report.start()
        start_time = time.time()
        completed = False

        try:
            for name, action, description in stages:
                self.runner.run_stage(name, partial(action.run, self.config, self.store), description)
            completed = True
        except StageError as e:
            self.error = e
        finally:
            self._run_teardown(teardown)
            success = completed and self.teardown_error is None
            if self.error is not None:
                message = str(self.error)
            elif not completed:
                message = 'interrupted'
            else:
                message = str(self.teardown_error or '')
            self.report.finish(success, message)
            logger.info(f"Scenario completed in {time.time() - start_time:.1f}s")

        if self.error is not None:
            logger.error(f"Run failed: {self.error}")
        elif self.teardown_error is not None:
            logger.error(f"Teardown failed: {self.teardown_error}")
        return success


# Registry of available scenarios
_scenarios: dict[str, type] = {}


def register_scenario(cls: type) -> type:
    """Decorator to register a scenario class."""
    _scenarios[cls.name] = cls
    return cls


def get_scenario(name: str) -> Scenario:
    """Get a scenario instance by name."""
    if name not in _scenarios:
        available = list(_scenarios.keys())
        raise ValueError(f"Unknown scenario: {name}. Available: {available}")
    return _scenarios[name]()


def list_scenarios() -> list[str]:
    """List available scenario names."""
    return sorted(_scenarios.keys())


# Import scenarios to trigger registration
from scenarios import mysql_public_ip  # noqa: E402, F401
