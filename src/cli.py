#!/usr/bin/env python3
"""CLI entry point for the Cloud SQL lifecycle test driver.

Usage:
    cloudsql-test run [--scenario mysql-public-ip] [--config FILE]
                      [--work-dir DIR] [--skip STAGE]... [--dry-run]
    cloudsql-test run --list-stages
    cloudsql-test list

Stages can also be bypassed with SKIP_<stage> environment variables, e.g.
SKIP_teardown=true to keep the instance for inspection. Reruns that skip
earlier stages must point --work-dir at the directory of the first run
(or rely on the in-place example folder used whenever a skip is set).
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from actions.terraform import prepare_work_dir
from config import get_base_dir, load_run_config
from errors import ConfigurationError
from scenarios import Orchestrator, get_scenario, list_scenarios
from stages import resolve_skip_flags

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

DEFAULT_SCENARIO = 'mysql-public-ip'


def _configure_logging(verbose: bool, to_stderr: bool) -> None:
    """Configure root logging; --json-output keeps stdout clean."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr if to_stderr else sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def _handle_sigterm(signum, frame):
    """Turn SIGTERM into KeyboardInterrupt so teardown still runs."""
    logger.warning("Received SIGTERM, tearing down before exit")
    raise KeyboardInterrupt


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cloudsql-test',
        description='Staged, resumable lifecycle tests for Cloud SQL examples',
    )
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('list', help='List available scenarios')

    run = sub.add_parser('run', help='Run a scenario')
    run.add_argument(
        '--scenario', '-S',
        default=DEFAULT_SCENARIO,
        help=f'Scenario to run (default: {DEFAULT_SCENARIO})',
    )
    run.add_argument(
        '--config', '-c',
        type=Path,
        help='YAML config file with a defaults: mapping',
    )
    run.add_argument(
        '--work-dir', '-w',
        type=Path,
        help='Reuse an existing working directory (required for most reruns)',
    )
    run.add_argument(
        '--skip', '-s',
        action='append',
        default=[],
        help='Stages to skip (can be repeated); adds to SKIP_<stage> variables',
    )
    run.add_argument(
        '--report-dir', '-r',
        type=Path,
        default=get_base_dir() / 'reports',
        help='Directory for run reports',
    )
    run.add_argument(
        '--list-stages',
        action='store_true',
        help='List stages for the scenario and exit',
    )
    run.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be executed without running stages',
    )
    run.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs go to stderr)',
    )
    run.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _run(args) -> int:
    scenario = get_scenario(args.scenario)
    config = load_run_config(args.config)

    stage_names = [name for name, _, _ in scenario.get_stages(config)]
    stage_names.append(scenario.get_teardown(config)[0])

    if args.list_stages:
        print(f"Stages for scenario '{scenario.name}':")
        for name, _action, desc in scenario.get_stages(config) + [scenario.get_teardown(config)]:
            print(f"  {name}: {desc}")
        return 0

    unknown = sorted(set(args.skip) - set(stage_names))
    if unknown:
        print(f"Error: Unknown stage(s) {unknown}. Available: {stage_names}")
        return 2

    skip_flags = resolve_skip_flags(stage_names)
    for name in args.skip:
        skip_flags[name] = True

    work_dir = prepare_work_dir(
        config.examples_root,
        config.example_name,
        work_dir=args.work_dir,
        # Dry runs preview the source folder instead of copying it
        in_place=args.dry_run or any(skip_flags.values()),
    )

    orchestrator = Orchestrator(
        scenario=scenario,
        config=config,
        work_dir=work_dir,
        skip_flags=skip_flags,
        report_dir=args.report_dir,
        dry_run=args.dry_run,
    )
    success = orchestrator.run()

    if args.json_output and not args.dry_run:
        print(json.dumps(orchestrator.report.to_dict(), indent=2))
    return 0 if success else 1


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'list':
        print("Available scenarios:")
        for name in list_scenarios():
            print(f"  {name:30} {get_scenario(name).description}")
        return 0

    _configure_logging(args.verbose, to_stderr=args.json_output)
    previous_handler = signal.signal(signal.SIGTERM, _handle_sigterm)
    try:
        return _run(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except ValueError as e:
        print(f"Error: {e}")
        return 2
    finally:
        signal.signal(signal.SIGTERM, previous_handler or signal.SIG_DFL)


if __name__ == '__main__':
    sys.exit(main())
