"""Terraform/OpenTofu provisioning adapter.

Wraps init/apply, output and destroy for one example module. All calls
raise ProvisioningError on failure; apply retries errors that match the
configured retryable patterns.
"""

import json
import logging
import os
import re
import shutil
import tempfile
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from common import run_command
from errors import ConfigurationError, MissingOutputError, ProvisioningError

logger = logging.getLogger(__name__)

# Never copied into a temp working directory
COPY_EXCLUDES = ('.terraform', '.test-data', '*.tfstate', '*.tfstate.backup', '.git')


@dataclass
class ProvisioningOptions:
    """Everything needed to apply, query and destroy one resource set."""
    terraform_dir: str
    name_prefix: str
    region: str
    project: str
    variables: dict = field(default_factory=dict)
    binary: str = 'terraform'
    retryable_errors: dict = field(default_factory=dict)
    max_retries: int = 0
    time_between_retries: int = 5
    timeout_init: int = 120
    timeout_apply: int = 1800
    timeout_destroy: int = 1800

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'ProvisioningOptions':
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Malformed provisioning options: {e}") from e


def build_options(
    project: str,
    region: str,
    terraform_dir,
    prefix: str,
    config=None,
    *,
    suffix: str,
) -> ProvisioningOptions:
    """Build provisioning options for the MySQL example.

    Pure construction: equal inputs give equal options. Callers generate
    the unique suffix.

    Args:
        project: GCP project id
        region: GCP region
        terraform_dir: Directory holding the module to apply
        prefix: Identifying prefix for resource names
        config: RunConfig supplying credentials, timeouts and retry policy
        suffix: Unique id appended to the prefix
    """
    if config is None:
        from config import RunConfig
        config = RunConfig()

    variables = {
        'project': project,
        'region': region,
        'name_prefix': f'{prefix}-{suffix}'.lower(),
        'mysql_version': config.mysql_version,
        'db_name': config.db_name,
        'master_user_name': config.db_user,
        'master_user_password': config.db_password,
    }
    variables.update(config.extra_vars)

    return ProvisioningOptions(
        terraform_dir=str(terraform_dir),
        name_prefix=prefix,
        region=region,
        project=project,
        variables=variables,
        binary=config.terraform_binary,
        retryable_errors=dict(config.retryable_errors),
        max_retries=config.max_retries,
        time_between_retries=config.time_between_retries,
        timeout_init=config.timeout_init,
        timeout_apply=config.timeout_apply,
        timeout_destroy=config.timeout_destroy,
    )


def create_temp_tfvars(options: ProvisioningOptions) -> Path:
    """Write options.variables to a unique tfvars JSON file.

    Caller is responsible for cleanup.
    """
    fd, path = tempfile.mkstemp(prefix=f'tfvars-{options.name_prefix}-', suffix='.tfvars.json')
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        json.dump(options.variables, f, indent=2)
    return Path(path)


def _check_dir(options: ProvisioningOptions) -> Path:
    terraform_dir = Path(options.terraform_dir)
    if not terraform_dir.is_dir():
        raise ProvisioningError(f"Terraform directory not found: {terraform_dir}")
    return terraform_dir


def _retryable_reason(options: ProvisioningOptions, output: str) -> Optional[str]:
    """Return the description of the first retryable pattern found in output."""
    for pattern, description in options.retryable_errors.items():
        if re.search(pattern, output, re.MULTILINE):
            return description
    return None


def _run_with_retries(
    options: ProvisioningOptions,
    cmd: list[str],
    action: str,
    timeout: int,
) -> str:
    """Run a terraform command, retrying transient failures.

    Returns:
        stdout of the successful attempt
    """
    terraform_dir = _check_dir(options)
    attempts = options.max_retries + 1
    for attempt in range(1, attempts + 1):
        rc, out, err = run_command(cmd, cwd=terraform_dir, timeout=timeout)
        if rc == 0:
            return out
        reason = _retryable_reason(options, f'{out}\n{err}')
        if reason is None or attempt == attempts:
            raise ProvisioningError(f"{options.binary} {action} failed: {err.strip() or out.strip()}")
        logger.warning(
            f"{options.binary} {action} failed with retryable error ({reason}); "
            f"attempt {attempt}/{attempts}, retrying in {options.time_between_retries}s"
        )
        time.sleep(options.time_between_retries)
    raise ProvisioningError(f"{options.binary} {action} failed")  # pragma: no cover


def init(options: ProvisioningOptions) -> None:
    """Run terraform init."""
    logger.info(f"Running {options.binary} init in {options.terraform_dir}...")
    _run_with_retries(
        options,
        [options.binary, 'init', '-input=false', '-no-color'],
        'init',
        options.timeout_init,
    )


def apply(options: ProvisioningOptions) -> None:
    """Run terraform apply with options.variables."""
    tfvars_path = create_temp_tfvars(options)
    try:
        logger.info(f"Running {options.binary} apply (prefix: {options.variables.get('name_prefix')})...")
        _run_with_retries(
            options,
            [options.binary, 'apply', '-auto-approve', '-input=false', '-no-color',
             f'-var-file={tfvars_path}'],
            'apply',
            options.timeout_apply,
        )
    finally:
        tfvars_path.unlink(missing_ok=True)
        logger.debug(f"Cleaned up temp tfvars: {tfvars_path}")


def init_and_apply(options: ProvisioningOptions) -> None:
    """Create or update every resource of the module.

    Raises:
        ProvisioningError: If init or apply fails after retries
    """
    init(options)
    apply(options)


def output_all(options: ProvisioningOptions) -> dict[str, str]:
    """Return every module output as a string."""
    _check_dir(options)
    cmd = [options.binary, 'output', '-json', '-no-color']
    rc, out, err = run_command(cmd, cwd=Path(options.terraform_dir), timeout=options.timeout_init)
    if rc != 0:
        raise ProvisioningError(f"{options.binary} output failed: {err.strip()}")
    try:
        raw = json.loads(out or '{}')
    except json.JSONDecodeError as e:
        raise ProvisioningError(f"Unparseable {options.binary} output: {e}") from e

    outputs = {}
    for name, entry in raw.items():
        value = entry.get('value') if isinstance(entry, dict) else entry
        if value is None:
            continue
        outputs[name] = value if isinstance(value, str) else json.dumps(value)
    return outputs


def output(options: ProvisioningOptions, key: str) -> str:
    """Return one named output.

    Raises:
        MissingOutputError: If the module did not produce ``key``
    """
    outputs = output_all(options)
    if key not in outputs:
        raise MissingOutputError(key, sorted(outputs))
    return outputs[key]


def destroy(options: ProvisioningOptions) -> None:
    """Destroy every resource of the module.

    Raises:
        ProvisioningError: If destroy fails after retries
    """
    tfvars_path = create_temp_tfvars(options)
    try:
        logger.info(f"Running {options.binary} destroy in {options.terraform_dir}...")
        _run_with_retries(
            options,
            [options.binary, 'destroy', '-auto-approve', '-input=false', '-no-color',
             f'-var-file={tfvars_path}'],
            'destroy',
            options.timeout_destroy,
        )
    finally:
        tfvars_path.unlink(missing_ok=True)


def prepare_work_dir(
    examples_root: Path,
    example_name: str,
    work_dir: Optional[Path] = None,
    in_place: bool = False,
) -> Path:
    """Return the directory a run applies the example from.

    - An explicit ``work_dir`` is used as-is (reruns point at an earlier copy).
    - ``in_place`` uses the example folder itself so state survives reruns.
    - Otherwise the examples root is copied to a fresh temp dir.
    """
    if work_dir is not None:
        work_dir = Path(work_dir)
        if not work_dir.is_dir():
            raise ConfigurationError(f"Working directory not found: {work_dir}")
        return work_dir

    source = Path(examples_root) / example_name
    if not source.is_dir():
        raise ConfigurationError(f"Example module not found: {source}")

    if in_place:
        logger.info(f"Skip flags set; using {source} in place")
        return source

    tmp_root = Path(tempfile.mkdtemp(prefix=f'{example_name}-'))
    dest_root = tmp_root / Path(examples_root).name
    shutil.copytree(examples_root, dest_root, ignore=shutil.ignore_patterns(*COPY_EXCLUDES))
    logger.info(f"Copied {examples_root} to {dest_root}")
    return dest_root / example_name
