"""Run configuration management.

Configuration comes from three places, later ones winning:
- built-in defaults (the reference mysql-public-ip example)
- an optional YAML file with a top-level ``defaults:`` mapping
- environment variables for the GCP project id

The merge order is: built-in → file → environment (project only, and only
when the file leaves it empty).
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional

import yaml

from errors import ConfigurationError

# Checked in order; first non-empty value wins
PROJECT_ENV_VARS = (
    'GOOGLE_PROJECT',
    'GOOGLE_CLOUD_PROJECT',
    'GOOGLE_CLOUD_PROJECT_ID',
    'GCLOUD_PROJECT',
    'CLOUDSDK_CORE_PROJECT',
)

DEFAULT_APPROVED_REGIONS = [
    'europe-north1',
    'europe-west1',
    'europe-west2',
    'europe-west3',
    'us-central1',
    'us-east1',
    'us-west1',
]

# Transient Cloud SQL API failures worth another apply
DEFAULT_RETRYABLE_ERRORS = {
    r'.*operation in progress.*': 'Another Cloud SQL operation is still running',
    r'.*Error 409.*': 'Conflicting concurrent operation on the instance',
    r'.*Error 503.*': 'Cloud SQL API temporarily unavailable',
    r'.*connection reset by peer.*': 'Transient network failure talking to the API',
}


@dataclass
class RunConfig:
    """Settings for one lifecycle test run."""
    examples_root: Path = field(default_factory=lambda: get_base_dir() / 'examples')
    example_name: str = 'mysql-public-ip'
    name_prefix: str = 'mysql-public'
    project: str = ''
    approved_regions: list = field(default_factory=lambda: list(DEFAULT_APPROVED_REGIONS))
    forbidden_regions: list = field(default_factory=list)
    query_regions: bool = False  # Intersect approved regions with `gcloud compute regions list`

    # Database under test
    db_name: str = 'testdb'
    db_user: str = 'testuser'
    db_password: str = 'testpassword'
    mysql_version: str = 'MYSQL_5_7'
    db_port: int = 3306
    auto_increment_step: int = 5
    direct_marker: str = 'Grunt'
    tunnel_marker: str = 'Grunt2'

    # Timeouts (seconds)
    connect_timeout: int = 10
    read_timeout: int = 10
    write_timeout: int = 10
    tunnel_timeout: int = 10
    timeout_init: int = 120
    timeout_apply: int = 1800
    timeout_destroy: int = 1800

    # Provisioning engine
    terraform_binary: str = 'terraform'
    extra_vars: dict = field(default_factory=dict)
    max_retries: int = 3
    time_between_retries: int = 5
    retryable_errors: dict = field(default_factory=lambda: dict(DEFAULT_RETRYABLE_ERRORS))

    def __post_init__(self):
        if isinstance(self.examples_root, str):
            self.examples_root = Path(self.examples_root)
        if self.auto_increment_step <= 0:
            raise ConfigurationError(
                f"auto_increment_step must be positive, got {self.auto_increment_step}"
            )

    @property
    def example_dir(self) -> Path:
        """Terraform module exercised by the run."""
        return self.examples_root / self.example_name


def get_base_dir() -> Path:
    """Get the repository directory."""
    return Path(__file__).parent.parent  # src/ -> repo/


def get_project_id_from_env(environ: Optional[Mapping[str, str]] = None) -> str:
    """Return the GCP project id from the first populated environment variable.

    Raises:
        ConfigurationError: If none of PROJECT_ENV_VARS is set
    """
    if project := _find_project_id(environ):
        return project
    raise ConfigurationError(
        f"GCP project id not configured. Set one of: {', '.join(PROJECT_ENV_VARS)}"
    )


def _find_project_id(environ: Optional[Mapping[str, str]]) -> str:
    env = os.environ if environ is None else environ
    for var in PROJECT_ENV_VARS:
        if value := env.get(var, '').strip():
            return value
    return ''


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at top level of {path}")
    return data


def _check_types(values: dict, path: Path) -> None:
    """Reject file values whose type does not match the RunConfig field."""
    declared = {f.name: f.type for f in fields(RunConfig)}
    for key, value in values.items():
        expected = declared[key]
        accepted = (str, Path) if expected is Path else expected
        # bool is an int subclass; `max_retries: yes` is still wrong
        if not isinstance(value, accepted) or (isinstance(value, bool) and expected is not bool):
            raise ConfigurationError(
                f"Config key '{key}' in {path} must be {expected.__name__}, got {type(value).__name__}"
            )
        if expected is list and not all(isinstance(item, str) for item in value):
            raise ConfigurationError(f"Config key '{key}' in {path} must be a list of strings")


def load_run_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunConfig:
    """Load run configuration.

    Args:
        path: Optional YAML file with a ``defaults:`` mapping
        environ: Environment to read the project id from (default: os.environ)

    Raises:
        ConfigurationError: On a missing file, unknown keys or bad values
    """
    values: dict = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        values = _parse_yaml(path).get('defaults', {}) or {}
        if not isinstance(values, dict):
            raise ConfigurationError(f"'defaults' in {path} must be a mapping")

    known = {f.name for f in fields(RunConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")
    if path is not None:
        _check_types(values, path)

    if path is not None and 'examples_root' in values:
        # Relative roots are resolved against the config file location
        root = Path(values['examples_root'])
        values['examples_root'] = root if root.is_absolute() else path.parent / root

    try:
        config = RunConfig(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid config: {e}") from e

    # Left empty when unset; bootstrap raises if it is still empty
    if not config.project:
        config.project = _find_project_id(environ)

    return config
