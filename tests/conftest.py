"""Shared pytest fixtures for lifecycle driver tests."""

import os
import shutil
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


def _has_infrastructure():
    """Check if a real GCP project and terraform are available."""
    from config import PROJECT_ENV_VARS

    has_project = any(os.environ.get(var) for var in PROJECT_ENV_VARS)
    return has_project and shutil.which('terraform') is not None


def pytest_collection_modifyitems(config, items):
    """Skip tests marked with requires_infrastructure when infra not available."""
    if _has_infrastructure():
        return
    skip_marker = pytest.mark.skip(reason="requires infrastructure (GCP project + terraform)")
    for item in items:
        if "requires_infrastructure" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def run_config(tmp_path):
    """RunConfig pointing at a throwaway examples tree."""
    from config import RunConfig

    examples = tmp_path / 'examples'
    (examples / 'mysql-public-ip').mkdir(parents=True)
    (examples / 'mysql-public-ip' / 'main.tf').write_text('# test module\n')
    return RunConfig(
        examples_root=examples,
        project='proj-123',
        approved_regions=['us-central1'],
        max_retries=0,
        time_between_retries=0,
    )


@pytest.fixture
def work_dir(run_config):
    """The example directory doubles as the run's working directory."""
    return run_config.example_dir


@pytest.fixture
def store(work_dir):
    from state_store import StateStore
    return StateStore(work_dir)


@pytest.fixture
def seeded_store(store, run_config):
    """Store holding what bootstrap and deploy would have written."""
    from actions.terraform import build_options

    store.save_string('region', 'us-central1')
    store.save_string('project', 'proj-123')
    options = build_options('proj-123', 'us-central1', store.work_dir, 'mysql-public', run_config, suffix='abc')
    store.save_options(options, 'terraform_options')
    return store


@pytest.fixture
def good_outputs():
    """Module outputs of a healthy deploy."""
    return {
        'master_instance_name': 'mysql-public-ip-abc',
        'db_name': 'testdb',
        'master_proxy_connection': 'proj-123:us-central1:mysql-public-ip-abc',
        'master_public_ip_address': '203.0.113.10',
    }
